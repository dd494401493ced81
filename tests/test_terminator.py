"""
Tests for process termination
"""

import asyncio
import os

import psutil
import pytest

from conftest import make_port

from portkeeper import terminator
from portkeeper.exceptions import NoSuchProcess, PermissionDenied
from portkeeper.models import TerminationOutcome
from portkeeper.terminator import ProcessTerminator, signal_process


class FakeProcess:
    instances = {}

    def __init__(self, pid):
        self.pid = pid
        self.signals = []
        FakeProcess.instances[pid] = self

    def terminate(self):
        self.signals.append("SIGTERM")

    def kill(self):
        self.signals.append("SIGKILL")

    def wait(self, timeout=None):
        raise psutil.TimeoutExpired(timeout, pid=self.pid)


@pytest.fixture
def fake_process(monkeypatch):
    FakeProcess.instances = {}
    monkeypatch.setattr(terminator.psutil, "Process", FakeProcess)
    return FakeProcess


def raising_process(error):
    def factory(pid):
        raise error(pid)
    return factory


def test_graceful_sends_sigterm(fake_process):
    result = ProcessTerminator().terminate(4242)
    assert result.ok
    assert result.signal == "SIGTERM"
    assert fake_process.instances[4242].signals == ["SIGTERM"]


def test_force_sends_sigkill(fake_process):
    result = ProcessTerminator().terminate(4242, force=True)
    assert result.ok
    assert result.signal == "SIGKILL"
    assert fake_process.instances[4242].signals == ["SIGKILL"]


def test_missing_process_reports_no_such_process(monkeypatch):
    monkeypatch.setattr(terminator.psutil, "Process", raising_process(psutil.NoSuchProcess))
    result = ProcessTerminator().terminate(999)
    assert result.outcome == TerminationOutcome.NO_SUCH_PROCESS
    assert not result.ok


def test_access_denied_reports_permission_denied(monkeypatch):
    monkeypatch.setattr(terminator.psutil, "Process", raising_process(psutil.AccessDenied))
    result = ProcessTerminator().terminate(1)
    assert result.outcome == TerminationOutcome.PERMISSION_DENIED


def test_signal_process_raises_domain_errors(monkeypatch):
    monkeypatch.setattr(terminator.psutil, "Process", raising_process(psutil.NoSuchProcess))
    with pytest.raises(NoSuchProcess) as exc_info:
        signal_process(999)
    assert exc_info.value.pid == 999

    monkeypatch.setattr(terminator.psutil, "Process", raising_process(psutil.AccessDenied))
    with pytest.raises(PermissionDenied):
        signal_process(1, force=True)


def test_refuses_invalid_and_own_pid(fake_process):
    t = ProcessTerminator()
    assert t.terminate(0).outcome == TerminationOutcome.ERROR
    assert t.terminate(os.getpid()).outcome == TerminationOutcome.ERROR
    assert fake_process.instances == {}


def test_kill_port_targets_owner(fake_process):
    result = ProcessTerminator().kill_port(make_port(3000, 4242), force=True)
    assert result.pid == 4242
    assert fake_process.instances[4242].signals == ["SIGKILL"]


def test_escalation_sends_sigkill_after_grace_period(fake_process):
    result = ProcessTerminator().terminate_with_escalation(4242, grace_period=0.01)
    assert result.signal == "SIGKILL"
    # A new Process handle is created for each step
    assert fake_process.instances[4242].signals == ["SIGKILL"]


def test_escalation_skipped_when_process_exits(monkeypatch):
    class ExitingProcess(FakeProcess):
        def wait(self, timeout=None):
            return 0

    monkeypatch.setattr(terminator.psutil, "Process", ExitingProcess)
    result = ProcessTerminator().terminate_with_escalation(4242, grace_period=0.01)
    assert result.signal == "SIGTERM"
    assert result.ok


def test_terminate_async(fake_process):
    result = asyncio.run(ProcessTerminator().terminate_async(4242, force=True))
    assert result.signal == "SIGKILL"
