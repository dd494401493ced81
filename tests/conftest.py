"""
Shared fixtures and fakes for PortKeeper tests
"""

import os
import sys
import threading

import pytest

# Add the project root to Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from portkeeper.classifier import classify_process
from portkeeper.exceptions import ScanFailed
from portkeeper.models import PortInfo, RawListenerRecord, TerminationOutcome, TerminationResult
from portkeeper.sources import SnapshotSource


def make_port(port, pid, process_name="node", address="*", command=None):
    command = command or process_name
    return PortInfo(
        port=port,
        pid=pid,
        process_name=process_name,
        command=command,
        address=address,
        process_type=classify_process(process_name, command),
    )


def make_record(port, pid, process_name="node", address="*"):
    return RawListenerRecord(
        process_name=process_name,
        pid=str(pid),
        user="dev",
        fd="12u",
        address=address,
        port=str(port),
        command=process_name,
    )


class FakeSource(SnapshotSource):
    """Returns queued batches of records; the last batch repeats"""

    name = "fake"

    def __init__(self, *batches):
        self.batches = list(batches) or [[]]
        self.calls = 0
        self.gate = None

    def block(self):
        """Make fetch wait until release() is called"""
        self.gate = threading.Event()

    def release(self):
        if self.gate is not None:
            self.gate.set()

    def fetch(self):
        self.calls += 1
        if self.gate is not None:
            self.gate.wait(timeout=5)
        batch = self.batches.pop(0) if len(self.batches) > 1 else self.batches[0]
        if isinstance(batch, Exception):
            raise batch
        return list(batch)


class FakeTerminator:
    """Records termination requests instead of signalling processes"""

    def __init__(self, outcome=TerminationOutcome.SUCCESS):
        self.outcome = outcome
        self.calls = []

    def _result(self, pid, force):
        self.calls.append((pid, force))
        return TerminationResult(pid=pid, signal="SIGKILL" if force else "SIGTERM", outcome=self.outcome)

    def terminate(self, pid, force=False):
        return self._result(pid, force)

    def kill_port(self, port_info, force=False):
        return self._result(port_info.pid, force)

    async def terminate_async(self, pid, force=False, escalate=None):
        return self._result(pid, force)


@pytest.fixture
def sample_ports():
    return [
        make_port(3000, 101, "node"),
        make_port(5432, 202, "postgres"),
        make_port(80, 10, "nginx"),
        make_port(80, 11, "nginx", address="127.0.0.1"),
        make_port(8080, 303, "java"),
    ]


@pytest.fixture
def scan_failure():
    return ScanFailed("lsof failed (exit code 1): permission denied")
