"""
Process termination

Graceful requests send SIGTERM and forceful ones send SIGKILL; neither waits
for the process to exit. Termination never touches the state store: whether
the process actually went away is decided by the next scan.
"""

import asyncio
import logging
import os
from typing import Optional

import psutil

from .exceptions import NoSuchProcess, PermissionDenied
from .logger import TerminationLogger
from .models import PortInfo, TerminationOutcome, TerminationResult

logger = logging.getLogger(__name__)


SIGNAL_GRACEFUL = "SIGTERM"
SIGNAL_FORCEFUL = "SIGKILL"


def signal_process(pid: int, force: bool = False):
    """Send SIGTERM or SIGKILL to pid; raises NoSuchProcess or PermissionDenied"""
    try:
        process = psutil.Process(pid)
        if force:
            process.kill()
        else:
            process.terminate()
    except psutil.NoSuchProcess:
        raise NoSuchProcess(pid)
    except psutil.AccessDenied:
        raise PermissionDenied(pid, f"Access denied when signalling process {pid}")


class ProcessTerminator:
    """Sends termination signals to processes by pid"""

    def __init__(self):
        self.termination_logger = TerminationLogger()

    def terminate(self, pid: int, force: bool = False) -> TerminationResult:
        """Send SIGTERM (or SIGKILL when force is set) to pid"""
        signal_name = SIGNAL_FORCEFUL if force else SIGNAL_GRACEFUL
        self.termination_logger.log_request(pid, signal_name)

        result = self._send(pid, force)
        self.termination_logger.log_result(result)
        return result

    def _send(self, pid: int, force: bool) -> TerminationResult:
        signal_name = SIGNAL_FORCEFUL if force else SIGNAL_GRACEFUL

        if pid <= 0:
            return TerminationResult(pid=pid, signal=signal_name, outcome=TerminationOutcome.ERROR,
                                     message=f"Invalid pid {pid}")
        if pid == os.getpid():
            return TerminationResult(pid=pid, signal=signal_name, outcome=TerminationOutcome.ERROR,
                                     message="Refusing to terminate PortKeeper itself")

        try:
            signal_process(pid, force)
            return TerminationResult(pid=pid, signal=signal_name, outcome=TerminationOutcome.SUCCESS)

        except NoSuchProcess as e:
            return TerminationResult(pid=pid, signal=signal_name, outcome=TerminationOutcome.NO_SUCH_PROCESS,
                                     message=str(e))
        except PermissionDenied as e:
            return TerminationResult(pid=pid, signal=signal_name, outcome=TerminationOutcome.PERMISSION_DENIED,
                                     message=str(e))
        except (psutil.Error, OSError) as e:
            return TerminationResult(pid=pid, signal=signal_name, outcome=TerminationOutcome.ERROR,
                                     message=str(e))

    def kill_port(self, port_info: PortInfo, force: bool = False) -> TerminationResult:
        """Terminate the process owning a listening port"""
        self.termination_logger.log_request(
            port_info.pid, SIGNAL_FORCEFUL if force else SIGNAL_GRACEFUL, port_info.port
        )
        result = self._send(port_info.pid, force)
        self.termination_logger.log_result(result)
        return result

    def terminate_with_escalation(self, pid: int, grace_period: float = 5.0) -> TerminationResult:
        """Send SIGTERM, wait up to grace_period, then SIGKILL if still alive"""
        result = self.terminate(pid)
        if not result.ok:
            return result

        try:
            psutil.Process(pid).wait(timeout=grace_period)
            logger.info(f"Process {pid} terminated gracefully")
            return result
        except psutil.NoSuchProcess:
            return result
        except psutil.TimeoutExpired:
            logger.info(f"Process {pid} still running after {grace_period}s, escalating")
            return self.terminate(pid, force=True)

    async def terminate_async(self, pid: int, force: bool = False,
                              escalate: Optional[float] = None) -> TerminationResult:
        """Run a termination in the default executor"""
        loop = asyncio.get_event_loop()
        if escalate is not None:
            return await loop.run_in_executor(None, self.terminate_with_escalation, pid, escalate)
        return await loop.run_in_executor(None, self.terminate, pid, force)
