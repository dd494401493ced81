"""
Port-forwarding tunnel management

Tunnels are opaque handles with a ``stop()`` method (plain or coroutine).
The manager guarantees they are all torn down at shutdown, collecting
failures instead of letting one stuck tunnel block the others.
"""

import asyncio
import inspect
import logging
import shlex
import subprocess
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from .exceptions import TunnelStopFailed

logger = logging.getLogger(__name__)


class ProcessTunnel:
    """A tunnel backed by a forwarding subprocess (ssh, cloudflared, ...)"""

    def __init__(self, port: int, command: List[str], stop_timeout: float = 5.0):
        self.id = uuid.uuid4().hex[:12]
        self.port = port
        self.command = command
        self.stop_timeout = stop_timeout
        self.created_at = datetime.now()
        self.process: Optional[subprocess.Popen] = None

    def start(self):
        self.process = subprocess.Popen(
            self.command,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
        logger.info(f"Started tunnel {self.id} for port {self.port} (pid {self.process.pid})")
        return self

    @property
    def is_running(self) -> bool:
        return self.process is not None and self.process.poll() is None

    def stop(self):
        """Terminate the forwarding process, escalating to kill after stop_timeout"""
        if not self.is_running:
            return

        self.process.terminate()
        try:
            self.process.wait(timeout=self.stop_timeout)
        except subprocess.TimeoutExpired:
            logger.warning(f"Tunnel {self.id} did not exit after {self.stop_timeout}s, killing it")
            self.process.kill()
            self.process.wait(timeout=self.stop_timeout)

        logger.info(f"Stopped tunnel {self.id} for port {self.port}")

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'port': self.port,
            'command': " ".join(self.command),
            'pid': self.process.pid if self.process else None,
            'running': self.is_running,
            'created_at': self.created_at.isoformat(),
        }


@dataclass
class TunnelStopReport:
    """Aggregate result of stopping a batch of tunnels"""
    stopped: List[str] = field(default_factory=list)
    failures: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def raise_for_failures(self):
        if self.failures:
            raise TunnelStopFailed(self.failures)


def run_detached(func, name: Optional[str] = None) -> asyncio.Future:
    """
    Run a blocking call on a daemon thread and return a future for its result

    Unlike the default executor, a call that never returns does not keep the
    interpreter alive at exit, so a timeout around the future bounds shutdown.
    """
    loop = asyncio.get_event_loop()
    future = loop.create_future()

    def resolve(result, error):
        if future.done():
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(result)

    def target():
        result, error = None, None
        try:
            result = func()
        except Exception as e:
            error = e
        try:
            loop.call_soon_threadsafe(resolve, result, error)
        except RuntimeError:
            # Loop closed while the call was still running; nobody awaits the result
            logger.debug(f"Discarding result of {name or func!r}: event loop closed")

    threading.Thread(target=target, name=name, daemon=True).start()
    return future


def tunnel_id(tunnel) -> str:
    return str(getattr(tunnel, "id", None) or id(tunnel))


class TunnelManager:
    """Tracks live tunnels and stops them on shutdown"""

    def __init__(self):
        self.tunnels: Dict[str, object] = {}

    def register(self, tunnel) -> str:
        key = tunnel_id(tunnel)
        self.tunnels[key] = tunnel
        logger.info(f"Registered tunnel {key}")
        return key

    def get(self, key: str):
        return self.tunnels.get(key)

    def list_tunnels(self) -> List[object]:
        return list(self.tunnels.values())

    def open(self, port: int, command_template: str) -> ProcessTunnel:
        """Start and register a subprocess tunnel; {port} in the template is substituted"""
        if not command_template or not command_template.strip():
            raise ValueError("No tunnel command configured")
        command = shlex.split(command_template.format(port=port))
        tunnel = ProcessTunnel(port, command).start()
        self.register(tunnel)
        return tunnel

    async def stop(self, tunnel):
        """Stop one tunnel; raises TunnelStopFailed if it could not be stopped"""
        key = tunnel_id(tunnel)
        try:
            if inspect.iscoroutinefunction(tunnel.stop):
                await tunnel.stop()
            else:
                result = await run_detached(tunnel.stop, name=f"tunnel-stop-{key}")
                if inspect.isawaitable(result):
                    await result
        except Exception as e:
            logger.error(f"Failed to stop tunnel {key}: {e}")
            raise TunnelStopFailed([(key, str(e))])

        # A tunnel that failed to stop stays registered so stop_all retries it
        self.tunnels.pop(key, None)

    async def stop_all(self, timeout: float = 5.0) -> TunnelStopReport:
        """
        Stop every registered tunnel concurrently

        Idempotent: stopped tunnels are unregistered, so a second call is a
        no-op. Tunnels still stopping when ``timeout`` expires are reported
        as failed so shutdown can proceed.
        """
        report = TunnelStopReport()
        if not self.tunnels:
            return report

        pending = dict(self.tunnels)
        self.tunnels.clear()
        logger.info(f"Stopping {len(pending)} tunnel(s)")

        tasks = {key: asyncio.ensure_future(self.stop(tunnel)) for key, tunnel in pending.items()}
        done, not_done = await asyncio.wait(list(tasks.values()), timeout=timeout)

        for key, task in tasks.items():
            if task in not_done:
                task.cancel()
                report.failures.append((key, f"timed out after {timeout}s"))
            elif task.exception() is not None:
                error = task.exception()
                if isinstance(error, TunnelStopFailed):
                    report.failures.extend(error.failures)
                else:
                    report.failures.append((key, str(error)))
            else:
                report.stopped.append(key)

        if report.failures:
            logger.error(f"Failed to stop {len(report.failures)} tunnel(s): {report.failures}")
        else:
            logger.info(f"All {len(report.stopped)} tunnel(s) stopped")
        return report
