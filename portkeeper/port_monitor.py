"""
Port monitoring coordinator

Drives periodic scans, applies their results to the state store, diffs the
watch list and dispatches notifications. Also the entry point for user
commands that act on processes (kill) and for shutdown.
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional

from tornado.ioloop import PeriodicCallback

from .exceptions import ScanFailed
from .logger import ScanLogger
from .models import PortInfo, TerminationResult, WatchEvent
from .notifier import NotificationDispatcher
from .parser import parse_records
from .sources import SnapshotSource, create_source
from .state import AppState
from .terminator import ProcessTerminator
from .tunnels import TunnelManager, TunnelStopReport
from .watch import WatchDiffEngine

logger = logging.getLogger(__name__)


def _consume_result(future):
    # Retrieve the outcome of a fetch abandoned by timeout so it is not reported as unhandled
    if not future.cancelled():
        future.exception()


class PortMonitor:
    """Scans listening ports on a timer and keeps AppState current"""

    def __init__(self, state: Optional[AppState] = None,
                 source: Optional[SnapshotSource] = None,
                 terminator: Optional[ProcessTerminator] = None,
                 tunnel_manager: Optional[TunnelManager] = None,
                 dispatcher: Optional[NotificationDispatcher] = None,
                 interval: float = 5.0,
                 scan_timeout: float = 10.0,
                 tunnel_command: str = ""):
        self.logger = logging.getLogger(__name__)
        self.scan_logger = ScanLogger()
        self.state = state or AppState()
        self.source = source or create_source("auto", timeout=scan_timeout)
        self.terminator = terminator or ProcessTerminator()
        self.tunnel_manager = tunnel_manager or TunnelManager()
        self.dispatcher = dispatcher or NotificationDispatcher()
        self.watch_engine = WatchDiffEngine()
        self.interval = interval
        self.scan_timeout = scan_timeout
        self.tunnel_command = tunnel_command

        self.running = False
        self.periodic_callback: Optional[PeriodicCallback] = None
        self._fetch_future: Optional[asyncio.Future] = None
        self._tasks = set()
        self._event_listeners: List[Callable[[WatchEvent], None]] = []

        self.scans_completed = 0
        self.scans_failed = 0
        self.scans_skipped = 0
        self.consecutive_failures = 0
        self.last_scan_duration: Optional[float] = None

    # Scanning

    @property
    def scan_in_flight(self) -> bool:
        return self._fetch_future is not None and not self._fetch_future.done()

    async def scan_once(self) -> bool:
        """
        Run one scan cycle

        Returns False when the scan was skipped because another one is still
        running, or when it failed; in both cases the state keeps its last
        good snapshot.
        """
        if self.scan_in_flight:
            self.scans_skipped += 1
            self.scan_logger.log_scan_skipped()
            return False

        loop = asyncio.get_event_loop()
        started = loop.time()
        self._fetch_future = loop.run_in_executor(None, self.source.fetch)
        self._fetch_future.add_done_callback(_consume_result)

        try:
            try:
                records = await asyncio.wait_for(asyncio.shield(self._fetch_future), self.scan_timeout)
            except asyncio.TimeoutError:
                raise ScanFailed(f"{self.source.name} query timed out after {self.scan_timeout}s")

            result = parse_records(records)
            if result.scan_failed:
                raise ScanFailed(f"{self.source.name} returned no usable listener records")

        except ScanFailed as e:
            self._record_failure(e)
            return False
        except Exception as e:
            self._record_failure(ScanFailed(f"{self.source.name} query failed: {e}"))
            return False

        self.last_scan_duration = loop.time() - started
        if self.consecutive_failures:
            self.scan_logger.log_scan_recovered(self.consecutive_failures)
            self.consecutive_failures = 0

        view = self.state.apply_scan(result.ports)
        self.scans_completed += 1
        self.logger.debug(
            f"Scan found {len(result.ports)} listener(s) "
            f"({result.skipped} skipped, {result.duplicates} duplicate(s)) in {self.last_scan_duration:.3f}s"
        )

        events = self.watch_engine.observe(view.ports, view.watched_ports)
        if events:
            self._dispatch_events(events, view.watched_ports)
        return True

    def _record_failure(self, error: ScanFailed):
        self.scans_failed += 1
        self.consecutive_failures += 1
        self.scan_logger.log_scan_failed(error, self.consecutive_failures)
        self.state.record_scan_failure(error)

    def _dispatch_events(self, events: List[WatchEvent], watched_ports):
        loop = asyncio.get_event_loop()
        for event in events:
            self.scan_logger.log_watch_event(event)

            for listener in list(self._event_listeners):
                try:
                    listener(event)
                except Exception as e:
                    self.logger.error(f"Watch event listener failed: {e}")

            watched = watched_ports.get(event.port)
            if watched is not None and not watched.wants(event.direction):
                continue
            # Fire and forget: dispatch never raises and its outcome is only logged
            loop.run_in_executor(None, self.dispatcher.dispatch, event)

    def add_event_listener(self, listener: Callable[[WatchEvent], None]):
        """Register a callback for every watch event, regardless of notification settings"""
        self._event_listeners.append(listener)

    def _tick(self):
        task = asyncio.ensure_future(self.scan_once())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def start_monitoring(self):
        """Run a first scan and start the periodic scan timer"""
        if self.running:
            return

        self.running = True
        self.logger.info(f"Starting port monitoring (source: {self.source.name}, interval: {self.interval}s)")

        self.periodic_callback = PeriodicCallback(self._tick, self.interval * 1000)
        self.periodic_callback.start()
        await self.scan_once()

    async def stop_monitoring(self):
        """Stop the scan timer and wait for an in-flight scan to settle"""
        self.running = False
        if self.periodic_callback:
            self.periodic_callback.stop()
            self.periodic_callback = None

        for task in list(self._tasks):
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        self.logger.info("Port monitoring stopped")

    async def refresh(self) -> bool:
        """Request an immediate scan; coalesced with a scan already running"""
        return await self.scan_once()

    # Commands

    def toggle_favorite(self, port: int) -> bool:
        return self.state.toggle_favorite(port)

    def toggle_watch(self, port: int, notify_on_start: bool = True, notify_on_stop: bool = True) -> bool:
        watching = self.state.toggle_watch(port, notify_on_start, notify_on_stop)
        self.scan_logger.log_watch_toggled(port, watching)
        self.watch_engine.update_watch_set(self.state.watched_ports.keys())
        return watching

    async def kill_port(self, port_info: PortInfo, force: bool = False,
                        refresh: bool = True) -> TerminationResult:
        """
        Terminate the owner of a listening port

        The state is not modified here; the follow-up scan decides whether
        the process is really gone.
        """
        loop = asyncio.get_event_loop()
        result = await loop.run_in_executor(None, self.terminator.kill_port, port_info, force)
        if refresh:
            await self.refresh()
        return result

    async def kill_pid(self, pid: int, force: bool = False, refresh: bool = True) -> TerminationResult:
        result = await self.terminator.terminate_async(pid, force)
        if refresh:
            await self.refresh()
        return result

    async def kill_all(self, force: bool = False) -> List[TerminationResult]:
        """Terminate every distinct process in the filtered view"""
        pids = sorted({p.pid for p in self.state.filtered_ports})
        self.logger.info(f"Terminating {len(pids)} process(es) from the current view")

        results = []
        for pid in pids:
            results.append(await self.terminator.terminate_async(pid, force))
        await self.refresh()
        return results

    def open_tunnel(self, port: int):
        return self.tunnel_manager.open(port, self.tunnel_command)

    async def shutdown(self, timeout: float = 5.0) -> TunnelStopReport:
        """Stop scanning and tear down every tunnel, bounded by timeout"""
        await self.stop_monitoring()
        report = await self.tunnel_manager.stop_all(timeout=timeout)
        if not report.ok:
            self.logger.error(f"Shutdown left {len(report.failures)} tunnel(s) not cleanly stopped")
        return report

    def get_monitoring_status(self) -> Dict:
        """Get status of the scan loop"""
        view = self.state.view
        return {
            'running': self.running,
            'source': self.source.name,
            'interval': self.interval,
            'scan_timeout': self.scan_timeout,
            'scan_in_flight': self.scan_in_flight,
            'scans_completed': self.scans_completed,
            'scans_failed': self.scans_failed,
            'scans_skipped': self.scans_skipped,
            'consecutive_failures': self.consecutive_failures,
            'last_scan_duration': self.last_scan_duration,
            'last_scan_at': view.last_scan_at.isoformat() if view.last_scan_at else None,
            'last_error': view.last_error,
            'watch_state': self.watch_engine.state.value,
            'tunnels': len(self.tunnel_manager.tunnels),
            'notifications_delivered': self.dispatcher.delivered,
            'notifications_dropped': self.dispatcher.dropped,
            'timestamp': datetime.now().isoformat(),
        }
