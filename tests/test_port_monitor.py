"""
Tests for the scan loop coordinator
"""

import asyncio

from conftest import FakeSource, FakeTerminator, make_record

from portkeeper.exceptions import ScanFailed
from portkeeper.models import WatchDirection
from portkeeper.notifier import CallbackNotifier, NotificationDispatcher
from portkeeper.port_monitor import PortMonitor
from portkeeper.state import AppState
from portkeeper.tunnels import TunnelManager


def build_monitor(source, **kwargs):
    received = []
    dispatcher = NotificationDispatcher([CallbackNotifier(received.append)])
    monitor = PortMonitor(
        state=AppState(),
        source=source,
        terminator=kwargs.pop("terminator", FakeTerminator()),
        tunnel_manager=TunnelManager(),
        dispatcher=dispatcher,
        **kwargs
    )
    return monitor, received


async def wait_until(condition, timeout=2.0):
    loop = asyncio.get_event_loop()
    deadline = loop.time() + timeout
    while not condition():
        if loop.time() > deadline:
            return False
        await asyncio.sleep(0.01)
    return True


def test_scan_applies_snapshot():
    source = FakeSource([make_record(3000, 101), make_record(5432, 202, "postgres")])
    monitor, _ = build_monitor(source)

    assert asyncio.run(monitor.scan_once()) is True
    assert [p.port for p in monitor.state.ports] == [3000, 5432]
    assert monitor.scans_completed == 1
    assert monitor.state.view.last_scan_at is not None


def test_failed_scan_keeps_previous_snapshot():
    source = FakeSource([make_record(3000, 101)], ScanFailed("lsof not found"), [make_record(8080, 303)])
    monitor, _ = build_monitor(source)

    async def two_scans():
        first = await monitor.scan_once()
        second = await monitor.scan_once()
        return first, second, monitor.state.ports, monitor.state.last_error

    first, second, ports, error = asyncio.run(two_scans())
    assert (first, second) == (True, False)
    assert [p.port for p in ports] == [3000]
    assert "lsof not found" in error
    assert monitor.consecutive_failures == 1

    assert asyncio.run(monitor.scan_once()) is True
    assert [p.port for p in monitor.state.ports] == [8080]
    assert monitor.state.last_error is None
    assert monitor.consecutive_failures == 0


def test_unusable_records_count_as_failed_scan():
    source = FakeSource([make_record(3000, 101)], [make_record(0, 0)])
    monitor, _ = build_monitor(source)

    async def scenario():
        await monitor.scan_once()
        return await monitor.scan_once()

    assert asyncio.run(scenario()) is False
    assert [p.port for p in monitor.state.ports] == [3000]
    assert monitor.scans_failed == 1


def test_overlapping_scans_are_coalesced():
    source = FakeSource([make_record(3000, 101)])
    source.block()
    monitor, _ = build_monitor(source)

    async def scenario():
        first = asyncio.ensure_future(monitor.scan_once())
        await wait_until(lambda: monitor.scan_in_flight)
        second = await monitor.scan_once()
        source.release()
        return await first, second

    assert asyncio.run(scenario()) == (True, False)
    assert source.calls == 1
    assert monitor.scans_skipped == 1


def test_scan_timeout_is_failure_and_blocks_next_scan():
    source = FakeSource([make_record(3000, 101)])
    source.block()
    monitor, _ = build_monitor(source, scan_timeout=0.05)

    async def scenario():
        timed_out = await monitor.scan_once()
        skipped = await monitor.scan_once()
        source.release()
        await wait_until(lambda: not monitor.scan_in_flight)
        return timed_out, skipped

    assert asyncio.run(scenario()) == (False, False)
    assert "timed out" in monitor.state.last_error
    assert monitor.scans_skipped == 1
    assert monitor.state.ports == ()


def test_watched_port_disappearing_dispatches_event():
    source = FakeSource(
        [make_record(3000, 101), make_record(8080, 303, "java")],
        [make_record(8080, 303, "java")],
    )
    monitor, received = build_monitor(source)
    monitor.toggle_watch(3000)
    listened = []
    monitor.add_event_listener(listened.append)

    async def scenario():
        await monitor.scan_once()
        await monitor.scan_once()
        return await wait_until(lambda: received)

    assert asyncio.run(scenario())
    assert [(e.port, e.direction) for e in listened] == [(3000, WatchDirection.DISAPPEARED)]
    assert received[0].process_name == "node"


def test_notify_flags_suppress_dispatch_but_not_listeners():
    source = FakeSource([], [make_record(3000, 101)])
    monitor, received = build_monitor(source)
    monitor.toggle_watch(3000, notify_on_start=False)
    listened = []
    monitor.add_event_listener(listened.append)

    async def scenario():
        await monitor.scan_once()
        await monitor.scan_once()
        await asyncio.sleep(0.05)

    asyncio.run(scenario())
    assert [e.direction for e in listened] == [WatchDirection.APPEARED]
    assert received == []


def test_kill_port_does_not_touch_state():
    source = FakeSource([make_record(3000, 999)])
    terminator = FakeTerminator()
    monitor, _ = build_monitor(source, terminator=terminator)

    async def scenario():
        await monitor.scan_once()
        return await monitor.kill_port(monitor.state.ports[0], force=True, refresh=False)

    result = asyncio.run(scenario())
    assert result.pid == 999
    assert terminator.calls == [(999, True)]
    assert [p.pid for p in monitor.state.ports] == [999]


def test_kill_all_targets_distinct_filtered_pids():
    source = FakeSource([make_record(80, 10, "nginx"), make_record(443, 10, "nginx"), make_record(3000, 20)])
    terminator = FakeTerminator()
    monitor, _ = build_monitor(source, terminator=terminator)

    async def scenario():
        await monitor.scan_once()
        return await monitor.kill_all()

    results = asyncio.run(scenario())
    assert [r.pid for r in results] == [10, 20]
    assert terminator.calls == [(10, False), (20, False)]


def test_start_and_shutdown():
    source = FakeSource([make_record(3000, 101)])
    monitor, _ = build_monitor(source, interval=60)

    class Tunnel:
        id = "t1"
        stopped = False

        def stop(self):
            Tunnel.stopped = True

    monitor.tunnel_manager.register(Tunnel())

    async def scenario():
        await monitor.start_monitoring()
        status = monitor.get_monitoring_status()
        report = await monitor.shutdown(timeout=1)
        return status, report

    status, report = asyncio.run(scenario())
    assert status["running"] is True
    assert status["scans_completed"] == 1
    assert status["tunnels"] == 1
    assert report.ok
    assert Tunnel.stopped
    assert monitor.running is False
    assert monitor.periodic_callback is None
