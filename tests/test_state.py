"""
Tests for the application state store
"""

import pytest

from conftest import make_port

from portkeeper.models import PortFilter, Preferences, ProcessType, SidebarItem, SidebarKind, WatchedPort
from portkeeper.state import CHANGE_FAVORITES, CHANGE_SCAN, AppState


def test_initial_state_from_preferences():
    state = AppState(Preferences(favorites={3000}, watched_ports=[WatchedPort(port=5432)], use_tree_view=True))
    assert state.is_favorite(3000)
    assert state.is_watching(5432)
    assert state.use_tree_view
    assert state.ports == ()


def test_failed_scan_keeps_last_snapshot(sample_ports, scan_failure):
    state = AppState()
    state.apply_scan(sample_ports)
    state.record_scan_failure(scan_failure)

    assert state.ports == tuple(sample_ports)
    assert "permission denied" in state.last_error

    state.apply_scan(sample_ports[:1])
    assert state.last_error is None


def test_toggle_favorite():
    state = AppState()
    assert state.toggle_favorite(3000) is True
    assert state.is_favorite(3000)
    assert state.toggle_favorite(3000) is False
    assert not state.is_favorite(3000)


def test_toggle_watch_keeps_notify_flags():
    state = AppState()
    assert state.toggle_watch(3000, notify_on_start=False) is True
    assert state.watched_ports[3000].notify_on_start is False
    assert state.watched_ports[3000].notify_on_stop is True
    assert state.toggle_watch(3000) is False


@pytest.mark.parametrize("port", [0, -1, 65536])
def test_toggles_reject_invalid_ports(port):
    state = AppState()
    with pytest.raises(ValueError):
        state.toggle_favorite(port)
    with pytest.raises(ValueError):
        state.toggle_watch(port)


def test_favorites_sort_first(sample_ports):
    state = AppState()
    state.apply_scan(sample_ports)
    state.toggle_favorite(8080)
    assert state.filtered_ports[0].port == 8080
    assert [p.port for p in state.filtered_ports[1:]] == [80, 80, 3000, 5432]


def test_filter_by_range_and_search(sample_ports):
    state = AppState()
    state.apply_scan(sample_ports)

    state.set_filter(PortFilter(min_port=1000, max_port=6000))
    assert {p.port for p in state.filtered_ports} == {3000, 5432}

    state.update_filter(search_text="post")
    assert [p.port for p in state.filtered_ports] == [5432]

    state.reset_filter()
    assert len(state.filtered_ports) == len(sample_ports)
    assert not state.filter.is_active


def test_filter_copy_does_not_mutate_state(sample_ports):
    state = AppState()
    state.apply_scan(sample_ports)
    state.set_filter(PortFilter(search_text="node"))

    port_filter = state.filter
    port_filter.reset()
    assert state.filter.search_text == "node"


def test_invalid_filter_bounds_rejected():
    with pytest.raises(ValueError):
        PortFilter(min_port=9000, max_port=80)


def test_sidebar_selection(sample_ports):
    state = AppState()
    state.apply_scan(sample_ports)

    state.select_sidebar(SidebarItem(kind=SidebarKind.PROCESS_TYPE, process_type=ProcessType.WEB_SERVER))
    assert {p.process_name for p in state.filtered_ports} == {"nginx"}

    state.toggle_watch(5432)
    state.select_sidebar(SidebarItem(kind=SidebarKind.WATCHED))
    assert [p.port for p in state.filtered_ports] == [5432]


def test_selection_cleared_when_port_disappears(sample_ports):
    state = AppState()
    state.apply_scan(sample_ports)
    selected = sample_ports[0]
    state.select_port(selected.id)
    assert state.selected_port == selected

    state.apply_scan(sample_ports[1:])
    assert state.selected_port_id is None


def test_subscribers_receive_changes_and_errors_are_contained(sample_ports):
    state = AppState()
    seen = []

    def broken(change, view):
        raise RuntimeError("subscriber bug")

    state.subscribe(broken)
    state.subscribe(lambda change, view: seen.append((change, view.version)))

    state.apply_scan(sample_ports)
    state.toggle_favorite(80)

    assert seen == [(CHANGE_SCAN, 1), (CHANGE_FAVORITES, 2)]


def test_views_are_immutable_snapshots(sample_ports):
    state = AppState()
    before = state.view
    state.apply_scan(sample_ports)
    assert before.ports == ()
    assert state.view.version == before.version + 1


def test_groups_follow_filtered_view(sample_ports):
    state = AppState()
    state.apply_scan(sample_ports)
    state.set_filter(PortFilter(search_text="nginx"))
    groups = state.groups()
    assert {g.id for g in groups} == {10, 11}


def test_category_counts(sample_ports):
    state = AppState()
    state.apply_scan(sample_ports)
    state.toggle_favorite(3000)
    counts = state.category_counts()
    assert counts["all"] == 5
    assert counts["favorites"] == 1
    assert counts["web_server"] == 2
    assert counts["database"] == 1
    assert counts["development"] == 2


def test_preferences_round_trip():
    state = AppState()
    state.toggle_favorite(3000)
    state.toggle_watch(8080, notify_on_stop=False)
    state.set_use_tree_view(True)
    prefs = state.preferences()
    assert prefs.favorites == {3000}
    assert prefs.watched_ports == [WatchedPort(port=8080, notify_on_stop=False)]
    assert prefs.use_tree_view


def test_watched_ports_sort_after_favorites(sample_ports):
    state = AppState()
    state.apply_scan(sample_ports)
    state.toggle_watch(5432)
    state.toggle_favorite(8080)
    assert [p.port for p in state.filtered_ports] == [8080, 5432, 80, 80, 3000]
