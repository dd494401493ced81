"""
Application state store

``AppState`` is the single source of truth for the latest snapshot and the
user's favorites, watch list, filter and selection. Every mutation builds a
new immutable ``StateView`` (including the filtered view) and swaps it in
with one assignment, so readers always see a consistent snapshot.
"""

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from types import MappingProxyType
from typing import Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from .grouping import GroupCache
from .models import (
    PortFilter,
    PortInfo,
    Preferences,
    ProcessGroup,
    ProcessType,
    SidebarItem,
    SidebarKind,
    WatchedPort,
)

logger = logging.getLogger(__name__)


# Change kinds passed to subscribers
CHANGE_SCAN = "scan"
CHANGE_SCAN_FAILED = "scan_failed"
CHANGE_FAVORITES = "favorites"
CHANGE_WATCHED = "watched"
CHANGE_FILTER = "filter"
CHANGE_SELECTION = "selection"
CHANGE_VIEW_MODE = "view_mode"

_UNSET = object()


@dataclass(frozen=True)
class StateView:
    """Immutable snapshot of the whole application state"""
    ports: Tuple[PortInfo, ...] = ()
    filtered_ports: Tuple[PortInfo, ...] = ()
    favorites: FrozenSet[int] = frozenset()
    watched_ports: Mapping[int, WatchedPort] = field(default_factory=lambda: MappingProxyType({}))
    filter: PortFilter = field(default_factory=PortFilter)
    sidebar: SidebarItem = field(default_factory=SidebarItem)
    selected_port_id: Optional[str] = None
    use_tree_view: bool = False
    last_scan_at: Optional[datetime] = None
    last_error: Optional[str] = None
    version: int = 0


def _validate_port(port: int) -> int:
    port = int(port)
    if port < 1 or port > 65535:
        raise ValueError("Port number must be between 1 and 65535")
    return port


def sidebar_matches(sidebar: SidebarItem, port_info: PortInfo,
                    favorites: FrozenSet[int], watched: Mapping[int, WatchedPort]) -> bool:
    if sidebar.kind == SidebarKind.FAVORITES:
        return port_info.port in favorites
    if sidebar.kind == SidebarKind.WATCHED:
        return port_info.port in watched
    if sidebar.kind == SidebarKind.PROCESS_TYPE:
        return port_info.process_type == sidebar.process_type
    return True


def filter_ports(view: StateView) -> Tuple[PortInfo, ...]:
    """Apply sidebar and filter to the snapshot; favorites sort first, then watched, then by port"""
    result = [
        p for p in view.ports
        if sidebar_matches(view.sidebar, p, view.favorites, view.watched_ports) and view.filter.matches(p)
    ]
    result.sort(key=lambda p: (
        p.port not in view.favorites, p.port not in view.watched_ports, p.port, p.address, p.pid
    ))
    return tuple(result)


class AppState:
    """Single-writer, multi-reader store with atomic snapshot replacement"""

    def __init__(self, preferences: Optional[Preferences] = None):
        self._lock = threading.RLock()
        self._subscribers: List[Callable[[str, StateView], None]] = []
        self._group_cache = GroupCache()

        preferences = preferences or Preferences()
        initial = StateView(
            favorites=frozenset(preferences.favorites),
            watched_ports=MappingProxyType({w.port: w for w in preferences.watched_ports}),
            use_tree_view=preferences.use_tree_view,
        )
        self._view = self._derive(initial)

    # Read API

    @property
    def view(self) -> StateView:
        return self._view

    @property
    def ports(self) -> Tuple[PortInfo, ...]:
        return self._view.ports

    @property
    def filtered_ports(self) -> Tuple[PortInfo, ...]:
        return self._view.filtered_ports

    @property
    def favorites(self) -> FrozenSet[int]:
        return self._view.favorites

    @property
    def watched_ports(self) -> Mapping[int, WatchedPort]:
        return self._view.watched_ports

    @property
    def filter(self) -> PortFilter:
        return self._view.filter.model_copy()

    @property
    def selected_port_id(self) -> Optional[str]:
        return self._view.selected_port_id

    @property
    def selected_sidebar_item(self) -> SidebarItem:
        return self._view.sidebar

    @property
    def use_tree_view(self) -> bool:
        return self._view.use_tree_view

    @property
    def last_error(self) -> Optional[str]:
        return self._view.last_error

    @property
    def selected_port(self) -> Optional[PortInfo]:
        return self.find_port(self._view.selected_port_id)

    def find_port(self, port_id: Optional[str]) -> Optional[PortInfo]:
        if not port_id:
            return None
        for port_info in self._view.ports:
            if port_info.id == port_id:
                return port_info
        return None

    def is_favorite(self, port: int) -> bool:
        return port in self._view.favorites

    def is_watching(self, port: int) -> bool:
        return port in self._view.watched_ports

    def groups(self) -> List[ProcessGroup]:
        """Process groups for the filtered view, recomputed only when it changes"""
        view = self._view
        return self._group_cache.get(view.filtered_ports)

    def category_counts(self) -> Dict[str, int]:
        """Port counts per sidebar category, over the unfiltered snapshot"""
        view = self._view
        counts = {
            'all': len(view.ports),
            'favorites': sum(1 for p in view.ports if p.port in view.favorites),
            'watched': sum(1 for p in view.ports if p.port in view.watched_ports),
        }
        for process_type in ProcessType:
            counts[process_type.value] = sum(1 for p in view.ports if p.process_type == process_type)
        return counts

    def preferences(self) -> Preferences:
        view = self._view
        return Preferences(
            favorites=set(view.favorites),
            watched_ports=[view.watched_ports[port] for port in sorted(view.watched_ports)],
            use_tree_view=view.use_tree_view,
        )

    # Subscriptions

    def subscribe(self, callback: Callable[[str, StateView], None]):
        with self._lock:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[str, StateView], None]):
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def _emit(self, change: str, view: StateView):
        for callback in list(self._subscribers):
            try:
                callback(change, view)
            except Exception as e:
                logger.error(f"State subscriber failed on {change} change: {e}")

    # Write API

    def _derive(self, view: StateView) -> StateView:
        filtered = filter_ports(view)
        selected = view.selected_port_id
        if selected and not any(p.id == selected for p in view.ports):
            selected = None
        return replace(view, filtered_ports=filtered, selected_port_id=selected)

    def _commit(self, change: str, mutate: Callable[[StateView], dict]) -> StateView:
        with self._lock:
            current = self._view
            updates = mutate(current)
            new_view = self._derive(replace(current, version=current.version + 1, **updates))
            self._view = new_view
        self._emit(change, new_view)
        return new_view

    def apply_scan(self, ports: Iterable[PortInfo]) -> StateView:
        """Replace the snapshot with the result of a successful scan"""
        ports = tuple(ports)
        return self._commit(CHANGE_SCAN, lambda view: {
            'ports': ports,
            'last_scan_at': datetime.now(),
            'last_error': None,
        })

    def record_scan_failure(self, error) -> StateView:
        """Keep the last good snapshot and remember why the scan failed"""
        return self._commit(CHANGE_SCAN_FAILED, lambda view: {'last_error': str(error)})

    def toggle_favorite(self, port: int) -> bool:
        """Toggle a favorite port; returns True if it is now a favorite"""
        port = _validate_port(port)

        def mutate(view):
            favorites = set(view.favorites)
            if port in favorites:
                favorites.discard(port)
            else:
                favorites.add(port)
            return {'favorites': frozenset(favorites)}

        return port in self._commit(CHANGE_FAVORITES, mutate).favorites

    def toggle_watch(self, port: int, notify_on_start: bool = True, notify_on_stop: bool = True) -> bool:
        """Toggle a watched port; returns True if it is now watched"""
        port = _validate_port(port)

        def mutate(view):
            watched = dict(view.watched_ports)
            if port in watched:
                del watched[port]
            else:
                watched[port] = WatchedPort(
                    port=port, notify_on_start=notify_on_start, notify_on_stop=notify_on_stop
                )
            return {'watched_ports': MappingProxyType(watched)}

        return port in self._commit(CHANGE_WATCHED, mutate).watched_ports

    def set_filter(self, port_filter: PortFilter) -> StateView:
        port_filter = port_filter.model_copy()
        return self._commit(CHANGE_FILTER, lambda view: {'filter': port_filter})

    def update_filter(self, min_port=_UNSET, max_port=_UNSET, search_text=_UNSET) -> StateView:
        """Change some filter fields, leaving the others as they are"""
        current = self._view.filter
        values = {
            'min_port': current.min_port if min_port is _UNSET else min_port,
            'max_port': current.max_port if max_port is _UNSET else max_port,
            'search_text': current.search_text if search_text is _UNSET else (search_text or ""),
        }
        return self.set_filter(PortFilter(**values))

    def reset_filter(self) -> StateView:
        return self._commit(CHANGE_FILTER, lambda view: {'filter': PortFilter()})

    def select_port(self, port_id: Optional[str]) -> StateView:
        return self._commit(CHANGE_SELECTION, lambda view: {'selected_port_id': port_id or None})

    def select_sidebar(self, item: SidebarItem) -> StateView:
        return self._commit(CHANGE_SELECTION, lambda view: {'sidebar': item})

    def set_use_tree_view(self, enabled: bool) -> StateView:
        return self._commit(CHANGE_VIEW_MODE, lambda view: {'use_tree_view': bool(enabled)})
