"""
Watched port diffing

Only port-number presence matters: a process restarting on the same port
with a new pid produces no event. Ports that are not watched are ignored.
"""

import logging
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional

from .models import PortInfo, WatchDirection, WatchEvent, WatchedPort

logger = logging.getLogger(__name__)


class WatchState(str, Enum):
    """Watch engine state"""
    IDLE = "idle"
    WATCHING = "watching"


def diff_watched(previous: Iterable[int], current: Iterable[int],
                 watched: Iterable[int]) -> List[WatchEvent]:
    """Compare port-number presence across two snapshots for the watched ports"""
    previous = set(previous)
    current = set(current)
    events = []

    for port in sorted(set(watched)):
        was_present = port in previous
        is_present = port in current
        if not was_present and is_present:
            events.append(WatchEvent(port=port, direction=WatchDirection.APPEARED))
        elif was_present and not is_present:
            events.append(WatchEvent(port=port, direction=WatchDirection.DISAPPEARED))

    return events


class WatchDiffEngine:
    """Keeps the previous snapshot and emits events for watched ports"""

    def __init__(self):
        self.state = WatchState.IDLE
        self._previous: Optional[FrozenSet[int]] = None
        self._previous_owners: Dict[int, str] = {}

    def update_watch_set(self, watched: Iterable[int]) -> WatchState:
        new_state = WatchState.WATCHING if set(watched) else WatchState.IDLE
        if new_state != self.state:
            logger.info(f"Watch engine {self.state.value} -> {new_state.value}")
            self.state = new_state
        return self.state

    def observe(self, ports: Iterable[PortInfo],
                watched: Mapping[int, WatchedPort]) -> List[WatchEvent]:
        """
        Record a new snapshot and return the watch events it produced

        The first snapshot only sets the baseline. Failed scans must not be
        passed here so the baseline stays at the last good snapshot.
        """
        owners: Dict[int, str] = {}
        for port_info in sorted(ports, key=lambda p: (p.port, p.pid)):
            owners.setdefault(port_info.port, port_info.process_name)
        current = frozenset(owners)

        self.update_watch_set(watched.keys())

        events = []
        if self._previous is not None and self.state == WatchState.WATCHING:
            for event in diff_watched(self._previous, current, watched.keys()):
                if event.direction == WatchDirection.APPEARED:
                    event.process_name = owners.get(event.port)
                else:
                    event.process_name = self._previous_owners.get(event.port)
                events.append(event)

        self._previous = current
        self._previous_owners = owners
        return events
