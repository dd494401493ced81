"""
Process grouping

Groups a snapshot by owning pid and flags clustered workers: pids that share
a (process name, port) pair with each other, such as nginx or gunicorn
workers all bound to the same port.
"""

import logging
import threading
from collections import defaultdict
from typing import Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from .models import PortInfo, ProcessGroup

logger = logging.getLogger(__name__)


def _port_order(port_info: PortInfo):
    return (port_info.port, port_info.address, port_info.fd, port_info.process_name, port_info.command)


def group_by_process(ports: Iterable[PortInfo]) -> List[ProcessGroup]:
    """
    Build one ProcessGroup per pid

    The result depends only on the set of ports given, never on their order:
    ports inside a group are deduplicated after sorting, and groups are sorted
    by case-insensitive process name with the pid as tie-break.
    """
    by_pid: Dict[int, List[PortInfo]] = defaultdict(list)
    for port_info in ports:
        by_pid[port_info.pid].append(port_info)

    unique_by_pid: Dict[int, List[PortInfo]] = {}
    for pid, pid_ports in by_pid.items():
        unique = []
        seen: Set[Tuple[int, str]] = set()
        for port_info in sorted(pid_ports, key=_port_order):
            key = (port_info.port, port_info.address)
            if key in seen:
                continue
            seen.add(key)
            unique.append(port_info)
        unique_by_pid[pid] = unique

    # (process name, port) -> pids listening there under that name
    index: Dict[Tuple[str, int], Set[int]] = defaultdict(set)
    for pid, pid_ports in unique_by_pid.items():
        for port_info in pid_ports:
            index[(port_info.process_name, port_info.port)].add(pid)

    groups = []
    for pid, pid_ports in unique_by_pid.items():
        process_name = pid_ports[0].process_name if pid_ports else "Unknown"
        related = {pid}
        for port_info in pid_ports:
            related.update(index.get((process_name, port_info.port), ()))

        groups.append(ProcessGroup(
            id=pid,
            process_name=process_name,
            ports=pid_ports,
            related_pids=frozenset(related),
        ))

    groups.sort(key=lambda g: (g.process_name.casefold(), g.process_name, g.id))
    return groups


class GroupCache:
    """Caches the last grouping and recomputes only when its input changes"""

    def __init__(self):
        self._lock = threading.Lock()
        self._key: Optional[FrozenSet[str]] = None
        self._groups: List[ProcessGroup] = []
        self.computations = 0

    def get(self, ports: Iterable[PortInfo]) -> List[ProcessGroup]:
        ports = list(ports)
        # Port ids embed the pid, so any change to the pid set changes the key
        key = frozenset(p.id for p in ports)

        with self._lock:
            if key == self._key:
                return self._groups

            self._groups = group_by_process(ports)
            self._key = key
            self.computations += 1
            logger.debug(f"Recomputed {len(self._groups)} process groups")
            return self._groups
