"""
PortKeeper - Listening Port Manager

Discovers processes listening on TCP ports and manages their lifecycle:
- Periodic port scanning with process classification
- Grouping of ports by owning process
- Favorites, watch list and start/stop notifications
- Graceful and forceful process termination
- Tunnel cleanup on shutdown
"""

__version__ = "1.0.0"
__author__ = "PortKeeper Team"

from .classifier import classify_process
from .models import PortFilter, PortInfo, ProcessGroup, ProcessType, WatchEvent, WatchedPort
from .port_monitor import PortMonitor
from .state import AppState

__all__ = [
    'AppState',
    'PortFilter',
    'PortInfo',
    'PortMonitor',
    'ProcessGroup',
    'ProcessType',
    'WatchEvent',
    'WatchedPort',
    'classify_process',
]
