"""
Error taxonomy for PortKeeper

None of these are fatal to the process: scans degrade to stale data,
terminations and tunnel teardown report their failures to the caller.
"""

from typing import List, Optional, Tuple


class PortKeeperError(Exception):
    """Base class for all PortKeeper errors"""


class ScanFailed(PortKeeperError):
    """The OS listener query was unavailable, failed or timed out"""


class MalformedRecord(PortKeeperError):
    """A single raw listener record could not be normalized"""


class PermissionDenied(PortKeeperError):
    """The caller has no rights over the target process"""

    def __init__(self, pid: int, message: Optional[str] = None):
        self.pid = pid
        super().__init__(message or f"Permission denied for process {pid}")


class NoSuchProcess(PortKeeperError):
    """The target pid no longer exists"""

    def __init__(self, pid: int, message: Optional[str] = None):
        self.pid = pid
        super().__init__(message or f"Process {pid} no longer exists")


class NotificationDeliveryFailed(PortKeeperError):
    """A notification backend could not deliver a message"""


class TunnelStopFailed(PortKeeperError):
    """One or more tunnels could not be stopped"""

    def __init__(self, failures: List[Tuple[str, str]]):
        self.failures = failures
        details = ", ".join(f"{tunnel_id}: {error}" for tunnel_id, error in failures)
        super().__init__(f"Failed to stop {len(failures)} tunnel(s): {details}")
