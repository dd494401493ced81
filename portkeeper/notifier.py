"""
Watch event notifications

The dispatcher is fire-and-forget: a backend that fails (notifications
disabled, tool missing, a closed socket) is logged and skipped, never
raised into the scanning path.
"""

import logging
import shutil
import subprocess
import sys
from typing import Callable, Iterable, List, Optional, Tuple

from .exceptions import NotificationDeliveryFailed
from .models import WatchDirection, WatchEvent

logger = logging.getLogger(__name__)


NOTIFICATION_TITLE = "PortKeeper"


def format_event(event: WatchEvent) -> Tuple[str, str]:
    """Return (title, message) for a watch event"""
    if event.direction == WatchDirection.APPEARED:
        message = f"Port {event.port} is now listening"
        if event.process_name:
            message += f" ({event.process_name})"
    else:
        message = f"Port {event.port} stopped listening"
    return NOTIFICATION_TITLE, message


def _applescript_quote(text: str) -> str:
    """Escape text for use inside an AppleScript string literal"""
    return text.replace("\\", "\\\\").replace('"', '\\"')


class Notifier:
    """Base class for notification backends"""

    name = "base"

    def notify(self, event: WatchEvent):
        raise NotImplementedError


class LogNotifier(Notifier):
    """Writes watch events to the application log"""

    name = "log"

    def __init__(self, logger_name: str = "port_scanner"):
        self.logger = logging.getLogger(logger_name)

    def notify(self, event: WatchEvent):
        _, message = format_event(event)
        self.logger.info(message)


class DesktopNotifier(Notifier):
    """Shows a desktop notification via notify-send (Linux) or osascript (macOS)"""

    name = "desktop"

    def __init__(self, platform: Optional[str] = None, timeout: float = 5.0):
        self.platform = platform or sys.platform
        self.timeout = timeout

    def _command(self, title: str, message: str) -> List[str]:
        if self.platform == "darwin":
            script = 'display notification "{}" with title "{}"'.format(
                _applescript_quote(message), _applescript_quote(title)
            )
            return ["osascript", "-e", script]
        if self.platform.startswith("linux"):
            if not shutil.which("notify-send"):
                raise NotificationDeliveryFailed("notify-send is not installed")
            return ["notify-send", "--app-name", title, title, message]
        raise NotificationDeliveryFailed(f"Desktop notifications are not supported on {self.platform}")

    def notify(self, event: WatchEvent):
        title, message = format_event(event)
        command = self._command(title, message)
        try:
            subprocess.run(command, capture_output=True, timeout=self.timeout, check=True)
        except subprocess.CalledProcessError as e:
            raise NotificationDeliveryFailed(f"{command[0]} exited with {e.returncode}")
        except (subprocess.TimeoutExpired, OSError) as e:
            raise NotificationDeliveryFailed(f"{command[0]} failed: {e}")


class CallbackNotifier(Notifier):
    """Forwards watch events to a callable, e.g. a WebSocket broadcast"""

    name = "callback"

    def __init__(self, callback: Callable[[WatchEvent], None]):
        self.callback = callback

    def notify(self, event: WatchEvent):
        self.callback(event)


class NotificationDispatcher:
    """Sends each watch event to every configured backend"""

    def __init__(self, notifiers: Optional[Iterable[Notifier]] = None):
        self.logger = logging.getLogger(__name__)
        self.notifiers: List[Notifier] = list(notifiers or [])
        self.delivered = 0
        self.dropped = 0

    def add_notifier(self, notifier: Notifier):
        self.notifiers.append(notifier)

    def dispatch(self, event: WatchEvent) -> bool:
        """Deliver one event; returns True if every backend accepted it"""
        all_ok = True
        for notifier in self.notifiers:
            try:
                notifier.notify(event)
                self.delivered += 1
            except NotificationDeliveryFailed as e:
                all_ok = False
                self.dropped += 1
                self.logger.warning(f"Dropped {notifier.name} notification for port {event.port}: {e}")
            except Exception as e:
                all_ok = False
                self.dropped += 1
                self.logger.error(f"Notifier {notifier.name} failed for port {event.port}: {e}")
        return all_ok


def create_dispatcher(kind: str = "desktop") -> NotificationDispatcher:
    """Build a dispatcher for the configured notification mode: desktop, log or none"""
    kind = (kind or "none").lower()
    if kind == "none":
        return NotificationDispatcher()
    if kind == "log":
        return NotificationDispatcher([LogNotifier()])
    if kind == "desktop":
        return NotificationDispatcher([LogNotifier(), DesktopNotifier()])
    raise ValueError(f"Unknown notification mode: {kind}")
