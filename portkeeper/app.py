"""
Tornado web application for PortKeeper
"""

from tornado import web

from portkeeper.handlers import (
    FavoritesHandler,
    FilterHandler,
    PortKillAllHandler,
    PortKillHandler,
    PortsHandler,
    PortStateWebSocketHandler,
    ProcessGroupsHandler,
    RefreshHandler,
    SelectionHandler,
    StatusHandler,
    TunnelsHandler,
    WatchedPortsHandler,
)


class PortKeeperApplication(web.Application):
    """Main Tornado application"""

    def __init__(self, port_monitor, debug=False):
        self.port_monitor = port_monitor
        handler_args = dict(port_monitor=port_monitor)

        handlers = [
            (r"/api/ports", PortsHandler, handler_args),
            (r"/api/groups", ProcessGroupsHandler, handler_args),
            (r"/api/status", StatusHandler, handler_args),
            (r"/api/refresh", RefreshHandler, handler_args),
            (r"/api/favorites", FavoritesHandler, handler_args),
            (r"/api/watched", WatchedPortsHandler, handler_args),
            (r"/api/filter", FilterHandler, handler_args),
            (r"/api/selection", SelectionHandler, handler_args),
            (r"/api/ports/kill", PortKillHandler, handler_args),
            (r"/api/ports/kill-all", PortKillAllHandler, handler_args),
            (r"/api/tunnels", TunnelsHandler, handler_args),
            (r"/ws/ports", PortStateWebSocketHandler, handler_args),
        ]

        settings = {
            "debug": debug,
        }

        super().__init__(handlers, **settings)

        # Push state changes and watch events to connected WebSocket clients
        port_monitor.state.subscribe(PortStateWebSocketHandler.broadcast_state)
        port_monitor.add_event_listener(PortStateWebSocketHandler.broadcast_watch_event)
