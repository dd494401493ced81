"""
Tornado request handlers for the PortKeeper API
"""

import json
import logging
from datetime import datetime

from tornado import websocket
from tornado.web import RequestHandler

from .exceptions import TunnelStopFailed
from .models import (
    KillAllRequest,
    KillRequest,
    PortFilter,
    PortRequest,
    ProcessType,
    SelectionRequest,
    TunnelRequest,
    WatchRequest,
)

logger = logging.getLogger(__name__)


def serialize_ports(ports):
    return [p.model_dump(mode='json') for p in ports]


def serialize_view(view):
    return {
        'version': view.version,
        'ports': serialize_ports(view.ports),
        'filtered_ports': serialize_ports(view.filtered_ports),
        'favorites': sorted(view.favorites),
        'watched_ports': [view.watched_ports[p].model_dump(mode='json') for p in sorted(view.watched_ports)],
        'filter': view.filter.model_dump(mode='json'),
        'filter_active': view.filter.is_active,
        'sidebar': view.sidebar.model_dump(mode='json'),
        'selected_port_id': view.selected_port_id,
        'use_tree_view': view.use_tree_view,
        'last_scan_at': view.last_scan_at.isoformat() if view.last_scan_at else None,
        'last_error': view.last_error,
    }


class BaseHandler(RequestHandler):
    """Base handler with common functionality"""

    def initialize(self, port_monitor):
        self.port_monitor = port_monitor
        self.state = port_monitor.state

    def write_json(self, data, status=200):
        self.set_status(status)
        self.set_header("Content-Type", "application/json")
        self.write(json.dumps(data, default=str))

    def load_body(self, model):
        """Parse the JSON body into a request model; raises ValueError on bad input"""
        data = json.loads(self.request.body or b"{}")
        if not isinstance(data, dict):
            raise ValueError("Request body must be a JSON object")
        return model.model_validate(data)

    def write_bad_request(self, error):
        self.write_json({
            'success': False,
            'error': f"Invalid input: {error}"
        }, 400)

    def write_server_error(self, action, error):
        logger.error(f"Failed to {action}: {error}")
        self.write_json({
            'success': False,
            'error': str(error)
        }, 500)


class PortsHandler(BaseHandler):
    """Current snapshot and filtered view"""

    async def get(self):
        view = self.state.view
        self.write_json({
            'success': True,
            'ports': serialize_ports(view.ports),
            'filtered_ports': serialize_ports(view.filtered_ports),
            'last_scan_at': view.last_scan_at.isoformat() if view.last_scan_at else None,
            'last_error': view.last_error,
            'version': view.version
        })


class ProcessGroupsHandler(BaseHandler):
    """Filtered view grouped by owning process"""

    async def get(self):
        groups = self.state.groups()
        self.write_json({
            'success': True,
            'groups': [g.model_dump(mode='json') for g in groups]
        })


class StatusHandler(BaseHandler):
    """Scan loop status and category counts"""

    async def get(self):
        self.write_json({
            'success': True,
            'status': self.port_monitor.get_monitoring_status(),
            'counts': self.state.category_counts(),
            'process_types': [
                {'id': process_type.value, 'label': process_type.label}
                for process_type in ProcessType
            ]
        })


class RefreshHandler(BaseHandler):
    """Request an immediate scan"""

    async def post(self):
        scanned = await self.port_monitor.refresh()
        self.write_json({
            'success': True,
            'scanned': scanned,
            'last_error': self.state.last_error
        })


class FavoritesHandler(BaseHandler):
    """List and toggle favorite ports"""

    async def get(self):
        self.write_json({
            'success': True,
            'favorites': sorted(self.state.favorites)
        })

    async def post(self):
        try:
            request = self.load_body(PortRequest)
        except ValueError as e:
            self.write_bad_request(e)
            return

        favorite = self.port_monitor.toggle_favorite(request.port)
        self.write_json({
            'success': True,
            'port': request.port,
            'favorite': favorite
        })


class WatchedPortsHandler(BaseHandler):
    """List and toggle watched ports"""

    async def get(self):
        watched = self.state.watched_ports
        self.write_json({
            'success': True,
            'watched_ports': [watched[p].model_dump(mode='json') for p in sorted(watched)],
            'watch_state': self.port_monitor.watch_engine.state.value
        })

    async def post(self):
        try:
            request = self.load_body(WatchRequest)
        except ValueError as e:
            self.write_bad_request(e)
            return

        watching = self.port_monitor.toggle_watch(
            request.port, request.notify_on_start, request.notify_on_stop
        )
        self.write_json({
            'success': True,
            'port': request.port,
            'watching': watching
        })


class FilterHandler(BaseHandler):
    """Read, update and reset the port filter"""

    async def get(self):
        port_filter = self.state.filter
        self.write_json({
            'success': True,
            'filter': port_filter.model_dump(mode='json'),
            'active': port_filter.is_active
        })

    async def put(self):
        try:
            port_filter = self.load_body(PortFilter)
        except ValueError as e:
            self.write_bad_request(e)
            return

        view = self.state.set_filter(port_filter)
        self.write_json({
            'success': True,
            'filter': view.filter.model_dump(mode='json'),
            'active': view.filter.is_active,
            'filtered_count': len(view.filtered_ports)
        })

    async def delete(self):
        view = self.state.reset_filter()
        self.write_json({
            'success': True,
            'filter': view.filter.model_dump(mode='json'),
            'active': False,
            'filtered_count': len(view.filtered_ports)
        })


class SelectionHandler(BaseHandler):
    """Selected port, sidebar item and list/tree preference"""

    def _selection(self):
        selected = self.state.selected_port
        return {
            'success': True,
            'selected_port_id': self.state.selected_port_id,
            'selected_port': selected.model_dump(mode='json') if selected else None,
            'sidebar': self.state.selected_sidebar_item.model_dump(mode='json'),
            'use_tree_view': self.state.use_tree_view
        }

    async def get(self):
        self.write_json(self._selection())

    async def put(self):
        try:
            request = self.load_body(SelectionRequest)
        except ValueError as e:
            self.write_bad_request(e)
            return

        fields = request.model_fields_set
        if 'selected_port_id' in fields:
            if request.selected_port_id and self.state.find_port(request.selected_port_id) is None:
                self.write_json({
                    'success': False,
                    'error': f"Port {request.selected_port_id} not found"
                }, 404)
                return
            self.state.select_port(request.selected_port_id)
        if 'sidebar' in fields and request.sidebar is not None:
            self.state.select_sidebar(request.sidebar)
        if 'use_tree_view' in fields and request.use_tree_view is not None:
            self.state.set_use_tree_view(request.use_tree_view)

        self.write_json(self._selection())


class PortKillHandler(BaseHandler):
    """Terminate the process owning a listed port"""

    async def post(self):
        try:
            request = self.load_body(KillRequest)
        except ValueError as e:
            self.write_bad_request(e)
            return

        try:
            if request.port_id:
                port_info = self.state.find_port(request.port_id)
                if port_info is None:
                    self.write_json({
                        'success': False,
                        'error': f"Port {request.port_id} not found, it may have already closed"
                    }, 404)
                    return
                result = await self.port_monitor.kill_port(port_info, force=request.force)
            else:
                if not any(p.pid == request.pid for p in self.state.ports):
                    self.write_json({
                        'success': False,
                        'error': f"Process {request.pid} does not own a listening port"
                    }, 404)
                    return
                result = await self.port_monitor.kill_pid(request.pid, force=request.force)

            self.write_json({
                'success': result.ok,
                'result': result.model_dump(mode='json')
            })
        except Exception as e:
            self.write_server_error("kill process", e)


class PortKillAllHandler(BaseHandler):
    """Terminate every process in the filtered view"""

    async def post(self):
        try:
            request = self.load_body(KillAllRequest)
        except ValueError as e:
            self.write_bad_request(e)
            return

        try:
            results = await self.port_monitor.kill_all(force=request.force)
            self.write_json({
                'success': all(r.ok for r in results),
                'results': [r.model_dump(mode='json') for r in results]
            })
        except Exception as e:
            self.write_server_error("kill processes", e)


class TunnelsHandler(BaseHandler):
    """List, open and stop port-forwarding tunnels"""

    async def get(self):
        tunnels = self.port_monitor.tunnel_manager.list_tunnels()
        self.write_json({
            'success': True,
            'tunnels': [t.to_dict() if hasattr(t, 'to_dict') else {'id': str(getattr(t, 'id', ''))}
                        for t in tunnels]
        })

    async def post(self):
        try:
            request = self.load_body(TunnelRequest)
        except ValueError as e:
            self.write_bad_request(e)
            return

        if not self.port_monitor.tunnel_command:
            self.write_json({
                'success': False,
                'error': 'No tunnel command configured (start with --tunnel_command)'
            }, 400)
            return

        try:
            tunnel = self.port_monitor.open_tunnel(request.port)
            self.write_json({
                'success': True,
                'tunnel': tunnel.to_dict()
            })
        except (OSError, ValueError, KeyError) as e:
            self.write_server_error(f"open tunnel for port {request.port}", e)

    async def delete(self):
        try:
            data = json.loads(self.request.body or b"{}")
            tunnel_id = str(data.get('tunnel_id') or '')
        except (ValueError, AttributeError) as e:
            self.write_bad_request(e)
            return

        tunnel = self.port_monitor.tunnel_manager.get(tunnel_id)
        if tunnel is None:
            self.write_json({
                'success': False,
                'error': f"Tunnel {tunnel_id} not found"
            }, 404)
            return

        try:
            await self.port_monitor.tunnel_manager.stop(tunnel)
            self.write_json({
                'success': True,
                'tunnel_id': tunnel_id
            })
        except TunnelStopFailed as e:
            self.write_server_error(f"stop tunnel {tunnel_id}", e)


class PortStateWebSocketHandler(websocket.WebSocketHandler):
    """WebSocket handler for real-time state updates and watch events"""

    clients = set()

    def initialize(self, port_monitor):
        self.port_monitor = port_monitor

    def open(self):
        """Handle new WebSocket connection"""
        logger.info("WebSocket connection opened")
        self.clients.add(self)
        self._send_state()

    def on_close(self):
        """Handle WebSocket connection close"""
        logger.info("WebSocket connection closed")
        self.clients.discard(self)

    def on_message(self, message):
        """Handle incoming WebSocket message"""
        try:
            data = json.loads(message)
            message_type = data.get('type')

            if message_type == 'ping':
                self.write_message(json.dumps({
                    'type': 'pong',
                    'timestamp': datetime.now().isoformat()
                }))
            elif message_type == 'request_update':
                self._send_state()
        except Exception as e:
            logger.error(f"Failed to handle WebSocket message: {e}")

    def _send_state(self):
        try:
            self.write_message(json.dumps({
                'type': 'state_update',
                'data': serialize_view(self.port_monitor.state.view),
                'timestamp': datetime.now().isoformat()
            }, default=str))
        except Exception as e:
            logger.error(f"Failed to send state update: {e}")

    @classmethod
    def broadcast(cls, message):
        """Send a message to all connected clients"""
        if not cls.clients:
            return

        payload = json.dumps(message, default=str)
        for client in list(cls.clients):
            try:
                client.write_message(payload)
            except websocket.WebSocketClosedError:
                cls.clients.discard(client)
            except Exception as e:
                logger.error(f"Failed to send WebSocket message: {e}")
                cls.clients.discard(client)

    @classmethod
    def broadcast_state(cls, change, view):
        """AppState subscriber pushing every change"""
        if not cls.clients:
            return
        cls.broadcast({
            'type': 'state_update',
            'change': change,
            'data': serialize_view(view),
            'timestamp': datetime.now().isoformat()
        })

    @classmethod
    def broadcast_watch_event(cls, event):
        cls.broadcast({
            'type': 'watch_event',
            'data': event.model_dump(mode='json'),
            'timestamp': datetime.now().isoformat()
        })
