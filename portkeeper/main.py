"""
Main entry point for PortKeeper
"""

import asyncio
import logging
import os
import signal
import sys

from tornado import ioloop
from tornado.options import define, options, parse_command_line, parse_config_file

from portkeeper import __version__
from portkeeper.app import PortKeeperApplication
from portkeeper.logger import setup_logging
from portkeeper.notifier import create_dispatcher
from portkeeper.port_monitor import PortMonitor
from portkeeper.preferences import PreferencesStore
from portkeeper.sources import create_source
from portkeeper.state import AppState
from portkeeper.terminator import ProcessTerminator
from portkeeper.tunnels import TunnelManager


# Configuration options
define("port", default=8787, help="Port to run the server on", type=int)
define("address", default="127.0.0.1", help="Address to bind the server to", type=str)
define("debug", default=False, help="Enable debug mode", type=bool)
define("log_level", default="INFO", help="Logging level (DEBUG, INFO, WARNING, ERROR)", type=str)
define("log_dir", default="logs", help="Directory for log files", type=str)
define("scan_interval", default=5.0, help="Seconds between port scans", type=float)
define("scan_timeout", default=10.0, help="Seconds before a port scan is abandoned", type=float)
define("source", default="auto", help="Listener source (auto, lsof, psutil)", type=str)
define("prefs_path", default=os.path.join(os.path.expanduser("~"), ".portkeeper", "preferences.db"),
       help="Path to the SQLite preferences database", type=str)
define("notifications", default="desktop", help="Watch notifications (desktop, log, none)", type=str)
define("shutdown_timeout", default=5.0, help="Seconds allowed for stopping tunnels on shutdown", type=float)
define("tunnel_command", default="", help="Tunnel command template, {port} is substituted", type=str)
define("config", default="", help="Path to a config file with the options above", type=str)


# Global reference for cleanup
_port_monitor = None


def signal_handler(signum, frame):
    """Handle shutdown signals gracefully"""
    logger = logging.getLogger(__name__)
    logger.info(f"Received signal {signum}, initiating graceful shutdown...")

    loop = ioloop.IOLoop.current()

    async def async_shutdown():
        if _port_monitor:
            try:
                await _port_monitor.shutdown(timeout=options.shutdown_timeout)
            except Exception as e:
                logger.error(f"Error during shutdown: {e}")
        loop.stop()

    loop.add_callback(lambda: asyncio.ensure_future(async_shutdown()))


def main():
    """Main entry point"""
    global _port_monitor

    parse_command_line()
    if options.config:
        parse_config_file(options.config)

    # Setup logging
    log_level = getattr(logging, options.log_level.upper(), logging.INFO)
    setup_logging(debug=options.debug, log_dir=options.log_dir)
    logging.getLogger().setLevel(log_level)
    logger = logging.getLogger(__name__)

    logger.info("=" * 50)
    logger.info(f"PortKeeper {__version__} - Listening Port Manager")
    logger.info("=" * 50)
    logger.info(f"Python version: {sys.version}")
    logger.info(f"Debug mode: {options.debug}")
    logger.info(f"Preferences: {options.prefs_path}")
    logger.info(f"Log level: {options.log_level}")

    try:
        if sys.platform != 'win32':
            signal.signal(signal.SIGTERM, signal_handler)
            signal.signal(signal.SIGHUP, signal_handler)
        signal.signal(signal.SIGINT, signal_handler)

        logger.info("Initializing components...")

        store = PreferencesStore(db_path=options.prefs_path)
        state = AppState(store.load())
        store.attach(state)

        _port_monitor = PortMonitor(
            state=state,
            source=create_source(options.source, timeout=options.scan_timeout),
            terminator=ProcessTerminator(),
            tunnel_manager=TunnelManager(),
            dispatcher=create_dispatcher(options.notifications),
            interval=options.scan_interval,
            scan_timeout=options.scan_timeout,
            tunnel_command=options.tunnel_command,
        )
        _port_monitor.watch_engine.update_watch_set(state.watched_ports.keys())

        app = PortKeeperApplication(_port_monitor, debug=options.debug)

        try:
            app.listen(options.port, address=options.address)
            logger.info(f"Server listening on http://{options.address}:{options.port}")
        except OSError as e:
            if "address already in use" in str(e).lower():
                logger.error(f"Port {options.port} is already in use. Please use a different port with --port=<port_number>")
                sys.exit(1)
            raise

        loop = ioloop.IOLoop.current()

        def start_monitoring_task():
            logger.info("Starting port monitoring...")
            asyncio.ensure_future(_port_monitor.start_monitoring())

        loop.add_callback(start_monitoring_task)

        logger.info("PortKeeper is ready and running!")
        loop.start()

    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(2)
    except Exception as e:
        logger.error(f"Failed to start PortKeeper: {e}", exc_info=True)
        sys.exit(1)
    finally:
        logger.info("PortKeeper shutdown complete")


if __name__ == "__main__":
    main()
