"""
Logging configuration for PortKeeper
"""

import logging
import logging.handlers
import os


def setup_logging(debug=False, log_dir="logs"):
    """Setup logging configuration"""

    if not os.path.exists(log_dir):
        os.makedirs(log_dir)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if debug else logging.INFO)
    root_logger.handlers.clear()

    detailed_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    simple_formatter = logging.Formatter(
        '%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO if not debug else logging.DEBUG)
    console_handler.setFormatter(simple_formatter)
    root_logger.addHandler(console_handler)

    file_handler = logging.handlers.RotatingFileHandler(
        os.path.join(log_dir, 'portkeeper.log'),
        maxBytes=10*1024*1024,  # 10MB
        backupCount=5
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(detailed_formatter)
    root_logger.addHandler(file_handler)

    # Scan failures and watch events
    scanner_handler = logging.handlers.RotatingFileHandler(
        os.path.join(log_dir, 'port_scanner.log'),
        maxBytes=5*1024*1024,  # 5MB
        backupCount=3
    )
    scanner_handler.setLevel(logging.INFO)
    scanner_handler.setFormatter(detailed_formatter)

    scanner_logger = logging.getLogger('port_scanner')
    scanner_logger.handlers.clear()
    scanner_logger.addHandler(scanner_handler)
    scanner_logger.addHandler(console_handler)
    scanner_logger.setLevel(logging.INFO)
    scanner_logger.propagate = False

    # Kill requests and their outcomes
    terminator_handler = logging.handlers.RotatingFileHandler(
        os.path.join(log_dir, 'process_terminator.log'),
        maxBytes=5*1024*1024,  # 5MB
        backupCount=3
    )
    terminator_handler.setLevel(logging.INFO)
    terminator_handler.setFormatter(detailed_formatter)

    terminator_logger = logging.getLogger('process_terminator')
    terminator_logger.handlers.clear()
    terminator_logger.addHandler(terminator_handler)
    terminator_logger.addHandler(console_handler)
    terminator_logger.setLevel(logging.INFO)
    terminator_logger.propagate = False

    logging.getLogger('tornado.access').setLevel(logging.WARNING)
    logging.getLogger('tornado.application').setLevel(logging.WARNING)
    logging.getLogger('tornado.general').setLevel(logging.WARNING)


class ScanLogger:
    """Specialized logger for scan and watch events"""

    def __init__(self):
        self.logger = logging.getLogger('port_scanner')

    def log_scan_failed(self, error, consecutive_failures: int):
        """Log a failed scan; the previous snapshot is kept"""
        self.logger.warning(
            f"Scan failed (failure #{consecutive_failures}), keeping last snapshot: {error}"
        )

    def log_scan_recovered(self, failures: int):
        self.logger.info(f"Scanning recovered after {failures} failed scan(s)")

    def log_scan_skipped(self):
        self.logger.debug("Previous scan still running, skipping this tick")

    def log_watch_event(self, event):
        self.logger.info(f"Watched port {event.port} {event.direction.value}")

    def log_watch_toggled(self, port: int, watching: bool):
        self.logger.info(f"{'Watching' if watching else 'Stopped watching'} port {port}")


class TerminationLogger:
    """Specialized logger for process termination"""

    def __init__(self):
        self.logger = logging.getLogger('process_terminator')

    def log_request(self, pid: int, signal_name: str, port: int = None):
        target = f"process {pid}" + (f" on port {port}" if port else "")
        self.logger.info(f"Sending {signal_name} to {target}")

    def log_result(self, result):
        if result.ok:
            self.logger.info(f"{result.signal} delivered to process {result.pid}")
        else:
            self.logger.warning(
                f"{result.signal} to process {result.pid} failed ({result.outcome.value}): {result.message}"
            )
