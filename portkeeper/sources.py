"""
Port snapshot sources

A source queries the OS for listening TCP sockets and returns unvalidated
``RawListenerRecord`` rows. Sources are stateless; every ``fetch`` call is an
independent query. Normalization is left to ``portkeeper.parser``.
"""

import logging
import shutil
import subprocess
from typing import Dict, Iterable, List, Optional

import psutil

from .exceptions import ScanFailed
from .models import RawListenerRecord

logger = logging.getLogger(__name__)


LSOF_COMMAND = ["+c", "0", "-nP", "-iTCP", "-sTCP:LISTEN"]


class SnapshotSource:
    """Base class for listener sources"""

    name = "base"

    def fetch(self) -> List[RawListenerRecord]:
        """Return the current listener rows or raise ScanFailed"""
        raise NotImplementedError


def lookup_command_lines(pids: Iterable[str]) -> Dict[str, str]:
    """Map pid strings to full command lines, skipping processes we cannot read"""
    commands = {}
    for pid in pids:
        try:
            cmdline = psutil.Process(int(pid)).cmdline()
        except (ValueError, psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            continue
        if cmdline:
            commands[pid] = " ".join(cmdline)
    return commands


def split_lsof_line(line: str) -> RawListenerRecord:
    """
    Split one lsof row into string columns

    Expected layout: COMMAND PID USER FD TYPE DEVICE SIZE/OFF NODE NAME [(LISTEN)]
    Missing columns are left as None for the parser to reject.
    """
    parts = line.split()
    record = RawListenerRecord()

    if len(parts) > 0:
        record.process_name = parts[0].replace("\\x20", " ")
    if len(parts) > 1:
        record.pid = parts[1]
    if len(parts) > 2:
        record.user = parts[2]
    if len(parts) > 3:
        record.fd = parts[3]
    if len(parts) > 8:
        name = parts[8]
        if ":" in name:
            record.address, record.port = name.rsplit(":", 1)

    return record


class LsofSnapshotSource(SnapshotSource):
    """Listener source backed by the lsof tool"""

    name = "lsof"

    def __init__(self, lsof_path: Optional[str] = None, timeout: float = 10.0):
        self.lsof_path = lsof_path or shutil.which("lsof") or "lsof"
        self.timeout = timeout

    def fetch(self) -> List[RawListenerRecord]:
        try:
            result = subprocess.run(
                [self.lsof_path] + LSOF_COMMAND,
                capture_output=True, text=True, timeout=self.timeout,
                encoding="utf-8", errors="replace"
            )
        except FileNotFoundError:
            raise ScanFailed(f"lsof not found at {self.lsof_path}")
        except subprocess.TimeoutExpired:
            raise ScanFailed(f"lsof timed out after {self.timeout}s")
        except OSError as e:
            raise ScanFailed(f"Failed to run lsof: {e}")

        stdout = result.stdout or ""
        stderr = (result.stderr or "").strip()

        if result.returncode != 0:
            # lsof exits with 1 and prints nothing when there are no listeners
            if not stdout.strip() and not stderr:
                return []
            if not stdout.strip():
                raise ScanFailed(f"lsof failed (exit code {result.returncode}): {stderr}")
            logger.debug(f"lsof exited with {result.returncode} but produced output: {stderr}")

        records = []
        for line in stdout.splitlines():
            if not line.strip() or line.startswith("COMMAND"):
                continue
            records.append(split_lsof_line(line))

        commands = lookup_command_lines({r.pid for r in records if r.pid})
        for record in records:
            record.command = commands.get(record.pid)

        return records


class PsutilSnapshotSource(SnapshotSource):
    """Listener source backed by psutil.net_connections"""

    name = "psutil"

    def fetch(self) -> List[RawListenerRecord]:
        try:
            connections = psutil.net_connections(kind="inet")
        except psutil.AccessDenied as e:
            raise ScanFailed(f"Access denied when listing connections: {e}")
        except OSError as e:
            raise ScanFailed(f"Failed to list connections: {e}")

        processes: Dict[int, Dict[str, Optional[str]]] = {}
        records = []

        for conn in connections:
            if conn.status != psutil.CONN_LISTEN or not conn.laddr:
                continue

            record = RawListenerRecord(
                pid=str(conn.pid) if conn.pid else None,
                fd=str(conn.fd) if conn.fd is not None and conn.fd >= 0 else "",
                address=conn.laddr.ip,
                port=str(conn.laddr.port),
            )

            if conn.pid:
                if conn.pid not in processes:
                    processes[conn.pid] = self._process_details(conn.pid)
                details = processes[conn.pid]
                record.process_name = details["name"]
                record.user = details["user"]
                record.command = details["command"]

            records.append(record)

        return records

    def _process_details(self, pid: int) -> Dict[str, Optional[str]]:
        details = {"name": None, "user": None, "command": None}
        try:
            process = psutil.Process(pid)
            with process.oneshot():
                details["name"] = process.name()
                try:
                    details["user"] = process.username()
                except psutil.AccessDenied:
                    details["user"] = ""
                try:
                    details["command"] = " ".join(process.cmdline())
                except psutil.AccessDenied:
                    details["command"] = None
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            # Process exited or is unreadable; the parser drops records without a name
            pass
        return details


def create_source(kind: str = "auto", timeout: float = 10.0) -> SnapshotSource:
    """Build a snapshot source by name: auto, lsof or psutil"""
    kind = (kind or "auto").lower()
    if kind == "auto":
        kind = "lsof" if shutil.which("lsof") else "psutil"

    if kind == "lsof":
        return LsofSnapshotSource(timeout=timeout)
    if kind == "psutil":
        return PsutilSnapshotSource()

    raise ValueError(f"Unknown snapshot source: {kind}")
