"""
Listener record parser

Turns raw source rows into validated ``PortInfo`` entities. Malformed rows
are skipped without failing the scan, and rows repeating a
(port, address, pid) key are dropped so the first occurrence wins.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from pydantic import ValidationError

from .classifier import classify_process
from .exceptions import MalformedRecord
from .models import PortInfo, RawListenerRecord

logger = logging.getLogger(__name__)


WILDCARD_ADDRESSES = {"", "*", "0.0.0.0", "::", "[::]"}


@dataclass
class ParseResult:
    """Normalized snapshot plus bookkeeping about what was dropped"""
    ports: List[PortInfo] = field(default_factory=list)
    skipped: int = 0
    duplicates: int = 0
    scan_failed: bool = False

    @property
    def ok(self) -> bool:
        return not self.scan_failed


def normalize_address(address: Optional[str]) -> str:
    """Collapse wildcard binds to '*' and strip IPv6 brackets"""
    address = (address or "").strip()
    if address in WILDCARD_ADDRESSES:
        return "*"
    if address.startswith("[") and address.endswith("]"):
        address = address[1:-1]
        if address in WILDCARD_ADDRESSES:
            return "*"
    return address


def _to_int(value: Optional[str], label: str) -> int:
    if value is None or not str(value).strip():
        raise MalformedRecord(f"missing {label}")
    try:
        return int(str(value).strip())
    except ValueError:
        raise MalformedRecord(f"invalid {label}: {value!r}")


def parse_record(record: RawListenerRecord) -> PortInfo:
    """Validate one raw record, raising MalformedRecord if it is unusable"""
    pid = _to_int(record.pid, "pid")
    port = _to_int(record.port, "port")

    process_name = (record.process_name or "").strip()
    if not process_name:
        raise MalformedRecord("missing process name")

    command = (record.command or "").strip() or process_name

    try:
        return PortInfo(
            port=port,
            pid=pid,
            process_name=process_name,
            command=command,
            address=normalize_address(record.address),
            user=(record.user or "").strip(),
            fd=(record.fd or "").strip(),
            process_type=classify_process(process_name, command),
        )
    except ValidationError as e:
        raise MalformedRecord(f"invalid record: {e.error_count()} validation error(s)")


def parse_records(records: Iterable[RawListenerRecord]) -> ParseResult:
    """
    Normalize and deduplicate a batch of raw records

    An empty batch is a valid empty snapshot. A non-empty batch where no
    record survives is reported as a failed scan, so callers keep their
    last good snapshot instead of wiping it.
    """
    result = ParseResult()
    seen = set()
    total = 0

    for record in records:
        total += 1
        try:
            port_info = parse_record(record)
        except MalformedRecord as e:
            result.skipped += 1
            logger.debug(f"Skipping malformed listener record {record}: {e}")
            continue

        if port_info.key in seen:
            result.duplicates += 1
            continue
        seen.add(port_info.key)
        result.ports.append(port_info)

    if total > 0 and not result.ports:
        result.scan_failed = True
        logger.warning(f"No usable listener records in {total} raw record(s)")

    return result
