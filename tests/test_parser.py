"""
Tests for listener record parsing and lsof row splitting
"""

import pytest

from conftest import make_record

from portkeeper.exceptions import MalformedRecord
from portkeeper.models import ProcessType, RawListenerRecord
from portkeeper.parser import normalize_address, parse_record, parse_records
from portkeeper.sources import split_lsof_line


def test_split_lsof_line():
    line = "node      4242 dev   23u  IPv6 0xabc      0t0  TCP *:3000 (LISTEN)"
    record = split_lsof_line(line)
    assert record.process_name == "node"
    assert record.pid == "4242"
    assert record.user == "dev"
    assert record.fd == "23u"
    assert record.address == "*"
    assert record.port == "3000"


def test_split_lsof_line_ipv6_and_escaped_name():
    line = r"Code\x20Helper 77 dev 40u IPv6 0x1 0t0 TCP [::1]:9229 (LISTEN)"
    record = split_lsof_line(line)
    assert record.process_name == "Code Helper"
    assert record.address == "[::1]"
    assert record.port == "9229"


def test_split_short_line_leaves_missing_fields():
    record = split_lsof_line("node 4242")
    assert record.port is None
    with pytest.raises(MalformedRecord):
        parse_record(record)


@pytest.mark.parametrize("raw,expected", [
    ("*", "*"),
    ("0.0.0.0", "*"),
    ("[::]", "*"),
    ("", "*"),
    ("[::1]", "::1"),
    ("127.0.0.1", "127.0.0.1"),
])
def test_normalize_address(raw, expected):
    assert normalize_address(raw) == expected


def test_parse_record_classifies_and_defaults_command():
    record = make_record(5432, 202, "postgres")
    record.command = None
    port_info = parse_record(record)
    assert port_info.port == 5432
    assert port_info.pid == 202
    assert port_info.command == "postgres"
    assert port_info.process_type == ProcessType.DATABASE
    assert port_info.id == "5432-*-202"


@pytest.mark.parametrize("field,value", [
    ("pid", "abc"),
    ("pid", None),
    ("port", "70000"),
    ("port", "0"),
    ("process_name", "  "),
])
def test_parse_record_rejects_malformed(field, value):
    record = make_record(3000, 101)
    setattr(record, field, value)
    with pytest.raises(MalformedRecord):
        parse_record(record)


def test_parse_records_skips_malformed_and_deduplicates():
    records = [
        make_record(3000, 101, "node"),
        RawListenerRecord(process_name="node", pid="x", port="3001"),
        make_record(3000, 101, "node"),
        make_record(3000, 102, "node"),
    ]
    result = parse_records(records)
    assert result.ok
    assert [p.id for p in result.ports] == ["3000-*-101", "3000-*-102"]
    assert result.skipped == 1
    assert result.duplicates == 1


def test_first_duplicate_wins():
    first = make_record(3000, 101, "node")
    first.fd = "10u"
    second = make_record(3000, 101, "node")
    second.fd = "11u"
    result = parse_records([first, second])
    assert result.ports[0].fd == "10u"


def test_empty_input_is_valid_empty_snapshot():
    result = parse_records([])
    assert result.ok
    assert result.ports == []


def test_all_malformed_input_is_scan_failure():
    result = parse_records([RawListenerRecord(pid="1"), RawListenerRecord(port="80")])
    assert result.scan_failed
    assert result.skipped == 2
