import json
from datetime import datetime, timezone

import pytest

from qbd_guard.core.errors import AuditLogError, ErrorCode
from qbd_guard.schemas.conductor import LinkedEntity, LogEntry
from qbd_guard.services.write_audit import WriteAuditLogger, format_timestamp, sanitize_filename


STAMP = datetime(2026, 1, 27, 14, 3, 5, 120456, tzinfo=timezone.utc)


def _entry(**overrides) -> LogEntry:
    values = {
        "timestamp": STAMP,
        "action": "create",
        "entity": "bill",
        "endpoint": "POST /quickbooks-desktop/bills",
        "request": {"vendorId": "V1", "refNumber": "312094"},
        "response": {"id": "B1", "refNumber": "312094"},
        "status": "success",
        "ref_number": "312094",
        "linked_entities": [LinkedEntity(type="linked_transaction", id="PO-1")],
    }
    values.update(overrides)
    return LogEntry(**values)


def test_format_timestamp_uses_millisecond_utc():
    assert format_timestamp(STAMP) == "2026-01-27T14:03:05.120Z"


def test_sanitize_replaces_unsafe_characters_and_caps_length():
    assert sanitize_filename("INV/2026:01 #7") == "INV-2026-01--7"
    assert len(sanitize_filename("x" * 80)) == 50


def test_record_writes_one_json_file(tmp_path):
    audit = WriteAuditLogger(tmp_path / "logs", suffix_factory=lambda: "abcd1234")

    path = audit.record(_entry())

    assert path.name == "create_bill_312094_2026-01-27T14-03-05-120Z_abcd1234.json"
    document = json.loads(path.read_text(encoding="utf-8"))
    assert document == {
        "timestamp": "2026-01-27T14:03:05.120Z",
        "action": "create",
        "entity": "bill",
        "endpoint": "POST /quickbooks-desktop/bills",
        "request": {"vendorId": "V1", "refNumber": "312094"},
        "response": {"id": "B1", "refNumber": "312094"},
        "status": "success",
        "refNumber": "312094",
        "linkedEntities": [{"type": "linked_transaction", "id": "PO-1", "refNumber": None}],
    }


def test_missing_reference_uses_placeholder(tmp_path):
    audit = WriteAuditLogger(tmp_path, suffix_factory=lambda: "s1")

    path = audit.record(_entry(ref_number=None, action="delete", request=None))

    assert path.name.startswith("delete_bill_no-ref_")


def test_identical_entries_never_collide(tmp_path):
    audit = WriteAuditLogger(tmp_path)

    first = audit.record(_entry())
    second = audit.record(_entry())

    assert first != second
    assert len(list(tmp_path.glob("*.json"))) == 2


def test_existing_record_is_never_overwritten(tmp_path):
    audit = WriteAuditLogger(tmp_path, suffix_factory=lambda: "same")
    path = audit.record(_entry())

    with pytest.raises(AuditLogError):
        audit.record(_entry(status="error"))

    assert json.loads(path.read_text(encoding="utf-8"))["status"] == "success"


def test_write_failure_is_raised(tmp_path):
    blocker = tmp_path / "logs"
    blocker.write_text("not a directory", encoding="utf-8")
    audit = WriteAuditLogger(blocker)

    with pytest.raises(AuditLogError) as exc_info:
        audit.record(_entry())

    assert exc_info.value.code is ErrorCode.AUDIT_LOG_FAILED


def test_unserializable_payload_is_raised(tmp_path):
    audit = WriteAuditLogger(tmp_path)

    with pytest.raises(AuditLogError):
        audit.record(_entry(request={"blob": object()}))

    assert list(tmp_path.iterdir()) == []


def test_read_entries_returns_history_in_time_order(tmp_path):
    audit = WriteAuditLogger(tmp_path)
    later = STAMP.replace(minute=30)
    audit.record(_entry(timestamp=later, ref_number="B"))
    audit.record(_entry(ref_number="A"))

    entries = audit.read_entries()

    assert [entry.ref_number for entry in entries] == ["A", "B"]
    assert entries[0].linked_entities[0].id == "PO-1"
