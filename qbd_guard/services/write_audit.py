from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable
from uuid import uuid4

from qbd_guard.core.errors import AuditLogError
from qbd_guard.schemas.conductor import LogEntry


UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9_-]")
MAX_REF_LENGTH = 50
NO_REF_PLACEHOLDER = "no-ref"


def sanitize_filename(value: str, limit: int = MAX_REF_LENGTH) -> str:
    return UNSAFE_FILENAME_CHARS.sub("-", value)[:limit]


def format_timestamp(value: datetime) -> str:
    """ISO-8601 UTC with millisecond precision, e.g. ``2026-01-27T14:03:05.120Z``."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return f"{value:%Y-%m-%dT%H:%M:%S}.{value.microsecond // 1000:03d}Z"


def _random_suffix() -> str:
    return uuid4().hex[:8]


class WriteAuditLogger:
    """Append-only, one-file-per-call record of every mutating request."""

    def __init__(
        self,
        logs_dir: Path | str,
        *,
        suffix_factory: Callable[[], str] = _random_suffix,
    ) -> None:
        self.logs_dir = Path(logs_dir)
        self._suffix_factory = suffix_factory
        self.logger = logging.getLogger("qbd_guard.services.write_audit")

    def build_filename(self, entry: LogEntry, suffix: str) -> str:
        safe_ref = sanitize_filename(entry.ref_number) if entry.ref_number else NO_REF_PLACEHOLDER
        safe_timestamp = format_timestamp(entry.timestamp).replace(":", "-").replace(".", "-")
        entity = sanitize_filename(entry.entity, limit=100)
        return f"{entry.action}_{entity}_{safe_ref}_{safe_timestamp}_{suffix}.json"

    def record(self, entry: LogEntry) -> Path:
        path = self.logs_dir / self.build_filename(entry, self._suffix_factory())
        try:
            document = entry.model_dump(mode="json", by_alias=True)
            document["timestamp"] = format_timestamp(entry.timestamp)
            serialized = json.dumps(document, indent=2, ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            raise AuditLogError(path, f"entry is not serializable: {exc}") from exc

        try:
            self.logs_dir.mkdir(parents=True, exist_ok=True)
            # "x" refuses to replace an existing record.
            with path.open("x", encoding="utf-8") as handle:
                handle.write(serialized)
        except OSError as exc:
            raise AuditLogError(path, str(exc)) from exc

        self.logger.info(
            "write_audit_recorded",
            extra={
                "audit_path": str(path),
                "action": entry.action,
                "entity": entry.entity,
                "status": entry.status,
            },
        )
        return path

    def read_entries(self) -> list[LogEntry]:
        if not self.logs_dir.is_dir():
            return []
        entries = [
            LogEntry.model_validate_json(path.read_text(encoding="utf-8"))
            for path in self.logs_dir.glob("*.json")
        ]
        return sorted(entries, key=lambda entry: entry.timestamp)
