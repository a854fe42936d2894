from __future__ import annotations

import logging
import logging.config
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Iterator, Optional, Union
from uuid import uuid4

from pythonjsonlogger import jsonlogger


operation_id_ctx: ContextVar[Optional[str]] = ContextVar("operation_id", default=None)
end_user_id_ctx: ContextVar[Optional[str]] = ContextVar("end_user_id", default=None)


class OperationContextFilter(logging.Filter):
    """Injects operation scoped context variables into each log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.operation_id = operation_id_ctx.get()
        record.end_user_id = end_user_id_ctx.get()
        return True


def configure_logging(level: Union[int, str] = logging.INFO) -> None:
    """Configure JSON structured logging."""
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {
                "operation_context": {
                    "()": OperationContextFilter,
                }
            },
            "formatters": {
                "json": {
                    "()": jsonlogger.JsonFormatter,
                    "fmt": "%(asctime)s %(levelname)s %(name)s %(message)s",
                }
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "stream": "ext://sys.stdout",
                    "level": level,
                    "formatter": "json",
                    "filters": ["operation_context"],
                }
            },
            "loggers": {
                "": {
                    "handlers": ["default"],
                    "level": level,
                }
            },
        }
    )


@contextmanager
def operation_context(end_user_id: Optional[str] = None) -> Iterator[str]:
    """Bind an operation id for the duration of one logical client operation.

    Nested operations keep the outermost id so that the reads performed by a
    guarded write share its id.
    """
    current = operation_id_ctx.get()
    operation_id = current or str(uuid4())
    op_token = operation_id_ctx.set(operation_id)
    user_token = end_user_id_ctx.set(end_user_id) if end_user_id is not None else None
    try:
        yield operation_id
    finally:
        operation_id_ctx.reset(op_token)
        if user_token is not None:
            end_user_id_ctx.reset(user_token)


def _redact_value(value: Any) -> str:
    if value is None:
        return ""
    return "***redacted***"


def sanitize_payload(payload: Any) -> Any:
    """Remove obvious secrets from a payload while keeping business fields."""

    sensitive_keys = {
        "authorization",
        "api_key",
        "apikey",
        "token",
        "secret",
        "password",
    }

    def _sanitize(value: Any) -> Any:
        if isinstance(value, dict):
            sanitized: dict[str, Any] = {}
            for key, val in value.items():
                key_lower = str(key).lower()
                if any(token in key_lower for token in sensitive_keys):
                    sanitized[key] = _redact_value(val)
                else:
                    sanitized[key] = _sanitize(val)
            return sanitized
        if isinstance(value, list):
            return [_sanitize(item) for item in value]
        return value

    return _sanitize(payload)


def mask_secret(value: Optional[str], visible: int = 4) -> str:
    if not value:
        return "[redacted]"
    trimmed = value.strip()
    if len(trimmed) <= visible:
        return "*" * len(trimmed)
    return f"{trimmed[:visible]}***"


def log_write_started(
    *,
    action: str,
    entity: str,
    endpoint: str,
    ref_number: Optional[str],
    payload: Any,
) -> None:
    logger = logging.getLogger("qbd_guard.write")
    logger.info(
        "conductor_write_started",
        extra={
            "event": "conductor_write_started",
            "operation_id": operation_id_ctx.get(),
            "action": action,
            "entity": entity,
            "endpoint": endpoint,
            "ref_number": ref_number,
            "payload": sanitize_payload(payload),
        },
    )


def log_write_finished(
    *,
    action: str,
    entity: str,
    endpoint: str,
    ref_number: Optional[str],
    result: str,
    status_code: Optional[int],
    latency_ms: Optional[float],
    audit_path: Optional[str],
    error_code: Optional[str] = None,
    error_message: Optional[str] = None,
) -> None:
    logger = logging.getLogger("qbd_guard.write")
    logger.info(
        "conductor_write_finished",
        extra={
            "event": "conductor_write_finished",
            "operation_id": operation_id_ctx.get(),
            "action": action,
            "entity": entity,
            "endpoint": endpoint,
            "ref_number": ref_number,
            "result": result,
            "status_code": status_code,
            "latency_ms": None if latency_ms is None else round(latency_ms, 2),
            "audit_path": audit_path,
            "error_code": error_code,
            "error_message": error_message,
        },
    )
