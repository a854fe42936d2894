from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from qbd_guard.schemas.conductor import Bill


class ErrorCode(str, Enum):
    """Machine-readable failure kinds a calling agent can branch on."""

    CONFIGURATION_ERROR = "ConfigurationError"
    API_ERROR = "ApiError"
    MISSING_VENDOR = "MISSING_VENDOR"
    NO_VENDOR_PATTERN = "NO_VENDOR_PATTERN"
    DUPLICATE_BILL = "DUPLICATE_BILL"
    AUDIT_LOG_FAILED = "AUDIT_LOG_FAILED"


class ConductorClientError(RuntimeError):
    code: ErrorCode


class ConfigurationError(ConductorClientError):
    code = ErrorCode.CONFIGURATION_ERROR


class ApiError(ConductorClientError):
    code = ErrorCode.API_ERROR

    def __init__(self, status_code: int, payload: Any, message: Optional[str] = None):
        self.status_code = status_code
        self.payload = payload
        self.message = message or extract_error_message(payload) or f"HTTP {status_code}"
        super().__init__(f"API Error {status_code}: {self.message}")

    @property
    def remote_accepted(self) -> bool:
        """True when the gateway answered 2xx but the body could not be read."""
        return 200 <= self.status_code < 300


class MissingVendorError(ConductorClientError):
    code = ErrorCode.MISSING_VENDOR

    def __init__(self) -> None:
        super().__init__("MISSING_VENDOR: bill data must include vendorId or vendor.id")


class NoVendorPatternError(ConductorClientError):
    code = ErrorCode.NO_VENDOR_PATTERN

    def __init__(self, vendor_id: str):
        self.vendor_id = vendor_id
        super().__init__(
            f"NO_VENDOR_PATTERN: No dataPattern file found for vendor ID {vendor_id}. "
            "Create a dataPatterns/vendor_*.json file first."
        )


class DuplicateBillError(ConductorClientError):
    code = ErrorCode.DUPLICATE_BILL

    def __init__(self, existing_bill: "Bill", vendor_id: Optional[str] = None):
        self.existing_bill = existing_bill
        vendor_label = (
            existing_bill.vendor.full_name
            if existing_bill.vendor is not None and existing_bill.vendor.full_name
            else vendor_id
        )
        super().__init__(
            f"DUPLICATE_BILL: Bill #{existing_bill.ref_number} already exists for vendor {vendor_label}. "
            f"Existing bill ID: {existing_bill.id}, Date: {existing_bill.transaction_date}, "
            f"Amount: {existing_bill.amount_due}"
        )


class AuditLogError(ConductorClientError):
    code = ErrorCode.AUDIT_LOG_FAILED

    def __init__(self, path: Path, reason: str):
        self.path = path
        super().__init__(f"Failed to write audit record {path}: {reason}")


def extract_error_message(payload: Any) -> Optional[str]:
    if not isinstance(payload, dict):
        return None
    error = payload.get("error")
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    if isinstance(error, str) and error:
        return error
    message = payload.get("message")
    if message:
        return str(message)
    return None
