from __future__ import annotations

import calendar
import logging
from contextlib import aclosing
from datetime import date, datetime, timezone
from typing import Any, Callable, Optional

from qbd_guard.schemas.conductor import Bill
from qbd_guard.services.paginator import CursorPaginator


BILLS_ENDPOINT = "/quickbooks-desktop/bills"


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


def months_before(day: date, months: int) -> date:
    """Same calendar day ``months`` earlier, clamped to the end of shorter months."""
    month_index = day.year * 12 + (day.month - 1) - months
    year, month_zero = divmod(month_index, 12)
    month = month_zero + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


class DuplicateDetector:
    """Looks for an already posted bill with the same reference number.

    Only bills updated inside the recent window are scanned, and only up to
    ``max_pages`` pages, so a miss is not proof of uniqueness. The check is
    not atomic with the subsequent create: two concurrent callers can both
    pass it.
    """

    def __init__(
        self,
        paginator: CursorPaginator,
        *,
        window_months: int = 6,
        max_pages: int = 10,
        page_limit: int = 150,
        today: Callable[[], date] = _utc_today,
    ) -> None:
        self.paginator = paginator
        self.window_months = window_months
        self.max_pages = max_pages
        self.page_limit = page_limit
        self._today = today
        self.logger = logging.getLogger("qbd_guard.services.duplicates")

    def window_start(self) -> date:
        return months_before(self._today(), self.window_months)

    async def find_by_reference(
        self,
        ref_number: str,
        vendor_id: Optional[str] = None,
    ) -> Optional[Bill]:
        params: dict[str, Any] = {
            "limit": self.page_limit,
            "updatedAfter": self.window_start().isoformat(),
        }
        if vendor_id:
            params["vendorIds"] = vendor_id

        pages = self.paginator.iter_pages(BILLS_ENDPOINT, params, max_pages=self.max_pages)
        async with aclosing(pages):
            async for records in pages:
                for record in records:
                    if record.get("refNumber") == ref_number:
                        bill = Bill.model_validate(record)
                        self.logger.info(
                            "duplicate_bill_detected",
                            extra={
                                "ref_number": ref_number,
                                "vendor_id": vendor_id,
                                "existing_bill_id": bill.id,
                            },
                        )
                        return bill
        return None
