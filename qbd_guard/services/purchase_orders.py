from __future__ import annotations

from contextlib import aclosing
from typing import Any, Optional

from qbd_guard.schemas.conductor import PurchaseOrder
from qbd_guard.services.paginator import CursorPaginator


PURCHASE_ORDERS_ENDPOINT = "/quickbooks-desktop/purchase-orders"


class ActivePurchaseOrderResolver:
    """Finds purchase orders that can still be billed against.

    A PO is active when it is neither fully received nor manually closed.
    """

    def __init__(
        self,
        paginator: CursorPaginator,
        *,
        max_pages: int = 10,
        page_limit: int = 150,
    ) -> None:
        self.paginator = paginator
        self.max_pages = max_pages
        self.page_limit = page_limit

    def _params(self, vendor_id: Optional[str]) -> dict[str, Any]:
        params: dict[str, Any] = {"limit": self.page_limit}
        if vendor_id:
            params["vendorIds"] = vendor_id
        return params

    async def find_active(self, vendor_id: Optional[str], po_number: str) -> Optional[PurchaseOrder]:
        pages = self.paginator.iter_pages(
            PURCHASE_ORDERS_ENDPOINT,
            self._params(vendor_id),
            max_pages=self.max_pages,
        )
        async with aclosing(pages):
            async for records in pages:
                for record in records:
                    if record.get("refNumber") != po_number:
                        continue
                    purchase_order = PurchaseOrder.model_validate(record)
                    if purchase_order.is_active:
                        return purchase_order
        return None

    async def list_active(self, vendor_id: Optional[str]) -> list[PurchaseOrder]:
        records = await self.paginator.fetch_all(
            PURCHASE_ORDERS_ENDPOINT,
            self._params(vendor_id),
            max_pages=self.max_pages,
        )
        purchase_orders = (PurchaseOrder.model_validate(record) for record in records)
        return [po for po in purchase_orders if po.is_active]
