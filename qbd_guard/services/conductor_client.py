from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from time import perf_counter
from typing import Any, Callable, Mapping, Optional, Union

import httpx
from pydantic import BaseModel

from qbd_guard.core import logging as logging_utils
from qbd_guard.core.config import Settings
from qbd_guard.core.errors import (
    ApiError,
    ConfigurationError,
    DuplicateBillError,
    MissingVendorError,
    NoVendorPatternError,
)
from qbd_guard.schemas.conductor import (
    Bill,
    BillCreate,
    Customer,
    EndUser,
    IntegrationConnection,
    Invoice,
    LinkedEntity,
    ListPage,
    LogEntry,
    PurchaseOrder,
    Vendor,
    WriteAction,
    WriteStatus,
)
from qbd_guard.schemas.patterns import PatternMatch
from qbd_guard.services.duplicates import BILLS_ENDPOINT, DuplicateDetector
from qbd_guard.services.paginator import CursorPaginator
from qbd_guard.services.patterns import PatternStore
from qbd_guard.services.purchase_orders import PURCHASE_ORDERS_ENDPOINT, ActivePurchaseOrderResolver
from qbd_guard.services.request_core import ConductorRequestCore
from qbd_guard.services.write_audit import WriteAuditLogger


QBD_PREFIX = "/quickbooks-desktop"
CUSTOMERS_ENDPOINT = f"{QBD_PREFIX}/customers"
VENDORS_ENDPOINT = f"{QBD_PREFIX}/vendors"
ACCOUNTS_ENDPOINT = f"{QBD_PREFIX}/accounts"
INVOICES_ENDPOINT = f"{QBD_PREFIX}/invoices"
CREDIT_CARD_CHARGES_ENDPOINT = f"{QBD_PREFIX}/credit-card-charges"

_ENTITY_PATTERN = re.compile(r"/quickbooks-desktop/([^/?]+)")

Payload = Union[Mapping[str, Any], BaseModel]


def entity_from_endpoint(endpoint: str) -> str:
    """``/quickbooks-desktop/purchase-orders/123`` -> ``purchase_order``."""
    match = _ENTITY_PATTERN.search(endpoint)
    if match is None:
        return "unknown"
    resource = match.group(1).replace("-", "_")
    return resource[:-1] if resource.endswith("s") else resource


def _as_text(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def reference_of(payload: Any) -> Optional[str]:
    """``refNumber`` of a request or response body as text, if present."""
    if not isinstance(payload, Mapping):
        return None
    return _as_text(payload.get("refNumber"))


def extract_linked_entities(request: Any, response: Any) -> list[LinkedEntity]:
    linked: list[LinkedEntity] = []
    if isinstance(request, Mapping):
        for txn_id in request.get("linkToTransactionIds") or []:
            linked.append(LinkedEntity(type="linked_transaction", id=str(txn_id)))
    if isinstance(response, Mapping):
        for txn in response.get("linkedTransactions") or []:
            if not isinstance(txn, Mapping):
                continue
            linked.append(
                LinkedEntity(
                    type=str(txn.get("transactionType") or "transaction"),
                    id=_as_text(txn.get("id")),
                    ref_number=_as_text(txn.get("refNumber")),
                )
            )
    return linked


def _as_payload(data: Payload) -> dict[str, Any]:
    if isinstance(data, BaseModel):
        return data.model_dump(by_alias=True, exclude_none=True, mode="json")
    return dict(data)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ConductorClient:
    """Guarded, audited access to QuickBooks Desktop through Conductor.

    Reads go straight through the request core and the cursor paginator.
    Every write goes through ``_write`` which records exactly one audit
    entry per call, success or failure, before returning or re-raising.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        request_core: Optional[ConductorRequestCore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        vendor_patterns: Optional[PatternStore] = None,
        customer_patterns: Optional[PatternStore] = None,
        audit_logger: Optional[WriteAuditLogger] = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.settings = settings
        self.core = request_core or ConductorRequestCore(settings, transport=transport)
        self.paginator = CursorPaginator(self.core, default_max_pages=settings.default_max_pages)
        self.vendor_patterns = vendor_patterns or PatternStore(settings.data_patterns_dir, "vendor")
        self.customer_patterns = customer_patterns or PatternStore(settings.data_patterns_dir, "customer")
        self.duplicates = DuplicateDetector(
            self.paginator,
            window_months=settings.duplicate_window_months,
            max_pages=settings.duplicate_max_pages,
            page_limit=settings.page_limit,
        )
        self.purchase_orders = ActivePurchaseOrderResolver(
            self.paginator,
            max_pages=settings.po_max_pages,
            page_limit=settings.page_limit,
        )
        self.audit = audit_logger or WriteAuditLogger(settings.write_logs_dir)
        self._clock = clock
        self.logger = logging.getLogger("qbd_guard.services.conductor")

    def find_vendor_pattern(self, vendor_id: str) -> Optional[PatternMatch]:
        return self.vendor_patterns.find_pattern(vendor_id)

    def vendor_pattern_exists(self, vendor_id: str) -> bool:
        return self.vendor_patterns.pattern_exists(vendor_id)

    def get_all_vendor_patterns(self) -> list[PatternMatch]:
        return self.vendor_patterns.all_patterns()

    def find_customer_pattern(self, customer_id: str) -> Optional[PatternMatch]:
        return self.customer_patterns.find_pattern(customer_id)

    async def get_end_user(self) -> EndUser:
        data = await self.core.request(f"/end-users/{self.core.end_user_id}")
        return EndUser.model_validate(data)

    async def check_connection(self, integration_slug: str = "quickbooks_desktop") -> IntegrationConnection:
        end_user = await self.get_end_user()
        connection = end_user.connection_for(integration_slug)
        if connection is None:
            raise ConfigurationError(
                f"End user {end_user.id} has no {integration_slug} connection; complete the auth flow first"
            )
        self.logger.info(
            "connection_verified",
            extra={
                "end_user_id": end_user.id,
                "integration": integration_slug,
                "last_request_at": (
                    connection.last_request_at.isoformat() if connection.last_request_at else None
                ),
            },
        )
        return connection

    async def _list(self, endpoint: str, params: Optional[Mapping[str, Any]]) -> ListPage:
        data = await self.core.request(endpoint, params=params)
        return ListPage.model_validate(data or {})

    async def get_customers(self, params: Optional[Mapping[str, Any]] = None) -> ListPage:
        return await self._list(CUSTOMERS_ENDPOINT, params)

    async def get_customer(self, customer_id: str) -> Customer:
        data = await self.core.request(f"{CUSTOMERS_ENDPOINT}/{customer_id}")
        return Customer.model_validate(data)

    async def get_vendors(self, params: Optional[Mapping[str, Any]] = None) -> ListPage:
        return await self._list(VENDORS_ENDPOINT, params)

    async def get_vendor(self, vendor_id: str) -> Vendor:
        data = await self.core.request(f"{VENDORS_ENDPOINT}/{vendor_id}")
        return Vendor.model_validate(data)

    async def get_vendor_list_for_matching(self) -> list[dict[str, Any]]:
        """All active vendors reduced to the fields used for fuzzy name matching."""
        records = await self.paginator.fetch_all(
            VENDORS_ENDPOINT,
            {"limit": self.settings.page_limit, "status": "active"},
        )
        return [
            {
                "id": record.get("id"),
                "name": record.get("name"),
                "companyName": record.get("companyName"),
                "balance": record.get("balance"),
            }
            for record in records
        ]

    async def get_accounts(self, params: Optional[Mapping[str, Any]] = None) -> ListPage:
        return await self._list(ACCOUNTS_ENDPOINT, params)

    async def get_invoices(self, params: Optional[Mapping[str, Any]] = None) -> ListPage:
        return await self._list(INVOICES_ENDPOINT, params)

    async def get_bills(self, params: Optional[Mapping[str, Any]] = None) -> ListPage:
        return await self._list(BILLS_ENDPOINT, params)

    async def get_bill(self, bill_id: str) -> Bill:
        data = await self.core.request(f"{BILLS_ENDPOINT}/{bill_id}")
        return Bill.model_validate(data)

    async def find_bill_by_ref_number(self, ref_number: str, vendor_id: Optional[str] = None) -> Optional[Bill]:
        return await self.duplicates.find_by_reference(ref_number, vendor_id)

    async def get_purchase_orders(self, params: Optional[Mapping[str, Any]] = None) -> ListPage:
        return await self._list(PURCHASE_ORDERS_ENDPOINT, params)

    async def get_purchase_order(self, purchase_order_id: str) -> PurchaseOrder:
        data = await self.core.request(f"{PURCHASE_ORDERS_ENDPOINT}/{purchase_order_id}")
        return PurchaseOrder.model_validate(data)

    async def find_active_po(self, vendor_id: Optional[str], po_number: str) -> Optional[PurchaseOrder]:
        return await self.purchase_orders.find_active(vendor_id, po_number)

    async def get_active_pos(self, vendor_id: Optional[str]) -> list[PurchaseOrder]:
        return await self.purchase_orders.list_active(vendor_id)

    async def get_credit_card_charges(self, params: Optional[Mapping[str, Any]] = None) -> ListPage:
        return await self._list(CREDIT_CARD_CHARGES_ENDPOINT, params)

    async def create_bill(
        self,
        bill: Union[BillCreate, Mapping[str, Any]],
        *,
        skip_duplicate_check: bool = False,
        skip_pattern_check: bool = False,
    ) -> Bill:
        bill_data = bill if isinstance(bill, BillCreate) else BillCreate.model_validate(bill)
        vendor_id = bill_data.resolved_vendor_id

        with logging_utils.operation_context(self.core.end_user_id):
            try:
                if not skip_pattern_check:
                    if not vendor_id:
                        raise MissingVendorError()
                    if self.vendor_patterns.find_pattern(vendor_id) is None:
                        raise NoVendorPatternError(vendor_id)

                if not skip_duplicate_check and bill_data.ref_number:
                    existing = await self.duplicates.find_by_reference(bill_data.ref_number, vendor_id)
                    if existing is not None:
                        raise DuplicateBillError(existing, vendor_id)
            except (MissingVendorError, NoVendorPatternError, DuplicateBillError) as exc:
                self.logger.warning(
                    "bill_guard_rejected",
                    extra={
                        "error_code": exc.code.value,
                        "vendor_id": vendor_id,
                        "ref_number": bill_data.ref_number,
                    },
                )
                raise

            if bill_data.link_to_transaction_ids:
                self.logger.info(
                    "bill_linked_transactions",
                    extra={
                        "ref_number": bill_data.ref_number,
                        "linked_ids": list(bill_data.link_to_transaction_ids),
                    },
                )
            data = await self._write("create", BILLS_ENDPOINT, bill_data.to_payload())
        return Bill.model_validate(data)

    async def update_bill(self, bill_id: str, bill: Payload) -> Bill:
        # Conductor applies updates through POST on the resource path.
        data = await self._write("update", f"{BILLS_ENDPOINT}/{bill_id}", _as_payload(bill))
        return Bill.model_validate(data)

    async def delete_bill(self, bill_id: str) -> dict[str, Any]:
        return await self._write("delete", f"{BILLS_ENDPOINT}/{bill_id}", None, method="DELETE")

    async def create_invoice(self, invoice: Payload) -> Invoice:
        data = await self._write("create", INVOICES_ENDPOINT, _as_payload(invoice))
        return Invoice.model_validate(data)

    async def create_purchase_order(self, purchase_order: Payload) -> PurchaseOrder:
        data = await self._write("create", PURCHASE_ORDERS_ENDPOINT, _as_payload(purchase_order))
        return PurchaseOrder.model_validate(data)

    async def create_vendor(self, vendor: Payload) -> Vendor:
        data = await self._write("create", VENDORS_ENDPOINT, _as_payload(vendor))
        return Vendor.model_validate(data)

    async def create_credit_card_charge(self, charge: Payload) -> dict[str, Any]:
        return await self._write("create", CREDIT_CARD_CHARGES_ENDPOINT, _as_payload(charge))

    async def _write(
        self,
        action: WriteAction,
        endpoint: str,
        body: Optional[dict[str, Any]],
        *,
        method: str = "POST",
    ) -> dict[str, Any]:
        entity = entity_from_endpoint(endpoint)
        endpoint_label = f"{method} {endpoint}"
        request_ref = reference_of(body)

        with logging_utils.operation_context(self.core.end_user_id):
            logging_utils.log_write_started(
                action=action,
                entity=entity,
                endpoint=endpoint_label,
                ref_number=request_ref,
                payload=body,
            )
            start = perf_counter()
            try:
                data = await self.core.request(endpoint, method=method, body=body)
            except (ApiError, httpx.HTTPError) as exc:
                latency_ms = (perf_counter() - start) * 1000
                if isinstance(exc, ApiError) and exc.remote_accepted:
                    # Applied remotely even though the body is unreadable.
                    status: WriteStatus = "success"
                    status_code: Optional[int] = exc.status_code
                    raw = exc.payload.get("body") if isinstance(exc.payload, Mapping) else exc.payload
                    response: Any = {"statusCode": exc.status_code, "raw": raw}
                    error_code: Optional[str] = exc.code.value
                elif isinstance(exc, ApiError):
                    status = "error"
                    status_code = exc.status_code
                    response = {"statusCode": exc.status_code, "error": exc.payload}
                    error_code = exc.code.value
                else:
                    status = "error"
                    status_code = None
                    response = {"error": {"message": str(exc), "type": type(exc).__name__}}
                    error_code = "transport_error"
                error_message = exc.message if isinstance(exc, ApiError) else str(exc)
                entry = LogEntry(
                    timestamp=self._clock(),
                    action=action,
                    entity=entity,
                    endpoint=endpoint_label,
                    request=body,
                    response=response,
                    status=status,
                    ref_number=request_ref,
                    linked_entities=extract_linked_entities(body, None),
                )
                audit_path = self.audit.record(entry)
                logging_utils.log_write_finished(
                    action=action,
                    entity=entity,
                    endpoint=endpoint_label,
                    ref_number=request_ref,
                    result="success" if status == "success" else "failure",
                    status_code=status_code,
                    latency_ms=latency_ms,
                    audit_path=str(audit_path),
                    error_code=error_code,
                    error_message=error_message,
                )
                raise

            latency_ms = (perf_counter() - start) * 1000
            entry = LogEntry(
                timestamp=self._clock(),
                action=action,
                entity=entity,
                endpoint=endpoint_label,
                request=body,
                response=data,
                status="success",
                ref_number=request_ref or reference_of(data),
                linked_entities=extract_linked_entities(body, data),
            )
            audit_path = self.audit.record(entry)
            logging_utils.log_write_finished(
                action=action,
                entity=entity,
                endpoint=endpoint_label,
                ref_number=entry.ref_number,
                result="success",
                status_code=None,
                latency_ms=latency_ms,
                audit_path=str(audit_path),
            )
            return data
