import pytest

from qbd_guard.schemas.conductor import PurchaseOrder
from qbd_guard.services.paginator import CursorPaginator
from qbd_guard.services.purchase_orders import ActivePurchaseOrderResolver
from qbd_guard.services.request_core import ConductorRequestCore

from conftest import VALKS_ID


def _po(po_id, ref_number, *, received=False, closed=False, vendor_id=VALKS_ID):
    return {
        "id": po_id,
        "objectType": "qbd_purchase_order",
        "refNumber": ref_number,
        "transactionDate": "2026-01-10",
        "totalAmount": "4800.00",
        "isFullyReceived": received,
        "isManuallyClosed": closed,
        "vendor": {"id": vendor_id, "fullName": "Valk's Machinery Ltd."},
        "lines": [{"item": {"fullName": "Hydraulic pump"}, "quantity": "1", "rate": "4800.00"}],
    }


def _resolver(settings, fake_conductor) -> ActivePurchaseOrderResolver:
    core = ConductorRequestCore(settings, transport=fake_conductor.transport)
    return ActivePurchaseOrderResolver(CursorPaginator(core), page_limit=2)


@pytest.mark.parametrize(
    "received, closed, active",
    [
        (False, False, True),
        (True, False, False),
        (False, True, False),
        (True, True, False),
    ],
)
def test_activity_predicate(received, closed, active):
    purchase_order = PurchaseOrder.model_validate(_po("PO1", "1050", received=received, closed=closed))

    assert purchase_order.is_active is active


def test_missing_flags_count_as_open():
    purchase_order = PurchaseOrder.model_validate(
        {"id": "PO1", "refNumber": "1050", "isFullyReceived": None}
    )

    assert purchase_order.is_active is True


@pytest.mark.asyncio
async def test_find_active_skips_closed_po_with_same_number(settings, fake_conductor):
    fake_conductor.collections["purchase-orders"] = [
        _po("PO-OLD", "1050", received=True),
        _po("PO-X", "1049"),
        _po("PO-NEW", "1050"),
    ]
    resolver = _resolver(settings, fake_conductor)

    purchase_order = await resolver.find_active(VALKS_ID, "1050")

    assert purchase_order.id == "PO-NEW"
    assert fake_conductor.requests[0].url.params["vendorIds"] == VALKS_ID


@pytest.mark.asyncio
async def test_find_active_returns_none_when_all_closed(settings, fake_conductor):
    fake_conductor.collections["purchase-orders"] = [
        _po("PO-1", "1050", closed=True),
        _po("PO-2", "1050", received=True, closed=True),
    ]
    resolver = _resolver(settings, fake_conductor)

    assert await resolver.find_active(VALKS_ID, "1050") is None


@pytest.mark.asyncio
async def test_list_active_keeps_server_order(settings, fake_conductor):
    fake_conductor.collections["purchase-orders"] = [
        _po("PO-1", "1001"),
        _po("PO-2", "1002", received=True),
        _po("PO-3", "1003"),
        _po("PO-4", "1004", closed=True),
        _po("PO-5", "1005"),
        _po("PO-6", "1006", vendor_id="V-OTHER"),
    ]
    resolver = _resolver(settings, fake_conductor)

    active = await resolver.list_active(VALKS_ID)

    assert [po.id for po in active] == ["PO-1", "PO-3", "PO-5"]
    assert len(fake_conductor.requests) == 3
