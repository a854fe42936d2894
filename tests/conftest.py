import json
from pathlib import Path
from typing import Any, Optional

import httpx
import pytest

from qbd_guard.core.config import Settings


VALKS_ID = "800002F2-1498582191"


class FakeConductor:
    """In-memory stand-in for the Conductor gateway behind httpx.MockTransport."""

    def __init__(self, page_size: int = 2):
        self.page_size = page_size
        self.collections: dict[str, list[dict[str, Any]]] = {
            "bills": [],
            "purchase-orders": [],
            "vendors": [],
            "invoices": [],
        }
        self.end_user: Optional[dict[str, Any]] = None
        self.requests: list[httpx.Request] = []
        self.fail_writes_with: Optional[httpx.Response] = None
        self._next_id = 1

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def writes(self) -> list[httpx.Request]:
        return [request for request in self.requests if request.method != "GET"]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.removeprefix("/v1")
        if path.startswith("/end-users/"):
            if self.end_user is None:
                return httpx.Response(404, json={"error": {"message": "End user not found"}})
            return httpx.Response(200, json=self.end_user)

        parts = path.removeprefix("/quickbooks-desktop/").split("/")
        resource = parts[0]
        if resource not in self.collections:
            return httpx.Response(404, json={"message": f"Unknown resource {resource}"})

        if request.method == "GET" and len(parts) == 1:
            return self._list(resource, request)
        if request.method == "GET":
            for record in self.collections[resource]:
                if record.get("id") == parts[1]:
                    return httpx.Response(200, json=record)
            return httpx.Response(404, json={"error": {"message": "Object not found"}})
        if self.fail_writes_with is not None:
            return self.fail_writes_with
        if request.method == "POST" and len(parts) == 1:
            return self._create(resource, json.loads(request.content))
        if request.method == "DELETE":
            return httpx.Response(200, json={"id": parts[1], "deleted": True})
        return httpx.Response(200, json={"id": parts[1], **json.loads(request.content)})

    def _list(self, resource: str, request: httpx.Request) -> httpx.Response:
        params = request.url.params
        records = self.collections[resource]
        vendor_id = params.get("vendorIds")
        if vendor_id:
            records = [r for r in records if (r.get("vendor") or {}).get("id") == vendor_id]
        updated_after = params.get("updatedAfter")
        if updated_after:
            records = [r for r in records if r.get("updatedAt", "9999") >= updated_after]
        limit = int(params.get("limit", self.page_size))
        offset = int(params.get("cursor", "0"))
        page = records[offset : offset + limit]
        body: dict[str, Any] = {"objectType": "list", "data": page}
        if offset + limit < len(records):
            body["nextCursor"] = str(offset + limit)
        return httpx.Response(200, json=body)

    def _create(self, resource: str, payload: dict[str, Any]) -> httpx.Response:
        created = {"id": f"TXN-{self._next_id}", **payload}
        self._next_id += 1
        linked_ids = payload.get("linkToTransactionIds") or []
        if linked_ids:
            created["linkedTransactions"] = [
                {
                    "id": po["id"],
                    "transactionType": "purchase_order",
                    "refNumber": po.get("refNumber"),
                }
                for po in self.collections["purchase-orders"]
                if po["id"] in linked_ids
            ]
        self.collections[resource].append(created)
        return httpx.Response(201, json=created)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        CONDUCTOR_API_KEY="sk_test_abcdef123456",
        CONDUCTOR_END_USER_ID="end_usr_test",
        CONDUCTOR_API_BASE="https://api.conductor.is/v1",
        DATA_PATTERNS_DIR=tmp_path / "dataPatterns",
        WRITE_LOGS_DIR=tmp_path / "logs",
        PAGE_LIMIT=2,
    )


@pytest.fixture
def fake_conductor() -> FakeConductor:
    return FakeConductor()


@pytest.fixture
def write_pattern(settings: Settings):
    def _write(party_id: str, filename: Optional[str] = None, kind: str = "vendor", **extra: Any) -> Path:
        settings.data_patterns_dir.mkdir(parents=True, exist_ok=True)
        path = settings.data_patterns_dir / (filename or f"{kind}_{party_id}.json")
        content = {kind: {"id": party_id, "fullName": f"{kind.title()} {party_id}"}, **extra}
        path.write_text(json.dumps(content), encoding="utf-8")
        return path

    return _write
