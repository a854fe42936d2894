from __future__ import annotations

from typing import Any, Mapping, Optional

import httpx

from qbd_guard.core.config import Settings
from qbd_guard.core.errors import ApiError, ConfigurationError, extract_error_message
from qbd_guard.core.http import get_async_client, request_with_retry_and_backoff


class ConductorRequestCore:
    """One authenticated call against the Conductor REST gateway.

    Holds no state besides the injected settings. Audit logging and policy
    checks live in the callers.
    """

    END_USER_HEADER = "Conductor-End-User-Id"

    def __init__(
        self,
        settings: Settings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not settings.api_key or not settings.end_user_id:
            raise ConfigurationError("Missing CONDUCTOR_API_KEY or CONDUCTOR_END_USER_ID")
        self.settings = settings
        self.end_user_id: str = settings.end_user_id
        self._api_key: str = settings.api_key
        self._transport = transport

    def build_url(self, endpoint: str, params: Optional[Mapping[str, Any]] = None) -> httpx.URL:
        base = self.settings.api_base_url.rstrip("/")
        url = httpx.URL(f"{base}{endpoint}")
        if params:
            cleaned = {key: value for key, value in params.items() if value is not None}
            if cleaned:
                url = url.copy_merge_params(cleaned)
        return url

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            self.END_USER_HEADER: self.end_user_id,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def request(
        self,
        endpoint: str,
        method: str = "GET",
        body: Optional[Any] = None,
        params: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        method = method.upper()
        url = self.build_url(endpoint, params)
        headers = self._headers()
        async with get_async_client(self.settings, self._transport) as client:
            if method == "GET":
                response = await request_with_retry_and_backoff(
                    client,
                    method,
                    url,
                    settings=self.settings,
                    headers=headers,
                )
            else:
                response = await client.request(
                    method,
                    url,
                    headers=headers,
                    json=body,
                )

        if not response.is_success:
            payload = self._parse_error_payload(response)
            message = extract_error_message(payload) or response.reason_phrase or None
            raise ApiError(response.status_code, payload, message)

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            # The remote side accepted the call; keep the raw body for the caller.
            raise ApiError(
                response.status_code,
                {"message": "Response body is not valid JSON", "body": response.text},
            ) from exc

    def _parse_error_payload(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return {"message": response.reason_phrase or f"HTTP {response.status_code}"}
