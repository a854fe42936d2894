from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Mapping, Optional

from qbd_guard.schemas.conductor import ListPage
from qbd_guard.services.request_core import ConductorRequestCore


class CursorPaginator:
    """Follows ``nextCursor`` across list endpoints.

    Pages are fetched strictly one after another since every cursor comes
    from the previous response. Hitting the page cap truncates silently.
    """

    def __init__(self, core: ConductorRequestCore, *, default_max_pages: int = 20) -> None:
        self.core = core
        self.default_max_pages = default_max_pages
        self.logger = logging.getLogger("qbd_guard.services.paginator")

    async def iter_pages(
        self,
        endpoint: str,
        params: Optional[Mapping[str, Any]] = None,
        *,
        max_pages: Optional[int] = None,
    ) -> AsyncIterator[list[dict[str, Any]]]:
        cap = self.default_max_pages if max_pages is None else max_pages
        if cap < 1:
            raise ValueError("max_pages must be >= 1")

        cursor: Optional[str] = None
        fetched = 0
        while True:
            page_params = dict(params or {})
            if cursor:
                page_params["cursor"] = cursor
            raw = await self.core.request(endpoint, params=page_params)
            page = ListPage.model_validate(raw or {})
            fetched += 1
            yield page.data

            cursor = page.next_cursor
            if not cursor:
                return
            if fetched >= cap:
                self.logger.info(
                    "page_cap_reached",
                    extra={"endpoint": endpoint, "max_pages": cap},
                )
                return

    async def fetch_all(
        self,
        endpoint: str,
        params: Optional[Mapping[str, Any]] = None,
        *,
        max_pages: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        records: list[dict[str, Any]] = []
        async for data in self.iter_pages(endpoint, params, max_pages=max_pages):
            records.extend(data)
        return records
