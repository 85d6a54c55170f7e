from __future__ import annotations

from typing import Any

import httpx

from jobsync.services.records import JobRecord
from jobsync.sources.base import PageRequest, SourceAdapter, SourcePage
from jobsync.sources.normalize import (
    coerce_text,
    coerce_text_list,
    determine_location_type,
    normalize_category,
    normalize_employment_type,
    parse_timestamp,
    strip_html,
)


class FindWorkSource(SourceAdapter):
    """findwork.dev developer jobs; token auth, ``next`` link pagination."""

    name = "findwork"
    base_url = "https://findwork.dev/api/jobs/"
    priority = 8
    rate_limit_seconds = 1.0
    page_size = 100

    def __init__(self, api_key: str | None = None) -> None:
        self.api_key = api_key

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def request_headers(self) -> dict[str, str]:
        return {"Authorization": f"Token {self.api_key or ''}"}

    async def fetch(self, client: httpx.AsyncClient, request: PageRequest) -> SourcePage:
        payload = await self._get_json(client, self.base_url, params={"page": request.page})
        if not isinstance(payload, dict):
            return SourcePage(items=[], has_more=False)
        items = [item for item in payload.get("results") or [] if isinstance(item, dict)]
        return SourcePage(items=items, has_more=bool(items) and bool(payload.get("next")))

    def normalize(self, item: dict[str, Any]) -> JobRecord | None:
        keywords = coerce_text_list(item.get("keywords"))
        location = coerce_text(item.get("location")) or "Worldwide"
        description_html = coerce_text(item.get("text"))
        return self._record(
            external_id=item.get("id"),
            title=item.get("role"),
            company=item.get("company_name"),
            apply_url=item.get("url"),
            company_logo=coerce_text(item.get("logo")),
            location=location,
            location_type=determine_location_type(item.get("remote") is True, location),
            description=strip_html(description_html),
            description_html=description_html,
            category=normalize_category(keywords[0] if keywords else None),
            tags=keywords,
            employment_type=normalize_employment_type(coerce_text(item.get("employment_type"))),
            published_at=parse_timestamp(item.get("date_posted")),
        )
