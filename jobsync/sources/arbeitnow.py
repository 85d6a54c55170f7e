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


class ArbeitnowSource(SourceAdapter):
    """Arbeitnow job board API: 1-based ``page`` with a ``links.next`` cursor; ``created_at`` is a unix epoch."""

    name = "arbeitnow"
    base_url = "https://www.arbeitnow.com/api/job-board-api"
    priority = 6
    rate_limit_seconds = 1.0
    page_size = 100

    async def fetch(self, client: httpx.AsyncClient, request: PageRequest) -> SourcePage:
        payload = await self._get_json(client, self.base_url, params={"page": request.page})
        if not isinstance(payload, dict):
            return SourcePage(items=[], has_more=False)
        items = [item for item in payload.get("data") or [] if isinstance(item, dict)]
        links = payload.get("links") if isinstance(payload.get("links"), dict) else {}
        return SourcePage(items=items, has_more=bool(items) and bool(links.get("next")))

    def normalize(self, item: dict[str, Any]) -> JobRecord | None:
        tags = coerce_text_list(item.get("tags"))
        job_types = coerce_text_list(item.get("job_types"))
        location = coerce_text(item.get("location")) or "Europe"
        description_html = coerce_text(item.get("description"))
        return self._record(
            external_id=item.get("slug"),
            title=item.get("title"),
            company=item.get("company_name"),
            apply_url=item.get("url"),
            location=location,
            location_type=determine_location_type(item.get("remote") is True, location),
            description=strip_html(description_html),
            description_html=description_html,
            category=normalize_category(tags[0] if tags else None),
            tags=tags,
            employment_type=normalize_employment_type(job_types[0] if job_types else None),
            published_at=parse_timestamp(item.get("created_at")),
        )
