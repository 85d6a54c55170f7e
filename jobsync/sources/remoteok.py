from __future__ import annotations

from typing import Any

import httpx

from jobsync.services.records import JobRecord
from jobsync.sources.base import PageRequest, SourceAdapter, SourcePage
from jobsync.sources.normalize import (
    coerce_salary,
    coerce_text,
    coerce_text_list,
    normalize_category,
    parse_timestamp,
    strip_html,
)


class RemoteOKSource(SourceAdapter):
    """RemoteOK returns one JSON array whose first element is a legal notice, not a job."""

    name = "remoteok"
    base_url = "https://remoteok.com/api"
    priority = 2
    rate_limit_seconds = 2.0
    page_size = 100

    async def fetch(self, client: httpx.AsyncClient, request: PageRequest) -> SourcePage:
        if request.page > 1:
            return SourcePage(items=[], has_more=False)
        payload = await self._get_json(client, self.base_url)
        if not isinstance(payload, list):
            return SourcePage(items=[], has_more=False)
        items = [item for item in payload[1:] if isinstance(item, dict) and "id" in item]
        return SourcePage(items=items[: request.limit], has_more=False)

    def normalize(self, item: dict[str, Any]) -> JobRecord | None:
        tags = coerce_text_list(item.get("tags"))
        description_html = coerce_text(item.get("description"))
        salary_min = coerce_salary(item.get("salary_min"))
        salary_max = coerce_salary(item.get("salary_max"))
        has_salary = salary_min is not None or salary_max is not None
        return self._record(
            external_id=item.get("id"),
            title=item.get("position"),
            company=item.get("company"),
            apply_url=item.get("apply_url") or item.get("url"),
            company_logo=coerce_text(item.get("company_logo")),
            location=coerce_text(item.get("location")) or "Worldwide",
            location_type="remote",
            description=strip_html(description_html),
            description_html=description_html,
            category=normalize_category(tags[0] if tags else None),
            tags=tags,
            employment_type="full-time",
            salary_min=salary_min,
            salary_max=salary_max,
            salary_currency="USD" if has_salary else None,
            salary_period="yearly" if has_salary else None,
            published_at=parse_timestamp(item.get("date")) or parse_timestamp(item.get("epoch")),
        )
