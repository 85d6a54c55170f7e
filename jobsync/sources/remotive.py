"""Remotive public API.

Docs: https://remotive.com/api/remote-jobs

The endpoint has no paging: it returns every open posting at once (optionally capped by ``limit``),
so only page 1 yields items.
"""

from __future__ import annotations

from typing import Any

import httpx

from jobsync.services.records import JobRecord
from jobsync.sources.base import PageRequest, SourceAdapter, SourcePage
from jobsync.sources.normalize import (
    coerce_text,
    coerce_text_list,
    normalize_category,
    normalize_employment_type,
    parse_salary_range,
    parse_timestamp,
    strip_html,
)


class RemotiveSource(SourceAdapter):
    name = "remotive"
    base_url = "https://remotive.com/api/remote-jobs"
    priority = 1
    rate_limit_seconds = 1.0
    page_size = 200

    async def fetch(self, client: httpx.AsyncClient, request: PageRequest) -> SourcePage:
        if request.page > 1:
            return SourcePage(items=[], has_more=False)
        payload = await self._get_json(client, self.base_url, params={"limit": request.limit})
        jobs = payload.get("jobs") if isinstance(payload, dict) else None
        items = [item for item in jobs or [] if isinstance(item, dict)]
        return SourcePage(items=items, has_more=False)

    def normalize(self, item: dict[str, Any]) -> JobRecord | None:
        salary_min, salary_max, currency = parse_salary_range(coerce_text(item.get("salary")))
        description_html = coerce_text(item.get("description"))
        return self._record(
            external_id=item.get("id"),
            title=item.get("title"),
            company=item.get("company_name"),
            apply_url=item.get("url"),
            company_logo=coerce_text(item.get("company_logo")),
            location=coerce_text(item.get("candidate_required_location")) or "Worldwide",
            location_type="remote",
            description=strip_html(description_html),
            description_html=description_html,
            category=normalize_category(coerce_text(item.get("category"))),
            tags=coerce_text_list(item.get("tags")),
            employment_type=normalize_employment_type(coerce_text(item.get("job_type"))),
            salary_min=salary_min,
            salary_max=salary_max,
            salary_currency=currency if salary_min is not None else None,
            salary_period="yearly" if salary_min is not None else None,
            published_at=parse_timestamp(item.get("publication_date")),
        )
