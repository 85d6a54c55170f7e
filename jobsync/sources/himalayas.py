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
    normalize_experience_level,
    parse_timestamp,
    strip_html,
)


class HimalayasSource(SourceAdapter):
    """Himalayas pages with limit/offset and reports ``totalCount``."""

    name = "himalayas"
    base_url = "https://himalayas.app/jobs/api"
    priority = 3
    rate_limit_seconds = 1.0
    page_size = 20

    async def fetch(self, client: httpx.AsyncClient, request: PageRequest) -> SourcePage:
        offset = (request.page - 1) * request.limit
        payload = await self._get_json(client, self.base_url, params={"limit": request.limit, "offset": offset})
        if not isinstance(payload, dict):
            return SourcePage(items=[], has_more=False)
        items = [item for item in payload.get("jobs") or [] if isinstance(item, dict)]
        total = payload.get("totalCount")
        if isinstance(total, int):
            has_more = offset + len(items) < total and bool(items)
        else:
            has_more = len(items) >= request.limit
        return SourcePage(items=items, has_more=has_more)

    def normalize(self, item: dict[str, Any]) -> JobRecord | None:
        restrictions = coerce_text_list(item.get("locationRestrictions"))
        categories = coerce_text_list(item.get("categories"))
        salary_min = coerce_salary(item.get("minSalary"))
        salary_max = coerce_salary(item.get("maxSalary"))
        has_salary = salary_min is not None or salary_max is not None
        description_html = coerce_text(item.get("description"))
        return self._record(
            external_id=item.get("id") or item.get("guid"),
            title=item.get("title"),
            company=item.get("companyName"),
            apply_url=item.get("applicationLink"),
            company_logo=coerce_text(item.get("companyLogo")),
            location=", ".join(restrictions) if restrictions else "Worldwide",
            location_type="remote",
            description=coerce_text(item.get("excerpt")) or strip_html(description_html),
            description_html=description_html,
            category=normalize_category(categories[0] if categories else None),
            tags=categories,
            experience_level=normalize_experience_level(coerce_text(item.get("seniority"))),
            employment_type="full-time",
            salary_min=salary_min,
            salary_max=salary_max,
            salary_currency=(coerce_text(item.get("currency")) or "USD") if has_salary else None,
            salary_period="yearly" if has_salary else None,
            published_at=parse_timestamp(item.get("pubDate")) or parse_timestamp(item.get("publishedDate")),
            expires_at=parse_timestamp(item.get("expiryDate")),
        )
