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
    normalize_employment_type,
    normalize_experience_level,
    parse_timestamp,
    strip_html,
)

MAX_COUNT = 50


def _text_list(value: Any) -> list[str]:
    # Jobicy sends either a list or a bare string for industry/type.
    if isinstance(value, str):
        text = coerce_text(value)
        return [text] if text else []
    return coerce_text_list(value)


class JobicySource(SourceAdapter):
    name = "jobicy"
    base_url = "https://jobicy.com/api/v2/remote-jobs"
    priority = 5
    rate_limit_seconds = 1.0
    page_size = MAX_COUNT

    async def fetch(self, client: httpx.AsyncClient, request: PageRequest) -> SourcePage:
        if request.page > 1:
            return SourcePage(items=[], has_more=False)
        payload = await self._get_json(client, self.base_url, params={"count": min(request.limit, MAX_COUNT)})
        jobs = payload.get("jobs") if isinstance(payload, dict) else None
        return SourcePage(items=[item for item in jobs or [] if isinstance(item, dict)], has_more=False)

    def normalize(self, item: dict[str, Any]) -> JobRecord | None:
        industries = _text_list(item.get("jobIndustry"))
        job_types = _text_list(item.get("jobType"))
        description_html = coerce_text(item.get("jobDescription"))
        salary_min = coerce_salary(item.get("annualSalaryMin"))
        salary_max = coerce_salary(item.get("annualSalaryMax"))
        has_salary = salary_min is not None or salary_max is not None
        return self._record(
            external_id=item.get("id"),
            title=item.get("jobTitle"),
            company=item.get("companyName"),
            apply_url=item.get("url"),
            company_logo=coerce_text(item.get("companyLogo")),
            location=coerce_text(item.get("jobGeo")) or "Worldwide",
            location_type="remote",
            description=strip_html(description_html or coerce_text(item.get("jobExcerpt"))),
            description_html=description_html,
            category=normalize_category(industries[0] if industries else None),
            tags=industries,
            experience_level=normalize_experience_level(coerce_text(item.get("jobLevel"))),
            employment_type=normalize_employment_type(job_types[0] if job_types else None),
            salary_min=salary_min,
            salary_max=salary_max,
            salary_currency=(coerce_text(item.get("salaryCurrency")) or "USD") if has_salary else None,
            salary_period="yearly" if has_salary else None,
            published_at=parse_timestamp(item.get("pubDate")),
        )
