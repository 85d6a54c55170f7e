from __future__ import annotations

from typing import Any

import httpx

from jobsync.services.records import JobRecord
from jobsync.sources.base import PageRequest, SourceAdapter, SourcePage
from jobsync.sources.normalize import (
    coerce_salary,
    coerce_text,
    normalize_category,
    normalize_employment_type,
    parse_timestamp,
    strip_html,
)

RESULTS_PER_PAGE = 50


def _first(value: Any) -> Any:
    if isinstance(value, list) and value:
        return value[0]
    return None


def _named(value: Any, key: str) -> list[str]:
    if not isinstance(value, list):
        return []
    names: list[str] = []
    for entry in value:
        name = coerce_text(entry.get(key)) if isinstance(entry, dict) else None
        if name:
            names.append(name)
    return names


class USAJobsSource(SourceAdapter):
    """USAJOBS search API. Requires a registered API key and the registering email as User-Agent."""

    name = "usajobs"
    base_url = "https://data.usajobs.gov/api/search"
    priority = 7
    rate_limit_seconds = 0.5
    page_size = RESULTS_PER_PAGE

    def __init__(self, api_key: str | None = None, email: str | None = None) -> None:
        self.api_key = api_key
        self.email = email

    def is_configured(self) -> bool:
        return bool(self.api_key and self.email)

    def request_headers(self) -> dict[str, str]:
        return {
            "Host": "data.usajobs.gov",
            "User-Agent": self.email or "",
            "Authorization-Key": self.api_key or "",
        }

    async def fetch(self, client: httpx.AsyncClient, request: PageRequest) -> SourcePage:
        payload = await self._get_json(
            client,
            self.base_url,
            params={"Page": request.page, "ResultsPerPage": RESULTS_PER_PAGE},
        )
        result = payload.get("SearchResult") if isinstance(payload, dict) else None
        if not isinstance(result, dict):
            return SourcePage(items=[], has_more=False)
        items = [item for item in result.get("SearchResultItems") or [] if isinstance(item, dict)]
        total = result.get("SearchResultCountAll")
        has_more = bool(items) and isinstance(total, int) and request.page * RESULTS_PER_PAGE < total
        return SourcePage(items=items, has_more=has_more)

    def normalize(self, item: dict[str, Any]) -> JobRecord | None:
        descriptor = item.get("MatchedObjectDescriptor")
        if not isinstance(descriptor, dict):
            return None
        user_area = descriptor.get("UserArea") if isinstance(descriptor.get("UserArea"), dict) else {}
        details = user_area.get("Details") if isinstance(user_area.get("Details"), dict) else {}
        remuneration = _first(descriptor.get("PositionRemuneration"))
        remuneration = remuneration if isinstance(remuneration, dict) else {}
        categories = _named(descriptor.get("JobCategory"), "Name")
        schedules = _named(descriptor.get("PositionSchedule"), "Name")
        locations = _named(descriptor.get("PositionLocation"), "LocationName")
        qualification = coerce_text(descriptor.get("QualificationSummary"))
        salary_min = coerce_salary(remuneration.get("MinimumRange"))
        salary_max = coerce_salary(remuneration.get("MaximumRange"))
        has_salary = salary_min is not None or salary_max is not None

        return self._record(
            external_id=item.get("MatchedObjectId"),
            title=descriptor.get("PositionTitle"),
            company=descriptor.get("OrganizationName"),
            apply_url=_first(descriptor.get("ApplyURI")) or descriptor.get("PositionURI"),
            location=", ".join(locations) or "United States",
            location_type="remote" if details.get("TeleworkEligible") is True else "onsite",
            description=strip_html(coerce_text(details.get("JobSummary")) or qualification),
            requirements=qualification,
            category=normalize_category(categories[0] if categories else None),
            tags=categories,
            employment_type=normalize_employment_type(schedules[0] if schedules else None),
            salary_min=salary_min,
            salary_max=salary_max,
            salary_currency="USD" if has_salary else None,
            salary_period=("yearly" if remuneration.get("RateIntervalCode") == "PA" else "hourly") if has_salary else None,
            published_at=parse_timestamp(descriptor.get("PublicationStartDate")),
            expires_at=parse_timestamp(descriptor.get("ApplicationCloseDate")),
        )
