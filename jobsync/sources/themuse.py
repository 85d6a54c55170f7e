from __future__ import annotations

from typing import Any

import httpx

from jobsync.services.records import JobRecord
from jobsync.sources.base import PageRequest, SourceAdapter, SourcePage
from jobsync.sources.normalize import (
    coerce_text,
    determine_location_type,
    normalize_category,
    normalize_employment_type,
    normalize_experience_level,
    parse_timestamp,
    strip_html,
)


def _names(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    names: list[str] = []
    for entry in value:
        name = coerce_text(entry.get("name")) if isinstance(entry, dict) else None
        if name:
            names.append(name)
    return names


class TheMuseSource(SourceAdapter):
    """The Muse public jobs API; its ``page`` parameter is 0-indexed and the response reports ``page_count``."""

    name = "themuse"
    base_url = "https://www.themuse.com/api/public/jobs"
    priority = 4
    rate_limit_seconds = 0.5
    page_size = 20

    async def fetch(self, client: httpx.AsyncClient, request: PageRequest) -> SourcePage:
        payload = await self._get_json(client, self.base_url, params={"page": request.page - 1})
        if not isinstance(payload, dict):
            return SourcePage(items=[], has_more=False)
        items = [item for item in payload.get("results") or [] if isinstance(item, dict)]
        page_count = payload.get("page_count")
        has_more = bool(items) and isinstance(page_count, int) and request.page < page_count
        return SourcePage(items=items, has_more=has_more)

    def normalize(self, item: dict[str, Any]) -> JobRecord | None:
        company = item.get("company") if isinstance(item.get("company"), dict) else {}
        refs = item.get("refs") if isinstance(item.get("refs"), dict) else {}
        locations = _names(item.get("locations"))
        categories = _names(item.get("categories"))
        levels = _names(item.get("levels"))
        description_html = coerce_text(item.get("contents"))
        return self._record(
            external_id=item.get("id"),
            title=item.get("name"),
            company=company.get("name"),
            apply_url=refs.get("landing_page"),
            location=", ".join(locations) or "United States",
            location_type=determine_location_type(
                any("remote" in location.lower() for location in locations),
                locations[0] if locations else None,
            ),
            description=strip_html(description_html),
            description_html=description_html,
            category=normalize_category(categories[0] if categories else None),
            tags=categories,
            experience_level=normalize_experience_level(levels[0] if levels else None),
            employment_type=normalize_employment_type(coerce_text(item.get("type"))),
            published_at=parse_timestamp(item.get("publication_date")),
        )
