"""Base classes for job source adapters."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import httpx

from jobsync.core.urls import normalize_apply_url
from jobsync.services.records import JobRecord
from jobsync.sources.normalize import coerce_text


class SourceNotConfiguredError(RuntimeError):
    """Raised when an adapter is asked to fetch without the credentials it needs."""


@dataclass(slots=True)
class PageRequest:
    page: int
    limit: int
    since: datetime | None = None


@dataclass(slots=True)
class SourcePage:
    items: list[dict[str, Any]]
    has_more: bool = False


class SourceAdapter(ABC):
    """One external job provider: how to page through it and how to map its items to JobRecord."""

    name: str
    base_url: str
    priority: int = 100
    rate_limit_seconds: float = 1.0
    page_size: int = 50

    def is_configured(self) -> bool:
        return True

    def request_headers(self) -> dict[str, str]:
        return {}

    @abstractmethod
    async def fetch(self, client: httpx.AsyncClient, request: PageRequest) -> SourcePage:
        """Fetch one page of raw items. Pages are 1-based regardless of the provider's convention."""
        raise NotImplementedError

    @abstractmethod
    def normalize(self, item: dict[str, Any]) -> JobRecord | None:
        """Map one raw item to a JobRecord, or None when a required field is missing."""
        raise NotImplementedError

    async def _get_json(
        self,
        client: httpx.AsyncClient,
        url: str,
        *,
        params: dict[str, Any] | None = None,
    ) -> Any:
        if not self.is_configured():
            raise SourceNotConfiguredError(f"source {self.name} is missing credentials")
        response = await client.get(url, params=params, headers=self.request_headers())
        response.raise_for_status()
        return response.json()

    def _record(
        self,
        *,
        external_id: Any,
        title: Any,
        company: Any,
        apply_url: Any,
        **fields: Any,
    ) -> JobRecord | None:
        normalized_id = coerce_text(external_id)
        normalized_title = coerce_text(title)
        normalized_company = coerce_text(company)
        normalized_url = normalize_apply_url(coerce_text(apply_url))
        if not normalized_id or not normalized_title or not normalized_company or not normalized_url:
            return None
        return JobRecord(
            source=self.name,
            external_id=normalized_id,
            title=normalized_title,
            company=normalized_company,
            apply_url=normalized_url,
            **fields,
        )
