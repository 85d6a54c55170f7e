from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Literal

SyncStatus = Literal["active", "stale", "expired"]
SyncType = Literal["daily", "hourly", "manual"]
RunStatus = Literal["running", "completed", "failed"]

SYNC_STATUSES = ("active", "stale", "expired")
SYNC_TYPES = ("daily", "hourly", "manual")
LOCATION_TYPES = ("onsite", "remote", "hybrid")
EXPERIENCE_LEVELS = ("entry", "mid", "senior", "executive")
EMPLOYMENT_TYPES = ("full-time", "part-time", "contract", "internship", "freelance", "temporary")

# Columns overwritten on every upsert of an existing (source, external_id).
JOB_CONTENT_FIELDS = (
    "title",
    "company",
    "company_logo",
    "company_url",
    "category",
    "location",
    "location_type",
    "experience_level",
    "employment_type",
    "salary_min",
    "salary_max",
    "salary_currency",
    "salary_period",
    "description",
    "description_html",
    "requirements",
    "benefits",
    "tags",
    "apply_url",
    "application_email",
    "published_at",
    "expires_at",
)


@dataclass(slots=True)
class JobRecord:
    """Source-agnostic representation of one posting, as produced by an adapter."""

    source: str
    external_id: str
    title: str
    company: str
    apply_url: str
    location_type: str = "onsite"
    company_logo: str | None = None
    company_url: str | None = None
    category: str | None = None
    location: str | None = None
    experience_level: str | None = None
    employment_type: str | None = None
    salary_min: int | None = None
    salary_max: int | None = None
    salary_currency: str | None = None
    salary_period: str | None = None
    description: str = ""
    description_html: str | None = None
    requirements: str | None = None
    benefits: str | None = None
    tags: list[str] = field(default_factory=list)
    application_email: str | None = None
    published_at: datetime | None = None
    expires_at: datetime | None = None

    @property
    def natural_key(self) -> tuple[str, str]:
        return (self.source, self.external_id)

    def content_fields(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in JOB_CONTENT_FIELDS}


@dataclass(slots=True)
class UpsertCounts:
    created: int = 0
    updated: int = 0

    def add(self, other: UpsertCounts) -> None:
        self.created += other.created
        self.updated += other.updated


@dataclass(slots=True)
class SourceResult:
    source: str
    success: bool
    created: int = 0
    updated: int = 0
    skipped: int = 0
    malformed: int = 0
    fetched: int = 0
    duration_ms: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class RunStats:
    created: int = 0
    updated: int = 0
    staled: int = 0
    deleted: int = 0
    sources_completed: int = 0
    sources_skipped: int = 0
    duration_ms: int = 0


@dataclass(slots=True)
class RunSummary:
    run_id: str
    sync_type: SyncType
    status: RunStatus
    stats: RunStats
    results: list[SourceResult]
    errors: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "sync_type": self.sync_type,
            "status": self.status,
            "stats": asdict(self.stats),
            "results": [result.to_dict() for result in self.results],
            "errors": list(self.errors),
        }
