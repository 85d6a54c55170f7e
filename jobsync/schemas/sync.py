from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

SyncType = Literal["daily", "hourly", "manual"]
RunStatus = Literal["running", "completed", "failed"]


class SyncRunCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    mode: SyncType = "manual"
    source: str | None = Field(default=None, min_length=1)
    incremental: bool | None = None
    stale_after_days: int | None = Field(default=None, ge=1, le=3650)
    expire_after_days: int | None = Field(default=None, ge=1, le=3650)

    @model_validator(mode="after")
    def _source_requires_manual(self) -> "SyncRunCreateRequest":
        if self.source is not None and self.mode != "manual":
            raise ValueError("source can only be set for manual runs")
        return self


class SourceResultOut(BaseModel):
    source: str
    success: bool
    created: int = 0
    updated: int = 0
    skipped: int = 0
    malformed: int = 0
    fetched: int = 0
    duration_ms: int = 0
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class RunStatsOut(BaseModel):
    created: int
    updated: int
    staled: int
    deleted: int
    sources_completed: int
    sources_skipped: int
    duration_ms: int


class RunSummaryOut(BaseModel):
    run_id: str
    sync_type: SyncType
    status: RunStatus
    stats: RunStatsOut
    results: list[SourceResultOut] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class SyncRunOut(BaseModel):
    id: str
    sync_type: SyncType
    status: RunStatus
    sources_total: int
    sources_completed: int
    sources_skipped: int
    jobs_created: int
    jobs_updated: int
    jobs_staled: int
    jobs_deleted: int
    errors: list[str] | None = None
    started_at: datetime
    completed_at: datetime | None = None
    duration_ms: int | None = None


class SourceStatusOut(BaseModel):
    source: str
    success: bool
    created: int
    updated: int
    skipped: int
    errors: list[str] = Field(default_factory=list)
    finished_at: datetime
    running: bool = False


class SyncStatusOut(BaseModel):
    last_completed_run: SyncRunOut | None = None
    running_runs: list[SyncRunOut] = Field(default_factory=list)
    jobs: dict[str, int | dict[str, int]] = Field(default_factory=dict)
    sources: list[SourceStatusOut] = Field(default_factory=list)
