from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from jobsync.schemas.jobs import EmploymentType, ExperienceLevel, JobSyncStatus

DedupePassName = Literal["exact", "content"]


class JobBulkUpdateFields(BaseModel):
    """The only job fields operators may edit in bulk."""

    model_config = ConfigDict(extra="forbid")

    category: str | None = Field(default=None, min_length=1)
    is_active: bool | None = None
    sync_status: JobSyncStatus | None = None
    experience_level: ExperienceLevel | None = None
    employment_type: EmploymentType | None = None


class JobBulkUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    job_ids: list[str] = Field(min_length=1, max_length=1000)
    updates: JobBulkUpdateFields

    @model_validator(mode="after")
    def _require_update(self) -> "JobBulkUpdateRequest":
        if not self.updates.model_dump(exclude_unset=True):
            raise ValueError("updates must set at least one field")
        return self


class JobBulkUpdateOut(BaseModel):
    updated: int
    fields: list[str]


class DedupeRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    passes: list[DedupePassName] = Field(default_factory=lambda: ["exact", "content"], min_length=1)


class DedupeGroupOut(BaseModel):
    key: str
    survivor_id: str
    remove_ids: list[str] = Field(default_factory=list)
    flag_ids: list[str] = Field(default_factory=list)


class DedupePassOut(BaseModel):
    pass_name: DedupePassName
    removed: int
    flagged: int
    groups: list[DedupeGroupOut] = Field(default_factory=list)


class DedupeOut(BaseModel):
    removed: int
    flagged: int
    passes: list[DedupePassOut]


class SourceDeactivateOut(BaseModel):
    source: str
    deactivated: int


class ReactivateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    days_threshold: int = Field(default=30, ge=1, le=365)


class ReactivateOut(BaseModel):
    days_threshold: int
    reactivated: int
