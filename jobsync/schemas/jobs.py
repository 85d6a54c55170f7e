from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

JobSyncStatus = Literal["active", "stale", "expired"]
LocationType = Literal["onsite", "remote", "hybrid"]
ExperienceLevel = Literal["entry", "mid", "senior", "executive"]
EmploymentType = Literal["full-time", "part-time", "contract", "internship", "freelance", "temporary"]
ListedStatus = Literal["active", "stale"]


class JobOut(BaseModel):
    id: str
    source: str
    external_id: str
    title: str
    company: str
    company_logo: str | None = None
    company_url: str | None = None
    category: str | None = None
    location: str | None = None
    location_type: LocationType = "onsite"
    experience_level: ExperienceLevel | None = None
    employment_type: EmploymentType | None = None
    salary_min: int | None = None
    salary_max: int | None = None
    salary_currency: str | None = None
    salary_period: str | None = None
    description: str = ""
    description_html: str | None = None
    requirements: str | None = None
    benefits: str | None = None
    tags: list[str] = Field(default_factory=list)
    apply_url: str
    application_email: str | None = None
    published_at: datetime | None = None
    expires_at: datetime | None = None
    fetched_at: datetime
    last_synced_at: datetime
    sync_status: JobSyncStatus = "active"
    is_active: bool = True
    review_reason: str | None = None
    created_at: datetime
    updated_at: datetime
