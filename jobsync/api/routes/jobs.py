from fastapi import APIRouter, Depends, HTTPException, Query, status as http_status

from jobsync.schemas.jobs import EmploymentType, ExperienceLevel, JobOut, ListedStatus, LocationType
from jobsync.services.repository import (
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    RepositoryValidationError,
    get_repository,
)

router = APIRouter()


@router.get("", response_model=list[JobOut])
async def list_jobs(
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    q: str | None = Query(default=None, min_length=1),
    category: str | None = Query(default=None, min_length=1),
    source: str | None = Query(default=None, min_length=1),
    location_type: LocationType | None = Query(default=None),
    experience_level: ExperienceLevel | None = Query(default=None),
    employment_type: EmploymentType | None = Query(default=None),
    salary_min: int | None = Query(default=None, ge=0),
    salary_max: int | None = Query(default=None, ge=0),
    job_status: list[ListedStatus] | None = Query(default=None, alias="status"),
    repository=Depends(get_repository),
) -> list[JobOut]:
    if salary_min is not None and salary_max is not None and salary_min > salary_max:
        raise HTTPException(
            status_code=http_status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="salary_min must be <= salary_max",
        )
    try:
        rows = await repository.list_jobs(
            limit=limit,
            offset=offset,
            q=q,
            category=category,
            source=source,
            location_type=location_type,
            experience_level=experience_level,
            employment_type=employment_type,
            salary_min=salary_min,
            salary_max=salary_max,
            statuses=job_status,
        )
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=http_status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return [JobOut(**row) for row in rows]


@router.get("/{job_id}", response_model=JobOut)
async def get_job(job_id: str, repository=Depends(get_repository)) -> JobOut:
    try:
        row = await repository.get_job(job_id)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=http_status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return JobOut(**row)
