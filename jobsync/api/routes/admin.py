from fastapi import APIRouter, Depends, HTTPException, status

from jobsync.core.config import get_settings
from jobsync.core.security import get_sync_principal
from jobsync.schemas.admin import (
    DedupeOut,
    DedupePassOut,
    DedupeRequest,
    JobBulkUpdateOut,
    JobBulkUpdateRequest,
    ReactivateOut,
    ReactivateRequest,
    SourceDeactivateOut,
)
from jobsync.services.dedupe import DedupEngine
from jobsync.services.repository import (
    RepositoryUnavailableError,
    RepositoryValidationError,
    get_repository,
)
from jobsync.services.runner import build_batch_processor

router = APIRouter()


def _require_admin(principal) -> None:
    try:
        principal.require_scopes({"admin:write"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc


@router.post("/dedupe", response_model=DedupeOut)
async def run_dedupe(
    payload: DedupeRequest | None = None,
    principal=Depends(get_sync_principal),
    repository=Depends(get_repository),
) -> DedupeOut:
    _require_admin(principal)
    passes = (payload or DedupeRequest()).passes
    engine = DedupEngine(repository)

    reports = []
    try:
        # Exact-key duplicates are resolved before content duplicates regardless of request order.
        if "exact" in passes:
            reports.append(await engine.remove_exact_duplicates())
        if "content" in passes:
            reports.append(await engine.remove_content_duplicates())
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return DedupeOut(
        removed=sum(report.removed for report in reports),
        flagged=sum(report.flagged for report in reports),
        passes=[DedupePassOut(**report.to_dict()) for report in reports],
    )


@router.post("/jobs/bulk-update", response_model=JobBulkUpdateOut)
async def bulk_update_jobs(
    payload: JobBulkUpdateRequest,
    principal=Depends(get_sync_principal),
    repository=Depends(get_repository),
) -> JobBulkUpdateOut:
    _require_admin(principal)
    updates = payload.updates.model_dump(exclude_unset=True)
    try:
        updated = await repository.bulk_update_jobs(job_ids=payload.job_ids, updates=updates)
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return JobBulkUpdateOut(updated=updated, fields=sorted(updates))


@router.post("/sources/{source}/deactivate", response_model=SourceDeactivateOut)
async def deactivate_source(
    source: str,
    principal=Depends(get_sync_principal),
    repository=Depends(get_repository),
    settings=Depends(get_settings),
) -> SourceDeactivateOut:
    _require_admin(principal)
    try:
        deactivated = await build_batch_processor(repository, settings).deactivate_source_jobs(source)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return SourceDeactivateOut(source=source, deactivated=deactivated)


@router.post("/jobs/reactivate", response_model=ReactivateOut)
async def reactivate_jobs(
    payload: ReactivateRequest | None = None,
    principal=Depends(get_sync_principal),
    repository=Depends(get_repository),
    settings=Depends(get_settings),
) -> ReactivateOut:
    _require_admin(principal)
    days_threshold = (payload or ReactivateRequest()).days_threshold
    try:
        reactivated = await build_batch_processor(repository, settings).reactivate_recent_jobs(days_threshold)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return ReactivateOut(days_threshold=days_threshold, reactivated=reactivated)
