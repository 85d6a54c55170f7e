from fastapi import APIRouter, Depends, HTTPException, Query, status as http_status

from jobsync.core.config import get_settings
from jobsync.core.security import get_sync_principal
from jobsync.schemas.sync import (
    RunStatus,
    RunSummaryOut,
    SourceStatusOut,
    SyncRunCreateRequest,
    SyncRunOut,
    SyncStatusOut,
    SyncType,
)
from jobsync.services.repository import (
    RepositoryConflictError,
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    get_repository,
)
from jobsync.services.runner import build_batch_processor, get_sync_runner
from jobsync.services.state import get_sync_state

router = APIRouter()


@router.post("/runs", response_model=RunSummaryOut)
async def create_sync_run(
    payload: SyncRunCreateRequest,
    principal=Depends(get_sync_principal),
    runner=Depends(get_sync_runner),
) -> RunSummaryOut:
    try:
        principal.require_scopes({"sync:write"})
    except PermissionError as exc:
        raise HTTPException(status_code=http_status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    try:
        summary = await runner.run(
            payload.mode,
            source=payload.source,
            incremental=payload.incremental,
            stale_after_days=payload.stale_after_days,
            expire_after_days=payload.expire_after_days,
        )
    except ValueError as exc:
        raise HTTPException(status_code=http_status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryConflictError as exc:
        raise HTTPException(status_code=http_status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return RunSummaryOut(**summary.to_dict())


@router.get("/runs", response_model=list[SyncRunOut])
async def list_sync_runs(
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    run_status: RunStatus | None = Query(default=None, alias="status"),
    sync_type: SyncType | None = Query(default=None),
    repository=Depends(get_repository),
) -> list[SyncRunOut]:
    try:
        rows = await repository.list_sync_runs(limit=limit, offset=offset, status=run_status, sync_type=sync_type)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return [SyncRunOut(**row) for row in rows]


@router.get("/runs/{run_id}", response_model=SyncRunOut)
async def get_sync_run(run_id: str, repository=Depends(get_repository)) -> SyncRunOut:
    try:
        row = await repository.get_sync_run(run_id)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=http_status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return SyncRunOut(**row)


@router.get("/status", response_model=SyncStatusOut)
async def get_sync_status(
    repository=Depends(get_repository),
    state=Depends(get_sync_state),
    settings=Depends(get_settings),
) -> SyncStatusOut:
    try:
        completed = await repository.list_sync_runs(limit=1, offset=0, status="completed")
        running = await repository.list_sync_runs(limit=20, offset=0, status="running")
        job_counts = await build_batch_processor(repository, settings).cleanup_stats()
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    sources = [
        SourceStatusOut(**entry.to_dict(), running=state.is_running(name))
        for name, entry in sorted(state.source_status().items())
    ]
    return SyncStatusOut(
        last_completed_run=SyncRunOut(**completed[0]) if completed else None,
        running_runs=[SyncRunOut(**row) for row in running],
        jobs=job_counts,
        sources=sources,
    )
