from __future__ import annotations

import asyncio
import os
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from typing import Any, TypeVar

import asyncpg  # type: ignore[import-untyped]
import pytest

from jobsync.services.batch import BatchProcessor
from jobsync.services.dedupe import DedupEngine
from jobsync.services.repository import PostgresRepository, RepositoryConflictError
from tests.fakes import make_record

T = TypeVar("T")


@pytest.fixture(scope="session")
def database_url() -> str:
    url = os.getenv("JOBSYNC_DATABASE_URL")
    if not url:
        pytest.skip("integration tests require JOBSYNC_DATABASE_URL with migrations applied")
    return url


@pytest.fixture(autouse=True)
def reset_tables(database_url: str) -> None:
    asyncio.run(_truncate_tables(database_url))


def _with_repository(database_url: str, scenario: Callable[[PostgresRepository], Awaitable[T]]) -> T:
    async def run() -> T:
        repository = PostgresRepository(database_url=database_url, min_pool_size=1, max_pool_size=2)
        try:
            return await scenario(repository)
        finally:
            await repository.close()

    return asyncio.run(run())


def test_upsert_is_idempotent_on_natural_key(database_url: str) -> None:
    now = datetime.now(timezone.utc)
    records = [make_record(source="A", external_id="1"), make_record(source="B", external_id="1")]

    async def scenario(repository: PostgresRepository) -> tuple[Any, Any, list[dict[str, Any]]]:
        batch = BatchProcessor(repository)
        first = await batch.batch_upsert(records, now=now)
        second = await batch.batch_upsert(records, now=now + timedelta(minutes=5))
        rows = await repository.list_jobs(limit=10, offset=0)
        return first, second, rows

    first, second, rows = _with_repository(database_url, scenario)

    assert (first.created, first.updated) == (2, 0)
    assert (second.created, second.updated) == (0, 2)
    assert len(rows) == 2
    assert all(row["last_synced_at"] == now + timedelta(minutes=5) for row in rows)
    assert all(row["fetched_at"] == now for row in rows)


def test_lifecycle_never_deletes_jobs_with_relationships(database_url: str) -> None:
    now = datetime.now(timezone.utc)
    long_ago = now - timedelta(days=400)

    async def scenario(repository: PostgresRepository) -> tuple[int, int, int, list[dict[str, Any]]]:
        batch = BatchProcessor(repository)
        await batch.batch_upsert(
            [
                make_record(external_id="saved", title="Saved role", published_at=long_ago),
                make_record(external_id="orphan", title="Orphan role", published_at=long_ago),
            ],
            now=now,
        )
        conn = await asyncpg.connect(database_url)
        try:
            await conn.execute(
                "insert into saved_jobs (job_id, user_id) select id, 'user-1' from jobs where external_id = 'saved'"
            )
        finally:
            await conn.close()
        staled = await batch.mark_stale_jobs(60, now=now - timedelta(days=200))
        restaled = await batch.mark_stale_jobs(60, now=now)
        deleted = await batch.cleanup_expired_jobs(90, now=now)
        rows = await repository.list_jobs(limit=10, offset=0, statuses=["active", "stale", "expired"])
        return staled, restaled, deleted, rows

    staled, restaled, deleted, rows = _with_repository(database_url, scenario)

    assert staled == 2
    assert restaled == 0
    assert deleted == 1
    # The saved job survives but is no longer listed as active.
    assert rows == []


def test_sync_run_is_finalized_once(database_url: str) -> None:
    now = datetime.now(timezone.utc)

    async def scenario(repository: PostgresRepository) -> dict[str, Any]:
        run = await repository.create_sync_run(sync_type="manual", sources_total=1, started_at=now)
        finalize = dict(
            status="completed",
            sources_total=1,
            sources_completed=1,
            sources_skipped=0,
            jobs_created=3,
            jobs_updated=0,
            jobs_staled=0,
            jobs_deleted=0,
            errors=["remotive: 1 malformed item"],
            completed_at=now + timedelta(seconds=2),
        )
        await repository.finalize_sync_run(run["id"], **finalize)
        with pytest.raises(RepositoryConflictError):
            await repository.finalize_sync_run(run["id"], **finalize)
        return await repository.get_sync_run(run["id"])

    run = _with_repository(database_url, scenario)

    assert run["status"] == "completed"
    assert run["jobs_created"] == 3
    assert run["errors"] == ["remotive: 1 malformed item"]
    assert run["duration_ms"] == 2000


def test_content_dedupe_removes_cross_source_duplicate(database_url: str) -> None:
    now = datetime.now(timezone.utc)

    async def scenario(repository: PostgresRepository) -> tuple[int, list[dict[str, Any]]]:
        await BatchProcessor(repository).batch_upsert(
            [
                make_record(source="A", external_id="1", title="Data Engineer", published_at=now - timedelta(days=1)),
                make_record(source="B", external_id="9", title="data engineer ", published_at=now - timedelta(days=4)),
            ],
            now=now,
        )
        report = await DedupEngine(repository).remove_content_duplicates()
        return report.removed, await repository.list_jobs(limit=10, offset=0)

    removed, rows = _with_repository(database_url, scenario)

    assert removed == 1
    assert [row["source"] for row in rows] == ["A"]


async def _truncate_tables(database_url: str) -> None:
    conn = await asyncpg.connect(database_url)
    try:
        await conn.execute("truncate table saved_jobs, job_applications, sync_runs, jobs restart identity cascade")
    finally:
        await conn.close()
