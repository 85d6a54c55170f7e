from __future__ import annotations

import json
from datetime import datetime
from functools import lru_cache
from typing import Any, Protocol

import asyncpg  # type: ignore[import-untyped]
from asyncpg import exceptions as pg_exc

from jobsync.core.config import get_settings
from jobsync.services.records import (
    EMPLOYMENT_TYPES,
    EXPERIENCE_LEVELS,
    JOB_CONTENT_FIELDS,
    SYNC_STATUSES,
    SYNC_TYPES,
    JobRecord,
    UpsertCounts,
)


class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable or not configured."""


class RepositoryNotFoundError(RepositoryError):
    """Raised when the requested entity does not exist."""


class RepositoryConflictError(RepositoryError):
    """Raised when an operation violates state transition rules."""


class RepositoryValidationError(RepositoryError):
    """Raised when payload validation fails before persistence."""


BULK_UPDATE_FIELDS = {"category", "is_active", "sync_status", "experience_level", "employment_type"}
RUN_TERMINAL_STATUSES = {"completed", "failed"}

_JOB_LIST_COLUMNS = """
  id::text as id,
  source,
  external_id,
  title,
  company,
  company_logo,
  company_url,
  category,
  location,
  location_type,
  experience_level,
  employment_type,
  salary_min,
  salary_max,
  salary_currency,
  salary_period,
  description,
  description_html,
  requirements,
  benefits,
  tags,
  apply_url,
  application_email,
  published_at,
  expires_at,
  fetched_at,
  last_synced_at,
  sync_status::text as sync_status,
  is_active,
  stale_since,
  review_reason,
  created_at,
  updated_at
"""

_SYNC_RUN_COLUMNS = """
  id::text as id,
  sync_type::text as sync_type,
  status::text as status,
  sources_total,
  sources_completed,
  sources_skipped,
  jobs_created,
  jobs_updated,
  jobs_staled,
  jobs_deleted,
  errors,
  started_at,
  completed_at,
  duration_ms
"""


def _build_upsert_sql() -> str:
    columns = ["source", "external_id", *JOB_CONTENT_FIELDS, "fetched_at", "last_synced_at"]
    placeholders = ", ".join(f"${index}" for index in range(1, len(columns) + 1))
    # fetched_at keeps the first sighting; only last_synced_at advances.
    assignments = ",\n              ".join(
        f"{column} = excluded.{column}" for column in (*JOB_CONTENT_FIELDS, "last_synced_at")
    )
    return f"""
            insert into jobs ({", ".join(columns)})
            values ({placeholders})
            on conflict (source, external_id) do update
            set
              {assignments},
              updated_at = now()
            returning (xmax = 0) as inserted
            """


_UPSERT_JOB_SQL = _build_upsert_sql()

_RELATIONSHIP_FREE_SQL = """
  not exists (select 1 from saved_jobs s where s.job_id = j.id)
  and not exists (select 1 from job_applications a where a.job_id = j.id)
"""


class JobRepository(Protocol):
    """Storage contract shared by the Postgres repository and the in-process store."""

    async def close(self) -> None: ...

    async def upsert_jobs(self, records: list[JobRecord], *, synced_at: datetime) -> UpsertCounts: ...

    async def mark_stale_jobs(self, *, cutoff: datetime, now: datetime) -> int: ...

    async def cleanup_expired_jobs(self, *, cutoff: datetime, now: datetime) -> tuple[int, int]: ...

    async def deactivate_source_jobs(self, *, source: str, now: datetime) -> int: ...

    async def reactivate_jobs_synced_since(self, *, cutoff: datetime, now: datetime) -> int: ...

    async def job_stats(self, *, stale_cutoff: datetime) -> dict[str, Any]: ...

    async def list_dedupe_rows(self) -> list[dict[str, Any]]: ...

    async def delete_jobs(self, job_ids: list[str]) -> int: ...

    async def flag_jobs_for_review(self, reasons: dict[str, str]) -> int: ...

    async def list_jobs(self, **filters: Any) -> list[dict[str, Any]]: ...

    async def get_job(self, job_id: str) -> dict[str, Any]: ...

    async def bulk_update_jobs(self, *, job_ids: list[str], updates: dict[str, Any]) -> int: ...

    async def create_sync_run(self, *, sync_type: str, sources_total: int, started_at: datetime) -> dict[str, Any]: ...

    async def finalize_sync_run(self, run_id: str, **fields: Any) -> dict[str, Any]: ...

    async def list_sync_runs(
        self,
        *,
        limit: int,
        offset: int,
        status: str | None = None,
        sync_type: str | None = None,
    ) -> list[dict[str, Any]]: ...

    async def get_sync_run(self, run_id: str) -> dict[str, Any]: ...


class PostgresRepository:
    def __init__(
        self,
        database_url: str | None,
        min_pool_size: int,
        max_pool_size: int,
    ) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def upsert_jobs(self, records: list[JobRecord], *, synced_at: datetime) -> UpsertCounts:
        """Insert-or-update one sub-batch atomically; counts are only returned once the transaction commits."""
        counts = UpsertCounts()
        if not records:
            return counts

        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                for record in records:
                    content = record.content_fields()
                    row = await conn.fetchrow(
                        _UPSERT_JOB_SQL,
                        record.source,
                        record.external_id,
                        *(content[name] for name in JOB_CONTENT_FIELDS),
                        synced_at,
                        synced_at,
                    )
                    if row is not None and row["inserted"]:
                        counts.created += 1
                    else:
                        counts.updated += 1
        return counts

    async def mark_stale_jobs(self, *, cutoff: datetime, now: datetime) -> int:
        pool = await self._get_pool()
        status = await pool.execute(
            """
            update jobs
            set
              sync_status = 'stale'::job_sync_status,
              stale_since = $2,
              updated_at = $2
            where sync_status = 'active'::job_sync_status
              and published_at < $1
            """,
            cutoff,
            now,
        )
        return self._affected_rows(status)

    async def cleanup_expired_jobs(self, *, cutoff: datetime, now: datetime) -> tuple[int, int]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                deleted_status = await conn.execute(
                    f"""
                    delete from jobs j
                    where j.sync_status = 'stale'::job_sync_status
                      and coalesce(j.stale_since, j.published_at) < $1
                      and {_RELATIONSHIP_FREE_SQL}
                    """,
                    cutoff,
                )
                deactivated_status = await conn.execute(
                    """
                    update jobs j
                    set is_active = false, updated_at = $2
                    where j.sync_status = 'stale'::job_sync_status
                      and coalesce(j.stale_since, j.published_at) < $1
                      and j.is_active = true
                    """,
                    cutoff,
                    now,
                )
        return self._affected_rows(deleted_status), self._affected_rows(deactivated_status)

    async def deactivate_source_jobs(self, *, source: str, now: datetime) -> int:
        pool = await self._get_pool()
        status = await pool.execute(
            """
            update jobs
            set is_active = false, sync_status = 'expired'::job_sync_status, updated_at = $2
            where source = $1 and is_active = true
            """,
            source,
            now,
        )
        return self._affected_rows(status)

    async def reactivate_jobs_synced_since(self, *, cutoff: datetime, now: datetime) -> int:
        pool = await self._get_pool()
        status = await pool.execute(
            """
            update jobs
            set
              sync_status = 'active'::job_sync_status,
              is_active = true,
              stale_since = null,
              updated_at = $2
            where sync_status = 'stale'::job_sync_status
              and last_synced_at >= $1
            """,
            cutoff,
            now,
        )
        return self._affected_rows(status)

    async def job_stats(self, *, stale_cutoff: datetime) -> dict[str, Any]:
        pool = await self._get_pool()
        totals = await pool.fetchrow(
            """
            select
              count(*) as total,
              count(*) filter (where sync_status = 'active' and is_active) as active,
              count(*) filter (where sync_status = 'stale') as stale,
              count(*) filter (where sync_status = 'expired') as expired,
              count(*) filter (where not is_active) as inactive,
              count(*) filter (where published_at < $1) as older_than_stale_threshold
            from jobs
            """,
            stale_cutoff,
        )
        by_source_rows = await pool.fetch(
            """
            select source, count(*) as count
            from jobs
            group by source
            order by count(*) desc, source asc
            """
        )
        stats = {key: int(totals[key] or 0) for key in totals.keys()} if totals else {}
        stats["by_source"] = {row["source"]: int(row["count"]) for row in by_source_rows}
        return stats

    async def list_dedupe_rows(self) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select
              j.id::text as id,
              j.source,
              j.external_id,
              j.title,
              j.company,
              j.published_at,
              j.updated_at,
              (
                (select count(*) from saved_jobs s where s.job_id = j.id)
                + (select count(*) from job_applications a where a.job_id = j.id)
              ) as relationship_count
            from jobs j
            """
        )
        return [
            {
                "id": row["id"],
                "source": row["source"],
                "external_id": row["external_id"],
                "title": row["title"],
                "company": row["company"],
                "published_at": row["published_at"],
                "updated_at": row["updated_at"],
                "relationship_count": int(row["relationship_count"] or 0),
            }
            for row in rows
        ]

    async def delete_jobs(self, job_ids: list[str]) -> int:
        if not job_ids:
            return 0
        pool = await self._get_pool()
        status = await pool.execute(
            f"""
            delete from jobs j
            where j.id = any($1::uuid[])
              and {_RELATIONSHIP_FREE_SQL}
            """,
            job_ids,
        )
        return self._affected_rows(status)

    async def flag_jobs_for_review(self, reasons: dict[str, str]) -> int:
        if not reasons:
            return 0
        pool = await self._get_pool()
        flagged = 0
        async with pool.acquire() as conn:
            async with conn.transaction():
                for job_id, reason in reasons.items():
                    status = await conn.execute(
                        """
                        update jobs
                        set review_reason = $2, updated_at = now()
                        where id = $1::uuid and review_reason is distinct from $2
                        """,
                        job_id,
                        reason,
                    )
                    flagged += self._affected_rows(status)
        return flagged

    async def list_jobs(
        self,
        *,
        limit: int,
        offset: int,
        q: str | None = None,
        category: str | None = None,
        source: str | None = None,
        location_type: str | None = None,
        experience_level: str | None = None,
        employment_type: str | None = None,
        salary_min: int | None = None,
        salary_max: int | None = None,
        statuses: list[str] | None = None,
    ) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        conditions: list[str] = ["j.is_active = true"]
        params: list[Any] = []

        def bind(value: Any) -> str:
            params.append(value)
            return f"${len(params)}"

        normalized_statuses = [status for status in (statuses or ["active", "stale"]) if status in SYNC_STATUSES]
        if not normalized_statuses:
            raise RepositoryValidationError("statuses must contain at least one of: active, stale, expired")
        conditions.append(f"j.sync_status::text = any({bind(normalized_statuses)}::text[])")

        normalized_q = self._coerce_text(q)
        if normalized_q:
            token = bind(f"%{normalized_q}%")
            conditions.append(
                f"(j.title ilike {token} or j.company ilike {token} or coalesce(j.description, '') ilike {token})"
            )

        for column, value in (
            ("category", category),
            ("source", source),
            ("location_type", location_type),
            ("experience_level", experience_level),
            ("employment_type", employment_type),
        ):
            normalized = self._coerce_text(value)
            if normalized:
                conditions.append(f"j.{column} = {bind(normalized)}")

        # Salary filters match postings whose advertised range overlaps the requested one.
        if salary_min is not None:
            conditions.append(f"coalesce(j.salary_max, j.salary_min) >= {bind(salary_min)}")
        if salary_max is not None:
            conditions.append(f"coalesce(j.salary_min, j.salary_max) <= {bind(salary_max)}")

        where_sql = " and ".join(conditions)
        limit_token = bind(limit)
        offset_token = bind(offset)

        rows = await pool.fetch(
            f"""
            select {_JOB_LIST_COLUMNS}
            from jobs j
            where {where_sql}
            order by j.published_at desc nulls last, j.id asc
            limit {limit_token}
            offset {offset_token}
            """,
            *params,
        )
        return [self._job_row_to_dict(row) for row in rows]

    async def get_job(self, job_id: str) -> dict[str, Any]:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                f"""
                select {_JOB_LIST_COLUMNS}
                from jobs
                where id = $1::uuid
                """,
                job_id,
            )
        except pg_exc.DataError as exc:
            raise RepositoryNotFoundError("job not found") from exc
        if not row:
            raise RepositoryNotFoundError("job not found")
        return self._job_row_to_dict(row)

    async def bulk_update_jobs(self, *, job_ids: list[str], updates: dict[str, Any]) -> int:
        normalized_updates = self._validate_bulk_updates(updates)
        if not job_ids:
            return 0

        params: list[Any] = [job_ids]
        assignments: list[str] = []
        for column in sorted(normalized_updates):
            params.append(normalized_updates[column])
            cast = "::job_sync_status" if column == "sync_status" else ""
            assignments.append(f"{column} = ${len(params)}{cast}")
        assignments.append("updated_at = now()")

        pool = await self._get_pool()
        try:
            status = await pool.execute(
                f"""
                update jobs
                set {", ".join(assignments)}
                where id = any($1::uuid[])
                """,
                *params,
            )
        except pg_exc.DataError as exc:
            raise RepositoryValidationError("job_ids must be valid job identifiers") from exc
        return self._affected_rows(status)

    async def create_sync_run(self, *, sync_type: str, sources_total: int, started_at: datetime) -> dict[str, Any]:
        if sync_type not in SYNC_TYPES:
            raise RepositoryValidationError("sync_type must be one of: daily, hourly, manual")
        pool = await self._get_pool()
        row = await pool.fetchrow(
            f"""
            insert into sync_runs (sync_type, status, sources_total, started_at)
            values ($1::sync_run_type, 'running'::sync_run_status, $2, $3)
            returning {_SYNC_RUN_COLUMNS}
            """,
            sync_type,
            sources_total,
            started_at,
        )
        if not row:
            raise RepositoryConflictError("failed to create sync run")
        return self._sync_run_row_to_dict(row)

    async def finalize_sync_run(
        self,
        run_id: str,
        *,
        status: str,
        sources_total: int,
        sources_completed: int,
        sources_skipped: int,
        jobs_created: int,
        jobs_updated: int,
        jobs_staled: int,
        jobs_deleted: int,
        errors: list[str],
        completed_at: datetime,
    ) -> dict[str, Any]:
        if status not in RUN_TERMINAL_STATUSES:
            raise RepositoryValidationError("status must be one of: completed, failed")

        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    f"""
                    update sync_runs
                    set
                      status = $2::sync_run_status,
                      sources_total = $3,
                      sources_completed = $4,
                      sources_skipped = $5,
                      jobs_created = $6,
                      jobs_updated = $7,
                      jobs_staled = $8,
                      jobs_deleted = $9,
                      errors = $10::jsonb,
                      completed_at = $11::timestamptz,
                      duration_ms = greatest(0, (extract(epoch from ($11::timestamptz - started_at)) * 1000)::integer)
                    where id = $1::uuid
                      and status = 'running'::sync_run_status
                    returning {_SYNC_RUN_COLUMNS}
                    """,
                    run_id,
                    status,
                    sources_total,
                    sources_completed,
                    sources_skipped,
                    jobs_created,
                    jobs_updated,
                    jobs_staled,
                    jobs_deleted,
                    json.dumps(errors) if errors else None,
                    completed_at,
                )
                if row:
                    return self._sync_run_row_to_dict(row)

                existing = await conn.fetchrow(
                    "select status::text as status from sync_runs where id = $1::uuid",
                    run_id,
                )
        if not existing:
            raise RepositoryNotFoundError("sync run not found")
        raise RepositoryConflictError(f"sync run already finalized with status={existing['status']}")

    async def list_sync_runs(
        self,
        *,
        limit: int,
        offset: int,
        status: str | None = None,
        sync_type: str | None = None,
    ) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        conditions: list[str] = []
        params: list[Any] = []

        def bind(value: Any) -> str:
            params.append(value)
            return f"${len(params)}"

        if status:
            conditions.append(f"status::text = {bind(status)}")
        if sync_type:
            conditions.append(f"sync_type::text = {bind(sync_type)}")
        where_sql = " and ".join(conditions) if conditions else "true"

        rows = await pool.fetch(
            f"""
            select {_SYNC_RUN_COLUMNS}
            from sync_runs
            where {where_sql}
            order by started_at desc, id asc
            limit {bind(limit)}
            offset {bind(offset)}
            """,
            *params,
        )
        return [self._sync_run_row_to_dict(row) for row in rows]

    async def get_sync_run(self, run_id: str) -> dict[str, Any]:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                f"""
                select {_SYNC_RUN_COLUMNS}
                from sync_runs
                where id = $1::uuid
                """,
                run_id,
            )
        except pg_exc.DataError as exc:
            raise RepositoryNotFoundError("sync run not found") from exc
        if not row:
            raise RepositoryNotFoundError("sync run not found")
        return self._sync_run_row_to_dict(row)

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("JOBSYNC_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=30,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc

    @staticmethod
    def _affected_rows(status: str | None) -> int:
        # asyncpg returns command tags such as "UPDATE 3" or "DELETE 0".
        if not status:
            return 0
        try:
            return int(status.rsplit(" ", maxsplit=1)[-1])
        except ValueError:
            return 0

    @staticmethod
    def _job_row_to_dict(row: asyncpg.Record) -> dict[str, Any]:
        data = dict(row)
        data["tags"] = list(row["tags"] or [])
        data["is_active"] = bool(row["is_active"])
        return data

    @staticmethod
    def _sync_run_row_to_dict(row: asyncpg.Record) -> dict[str, Any]:
        errors = row["errors"]
        if isinstance(errors, str):
            try:
                errors = json.loads(errors)
            except json.JSONDecodeError:
                errors = [errors]
        return {
            "id": row["id"],
            "sync_type": row["sync_type"],
            "status": row["status"],
            "sources_total": row["sources_total"],
            "sources_completed": row["sources_completed"],
            "sources_skipped": row["sources_skipped"],
            "jobs_created": row["jobs_created"],
            "jobs_updated": row["jobs_updated"],
            "jobs_staled": row["jobs_staled"],
            "jobs_deleted": row["jobs_deleted"],
            "errors": errors if isinstance(errors, list) else None,
            "started_at": row["started_at"],
            "completed_at": row["completed_at"],
            "duration_ms": row["duration_ms"],
        }

    @staticmethod
    def _coerce_text(value: Any) -> str | None:
        if value is None:
            return None
        if isinstance(value, str):
            stripped = value.strip()
            return stripped or None
        return str(value)

    @staticmethod
    def _validate_bulk_updates(updates: dict[str, Any]) -> dict[str, Any]:
        unknown = sorted(set(updates) - BULK_UPDATE_FIELDS)
        if unknown:
            raise RepositoryValidationError(f"unsupported bulk update fields: {', '.join(unknown)}")
        if not updates:
            raise RepositoryValidationError("no valid fields to update")

        if "sync_status" in updates and updates["sync_status"] not in SYNC_STATUSES:
            raise RepositoryValidationError("sync_status must be one of: active, stale, expired")
        if "is_active" in updates and not isinstance(updates["is_active"], bool):
            raise RepositoryValidationError("is_active must be a boolean")
        level = updates.get("experience_level")
        if level is not None and level not in EXPERIENCE_LEVELS:
            raise RepositoryValidationError(f"experience_level must be one of: {', '.join(EXPERIENCE_LEVELS)}")
        employment = updates.get("employment_type")
        if employment is not None and employment not in EMPLOYMENT_TYPES:
            raise RepositoryValidationError(f"employment_type must be one of: {', '.join(EMPLOYMENT_TYPES)}")
        return dict(updates)


@lru_cache
def get_repository() -> JobRepository:
    settings = get_settings()
    if settings.storage_backend == "memory":
        from jobsync.services.store import InMemoryJobStore

        return InMemoryJobStore()
    return PostgresRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
    )
