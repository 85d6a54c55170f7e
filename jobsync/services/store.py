from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from jobsync.services.records import JOB_CONTENT_FIELDS, SYNC_STATUSES, SYNC_TYPES, JobRecord, UpsertCounts
from jobsync.services.repository import (
    RUN_TERMINAL_STATUSES,
    PostgresRepository,
    RepositoryConflictError,
    RepositoryNotFoundError,
    RepositoryValidationError,
)


def _epoch(value: datetime | None) -> float:
    return value.timestamp() if value is not None else float("-inf")


class InMemoryJobStore:
    """Process-local store with the same contract as PostgresRepository, for local runs and tests."""

    def __init__(self) -> None:
        self.jobs: dict[str, dict[str, Any]] = {}
        self.sync_runs: dict[str, dict[str, Any]] = {}
        self.saved_jobs: list[dict[str, Any]] = []
        self.job_applications: list[dict[str, Any]] = []
        self._natural_index: dict[tuple[str, str], str] = {}
        # Sub-batch writes raise once this many records have been written; used to simulate store failures.
        self.fail_after_writes: int | None = None
        self._writes = 0

    async def close(self) -> None:
        return None

    async def upsert_jobs(self, records: list[JobRecord], *, synced_at: datetime) -> UpsertCounts:
        staged: list[tuple[str, dict[str, Any], bool]] = []
        staged_by_key: dict[tuple[str, str], dict[str, Any]] = {}
        for record in records:
            if self.fail_after_writes is not None and self._writes >= self.fail_after_writes:
                raise ConnectionError("in-memory store write failure")
            self._writes += 1

            job_id = self._natural_index.get(record.natural_key)
            existing = staged_by_key.get(record.natural_key) or (self.jobs.get(job_id) if job_id else None)
            content = record.content_fields()
            content["tags"] = list(record.tags)
            if existing is None:
                row = {
                    "id": job_id or str(uuid4()),
                    "source": record.source,
                    "external_id": record.external_id,
                    **content,
                    "fetched_at": synced_at,
                    "last_synced_at": synced_at,
                    "sync_status": "active",
                    "is_active": True,
                    "stale_since": None,
                    "review_reason": None,
                    "created_at": synced_at,
                    "updated_at": synced_at,
                }
                staged.append((row["id"], row, True))
                staged_by_key[record.natural_key] = row
            else:
                row = {**existing, **content, "last_synced_at": synced_at}
                row["updated_at"] = synced_at
                staged.append((row["id"], row, False))
                staged_by_key[record.natural_key] = row

        # Applied only once every record in the sub-batch was accepted.
        counts = UpsertCounts()
        for job_id, row, inserted in staged:
            self.jobs[job_id] = row
            self._natural_index[(row["source"], row["external_id"])] = job_id
            if inserted:
                counts.created += 1
            else:
                counts.updated += 1
        return counts

    def insert_raw_job(self, **fields: Any) -> dict[str, Any]:
        """Insert a row bypassing the natural-key upsert, to reproduce historical duplicate data."""
        now = datetime.now(timezone.utc)
        row: dict[str, Any] = {name: None for name in JOB_CONTENT_FIELDS}
        row.update(
            {
                "id": str(uuid4()),
                "tags": [],
                "description": "",
                "location_type": "onsite",
                "fetched_at": now,
                "last_synced_at": now,
                "sync_status": "active",
                "is_active": True,
                "stale_since": None,
                "review_reason": None,
                "created_at": now,
                "updated_at": now,
            }
        )
        row.update(fields)
        self.jobs[row["id"]] = row
        self._natural_index[(row["source"], row["external_id"])] = row["id"]
        return row

    def add_saved_job(self, job_id: str, user_id: str = "user-1") -> None:
        self.saved_jobs.append({"job_id": job_id, "user_id": user_id})

    def add_application(self, job_id: str, user_id: str = "user-1", status: str = "applied") -> None:
        self.job_applications.append({"job_id": job_id, "user_id": user_id, "status": status})

    def relationship_count(self, job_id: str) -> int:
        saved = sum(1 for row in self.saved_jobs if row["job_id"] == job_id)
        applied = sum(1 for row in self.job_applications if row["job_id"] == job_id)
        return saved + applied

    async def mark_stale_jobs(self, *, cutoff: datetime, now: datetime) -> int:
        count = 0
        for row in self.jobs.values():
            published_at = row.get("published_at")
            if row["sync_status"] == "active" and published_at is not None and published_at < cutoff:
                row["sync_status"] = "stale"
                row["stale_since"] = now
                row["updated_at"] = now
                count += 1
        return count

    async def cleanup_expired_jobs(self, *, cutoff: datetime, now: datetime) -> tuple[int, int]:
        deleted = 0
        deactivated = 0
        for job_id, row in list(self.jobs.items()):
            if row["sync_status"] != "stale":
                continue
            aged_from = row.get("stale_since") or row.get("published_at")
            if aged_from is None or aged_from >= cutoff:
                continue
            if self.relationship_count(job_id) == 0:
                self._remove(job_id)
                deleted += 1
            elif row["is_active"]:
                row["is_active"] = False
                row["updated_at"] = now
                deactivated += 1
        return deleted, deactivated

    async def deactivate_source_jobs(self, *, source: str, now: datetime) -> int:
        count = 0
        for row in self.jobs.values():
            if row["source"] == source and row["is_active"]:
                row["is_active"] = False
                row["sync_status"] = "expired"
                row["updated_at"] = now
                count += 1
        return count

    async def reactivate_jobs_synced_since(self, *, cutoff: datetime, now: datetime) -> int:
        count = 0
        for row in self.jobs.values():
            if row["sync_status"] == "stale" and row["last_synced_at"] >= cutoff:
                row["sync_status"] = "active"
                row["is_active"] = True
                row["stale_since"] = None
                row["updated_at"] = now
                count += 1
        return count

    async def job_stats(self, *, stale_cutoff: datetime) -> dict[str, Any]:
        rows = list(self.jobs.values())
        by_source: dict[str, int] = {}
        for row in rows:
            by_source[row["source"]] = by_source.get(row["source"], 0) + 1
        return {
            "total": len(rows),
            "active": sum(1 for row in rows if row["sync_status"] == "active" and row["is_active"]),
            "stale": sum(1 for row in rows if row["sync_status"] == "stale"),
            "expired": sum(1 for row in rows if row["sync_status"] == "expired"),
            "inactive": sum(1 for row in rows if not row["is_active"]),
            "older_than_stale_threshold": sum(
                1 for row in rows if row.get("published_at") is not None and row["published_at"] < stale_cutoff
            ),
            "by_source": dict(sorted(by_source.items(), key=lambda item: (-item[1], item[0]))),
        }

    async def list_dedupe_rows(self) -> list[dict[str, Any]]:
        return [
            {
                "id": row["id"],
                "source": row["source"],
                "external_id": row["external_id"],
                "title": row["title"],
                "company": row["company"],
                "published_at": row.get("published_at"),
                "updated_at": row["updated_at"],
                "relationship_count": self.relationship_count(row["id"]),
            }
            for row in self.jobs.values()
        ]

    async def delete_jobs(self, job_ids: list[str]) -> int:
        deleted = 0
        for job_id in job_ids:
            if job_id in self.jobs and self.relationship_count(job_id) == 0:
                self._remove(job_id)
                deleted += 1
        return deleted

    async def flag_jobs_for_review(self, reasons: dict[str, str]) -> int:
        flagged = 0
        for job_id, reason in reasons.items():
            row = self.jobs.get(job_id)
            if row is not None and row.get("review_reason") != reason:
                row["review_reason"] = reason
                row["updated_at"] = datetime.now(timezone.utc)
                flagged += 1
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
        allowed_statuses = [status for status in (statuses or ["active", "stale"]) if status in SYNC_STATUSES]
        if not allowed_statuses:
            raise RepositoryValidationError("statuses must contain at least one of: active, stale, expired")

        needle = (q or "").strip().lower()
        exact_filters = {
            "category": category,
            "source": source,
            "location_type": location_type,
            "experience_level": experience_level,
            "employment_type": employment_type,
        }

        def matches(row: dict[str, Any]) -> bool:
            if not row["is_active"] or row["sync_status"] not in allowed_statuses:
                return False
            for column, value in exact_filters.items():
                if value and row.get(column) != value:
                    return False
            if needle:
                haystack = " ".join(str(row.get(name) or "") for name in ("title", "company", "description"))
                if needle not in haystack.lower():
                    return False
            upper = row.get("salary_max") if row.get("salary_max") is not None else row.get("salary_min")
            lower = row.get("salary_min") if row.get("salary_min") is not None else row.get("salary_max")
            if salary_min is not None and (upper is None or upper < salary_min):
                return False
            if salary_max is not None and (lower is None or lower > salary_max):
                return False
            return True

        rows = [row for row in self.jobs.values() if matches(row)]
        rows.sort(key=lambda row: row["id"])
        rows.sort(key=lambda row: _epoch(row.get("published_at")), reverse=True)
        return [self._copy(row) for row in rows[offset : offset + limit]]

    async def get_job(self, job_id: str) -> dict[str, Any]:
        row = self.jobs.get(job_id)
        if row is None:
            raise RepositoryNotFoundError("job not found")
        return self._copy(row)

    async def bulk_update_jobs(self, *, job_ids: list[str], updates: dict[str, Any]) -> int:
        normalized_updates = PostgresRepository._validate_bulk_updates(updates)
        now = datetime.now(timezone.utc)
        count = 0
        for job_id in job_ids:
            row = self.jobs.get(job_id)
            if row is None:
                continue
            row.update(normalized_updates)
            row["updated_at"] = now
            count += 1
        return count

    async def create_sync_run(self, *, sync_type: str, sources_total: int, started_at: datetime) -> dict[str, Any]:
        if sync_type not in SYNC_TYPES:
            raise RepositoryValidationError("sync_type must be one of: daily, hourly, manual")
        run = {
            "id": str(uuid4()),
            "sync_type": sync_type,
            "status": "running",
            "sources_total": sources_total,
            "sources_completed": 0,
            "sources_skipped": 0,
            "jobs_created": 0,
            "jobs_updated": 0,
            "jobs_staled": 0,
            "jobs_deleted": 0,
            "errors": None,
            "started_at": started_at,
            "completed_at": None,
            "duration_ms": None,
        }
        self.sync_runs[run["id"]] = run
        return dict(run)

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
        run = self.sync_runs.get(run_id)
        if run is None:
            raise RepositoryNotFoundError("sync run not found")
        if run["status"] != "running":
            raise RepositoryConflictError(f"sync run already finalized with status={run['status']}")

        run.update(
            {
                "status": status,
                "sources_total": sources_total,
                "sources_completed": sources_completed,
                "sources_skipped": sources_skipped,
                "jobs_created": jobs_created,
                "jobs_updated": jobs_updated,
                "jobs_staled": jobs_staled,
                "jobs_deleted": jobs_deleted,
                "errors": list(errors) if errors else None,
                "completed_at": completed_at,
                "duration_ms": max(0, int((completed_at - run["started_at"]).total_seconds() * 1000)),
            }
        )
        return dict(run)

    async def list_sync_runs(
        self,
        *,
        limit: int,
        offset: int,
        status: str | None = None,
        sync_type: str | None = None,
    ) -> list[dict[str, Any]]:
        runs = [
            dict(run)
            for run in self.sync_runs.values()
            if (status is None or run["status"] == status) and (sync_type is None or run["sync_type"] == sync_type)
        ]
        runs.sort(key=lambda run: run["id"])
        runs.sort(key=lambda run: run["started_at"], reverse=True)
        return runs[offset : offset + limit]

    async def get_sync_run(self, run_id: str) -> dict[str, Any]:
        run = self.sync_runs.get(run_id)
        if run is None:
            raise RepositoryNotFoundError("sync run not found")
        return dict(run)

    def _remove(self, job_id: str) -> None:
        row = self.jobs.pop(job_id)
        key = (row["source"], row["external_id"])
        if self._natural_index.get(key) == job_id:
            survivor = next(
                (other_id for other_id, other in self.jobs.items() if (other["source"], other["external_id"]) == key),
                None,
            )
            if survivor is None:
                self._natural_index.pop(key, None)
            else:
                self._natural_index[key] = survivor

    @staticmethod
    def _copy(row: dict[str, Any]) -> dict[str, Any]:
        data = dict(row)
        data["tags"] = list(row.get("tags") or [])
        return data
