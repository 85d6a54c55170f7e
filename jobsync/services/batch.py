from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any

from jobsync.services.records import JobRecord, UpsertCounts
from jobsync.services.repository import JobRepository
from jobsync.sources.normalize import truncate_description

logger = logging.getLogger(__name__)


class BatchUpsertError(Exception):
    """Raised when the store fails mid-batch; carries the counts committed before the failure."""

    def __init__(self, message: str, *, created: int, updated: int) -> None:
        super().__init__(message)
        self.created = created
        self.updated = updated

    @property
    def counts(self) -> UpsertCounts:
        return UpsertCounts(created=self.created, updated=self.updated)


class BatchProcessor:
    """Idempotent bulk writes and lifecycle transitions over the job store."""

    def __init__(
        self,
        repository: JobRepository,
        *,
        batch_size: int = 50,
        max_description_length: int = 5000,
        stale_after_days: int = 60,
        expire_after_days: int = 90,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.repository = repository
        self.batch_size = batch_size
        self.max_description_length = max_description_length
        self.stale_after_days = stale_after_days
        self.expire_after_days = expire_after_days

    async def batch_upsert(
        self,
        records: list[JobRecord],
        *,
        now: datetime | None = None,
        on_commit: Callable[[UpsertCounts], None] | None = None,
    ) -> UpsertCounts:
        """Upsert in sub-batches; ``on_commit`` sees each sub-batch's counts as soon as it is written."""
        synced_at = now or datetime.now(timezone.utc)
        totals = UpsertCounts()
        prepared = [self._prepare(record) for record in records]

        for start in range(0, len(prepared), self.batch_size):
            chunk = prepared[start : start + self.batch_size]
            try:
                counts = await self.repository.upsert_jobs(chunk, synced_at=synced_at)
            except Exception as exc:
                logger.warning(
                    "Batch upsert failed after created=%s updated=%s (chunk_start=%s chunk_size=%s): %s",
                    totals.created,
                    totals.updated,
                    start,
                    len(chunk),
                    exc,
                )
                raise BatchUpsertError(
                    f"store write failed: {exc}",
                    created=totals.created,
                    updated=totals.updated,
                ) from exc
            totals.add(counts)
            if on_commit is not None:
                on_commit(counts)

        logger.debug("Upserted %s records (created=%s updated=%s)", len(prepared), totals.created, totals.updated)
        return totals

    async def mark_stale_jobs(self, days_threshold: int | None = None, *, now: datetime | None = None) -> int:
        current = now or datetime.now(timezone.utc)
        days = self.stale_after_days if days_threshold is None else days_threshold
        count = await self.repository.mark_stale_jobs(cutoff=current - timedelta(days=days), now=current)
        if count:
            logger.info("Marked %s jobs stale (threshold_days=%s)", count, days)
        return count

    async def cleanup_expired_jobs(self, days_threshold: int | None = None, *, now: datetime | None = None) -> int:
        """Delete stale records past the expiry threshold; records with user relationships are only deactivated."""
        current = now or datetime.now(timezone.utc)
        days = self.expire_after_days if days_threshold is None else days_threshold
        deleted, deactivated = await self.repository.cleanup_expired_jobs(
            cutoff=current - timedelta(days=days),
            now=current,
        )
        if deleted or deactivated:
            logger.info(
                "Expired job cleanup deleted=%s deactivated=%s (threshold_days=%s)",
                deleted,
                deactivated,
                days,
            )
        return deleted

    async def deactivate_source_jobs(self, source: str, *, now: datetime | None = None) -> int:
        current = now or datetime.now(timezone.utc)
        count = await self.repository.deactivate_source_jobs(source=source, now=current)
        logger.info("Deactivated %s jobs from source=%s", count, source)
        return count

    async def reactivate_recent_jobs(self, days_threshold: int = 30, *, now: datetime | None = None) -> int:
        current = now or datetime.now(timezone.utc)
        count = await self.repository.reactivate_jobs_synced_since(
            cutoff=current - timedelta(days=days_threshold),
            now=current,
        )
        logger.info("Reactivated %s recently synced stale jobs (window_days=%s)", count, days_threshold)
        return count

    async def cleanup_stats(self, *, now: datetime | None = None) -> dict[str, Any]:
        current = now or datetime.now(timezone.utc)
        stats = await self.repository.job_stats(stale_cutoff=current - timedelta(days=self.stale_after_days))
        stats["stale_after_days"] = self.stale_after_days
        stats["expire_after_days"] = self.expire_after_days
        return stats

    def _prepare(self, record: JobRecord) -> JobRecord:
        description = truncate_description(record.description, self.max_description_length)
        if description == record.description:
            return record
        return replace(record, description=description)
