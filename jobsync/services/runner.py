from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache

from opentelemetry import trace

from jobsync.core.config import Settings, get_settings
from jobsync.services.batch import BatchProcessor
from jobsync.services.processor import SourceProcessor
from jobsync.services.records import SYNC_TYPES, RunStats, RunSummary, SourceResult, SyncType
from jobsync.services.repository import JobRepository, get_repository
from jobsync.services.state import get_sync_state
from jobsync.sources.registry import SourceRegistry, UnknownSourceError, build_registry

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass(slots=True)
class RunPlan:
    sources: list[str]
    incremental: bool
    lifecycle: bool
    max_jobs: int | None = None


class SyncRunner:
    """Owns one ledger entry per invocation: created as running, finalized exactly once."""

    def __init__(
        self,
        repository: JobRepository,
        registry: SourceRegistry,
        processor: SourceProcessor,
        batch: BatchProcessor,
        settings: Settings | None = None,
    ) -> None:
        self.repository = repository
        self.registry = registry
        self.processor = processor
        self.batch = batch
        self.settings = settings or get_settings()

    def plan(self, mode: SyncType, source: str | None = None, incremental: bool | None = None) -> RunPlan:
        if mode not in SYNC_TYPES:
            raise ValueError(f"mode must be one of: {', '.join(SYNC_TYPES)}")
        if mode == "hourly":
            top = [name for name in self.settings.top_sources if name in self.registry]
            return RunPlan(sources=top, incremental=True, lifecycle=False, max_jobs=self.settings.max_jobs_top)
        if mode == "daily":
            return RunPlan(sources=self.registry.names(), incremental=False, lifecycle=True)
        if source:
            return RunPlan(sources=[source], incremental=bool(incremental), lifecycle=False)
        return RunPlan(sources=self.registry.names(), incremental=bool(incremental), lifecycle=not incremental)

    async def run(
        self,
        mode: SyncType,
        source: str | None = None,
        incremental: bool | None = None,
        *,
        stale_after_days: int | None = None,
        expire_after_days: int | None = None,
        now: datetime | None = None,
    ) -> RunSummary:
        plan = self.plan(mode, source, incremental)
        started_at = datetime.now(timezone.utc)
        started = time.perf_counter()
        run = await self.repository.create_sync_run(
            sync_type=mode,
            sources_total=len(plan.sources),
            started_at=started_at,
        )
        run_id = run["id"]
        logger.info(
            "Sync run %s started mode=%s sources=%s incremental=%s",
            run_id,
            mode,
            ",".join(plan.sources),
            plan.incremental,
        )

        results: list[SourceResult] = []
        fatal_errors: list[str] = []
        stats = RunStats()

        with tracer.start_as_current_span("sync.run") as span:
            span.set_attribute("sync.run_id", run_id)
            span.set_attribute("sync.mode", mode)
            try:
                if source and source not in self.registry:
                    raise UnknownSourceError(source)
                if not plan.sources:
                    raise RuntimeError("no sources selected for this run")

                results = await self.processor.sync_sources(
                    plan.sources,
                    incremental=plan.incremental,
                    max_jobs=plan.max_jobs,
                    now=now,
                )
                if plan.lifecycle:
                    fatal_errors.extend(
                        await self._run_lifecycle(
                            stats,
                            stale_after_days=stale_after_days,
                            expire_after_days=expire_after_days,
                            now=now,
                        )
                    )
            except UnknownSourceError as exc:
                fatal_errors.append(str(exc))
                logger.warning("Sync run %s aborted: %s", run_id, exc)
            except Exception as exc:
                fatal_errors.append(f"run aborted: {exc}")
                logger.exception("Sync run %s aborted", run_id)

            for result in results:
                stats.created += result.created
                stats.updated += result.updated
                if result.success:
                    stats.sources_completed += 1
                else:
                    stats.sources_skipped += 1
            stats.duration_ms = int((time.perf_counter() - started) * 1000)

            errors = [error for result in results for error in result.errors] + fatal_errors
            aborted = any(not error.startswith("lifecycle:") for error in fatal_errors)
            all_skipped = bool(plan.sources) and stats.sources_skipped == len(plan.sources)
            status = "failed" if aborted or all_skipped else "completed"
            span.set_attribute("sync.status", status)

        await self.repository.finalize_sync_run(
            run_id,
            status=status,
            sources_total=len(plan.sources),
            sources_completed=stats.sources_completed,
            sources_skipped=stats.sources_skipped,
            jobs_created=stats.created,
            jobs_updated=stats.updated,
            jobs_staled=stats.staled,
            jobs_deleted=stats.deleted,
            errors=errors,
            completed_at=datetime.now(timezone.utc),
        )
        logger.info(
            "Sync run %s %s created=%s updated=%s staled=%s deleted=%s completed=%s skipped=%s duration_ms=%s",
            run_id,
            status,
            stats.created,
            stats.updated,
            stats.staled,
            stats.deleted,
            stats.sources_completed,
            stats.sources_skipped,
            stats.duration_ms,
        )
        return RunSummary(
            run_id=run_id,
            sync_type=mode,
            status=status,
            stats=stats,
            results=results,
            errors=errors,
        )

    async def _run_lifecycle(
        self,
        stats: RunStats,
        *,
        stale_after_days: int | None,
        expire_after_days: int | None,
        now: datetime | None,
    ) -> list[str]:
        errors: list[str] = []
        try:
            stats.staled = await self.batch.mark_stale_jobs(stale_after_days, now=now)
        except Exception as exc:
            errors.append(f"lifecycle: mark stale failed: {exc}")
            logger.exception("Marking stale jobs failed")
        try:
            stats.deleted = await self.batch.cleanup_expired_jobs(expire_after_days, now=now)
        except Exception as exc:
            errors.append(f"lifecycle: expired cleanup failed: {exc}")
            logger.exception("Expired job cleanup failed")
        return errors


def build_batch_processor(repository: JobRepository, settings: Settings) -> BatchProcessor:
    return BatchProcessor(
        repository,
        batch_size=settings.upsert_batch_size,
        max_description_length=settings.max_description_length,
        stale_after_days=settings.stale_after_days,
        expire_after_days=settings.expire_after_days,
    )


@lru_cache
def get_sync_runner() -> SyncRunner:
    settings = get_settings()
    repository = get_repository()
    registry = build_registry(settings)
    batch = build_batch_processor(repository, settings)
    processor = SourceProcessor(registry, batch, get_sync_state(), settings)
    return SyncRunner(repository, registry, processor, batch, settings)
