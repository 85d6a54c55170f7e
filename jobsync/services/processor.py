from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

import httpx
from opentelemetry import trace

from jobsync.core.config import Settings, get_settings
from jobsync.services.batch import BatchProcessor
from jobsync.services.dedupe import dedupe_batch, job_fingerprint
from jobsync.services.records import JobRecord, SourceResult, UpsertCounts
from jobsync.services.state import SyncState
from jobsync.sources.base import PageRequest, SourceAdapter, SourceNotConfiguredError
from jobsync.sources.normalize import salary_range_warning
from jobsync.sources.registry import SourceRegistry

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

ClientFactory = Callable[[SourceAdapter], httpx.AsyncClient]
Sleep = Callable[[float], Awaitable[None]]


class SourceProcessor:
    """Runs source adapters concurrently, one task per source, and hands their pages to the batch processor."""

    def __init__(
        self,
        registry: SourceRegistry,
        batch: BatchProcessor,
        state: SyncState,
        settings: Settings | None = None,
        *,
        client_factory: ClientFactory | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.registry = registry
        self.batch = batch
        self.state = state
        self.settings = settings or get_settings()
        self._client_factory = client_factory or self._default_client
        self._sleep = sleep

    async def sync_source(
        self,
        source: str,
        incremental: bool = False,
        since_days: int | None = None,
        max_jobs: int | None = None,
        *,
        now: datetime | None = None,
    ) -> SourceResult:
        results = await self.sync_sources(
            [source],
            incremental=incremental,
            since_days=since_days,
            max_jobs=max_jobs,
            now=now,
        )
        return results[0]

    async def sync_top_sources(
        self,
        since_days: int | None = None,
        max_jobs: int | None = None,
        *,
        now: datetime | None = None,
    ) -> list[SourceResult]:
        names = [name for name in self.settings.top_sources if name in self.registry]
        return await self.sync_sources(
            names,
            incremental=True,
            since_days=since_days,
            max_jobs=max_jobs if max_jobs is not None else self.settings.max_jobs_top,
            now=now,
        )

    async def sync_all_sources(self, incremental: bool = False, *, now: datetime | None = None) -> list[SourceResult]:
        return await self.sync_sources(self.registry.names(), incremental=incremental, now=now)

    async def sync_sources(
        self,
        names: list[str],
        *,
        incremental: bool,
        since_days: int | None = None,
        max_jobs: int | None = None,
        budget_seconds: float | None = None,
        now: datetime | None = None,
    ) -> list[SourceResult]:
        """Sync the named sources concurrently and wait for all of them within the wall-clock budget.

        Sources still running when the budget elapses are cancelled and reported as failed. Pages they
        already upserted stay committed and their counts are kept.
        """
        # Each source runs at most once per call, in first-seen order.
        adapters = [self.registry.get(name) for name in dict.fromkeys(names)]
        if not adapters:
            return []

        current = now or datetime.now(timezone.utc)
        since = None
        if incremental:
            days = since_days if since_days is not None else self.settings.incremental_since_days
            since = current - timedelta(days=days)
        if max_jobs is None:
            max_jobs = self.settings.max_jobs_incremental if incremental else self.settings.max_jobs_full
        if budget_seconds is None:
            budget_seconds = (
                self.settings.incremental_budget_seconds if incremental else self.settings.full_budget_seconds
            )

        results = {adapter.name: SourceResult(source=adapter.name, success=False) for adapter in adapters}
        tasks = {
            asyncio.create_task(
                self._run_source(adapter, results[adapter.name], since=since, max_jobs=max_jobs),
                name=f"sync-source:{adapter.name}",
            ): adapter.name
            for adapter in adapters
        }

        _, pending = await asyncio.wait(tasks, timeout=budget_seconds)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        for task in pending:
            name = tasks[task]
            result = results[name]
            result.success = False
            result.errors.append(f"{name}: timed out after {budget_seconds:g}s")
            logger.warning(
                "Source %s cancelled at budget (created=%s updated=%s kept)",
                name,
                result.created,
                result.updated,
            )

        ordered = [results[adapter.name] for adapter in adapters]
        for result in ordered:
            self.state.record_result(result)
        return ordered

    async def _run_source(
        self,
        adapter: SourceAdapter,
        result: SourceResult,
        *,
        since: datetime | None,
        max_jobs: int,
    ) -> None:
        started = time.perf_counter()
        try:
            async with self.state.source_lock(adapter.name):
                with tracer.start_as_current_span("sync.source") as span:
                    span.set_attribute("sync.source", adapter.name)
                    span.set_attribute("sync.incremental", since is not None)
                    try:
                        if not adapter.is_configured():
                            raise SourceNotConfiguredError(f"source {adapter.name} is missing credentials")
                        async with self._client_factory(adapter) as client:
                            await self._paginate(adapter, client, result, since=since, max_jobs=max_jobs)
                        result.success = True
                    except SourceNotConfiguredError as exc:
                        result.errors.append(f"{adapter.name}: {exc}")
                        logger.warning("Skipping source %s: %s", adapter.name, exc)
                    except Exception as exc:
                        result.errors.append(f"{adapter.name}: {exc}")
                        logger.exception("Source %s failed", adapter.name)
                    span.set_attribute("sync.created", result.created)
                    span.set_attribute("sync.updated", result.updated)
                    span.set_attribute("sync.success", result.success)
        finally:
            result.duration_ms = int((time.perf_counter() - started) * 1000)

        logger.info(
            "Source %s finished success=%s fetched=%s created=%s updated=%s skipped=%s malformed=%s",
            adapter.name,
            result.success,
            result.fetched,
            result.created,
            result.updated,
            result.skipped,
            result.malformed,
        )

    async def _paginate(
        self,
        adapter: SourceAdapter,
        client: httpx.AsyncClient,
        result: SourceResult,
        *,
        since: datetime | None,
        max_jobs: int,
    ) -> None:
        seen: set[str] = set()
        page = 1
        while result.fetched < max_jobs:
            remaining = max_jobs - result.fetched
            source_page = await adapter.fetch(
                client,
                PageRequest(page=page, limit=min(adapter.page_size, remaining), since=since),
            )
            items = source_page.items[:remaining]
            result.fetched += len(items)

            valid, fresh = self._normalize_page(adapter, items, result, since=since)
            if fresh:
                await self._write_page(fresh, result, seen)

            if not source_page.has_more or not items:
                break
            # A page of only malformed items says nothing about posting age.
            if since is not None and valid and not fresh:
                break
            page += 1
            if adapter.rate_limit_seconds > 0:
                await self._sleep(adapter.rate_limit_seconds)

    def _normalize_page(
        self,
        adapter: SourceAdapter,
        items: list[dict],
        result: SourceResult,
        *,
        since: datetime | None,
    ) -> tuple[int, list[JobRecord]]:
        valid = 0
        records: list[JobRecord] = []
        for item in items:
            try:
                record = adapter.normalize(item)
            except (AttributeError, KeyError, TypeError, ValueError) as exc:
                logger.debug("Dropping malformed %s item: %s", adapter.name, exc)
                record = None
            if record is None:
                result.malformed += 1
                continue
            valid += 1
            warning = salary_range_warning(record)
            if warning:
                result.warnings.append(warning)
            # Undated items always pass the since filter.
            if since is not None and record.published_at is not None and record.published_at < since:
                continue
            records.append(record)
        return valid, records

    async def _write_page(self, records: list[JobRecord], result: SourceResult, seen: set[str]) -> None:
        deduped = dedupe_batch(records)
        result.skipped += deduped.skipped
        unique: list[JobRecord] = []
        for record in deduped.records:
            fingerprint = job_fingerprint(record.title, record.company)
            if fingerprint in seen:
                result.skipped += 1
                continue
            seen.add(fingerprint)
            unique.append(record)

        def committed(counts: UpsertCounts) -> None:
            result.created += counts.created
            result.updated += counts.updated

        # Counts land per sub-batch so a cancelled or failed write keeps what already committed.
        await self.batch.batch_upsert(unique, on_commit=committed)

    def _default_client(self, adapter: SourceAdapter) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.settings.source_timeout_seconds,
            follow_redirects=True,
            headers={"Accept": "application/json", "User-Agent": self.settings.source_user_agent},
        )
