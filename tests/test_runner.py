from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from jobsync.services.repository import RepositoryConflictError
from jobsync.services.store import InMemoryJobStore
from tests.fakes import FakeSource, build_pipeline, make_settings, raw_item


def _adapters() -> list[FakeSource]:
    return [
        FakeSource("alpha", [[raw_item("a1", title="Backend Engineer"), raw_item("a2", title="Designer")]], priority=1),
        FakeSource("beta", [[raw_item("b1", title="Data Analyst")]], priority=2),
    ]


def _finalize_again(store: InMemoryJobStore, run_id: str):
    now = datetime.now(timezone.utc)
    return store.finalize_sync_run(
        run_id,
        status="completed",
        sources_total=0,
        sources_completed=0,
        sources_skipped=0,
        jobs_created=0,
        jobs_updated=0,
        jobs_staled=0,
        jobs_deleted=0,
        errors=[],
        completed_at=now,
    )


def test_daily_run_syncs_every_source_and_runs_lifecycle() -> None:
    store = InMemoryJobStore()
    now = datetime.now(timezone.utc)
    old = store.insert_raw_job(
        source="legacy", external_id="1", title="Old role", company="Gone Inc", apply_url="https://legacy.example/1",
        published_at=now - timedelta(days=75),
    )
    expired = store.insert_raw_job(
        source="legacy", external_id="2", title="Ancient role", company="Gone Inc",
        apply_url="https://legacy.example/2", published_at=now - timedelta(days=300),
        sync_status="stale", stale_since=now - timedelta(days=120),
    )
    runner, _, _, _ = build_pipeline(store, _adapters())

    summary = asyncio.run(runner.run("daily", now=now))

    assert summary.status == "completed"
    assert summary.stats.created == 3
    assert summary.stats.sources_completed == 2
    assert summary.stats.staled == 1
    assert summary.stats.deleted == 1
    assert store.jobs[old["id"]]["sync_status"] == "stale"
    assert expired["id"] not in store.jobs

    run = store.sync_runs[summary.run_id]
    assert run["status"] == "completed"
    assert run["sync_type"] == "daily"
    assert run["jobs_created"] == 3
    assert run["jobs_staled"] == 1
    assert run["jobs_deleted"] == 1
    assert run["completed_at"] is not None


def test_hourly_run_limits_to_top_sources_and_skips_lifecycle() -> None:
    store = InMemoryJobStore()
    now = datetime.now(timezone.utc)
    store.insert_raw_job(
        source="legacy", external_id="1", title="Old role", company="Gone Inc", apply_url="https://legacy.example/1",
        published_at=now - timedelta(days=75),
    )
    adapters = _adapters()
    runner, _, _, _ = build_pipeline(store, adapters, make_settings(top_sources=["alpha"], max_jobs_top=25))

    summary = asyncio.run(runner.run("hourly", now=now))

    assert summary.status == "completed"
    assert [result.source for result in summary.results] == ["alpha"]
    assert adapters[0].requests[0].since is not None
    assert adapters[0].requests[0].limit == 25
    assert adapters[1].requests == []
    assert summary.stats.staled == 0
    assert summary.stats.deleted == 0
    assert store.sync_runs[summary.run_id]["sources_total"] == 1


def test_manual_run_for_one_source() -> None:
    store = InMemoryJobStore()
    adapters = _adapters()
    runner, _, _, _ = build_pipeline(store, adapters)

    summary = asyncio.run(runner.run("manual", source="beta"))

    assert summary.status == "completed"
    assert [result.source for result in summary.results] == ["beta"]
    assert adapters[0].requests == []
    assert adapters[1].requests[0].since is None


def test_manual_run_without_source_behaves_like_full_sync() -> None:
    runner, _, _, _ = build_pipeline(InMemoryJobStore(), _adapters())

    full = runner.plan("manual")
    incremental = runner.plan("manual", incremental=True)

    assert full.sources == ["alpha", "beta"]
    assert full.lifecycle is True
    assert incremental.lifecycle is False
    assert incremental.incremental is True


def test_plan_rejects_unknown_mode() -> None:
    runner, _, _, _ = build_pipeline(InMemoryJobStore(), _adapters())

    with pytest.raises(ValueError):
        runner.plan("weekly")  # type: ignore[arg-type]


def test_unknown_source_fails_the_run_without_fetching() -> None:
    store = InMemoryJobStore()
    adapters = _adapters()
    runner, _, _, _ = build_pipeline(store, adapters)

    summary = asyncio.run(runner.run("manual", source="nope"))

    assert summary.status == "failed"
    assert summary.errors == ["unknown source: nope"]
    assert all(adapter.requests == [] for adapter in adapters)
    run = store.sync_runs[summary.run_id]
    assert run["status"] == "failed"
    assert run["errors"] == ["unknown source: nope"]


def test_empty_source_selection_fails_the_run() -> None:
    store = InMemoryJobStore()
    runner, _, _, _ = build_pipeline(store, _adapters(), make_settings(top_sources=["unregistered"]))

    summary = asyncio.run(runner.run("hourly"))

    assert summary.status == "failed"
    assert "no sources selected" in summary.errors[0]
    assert store.sync_runs[summary.run_id]["status"] == "failed"


def test_partial_failure_completes_and_keeps_healthy_counts() -> None:
    store = InMemoryJobStore()
    adapters = _adapters() + [FakeSource("gamma", error=httpx.ReadTimeout("read timed out"), priority=3)]
    runner, _, _, _ = build_pipeline(store, adapters)

    summary = asyncio.run(runner.run("manual", incremental=True))

    assert summary.status == "completed"
    assert summary.stats.created == 3
    assert summary.stats.sources_completed == 2
    assert summary.stats.sources_skipped == 1
    assert any("gamma" in error for error in summary.errors)
    run = store.sync_runs[summary.run_id]
    assert run["sources_skipped"] == 1
    assert run["errors"] == summary.errors


def test_run_fails_when_every_source_is_skipped() -> None:
    store = InMemoryJobStore()
    adapters = [
        FakeSource("alpha", error=httpx.ConnectError("down")),
        FakeSource("beta", configured=False),
    ]
    runner, _, _, _ = build_pipeline(store, adapters)

    summary = asyncio.run(runner.run("manual", incremental=True))

    assert summary.status == "failed"
    assert summary.stats.sources_skipped == 2
    assert len(summary.errors) == 2


def test_ledger_entry_is_finalized_exactly_once() -> None:
    store = InMemoryJobStore()
    runner, _, _, _ = build_pipeline(store, _adapters())

    summary = asyncio.run(runner.run("manual", source="alpha"))

    assert len(store.sync_runs) == 1
    with pytest.raises(RepositoryConflictError):
        asyncio.run(_finalize_again(store, summary.run_id))
    assert store.sync_runs[summary.run_id]["jobs_created"] == 2


def test_lifecycle_thresholds_can_be_overridden_per_run() -> None:
    store = InMemoryJobStore()
    now = datetime.now(timezone.utc)
    store.insert_raw_job(
        source="legacy", external_id="1", title="Recent-ish", company="Acme", apply_url="https://legacy.example/1",
        published_at=now - timedelta(days=20),
    )
    runner, _, _, _ = build_pipeline(store, _adapters())

    default = asyncio.run(runner.run("daily", now=now))
    override = asyncio.run(runner.run("daily", stale_after_days=10, now=now))

    assert default.stats.staled == 0
    assert override.stats.staled == 1


class _BrokenLifecycleStore(InMemoryJobStore):
    async def mark_stale_jobs(self, *, cutoff: datetime, now: datetime) -> int:
        raise RuntimeError("statement timeout")


def test_lifecycle_failure_is_reported_without_failing_the_run() -> None:
    store = _BrokenLifecycleStore()
    runner, _, _, _ = build_pipeline(store, _adapters())

    summary = asyncio.run(runner.run("daily"))

    assert summary.status == "completed"
    assert summary.stats.created == 3
    assert "lifecycle: mark stale failed: statement timeout" in summary.errors
