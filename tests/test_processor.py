from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from jobsync.services.store import InMemoryJobStore
from jobsync.sources.registry import UnknownSourceError
from tests.fakes import FakeSource, build_pipeline, make_settings, raw_item

NOW = datetime(2026, 5, 10, 12, 0, tzinfo=timezone.utc)


def test_failing_source_does_not_affect_other_sources() -> None:
    store = InMemoryJobStore()
    good = FakeSource("good", [[raw_item("1", title="Eng"), raw_item("2", title="Designer")]])
    broken = FakeSource("broken", error=httpx.ConnectError("connection refused"))
    _, processor, _, _ = build_pipeline(store, [good, broken])

    results = asyncio.run(processor.sync_sources(["good", "broken"], incremental=False))

    by_source = {result.source: result for result in results}
    assert by_source["good"].success is True
    assert by_source["good"].created == 2
    assert by_source["broken"].success is False
    assert by_source["broken"].created == 0
    assert "connection refused" in by_source["broken"].errors[0]
    assert len(store.jobs) == 2


def test_full_sync_exhausts_pagination_and_respects_max_jobs() -> None:
    store = InMemoryJobStore()
    pages = [[raw_item(f"{page}-{index}", title=f"Role {page}-{index}") for index in range(3)] for page in range(4)]
    source = FakeSource("paged", pages)
    _, processor, _, _ = build_pipeline(store, [source])

    unlimited = asyncio.run(processor.sync_source("paged", incremental=False, max_jobs=1000))
    assert unlimited.fetched == 12
    assert [request.page for request in source.requests] == [1, 2, 3, 4]

    capped_store = InMemoryJobStore()
    capped_source = FakeSource("paged", pages)
    _, capped_processor, _, _ = build_pipeline(capped_store, [capped_source])
    capped = asyncio.run(capped_processor.sync_source("paged", incremental=False, max_jobs=5))
    assert capped.fetched == 5
    assert capped.created == 5
    assert [request.page for request in capped_source.requests] == [1, 2]


def test_incremental_sync_filters_by_since_and_stops_on_stale_page() -> None:
    store = InMemoryJobStore()
    pages = [
        [
            raw_item("fresh", title="Fresh", published_at=NOW - timedelta(hours=6)),
            raw_item("old", title="Old", published_at=NOW - timedelta(days=9)),
            raw_item("undated", title="Undated"),
        ],
        [raw_item("older", title="Older", published_at=NOW - timedelta(days=20))],
        [raw_item("never", title="Never fetched", published_at=NOW)],
    ]
    source = FakeSource("feed", pages)
    _, processor, _, _ = build_pipeline(store, [source])

    result = asyncio.run(processor.sync_source("feed", incremental=True, since_days=2, now=NOW))

    assert result.success is True
    assert result.created == 2
    assert sorted(row["external_id"] for row in store.jobs.values()) == ["fresh", "undated"]
    assert [request.page for request in source.requests] == [1, 2]
    assert source.requests[0].since == NOW - timedelta(days=2)


def test_malformed_items_are_dropped_and_counted() -> None:
    store = InMemoryJobStore()
    items = [
        raw_item("1", title="Eng"),
        {"id": "2", "title": "", "company": "Acme"},
        {"title": "No id", "company": "Acme"},
        {"id": "4", "title": "No company"},
    ]
    _, processor, _, _ = build_pipeline(store, [FakeSource("messy", [items])])

    result = asyncio.run(processor.sync_source("messy"))

    assert result.success is True
    assert result.malformed == 3
    assert result.created == 1


def test_in_run_duplicates_are_skipped_across_pages() -> None:
    store = InMemoryJobStore()
    pages = [
        [raw_item("1", title="Backend Engineer", company="Acme"), raw_item("2", title="backend engineer!", company="ACME")],
        [raw_item("3", title="Backend  Engineer", company="Acme"), raw_item("4", title="Designer", company="Acme")],
    ]
    _, processor, _, _ = build_pipeline(store, [FakeSource("dupes", pages)])

    result = asyncio.run(processor.sync_source("dupes"))

    assert result.skipped == 2
    assert result.created == 2


def test_inverted_salary_range_is_a_warning_not_a_rejection() -> None:
    store = InMemoryJobStore()
    items = [raw_item("1", salary_min=150000, salary_max=90000)]
    _, processor, _, _ = build_pipeline(store, [FakeSource("pay", [items])])

    result = asyncio.run(processor.sync_source("pay"))

    assert result.created == 1
    assert len(result.warnings) == 1
    assert "salary_min 150000 exceeds salary_max 90000" in result.warnings[0]


def test_unconfigured_source_fails_without_fetching() -> None:
    store = InMemoryJobStore()
    source = FakeSource("keyed", [[raw_item("1")]], configured=False)
    _, processor, _, _ = build_pipeline(store, [source])

    result = asyncio.run(processor.sync_source("keyed"))

    assert result.success is False
    assert "missing credentials" in result.errors[0]
    assert source.requests == []


def test_source_exceeding_budget_is_cancelled_and_keeps_committed_pages() -> None:
    store = InMemoryJobStore()
    slow = FakeSource(
        "slow",
        [[raw_item("1", title="First page")], [raw_item("2", title="Second page")]],
        stall_after_page=1,
    )
    quick = FakeSource("quick", [[raw_item("9", title="Quick")]])
    _, processor, _, state = build_pipeline(store, [slow, quick])

    results = asyncio.run(processor.sync_sources(["slow", "quick"], incremental=False, budget_seconds=0.2))

    by_source = {result.source: result for result in results}
    assert by_source["quick"].success is True
    assert by_source["slow"].success is False
    assert by_source["slow"].created == 1
    assert "timed out" in by_source["slow"].errors[-1]
    assert {row["external_id"] for row in store.jobs.values()} == {"1", "9"}
    assert state.is_running("slow") is False


def test_same_source_invocations_are_serialized() -> None:
    store = InMemoryJobStore()
    source = FakeSource("shared", [[raw_item("1")]], delay=0.05)
    _, processor, _, _ = build_pipeline(store, [source])

    async def run_twice():
        return await asyncio.gather(processor.sync_source("shared"), processor.sync_source("shared"))

    first, second = asyncio.run(run_twice())

    assert source.max_concurrent_fetches == 1
    assert (first.created, second.created) == (1, 0)
    assert (first.updated, second.updated) == (0, 1)


def test_unknown_source_raises_before_any_fetch() -> None:
    _, processor, _, _ = build_pipeline(InMemoryJobStore(), [FakeSource("known")])

    with pytest.raises(UnknownSourceError):
        asyncio.run(processor.sync_source("missing"))


def test_top_sources_use_configured_subset_incrementally() -> None:
    store = InMemoryJobStore()
    adapters = [FakeSource(name, [[raw_item(f"{name}-1", title=name)]]) for name in ("alpha", "beta", "gamma")]
    settings = make_settings(top_sources=["alpha", "gamma", "unregistered"], max_jobs_top=7)
    _, processor, _, _ = build_pipeline(store, adapters, settings)

    results = asyncio.run(processor.sync_top_sources(now=NOW))

    assert [result.source for result in results] == ["alpha", "gamma"]
    assert adapters[0].requests[0].since == NOW - timedelta(days=settings.incremental_since_days)
    assert adapters[0].requests[0].limit == 7
    assert adapters[1].requests == []


def test_results_are_recorded_in_sync_state() -> None:
    store = InMemoryJobStore()
    _, processor, _, state = build_pipeline(store, [FakeSource("tracked", [[raw_item("1")]])])

    asyncio.run(processor.sync_all_sources())

    status = state.source_status()["tracked"]
    assert status.success is True
    assert status.created == 1


class _SlowWriteStore(InMemoryJobStore):
    """Awaits on every write like a pooled connection; writes after the first never return."""

    def __init__(self) -> None:
        super().__init__()
        self.upsert_calls = 0

    async def upsert_jobs(self, records, *, synced_at):
        self.upsert_calls += 1
        await asyncio.sleep(0.01 if self.upsert_calls == 1 else 3600)
        return await super().upsert_jobs(records, synced_at=synced_at)


def test_budget_cancellation_mid_page_keeps_committed_sub_batch_counts() -> None:
    store = _SlowWriteStore()
    source = FakeSource("slow", [[raw_item("1", title="First role"), raw_item("2", title="Second role")]])
    _, processor, _, _ = build_pipeline(store, [source], make_settings(upsert_batch_size=1))

    [result] = asyncio.run(processor.sync_sources(["slow"], incremental=False, budget_seconds=0.3))

    assert result.success is False
    assert result.fetched == 2
    assert result.created == 1
    assert len(store.jobs) == 1
    assert "timed out" in result.errors[-1]


def test_repeated_source_names_run_once() -> None:
    store = InMemoryJobStore()
    source = FakeSource("alpha", [[raw_item("1")]])
    _, processor, _, _ = build_pipeline(store, [source, FakeSource("beta", [[raw_item("2", title="Other")]])])

    results = asyncio.run(processor.sync_sources(["alpha", "beta", "alpha"], incremental=False))

    assert [result.source for result in results] == ["alpha", "beta"]
    assert results[0].created == 1
    assert len(source.requests) == 1


def test_incremental_sync_pages_past_a_fully_malformed_page() -> None:
    store = InMemoryJobStore()
    pages = [
        [{"id": "bad-1", "title": "", "company": "Acme"}, {"title": "No id", "company": "Acme"}],
        [raw_item("fresh", title="Fresh", published_at=NOW - timedelta(hours=1))],
    ]
    source = FakeSource("flaky", pages)
    _, processor, _, _ = build_pipeline(store, [source])

    result = asyncio.run(processor.sync_source("flaky", incremental=True, since_days=2, now=NOW))

    assert result.malformed == 2
    assert result.created == 1
    assert [request.page for request in source.requests] == [1, 2]
