from __future__ import annotations

import httpx
import pytest
from fastapi.testclient import TestClient

from jobsync.core.config import get_settings
from jobsync.main import app
from jobsync.services.repository import get_repository
from jobsync.services.runner import get_sync_runner
from jobsync.services.state import get_sync_state
from jobsync.services.store import InMemoryJobStore
from tests.fakes import FakeSource, build_pipeline, make_settings, raw_item

TRIGGER = {"Authorization": "Bearer trigger-secret"}
ADMIN = {"Authorization": "Bearer admin-secret"}


def _install(settings) -> InMemoryJobStore:
    store = InMemoryJobStore()
    adapters = [
        FakeSource("alpha", [[raw_item("a1", title="Backend Engineer"), raw_item("a2", title="Designer")]], priority=1),
        FakeSource("beta", error=httpx.ConnectError("connection refused"), priority=2),
    ]
    runner, _, _, state = build_pipeline(store, adapters, settings)
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_repository] = lambda: store
    app.dependency_overrides[get_sync_runner] = lambda: runner
    app.dependency_overrides[get_sync_state] = lambda: state
    return store


@pytest.fixture
def sync_client():
    store = _install(make_settings(trigger_secret="trigger-secret", admin_secret="admin-secret", top_sources=["alpha"]))
    with TestClient(app) as client:
        yield client, store
    app.dependency_overrides.clear()


def test_trigger_requires_bearer_token(sync_client) -> None:
    client, store = sync_client

    missing = client.post("/sync/runs", json={"mode": "hourly"})
    wrong = client.post("/sync/runs", json={"mode": "hourly"}, headers={"Authorization": "Bearer nope"})

    assert missing.status_code == 401
    assert wrong.status_code == 401
    assert store.sync_runs == {}


def test_trigger_returns_503_when_auth_is_not_configured() -> None:
    _install(make_settings())
    try:
        with TestClient(app) as client:
            response = client.post("/sync/runs", json={"mode": "hourly"}, headers=TRIGGER)
    finally:
        app.dependency_overrides.clear()
    assert response.status_code == 503


def test_hourly_trigger_runs_top_sources(sync_client) -> None:
    client, store = sync_client

    response = client.post("/sync/runs", json={"mode": "hourly"}, headers=TRIGGER)

    assert response.status_code == 200
    body = response.json()
    assert body["sync_type"] == "hourly"
    assert body["status"] == "completed"
    assert body["stats"]["created"] == 2
    assert [result["source"] for result in body["results"]] == ["alpha"]
    assert store.sync_runs[body["run_id"]]["status"] == "completed"


def test_manual_run_reports_partial_failure(sync_client) -> None:
    client, _ = sync_client

    response = client.post("/sync/runs", json={"mode": "manual", "incremental": True}, headers=ADMIN)

    body = response.json()
    assert response.status_code == 200
    assert body["status"] == "completed"
    assert body["stats"]["sources_completed"] == 1
    assert body["stats"]["sources_skipped"] == 1
    assert any("connection refused" in error for error in body["errors"])


def test_unknown_source_is_recorded_as_failed_run(sync_client) -> None:
    client, store = sync_client

    response = client.post("/sync/runs", json={"mode": "manual", "source": "monster"}, headers=TRIGGER)

    assert response.status_code == 200
    assert response.json()["status"] == "failed"
    assert response.json()["errors"] == ["unknown source: monster"]
    assert [run["status"] for run in store.sync_runs.values()] == ["failed"]


def test_trigger_rejects_invalid_payloads(sync_client) -> None:
    client, store = sync_client

    assert client.post("/sync/runs", json={"mode": "weekly"}, headers=TRIGGER).status_code == 422
    assert client.post("/sync/runs", json={"mode": "hourly", "source": "alpha"}, headers=TRIGGER).status_code == 422
    assert client.post("/sync/runs", json={"mode": "daily", "dry_run": True}, headers=TRIGGER).status_code == 422
    assert store.sync_runs == {}


def test_run_ledger_endpoints(sync_client) -> None:
    client, _ = sync_client
    run_id = client.post("/sync/runs", json={"mode": "hourly"}, headers=TRIGGER).json()["run_id"]

    listed = client.get("/sync/runs", params={"status": "completed"})
    fetched = client.get(f"/sync/runs/{run_id}")
    missing = client.get("/sync/runs/00000000-0000-0000-0000-000000000000")

    assert listed.status_code == 200
    assert [run["id"] for run in listed.json()] == [run_id]
    assert fetched.json()["jobs_created"] == 2
    assert fetched.json()["completed_at"] is not None
    assert missing.status_code == 404


def test_status_reports_last_run_job_counts_and_sources(sync_client) -> None:
    client, _ = sync_client
    client.post("/sync/runs", json={"mode": "manual", "incremental": True}, headers=TRIGGER)

    response = client.get("/sync/status")

    assert response.status_code == 200
    body = response.json()
    assert body["last_completed_run"]["sync_type"] == "manual"
    assert body["running_runs"] == []
    assert body["jobs"]["total"] == 2
    assert body["jobs"]["by_source"] == {"alpha": 2}
    sources = {entry["source"]: entry for entry in body["sources"]}
    assert sources["alpha"]["success"] is True
    assert sources["alpha"]["running"] is False
    assert sources["beta"]["success"] is False
