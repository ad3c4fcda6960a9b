"""
Tests for the HTTP interface (`api/`).

Routers are exercised through FastAPI's TestClient with every collaborator
replaced via `app.dependency_overrides`; nothing touches Supabase or the
network.

Covers:
- Trigger and mutating routes require the shared secret or a session.
- Run and orchestrate responses use the camelCase contract.
- Settings validation errors are 400; unknown batches are 404; illegal
  transitions are 409.
- Logs are paginated with a page size cap.
"""

from __future__ import annotations

from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from api.dependencies import (
    get_app_config,
    get_ledger,
    get_log_store,
    get_orchestrator,
    get_selector,
    get_session_verifier,
    get_settings_store,
)
from api.main import app
from clients.config import AppConfig
from domain.assignment import AssignmentOutcome
from domain.settings import AssignmentSettings
from fakes import FakeSettingsStore, make_candidates
from services.assignment_worker import AssignmentWorker
from services.customer_check import CustomerChecker
from services.orchestrator import AssignmentOrchestrator

SECRET = "s3cret"
AUTH = {"Authorization": f"Bearer {SECRET}"}


@pytest.fixture
def settings_store() -> FakeSettingsStore:
    return FakeSettingsStore(
        AssignmentSettings(max_total_contacts=100, max_per_platform=10, delay_between_contacts_ms=100, settings_id="row-1")
    )


@pytest.fixture
def client(
    settings_store, selector, ledger, log_store, campaign, contacts
) -> Iterator[TestClient]:
    def worker_factory(ledger, log_store, selector, config, dry_run):
        return AssignmentWorker(
            ledger,
            log_store=log_store,
            selector=selector,
            campaign=None if dry_run else campaign,
            customer_checker=CustomerChecker(contacts=contacts),
            contacts=contacts,
            delay_ms=config.delay_ms,
            chunk_size=config.chunk_size,
            dry_run=dry_run,
            sleep=lambda seconds: None,
        )

    def orchestrator() -> AssignmentOrchestrator:
        return AssignmentOrchestrator(
            selector=selector,
            ledger=ledger,
            log_store=log_store,
            worker_factory=worker_factory,
            sleep=lambda seconds: None,
        )

    sessions = {"user-token": "ops@example.nl"}

    app.dependency_overrides[get_app_config] = lambda: AppConfig(cron_secret=SECRET)
    app.dependency_overrides[get_session_verifier] = lambda: sessions.get
    app.dependency_overrides[get_settings_store] = lambda: settings_store
    app.dependency_overrides[get_selector] = lambda: selector
    app.dependency_overrides[get_ledger] = lambda: ledger
    app.dependency_overrides[get_log_store] = lambda: log_store
    app.dependency_overrides[get_orchestrator] = orchestrator
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def test_health_and_root(client) -> None:
    """Verify the unauthenticated service endpoints."""

    assert client.get("/health").json()["status"] == "healthy"
    assert client.get("/").json()["message"] == "Campaign Assignment API"


@pytest.mark.parametrize(
    "method, path",
    [
        ("post", "/api/v1/assignment/run"),
        ("get", "/api/v1/assignment/run"),
        ("post", "/api/v1/assignment/orchestrate"),
        ("put", "/api/v1/assignment/settings"),
        ("post", "/api/v1/assignment/cancel"),
        ("post", "/api/v1/assignment/batches/batch_x/pause"),
    ],
)
def test_mutating_routes_require_auth(client, method, path) -> None:
    """Verify requests without a valid secret or session are rejected."""

    assert getattr(client, method)(path).status_code == 401
    assert getattr(client, method)(path, headers={"x-api-key": "wrong"}).status_code == 401
    assert getattr(client, method)(path, headers={"Authorization": "Bearer unknown-token"}).status_code == 401


def test_secret_accepted_in_every_header(client, candidate_store) -> None:
    """Verify the secret works as bearer token, x-api-key and x-api-secret."""

    for headers in (AUTH, {"x-api-key": SECRET}, {"x-api-secret": SECRET}):
        response = client.post("/api/v1/assignment/run", json={"dryRun": True}, headers=headers)
        assert response.status_code == 200


def test_unconfigured_secret_rejects_everything_but_sessions(client) -> None:
    """Verify an empty CRON_SECRET never matches, while a session still works."""

    app.dependency_overrides[get_app_config] = lambda: AppConfig(cron_secret=None)

    assert client.post("/api/v1/assignment/run", json={"dryRun": True}, headers={"x-api-key": ""}).status_code == 401
    session = client.post(
        "/api/v1/assignment/run",
        json={"dryRun": True},
        headers={"Authorization": "Bearer user-token"},
    )
    assert session.status_code == 200


def test_run_returns_camel_case_result(client, candidate_store, campaign) -> None:
    """Verify a run processes the batch and reports in camelCase."""

    candidate_store.add(*make_candidates(3))

    response = client.post("/api/v1/assignment/run", json={"maxTotal": 2, "chunkSize": 1}, headers=AUTH)
    body = response.json()

    assert response.status_code == 200
    assert body["success"] is True
    assert body["batchId"].startswith("batch_")
    assert body["isResume"] is False
    assert body["hasMoreToProcess"] is False
    assert body["leadLimitReached"] is False
    assert body["stats"]["added"] == 2
    assert body["platformStats"]["p1"]["added"] == 2
    assert body["duration"].endswith("ms")
    assert len(campaign.calls) == 2


def test_scheduler_get_uses_stored_settings(client, candidate_store, settings_store) -> None:
    """Verify GET /run runs with the stored settings and honors the disabled flag."""

    settings_store.settings = AssignmentSettings(is_enabled=False, settings_id="row-1")

    body = client.get("/api/v1/assignment/run", headers=AUTH).json()

    assert body["skipped"] is True
    assert body["message"] == "Campaign assignment is disabled"


def test_run_rejects_invalid_override(client) -> None:
    """Verify out-of-range overrides are a 400."""

    response = client.post("/api/v1/assignment/run", json={"maxPerPlatform": 0}, headers=AUTH)

    assert response.status_code == 400


def test_run_unknown_resume_batch_is_404(client) -> None:
    response = client.post("/api/v1/assignment/run", json={"resumeBatchId": "batch_missing"}, headers=AUTH)

    assert response.status_code == 404


def test_unexpected_failure_is_structured_500(client, candidate_store) -> None:
    """Verify unexpected exceptions become a structured 500 body."""

    candidate_store.fail_with = RuntimeError("database unavailable")

    response = client.post("/api/v1/assignment/run", headers=AUTH)
    detail = response.json()["detail"]

    assert response.status_code == 500
    assert detail["success"] is False
    assert detail["error"] == "Internal server error"
    assert "database unavailable" in detail["message"]


def test_orchestrate_without_candidates(client) -> None:
    body = client.post("/api/v1/assignment/orchestrate", json={"dryRun": True}, headers=AUTH).json()

    assert body["success"] is True
    assert body["message"] == "No candidates found"
    assert body["platforms"] == []


def test_settings_read_and_update(client, settings_store) -> None:
    """Verify settings can be read openly and updated with auth."""

    assert client.get("/api/v1/assignment/settings").json()["settings"]["max_total_contacts"] == 100

    response = client.put(
        "/api/v1/assignment/settings",
        json={"max_per_platform": 25},
        headers={"Authorization": "Bearer user-token"},
    )

    assert response.status_code == 200
    assert response.json()["settings"]["max_per_platform"] == 25
    assert response.json()["settings"]["max_total_contacts"] == 100
    assert settings_store.settings.updated_by == "ops@example.nl"


def test_settings_update_out_of_range_is_400(client, settings_store) -> None:
    response = client.put("/api/v1/assignment/settings", json={"max_total_contacts": 10000}, headers=AUTH)

    assert response.status_code == 400
    assert settings_store.saved == []


def test_logs_are_paginated(client, candidate_store) -> None:
    """Verify log pagination, status filter validation and the page size cap."""

    candidate_store.add(*make_candidates(3))
    client.post("/api/v1/assignment/run", json={}, headers=AUTH)

    body = client.get("/api/v1/assignment/logs", params={"limit": 2, "status": "added"}).json()

    assert body["success"] is True
    assert len(body["data"]) == 2
    assert body["pagination"] == {"page": 1, "limit": 2, "total": 3, "totalPages": 2}
    assert body["data"][0]["status"] == AssignmentOutcome.ADDED.value

    assert client.get("/api/v1/assignment/logs", params={"status": "bogus"}).status_code == 400
    assert client.get("/api/v1/assignment/logs", params={"limit": 101}).status_code == 422


def test_preview_and_stats(client, candidate_store) -> None:
    """Verify preview counts and the camelCase stats payload."""

    candidate_store.add(*make_candidates(4, platform_id="p1", prefix="a"))
    candidate_store.add(*make_candidates(2, platform_id="p2", prefix="b"))

    preview = client.get("/api/v1/assignment/preview").json()
    assert preview["total_candidates"] == 6
    assert [p["candidate_count"] for p in preview["platforms"]] == [4, 2]

    client.post("/api/v1/assignment/run", headers=AUTH)
    stats = client.get("/api/v1/assignment/stats").json()

    assert stats["stats"]["added"] == 6
    assert stats["stats"]["successRate"] == 100
    assert stats["platformStats"]["Platform p1"]["added"] == 4
    assert len(stats["recentBatches"]) == 1
    assert sum(day["total"] for day in stats["dailyTrend"].values()) == 6


def test_batch_controls(client, ledger) -> None:
    """Verify pause, resume and cancel with their error codes."""

    batch = ledger.create_batch(total_candidates=5, max_total=5, max_per_platform=5)

    # A pending batch cannot be paused
    assert client.post(f"/api/v1/assignment/batches/{batch.batch_id}/pause", headers=AUTH).status_code == 409

    ledger.mark_processing(batch.batch_id)
    paused = client.post(f"/api/v1/assignment/batches/{batch.batch_id}/pause", headers=AUTH)
    assert paused.status_code == 200
    assert paused.json()["batch"]["status"] == "paused"

    resumed = client.post(f"/api/v1/assignment/batches/{batch.batch_id}/resume", headers=AUTH)
    assert resumed.json()["batch"]["status"] == "processing"

    assert client.get(f"/api/v1/assignment/batches/{batch.batch_id}").json()["status"] == "processing"
    assert client.get("/api/v1/assignment/batches/batch_missing").status_code == 404
    assert len(client.get("/api/v1/assignment/batches").json()["batches"]) == 1

    cancelled = client.post("/api/v1/assignment/cancel", headers=AUTH)
    assert cancelled.json()["batch"]["status"] == "cancelled"

    missing = client.post("/api/v1/assignment/cancel", headers=AUTH)
    assert missing.status_code == 404
    assert missing.json()["detail"] == "No active batch found to cancel"
