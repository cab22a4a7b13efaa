from __future__ import annotations

import warnings
from decimal import Decimal
from uuid import uuid4

import httpx
import pytest
from conftest import create_proposal, make_draft

from vidflow.core.errors import BudgetCapOutOfRange, MalformedDiff
from vidflow.web.main import _status_for, create_app


@pytest.fixture
async def client(services):
    app = create_app(services)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


async def test_project_and_scene_lifecycle(client):
    response = await client.post(
        "/api/projects", json={"title": "Pilot", "budgetCapUsd": "25"}
    )
    assert response.status_code == 201
    project = response.json()

    response = await client.post(
        f"/api/projects/{project['id']}/scenes",
        json={"title": "Cold open", "characterNames": ["Ada"], "timeOfDay": "Dusk"},
    )
    assert response.status_code == 201
    scene = response.json()
    assert scene["number"] == 1
    assert scene["time_of_day"] == "Dusk"

    response = await client.patch(f"/api/scenes/{scene['id']}", json={"script": "ADA: Hi."})
    assert response.json()["version"] == 2

    listed = await client.get(f"/api/projects/{project['id']}/scenes")
    assert [s["id"] for s in listed.json()] == [scene["id"]]

    budget = await client.put(
        f"/api/projects/{project['id']}/budget", json={"budgetCapUsd": "40"}
    )
    assert Decimal(budget.json()["remaining_usd"]) == Decimal("40")


async def test_domain_errors_map_to_status_codes(client, services, scene):
    missing = await client.get(f"/api/scenes/{uuid4()}")
    assert missing.status_code == 404
    assert missing.json()["error_code"] == "NOT_FOUND"

    await services.lock.acquire(scene.id, "pipeline:job-9")
    locked = await client.patch(f"/api/scenes/{scene.id}", json={"script": "x"})
    assert locked.status_code == 409
    assert locked.json()["error_code"] == "CONCURRENT_MODIFICATION"
    await services.lock.release(scene.id, "pipeline:job-9")

    dup = await client.patch(
        f"/api/scenes/{scene.id}", json={"characterNames": ["Jon", "jon"]}
    )
    assert dup.status_code == 400
    assert dup.json()["error_code"] == "DUPLICATE_CHARACTER_NAME"

    not_approved = await client.post(f"/api/scenes/{scene.id}/renders")
    assert not_approved.status_code == 400
    assert not_approved.json()["error_code"] == "SCENE_NOT_APPROVED"

    bad_cap = await client.put(
        f"/api/projects/{scene.project_id}/budget", json={"budgetCapUsd": "-5"}
    )
    assert bad_cap.status_code == 422


async def test_proposal_apply_and_dismiss(client, services, scene):
    good = await create_proposal(services, scene, make_draft(diff={"location": "Roof"}))
    bad = await create_proposal(services, scene, make_draft(diff={"characterNames": "Jon"}))

    applied = await client.post(
        f"/api/proposals/{good.id}/apply", json={"resolvedBy": "editor:ana"}
    )
    assert applied.status_code == 200
    assert applied.json()["status"] == "applied"
    assert applied.json()["resolved_by"] == "editor:ana"

    again = await client.post(f"/api/proposals/{good.id}/dismiss")
    assert again.status_code == 400
    assert again.json()["error_code"] == "PROPOSAL_NOT_PENDING"

    malformed = await client.post(f"/api/proposals/{bad.id}/apply")
    assert malformed.status_code == 422
    assert malformed.json()["error_code"] == "INVALID_DIFF_FORMAT"

    pending = await client.get(f"/api/scenes/{scene.id}/proposals", params={"status": "pending"})
    assert [p["id"] for p in pending.json()] == [str(bad.id)]


async def test_agent_run_is_accepted_and_processed(client, services, scene):
    accepted = await client.post(f"/api/scenes/{scene.id}/agent-runs")
    assert accepted.status_code == 202
    job_id = accepted.json()["jobId"]

    queued = await client.get(f"/api/jobs/{job_id}")
    assert queued.json()["state"] == "scheduled"

    await services.runner.run_once()

    done = await client.get(f"/api/jobs/{job_id}")
    assert done.json()["state"] == "succeeded"
    proposals = await client.get(f"/api/scenes/{scene.id}/proposals")
    assert len(proposals.json()) == 6

    costs = await client.get(f"/api/projects/{scene.project_id}/costs")
    assert len(costs.json()["by_role"]) == 6


async def test_cancel_job(client, scene):
    job_id = (await client.post(f"/api/scenes/{scene.id}/agent-runs")).json()["jobId"]

    cancelled = await client.post(f"/api/jobs/{job_id}/cancel")

    assert cancelled.json()["state"] == "cancelled"
    assert (await client.get(f"/api/jobs/{uuid4()}")).status_code == 404


async def test_event_queries(client, project, scene):
    recent = await client.get(f"/api/projects/{project.id}/events", params={"limit": 1})
    assert recent.json()["total_count"] == 2
    assert [e["event_type"] for e in recent.json()["items"]] == ["SceneCreated"]

    search = await client.get(
        "/api/events",
        params={"projectId": str(project.id), "eventType": "Created", "pageSize": 10},
    )
    assert search.json()["total_count"] == 2

    too_big = await client.get("/api/events", params={"pageSize": 500})
    assert too_big.status_code == 422


async def test_health(client):
    response = await client.get("/health")
    assert response.json()["status"] == "healthy"


def test_validation_errors_map_to_422_without_deprecation_warnings():
    with warnings.catch_warnings():
        warnings.simplefilter("error", DeprecationWarning)
        assert _status_for(MalformedDiff("bad")) == 422
        assert _status_for(BudgetCapOutOfRange()) == 422
