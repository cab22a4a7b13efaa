# src/vidflow/web/routes.py
"""HTTP and websocket routes over the pipeline engine."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from fastapi import (
    APIRouter,
    Depends,
    HTTPException,
    Query,
    Request,
    Response,
    WebSocket,
    WebSocketDisconnect,
    status,
)
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from vidflow.bootstrap import Services
from vidflow.core.logging import get_logger
from vidflow.core.notifications import NotificationHub
from vidflow.models import (
    BudgetState,
    CostReport,
    EventFilter,
    EventPage,
    JobStatus,
    Project,
    Proposal,
    ProposalStatus,
    Scene,
    SceneChanges,
)

logger = get_logger(__name__)

# Create the router
router = APIRouter()


class _RequestBody(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ProjectCreate(_RequestBody):
    title: str = Field(min_length=1)
    logline: str | None = None
    budget_cap_usd: Decimal = Decimal("0")


class BudgetUpdate(_RequestBody):
    budget_cap_usd: Decimal


class SceneCreate(_RequestBody):
    title: str = Field(min_length=1)
    script: str = ""
    narrative_goal: str = ""
    emotional_beat: str = ""
    location: str = ""
    time_of_day: str = ""
    character_names: list[str] = Field(default_factory=list)
    runtime_target_seconds: int = Field(default=60, ge=0)


class Approval(_RequestBody):
    approved_by: str = "human"


class RevisionRequest(_RequestBody):
    feedback: str
    requested_by: str = "human"


class ProposalResolution(_RequestBody):
    resolved_by: str = "human"


class JobAccepted(_RequestBody):
    job_id: UUID
    scene_id: UUID


def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Services are not ready")
    return services


# --------- Projects ---------


@router.post("/api/projects", status_code=status.HTTP_201_CREATED)
async def create_project(
    body: ProjectCreate, services: Services = Depends(get_services)
) -> Project:
    return await services.scenes.create_project(
        body.title, logline=body.logline, budget_cap_usd=body.budget_cap_usd
    )


@router.get("/api/projects/{project_id}")
async def get_project(
    project_id: UUID, services: Services = Depends(get_services)
) -> Project:
    return await services.scenes.get_project(project_id)


@router.delete("/api/projects/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_project(
    project_id: UUID, services: Services = Depends(get_services)
) -> Response:
    await services.scenes.delete_project(project_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/api/projects/{project_id}/budget")
async def set_budget(
    project_id: UUID, body: BudgetUpdate, services: Services = Depends(get_services)
) -> BudgetState:
    return await services.budget.set_cap(project_id, body.budget_cap_usd)


@router.get("/api/projects/{project_id}/costs")
async def get_costs(
    project_id: UUID, services: Services = Depends(get_services)
) -> CostReport:
    await services.scenes.get_project(project_id)
    return await services.budget.cost_report(project_id)


@router.get("/api/projects/{project_id}/events")
async def get_project_events(
    project_id: UUID,
    limit: int = Query(default=100, ge=1, le=500),
    services: Services = Depends(get_services),
) -> EventPage:
    return await services.ledger.get_project_events(project_id, limit=limit)


# --------- Scenes ---------


@router.post("/api/projects/{project_id}/scenes", status_code=status.HTTP_201_CREATED)
async def add_scene(
    project_id: UUID, body: SceneCreate, services: Services = Depends(get_services)
) -> Scene:
    fields = body.model_dump(exclude={"title"})
    return await services.scenes.add_scene(project_id, body.title, **fields)


@router.get("/api/projects/{project_id}/scenes")
async def list_scenes(
    project_id: UUID, services: Services = Depends(get_services)
) -> list[Scene]:
    await services.scenes.get_project(project_id)
    return await services.scenes.list_scenes(project_id)


@router.get("/api/scenes/{scene_id}")
async def get_scene(scene_id: UUID, services: Services = Depends(get_services)) -> Scene:
    return await services.scenes.get_scene(scene_id)


@router.patch("/api/scenes/{scene_id}")
async def update_scene(
    scene_id: UUID, body: SceneChanges, services: Services = Depends(get_services)
) -> Scene:
    return await services.scenes.update_scene(scene_id, body)


@router.post("/api/scenes/{scene_id}/submit")
async def submit_for_review(
    scene_id: UUID, services: Services = Depends(get_services)
) -> Scene:
    return await services.scenes.submit_for_review(scene_id)


@router.post("/api/scenes/{scene_id}/approve")
async def approve_scene(
    scene_id: UUID,
    body: Approval | None = None,
    services: Services = Depends(get_services),
) -> Scene:
    body = body or Approval()
    return await services.scenes.approve(scene_id, approved_by=body.approved_by)


@router.post("/api/scenes/{scene_id}/request-revision")
async def request_revision(
    scene_id: UUID, body: RevisionRequest, services: Services = Depends(get_services)
) -> Scene:
    return await services.scenes.request_revision(
        scene_id, body.feedback, requested_by=body.requested_by
    )


@router.get("/api/scenes/{scene_id}/proposals")
async def list_proposals(
    scene_id: UUID,
    proposal_status: ProposalStatus | None = Query(default=None, alias="status"),
    services: Services = Depends(get_services),
) -> list[Proposal]:
    await services.scenes.get_scene(scene_id)
    return await services.proposals.list_for_scene(scene_id, proposal_status)


# --------- Jobs ---------


@router.post("/api/scenes/{scene_id}/agent-runs", status_code=status.HTTP_202_ACCEPTED)
async def enqueue_pipeline(
    scene_id: UUID, services: Services = Depends(get_services)
) -> JobAccepted:
    job_id = await services.runner.enqueue_pipeline(scene_id)
    return JobAccepted(job_id=job_id, scene_id=scene_id)


@router.post("/api/scenes/{scene_id}/renders", status_code=status.HTTP_202_ACCEPTED)
async def enqueue_render(
    scene_id: UUID, services: Services = Depends(get_services)
) -> JobAccepted:
    job_id = await services.runner.enqueue_render(scene_id)
    return JobAccepted(job_id=job_id, scene_id=scene_id)


@router.get("/api/jobs/{job_id}")
async def get_job_status(
    job_id: UUID, services: Services = Depends(get_services)
) -> JobStatus:
    return await services.runner.get_job_status(job_id)


@router.post("/api/jobs/{job_id}/cancel")
async def cancel_job(job_id: UUID, services: Services = Depends(get_services)) -> JobStatus:
    return await services.runner.cancel(job_id)


# --------- Proposals ---------


@router.post("/api/proposals/{proposal_id}/apply")
async def apply_proposal(
    proposal_id: UUID,
    body: ProposalResolution | None = None,
    services: Services = Depends(get_services),
) -> Proposal:
    body = body or ProposalResolution()
    return await services.proposals.apply(proposal_id, emitted_by=body.resolved_by)


@router.post("/api/proposals/{proposal_id}/dismiss")
async def dismiss_proposal(
    proposal_id: UUID,
    body: ProposalResolution | None = None,
    services: Services = Depends(get_services),
) -> Proposal:
    body = body or ProposalResolution()
    return await services.proposals.dismiss(proposal_id, emitted_by=body.resolved_by)


# --------- Events ---------


@router.get("/api/events")
async def query_events(
    project_id: UUID | None = Query(default=None, alias="projectId"),
    entity_id: UUID | None = Query(default=None, alias="entityId"),
    event_type: str | None = Query(default=None, alias="eventType"),
    from_time: datetime | None = Query(default=None, alias="fromTime"),
    to_time: datetime | None = Query(default=None, alias="toTime"),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=200, alias="pageSize"),
    services: Services = Depends(get_services),
) -> EventPage:
    flt = EventFilter(
        project_id=project_id,
        entity_id=entity_id,
        event_type=event_type,
        from_time=from_time,
        to_time=to_time,
    )
    return await services.ledger.query_events(flt, page=page, page_size=page_size)


# --------- Notifications ---------


@router.websocket("/ws/notifications")
async def notifications(websocket: WebSocket) -> None:
    """Stream pipeline notifications for the requested ``topic`` values."""
    services: Services | None = getattr(websocket.app.state, "services", None)
    topics = websocket.query_params.getlist("topic")
    if services is None or not isinstance(services.notifier, NotificationHub) or not topics:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    hub = services.notifier
    await hub.connect(websocket, topics)
    try:
        while True:
            # Client messages are ignored; receiving detects the disconnect.
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info("ws.notifications.disconnected", extra={"topics": topics})
    finally:
        hub.disconnect(websocket)
