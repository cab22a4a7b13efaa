from __future__ import annotations

import asyncio
import json
from uuid import uuid4

import pytest
from conftest import create_proposal, make_draft

from vidflow.core.errors import (
    ConcurrentModification,
    MalformedDiff,
    ProposalNotPending,
    SceneNotEditable,
)
from vidflow.core.notifications import scene_topic
from vidflow.models import AgentRole, EventFilter, ProposalStatus
from vidflow.store.proposals import ProposalStore


async def test_create_records_pending_proposal_and_event(services, scene):
    proposal = await create_proposal(services, scene, make_draft())

    assert proposal.status is ProposalStatus.PENDING
    assert json.loads(proposal.diff) == {"script": "INT. KITCHEN - NIGHT"}
    entries = await services.ledger.query(EventFilter(entity_id=proposal.id))
    assert [e.event_type for e in entries] == ["AgentProposalCreated"]
    assert entries[0].emitted_by == "agent:writer"
    assert entries[0].project_id == scene.project_id


async def test_apply_updates_scene_once_even_for_many_fields(services, scene, notifier):
    diff = {"script": "New script", "location": "Rooftop", "timeOfDay": "Dawn"}
    proposal = await create_proposal(services, scene, make_draft(diff=diff))

    applied = await services.proposals.apply(proposal.id, emitted_by="editor:alice")

    updated = await services.scenes.get_scene(scene.id)
    assert applied.status is ProposalStatus.APPLIED
    assert applied.resolved_by == "editor:alice"
    assert updated.version == scene.version + 1
    assert (updated.script, updated.location, updated.time_of_day) == (
        "New script",
        "Rooftop",
        "Dawn",
    )
    assert updated.locked_by is None
    scene_events = await services.ledger.query(
        EventFilter(entity_id=scene.id, event_type="SceneUpdated")
    )
    assert len(scene_events) == 1
    assert scene_events[0].to_event().new_version == updated.version
    assert "SceneUpdated" in notifier.events(scene_topic(scene.id))
    assert "ProposalApplied" in notifier.events(scene_topic(scene.id))


async def test_apply_with_empty_diff_leaves_scene_untouched(services, scene):
    proposal = await create_proposal(services, scene, make_draft(diff={}))

    applied = await services.proposals.apply(proposal.id)

    after = await services.scenes.get_scene(scene.id)
    assert applied.status is ProposalStatus.APPLIED
    assert after.version == scene.version
    assert await services.ledger.query(
        EventFilter(entity_id=scene.id, event_type="SceneUpdated")
    ) == []
    resolution = await services.ledger.query(
        EventFilter(entity_id=proposal.id, event_type="ProposalApplied")
    )
    assert resolution[0].to_event().changed_fields == []


async def test_unknown_diff_keys_are_ignored(services, scene):
    diff = {"director_notes": "Hold on her face", "emotional_beat": "Quiet fury"}
    proposal = await create_proposal(services, scene, make_draft(AgentRole.DIRECTOR, diff=diff))

    await services.proposals.apply(proposal.id)

    after = await services.scenes.get_scene(scene.id)
    assert after.emotional_beat == "Quiet fury"
    assert after.version == scene.version + 1


async def test_resolved_proposal_cannot_be_resolved_again(services, scene):
    proposal = await create_proposal(services, scene, make_draft())
    await services.proposals.dismiss(proposal.id)
    before = await services.scenes.get_scene(scene.id)
    events_before = await services.ledger.query(EventFilter(project_id=scene.project_id))

    with pytest.raises(ProposalNotPending):
        await services.proposals.apply(proposal.id)
    with pytest.raises(ProposalNotPending):
        await services.proposals.dismiss(proposal.id)

    assert (await services.proposals.get(proposal.id)).status is ProposalStatus.DISMISSED
    assert await services.scenes.get_scene(scene.id) == before
    assert await services.ledger.query(EventFilter(project_id=scene.project_id)) == events_before


async def test_dismiss_does_not_touch_the_scene(services, scene):
    proposal = await create_proposal(services, scene, make_draft())

    dismissed = await services.proposals.dismiss(proposal.id)

    after = await services.scenes.get_scene(scene.id)
    assert dismissed.status is ProposalStatus.DISMISSED
    assert after.version == scene.version
    assert after.script == scene.script


async def test_malformed_diff_is_rejected_and_proposal_stays_pending(services, scene):
    proposal = await create_proposal(
        services, scene, make_draft(diff={"character_names": "Mara and Jon"})
    )

    with pytest.raises(MalformedDiff) as excinfo:
        await services.proposals.apply(proposal.id)

    assert excinfo.value.error_code == "INVALID_DIFF_FORMAT"
    assert (await services.proposals.get(proposal.id)).status is ProposalStatus.PENDING
    assert not await services.lock.is_locked(scene.id)


async def test_apply_while_pipeline_holds_the_lock_fails(services, scene):
    proposal = await create_proposal(services, scene, make_draft())
    await services.lock.acquire(scene.id, "pipeline:job-1", ttl=300)

    with pytest.raises(ConcurrentModification):
        await services.proposals.apply(proposal.id)

    assert (await services.proposals.get(proposal.id)).status is ProposalStatus.PENDING


async def test_apply_on_scene_in_review_fails(services, scene):
    proposal = await create_proposal(services, scene, make_draft())
    await services.scenes.submit_for_review(scene.id)

    with pytest.raises(SceneNotEditable):
        await services.proposals.apply(proposal.id)


async def test_simultaneous_applies_on_one_scene_let_exactly_one_win(
    services, scene, monkeypatch
):
    first = await create_proposal(services, scene, make_draft(diff={"script": "A"}))
    second = await create_proposal(
        services, scene, make_draft(AgentRole.EDITOR, diff={"script": "B"})
    )
    entered = asyncio.Event()
    gate = asyncio.Event()
    original = ProposalStore._resolve_locked

    async def gated(self, *args, **kwargs):
        entered.set()
        await gate.wait()
        return await original(self, *args, **kwargs)

    monkeypatch.setattr(ProposalStore, "_resolve_locked", gated)

    winner = asyncio.create_task(services.proposals.apply(first.id))
    await entered.wait()
    with pytest.raises(ConcurrentModification):
        await services.proposals.apply(second.id)
    gate.set()
    applied = await winner

    after = await services.scenes.get_scene(scene.id)
    assert applied.status is ProposalStatus.APPLIED
    assert (await services.proposals.get(second.id)).status is ProposalStatus.PENDING
    assert after.script == "A"
    assert after.version == scene.version + 1


async def test_list_queries(services, scene):
    job_id = uuid4()
    kept = await create_proposal(services, scene, make_draft(), job_id=job_id)
    other = await create_proposal(services, scene, make_draft(AgentRole.EDITOR))
    await services.proposals.dismiss(other.id)

    pending = await services.proposals.list_for_scene(scene.id, ProposalStatus.PENDING)
    everything = await services.proposals.list_for_scene(scene.id)

    assert [p.id for p in pending] == [kept.id]
    assert {p.id for p in everything} == {kept.id, other.id}
    assert [p.id for p in await services.proposals.list_for_job(job_id)] == [kept.id]
    assert [p.role for p in await services.proposals.list_for_job(job_id)] == [AgentRole.WRITER]
