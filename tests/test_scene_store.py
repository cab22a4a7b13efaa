from __future__ import annotations

from uuid import uuid4

import pytest
from conftest import create_proposal, make_draft
from pydantic import ValidationError

from vidflow.core.errors import (
    ConcurrentModification,
    DuplicateCharacterName,
    InvalidStatusTransition,
    ProjectNotFound,
    SceneNotEditable,
    SceneNotFound,
)
from vidflow.core.notifications import project_topic, scene_topic
from vidflow.models import EventFilter, SceneChanges, SceneStatus


async def test_scenes_are_numbered_in_order(services, project, scene):
    second = await services.scenes.add_scene(project.id, "Rooftop")

    assert (scene.number, second.number) == (1, 2)
    assert scene.version == 1
    assert scene.status is SceneStatus.DRAFT
    assert [s.id for s in await services.scenes.list_scenes(project.id)] == [scene.id, second.id]
    with pytest.raises(ProjectNotFound):
        await services.scenes.add_scene(uuid4(), "Orphan")


async def test_update_bumps_version_once_and_records_changed_fields(services, scene, notifier):
    updated = await services.scenes.update_scene(
        scene.id, {"title": "Kitchen, later", "timeOfDay": "Dawn"}, actor="alice"
    )

    assert updated.version == scene.version + 1
    assert (updated.title, updated.time_of_day) == ("Kitchen, later", "Dawn")
    assert updated.locked_by is None
    entries = await services.ledger.query(
        EventFilter(entity_id=scene.id, event_type="SceneUpdated")
    )
    event = entries[0].to_event()
    assert event.changed_fields == ["title", "time_of_day"]
    assert event.new_version == updated.version
    assert entries[0].emitted_by == "alice"
    assert "SceneUpdated" in notifier.events(scene_topic(scene.id))
    assert "SceneUpdated" in notifier.events(project_topic(scene.project_id))


async def test_empty_update_changes_nothing(services, scene):
    same = await services.scenes.update_scene(scene.id, SceneChanges())

    assert same.version == scene.version
    assert await services.ledger.query(
        EventFilter(entity_id=scene.id, event_type="SceneUpdated")
    ) == []


async def test_character_names_must_be_unique(services, project, scene):
    with pytest.raises(DuplicateCharacterName):
        await services.scenes.update_scene(scene.id, {"character_names": ["Mara", "mara "]})
    with pytest.raises(DuplicateCharacterName):
        await services.scenes.add_scene(project.id, "Twins", character_names=["Ann", "ANN"])

    assert (await services.scenes.get_scene(scene.id)).version == scene.version


def test_blank_title_is_rejected():
    with pytest.raises(ValidationError):
        SceneChanges(title="   ")


async def test_review_cycle(services, scene):
    in_review = await services.scenes.submit_for_review(scene.id)
    assert (in_review.status, in_review.version) == (SceneStatus.REVIEW, 2)

    with pytest.raises(SceneNotEditable):
        await services.scenes.update_scene(scene.id, {"script": "New"})
    with pytest.raises(InvalidStatusTransition):
        await services.scenes.submit_for_review(scene.id)

    back = await services.scenes.request_revision(
        scene.id, "Needs a stronger ending", requested_by="kim"
    )
    assert (back.status, back.version) == (SceneStatus.DRAFT, 3)

    with pytest.raises(InvalidStatusTransition):
        await services.scenes.approve(scene.id, approved_by="kim")
    await services.scenes.submit_for_review(scene.id)
    approved = await services.scenes.approve(scene.id, approved_by="kim")
    assert (approved.status, approved.version) == (SceneStatus.APPROVED, 5)

    types = [e.event_type for e in await services.ledger.query(EventFilter(entity_id=scene.id))]
    assert types == [
        "SceneCreated",
        "SceneSubmittedForReview",
        "SceneRevisionRequested",
        "SceneSubmittedForReview",
        "SceneApproved",
    ]
    revision = (
        await services.ledger.query(
            EventFilter(entity_id=scene.id, event_type="SceneRevisionRequested")
        )
    )[0].to_event()
    assert (revision.feedback, revision.requested_by) == ("Needs a stronger ending", "kim")


async def test_manual_edit_is_refused_while_pipeline_holds_the_lock(services, scene):
    await services.lock.acquire(scene.id, "pipeline:job-7")

    with pytest.raises(ConcurrentModification):
        await services.scenes.update_scene(scene.id, {"script": "Sneaky edit"})

    current = await services.scenes.get_scene(scene.id)
    assert current.script == scene.script
    assert current.locked_by == "pipeline:job-7"


async def test_each_edit_takes_its_own_lock_holder(services, scene, monkeypatch):
    holders: list[str] = []
    acquire = services.lock.acquire

    async def recording_acquire(scene_id, holder, ttl=None):
        holders.append(holder)
        return await acquire(scene_id, holder, ttl)

    monkeypatch.setattr(services.lock, "acquire", recording_acquire)
    await services.scenes.update_scene(scene.id, {"script": "One"}, actor="alice")
    await services.scenes.update_scene(scene.id, {"script": "Two"}, actor="alice")

    assert len(set(holders)) == 2
    assert all(holder.startswith("editor:alice:") for holder in holders)


async def test_delete_project_cascades_but_keeps_the_ledger(services, project, scene):
    await create_proposal(services, scene, make_draft())

    await services.scenes.delete_project(project.id, emitted_by="kim")

    with pytest.raises(ProjectNotFound):
        await services.scenes.get_project(project.id)
    with pytest.raises(SceneNotFound):
        await services.scenes.get_scene(scene.id)
    assert await services.proposals.list_for_scene(scene.id) == []
    deleted = await services.ledger.query(
        EventFilter(project_id=project.id, event_type="ProjectDeleted")
    )
    assert deleted[0].to_event().scene_count == 1
    assert deleted[0].emitted_by == "kim"


async def test_delete_project_refuses_while_a_scene_is_locked(services, project, scene, clock):
    await services.lock.acquire(scene.id, "pipeline:job-1", ttl=60)

    with pytest.raises(ConcurrentModification):
        await services.scenes.delete_project(project.id)

    clock.advance(61)
    await services.scenes.delete_project(project.id)
    with pytest.raises(ProjectNotFound):
        await services.scenes.delete_project(project.id)
