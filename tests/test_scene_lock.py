from __future__ import annotations

import asyncio
from datetime import timedelta
from uuid import uuid4

import pytest

from vidflow.core.errors import ConcurrentModification, NotLockHolder, SceneNotFound
from vidflow.models import EventFilter


async def test_second_acquire_on_live_lock_is_refused(services, scene):
    lease = await services.lock.acquire(scene.id, "pipeline:a", ttl=60)
    assert lease.holder == "pipeline:a"

    with pytest.raises(ConcurrentModification) as excinfo:
        await services.lock.acquire(scene.id, "editor:bob", ttl=60)
    assert excinfo.value.error_code == "CONCURRENT_MODIFICATION"
    assert "pipeline:a" in excinfo.value.message
    assert await services.lock.is_locked(scene.id)


async def test_concurrent_acquires_have_exactly_one_winner(services, scene):
    results = await asyncio.gather(
        *(services.lock.acquire(scene.id, f"holder:{i}", ttl=60) for i in range(5)),
        return_exceptions=True,
    )
    winners = [r for r in results if not isinstance(r, BaseException)]
    losers = [r for r in results if isinstance(r, ConcurrentModification)]
    assert len(winners) == 1
    assert len(losers) == 4


async def test_expired_lock_can_be_reclaimed_by_anyone(services, scene, clock):
    await services.lock.acquire(scene.id, "pipeline:crashed", ttl=60)
    clock.advance(61)

    assert not await services.lock.is_locked(scene.id)
    lease = await services.lock.acquire(scene.id, "editor:alice", ttl=30)
    current = await services.scenes.get_scene(scene.id)
    assert lease.holder == "editor:alice"
    assert current.locked_by == "editor:alice"


async def test_lock_at_exact_expiry_is_free(services, scene, clock):
    await services.lock.acquire(scene.id, "a", ttl=10)
    clock.advance(10)
    await services.lock.acquire(scene.id, "b", ttl=10)


async def test_release_by_other_holder_on_live_lock_raises(services, scene):
    await services.lock.acquire(scene.id, "pipeline:a", ttl=60)
    with pytest.raises(NotLockHolder):
        await services.lock.release(scene.id, "pipeline:b")
    assert await services.lock.is_locked(scene.id)


async def test_release_of_expired_or_missing_lock_is_a_noop(services, scene, clock):
    await services.lock.acquire(scene.id, "pipeline:a", ttl=5)
    clock.advance(6)
    await services.lock.release(scene.id, "pipeline:b")
    await services.lock.release(uuid4(), "pipeline:b")


async def test_refresh_extends_only_for_current_holder(services, scene, clock):
    await services.lock.acquire(scene.id, "pipeline:a", ttl=10)
    clock.advance(8)
    lease = await services.lock.refresh(scene.id, "pipeline:a", ttl=10)
    assert lease.locked_until == clock() + timedelta(seconds=10)
    clock.advance(8)
    assert await services.lock.is_locked(scene.id)

    clock.advance(5)
    await services.lock.acquire(scene.id, "pipeline:b", ttl=10)
    with pytest.raises(ConcurrentModification):
        await services.lock.refresh(scene.id, "pipeline:a", ttl=10)


async def test_lock_operations_do_not_touch_version_or_ledger(services, scene):
    before = await services.ledger.query(EventFilter(entity_id=scene.id))
    await services.lock.acquire(scene.id, "pipeline:a")
    await services.lock.release(scene.id, "pipeline:a")

    after = await services.scenes.get_scene(scene.id)
    assert after.version == scene.version
    assert after.locked_by is None and after.locked_until is None
    assert await services.ledger.query(EventFilter(entity_id=scene.id)) == before


async def test_missing_scene(services):
    with pytest.raises(SceneNotFound):
        await services.lock.acquire(uuid4(), "pipeline:a")
    with pytest.raises(SceneNotFound):
        await services.lock.is_locked(uuid4())


async def test_hold_releases_on_error(services, scene):
    with pytest.raises(RuntimeError):
        async with services.lock.hold(scene.id, "editor:alice", ttl=30):
            assert await services.lock.is_locked(scene.id)
            raise RuntimeError("boom")
    assert not await services.lock.is_locked(scene.id)


async def test_stale_release_cannot_clear_a_newer_lock_of_the_same_actor(services, scene, clock):
    stale, fresh = f"editor:alice:{uuid4().hex}", f"editor:alice:{uuid4().hex}"
    await services.lock.acquire(scene.id, stale, ttl=10)
    clock.advance(11)
    await services.lock.acquire(scene.id, fresh, ttl=30)

    with pytest.raises(NotLockHolder):
        await services.lock.release(scene.id, stale)

    assert (await services.scenes.get_scene(scene.id)).locked_by == fresh
    assert await services.lock.is_locked(scene.id)
