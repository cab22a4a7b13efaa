from __future__ import annotations

from uuid import uuid4

from vidflow.core.notifications import NotificationHub, notify_scene, project_topic, scene_topic


class _FakeWebSocket:
    def __init__(self, broken: bool = False) -> None:
        self.broken = broken
        self.accepted = False
        self.sent: list[dict] = []

    async def accept(self) -> None:
        self.accepted = True

    async def send_json(self, message) -> None:
        if self.broken:
            raise RuntimeError("socket closed")
        self.sent.append(message)


async def test_hub_fans_out_per_topic_and_drops_broken_clients():
    hub = NotificationHub()
    good = _FakeWebSocket()
    broken = _FakeWebSocket(broken=True)
    other = _FakeWebSocket()
    await hub.connect(good, ["scene-1"])
    await hub.connect(broken, ["scene-1"])
    await hub.connect(other, ["scene-2"])

    await hub.publish("scene-1", "AgentStarted", {"role": "writer"})

    assert good.accepted
    assert good.sent == [
        {"topic": "scene-1", "event": "AgentStarted", "payload": {"role": "writer"}}
    ]
    assert other.sent == []
    assert hub.subscriber_count("scene-1") == 1


async def test_notify_scene_publishes_on_project_and_scene_topics():
    hub = NotificationHub()
    project_id, scene_id = uuid4(), uuid4()
    watcher = _FakeWebSocket()
    await hub.connect(watcher, [project_topic(project_id), scene_topic(scene_id)])

    await notify_scene(hub, project_id, scene_id, "SceneUpdated", {"version": 2})

    assert [m["topic"] for m in watcher.sent] == [
        project_topic(project_id),
        scene_topic(scene_id),
    ]
    assert watcher.sent[0]["payload"]["scene_id"] == str(scene_id)


async def test_failing_notifier_never_breaks_the_caller():
    class _Exploding:
        async def publish(self, topic, event, payload):
            raise ConnectionError("hub down")

    await notify_scene(_Exploding(), uuid4(), uuid4(), "SceneUpdated", {})
    await notify_scene(None, uuid4(), uuid4(), "SceneUpdated", {})
