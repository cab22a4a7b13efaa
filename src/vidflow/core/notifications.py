# src/vidflow/core/notifications.py
"""Push notifications to connected websocket clients."""

from __future__ import annotations

from collections import defaultdict
from typing import Any, Protocol
from uuid import UUID

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder

from vidflow.core.logs import EventType, get_event_logger

event_logger = get_event_logger()


class Notifier(Protocol):
    async def publish(self, topic: str, event: str, payload: dict[str, Any]) -> None: ...


def project_topic(project_id: UUID) -> str:
    return f"project-{project_id}"


def scene_topic(scene_id: UUID) -> str:
    return f"scene-{scene_id}"


class NotificationHub:
    """Per-topic websocket fan-out.

    A client that fails to receive a message is dropped; publishing itself
    never raises because of a broken connection.
    """

    def __init__(self) -> None:
        self.active_connections: dict[str, list[WebSocket]] = defaultdict(list)

    async def connect(self, websocket: WebSocket, topics: list[str]) -> None:
        await websocket.accept()
        for topic in topics:
            self.active_connections[topic].append(websocket)

    def disconnect(self, websocket: WebSocket) -> None:
        for topic, connections in list(self.active_connections.items()):
            if websocket in connections:
                connections.remove(websocket)
            if not connections:
                del self.active_connections[topic]

    def subscriber_count(self, topic: str) -> int:
        return len(self.active_connections.get(topic, ()))

    async def publish(self, topic: str, event: str, payload: dict[str, Any]) -> None:
        """Send an event to every subscriber of ``topic``."""
        message = jsonable_encoder({"topic": topic, "event": event, "payload": payload})
        for connection in list(self.active_connections.get(topic, ())):
            try:
                await connection.send_json(message)
            except Exception as exc:
                event_logger.warning(
                    f"Error sending {event} to client on {topic}: {exc}",
                    event_type=EventType.WARNING,
                    component="notifications",
                    error_type=type(exc).__name__,
                )
                self.disconnect(connection)


async def notify_scene(
    notifier: Notifier | None,
    project_id: UUID,
    scene_id: UUID,
    event: str,
    payload: dict[str, Any],
) -> None:
    """Publish ``event`` on both the project and the scene topic.

    Delivery problems are logged and never propagate to the caller.
    """
    if notifier is None:
        return
    body = {"scene_id": scene_id, "project_id": project_id, **payload}
    for topic in (project_topic(project_id), scene_topic(scene_id)):
        try:
            await notifier.publish(topic, event, body)
        except Exception as exc:
            event_logger.warning(
                f"Notification {event} on {topic} failed: {exc}",
                component="notifications",
                scene_id=scene_id,
                error_type=type(exc).__name__,
            )


__all__ = [
    "Notifier",
    "NotificationHub",
    "notify_scene",
    "project_topic",
    "scene_topic",
]
