# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""WebSocket fan-out of discussion events.

Clients connect once and join one room per discussion they have opened.
The manager subscribes to the event bus and forwards every discussion
event as a JSON frame to the sockets in the discussion's room:

    {"event": "discussion:post_created",
     "payload": {"discussion_id": "...", "post_id": "..."}}

Frames carry identifiers only; clients re-read state through the API.
Sockets that fail to receive a frame are dropped.
"""

import logging
from typing import Any

from fastapi import WebSocket

from src.infrastructure.events import EventBus, EventData, EventPatterns

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Tracks WebSocket connections and discussion rooms.

    Attributes:
        active_connections: Connected sockets and their identity.
        rooms: Discussion id to the sockets that joined it.
    """

    def __init__(self) -> None:
        self.active_connections: dict[WebSocket, str] = {}
        self.rooms: dict[str, set[WebSocket]] = {}
        self._bus: EventBus | None = None

    async def connect(self, websocket: WebSocket, identity: str) -> None:
        """Accept a socket and register it for an identity."""
        await websocket.accept()
        self.active_connections[websocket] = identity
        logger.info("WebSocket connected: identity=%s", identity)
        await self.send_personal_message(
            {"type": "connection_status", "status": "connected"},
            websocket,
        )

    def disconnect(self, websocket: WebSocket) -> None:
        """Forget a socket and remove it from every room."""
        identity = self.active_connections.pop(websocket, None)
        for room_id in list(self.rooms):
            members = self.rooms[room_id]
            members.discard(websocket)
            if not members:
                del self.rooms[room_id]
        if identity is not None:
            logger.info("WebSocket disconnected: identity=%s", identity)

    async def join(self, websocket: WebSocket, discussion_id: str) -> None:
        """Add a connected socket to a discussion room.

        Access to the discussion must be checked by the caller.
        """
        if websocket not in self.active_connections:
            logger.warning("Socket not connected, cannot join room %s", discussion_id)
            return

        self.rooms.setdefault(discussion_id, set()).add(websocket)
        await self.send_personal_message(
            {"type": "room_joined", "discussion_id": discussion_id},
            websocket,
        )

    def leave(self, websocket: WebSocket, discussion_id: str) -> None:
        """Remove a socket from a discussion room."""
        members = self.rooms.get(discussion_id)
        if members is None:
            return
        members.discard(websocket)
        if not members:
            del self.rooms[discussion_id]

    async def send_personal_message(self, message: dict[str, Any], websocket: WebSocket) -> None:
        """Send a frame to one socket."""
        try:
            await websocket.send_json(message)
        except Exception as e:
            logger.warning("Error sending frame: %s", str(e))
            self.disconnect(websocket)

    async def broadcast_to_room(self, message: dict[str, Any], discussion_id: str) -> int:
        """Send a frame to every socket in a discussion room.

        Returns:
            Number of sockets the frame was delivered to.
        """
        members = list(self.rooms.get(discussion_id, ()))
        if not members:
            return 0

        delivered = 0
        dropped: list[WebSocket] = []
        for websocket in members:
            try:
                await websocket.send_json(message)
                delivered += 1
            except Exception as e:
                logger.warning(
                    "Error broadcasting to room %s: %s",
                    discussion_id,
                    str(e),
                )
                dropped.append(websocket)

        for websocket in dropped:
            self.disconnect(websocket)

        logger.debug("Broadcast to room %s: delivered=%d", discussion_id, delivered)
        return delivered

    async def handle_event(self, event: EventData) -> None:
        """Event bus handler forwarding discussion events to their room."""
        discussion_id = event.payload.get("discussion_id")
        if not discussion_id:
            return
        await self.broadcast_to_room(
            {"event": event.event_type, "payload": event.payload},
            discussion_id,
        )

    def attach(self, bus: EventBus) -> None:
        """Subscribe to every discussion event on a bus."""
        if self._bus is not None:
            return
        bus.subscribe(EventPatterns.ALL_DISCUSSION, self.handle_event)
        self._bus = bus

    def detach(self) -> None:
        """Unsubscribe from the bus and drop every connection."""
        if self._bus is not None:
            self._bus.unsubscribe(EventPatterns.ALL_DISCUSSION, self.handle_event)
            self._bus = None
        self.active_connections.clear()
        self.rooms.clear()

    def get_room_size(self, discussion_id: str) -> int:
        return len(self.rooms.get(discussion_id, ()))
