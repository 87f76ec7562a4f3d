"""WebSocket connection manager for realtime change notices."""

import json
import time
from dataclasses import dataclass, field
from typing import Dict, Optional
from uuid import UUID

from fastapi import WebSocket

from .schemas import RealtimeChange, RealtimeChangeMessage, WebSocketMessage
from ..utils.logging_config import get_logger

logger = get_logger('websocket')


@dataclass
class WebSocketConnection:
    """WebSocket connection with metadata."""

    websocket: WebSocket
    group_id: UUID
    user_id: Optional[UUID] = None
    connected_at: float = field(default_factory=time.time)


class WebSocketManager:
    """Tracks connections per group and fans out change notices."""

    def __init__(self):
        # Dict[group_id, Dict[WebSocket, WebSocketConnection]]
        self.active_connections: Dict[UUID, Dict[WebSocket, WebSocketConnection]] = {}

    async def connect(self, websocket: WebSocket, group_id: UUID, user_id: Optional[UUID] = None):
        """Accept a WebSocket connection and add it to the group."""
        await websocket.accept()

        self.active_connections.setdefault(group_id, {})[websocket] = WebSocketConnection(
            websocket=websocket, group_id=group_id, user_id=user_id
        )

        logger.info(
            f"WebSocket connected to group {group_id}. Total connections: {len(self.active_connections[group_id])}"
        )

        await websocket.send_text(
            json.dumps(
                {
                    "type": "connection_established",
                    "data": {"group_id": str(group_id), "server_time": time.time()},
                }
            )
        )

    def disconnect(self, websocket: WebSocket, group_id: UUID):
        """Remove a WebSocket connection from the group."""
        connections = self.active_connections.get(group_id)
        if not connections or websocket not in connections:
            return

        del connections[websocket]
        if not connections:
            del self.active_connections[group_id]

        logger.info(f"WebSocket disconnected from group {group_id}")

    async def broadcast_to_group(self, group_id: UUID, message: WebSocketMessage) -> int:
        """Broadcast a message to all connections in a group."""
        if group_id not in self.active_connections:
            return 0

        # Avoid mutation during iteration
        connections = dict(self.active_connections[group_id])
        message_json = json.dumps(message.model_dump(), default=str)

        failed_connections = []
        sent = 0
        for websocket in connections:
            try:
                await websocket.send_text(message_json)
                sent += 1
            except Exception as e:
                logger.warning(f"Failed to send message to WebSocket in group {group_id}: {e}")
                failed_connections.append(websocket)

        for websocket in failed_connections:
            self.disconnect(websocket, group_id)

        return sent

    async def forward_change(self, change: RealtimeChange) -> None:
        """Realtime hub callback: push the change notice to the group's sockets."""
        await self.broadcast_to_group(change.group_id, RealtimeChangeMessage(change))

    def get_connection_count(self, group_id: Optional[UUID] = None) -> int:
        if group_id is not None:
            return len(self.active_connections.get(group_id, {}))
        return sum(len(c) for c in self.active_connections.values())


# Global WebSocket manager instance
websocket_manager = WebSocketManager()
