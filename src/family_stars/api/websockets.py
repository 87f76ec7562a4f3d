"""WebSocket endpoint for realtime change notices."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from ..events.websocket_manager import websocket_manager
from ..utils.logging_config import get_logger

logger = get_logger('websocket')

router = APIRouter(prefix="/v1/ws", tags=["websockets"])


@router.websocket("")
async def websocket_endpoint(
    websocket: WebSocket,
    group_id: UUID = Query(..., description="Group whose changes to receive"),
    user_id: Optional[UUID] = Query(None, description="Connecting member"),
):
    """
    Realtime change notices for a group.

    Messages carry entity keys only ({"type": "realtime_change", "data":
    {"table", "operation", "group_id", "user_id", "row_id"}}); clients
    re-fetch on receipt. Send "ping" to receive "pong".
    """
    await websocket_manager.connect(websocket, group_id, user_id)
    try:
        while True:
            message = await websocket.receive_text()
            if message == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        logger.info(f"WebSocket client left group {group_id}")
    finally:
        websocket_manager.disconnect(websocket, group_id)
