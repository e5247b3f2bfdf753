"""Chat router providing WebSocket and HTTP endpoints.

This module provides:
    - WebSocket /ws/chat: Real-time room chat
    - GET /chat/rooms: Room directory
    - GET /chat/{room_id}/history: Paginated message history

The WebSocket protocol carries JSON frames of the form
``{"type": <event>, ...payload}`` in both directions. See
``chatrelay.chat.schemas`` for the event names and payloads.

A token may be passed as the ``token`` query parameter or as an
``Authorization: Bearer`` header. A missing or invalid token does not
reject the connection; the session then acts on client-declared identity.
"""
import json
import logging
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from chatrelay.auth.service import TokenVerifier
from chatrelay.config import get_config

from .connection import Connection
from .coordinator import coordinator

logger = logging.getLogger(__name__)

router = APIRouter()


def _bearer_token(websocket: WebSocket) -> Optional[str]:
    header = websocket.headers.get("authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return None


@router.get("/chat/rooms")
async def list_rooms() -> JSONResponse:
    """Rooms with people present or with stored history.

    Returns:
        JSON with a rooms array of ``{name, userCount, hasHistory}``.
    """
    rooms = await coordinator.list_rooms()
    return JSONResponse({"rooms": [r.model_dump() for r in rooms]})


@router.get("/chat/{room_id}/history")
async def get_message_history(
    room_id: str,
    before: Optional[float] = Query(None, description="createdAt cursor (get messages before this time)"),
    limit: Optional[int] = Query(None, ge=1, description="Number of messages to return"),
) -> JSONResponse:
    """Get paginated message history for a room.

    Clients fetch older messages by passing the ``before`` createdAt of the
    oldest message they currently have.

    Args:
        room_id: The room ID.
        before: Exclusive createdAt cursor. Omit for the most recent messages.
        limit: Page size, capped at ``history.max_page_size``; defaults to
            the scrollback page size.

    Returns:
        JSON with roomId, messages (oldest first) and hasMore.

    Example:
        GET /chat/general/history?limit=50
        GET /chat/general/history?before=1707321600.123&limit=50
    """
    history = get_config().history
    limit = min(limit or history.scrollback_page_size, history.max_page_size)
    page = await coordinator.history_page(room_id, before, limit)
    return JSONResponse({
        "roomId": room_id,
        "messages": page.to_wire(),
        "hasMore": page.has_more,
    })


@router.websocket("/ws/chat")
async def websocket_chat_endpoint(
    websocket: WebSocket,
    token: Optional[str] = Query(None, description="Optional bearer token"),
) -> None:
    """WebSocket endpoint for one client session.

    Protocol Flow:
        1. Client connects (optionally with a token).
        2. Client sends {type: "user_connected", userId, username}
           → all clients receive {type: "user_status_changed", status: "online"}
        3. Client sends {type: "join_room", roomId}
           → room receives user_joined and room_users_updated
           → client receives room_history
        4. Client sends {type: "send_message", roomId, content}
           → room receives new_message (sender included)
        5. Client sends {type: "load_more_messages", roomId, before}
           → client receives more_messages
        6. On disconnect → rooms receive user_left / room_users_updated,
           all clients receive user_status_changed (offline)
    """
    principal = TokenVerifier.from_config().verify(token or _bearer_token(websocket))

    await websocket.accept()
    connection = Connection(websocket, principal=principal)
    coordinator.connect(connection)

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            raw = message.get("text")
            if raw is None:
                logger.warning(f"[WS] Ignoring binary frame from {connection!r}")
                continue
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning(f"[WS] Ignoring non-JSON frame from {connection!r}")
                continue
            if not isinstance(data, dict):
                logger.warning(f"[WS] Ignoring non-object frame from {connection!r}")
                continue
            logger.debug("[WS] %r received: type=%s", connection, data.get("type", "?"))
            await coordinator.dispatch(connection, data)
    except WebSocketDisconnect:
        logger.info(f"[WS] {connection!r} disconnected")
    finally:
        await coordinator.disconnect(connection)
