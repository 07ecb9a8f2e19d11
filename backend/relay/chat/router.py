"""WebSocket endpoint for the room relay.

This module provides:
    - WebSocket /ws: real-time room relay

Every frame is a JSON text frame ``{"event": ..., "data": ...}``. The handler
reads one frame at a time and awaits its dispatch before reading the next,
so a connection's events are processed in arrival order, and the disconnect
transition runs only after the last one finished.

Protocol Flow:
    1. Client connects -> nothing is sent until it joins
    2. Client sends: {event: "join", data: {room, nick}}
       -> joiner receives: {event: "history", data: [...]} (if any)
       -> others receive: {event: "system", data: "<nick> joined"}
       -> everyone receives: {event: "presence", data: {count}}
    3. Client sends: {event: "msg", data: {text, clientId?}}
       -> sender receives: {event: "msg:ack", data: {...message, clientId}}
       -> others receive: {event: "msg", data: {...message}}
    4. On disconnect -> others receive "<nick> left" and presence
"""
import json
import logging
from typing import Any, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from .engine import get_engine

logger = logging.getLogger(__name__)

router = APIRouter()

# Sentinel for frames that are not valid JSON text
_SKIP = object()


async def _receive_frame(websocket: WebSocket) -> Any:
    """Read the next text frame and decode it, or return ``_SKIP``.

    Raises:
        WebSocketDisconnect: When the client goes away.
    """
    message = await websocket.receive()
    if message["type"] == "websocket.disconnect":
        raise WebSocketDisconnect(message.get("code", 1000))

    raw: Optional[str] = message.get("text")
    if raw is None:
        return _SKIP
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return _SKIP


@router.websocket("/ws")
async def websocket_relay_endpoint(websocket: WebSocket) -> None:
    """WebSocket endpoint for one relay client.

    Args:
        websocket: The WebSocket connection.
    """
    engine = get_engine()
    conn = await engine.connect(websocket)
    logger.info(f"[WS] Connection accepted: {conn.id}")

    try:
        while True:
            frame = await _receive_frame(websocket)
            if frame is _SKIP:
                logger.debug(f"[WS] Skipped undecodable frame from {conn.id}")
                continue
            await engine.dispatch(conn, frame)

    except WebSocketDisconnect:
        logger.info(f"[WS] Client {conn.id} disconnected (room={conn.room})")
    except Exception as e:
        logger.exception(f"[WS] Handler for {conn.id} failed: {e}")
    finally:
        await engine.disconnect(conn)
