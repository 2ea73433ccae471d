"""WebSocket router -- ordered build events for the connected user."""

import json
import logging

import jwt as pyjwt
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from appsynth.auth import decode_token
from appsynth.ws_manager import MAX_MESSAGE_SIZE, manager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["websocket"])


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """Stream build events to the authenticated user.

    Auth via query param: ``/ws?token=<jwt>``.  Every server message is
    ``{"type": <event type>, "payload": {..., "project_id": ...}}`` in
    the order the build emitted it.  The only client message understood
    is ``{"type": "ping"}``.
    """
    token = websocket.query_params.get("token")
    if not token:
        await websocket.close(code=4001, reason="Missing token")
        return
    try:
        user_id = decode_token(token).get("sub")
    except pyjwt.PyJWTError:
        await websocket.close(code=4001, reason="Invalid token")
        return
    if not user_id:
        await websocket.close(code=4001, reason="Invalid token payload")
        return

    await websocket.accept()
    await manager.connect(user_id, websocket)
    logger.info("WS open  user=%s conns=%d", user_id[:8], manager.connection_count(user_id))

    try:
        while True:
            data = await websocket.receive_text()
            if len(data) > MAX_MESSAGE_SIZE:
                await websocket.close(code=1009, reason="Message too large")
                return
            try:
                message = json.loads(data)
            except ValueError:
                continue
            if isinstance(message, dict) and message.get("type") == "ping":
                await websocket.send_json({"type": "pong"})
    except WebSocketDisconnect:
        logger.info("WS close user=%s (client disconnect)", user_id[:8])
    except Exception:
        logger.exception("WS error user=%s", user_id[:8])
    finally:
        await manager.disconnect(user_id, websocket)
