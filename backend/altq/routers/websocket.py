"""
Live WebSocket endpoint.

Protocol (client -> server, JSON text frames):

- ``{"type": "authenticate", "token": "<jwt>"}`` -> ``authenticated`` / ``auth_error``
- ``{"type": "ping"}`` -> ``pong``
- ``{"type": "subscribe", "salon_id": "..."}`` -> ``subscribed``
- ``{"type": "salon_view_start", "salon_id": "..."}``
- ``{"type": "salon_view_end", "salon_id": "..."}``

The server greets every connection with ``connected``. A user holds at most
one connection; authenticating a second one closes the first.
"""

import json
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from altq.auth.dependencies import load_active_user
from altq.auth.jwt import decode_access_token
from altq.services.broadcast import ClientConnection, MessageType, build_message
from altq.services.runtime import Runtime

router = APIRouter()

REPLACED_CLOSE_CODE = 1000
REPLACED_CLOSE_REASON = "New connection established"


async def _handle_message(runtime: Runtime, conn: ClientConnection, data: dict[str, Any]) -> None:
    message_type = data.get("type")
    socket = conn.socket

    if message_type == "ping":
        await socket.send_json(build_message(MessageType.PONG))

    elif message_type == "authenticate":
        user = None
        user_id = decode_access_token(str(data.get("token") or ""))
        if user_id is not None:
            async with runtime.session_maker() as db:
                user = await load_active_user(db, user_id)
        if user is None:
            await socket.send_json(build_message(MessageType.AUTH_ERROR, message="Invalid token"))
            return

        old_viewer_id = conn.viewer_id
        previous = runtime.registry.authenticate(conn, str(user_id))
        if previous is not None:
            print(f"WebSocket: replacing connection {previous.connection_id} of {user_id}", flush=True)
            await _drop_viewer(runtime, previous.viewer_id)
            try:
                await previous.socket.close(code=REPLACED_CLOSE_CODE, reason=REPLACED_CLOSE_REASON)
            except RuntimeError as e:
                # Already closed by the client
                print(f"WebSocket: closing replaced connection failed: {e}", flush=True)

        # Carry an anonymous salon view over to the user identity
        salon_id = runtime.viewers.viewing(old_viewer_id)
        if salon_id is not None and old_viewer_id != conn.viewer_id:
            runtime.viewers.leave_view(salon_id, old_viewer_id)
            count = runtime.viewers.join_view(salon_id, conn.viewer_id)
            await runtime.gateway.viewer_count(salon_id, count)

        await socket.send_json(build_message(MessageType.AUTHENTICATED, user_id=str(user_id)))
        print(f"WebSocket: {user_id} authenticated on {conn.connection_id}", flush=True)

    elif message_type == "subscribe":
        salon_id = data.get("salon_id")
        if not salon_id:
            await socket.send_json(build_message(MessageType.ERROR, message="salon_id is required"))
            return
        conn.subscriptions.add(str(salon_id))
        await socket.send_json(build_message(MessageType.SUBSCRIBED, salon_id=str(salon_id)))

    elif message_type == "salon_view_start":
        salon_id = data.get("salon_id")
        if not salon_id:
            await socket.send_json(build_message(MessageType.ERROR, message="salon_id is required"))
            return
        salon_id = str(salon_id)
        previous_salon = runtime.viewers.viewing(conn.viewer_id)
        count = runtime.viewers.join_view(salon_id, conn.viewer_id)
        if previous_salon is not None and previous_salon != salon_id:
            await runtime.gateway.viewer_count(previous_salon, runtime.viewers.viewer_count(previous_salon))
        # Viewers of a salon also receive its queue broadcasts
        conn.subscriptions.add(salon_id)
        await runtime.gateway.viewer_count(salon_id, count)

    elif message_type == "salon_view_end":
        salon_id = data.get("salon_id")
        if not salon_id:
            return
        count = runtime.viewers.leave_view(str(salon_id), conn.viewer_id)
        await runtime.gateway.viewer_count(str(salon_id), count)

    else:
        await socket.send_json(
            build_message(MessageType.ERROR, message=f"Unknown message type: {message_type}")
        )


async def _drop_viewer(runtime: Runtime, viewer_id: str) -> None:
    removed = runtime.viewers.remove_viewer(viewer_id)
    if removed is not None:
        salon_id, count = removed
        await runtime.gateway.viewer_count(salon_id, count)


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    runtime: Runtime = websocket.app.state.runtime

    await websocket.accept()
    conn = ClientConnection(socket=websocket)
    runtime.registry.connect(conn)
    await websocket.send_json(build_message(MessageType.CONNECTED, connection_id=conn.connection_id))

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                await websocket.send_json(build_message(MessageType.ERROR, message="Invalid JSON"))
                continue
            if not isinstance(data, dict):
                await websocket.send_json(build_message(MessageType.ERROR, message="Expected a JSON object"))
                continue
            await _handle_message(runtime, conn, data)
    except WebSocketDisconnect:
        pass
    finally:
        was_current = runtime.registry.disconnect(conn)
        # A replaced connection shares its viewer id with the one replacing it
        if was_current or not conn.is_authenticated:
            await _drop_viewer(runtime, conn.viewer_id)
        print(f"WebSocket: connection {conn.connection_id} closed", flush=True)
