"""
WebSocket handler for live audio capture.

The capturing client streams encoded audio frames here, either as binary
frames or as base64 JSON messages, and receives capture status and
permission prompts back.
"""

import asyncio
import base64
import binascii
import json
from typing import Any

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from live_insight.core.sessions import LiveSession, SessionRegistry
from live_insight.models.schemas import WSAudioMessage, WSControlMessage, WSStatusMessage

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["WebSocket"])


class ConnectionManager:
    """Tracks the capturing client connected to each session."""

    def __init__(self) -> None:
        self.active_connections: dict[str, WebSocket] = {}

    async def connect(self, session_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        self.active_connections[session_id] = websocket
        logger.info("websocket_connected", session_id=session_id, total=len(self.active_connections))

    def disconnect(self, session_id: str, websocket: WebSocket) -> None:
        if self.active_connections.get(session_id) is websocket:
            del self.active_connections[session_id]
        logger.info("websocket_disconnected", session_id=session_id, total=len(self.active_connections))

    async def send_json(self, websocket: WebSocket, data: dict[str, Any]) -> bool:
        """Send JSON data to a connection. Returns True if successful."""
        try:
            await websocket.send_json(data)
            return True
        except Exception as e:
            logger.error("websocket_send_failed", error=str(e), data_type=data.get("type"))
            return False


manager = ConnectionManager()


def get_registry(websocket: WebSocket) -> SessionRegistry:
    """Get the session registry from websocket app state."""
    if not hasattr(websocket.app.state, "registry"):
        raise RuntimeError("Session registry not initialized")
    return websocket.app.state.registry


def _status(session: LiveSession, type_: str = "status", **kwargs: Any) -> dict[str, Any]:
    return WSStatusMessage(
        type=type_,
        state=session.pipeline.state,
        forwarded_count=session.pipeline.forwarded_count,
        **kwargs,
    ).model_dump(mode="json")


async def _pump_outbox(session: LiveSession, websocket: WebSocket) -> None:
    """Forward queued session notifications to the client."""
    while True:
        message: WSStatusMessage = await session.outbox.get()
        if message.state is None:
            message = message.model_copy(update={"state": session.pipeline.state})
        if not await manager.send_json(websocket, message.model_dump(mode="json")):
            return


async def _handle_control(session: LiveSession, websocket: WebSocket, data: dict[str, Any]) -> None:
    try:
        msg = WSControlMessage(**data)
    except ValidationError as e:
        await manager.send_json(websocket, _status(session, "error", error=f"Invalid message: {e}"))
        return

    if msg.type == "ping":
        await manager.send_json(websocket, _status(session, "pong"))
    elif msg.type == "mic_check":
        session.microphone.record(bool(msg.ok))
        await manager.send_json(websocket, _status(session, data={"mic_check": bool(msg.ok)}))
    elif msg.type == "device_error":
        session.device.fail(msg.detail or "Audio device error")
        session.pipeline.fail(msg.detail or "Audio device error")
        await manager.send_json(websocket, _status(session, "error", error=msg.detail))
    elif msg.type == "stop":
        session.pipeline.stop()
        await manager.send_json(websocket, _status(session))


@router.websocket("/ws/sessions/{session_id}/audio")
async def audio_capture_endpoint(websocket: WebSocket, session_id: str) -> None:
    """
    WebSocket endpoint for live audio capture.

    Protocol:
    - Client sends binary frames, or {"type": "audio", "data": "<base64>", "mime_type": "..."}
    - Client sends {"type": "mic_check", "ok": true}, {"type": "device_error", "detail": "..."},
      {"type": "stop"} or {"type": "ping"}
    - Server sends {"type": "status" | "error" | "pong", "state": "...", ...}

    Frames are only consumed while capture has been started over REST.
    """
    try:
        session = get_registry(websocket).get_or_create(session_id)
    except RuntimeError as e:
        await websocket.accept()
        await websocket.send_json({"type": "error", "error": str(e)})
        await websocket.close()
        return

    await manager.connect(session_id, websocket)
    session.device.client_connected()
    pump = asyncio.create_task(_pump_outbox(session, websocket))

    try:
        if not await manager.send_json(websocket, _status(session)):
            return

        while True:
            message = await websocket.receive()
            if message.get("type") == "websocket.disconnect":
                break

            frame = message.get("bytes")
            if frame is not None:
                # Looked up per frame: a pipeline reset swaps the device
                session.device.push(frame)
                continue

            text = message.get("text")
            if text is None:
                continue
            try:
                data = json.loads(text)
            except json.JSONDecodeError:
                await manager.send_json(websocket, _status(session, "error", error="Invalid JSON"))
                continue
            if not isinstance(data, dict):
                await manager.send_json(websocket, _status(session, "error", error="Expected an object"))
                continue

            if data.get("type") == "audio":
                try:
                    msg = WSAudioMessage(**data)
                    audio = base64.b64decode(msg.data, validate=True)
                except (ValidationError, binascii.Error) as e:
                    await manager.send_json(
                        websocket, _status(session, "error", error=f"Invalid audio message: {e}")
                    )
                    continue
                if not session.device.is_open:
                    session.device.client_connected(msg.mime_type)
                session.device.push(audio)
            else:
                await _handle_control(session, websocket, data)

    except WebSocketDisconnect:
        logger.info("audio_websocket_disconnected", session_id=session_id)

    finally:
        pump.cancel()
        session.device.client_disconnected()
        manager.disconnect(session_id, websocket)
