"""
WebSocket Handler

Real-time exercise analysis via WebSocket connection.
The frontend streams camera frames in and receives a snapshot of joint
angles, form feedback and tier after every analyzed frame.
"""

import asyncio
import json
import time
import logging
from typing import Any, Callable, Optional
from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from .schemas import (
    WebSocketMessageType,
    WebSocketMessage,
    FrameMessage,
    SelectModelMessage,
    SnapshotSchema,
    StatusSchema,
)
from .schemas.messages import CameraLostMessage
from gorillamode.core.config import get_config
from gorillamode.core.domain import Frame, ModelLoadFailure
from gorillamode.core.services import (
    EstimatorRegistry,
    PipelineOrchestrator,
    decode_base64_image,
    default_registry,
)

# Configure logging
logger = logging.getLogger(__name__)

# Outgoing messages buffered per connection before new ones are dropped
OUTBOX_SIZE = 32

Enqueue = Callable[[WebSocketMessageType, dict], None]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _message(msg_type: WebSocketMessageType, data: dict) -> dict[str, Any]:
    return {"type": msg_type.value, "data": data, "timestamp": _now_ms()}


class FrameClock:
    """
    Puts every frame of a session on one timeline.

    The first frame decides the clock: client timestamps if it carries one,
    the server clock otherwise. On a client-clock session a frame without
    a timestamp is placed by adding the server time elapsed since the last
    stamped frame.
    """

    def __init__(self):
        self.use_client_clock: Optional[bool] = None
        self._anchor: Optional[tuple[int, int]] = None  # (client ms, server ms)

    def stamp(self, client_timestamp: int) -> int:
        now = _now_ms()
        if self.use_client_clock is None:
            self.use_client_clock = client_timestamp > 0
        if not self.use_client_clock:
            return now
        if client_timestamp > 0:
            self._anchor = (client_timestamp, now)
            return client_timestamp
        client_ms, server_ms = self._anchor
        return client_ms + (now - server_ms)


class ConnectionManager:
    """
    Manages WebSocket connections.

    Every connection gets its own pipeline (and so its own model
    instance, smoothing state and tier).
    """

    def __init__(self, registry: Optional[EstimatorRegistry] = None):
        self.registry = registry or default_registry(get_config().estimator)
        self.pipelines: dict[WebSocket, PipelineOrchestrator] = {}

    async def connect(self, websocket: WebSocket) -> PipelineOrchestrator:
        """Accept new WebSocket connection."""
        await websocket.accept()
        pipeline = PipelineOrchestrator(self.registry, config=get_config())
        self.pipelines[websocket] = pipeline
        logger.info(f"New WebSocket connection. Total: {len(self.pipelines)}")
        return pipeline

    async def disconnect(self, websocket: WebSocket) -> None:
        """Handle WebSocket disconnection."""
        pipeline = self.pipelines.pop(websocket, None)
        if pipeline is not None:
            await pipeline.close()
        logger.info(f"WebSocket disconnected. Remaining: {len(self.pipelines)}")


# Global connection manager
manager = ConnectionManager()


async def _sender(websocket: WebSocket, outbox: asyncio.Queue) -> None:
    """Forward queued messages to the client until a None sentinel arrives."""
    while True:
        message = await outbox.get()
        if message is None:
            return
        try:
            await websocket.send_json(message)
        except Exception as e:
            logger.error(f"Failed to send WebSocket message: {e}")
            return


async def websocket_endpoint(websocket: WebSocket) -> None:
    """
    WebSocket endpoint for a live analysis session.

    Protocol:
    1. Client connects, server replies session_started with available models
    2. Client sends start_session (optionally {"model": "..."})
    3. Client streams frames; server pushes a snapshot per analyzed frame
    4. Client may select_model / stop_session / reset_session at any time
    5. Client sends end_session or disconnects

    Message format (client -> server):
    {
        "type": "frame",
        "data": {
            "image_base64": "...",
            "frame_number": 0
        },
        "timestamp": 1704067200000
    }

    Message format (server -> client):
    {
        "type": "snapshot",
        "data": {
            "angles": [{"label": "Left Knee", "value": 165.2, ...}],
            "feedback": [{"type": "warn", "text": "Keep knees tracking over toes.", ...}],
            "tier": {"tier": "Silver", "score": 71.5, ...},
            "model_id": "BlazePose",
            "frame_timestamp": 1704067200000,
            "cycle": 42
        },
        "timestamp": 1704067200025
    }
    """
    pipeline = await manager.connect(websocket)
    clock = FrameClock()
    outbox: asyncio.Queue = asyncio.Queue(maxsize=OUTBOX_SIZE)

    def enqueue(msg_type: WebSocketMessageType, data: dict) -> None:
        try:
            outbox.put_nowait(_message(msg_type, data))
        except asyncio.QueueFull:
            logger.debug(f"Client too slow, dropped {msg_type.value} message")

    pipeline.add_snapshot_listener(
        lambda snapshot: enqueue(
            WebSocketMessageType.SNAPSHOT,
            SnapshotSchema.from_domain(snapshot).model_dump(mode="json"),
        )
    )
    pipeline.add_status_listener(
        lambda event: enqueue(
            WebSocketMessageType.STATUS,
            StatusSchema.from_domain(event).model_dump(mode="json"),
        )
    )
    sender = asyncio.create_task(_sender(websocket, outbox))

    try:
        enqueue(WebSocketMessageType.SESSION_STARTED, {
            "message": "Connected to Gorilla Mode pose analysis",
            "models": manager.registry.available(),
            "default_model": pipeline.config.estimator.default_model,
        })

        # Main message loop
        while True:
            try:
                data = await websocket.receive_json()
            except json.JSONDecodeError:
                enqueue(WebSocketMessageType.ERROR, {"error": "Invalid JSON"})
                continue

            try:
                message = WebSocketMessage.model_validate(data)
            except ValidationError as e:
                enqueue(WebSocketMessageType.ERROR, {"error": f"Invalid message: {e.errors()[0]['msg']}"})
                continue

            if message.type == WebSocketMessageType.END_SESSION:
                await pipeline.stop()
                enqueue(WebSocketMessageType.SESSION_ENDED, {"message": "Session ended"})
                break

            await handle_message(pipeline, message, enqueue, clock)

    except WebSocketDisconnect:
        logger.info("Client disconnected")
    except Exception as e:
        logger.error(f"WebSocket error: {e}")
    finally:
        await manager.disconnect(websocket)
        try:
            outbox.put_nowait(None)
        except asyncio.QueueFull:
            sender.cancel()
        await asyncio.gather(sender, return_exceptions=True)


async def handle_message(
    pipeline: PipelineOrchestrator,
    message: WebSocketMessage,
    enqueue: Enqueue,
    clock: FrameClock,
) -> None:
    """
    Dispatch one client message to the session pipeline.
    """
    try:
        if message.type == WebSocketMessageType.FRAME:
            handle_frame(pipeline, message, enqueue, clock)

        elif message.type == WebSocketMessageType.START_SESSION:
            payload = SelectModelMessage.model_validate(message.data)
            if payload.model is not None and payload.model not in manager.registry:
                enqueue(WebSocketMessageType.ERROR, {"error": f"Unknown model: {payload.model}"})
                return
            await pipeline.start(payload.model)

        elif message.type == WebSocketMessageType.SELECT_MODEL:
            payload = SelectModelMessage.model_validate(message.data)
            if payload.model is None or payload.model not in manager.registry:
                enqueue(WebSocketMessageType.ERROR, {"error": f"Unknown model: {payload.model}"})
                return
            pipeline.request_model_swap(payload.model)

        elif message.type == WebSocketMessageType.STOP_SESSION:
            await pipeline.stop()

        elif message.type == WebSocketMessageType.RESET_SESSION:
            pipeline.reset()

        elif message.type == WebSocketMessageType.CAMERA_LOST:
            payload = CameraLostMessage.model_validate(message.data)
            await pipeline.report_frame_source_failure(payload.reason)

        else:
            enqueue(WebSocketMessageType.ERROR, {"error": f"Unknown message type: {message.type.value}"})

    except ValidationError as e:
        enqueue(WebSocketMessageType.ERROR, {"error": f"Invalid payload: {e.errors()[0]['msg']}"})
    except ModelLoadFailure as e:
        enqueue(WebSocketMessageType.ERROR, {"error": str(e)})


def handle_frame(
    pipeline: PipelineOrchestrator,
    message: WebSocketMessage,
    enqueue: Enqueue,
    clock: FrameClock,
) -> None:
    """
    Decode a video frame and hand it to the pipeline.

    Never waits for analysis: the snapshot arrives later through the
    pipeline's snapshot listener.
    """
    payload = FrameMessage.model_validate(message.data)

    image = decode_base64_image(payload.image_base64)
    if image is None:
        enqueue(WebSocketMessageType.ERROR, {"error": "Could not decode image data"})
        return

    frame = Frame(
        timestamp_ms=clock.stamp(message.timestamp),
        image=image,
        frame_number=payload.frame_number,
    )
    if not pipeline.on_frame(frame):
        enqueue(WebSocketMessageType.ERROR, {"error": "Session not started"})
