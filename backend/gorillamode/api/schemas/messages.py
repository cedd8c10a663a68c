"""
WebSocket Message Schemas

Every message in either direction is {"type", "data", "timestamp"}.
"""

from pydantic import BaseModel, Field
from typing import Optional
from enum import Enum


class WebSocketMessageType(str, Enum):
    """Types of WebSocket messages."""
    # Client -> Server
    START_SESSION = "start_session"    # Start the pipeline (optionally with a model)
    FRAME = "frame"                    # Send video frame for analysis
    SELECT_MODEL = "select_model"      # Hot-swap the pose model
    STOP_SESSION = "stop_session"      # Stop the pipeline, keep tier/feedback
    RESET_SESSION = "reset_session"    # Clear tier/feedback
    CAMERA_LOST = "camera_lost"        # Capture side lost the camera
    END_SESSION = "end_session"        # Close the connection

    # Server -> Client
    SNAPSHOT = "snapshot"              # Angles, feedback and tier for one cycle
    STATUS = "status"                  # Pipeline lifecycle / fatal errors
    ERROR = "error"                    # Protocol error for the last message
    SESSION_STARTED = "session_started"
    SESSION_ENDED = "session_ended"


class WebSocketMessage(BaseModel):
    """
    Base WebSocket message structure.

    All WebSocket communication uses this format.
    """
    type: WebSocketMessageType = Field(..., description="Message type")
    data: dict = Field(default_factory=dict, description="Message payload")
    timestamp: int = Field(0, description="Unix timestamp in milliseconds")

    class Config:
        json_schema_extra = {
            "example": {
                "type": "frame",
                "data": {"image_base64": "...", "frame_number": 12},
                "timestamp": 1704067200000
            }
        }


class FrameMessage(BaseModel):
    """
    Payload of a frame message.

    Sent from frontend to backend for every captured video frame.
    """
    image_base64: str = Field(..., min_length=1, description="Base64 encoded frame")
    frame_number: int = Field(0, ge=0, description="Frame sequence number")


class SelectModelMessage(BaseModel):
    """Payload of start_session / select_model messages."""
    model: Optional[str] = Field(None, description="Model identifier")


class CameraLostMessage(BaseModel):
    reason: str = Field("Camera stream ended", description="What happened to the camera")
