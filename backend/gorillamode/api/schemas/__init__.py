"""
API Schemas

Pydantic models for request/response validation.
"""

from .pose import (
    KeypointSchema,
    PoseEstimateSchema,
    PoseDetectionRequest,
    PoseDetectionResponse,
)

from .analysis import (
    FeedbackTypeEnum,
    TierEnum,
    AngleSampleSchema,
    AngleDefinitionSchema,
    FeedbackEventSchema,
    TierStateSchema,
    SnapshotSchema,
    StatusSchema,
    ModelListResponse,
    HealthResponse,
)

from .messages import (
    WebSocketMessageType,
    WebSocketMessage,
    FrameMessage,
    SelectModelMessage,
)

__all__ = [
    # Pose schemas
    "KeypointSchema",
    "PoseEstimateSchema",
    "PoseDetectionRequest",
    "PoseDetectionResponse",
    # Analysis schemas
    "FeedbackTypeEnum",
    "TierEnum",
    "AngleSampleSchema",
    "AngleDefinitionSchema",
    "FeedbackEventSchema",
    "TierStateSchema",
    "SnapshotSchema",
    "StatusSchema",
    "ModelListResponse",
    "HealthResponse",
    # WebSocket schemas
    "WebSocketMessageType",
    "WebSocketMessage",
    "FrameMessage",
    "SelectModelMessage",
]
