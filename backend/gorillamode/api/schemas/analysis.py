"""
Analysis API Schemas

Pydantic models for angles, feedback, tiers and pipeline snapshots.
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List
from enum import Enum

from gorillamode.core.domain import (
    AngleDefinition,
    AngleSample,
    FeedbackEvent,
    PipelineSnapshot,
    PipelineStatusEvent,
    TierState,
)


class FeedbackTypeEnum(str, Enum):
    """Feedback severities for API."""
    OK = "ok"
    WARN = "warn"
    INFO = "info"
    ERROR = "error"


class TierEnum(str, Enum):
    """Performance tiers for API (null while unranked)."""
    BRONZE = "Bronze"
    SILVER = "Silver"
    GOLD = "Gold"


class AngleSampleSchema(BaseModel):
    """
    One joint angle for one frame.
    """
    label: str = Field(..., description="Angle name (e.g. 'Left Knee')")
    value: float = Field(..., ge=0.0, le=180.0, description="Angle in degrees")
    confidence: float = Field(..., ge=0.0, le=1.0, description="Lowest confidence of the three keypoints")
    timestamp: int = Field(..., description="Frame timestamp in milliseconds")

    class Config:
        json_schema_extra = {
            "example": {
                "label": "Left Knee",
                "value": 165.2,
                "confidence": 0.91,
                "timestamp": 1500
            }
        }

    @classmethod
    def from_domain(cls, sample: AngleSample) -> "AngleSampleSchema":
        return cls(
            label=sample.label,
            value=sample.value_degrees,
            confidence=sample.confidence,
            timestamp=sample.timestamp,
        )


class AngleDefinitionSchema(BaseModel):
    label: str = Field(..., description="Angle name")
    joint_ids: List[int] = Field(..., min_length=3, max_length=3, description="First, vertex, last keypoint id")

    @classmethod
    def from_domain(cls, definition: AngleDefinition) -> "AngleDefinitionSchema":
        return cls(label=definition.label, joint_ids=[int(i) for i in definition.joint_ids])


class FeedbackEventSchema(BaseModel):
    """
    A form-feedback message.
    """
    type: FeedbackTypeEnum = Field(..., description="Severity")
    text: str = Field(..., description="Message shown to the user")
    rule_id: str = Field(..., description="Rule that produced the message")
    timestamp: int = Field(..., description="Frame timestamp in milliseconds")

    class Config:
        json_schema_extra = {
            "example": {
                "type": "warn",
                "text": "Keep knees tracking over toes.",
                "rule_id": "knees_over_toes",
                "timestamp": 2100
            }
        }

    @classmethod
    def from_domain(cls, event: FeedbackEvent) -> "FeedbackEventSchema":
        return cls(
            type=FeedbackTypeEnum(event.type.value),
            text=event.text,
            rule_id=event.rule_id,
            timestamp=event.timestamp,
        )


class TierStateSchema(BaseModel):
    """
    Committed tier and the score behind it.
    """
    tier: Optional[TierEnum] = Field(None, description="Current tier (null while unranked)")
    score: float = Field(..., ge=0.0, le=100.0, description="Rolling score")
    last_changed_at: Optional[int] = Field(None, description="Timestamp of last tier change")
    consecutive_frames_at_candidate: int = Field(..., ge=0, description="Cycles the pending tier has held")

    @classmethod
    def from_domain(cls, state: TierState) -> "TierStateSchema":
        name = state.tier.display_name
        return cls(
            tier=TierEnum(name) if name else None,
            score=state.score,
            last_changed_at=state.last_changed_at,
            consecutive_frames_at_candidate=state.consecutive_frames_at_candidate,
        )


class SnapshotSchema(BaseModel):
    """
    Pipeline output for one completed cycle.

    This is what the angle panel, feedback panel and tier badge render.
    """
    model_config = ConfigDict(protected_namespaces=())

    angles: List[AngleSampleSchema] = Field(default_factory=list)
    feedback: List[FeedbackEventSchema] = Field(default_factory=list, description="Most recent first")
    tier: TierStateSchema
    model_id: str = Field(..., description="Model that produced this cycle")
    frame_timestamp: int
    cycle: int

    @classmethod
    def from_domain(cls, snapshot: PipelineSnapshot) -> "SnapshotSchema":
        return cls(
            angles=[AngleSampleSchema.from_domain(a) for a in snapshot.angles],
            feedback=[FeedbackEventSchema.from_domain(f) for f in snapshot.feedback],
            tier=TierStateSchema.from_domain(snapshot.tier),
            model_id=snapshot.model_id,
            frame_timestamp=snapshot.frame_timestamp,
            cycle=snapshot.cycle,
        )


class StatusSchema(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    kind: str = Field(..., description="started / stopped / model_swapped / error")
    message: str
    model_id: Optional[str] = None

    @classmethod
    def from_domain(cls, event: PipelineStatusEvent) -> "StatusSchema":
        return cls(kind=event.kind.value, message=event.message, model_id=event.model_id)


class ModelListResponse(BaseModel):
    models: List[str] = Field(..., description="Registered model identifiers")
    default: str = Field(..., description="Model used when none is selected")


class HealthResponse(BaseModel):
    """
    Health check response.
    """
    status: str = Field("healthy", description="Service status")
    version: str = Field(..., description="API version")
    mediapipe_available: bool = Field(..., description="Whether MediaPipe is importable")
    active_sessions: int = Field(0, ge=0, description="Open WebSocket sessions")
