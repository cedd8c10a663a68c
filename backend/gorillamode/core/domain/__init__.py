"""
Domain Models

Pure data structures for real-time exercise form analysis.
No external dependencies - just Python dataclasses and enums.
"""

from .pose import BodyPart, Frame, Keypoint, PoseEstimate, StabilizedKeypoint, StabilizedPose
from .analysis import (
    AngleDefinition,
    AngleSample,
    FeedbackType,
    FeedbackEvent,
    Tier,
    TierState,
    PipelineSnapshot,
    PipelineStatusKind,
    PipelineStatusEvent,
    PipelineStats,
)
from .errors import (
    PipelineError,
    InferenceTimeout,
    InsufficientKeypoints,
    ModelLoadFailure,
    FrameSourceFailure,
    RuleNotEvaluable,
)

__all__ = [
    "BodyPart",
    "Frame",
    "Keypoint",
    "PoseEstimate",
    "StabilizedKeypoint",
    "StabilizedPose",
    "AngleDefinition",
    "AngleSample",
    "FeedbackType",
    "FeedbackEvent",
    "Tier",
    "TierState",
    "PipelineSnapshot",
    "PipelineStatusKind",
    "PipelineStatusEvent",
    "PipelineStats",
    "PipelineError",
    "InferenceTimeout",
    "InsufficientKeypoints",
    "ModelLoadFailure",
    "FrameSourceFailure",
    "RuleNotEvaluable",
]
