"""
Services Layer

The real-time pose-analysis pipeline and its stages.
"""

from .frame_queue import FrameQueue
from .pose_estimators import (
    PoseEstimator,
    MediaPipePoseEstimator,
    MoveNetPoseEstimator,
    MOVENET_KEYPOINTS,
    EstimatorRegistry,
    default_registry,
    decode_base64_image,
)
from .stabilizer import KeypointStabilizer
from .angle_engine import AngleEngine, DEFAULT_ANGLE_DEFINITIONS, calculate_angle
from .feedback_rules import (
    FeedbackRule,
    FeedbackRuleEngine,
    HistoryWindow,
    threshold_crossing_rule,
    range_entry_rule,
    trend_rule,
    default_squat_rules,
)
from .tier_scorer import TierScorer
from .pipeline import PipelineOrchestrator

__all__ = [
    "FrameQueue",
    "PoseEstimator",
    "MediaPipePoseEstimator",
    "MoveNetPoseEstimator",
    "MOVENET_KEYPOINTS",
    "EstimatorRegistry",
    "default_registry",
    "decode_base64_image",
    "KeypointStabilizer",
    "AngleEngine",
    "DEFAULT_ANGLE_DEFINITIONS",
    "calculate_angle",
    "FeedbackRule",
    "FeedbackRuleEngine",
    "HistoryWindow",
    "threshold_crossing_rule",
    "range_entry_rule",
    "trend_rule",
    "default_squat_rules",
    "TierScorer",
    "PipelineOrchestrator",
]
