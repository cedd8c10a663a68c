"""
Analysis Domain Models

Data structures for joint angles, form feedback, performance tiers
and the per-cycle snapshot published by the pipeline.
"""

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Optional


@dataclass(frozen=True)
class AngleDefinition:
    """
    A tracked joint angle.

    Attributes:
        label: Display name (e.g. "Left Knee")
        joint_ids: (first, vertex, last) keypoint ids; the angle is
                   measured at the vertex between the rays to first and last
    """
    label: str
    joint_ids: tuple[int, int, int]


@dataclass(frozen=True)
class AngleSample:
    """One computed angle for one cycle. value_degrees is in [0, 180]."""
    label: str
    value_degrees: float
    confidence: float
    timestamp: int


class FeedbackType(str, Enum):
    """Severity of a feedback message, as shown in the feedback panel."""
    OK = "ok"
    WARN = "warn"
    INFO = "info"
    ERROR = "error"


@dataclass(frozen=True)
class FeedbackEvent:
    """
    A single piece of form feedback.

    Attributes:
        type: ok / warn / info / error
        text: Human-readable message
        rule_id: Rule (or pipeline component) that produced it
        timestamp: Frame timestamp of the cycle that produced it
    """
    type: FeedbackType
    text: str
    rule_id: str
    timestamp: int

    @property
    def is_problem(self) -> bool:
        return self.type in (FeedbackType.WARN, FeedbackType.ERROR)


class Tier(IntEnum):
    """
    Performance tiers, ordered.

    Transitions only ever move one step at a time.
    """
    NONE = 0
    BRONZE = 1
    SILVER = 2
    GOLD = 3

    @property
    def display_name(self) -> Optional[str]:
        """Name shown on the tier badge (None while unranked)."""
        if self is Tier.NONE:
            return None
        return self.name.capitalize()


@dataclass(frozen=True)
class TierState:
    """
    Committed tier plus the hysteresis bookkeeping behind it.

    Attributes:
        tier: Committed tier
        score: Rolling score (0-100)
        last_changed_at: Timestamp of the last commit (None if never)
        consecutive_frames_at_candidate: Cycles the pending candidate has held
        candidate: Tier the score currently maps to
    """
    tier: Tier = Tier.NONE
    score: float = 0.0
    last_changed_at: Optional[int] = None
    consecutive_frames_at_candidate: int = 0
    candidate: Tier = Tier.NONE


@dataclass(frozen=True)
class PipelineSnapshot:
    """State published after every completed cycle."""
    angles: tuple[AngleSample, ...]
    feedback: tuple[FeedbackEvent, ...]
    tier: TierState
    model_id: str
    frame_timestamp: int
    cycle: int


class PipelineStatusKind(str, Enum):
    STARTED = "started"
    STOPPED = "stopped"
    MODEL_SWAPPED = "model_swapped"
    ERROR = "error"


@dataclass(frozen=True)
class PipelineStatusEvent:
    """Lifecycle and fatal-error notifications for the display side."""
    kind: PipelineStatusKind
    message: str
    model_id: Optional[str] = None
    timestamp: Optional[int] = None


@dataclass
class PipelineStats:
    """Counters for dropped and degraded cycles."""
    cycles_completed: int = 0
    frames_dropped: int = 0
    inference_timeouts: int = 0
    inference_failures: int = 0
    cycle_failures: int = 0
    partial_poses: int = 0
    stale_frames: int = 0
    swaps_applied: int = 0
    swaps_failed: int = 0
    last_cycle_ms: Optional[float] = None
