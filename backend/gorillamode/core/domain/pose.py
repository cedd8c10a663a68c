"""
Pose Domain Models

Data structures for frames and body keypoints flowing through the
real-time analysis pipeline.

Keypoint ids follow MediaPipe Pose's 33-landmark numbering:
https://developers.google.com/mediapipe/solutions/vision/pose_landmarker
"""
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Callable, Mapping, Optional


class BodyPart(IntEnum):
    """
    MediaPipe Pose landmark indices.

    These map directly to MediaPipe's 33-point pose model.
    We include the ones used for exercise form analysis.
    """
    # Face
    NOSE = 0
    LEFT_EYE = 2
    RIGHT_EYE = 5
    LEFT_EAR = 7
    RIGHT_EAR = 8

    # Upper body
    LEFT_SHOULDER = 11
    RIGHT_SHOULDER = 12
    LEFT_ELBOW = 13
    RIGHT_ELBOW = 14
    LEFT_WRIST = 15
    RIGHT_WRIST = 16

    # Lower body
    LEFT_HIP = 23
    RIGHT_HIP = 24
    LEFT_KNEE = 25
    RIGHT_KNEE = 26
    LEFT_ANKLE = 27
    RIGHT_ANKLE = 28

    # Feet
    LEFT_HEEL = 29
    RIGHT_HEEL = 30
    LEFT_FOOT_INDEX = 31
    RIGHT_FOOT_INDEX = 32


@dataclass
class Frame:
    """
    A timestamped image handed over by the capture side.

    The pipeline never mutates the image. It calls release() once it is
    done with the frame (processed or dropped), which lets the capture
    side recycle its buffer.

    Attributes:
        timestamp_ms: Capture timestamp in milliseconds
        image: BGR image (OpenCV format) or any buffer the estimator accepts
        frame_number: Sequential frame number from the capture side
        on_release: Optional callback invoked once on release()
    """
    timestamp_ms: int
    image: Any
    frame_number: int = 0
    on_release: Optional[Callable[["Frame"], None]] = field(default=None, repr=False)
    released: bool = field(default=False, repr=False)

    def release(self) -> None:
        """Drop the image reference and notify the owner (idempotent)."""
        if self.released:
            return
        self.released = True
        self.image = None
        if self.on_release is not None:
            self.on_release(self)


@dataclass(frozen=True)
class Keypoint:
    """
    A single detected landmark.

    Attributes:
        id: Landmark index (see BodyPart)
        x: Horizontal position (0.0 = left edge, 1.0 = right edge)
        y: Vertical position (0.0 = top edge, 1.0 = bottom edge)
        confidence: Detection confidence (0.0 to 1.0)
        z: Depth if the model provides it (smaller = closer to camera)
    """
    id: int
    x: float
    y: float
    confidence: float
    z: Optional[float] = None


@dataclass(frozen=True)
class PoseEstimate:
    """
    All keypoints a model detected in one frame.

    An empty keypoint tuple means no person was found.
    """
    keypoints: tuple[Keypoint, ...]
    frame_timestamp: int
    model_id: str

    @property
    def is_empty(self) -> bool:
        return not self.keypoints


@dataclass(frozen=True)
class StabilizedKeypoint:
    """Temporally smoothed keypoint. Missing keypoints carry no usable position."""
    id: int
    x: float
    y: float
    confidence: float
    z: Optional[float] = None
    missing: bool = False


@dataclass(frozen=True)
class StabilizedPose:
    """
    Smoothed, gap-filled pose produced by the KeypointStabilizer.

    Handed downstream read-only; keypoints is a mapping id -> keypoint.
    """
    keypoints: Mapping[int, StabilizedKeypoint]
    frame_timestamp: int
    model_id: str

    def get(self, keypoint_id: int) -> Optional[StabilizedKeypoint]:
        """Get a keypoint that is present and not missing."""
        kp = self.keypoints.get(keypoint_id)
        if kp is None or kp.missing:
            return None
        return kp

    @property
    def missing_ids(self) -> list[int]:
        return sorted(kp.id for kp in self.keypoints.values() if kp.missing)
