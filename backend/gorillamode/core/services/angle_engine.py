"""
Angle Engine

Joint angles from stabilized keypoints.
All angles are calculated in degrees (0-180).

This is pure mathematics - no external dependencies except numpy.
"""

import logging
from typing import Optional, Sequence

import numpy as np

from ..domain.analysis import AngleDefinition, AngleSample
from ..domain.errors import InsufficientKeypoints
from ..domain.pose import BodyPart, StabilizedKeypoint, StabilizedPose

logger = logging.getLogger(__name__)


DEFAULT_ANGLE_DEFINITIONS: tuple[AngleDefinition, ...] = (
    AngleDefinition("Left Knee", (BodyPart.LEFT_HIP, BodyPart.LEFT_KNEE, BodyPart.LEFT_ANKLE)),
    AngleDefinition("Right Knee", (BodyPart.RIGHT_HIP, BodyPart.RIGHT_KNEE, BodyPart.RIGHT_ANKLE)),
    AngleDefinition("Left Elbow", (BodyPart.LEFT_SHOULDER, BodyPart.LEFT_ELBOW, BodyPart.LEFT_WRIST)),
    AngleDefinition("Right Elbow", (BodyPart.RIGHT_SHOULDER, BodyPart.RIGHT_ELBOW, BodyPart.RIGHT_WRIST)),
    AngleDefinition("Left Hip", (BodyPart.LEFT_SHOULDER, BodyPart.LEFT_HIP, BodyPart.LEFT_KNEE)),
    AngleDefinition("Right Hip", (BodyPart.RIGHT_SHOULDER, BodyPart.RIGHT_HIP, BodyPart.RIGHT_KNEE)),
)


def calculate_angle(
    p1: StabilizedKeypoint,
    p2: StabilizedKeypoint,  # Vertex point
    p3: StabilizedKeypoint,
    use_depth: bool = False,
) -> Optional[float]:
    """
    Calculate angle at p2 formed by p1-p2-p3.

    Args:
        p1: First point
        p2: Vertex point (where angle is measured)
        p3: Third point
        use_depth: Include z when all three points have it

    Returns:
        Angle in degrees (0-180), or None if a ray has zero length

    Example:
        For knee angle: hip -> knee -> ankle
    """
    points = (p1, p2, p3)
    if use_depth and all(p.z is not None for p in points):
        a, b, c = (np.array([p.x, p.y, p.z], dtype=float) for p in points)
    else:
        a, b, c = (np.array([p.x, p.y], dtype=float) for p in points)

    v1 = a - b
    v2 = c - b
    norm = np.linalg.norm(v1) * np.linalg.norm(v2)
    if norm == 0.0:
        return None

    # Clamp to valid range (handles floating point errors)
    cos_angle = np.clip(np.dot(v1, v2) / norm, -1.0, 1.0)
    angle = float(np.degrees(np.arccos(cos_angle)))
    return min(max(angle, 0.0), 180.0)


class AngleEngine:
    """
    Computes the configured joint angles for a stabilized pose.

    Stateless: the same pose always yields the same samples.
    """

    def __init__(
        self,
        definitions: Sequence[AngleDefinition] = DEFAULT_ANGLE_DEFINITIONS,
        use_depth: bool = False,
    ):
        self.definitions = tuple(definitions)
        self.use_depth = use_depth

    def compute_angle(self, definition: AngleDefinition, pose: StabilizedPose) -> Optional[AngleSample]:
        """
        Compute one angle.

        Raises:
            InsufficientKeypoints: if any of the three keypoints is missing

        Returns:
            The sample, or None if the keypoints are coincident
        """
        points = [pose.get(kp_id) for kp_id in definition.joint_ids]
        missing = [kp_id for kp_id, p in zip(definition.joint_ids, points) if p is None]
        if missing:
            raise InsufficientKeypoints(definition.label, [int(m) for m in missing])

        p1, p2, p3 = points
        value = calculate_angle(p1, p2, p3, use_depth=self.use_depth)
        if value is None:
            return None

        return AngleSample(
            label=definition.label,
            value_degrees=value,
            confidence=min(p.confidence for p in points),
            timestamp=pose.frame_timestamp,
        )

    def compute(self, pose: StabilizedPose) -> list[AngleSample]:
        """Compute every definition, omitting those that cannot be measured."""
        samples = []
        for definition in self.definitions:
            try:
                sample = self.compute_angle(definition, pose)
            except InsufficientKeypoints as e:
                logger.debug(str(e))
                continue
            if sample is not None:
                samples.append(sample)
        return samples
