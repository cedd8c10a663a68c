"""
Keypoint Stabilizer

Temporal smoothing and gap-filling of noisy keypoints.

Each keypoint id keeps a short ring of its last confident observations.
The published position is the confidence-weighted mean of that ring, so
a single jittery detection barely moves the joint. Short dropouts are
bridged with the ring's values; longer ones mark the keypoint missing,
and after a long gap the ring starts over so a re-acquired joint is not
averaged with where it used to be.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Optional

from ..domain.pose import Keypoint, PoseEstimate, StabilizedKeypoint, StabilizedPose

logger = logging.getLogger(__name__)


@dataclass
class _KeypointTrack:
    ring: deque
    low_streak: int = 0


@dataclass
class KeypointStabilizer:
    """
    Per-keypoint rolling smoother.

    Attributes:
        window_size: Confident observations kept per keypoint (K)
        min_confidence: Observations below this are treated as dropouts
        max_missing_frames: Dropouts tolerated before a keypoint is missing (M)
        max_gap_frames: Dropout streak after which the ring is cleared
    """
    window_size: int = 5
    min_confidence: float = 0.3
    max_missing_frames: int = 2
    max_gap_frames: int = 10
    _tracks: dict[int, _KeypointTrack] = field(default_factory=dict, init=False, repr=False)

    def reset(self) -> None:
        self._tracks.clear()

    def update(self, estimate: PoseEstimate) -> StabilizedPose:
        """Fold one estimate into the rings and return the smoothed pose."""
        seen: set[int] = set()

        for kp in estimate.keypoints:
            seen.add(kp.id)
            track = self._tracks.get(kp.id)
            if track is None:
                track = _KeypointTrack(ring=deque(maxlen=self.window_size))
                self._tracks[kp.id] = track

            if kp.confidence >= self.min_confidence:
                self._observe(kp, track)
            else:
                track.low_streak += 1

        # Keypoints the model did not report at all count as dropouts too.
        for kp_id, track in self._tracks.items():
            if kp_id not in seen:
                track.low_streak += 1

        return StabilizedPose(
            keypoints={kp_id: self._smooth(kp_id, track) for kp_id, track in self._tracks.items()},
            frame_timestamp=estimate.frame_timestamp,
            model_id=estimate.model_id,
        )

    def _observe(self, kp: Keypoint, track: _KeypointTrack) -> None:
        if track.low_streak > self.max_gap_frames and track.ring:
            logger.debug(f"Keypoint {kp.id} re-acquired after {track.low_streak} frames, restarting ring")
            track.ring.clear()
        track.low_streak = 0
        track.ring.append(kp)

    def _smooth(self, kp_id: int, track: _KeypointTrack) -> StabilizedKeypoint:
        if not track.ring or track.low_streak > self.max_missing_frames:
            return StabilizedKeypoint(id=kp_id, x=0.0, y=0.0, confidence=0.0, missing=True)

        confidence = sum(kp.confidence for kp in track.ring) / len(track.ring)
        # Zero-confidence rings (min_confidence=0) fall back to a plain mean.
        weights = [kp.confidence for kp in track.ring] if confidence > 0 else [1.0] * len(track.ring)
        total = sum(weights)

        x = sum(kp.x * w for kp, w in zip(track.ring, weights)) / total
        y = sum(kp.y * w for kp, w in zip(track.ring, weights)) / total

        z: Optional[float] = None
        if all(kp.z is not None for kp in track.ring):
            z = sum(kp.z * w for kp, w in zip(track.ring, weights)) / total

        return StabilizedKeypoint(id=kp_id, x=x, y=y, z=z, confidence=confidence)
