"""Shared fakes and helpers for the pipeline tests."""

import asyncio
import math
import time
from typing import Callable, Optional

import pytest

from gorillamode.core.config import PipelineConfig
from gorillamode.core.domain import BodyPart, Frame, Keypoint, PoseEstimate
from gorillamode.core.services import EstimatorRegistry, PoseEstimator


def leg_keypoints(
    knee_angle: float,
    confidence: float = 0.9,
    sides: tuple[str, ...] = ("LEFT", "RIGHT"),
) -> tuple[Keypoint, ...]:
    """
    Hip, knee and ankle keypoints whose knee angle is exactly knee_angle.

    The hip sits straight above the knee; the ankle is rotated away from
    the hip direction by knee_angle degrees.
    """
    theta = math.radians(knee_angle)
    keypoints = []
    for i, side in enumerate(sides):
        kx = 0.3 + 0.4 * i
        ky = 0.5
        keypoints.extend([
            Keypoint(BodyPart[f"{side}_HIP"], kx, ky - 0.2, confidence),
            Keypoint(BodyPart[f"{side}_KNEE"], kx, ky, confidence),
            Keypoint(BodyPart[f"{side}_ANKLE"], kx + 0.2 * math.sin(theta), ky - 0.2 * math.cos(theta), confidence),
        ])
    return tuple(keypoints)


KeypointScript = Callable[[Frame], tuple[Keypoint, ...]]


class FakeEstimator(PoseEstimator):
    """
    Scripted estimator.

    Keypoints come from `script(frame)`. `gate` (if set) holds every call
    until released, `delays` lists per-call sleep times.
    """

    def __init__(
        self,
        model_id: str,
        script: Optional[KeypointScript] = None,
        gate: Optional[asyncio.Event] = None,
        delays: Optional[list[float]] = None,
        fail_warm_up: bool = False,
    ):
        self.model_id = model_id
        self.script = script or (lambda frame: leg_keypoints(170.0))
        self.gate = gate
        self.delays = list(delays or [])
        self.fail_warm_up = fail_warm_up
        self.warmed_up = False
        self.disposed = False
        self.calls = 0
        self.active = 0
        self.max_active = 0
        self.used_before_warm_up = False
        self.used_after_dispose = False

    def warm_up(self) -> None:
        if self.fail_warm_up:
            raise RuntimeError("weights not found")
        self.warmed_up = True

    def dispose(self) -> None:
        self.disposed = True

    async def estimate(self, frame: Frame) -> PoseEstimate:
        self.calls += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        self.used_before_warm_up |= not self.warmed_up
        self.used_after_dispose |= self.disposed
        try:
            keypoints = self.script(frame)
            if self.gate is not None:
                await self.gate.wait()
            if self.delays:
                await asyncio.sleep(self.delays.pop(0))
            return PoseEstimate(keypoints=keypoints, frame_timestamp=frame.timestamp_ms, model_id=self.model_id)
        finally:
            self.active -= 1


class ThreadedFakeEstimator(FakeEstimator):
    """
    Estimator whose work runs on a worker thread, like MediaPipe.

    Cancelling the awaiting task does not stop the thread, so it records
    whether dispose() happened while it was still working.
    """

    def __init__(self, model_id: str, work_s: float):
        super().__init__(model_id)
        self.work_s = work_s
        self.disposed_during_call = False
        self.image_released_during_call = False

    def _work(self, frame: Frame) -> PoseEstimate:
        time.sleep(self.work_s)
        self.disposed_during_call |= self.disposed
        self.image_released_during_call |= frame.released
        return PoseEstimate(keypoints=self.script(frame), frame_timestamp=frame.timestamp_ms, model_id=self.model_id)

    async def estimate(self, frame: Frame) -> PoseEstimate:
        self.calls += 1
        return await asyncio.to_thread(self._work, frame)


def registry_of(*estimators: FakeEstimator) -> EstimatorRegistry:
    """Registry handing out the given instances (one instance per id)."""
    registry = EstimatorRegistry()
    for estimator in estimators:
        registry.register(estimator.model_id, lambda e=estimator: e)
    return registry


def make_frame(number: int, image=None) -> Frame:
    return Frame(timestamp_ms=1000 + number * 33, image=image if image is not None else object(), frame_number=number)


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll the event loop until predicate() holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.001)


@pytest.fixture
def exact_config() -> PipelineConfig:
    """Config without temporal smoothing, so angles match the input exactly."""
    return PipelineConfig.model_validate({
        "stabilizer": {"window_size": 1},
        "estimator": {"inference_timeout_s": 1.0},
    })
