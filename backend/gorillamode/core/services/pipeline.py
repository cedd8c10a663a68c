"""
Pipeline Orchestrator

Drives the real-time analysis loop for one session:

    frame queue -> pose estimator -> stabilizer -> angle engine
                -> feedback rules -> tier scorer -> snapshot

One asyncio task runs cycles strictly one after another. The estimator
call is the only await inside a cycle; everything else runs to
completion before the next frame is taken, so the stabilizer rings,
rule history and tier state need no locking.

Model swaps are queued and applied between cycles: the outgoing model
finishes its in-flight call, the incoming one is warmed up, and only
then is the outgoing one disposed. If warm-up fails the old model stays.

An estimate() call that overruns its budget cannot be interrupted (it
usually runs on a worker thread). It stays in flight, keeps its frame,
and is awaited before its model is disposed.
"""

import asyncio
import logging
import time
from collections import deque
from typing import Callable, Optional, Sequence

from ..config import PipelineConfig
from ..domain.analysis import (
    AngleDefinition,
    FeedbackEvent,
    FeedbackType,
    PipelineSnapshot,
    PipelineStats,
    PipelineStatusEvent,
    PipelineStatusKind,
    TierState,
)
from ..domain.errors import FrameSourceFailure, InferenceTimeout, ModelLoadFailure
from ..domain.pose import Frame, PoseEstimate
from .angle_engine import DEFAULT_ANGLE_DEFINITIONS, AngleEngine
from .feedback_rules import FeedbackRule, FeedbackRuleEngine, default_squat_rules
from .frame_queue import FrameQueue
from .pose_estimators import EstimatorRegistry, PoseEstimator
from .stabilizer import KeypointStabilizer
from .tier_scorer import TierScorer

logger = logging.getLogger(__name__)

SnapshotListener = Callable[[PipelineSnapshot], None]
StatusListener = Callable[[PipelineStatusEvent], None]


class PipelineOrchestrator:
    """
    Owns one session's pipeline state and lifecycle.

    Usage:
        pipeline = PipelineOrchestrator(default_registry())
        pipeline.add_snapshot_listener(render)
        await pipeline.start("BlazePose")

        pipeline.on_frame(frame)            # from the capture side
        pipeline.request_model_swap("BlazePoseHeavy")

        await pipeline.stop()               # tier and feedback survive
        await pipeline.close()              # disposes the model

    Or use as async context manager:
        async with PipelineOrchestrator(registry) as pipeline:
            await pipeline.start()
    """

    def __init__(
        self,
        registry: EstimatorRegistry,
        config: Optional[PipelineConfig] = None,
        angle_definitions: Sequence[AngleDefinition] = DEFAULT_ANGLE_DEFINITIONS,
        rules: Optional[Sequence[FeedbackRule]] = None,
    ):
        self.registry = registry
        self.config = config or PipelineConfig()

        self.queue = FrameQueue(self.config.queue.capacity)
        self.stabilizer = KeypointStabilizer(**self.config.stabilizer.model_dump())
        self.angle_engine = AngleEngine(angle_definitions, use_depth=self.config.angles.use_depth)
        self.rule_engine = FeedbackRuleEngine(
            rules if rules is not None else default_squat_rules(),
            history_size=self.config.feedback.history_size,
        )
        self.tier_scorer = TierScorer(self.config.tier)
        self.feedback_history: deque[FeedbackEvent] = deque(maxlen=self.config.feedback.max_events)
        self.stats = PipelineStats()

        self.estimator: Optional[PoseEstimator] = None
        self._pending_swap: Optional[str] = None
        self._inflight: Optional[asyncio.Future] = None
        self._inflight_frame: Optional[Frame] = None
        self._run_task: Optional[asyncio.Task] = None
        self._cycle_lock = asyncio.Lock()
        self._latest: Optional[PipelineSnapshot] = None
        self._last_timestamp: Optional[int] = None
        self._cycle = 0

        self._snapshot_listeners: list[SnapshotListener] = []
        self._status_listeners: list[StatusListener] = []

    async def __aenter__(self) -> "PipelineOrchestrator":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # -------------------------------------------------------------------------
    # State accessors
    # -------------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._run_task is not None and not self._run_task.done()

    @property
    def model_id(self) -> Optional[str]:
        return self.estimator.model_id if self.estimator else None

    @property
    def pending_swap(self) -> Optional[str]:
        return self._pending_swap

    @property
    def tier_state(self) -> TierState:
        return self.tier_scorer.state

    @property
    def latest_snapshot(self) -> Optional[PipelineSnapshot]:
        return self._latest

    def add_snapshot_listener(self, listener: SnapshotListener) -> None:
        self._snapshot_listeners.append(listener)

    def add_status_listener(self, listener: StatusListener) -> None:
        self._status_listeners.append(listener)

    # -------------------------------------------------------------------------
    # Inputs
    # -------------------------------------------------------------------------

    def on_frame(self, frame: Frame) -> bool:
        """
        Hand a captured frame to the pipeline. Never blocks.

        Returns:
            False if the pipeline is not running (the frame is released)
        """
        if not self.running:
            frame.release()
            return False
        if self.queue.push(frame) is not None:
            self.stats.frames_dropped += 1
        return True

    def request_model_swap(self, model_id: str) -> None:
        """
        Queue a model change. Applied before the next cycle, or at the
        next start() if the pipeline is stopped.
        """
        logger.info(f"Model swap requested: {self.model_id} -> {model_id}")
        self._pending_swap = model_id

    def reset(self) -> None:
        """Forget tier, feedback and smoothing state."""
        self.stabilizer.reset()
        self.rule_engine.reset()
        self.tier_scorer.reset()
        self.feedback_history.clear()
        self._latest = None
        self._last_timestamp = None
        logger.info("Pipeline state reset")

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self, model_id: Optional[str] = None) -> None:
        """
        Load (if needed) the model and start the cycle loop.

        Raises:
            ModelLoadFailure: if the model cannot be loaded and there is no
                              previously active model to fall back to
        """
        if self.running:
            logger.warning("Pipeline already running")
            return

        model_id = model_id or self._pending_swap or self.model_id or self.config.estimator.default_model
        self._pending_swap = None

        if self.model_id != model_id:
            try:
                incoming = await self._load_model(model_id)
            except ModelLoadFailure as e:
                if self.estimator is None:
                    logger.error(f"Cannot start pipeline: {e}")
                    self._emit_status(PipelineStatusKind.ERROR, str(e), model_id)
                    raise
                self._report_swap_failure(e)
            else:
                await self._replace_estimator(incoming)

        # Smoothing and trend history never span two runs.
        self.stabilizer.reset()
        self.rule_engine.reset()
        self._last_timestamp = None

        self.queue.reopen()
        self._run_task = asyncio.create_task(self._run())
        logger.info(f"Pipeline started with model '{self.model_id}'")
        self._emit_status(PipelineStatusKind.STARTED, "Pipeline started", self.model_id)

    async def stop(self) -> None:
        """
        Stop the loop, give the in-flight inference one budget to finish
        and release queued frames. Tier state and feedback history are kept.
        """
        was_running = self.running
        await self._shutdown()
        if was_running:
            logger.info("Pipeline stopped")
            self._emit_status(PipelineStatusKind.STOPPED, "Pipeline stopped", self.model_id)

    async def report_frame_source_failure(self, reason: str) -> None:
        """Called by the capture side when the camera is gone. Stops the pipeline."""
        error = FrameSourceFailure(reason)
        logger.error(f"Frame source failure: {error}")
        await self._shutdown()
        self._emit_status(PipelineStatusKind.ERROR, f"Frame source failure: {error}", self.model_id)

    async def close(self) -> None:
        """Stop, wait for any overrunning inference and dispose the active model."""
        await self.stop()
        await self._drain_inflight()
        if self.estimator is not None:
            self.estimator.dispose()
            self.estimator = None

    async def _shutdown(self) -> None:
        self.queue.close()
        if self._run_task is not None:
            task, self._run_task = self._run_task, None
            await task
        if not await self._drain_inflight(timeout=self.config.estimator.inference_timeout_s):
            logger.warning("Inference still running after stop, model stays loaded until it finishes")
        released = self.queue.clear()
        if released:
            logger.debug(f"Released {released} queued frames")

    # -------------------------------------------------------------------------
    # Cycle loop
    # -------------------------------------------------------------------------

    async def _run(self) -> None:
        while True:
            frame = await self.queue.get()
            if frame is None:
                return

            try:
                await self._apply_pending_swap()
                await self.run_cycle(frame)
            except FrameSourceFailure as e:
                logger.error(f"Frame source failure: {e}")
                self.queue.close()
                self.queue.clear()
                self._emit_status(PipelineStatusKind.ERROR, f"Frame source failure: {e}", self.model_id)
                return
            except Exception:
                self.stats.cycle_failures += 1
                logger.exception(f"Cycle failed on frame {frame.frame_number}, skipping it")

    async def run_cycle(self, frame: Frame) -> Optional[PipelineSnapshot]:
        """
        Run one full cycle on a frame and publish the snapshot.

        Returns:
            The published snapshot, or None if the cycle was dropped
        """
        async with self._cycle_lock:
            started = time.perf_counter()
            try:
                if self.estimator is None:
                    logger.warning(f"No model loaded, dropping frame {frame.frame_number}")
                    return None

                if self._last_timestamp is not None and frame.timestamp_ms < self._last_timestamp:
                    self.stats.stale_frames += 1
                    logger.debug(f"Skipping out-of-order frame {frame.frame_number}")
                    return None

                try:
                    estimate = await self._estimate(self.estimator, frame)
                except InferenceTimeout as e:
                    self.stats.inference_timeouts += 1
                    logger.warning(str(e))
                    return None
                if estimate is None:
                    return None

                snapshot = self._analyze(estimate)
            finally:
                # An overrunning call still reads the frame; its task releases it.
                if frame is not self._inflight_frame:
                    frame.release()

            self.stats.last_cycle_ms = (time.perf_counter() - started) * 1000
        self._publish(snapshot)
        return snapshot

    async def _estimate(self, estimator: PoseEstimator, frame: Frame) -> Optional[PoseEstimate]:
        """Run inference under the time budget. None if the model failed."""
        budget = self.config.estimator.inference_timeout_s

        # A call that timed out earlier may still be running on this instance.
        if not await self._drain_inflight(timeout=budget):
            raise InferenceTimeout(estimator.model_id, budget)

        task = asyncio.ensure_future(estimator.estimate(frame))
        done, _ = await asyncio.wait({task}, timeout=budget)
        if not done:
            self._inflight = task
            self._inflight_frame = frame
            task.add_done_callback(lambda _: frame.release())
            raise InferenceTimeout(estimator.model_id, budget)

        try:
            return task.result()
        except FrameSourceFailure:
            raise
        except Exception as e:
            self.stats.inference_failures += 1
            logger.error(f"Model '{estimator.model_id}' failed on frame {frame.frame_number}: {e}")
            return None

    def _analyze(self, estimate: PoseEstimate) -> PipelineSnapshot:
        """The synchronous part of a cycle: everything after inference."""
        timestamp = estimate.frame_timestamp

        pose = self.stabilizer.update(estimate)
        samples = self.angle_engine.compute(pose)
        if len(samples) < len(self.angle_engine.definitions):
            self.stats.partial_poses += 1

        events = self.rule_engine.evaluate(samples, timestamp)
        # Newest first; events of one cycle keep rule order.
        for event in reversed(events):
            self.feedback_history.appendleft(event)

        tier = self.tier_scorer.update(events, samples, timestamp)

        self._cycle += 1
        self._last_timestamp = timestamp
        self.stats.cycles_completed += 1
        self._latest = PipelineSnapshot(
            angles=tuple(samples),
            feedback=tuple(self.feedback_history),
            tier=tier,
            model_id=estimate.model_id,
            frame_timestamp=timestamp,
            cycle=self._cycle,
        )
        return self._latest

    async def _drain_inflight(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for an overrunning estimate() call to finish.

        Args:
            timeout: Seconds to wait, None waits as long as it takes

        Returns:
            True once nothing is in flight
        """
        task = self._inflight
        if task is None:
            return True
        if not task.done():
            await asyncio.wait({task}, timeout=timeout)
        if not task.done():
            return False
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"Late inference failed: {task.exception()}")
        self._inflight = None
        self._inflight_frame = None
        return True

    # -------------------------------------------------------------------------
    # Model swap
    # -------------------------------------------------------------------------

    async def _apply_pending_swap(self) -> None:
        model_id = self._pending_swap
        if model_id is None:
            return
        self._pending_swap = None
        if model_id == self.model_id:
            return

        async with self._cycle_lock:
            await self._drain_inflight()
            try:
                incoming = await self._load_model(model_id)
            except ModelLoadFailure as e:
                self._report_swap_failure(e)
                return

            await self._replace_estimator(incoming)
            self.stabilizer.reset()
            self.rule_engine.reset()
            self.stats.swaps_applied += 1

        logger.info(f"Swapped to model '{model_id}'")
        self._emit_status(PipelineStatusKind.MODEL_SWAPPED, f"Now using {model_id}", model_id)

    async def _load_model(self, model_id: str) -> PoseEstimator:
        estimator = self.registry.create(model_id)
        try:
            await asyncio.to_thread(estimator.warm_up)
        except ModelLoadFailure:
            estimator.dispose()
            raise
        except Exception as e:
            estimator.dispose()
            raise ModelLoadFailure(model_id, f"warm-up failed: {e}", e) from e
        return estimator

    async def _replace_estimator(self, incoming: PoseEstimator) -> None:
        await self._drain_inflight()
        outgoing, self.estimator = self.estimator, incoming
        if outgoing is not None:
            outgoing.dispose()

    def _report_swap_failure(self, error: ModelLoadFailure) -> None:
        self.stats.swaps_failed += 1
        logger.error(f"Model swap aborted, keeping '{self.model_id}': {error}")
        self.feedback_history.appendleft(FeedbackEvent(
            type=FeedbackType.ERROR,
            text=f"Could not switch to {error.model_id}; still using {self.model_id}.",
            rule_id="model_swap",
            timestamp=self._last_timestamp or 0,
        ))
        self._emit_status(PipelineStatusKind.ERROR, str(error), self.model_id)

    # -------------------------------------------------------------------------
    # Outputs
    # -------------------------------------------------------------------------

    def _publish(self, snapshot: PipelineSnapshot) -> None:
        for listener in self._snapshot_listeners:
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Snapshot listener failed: {e}")

    def _emit_status(self, kind: PipelineStatusKind, message: str, model_id: Optional[str]) -> None:
        event = PipelineStatusEvent(kind=kind, message=message, model_id=model_id, timestamp=self._last_timestamp)
        for listener in self._status_listeners:
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Status listener failed: {e}")
