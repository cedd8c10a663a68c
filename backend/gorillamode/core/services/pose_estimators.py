"""
Pose Estimators

Interchangeable pose-estimation backends behind one small interface:
estimate(frame), warm_up(), dispose(). MediaPipe Pose and MoveNet (TFLite)
are provided; concrete models are created by an EstimatorRegistry keyed by
the identifier the model selector sends.

Note: MediaPipe's type stubs are incomplete, so we use type: ignore comments
for mp.solutions access. This is a known issue with the mediapipe package.
"""

import asyncio
import base64
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Optional

import cv2
import numpy as np

from ..config import EstimatorConfig
from ..domain.errors import ModelLoadFailure
from ..domain.pose import BodyPart, Frame, Keypoint, PoseEstimate

logger = logging.getLogger(__name__)


class PoseEstimator(ABC):
    """
    A pose-estimation model.

    Instances are not reentrant: the orchestrator never has more than one
    estimate() call in flight per instance.
    """

    model_id: str

    @abstractmethod
    async def estimate(self, frame: Frame) -> PoseEstimate:
        """Detect keypoints in a frame. Empty keypoints if nobody is visible."""

    @abstractmethod
    def warm_up(self) -> None:
        """Load weights and run any first-inference setup. Raises on failure."""

    @abstractmethod
    def dispose(self) -> None:
        """Release model resources."""


class MediaPipePoseEstimator(PoseEstimator):
    """
    MediaPipe Pose (BlazePose) estimator.

    The three model complexities (0 = lite, 1 = full, 2 = heavy) are
    registered as separate models so they can be swapped at runtime.
    Inference runs on a worker thread so the event loop keeps accepting
    frames while the model is busy.

    Usage:
        estimator = MediaPipePoseEstimator("BlazePose", model_complexity=1)
        estimator.warm_up()
        pose = await estimator.estimate(frame)
        estimator.dispose()
    """

    # MediaPipe solutions (type stubs are incomplete, so we store as Any)
    _mp_pose: Any

    def __init__(
        self,
        model_id: str,
        model_complexity: int = 1,
        min_detection_confidence: float = 0.5,
        min_tracking_confidence: float = 0.5,
    ):
        """
        Args:
            model_id: Identifier reported on every PoseEstimate
            model_complexity: 0, 1, or 2. Higher = more accurate but slower.
            min_detection_confidence: Minimum confidence for person detection.
            min_tracking_confidence: Minimum confidence for landmark tracking.
        """
        self.model_id = model_id
        self.model_complexity = model_complexity
        self.min_detection_confidence = min_detection_confidence
        self.min_tracking_confidence = min_tracking_confidence
        self.pose: Optional[Any] = None

    def warm_up(self) -> None:
        """Build the MediaPipe graph and push one blank frame through it."""
        if self.pose is not None:
            return
        try:
            import mediapipe as mp
        except ImportError as e:
            raise ModelLoadFailure(self.model_id, "mediapipe is not installed", e) from e

        # MediaPipe's type stubs don't include solutions, but it exists at runtime
        self._mp_pose = mp.solutions.pose  # type: ignore[attr-defined]
        self.pose = self._mp_pose.Pose(
            static_image_mode=False,
            model_complexity=self.model_complexity,
            smooth_landmarks=True,
            enable_segmentation=False,
            min_detection_confidence=self.min_detection_confidence,
            min_tracking_confidence=self.min_tracking_confidence,
        )
        self.pose.process(np.zeros((64, 64, 3), dtype=np.uint8))
        logger.info(f"Model '{self.model_id}' warmed up (complexity={self.model_complexity})")

    def dispose(self) -> None:
        """Release MediaPipe resources."""
        if self.pose is not None:
            self.pose.close()
            self.pose = None

    async def estimate(self, frame: Frame) -> PoseEstimate:
        image = frame.image
        timestamp_ms = frame.timestamp_ms
        return await asyncio.to_thread(self.detect_pose, image, timestamp_ms)

    # -------------------------------------------------------------------------
    # Synchronous detection (runs on the worker thread)
    # -------------------------------------------------------------------------

    def detect_pose(self, image: np.ndarray, timestamp_ms: int = 0) -> PoseEstimate:
        """
        Detect pose in a single image.

        Args:
            image: BGR image (OpenCV format) or RGB image
            timestamp_ms: Timestamp in milliseconds

        Returns:
            PoseEstimate with 33 keypoints, or no keypoints if no person detected
        """
        if self.pose is None:
            raise RuntimeError(f"Model '{self.model_id}' used before warm_up()")

        # Convert BGR to RGB if needed (MediaPipe expects RGB)
        if len(image.shape) == 3 and image.shape[2] == 3:
            image_rgb = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
        else:
            image_rgb = image

        results = self.pose.process(image_rgb)

        if not results.pose_landmarks:
            return PoseEstimate(keypoints=(), frame_timestamp=timestamp_ms, model_id=self.model_id)

        return PoseEstimate(
            keypoints=self._convert_landmarks(results.pose_landmarks.landmark),
            frame_timestamp=timestamp_ms,
            model_id=self.model_id,
        )

    def _convert_landmarks(self, mp_landmarks: Any) -> tuple[Keypoint, ...]:
        """Convert MediaPipe landmarks to keypoints, clamping x/y into the frame."""
        return tuple(
            Keypoint(
                id=i,
                x=min(max(float(mp_lm.x), 0.0), 1.0),
                y=min(max(float(mp_lm.y), 0.0), 1.0),
                z=float(mp_lm.z),
                confidence=min(max(float(mp_lm.visibility), 0.0), 1.0),
            )
            for i, mp_lm in enumerate(mp_landmarks)
        )


# =============================================================================
# MoveNet (TensorFlow Lite)
# =============================================================================

# MoveNet outputs the 17 COCO keypoints in this order
MOVENET_KEYPOINTS: tuple[BodyPart, ...] = (
    BodyPart.NOSE,
    BodyPart.LEFT_EYE,
    BodyPart.RIGHT_EYE,
    BodyPart.LEFT_EAR,
    BodyPart.RIGHT_EAR,
    BodyPart.LEFT_SHOULDER,
    BodyPart.RIGHT_SHOULDER,
    BodyPart.LEFT_ELBOW,
    BodyPart.RIGHT_ELBOW,
    BodyPart.LEFT_WRIST,
    BodyPart.RIGHT_WRIST,
    BodyPart.LEFT_HIP,
    BodyPart.RIGHT_HIP,
    BodyPart.LEFT_KNEE,
    BodyPart.RIGHT_KNEE,
    BodyPart.LEFT_ANKLE,
    BodyPart.RIGHT_ANKLE,
)


def load_tflite_interpreter(model_path: str) -> Any:
    """Create a TFLite interpreter with its tensors allocated."""
    import tensorflow as tf

    interpreter = tf.lite.Interpreter(model_path=model_path)
    interpreter.allocate_tensors()
    return interpreter


class MoveNetPoseEstimator(PoseEstimator):
    """
    MoveNet single-pose estimator running a .tflite file.

    Lightning (192x192 input) and Thunder (256x256) ship as separate model
    files; input size and dtype are read from the loaded model. Only the
    17 COCO keypoints exist, so heel and foot landmarks are never reported.

    Usage:
        estimator = MoveNetPoseEstimator("MoveNet", "movenet_lightning.tflite")
        estimator.warm_up()
        pose = await estimator.estimate(frame)
    """

    def __init__(
        self,
        model_id: str,
        model_path: Optional[str],
        min_detection_confidence: float = 0.5,
        interpreter_factory: Callable[[str], Any] = load_tflite_interpreter,
    ):
        self.model_id = model_id
        self.model_path = model_path
        self.min_detection_confidence = min_detection_confidence
        self.interpreter_factory = interpreter_factory
        self.interpreter: Optional[Any] = None

    def warm_up(self) -> None:
        """Load the model file and run one blank frame through it."""
        if self.interpreter is not None:
            return
        if not self.model_path or not Path(self.model_path).is_file():
            raise ModelLoadFailure(self.model_id, f"model file not found: {self.model_path}")
        try:
            interpreter = self.interpreter_factory(self.model_path)
        except ImportError as e:
            raise ModelLoadFailure(self.model_id, "tensorflow is not installed", e) from e

        input_details = interpreter.get_input_details()[0]
        self._input_index = input_details["index"]
        self._input_size = int(input_details["shape"][1])
        self._input_dtype = input_details["dtype"]
        self._output_index = interpreter.get_output_details()[0]["index"]
        self.interpreter = interpreter

        self.detect_pose(np.zeros((self._input_size, self._input_size, 3), dtype=np.uint8))
        logger.info(f"Model '{self.model_id}' warmed up (input {self._input_size}px)")

    def dispose(self) -> None:
        self.interpreter = None

    async def estimate(self, frame: Frame) -> PoseEstimate:
        return await asyncio.to_thread(self.detect_pose, frame.image, frame.timestamp_ms)

    def detect_pose(self, image: np.ndarray, timestamp_ms: int = 0) -> PoseEstimate:
        """
        Detect pose in a single BGR image.

        The image is padded to a square at the bottom/right before resizing,
        so the aspect ratio survives and coordinates map back by scaling.
        """
        if self.interpreter is None:
            raise RuntimeError(f"Model '{self.model_id}' used before warm_up()")

        height, width = image.shape[:2]
        side = max(height, width)
        padded = np.zeros((side, side, 3), dtype=np.uint8)
        padded[:height, :width] = image

        rgb = cv2.cvtColor(padded, cv2.COLOR_BGR2RGB)
        resized = cv2.resize(rgb, (self._input_size, self._input_size))
        batch = np.expand_dims(resized, axis=0).astype(self._input_dtype)

        self.interpreter.set_tensor(self._input_index, batch)
        self.interpreter.invoke()
        output = self.interpreter.get_tensor(self._output_index)

        return self._convert_output(output, width / side, height / side, timestamp_ms)

    def _convert_output(
        self,
        output: np.ndarray,
        x_extent: float,
        y_extent: float,
        timestamp_ms: int,
    ) -> PoseEstimate:
        """Map the [1, 1, 17, 3] (y, x, score) tensor onto BodyPart keypoints."""
        rows = np.asarray(output, dtype=float).reshape(-1, 3)[:len(MOVENET_KEYPOINTS)]
        if rows[:, 2].max() < self.min_detection_confidence:
            return PoseEstimate(keypoints=(), frame_timestamp=timestamp_ms, model_id=self.model_id)

        keypoints = tuple(
            Keypoint(
                id=int(part),
                x=min(max(x / x_extent, 0.0), 1.0),
                y=min(max(y / y_extent, 0.0), 1.0),
                confidence=min(max(score, 0.0), 1.0),
            )
            for part, (y, x, score) in zip(MOVENET_KEYPOINTS, rows.tolist())
        )
        return PoseEstimate(keypoints=keypoints, frame_timestamp=timestamp_ms, model_id=self.model_id)


# =============================================================================
# Registry
# =============================================================================

EstimatorFactory = Callable[[], PoseEstimator]


class EstimatorRegistry:
    """
    Maps model identifiers to estimator factories.

    Factories rather than instances: every session gets its own model,
    since models keep tracking state between frames.
    """

    def __init__(self):
        self._factories: dict[str, EstimatorFactory] = {}

    def register(self, model_id: str, factory: EstimatorFactory) -> None:
        if model_id in self._factories:
            raise ValueError(f"Model '{model_id}' is already registered")
        self._factories[model_id] = factory

    def create(self, model_id: str) -> PoseEstimator:
        """Instantiate a registered model (not yet warmed up)."""
        factory = self._factories.get(model_id)
        if factory is None:
            raise ModelLoadFailure(model_id, f"unknown model, available: {self.available()}")
        try:
            return factory()
        except ModelLoadFailure:
            raise
        except Exception as e:
            raise ModelLoadFailure(model_id, str(e), e) from e

    def available(self) -> list[str]:
        return list(self._factories)

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._factories


def default_registry(config: Optional[EstimatorConfig] = None) -> EstimatorRegistry:
    """Registry with the MediaPipe and MoveNet models offered in the model selector."""
    config = config or EstimatorConfig()
    registry = EstimatorRegistry()

    for model_id, complexity in (("Baseline", 0), ("BlazePose", 1), ("BlazePoseHeavy", 2)):
        registry.register(
            model_id,
            lambda model_id=model_id, complexity=complexity: MediaPipePoseEstimator(
                model_id,
                model_complexity=complexity,
                min_detection_confidence=config.min_detection_confidence,
                min_tracking_confidence=config.min_tracking_confidence,
            ),
        )

    for model_id, path in (("MoveNet", config.movenet_lightning_path), ("MoveNetThunder", config.movenet_thunder_path)):
        registry.register(
            model_id,
            lambda model_id=model_id, path=path: MoveNetPoseEstimator(
                model_id,
                path,
                min_detection_confidence=config.min_detection_confidence,
            ),
        )
    return registry


def decode_base64_image(base64_image: str) -> Optional[np.ndarray]:
    """
    Decode a base64-encoded JPEG/PNG into a BGR image.

    Returns None if the payload is not a decodable image.
    """
    try:
        image_bytes = base64.b64decode(base64_image, validate=True)
    except ValueError:
        return None

    nparr = np.frombuffer(image_bytes, np.uint8)
    if nparr.size == 0:
        return None
    return cv2.imdecode(nparr, cv2.IMREAD_COLOR)
