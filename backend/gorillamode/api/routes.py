"""
REST API Routes

FastAPI routes for model discovery and single-image pose detection.
Live analysis runs over the WebSocket endpoint.
"""

import asyncio
import importlib.util
import time
import logging
from fastapi import APIRouter

from .schemas import (
    PoseDetectionRequest,
    PoseDetectionResponse,
    PoseEstimateSchema,
    AngleSampleSchema,
    AngleDefinitionSchema,
    ModelListResponse,
    HealthResponse,
)
from .websocket import manager
from gorillamode import __version__
from gorillamode.core.config import get_config
from gorillamode.core.domain import Frame, InferenceTimeout, ModelLoadFailure
from gorillamode.core.services import (
    AngleEngine,
    DEFAULT_ANGLE_DEFINITIONS,
    KeypointStabilizer,
    PoseEstimator,
    decode_base64_image,
)

# Configure logging
logger = logging.getLogger(__name__)

# Create router
router = APIRouter()

# =============================================================================
# Health Check
# =============================================================================

@router.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="Health check endpoint"
)
async def health_check() -> HealthResponse:
    """
    Check if the API is running and MediaPipe is installed.

    Returns:
        Health status and version information
    """
    return HealthResponse(
        status="healthy",
        version=__version__,
        mediapipe_available=importlib.util.find_spec("mediapipe") is not None,
        active_sessions=len(manager.pipelines),
    )


# =============================================================================
# Models and angle definitions
# =============================================================================

@router.get(
    "/models",
    response_model=ModelListResponse,
    tags=["Models"],
    summary="List selectable pose models"
)
async def list_models() -> ModelListResponse:
    """Identifiers accepted by start_session / select_model."""
    return ModelListResponse(
        models=manager.registry.available(),
        default=get_config().estimator.default_model,
    )


@router.get(
    "/angles/definitions",
    response_model=list[AngleDefinitionSchema],
    tags=["Models"],
    summary="Joint angles tracked by the pipeline"
)
async def list_angle_definitions() -> list[AngleDefinitionSchema]:
    return [AngleDefinitionSchema.from_domain(d) for d in DEFAULT_ANGLE_DEFINITIONS]


# =============================================================================
# Pose Detection
# =============================================================================

def _dispose_after(task: asyncio.Future, estimator: PoseEstimator) -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.debug(f"Late pose detection failed: {task.exception()}")
    estimator.dispose()


@router.post(
    "/pose/detect",
    response_model=PoseDetectionResponse,
    tags=["Pose Detection"],
    summary="Detect pose in a single image"
)
async def detect_pose(request: PoseDetectionRequest) -> PoseDetectionResponse:
    """
    Detect human pose in a base64-encoded image.

    This endpoint is useful for:
    - Testing a model on single images
    - Checking which angles are measurable from a camera position

    For real-time analysis, use the WebSocket endpoint instead.

    Args:
        request: Image data, model and optional metadata

    Returns:
        Detected keypoints and joint angles, or error if detection failed
    """
    start_time = time.time()
    config = get_config()
    model_id = request.model or config.estimator.default_model

    def failure(error: str) -> PoseDetectionResponse:
        return PoseDetectionResponse(
            success=False,
            pose=None,
            error=error,
            processing_time_ms=(time.time() - start_time) * 1000,
        )

    image = decode_base64_image(request.image_base64)
    if image is None:
        return failure("Could not decode image data")

    try:
        estimator = manager.registry.create(model_id)
    except ModelLoadFailure as e:
        return failure(str(e))

    try:
        await asyncio.to_thread(estimator.warm_up)
    except Exception as e:
        estimator.dispose()
        logger.error(f"Pose detection failed: {e}")
        return failure(str(e))

    budget = config.estimator.inference_timeout_s
    task = asyncio.ensure_future(estimator.estimate(Frame(request.timestamp_ms, image, request.frame_number)))
    done, _ = await asyncio.wait({task}, timeout=budget)
    if not done:
        # The model is still reading the image; dispose it once the call returns.
        task.add_done_callback(lambda t: _dispose_after(t, estimator))
        error = InferenceTimeout(model_id, budget)
        logger.warning(str(error))
        return failure(str(error))

    estimator.dispose()
    try:
        estimate = task.result()
    except Exception as e:
        logger.error(f"Pose detection failed: {e}")
        return failure(str(e))

    # A single frame has no history, so stabilize with a one-frame window.
    stabilizer = KeypointStabilizer(window_size=1, min_confidence=config.stabilizer.min_confidence)
    angles = AngleEngine(use_depth=config.angles.use_depth).compute(stabilizer.update(estimate))

    if estimate.is_empty:
        return PoseDetectionResponse(
            success=False,
            pose=PoseEstimateSchema.from_domain(estimate),
            error="No person detected in image",
            processing_time_ms=(time.time() - start_time) * 1000,
        )

    return PoseDetectionResponse(
        success=True,
        pose=PoseEstimateSchema.from_domain(estimate),
        angles=[AngleSampleSchema.from_domain(a) for a in angles],
        error=None,
        processing_time_ms=(time.time() - start_time) * 1000,
    )
