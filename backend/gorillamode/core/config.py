"""
Pipeline Configuration

Pydantic models holding every tunable of the analysis pipeline, with
defaults suited to a 30 fps webcam stream.

Values can be overridden from a JSON file:

    {
        "queue": {"capacity": 2},
        "estimator": {"default_model": "BlazePose", "inference_timeout_s": 0.5,
                      "movenet_lightning_path": "models/movenet_lightning.tflite"},
        "tier": {"hysteresis_cycles": 3}
    }

The path comes from load_config(path) or the GORILLAMODE_CONFIG variable.
"""

import json
import logging
import os
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, Field, ValidationError, model_validator

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "GORILLAMODE_CONFIG"


class QueueConfig(BaseModel):
    capacity: int = Field(2, ge=1, description="Frames buffered between capture and inference")


class EstimatorConfig(BaseModel):
    default_model: str = Field("BlazePose", description="Model used when a session starts without one")
    inference_timeout_s: float = Field(0.5, gt=0.0, description="Time budget for one estimate() call")
    min_detection_confidence: float = Field(0.5, ge=0.0, le=1.0)
    min_tracking_confidence: float = Field(0.5, ge=0.0, le=1.0)
    movenet_lightning_path: Optional[str] = Field(None, description="MoveNet Lightning .tflite file")
    movenet_thunder_path: Optional[str] = Field(None, description="MoveNet Thunder .tflite file")


class StabilizerConfig(BaseModel):
    window_size: int = Field(5, ge=1, description="Observations kept per keypoint")
    min_confidence: float = Field(0.3, ge=0.0, le=1.0, description="Below this an observation is ignored")
    max_missing_frames: int = Field(2, ge=0, description="Low-confidence frames tolerated before 'missing'")
    max_gap_frames: int = Field(10, ge=0, description="Gap after which the ring restarts")

    @model_validator(mode="after")
    def _gap_covers_missing(self) -> "StabilizerConfig":
        if self.max_gap_frames < self.max_missing_frames:
            raise ValueError("max_gap_frames must be >= max_missing_frames")
        return self


class AngleConfig(BaseModel):
    use_depth: bool = Field(False, description="Use z when every keypoint of an angle has it")


class FeedbackConfig(BaseModel):
    history_size: int = Field(10, ge=1, description="Samples kept per angle label for trend rules")
    max_events: int = Field(5, ge=1, description="Feedback events retained for display")


class TierConfig(BaseModel):
    window_cycles: int = Field(30, ge=1, description="Cycles in the rolling score window")
    clean_weight: float = Field(0.6, ge=0.0, le=1.0)
    confidence_weight: float = Field(0.4, ge=0.0, le=1.0)
    confidence_threshold: float = Field(0.5, ge=0.0, le=1.0)
    bronze_threshold: float = Field(40.0, ge=0.0, le=100.0)
    silver_threshold: float = Field(65.0, ge=0.0, le=100.0)
    gold_threshold: float = Field(85.0, ge=0.0, le=100.0)
    hysteresis_cycles: int = Field(3, ge=1)

    @model_validator(mode="after")
    def _check_ordering(self) -> "TierConfig":
        if not (self.bronze_threshold <= self.silver_threshold <= self.gold_threshold):
            raise ValueError("tier thresholds must be ordered bronze <= silver <= gold")
        if abs(self.clean_weight + self.confidence_weight - 1.0) > 1e-6:
            raise ValueError("clean_weight + confidence_weight must equal 1.0")
        return self


class PipelineConfig(BaseModel):
    queue: QueueConfig = Field(default_factory=QueueConfig)
    estimator: EstimatorConfig = Field(default_factory=EstimatorConfig)
    stabilizer: StabilizerConfig = Field(default_factory=StabilizerConfig)
    angles: AngleConfig = Field(default_factory=AngleConfig)
    feedback: FeedbackConfig = Field(default_factory=FeedbackConfig)
    tier: TierConfig = Field(default_factory=TierConfig)


_CONFIG_CACHE: Optional[PipelineConfig] = None


def load_config(path: Optional[Union[str, Path]] = None) -> PipelineConfig:
    """
    Load configuration from a JSON file.

    A missing file yields the defaults. A file that exists but cannot be
    parsed or validated raises ValueError.
    """
    if path is None:
        path = os.environ.get(CONFIG_ENV_VAR)
    if not path:
        return PipelineConfig()

    p = Path(path).expanduser()
    if not p.exists():
        logger.warning(f"Config file {p} not found, using defaults")
        return PipelineConfig()

    try:
        raw = json.loads(p.read_text(encoding="utf-8"))
        return PipelineConfig.model_validate(raw)
    except (json.JSONDecodeError, ValidationError) as e:
        raise ValueError(f"Invalid config file {p}: {e}") from e


def get_config() -> PipelineConfig:
    """Process-wide configuration, loaded once."""
    global _CONFIG_CACHE
    if _CONFIG_CACHE is None:
        _CONFIG_CACHE = load_config()
    return _CONFIG_CACHE
