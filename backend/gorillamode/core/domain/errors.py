"""
Pipeline Errors

Per-cycle errors are absorbed by the orchestrator and turn into sparser
output. FrameSourceFailure, and a ModelLoadFailure with nothing to fall
back to, stop the pipeline.
"""
from typing import Optional


class PipelineError(Exception):
    """Base class for all pose-pipeline errors."""


class InferenceTimeout(PipelineError):
    """An estimate() call exceeded its time budget. The cycle is dropped."""

    def __init__(self, model_id: str, budget_s: float):
        super().__init__(f"Model '{model_id}' exceeded {budget_s * 1000:.0f} ms inference budget")
        self.model_id = model_id
        self.budget_s = budget_s


class InsufficientKeypoints(PipelineError):
    """Keypoints needed for an angle are missing. The angle is omitted."""

    def __init__(self, label: str, missing_ids: list[int]):
        super().__init__(f"Angle '{label}' missing keypoints {missing_ids}")
        self.label = label
        self.missing_ids = missing_ids


class ModelLoadFailure(PipelineError):
    """A pose model could not be created or warmed up."""

    def __init__(self, model_id: str, reason: str, cause: Optional[BaseException] = None):
        super().__init__(f"Could not load model '{model_id}': {reason}")
        self.model_id = model_id
        self.reason = reason
        self.cause = cause


class FrameSourceFailure(PipelineError):
    """The frame source is gone (camera lost). Fatal to the pipeline."""


class RuleNotEvaluable(PipelineError):
    """A feedback rule lacks the angles or history it needs this cycle."""
