"""
Pose API Schemas

Pydantic models for pose-related API requests and responses.
These define the JSON structure for communication with frontend.
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List

from gorillamode.core.domain import BodyPart, Keypoint, PoseEstimate

from .analysis import AngleSampleSchema


class KeypointSchema(BaseModel):
    """
    Single body keypoint in API response.

    Coordinates are normalized (0.0 to 1.0).
    Frontend multiplies by canvas dimensions to get pixel positions.
    """
    id: int = Field(..., ge=0, description="Landmark index")
    x: float = Field(..., ge=0.0, le=1.0, description="Horizontal position (0=left, 1=right)")
    y: float = Field(..., ge=0.0, le=1.0, description="Vertical position (0=top, 1=bottom)")
    z: Optional[float] = Field(None, description="Depth (negative=closer to camera)")
    confidence: float = Field(..., ge=0.0, le=1.0, description="Detection confidence")
    body_part: Optional[str] = Field(None, description="Body part name (e.g., 'LEFT_KNEE')")

    class Config:
        json_schema_extra = {
            "example": {
                "id": 25,
                "x": 0.45,
                "y": 0.72,
                "z": -0.15,
                "confidence": 0.95,
                "body_part": "LEFT_KNEE"
            }
        }

    @classmethod
    def from_domain(cls, kp: Keypoint) -> "KeypointSchema":
        try:
            body_part: Optional[str] = BodyPart(kp.id).name
        except ValueError:
            body_part = None
        return cls(id=kp.id, x=kp.x, y=kp.y, z=kp.z, confidence=kp.confidence, body_part=body_part)


class PoseEstimateSchema(BaseModel):
    """
    Keypoints detected in one frame by one model.
    """
    model_config = ConfigDict(protected_namespaces=())

    keypoints: List[KeypointSchema] = Field(..., description="Detected keypoints (empty if nobody found)")
    frame_timestamp: int = Field(..., ge=0, description="Frame timestamp in milliseconds")
    model_id: str = Field(..., description="Model that produced the estimate")

    @classmethod
    def from_domain(cls, estimate: PoseEstimate) -> "PoseEstimateSchema":
        return cls(
            keypoints=[KeypointSchema.from_domain(kp) for kp in estimate.keypoints],
            frame_timestamp=estimate.frame_timestamp,
            model_id=estimate.model_id,
        )


class PoseDetectionRequest(BaseModel):
    """
    Request to detect pose in a base64-encoded image.

    Used for single-frame detection via REST API.
    """
    image_base64: str = Field(..., description="Base64 encoded JPEG/PNG image")
    model: Optional[str] = Field(None, description="Model identifier (default model if omitted)")
    timestamp_ms: int = Field(0, ge=0, description="Optional timestamp")
    frame_number: int = Field(0, ge=0, description="Optional frame number")

    class Config:
        json_schema_extra = {
            "example": {
                "image_base64": "/9j/4AAQSkZJRg...",
                "model": "BlazePose",
                "timestamp_ms": 0,
                "frame_number": 0
            }
        }


class PoseDetectionResponse(BaseModel):
    """
    Response from pose detection.
    """
    success: bool = Field(..., description="Whether detection succeeded")
    pose: Optional[PoseEstimateSchema] = Field(None, description="Detected pose (null on failure)")
    angles: List[AngleSampleSchema] = Field(default_factory=list, description="Joint angles measurable in this frame")
    error: Optional[str] = Field(None, description="Error message if failed")
    processing_time_ms: float = Field(..., description="Time taken to process in milliseconds")
