"""Generation job data model."""

from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class GenerationKind(str, Enum):
    IMAGE = "image"
    TEXTURE = "texture"
    VIDEO_MOTION = "video-motion"
    VIDEO_IMAGE_TO_VIDEO = "video-image-to-video"
    VIDEO_TEXT_TO_VIDEO = "video-text-to-video"
    VIDEO_UPSCALE = "video-upscale"

    @property
    def is_video(self) -> bool:
        return self.value.startswith("video-")


class GenerationStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (GenerationStatus.COMPLETED, GenerationStatus.FAILED)


class FailureReason(str, Enum):
    UPSTREAM_FAILED = "upstream_failed"
    TIMEOUT = "timeout"
    CONTRACT_VIOLATION = "contract_violation"
    INTERNAL_ERROR = "internal_error"  # poll loop crashed


class GenerationJob(BaseModel):
    """Tracks one upstream generation from submission to a terminal state."""
    id: str
    kind: GenerationKind
    prompt: str
    status: GenerationStatus = GenerationStatus.PENDING
    result_url: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    attempts: int = 0
    failure_reason: Optional[FailureReason] = None
    error: Optional[str] = None
    model_id: Optional[str] = None
    source_id: Optional[str] = None  # uploaded asset or prior generation this job derives from
    completed_at: Optional[datetime] = None

    model_config = {"frozen": True, "protected_namespaces": ()}
