"""
Job data models.

A job is one end-to-end processing request for a single artifact.
Jobs are not persisted; they live for the duration of the request.

All request-facing models use Pydantic for validation.
State transitions are validated externally (see state.py).
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..routing.formats import InputClass
from ..routing.router import Operation

QUALITY_MIN = 1
QUALITY_MAX = 100


class JobState(str, Enum):
    """
    Job lifecycle state.

    admitted → running → streaming → completed, with failed reachable from
    every non-terminal state and timed_out from running.
    """

    ADMITTED = "admitted"  # Accepted, workspace open, not yet executing
    RUNNING = "running"  # Holding a slot, backend executing
    STREAMING = "streaming"  # Artifact verified, bytes being sent
    COMPLETED = "completed"  # Client received the whole artifact
    FAILED = "failed"  # Any error, including disconnect mid-stream
    TIMED_OUT = "timed_out"  # Backend exceeded the deadline


def clamp_quality(value: int) -> int:
    """Clamp a quality value into 1..100."""
    return max(QUALITY_MIN, min(QUALITY_MAX, value))


class CropRect(BaseModel):
    """Crop box in source pixels (after rotation)."""

    model_config = ConfigDict(extra="ignore")

    left: float = 0
    top: float = 0
    width: float = Field(gt=0)
    height: float = Field(gt=0)


class EditDescriptor(BaseModel):
    """
    Client-side edits applied before resizing.

    Attributes:
        rotate: Clockwise rotation in degrees
        crop: Crop box applied after rotation
    """

    model_config = ConfigDict(extra="ignore")

    rotate: float = 0
    crop: Optional[CropRect] = None

    @property
    def is_empty(self) -> bool:
        return not self.rotate and self.crop is None


class JobOptions(BaseModel):
    """
    Transformation knobs.

    Quality is clamped rather than rejected; width and height must be
    positive when given. Each backend ignores the knobs it has no use for.
    """

    model_config = ConfigDict(extra="forbid")

    quality: int = 80
    width: Optional[int] = Field(default=None, gt=0)
    height: Optional[int] = Field(default=None, gt=0)
    upscale: bool = False
    edits: Optional[EditDescriptor] = None
    watermark: Optional[str] = None

    @field_validator("quality")
    @classmethod
    def _clamp_quality(cls, value: int) -> int:
        return clamp_quality(value)

    @field_validator("watermark")
    @classmethod
    def _blank_watermark(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None

    @property
    def has_resize(self) -> bool:
        return self.width is not None or self.height is not None


class InputArtifact(BaseModel):
    """
    The stored upload, after classification.

    Immutable once classified; lives inside the job workspace.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    path: Path
    original_name: str
    declared_extension: str
    format: str
    input_class: InputClass
    size_bytes: int

    @property
    def stem(self) -> str:
        return Path(self.original_name).stem or "file"


class Job(BaseModel):
    """
    One processing request.

    Mutable: the engine advances `state` through validated transitions.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    original_name: str
    target_format: str
    operation: Operation = Operation.CONVERT
    options: JobOptions = Field(default_factory=JobOptions)
    input: Optional[InputArtifact] = None
    state: JobState = JobState.ADMITTED
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
