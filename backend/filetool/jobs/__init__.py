"""
Job engine: lifecycle and orchestration for single-artifact jobs.

Jobs are in-memory only and live for the duration of one request.

Not included:
- Job persistence or history
- Result caching across jobs
"""

from .errors import (
    JobError,
    InvalidStateTransitionError,
)
from .models import (
    JobState,
    CropRect,
    EditDescriptor,
    JobOptions,
    InputArtifact,
    Job,
)
from .engine import JobEngine, JobRequest, JobResult

__all__ = [
    # Errors
    "JobError",
    "InvalidStateTransitionError",
    # Models
    "JobState",
    "CropRect",
    "EditDescriptor",
    "JobOptions",
    "InputArtifact",
    "Job",
    # Engine
    "JobEngine",
    "JobRequest",
    "JobResult",
]
