"""
Job lifecycle errors.

Programming errors in the job state machine. Never user-facing: they do
not inherit from FileToolError and surface as a 500 if they escape.
"""


class JobError(Exception):
    """Base exception for job lifecycle failures."""
    pass


class InvalidStateTransitionError(JobError):
    """Raised when attempting an illegal state transition."""

    def __init__(self, job_id: str, current_state: str, target_state: str):
        self.job_id = job_id
        self.current_state = current_state
        self.target_state = target_state
        super().__init__(
            f"Invalid state transition for job {job_id}: "
            f"{current_state} -> {target_state}"
        )
