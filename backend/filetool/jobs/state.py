"""
State transition validation for jobs.

Job lifecycle: ADMITTED → RUNNING → STREAMING → COMPLETED
FAILED is reachable from every non-terminal state.
TIMED_OUT is reachable from RUNNING only.

INVARIANT: Terminal job states (COMPLETED, FAILED, TIMED_OUT) are immutable.
Once a job enters a terminal state, no state transition is allowed.
"""

import logging
from datetime import datetime, timezone
from typing import FrozenSet, Optional, Set, Tuple

from .errors import InvalidStateTransitionError
from .models import Job, JobState

logger = logging.getLogger(__name__)


# ============================================================================
# TERMINAL STATE INVARIANT
# ============================================================================
TERMINAL_JOB_STATES: FrozenSet[JobState] = frozenset({
    JobState.COMPLETED,
    JobState.FAILED,
    JobState.TIMED_OUT,
})


_JOB_TRANSITIONS: Set[Tuple[JobState, JobState]] = {
    # Normal flow
    (JobState.ADMITTED, JobState.RUNNING),
    (JobState.RUNNING, JobState.STREAMING),
    (JobState.STREAMING, JobState.COMPLETED),

    # Failures
    (JobState.ADMITTED, JobState.FAILED),
    (JobState.RUNNING, JobState.FAILED),
    (JobState.STREAMING, JobState.FAILED),

    # Deadline
    (JobState.RUNNING, JobState.TIMED_OUT),
}


def is_job_terminal(state: JobState) -> bool:
    """True if the state is terminal (immutable)."""
    return state in TERMINAL_JOB_STATES


def can_transition_job(from_state: JobState, to_state: JobState) -> bool:
    """
    Check if a job state transition is legal.

    INVARIANT: Terminal states cannot transition to any other state.
    """
    if is_job_terminal(from_state):
        return False
    return (from_state, to_state) in _JOB_TRANSITIONS


def transition_job(job: Job, to_state: JobState, reason: Optional[str] = None) -> None:
    """
    Move a job to a new state.

    Args:
        job: Job to update in place
        to_state: Target state
        reason: Failure reason, recorded for FAILED / TIMED_OUT

    Raises:
        InvalidStateTransitionError: If the transition is not allowed
    """
    if not can_transition_job(job.state, to_state):
        raise InvalidStateTransitionError(job.id, job.state.value, to_state.value)

    logger.info(f"[Job] {job.id}: {job.state.value} -> {to_state.value}")
    job.state = to_state
    if is_job_terminal(to_state):
        job.finished_at = datetime.now(timezone.utc)
        if reason:
            job.failure_reason = reason
