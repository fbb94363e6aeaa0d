"""
Tests for job state transitions.

Terminal states are immutable; every illegal move raises.
"""

import pytest

from filetool.jobs.errors import InvalidStateTransitionError
from filetool.jobs.models import Job, JobOptions, JobState
from filetool.jobs.state import can_transition_job, is_job_terminal, transition_job


def _job() -> Job:
    return Job(original_name="photo.png", target_format="webp")


class TestTransitions:

    def test_happy_path(self):
        job = _job()
        for state in (JobState.RUNNING, JobState.STREAMING, JobState.COMPLETED):
            transition_job(job, state)
        assert job.state == JobState.COMPLETED
        assert job.finished_at is not None
        assert job.failure_reason is None

    @pytest.mark.parametrize("state", [JobState.ADMITTED, JobState.RUNNING, JobState.STREAMING])
    def test_failed_from_any_live_state(self, state):
        assert can_transition_job(state, JobState.FAILED)

    def test_timed_out_only_from_running(self):
        assert can_transition_job(JobState.RUNNING, JobState.TIMED_OUT)
        assert not can_transition_job(JobState.ADMITTED, JobState.TIMED_OUT)
        assert not can_transition_job(JobState.STREAMING, JobState.TIMED_OUT)

    def test_failure_reason_recorded(self):
        job = _job()
        transition_job(job, JobState.RUNNING)
        transition_job(job, JobState.TIMED_OUT, reason="deadline exceeded")
        assert job.failure_reason == "deadline exceeded"

    def test_skipping_states_rejected(self):
        job = _job()
        with pytest.raises(InvalidStateTransitionError):
            transition_job(job, JobState.COMPLETED)
        assert job.state == JobState.ADMITTED


class TestTerminalImmutability:

    @pytest.mark.parametrize("terminal", [JobState.COMPLETED, JobState.FAILED, JobState.TIMED_OUT])
    def test_no_way_out(self, terminal):
        assert is_job_terminal(terminal)
        for target in JobState:
            assert not can_transition_job(terminal, target)

    def test_error_names_states(self):
        job = _job()
        transition_job(job, JobState.FAILED, reason="boom")
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            transition_job(job, JobState.RUNNING)
        assert exc_info.value.current_state == "failed"
        assert exc_info.value.target_state == "running"


class TestOptions:

    @pytest.mark.parametrize("raw, expected", [(150, 100), (0, 1), (-5, 1), (55, 55)])
    def test_quality_clamped(self, raw, expected):
        assert JobOptions(quality=raw).quality == expected

    def test_blank_watermark_is_none(self):
        assert JobOptions(watermark="   ").watermark is None
        assert JobOptions(watermark=" DRAFT ").watermark == "DRAFT"

    def test_non_positive_size_rejected(self):
        from pydantic import ValidationError

        with pytest.raises(ValidationError):
            JobOptions(width=0)

    def test_unknown_option_rejected(self):
        from pydantic import ValidationError

        with pytest.raises(ValidationError):
            JobOptions(colour="red")
