"""
Job error taxonomy.

All errors inherit from FileToolError for easy catching.
Each error knows the HTTP status and machine-readable code it maps to,
so the HTTP layer renders them without inspecting types.

Pre-admission (never consume a slot): 400 family
Post-admission (slot + workspace released before the response): 500/503 family
"""

from typing import Optional


class FileToolError(Exception):
    """Base exception for all job failures."""

    code: str = "error"
    status_code: int = 500

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(detail)

    def to_dict(self) -> dict:
        """Serialize to the `{error, detail}` response body."""
        return {"error": self.code, "detail": self.detail}


# ============================================================================
# 400: request cannot be processed as submitted
# ============================================================================

class ValidationError(FileToolError):
    """
    Request is malformed.

    Raised for:
    - Missing file or target format
    - More than one file
    - Oversized upload
    - Identity conversion without compress
    - Malformed option values
    """

    code = "validation_error"
    status_code = 400


class UnsafeContentError(FileToolError):
    """Markup-capable input embeds script, handlers or remote references."""

    code = "unsafe_content"
    status_code = 400


class TypeMismatchError(FileToolError):
    """Declared extension disagrees with the detected content type."""

    code = "type_mismatch"
    status_code = 400

    def __init__(self, declared: str, detected: str):
        self.declared = declared
        self.detected = detected
        super().__init__(
            f"File extension '.{declared}' does not match detected content type '{detected}'"
        )


class UnsupportedInputError(FileToolError):
    """Content type could not be detected and the extension is not allow-listed."""

    code = "unsupported_input"
    status_code = 400


class UnsupportedFormatError(FileToolError):
    """Requested target format is unknown or unreachable from this input."""

    code = "unsupported_format"
    status_code = 400


# ============================================================================
# 500: the server could not produce the artifact
# ============================================================================

class ToolUnavailableError(FileToolError):
    """Required external tool is absent from the capability registry."""

    code = "tool_unavailable"
    status_code = 500

    def __init__(self, tool: str, reason: str = ""):
        self.tool = tool
        message = f"Required tool '{tool}' is not available on this server"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class ProcessingFailure(FileToolError):
    """
    Backend failed to produce the artifact.

    Carries the underlying tool diagnostic, already truncated by the
    process runner.
    """

    code = "processing_failure"
    status_code = 500

    def __init__(
        self,
        detail: str,
        tool: Optional[str] = None,
        exit_code: Optional[int] = None,
    ):
        self.tool = tool
        self.exit_code = exit_code
        super().__init__(detail)


# ============================================================================
# 503: transient overload
# ============================================================================

class JobTimedOutError(FileToolError):
    """Backend execution exceeded the configured deadline."""

    code = "timed_out"
    status_code = 503

    def __init__(self, job_id: str, timeout_seconds: float):
        self.job_id = job_id
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Job {job_id} exceeded the {timeout_seconds:g}s processing deadline")


class CapacityExceededError(FileToolError):
    """Admission waiter queue is full."""

    code = "capacity_exceeded"
    status_code = 503


def truncate_diagnostic(text: Optional[str], limit: int) -> str:
    """
    Trim tool output to a bounded length.

    Keeps the tail, where tools print the actual failure.
    """
    if not text:
        return ""
    text = text.strip()
    if limit <= 0 or len(text) <= limit:
        return text
    return "…" + text[-limit:]
