"""
File processing endpoint.

Thin HTTP adapter over the job engine: parse the multipart form, build a
JobRequest, hand the verified artifact to the streamer. All failures are
FileToolErrors rendered by the app-level exception handler.

Usage:
    POST /api/tools/file/process  (multipart/form-data)
    Fields: file, targetFormat|target, quality, width, height, upscale,
            edits (JSON), watermark, operation|mode
"""

import asyncio
import json
import logging
from functools import partial
from typing import List, Optional

from fastapi import APIRouter, Request, Response
from pydantic import ValidationError as PydanticValidationError
from starlette.datastructures import FormData, UploadFile
from starlette.types import Receive

from ..errors import ValidationError
from ..jobs.engine import JobEngine, JobRequest, JobResult
from ..jobs.models import EditDescriptor, JobOptions
from ..routing.router import Operation

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tools/file", tags=["filetool"])

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off"})

# Non-standard status used by proxies for a client that hung up
CLIENT_CLOSED_REQUEST = 499


# ============================================================================
# FORM PARSING
# ============================================================================

def _text_field(form: FormData, *names: str) -> Optional[str]:
    """First non-blank string value among the given field names."""
    for name in names:
        for value in form.getlist(name):
            if isinstance(value, str) and value.strip():
                return value.strip()
    return None


def _int_field(form: FormData, name: str) -> Optional[int]:
    raw = _text_field(form, name)
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer, got {raw!r}")


def _positive_int_field(form: FormData, name: str) -> Optional[int]:
    value = _int_field(form, name)
    if value is not None and value <= 0:
        raise ValidationError(f"{name} must be a positive integer")
    return value


def _bool_field(form: FormData, name: str) -> bool:
    raw = _text_field(form, name)
    if raw is None:
        return False
    lowered = raw.lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValidationError(f"{name} must be true or false, got {raw!r}")


def _edits_field(form: FormData) -> Optional[EditDescriptor]:
    raw = _text_field(form, "edits")
    if raw is None:
        return None
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValidationError(f"edits is not valid JSON: {e.msg}")
    if payload is None:
        return None
    if not isinstance(payload, dict):
        raise ValidationError("edits must be a JSON object")
    try:
        return EditDescriptor.model_validate(payload)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid edits: {e.errors()[0]['msg']}")


def _operation_field(form: FormData) -> Operation:
    raw = _text_field(form, "operation", "mode")
    if raw is None:
        return Operation.CONVERT
    try:
        return Operation(raw.lower())
    except ValueError:
        raise ValidationError(f"operation must be 'convert' or 'compress', got {raw!r}")


def _uploads(form: FormData) -> List[UploadFile]:
    return [value for _, value in form.multi_items() if isinstance(value, UploadFile)]


def parse_job_request(form: FormData, default_quality: int) -> JobRequest:
    """
    Build a JobRequest from multipart form data.

    Raises:
        ValidationError: Missing/extra file, missing target, malformed option
    """
    uploads = _uploads(form)
    if not uploads:
        raise ValidationError("No file uploaded")
    if len(uploads) > 1:
        raise ValidationError("Only one file allowed")
    upload = uploads[0]

    target = _text_field(form, "targetFormat", "target")
    if target is None:
        raise ValidationError("targetFormat is required")

    quality = _int_field(form, "quality")
    try:
        options = JobOptions(
            quality=default_quality if quality is None else quality,
            width=_positive_int_field(form, "width"),
            height=_positive_int_field(form, "height"),
            upscale=_bool_field(form, "upscale"),
            edits=_edits_field(form),
            watermark=_text_field(form, "watermark"),
        )
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid options: {e.errors()[0]['msg']}")

    return JobRequest(
        upload=upload.file,
        filename=upload.filename or "",
        target_format=target,
        operation=_operation_field(form),
        options=options,
    )


# ============================================================================
# DISCONNECT WATCH
# ============================================================================

async def _wait_for_disconnect(receive: Receive) -> None:
    """Return once the client has gone away. The body is already consumed."""
    while True:
        message = await receive()
        if message["type"] == "http.disconnect":
            return


def _finish_orphan(engine: JobEngine, task: "asyncio.Future") -> None:
    """A job that completed after nobody was left to stream it."""
    if task.cancelled() or task.exception() is not None:
        return
    asyncio.ensure_future(engine.finish(task.result(), ConnectionAbortedError("client gone")))


async def submit_while_connected(
    engine: JobEngine,
    job_request: JobRequest,
    receive: Receive,
) -> Optional[JobResult]:
    """
    Run engine.submit, cancelling it if the client disconnects first.

    Cancelling the submission takes the same teardown path as a deadline
    expiry: the backend process is killed and the scope finalized.

    Returns:
        The JobResult, or None if the client disconnected first

    Raises:
        FileToolError: Whatever submit raised
    """
    submission = asyncio.ensure_future(engine.submit(job_request))
    watcher = asyncio.ensure_future(_wait_for_disconnect(receive))
    try:
        await asyncio.wait({submission, watcher}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        submission.cancel()
        submission.add_done_callback(partial(_finish_orphan, engine))
        raise
    finally:
        watcher.cancel()

    if submission.done():
        return submission.result()

    logger.warning("[HTTP] Client disconnected during processing, cancelling job")
    submission.cancel()
    await asyncio.wait({submission})
    if not submission.cancelled() and submission.exception() is None:
        # Finished just before the cancel landed.
        await engine.finish(submission.result(), ConnectionAbortedError("client gone"))
    elif not submission.cancelled():
        logger.debug(f"[HTTP] Cancelled job ended with {submission.exception()!r}")
    return None


# ============================================================================
# ENDPOINT
# ============================================================================

@router.post("/process")
async def process_file(request: Request):
    """
    Transform one uploaded file and stream the result.

    Returns:
        ArtifactResponse (attachment) on success; `{error, detail}` JSON
        with 400 / 500 / 503 otherwise
    """
    engine: JobEngine = request.app.state.job_engine

    form = await request.form()
    try:
        job_request = parse_job_request(form, engine.settings.default_quality)
        result = await submit_while_connected(engine, job_request, request.receive)
    finally:
        # The upload has been copied into the workspace (or rejected)
        await form.close()

    if result is None:
        # Nobody is listening; the server discards this.
        return Response(status_code=CLIENT_CLOSED_REQUEST)
    return await engine.stream(result)
