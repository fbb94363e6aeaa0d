"""
Job engine orchestration.

Drives one upload from ingest to a streamable artifact:

    ingest → classify → route → tool check → admission → backend (under
    deadline) → verify → hand off to the streamer

============================================================================
RESOURCE INVARIANT
============================================================================
The workspace is opened first and every exit path finalizes the scope
exactly once: either here (any error, cancellation) or in the streamer
callback (after the last byte, stream error, disconnect). Nothing that can
fail is allowed between a successful return and the streamer taking over.
============================================================================
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from functools import partial
from typing import BinaryIO, Optional

from starlette.concurrency import run_in_threadpool

from ..backends.base import Backend, OutputArtifact
from ..backends.registry import BackendRegistry
from ..capabilities.registry import CapabilityRegistry
from ..classify.classifier import TypeClassifier, declared_extension
from ..config import EngineSettings
from ..errors import FileToolError, JobTimedOutError, ProcessingFailure, ValidationError
from ..execution.admission import AdmissionController
from ..execution.process import ProcessRunner
from ..execution.scope import JobScope
from ..execution.streaming import ArtifactResponse, verify_artifact
from ..execution.timeout import run_with_deadline
from ..execution.workspace import Workspace, WorkspaceFactory
from ..routing.router import FormatRouter, Operation, RouteDecision
from .models import InputArtifact, Job, JobOptions, JobState
from .naming import download_name, sanitize_filename
from .state import is_job_terminal, transition_job

logger = logging.getLogger(__name__)

_COPY_CHUNK = 1024 * 1024


@dataclass
class JobRequest:
    """
    One parsed upload request.

    Attributes:
        upload: Readable binary stream of the uploaded file
        filename: Client-supplied filename
        target_format: Requested target, as supplied
        operation: convert or compress
        options: Validated transformation knobs
    """

    upload: BinaryIO
    filename: str
    target_format: str
    operation: Operation = Operation.CONVERT
    options: Optional[JobOptions] = None


@dataclass
class JobResult:
    """A verified artifact ready for streaming. Owns the job scope."""

    job: Job
    artifact: OutputArtifact
    download_name: str
    route: RouteDecision
    scope: JobScope


class JobEngine:
    """
    Job orchestration engine.

    Holds the shared collaborators; per-job state lives in Job and JobScope.

    Args:
        settings: Engine settings
        capabilities: Startup tool registry
        backends: Backend registry (built from capabilities when omitted)
        runner: Process runner shared by the default backends
    """

    def __init__(
        self,
        settings: EngineSettings,
        capabilities: CapabilityRegistry,
        backends: Optional[BackendRegistry] = None,
        runner: Optional[ProcessRunner] = None,
    ):
        self.settings = settings
        self.capabilities = capabilities
        self.runner = runner or ProcessRunner(settings.diagnostic_limit)
        self.backends = backends or BackendRegistry(capabilities, self.runner)
        self.admission = AdmissionController(settings.max_concurrent, settings.max_queue_depth)
        self.workspaces = WorkspaceFactory(settings.workspace_root)
        self.classifier = TypeClassifier()
        self.router = FormatRouter(settings.same_format_compress)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit(self, request: JobRequest) -> JobResult:
        """
        Run a job up to the point where its artifact can be streamed.

        Returns:
            JobResult in STREAMING state; the caller must hand it to
            stream() (or call finish()) so the scope is finalized

        Raises:
            FileToolError: Any validation, tool, processing, timeout or
                capacity failure (scope already finalized)
        """
        options = request.options or JobOptions(quality=self.settings.default_quality)
        job = Job(
            original_name=sanitize_filename(request.filename),
            target_format=(request.target_format or "").strip().lower(),
            operation=request.operation,
            options=options,
        )
        workspace = self.workspaces.open(job.id)
        scope = JobScope(workspace, self.admission, self.settings.kill_grace_seconds)
        handed_off = False
        logger.info(
            f"[Engine] Job {job.id} admitted: {job.original_name!r} -> {job.target_format or '?'} "
            f"({job.operation.value})"
        )

        try:
            if not job.target_format:
                raise ValidationError("targetFormat is required")

            source = await run_in_threadpool(self._ingest, request.upload, job, workspace)
            job.input = source

            route = self.router.route(source.format, job.target_format, job.operation)
            backend = self.backends.get(route.backend)
            tool = backend.required_tool(route.input_format, route.target_format)
            if tool is not None:
                self.capabilities.require(tool)

            slot = await self.admission.acquire(job.id)
            scope.bind_slot(slot)
            transition_job(job, JobState.RUNNING)

            try:
                artifact = await run_with_deadline(
                    self._execute,
                    scope,
                    self.settings.job_timeout_seconds,
                    self.settings.kill_grace_seconds,
                    backend,
                    source,
                    route,
                    job.options,
                    workspace,
                )
            except JobTimedOutError as e:
                transition_job(job, JobState.TIMED_OUT, e.detail)
                raise

            verify_artifact(artifact.path)
            transition_job(job, JobState.STREAMING)
            result = JobResult(
                job=job,
                artifact=artifact,
                download_name=download_name(job.original_name, route),
                route=route,
                scope=scope,
            )
            handed_off = True
            logger.info(
                f"[Engine] Job {job.id} produced {result.download_name} ({artifact.size_bytes} bytes)"
            )
            return result

        except FileToolError as e:
            self._fail(job, e.detail)
            logger.warning(f"[Engine] Job {job.id} failed: {e.code}: {e.detail}")
            raise
        except asyncio.CancelledError:
            self._fail(job, "Client disconnected")
            logger.warning(f"[Engine] Job {job.id} cancelled by client disconnect")
            raise
        except Exception as e:
            self._fail(job, f"Internal error: {type(e).__name__}")
            logger.exception(f"[Engine] Job {job.id} crashed: {e}")
            raise
        finally:
            if not handed_off:
                await scope.finalize()

    async def stream(self, result: JobResult) -> ArtifactResponse:
        """Build the streaming response; finalizes the scope when the transfer ends."""
        try:
            return ArtifactResponse(
                result.artifact.path,
                download_name=result.download_name,
                media_type=result.artifact.mime_type,
                on_finish=partial(self.finish, result),
            )
        except BaseException as e:
            await self.finish(result, e)
            raise

    async def finish(self, result: JobResult, error: Optional[BaseException] = None) -> None:
        """Record the streaming outcome and release everything the job holds."""
        job = result.job
        try:
            if is_job_terminal(job.state):
                return
            if error is None:
                transition_job(job, JobState.COMPLETED)
            else:
                self._fail(job, f"Streaming interrupted: {type(error).__name__}")
        finally:
            await result.scope.finalize()

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    def health(self) -> dict:
        snapshot = self.admission.snapshot()
        return {
            "ok": True,
            "activeProcesses": snapshot["in_use"],
            "waiting": snapshot["waiting"],
            "capacity": snapshot["capacity"],
            "maxQueueDepth": snapshot["max_queue_depth"],
            "openWorkspaces": self.workspaces.open_count,
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _ingest(self, upload: BinaryIO, job: Job, workspace: Workspace) -> InputArtifact:
        """Copy the upload into the workspace (size-limited) and classify it."""
        limit = self.settings.max_file_size_bytes
        staged = workspace.file("upload.part")
        size = 0

        if hasattr(upload, "seek"):
            upload.seek(0)
        with staged.open("wb") as out:
            while True:
                chunk = upload.read(_COPY_CHUNK)
                if not chunk:
                    break
                size += len(chunk)
                if size > limit:
                    shown = f"{limit // (1024 * 1024)} MB" if limit >= 1024 * 1024 else f"{limit} bytes"
                    raise ValidationError(f"File exceeds the maximum upload size of {shown}")
                out.write(chunk)

        if size == 0:
            raise ValidationError("Uploaded file is empty")

        classified = self.classifier.classify(staged, job.original_name)
        stored = workspace.file(f"input.{classified.format}")
        os.replace(staged, stored)

        logger.info(
            f"[Engine] Job {job.id} input classified as {classified.format} "
            f"({classified.input_class.value}, {size} bytes)"
        )
        return InputArtifact(
            path=stored,
            original_name=job.original_name,
            declared_extension=declared_extension(job.original_name),
            format=classified.format,
            input_class=classified.input_class,
            size_bytes=size,
        )

    def _execute(
        self,
        backend: Backend,
        source: InputArtifact,
        route: RouteDecision,
        options: JobOptions,
        workspace: Workspace,
    ) -> OutputArtifact:
        """Worker-thread body: run the backend, wrapping unexpected errors."""
        try:
            return backend.produce(source, route, options, workspace)
        except FileToolError:
            raise
        except Exception as e:
            logger.exception(f"[Engine] {backend.kind.value} backend raised for job {workspace.job_id}")
            raise ProcessingFailure(f"{backend.kind.value} backend failed: {e}") from e

    def _fail(self, job: Job, reason: str) -> None:
        if not is_job_terminal(job.state):
            transition_job(job, JobState.FAILED, reason)
