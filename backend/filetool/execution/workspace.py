"""
Per-job workspace.

An isolated directory plus the handle of the process currently running
for the job. Created before validation completes, destroyed exactly once.

INVARIANT: No component other than Workspace.close() deletes files inside
a workspace. Backends write into it; the scope tears it down.
"""

import logging
import os
import shutil
import signal
import subprocess
import tempfile
import threading
from pathlib import Path
from typing import Optional

from ..errors import ProcessingFailure

logger = logging.getLogger(__name__)


class Workspace:
    """
    Ephemeral storage and process ownership for one job.

    Thread-safe: the process handle is attached from a worker thread and
    may be terminated from the event loop (timeout / disconnect).
    """

    def __init__(self, job_id: str, path: Path, factory: Optional["WorkspaceFactory"] = None):
        self.job_id = job_id
        self.path = path
        self._factory = factory
        self._lock = threading.Lock()
        self._process: Optional[subprocess.Popen] = None
        self._cancelled = False
        self._closed = False

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def file(self, name: str) -> Path:
        """Path for a file inside the workspace. Rejects path traversal."""
        candidate = (self.path / name).resolve()
        if candidate.parent != self.path.resolve():
            raise ValueError(f"Refusing workspace path outside {self.path}: {name!r}")
        return candidate

    def subdir(self, name: str) -> Path:
        directory = self.file(name)
        directory.mkdir(exist_ok=True)
        return directory

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    @property
    def cancelled(self) -> bool:
        with self._lock:
            return self._cancelled

    @property
    def process(self) -> Optional[subprocess.Popen]:
        with self._lock:
            return self._process

    # ------------------------------------------------------------------
    # Process ownership
    # ------------------------------------------------------------------

    def attach_process(self, process: subprocess.Popen) -> None:
        """
        Register the running process for this job.

        A cancelled workspace refuses new processes and kills the one
        offered, so a backend cannot outlive its deadline by spawning.
        """
        with self._lock:
            if self._cancelled or self._closed:
                refused = True
            else:
                refused = False
                self._process = process
        if refused:
            _kill_process(process, grace_seconds=0)
            raise ProcessingFailure("Job was cancelled before the process could start")

    def detach_process(self, process: subprocess.Popen) -> None:
        with self._lock:
            if self._process is process:
                self._process = None

    def cancel(self, grace_seconds: float) -> None:
        """
        Forbid new processes and terminate the running one.

        SIGTERM first, SIGKILL after the grace period. Blocking for at most
        roughly `grace_seconds`; call from a worker thread on the event loop.
        """
        with self._lock:
            self._cancelled = True
            process = self._process
        if process is not None:
            _kill_process(process, grace_seconds)

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def close(self, grace_seconds: float = 0) -> bool:
        """
        Destroy the workspace.

        Terminates any attached process, then removes the directory tree.
        One-shot: a second call is a no-op.

        Returns:
            True if this call performed the teardown
        """
        with self._lock:
            if self._closed:
                logger.warning(f"[Workspace] Job {self.job_id} workspace already closed")
                return False
            self._closed = True
            self._cancelled = True
            process = self._process
            self._process = None

        if process is not None and process.poll() is None:
            logger.warning(f"[Workspace] Job {self.job_id} closing with PID {process.pid} still running")
            _kill_process(process, grace_seconds)

        shutil.rmtree(self.path, ignore_errors=True)
        if self.path.exists():
            logger.error(f"[Workspace] Failed to remove {self.path}")
        else:
            logger.debug(f"[Workspace] Removed {self.path}")

        if self._factory is not None:
            self._factory._forget(self)
        return True


def _signal_process(process: subprocess.Popen, sig: int) -> None:
    # Processes are started in their own session; signal the whole group
    # so helpers forked by the tool (soffice.bin, gs workers) die too.
    if os.name == "posix":
        try:
            os.killpg(process.pid, sig)
            return
        except (ProcessLookupError, PermissionError):
            pass
    try:
        if sig == getattr(signal, "SIGKILL", None):
            process.kill()
        else:
            process.terminate()
    except ProcessLookupError:
        pass  # Process already dead


def _kill_process(process: subprocess.Popen, grace_seconds: float) -> None:
    """Terminate a process: SIGTERM, wait, escalate to SIGKILL."""
    if process.poll() is not None:
        return

    logger.info(f"[Workspace] Sending SIGTERM to PID {process.pid}")
    _signal_process(process, signal.SIGTERM)
    try:
        process.wait(timeout=grace_seconds if grace_seconds > 0 else 0.1)
        return
    except subprocess.TimeoutExpired:
        pass

    logger.warning(f"[Workspace] PID {process.pid} did not terminate, sending SIGKILL")
    _signal_process(process, getattr(signal, "SIGKILL", signal.SIGTERM))
    try:
        process.wait(timeout=5)
    except subprocess.TimeoutExpired:
        logger.error(f"[Workspace] PID {process.pid} survived SIGKILL")


class WorkspaceFactory:
    """
    Creates workspaces under a common root and tracks the live ones.

    The live count backs the health endpoint and leak tests.
    """

    def __init__(self, root: Path):
        self.root = Path(root)
        self._lock = threading.Lock()
        self._live: dict = {}

    def open(self, job_id: str) -> Workspace:
        """Create a private directory for a job."""
        self.root.mkdir(parents=True, exist_ok=True)
        path = Path(tempfile.mkdtemp(prefix=f"job-{job_id[:12]}-", dir=str(self.root)))
        workspace = Workspace(job_id, path, factory=self)
        with self._lock:
            self._live[id(workspace)] = workspace
        logger.debug(f"[Workspace] Opened {path} for job {job_id}")
        return workspace

    @property
    def open_count(self) -> int:
        with self._lock:
            return len(self._live)

    def leftover_directories(self) -> list:
        """Directories under the root that belong to no live workspace."""
        if not self.root.exists():
            return []
        with self._lock:
            live_paths = {ws.path for ws in self._live.values()}
        return [p for p in self.root.iterdir() if p.is_dir() and p not in live_paths]

    def _forget(self, workspace: Workspace) -> None:
        with self._lock:
            self._live.pop(id(workspace), None)
