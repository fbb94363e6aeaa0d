"""
Process invocation.

The only place external tools are spawned. Narrow on purpose so tests can
substitute it.

Design rules:
- Argument vectors only, never a shell string
- One process at a time per workspace; the handle lives on the workspace
- stdin closed, stdout/stderr captured for diagnostics
- Own session per process so cancellation reaches the whole tree
- Non-zero exit = ProcessingFailure with truncated diagnostic
"""

import logging
import os
import subprocess
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

from ..errors import ProcessingFailure, ToolUnavailableError, truncate_diagnostic
from .workspace import Workspace

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompletedRun:
    """Outcome of a successful process run."""

    argv: Sequence[str]
    exit_code: int
    stdout: str
    stderr: str


class ProcessRunner:
    """
    Spawns external tools inside a job workspace.

    Stateless apart from the diagnostic limit.
    """

    def __init__(self, diagnostic_limit: int = 2000):
        self.diagnostic_limit = diagnostic_limit

    def run(
        self,
        argv: Sequence[str],
        workspace: Workspace,
        tool: str,
        env: Optional[Mapping[str, str]] = None,
    ) -> CompletedRun:
        """
        Run a tool to completion.

        Args:
            argv: Full argument vector, executable first
            workspace: Job workspace (cwd and process owner)
            tool: Tool name for errors and logs
            env: Extra environment variables

        Returns:
            CompletedRun on exit code 0

        Raises:
            ProcessingFailure: Non-zero exit, or the job was cancelled
            ToolUnavailableError: Executable vanished after the startup probe
        """
        argv = [str(arg) for arg in argv]
        logger.info(f"[Process] Job {workspace.job_id} executing: {argv}")

        process_env = None
        if env:
            process_env = dict(os.environ)
            process_env.update(env)

        try:
            process = subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=str(workspace.path),
                env=process_env,
                start_new_session=(os.name == "posix"),
            )
        except FileNotFoundError as e:
            raise ToolUnavailableError(tool, str(e)) from e

        workspace.attach_process(process)
        logger.info(f"[Process] Started PID {process.pid} ({tool}) for job {workspace.job_id}")

        try:
            stdout_raw, stderr_raw = process.communicate()
        finally:
            workspace.detach_process(process)

        exit_code = process.returncode
        stdout = stdout_raw.decode("utf-8", errors="replace") if stdout_raw else ""
        stderr = stderr_raw.decode("utf-8", errors="replace") if stderr_raw else ""
        logger.info(f"[Process] PID {process.pid} exited with code {exit_code}")

        if workspace.cancelled:
            raise ProcessingFailure(f"{tool} was terminated", tool=tool, exit_code=exit_code)

        if exit_code != 0:
            diagnostic = truncate_diagnostic(stderr or stdout, self.diagnostic_limit)
            if not diagnostic:
                diagnostic = f"{tool} exited with code {exit_code}"
            logger.error(f"[Process] {tool} failed: {diagnostic}")
            raise ProcessingFailure(diagnostic, tool=tool, exit_code=exit_code)

        return CompletedRun(argv=argv, exit_code=exit_code, stdout=stdout, stderr=stderr)
