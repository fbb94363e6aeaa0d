"""
Tests for ProcessRunner.

Real python child processes; no external tools required.
"""

import sys

import pytest

from filetool.errors import ProcessingFailure, ToolUnavailableError
from filetool.execution.process import ProcessRunner
from filetool.execution.workspace import WorkspaceFactory


@pytest.fixture
def workspace(tmp_path):
    ws = WorkspaceFactory(tmp_path).open("runner")
    yield ws
    ws.close()


class TestProcessRunner:
    """argv execution, exit codes and diagnostics."""

    def test_success_captures_output(self, workspace):
        runner = ProcessRunner()
        result = runner.run([sys.executable, "-c", "print('hello')"], workspace, tool="python")

        assert result.exit_code == 0
        assert result.stdout.strip() == "hello"
        assert workspace.process is None

    def test_runs_inside_workspace(self, workspace):
        runner = ProcessRunner()
        runner.run(
            [sys.executable, "-c", "open('made-here.txt', 'w').write('ok')"],
            workspace,
            tool="python",
        )
        assert (workspace.path / "made-here.txt").read_text() == "ok"

    def test_arguments_are_not_shell_interpreted(self, workspace):
        runner = ProcessRunner()
        payload = "a; rm -rf / && echo $HOME `id`"
        result = runner.run(
            [sys.executable, "-c", "import sys; print(sys.argv[1])", payload],
            workspace,
            tool="python",
        )
        assert result.stdout.strip() == payload

    def test_nonzero_exit_raises_with_diagnostic(self, workspace):
        runner = ProcessRunner()
        with pytest.raises(ProcessingFailure) as exc_info:
            runner.run(
                [sys.executable, "-c", "import sys; sys.stderr.write('broken input'); sys.exit(3)"],
                workspace,
                tool="python",
            )
        assert exc_info.value.exit_code == 3
        assert exc_info.value.tool == "python"
        assert "broken input" in exc_info.value.detail

    def test_diagnostic_is_truncated(self, workspace):
        runner = ProcessRunner(diagnostic_limit=50)
        with pytest.raises(ProcessingFailure) as exc_info:
            runner.run(
                [sys.executable, "-c", "import sys; sys.stderr.write('x' * 5000 + 'TAIL'); sys.exit(1)"],
                workspace,
                tool="python",
            )
        detail = exc_info.value.detail
        assert len(detail) <= 51
        assert detail.endswith("TAIL")

    def test_missing_executable_is_tool_unavailable(self, workspace):
        runner = ProcessRunner()
        with pytest.raises(ToolUnavailableError):
            runner.run(["/nonexistent/tool-binary"], workspace, tool="ghost")

    def test_refuses_to_run_in_cancelled_workspace(self, workspace):
        runner = ProcessRunner()
        workspace.cancel(grace_seconds=0)
        with pytest.raises(ProcessingFailure):
            runner.run([sys.executable, "-c", "import time; time.sleep(30)"], workspace, tool="python")
