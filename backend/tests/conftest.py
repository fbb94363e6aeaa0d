"""
Pytest configuration and shared fixtures.
"""

import asyncio
import io
import os
import sys
import time
from pathlib import Path

import pytest

# Add backend to Python path for test imports
backend_path = Path(__file__).parent.parent
if str(backend_path) not in sys.path:
    sys.path.insert(0, str(backend_path))

from PIL import Image  # noqa: E402

from filetool.capabilities.registry import CapabilityRegistry, ToolName  # noqa: E402
from filetool.config import EngineSettings  # noqa: E402


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (real child processes, deadlines)"
    )
    config.addinivalue_line(
        "markers", "tools: marks tests that need external binaries (ffmpeg, soffice, gs)"
    )


def make_image_bytes(fmt: str = "PNG", size=(64, 48), mode: str = "RGB", color=(200, 30, 30)) -> bytes:
    """Encode a solid image in memory."""
    if mode == "RGBA" and len(color) == 3:
        color = color + (128,)
    img = Image.new(mode, size, color)
    buffer = io.BytesIO()
    img.save(buffer, fmt)
    return buffer.getvalue()


@pytest.fixture
def settings(tmp_path):
    """Engine settings with an isolated workspace root and short deadlines."""
    return EngineSettings(
        max_concurrent=2,
        max_queue_depth=16,
        job_timeout_seconds=20,
        kill_grace_seconds=0.5,
        workspace_root=tmp_path / "jobs",
    )


@pytest.fixture
def all_tools():
    """Registry claiming every tool is installed."""
    return CapabilityRegistry.from_mapping({tool: True for tool in ToolName})


@pytest.fixture
def no_tools():
    """Registry with nothing installed."""
    return CapabilityRegistry.from_mapping({})


def pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


async def wait_for_pid(pid_file: Path, timeout: float = 10.0) -> int:
    """Poll for the PID a test child writes once it is running."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if pid_file.exists():
            text = pid_file.read_text().strip()
            if text:
                return int(text)
        await asyncio.sleep(0.05)
    raise AssertionError("child process never started")
