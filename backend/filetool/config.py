"""
Engine settings.

All runtime knobs are read once at startup from the environment.
Settings are immutable after load; tests build their own instances.
"""

import os
import tempfile
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional, Tuple


class SameFormatCompressPolicy(str, Enum):
    """
    Whether `operation=compress` may target the input's own format.

    ALLOW: png → png (compress) re-encodes at the requested quality
    REJECT: treated like an identity conversion (400)
    """

    ALLOW = "allow"
    REJECT = "reject"


DEFAULT_MAX_CONCURRENT = 2
DEFAULT_MAX_FILE_SIZE_BYTES = 80 * 1024 * 1024
DEFAULT_MAX_QUEUE_DEPTH = 32
DEFAULT_JOB_TIMEOUT_SECONDS = 120.0
DEFAULT_KILL_GRACE_SECONDS = 5.0
DEFAULT_DIAGNOSTIC_LIMIT = 2000
DEFAULT_QUALITY = 80


def _default_workspace_root() -> Path:
    return Path(tempfile.gettempdir()) / "filetool-jobs"


@dataclass(frozen=True)
class EngineSettings:
    """
    Immutable engine configuration.

    Attributes:
        max_concurrent: Backends allowed to execute at the same time
        max_queue_depth: Admission waiters allowed before CapacityExceeded
            (None = unbounded)
        max_file_size_bytes: Upload size limit
        job_timeout_seconds: Deadline for a single backend execution
        kill_grace_seconds: SIGTERM → SIGKILL escalation window
        workspace_root: Parent directory for per-job workspaces
        same_format_compress: Policy for compress with target == input format
        diagnostic_limit: Max characters of tool stderr carried in errors
        default_quality: Quality used when the request omits it
        cors_origins: Allowed CORS origins for the browser UI
        log_level: Root log level name
        tool_paths: Explicit executable overrides keyed by tool name
    """

    max_concurrent: int = DEFAULT_MAX_CONCURRENT
    max_queue_depth: Optional[int] = DEFAULT_MAX_QUEUE_DEPTH
    max_file_size_bytes: int = DEFAULT_MAX_FILE_SIZE_BYTES
    job_timeout_seconds: float = DEFAULT_JOB_TIMEOUT_SECONDS
    kill_grace_seconds: float = DEFAULT_KILL_GRACE_SECONDS
    workspace_root: Path = field(default_factory=_default_workspace_root)
    same_format_compress: SameFormatCompressPolicy = SameFormatCompressPolicy.ALLOW
    diagnostic_limit: int = DEFAULT_DIAGNOSTIC_LIMIT
    default_quality: int = DEFAULT_QUALITY
    cors_origins: Tuple[str, ...] = ("http://localhost:3000",)
    log_level: str = "INFO"
    tool_paths: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.max_concurrent < 1:
            raise ValueError(f"max_concurrent must be >= 1, got {self.max_concurrent}")
        if self.max_queue_depth is not None and self.max_queue_depth < 0:
            raise ValueError(f"max_queue_depth must be >= 0, got {self.max_queue_depth}")
        if self.max_file_size_bytes < 1:
            raise ValueError("max_file_size_bytes must be positive")
        if self.job_timeout_seconds <= 0:
            raise ValueError("job_timeout_seconds must be positive")
        if self.kill_grace_seconds < 0:
            raise ValueError("kill_grace_seconds must not be negative")
        if not 1 <= self.default_quality <= 100:
            raise ValueError("default_quality must be within 1..100")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "EngineSettings":
        """
        Build settings from environment variables.

        Unset variables fall back to defaults. Malformed values raise
        ValueError so a misconfigured deployment fails at startup.
        """
        env = os.environ if environ is None else environ

        queue_raw = env.get("FILETOOL_MAX_QUEUE_DEPTH", str(DEFAULT_MAX_QUEUE_DEPTH)).strip()
        max_queue_depth = int(queue_raw) if queue_raw and queue_raw != "0" else None

        workspace_raw = env.get("FILETOOL_WORKSPACE_ROOT")
        workspace_root = Path(workspace_raw) if workspace_raw else _default_workspace_root()

        origins = tuple(
            origin.strip()
            for origin in env.get("FILETOOL_CORS_ORIGINS", "http://localhost:3000").split(",")
            if origin.strip()
        )

        tool_paths = {}
        for tool, var in (
            ("soffice", "SOFFICE_PATH"),
            ("ffmpeg", "FFMPEG_PATH"),
            ("ghostscript", "GS_PATH"),
            ("pdftoppm", "PDFTOPPM_PATH"),
            ("imagemagick", "MAGICK_PATH"),
        ):
            if env.get(var):
                tool_paths[tool] = env[var]

        return cls(
            max_concurrent=int(env.get("MAX_CONCURRENT_PROCESSES", DEFAULT_MAX_CONCURRENT)),
            max_queue_depth=max_queue_depth,
            max_file_size_bytes=int(env.get("MAX_FILE_SIZE_BYTES", DEFAULT_MAX_FILE_SIZE_BYTES)),
            job_timeout_seconds=float(env.get("FILETOOL_JOB_TIMEOUT_SECONDS", DEFAULT_JOB_TIMEOUT_SECONDS)),
            kill_grace_seconds=float(env.get("FILETOOL_KILL_GRACE_SECONDS", DEFAULT_KILL_GRACE_SECONDS)),
            workspace_root=workspace_root,
            same_format_compress=SameFormatCompressPolicy(
                env.get("FILETOOL_SAME_FORMAT_COMPRESS", SameFormatCompressPolicy.ALLOW.value).strip().lower()
            ),
            diagnostic_limit=int(env.get("FILETOOL_DIAGNOSTIC_LIMIT", DEFAULT_DIAGNOSTIC_LIMIT)),
            default_quality=int(env.get("FILETOOL_DEFAULT_QUALITY", DEFAULT_QUALITY)),
            cors_origins=origins,
            log_level=env.get("FILETOOL_LOG_LEVEL", "INFO").upper(),
            tool_paths=tool_paths,
        )
