"""
Archive backend.

Wraps the original file in a gzip stream or a single-member ZIP.
Output is deterministic: same input bytes and name, same output bytes.
No quality knob.
"""

import gzip
import logging
import shutil
import zipfile
from pathlib import Path
from typing import Optional, TYPE_CHECKING

from ..capabilities.registry import ToolName
from ..errors import ProcessingFailure
from ..routing.router import BackendKind
from .base import Backend, OutputArtifact

if TYPE_CHECKING:
    from ..execution.workspace import Workspace
    from ..jobs.models import InputArtifact, JobOptions
    from ..routing.router import RouteDecision

logger = logging.getLogger(__name__)

# Earliest timestamp a ZIP entry can carry
ZIP_FIXED_DATE_TIME = (1980, 1, 1, 0, 0, 0)
_COPY_CHUNK = 1024 * 1024


def write_gzip(input_path: Path, output_path: Path) -> None:
    """gzip with no embedded filename and mtime 0."""
    with input_path.open("rb") as src, output_path.open("wb") as raw:
        with gzip.GzipFile(filename="", mode="wb", fileobj=raw, mtime=0, compresslevel=9) as gz:
            shutil.copyfileobj(src, gz, _COPY_CHUNK)


def write_zip(input_path: Path, output_path: Path, member_name: str) -> None:
    """Single deflated member with a fixed timestamp."""
    info = zipfile.ZipInfo(member_name, date_time=ZIP_FIXED_DATE_TIME)
    info.compress_type = zipfile.ZIP_DEFLATED
    info.external_attr = 0o644 << 16
    with zipfile.ZipFile(output_path, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9) as zf:
        with input_path.open("rb") as src, zf.open(info, "w") as dst:
            shutil.copyfileobj(src, dst, _COPY_CHUNK)


class ArchiveBackend(Backend):
    """Generic compression into gz or zip."""

    @property
    def kind(self) -> BackendKind:
        return BackendKind.ARCHIVE

    def required_tool(self, input_format: str, target_format: str) -> Optional[ToolName]:
        return None

    def produce(
        self,
        source: "InputArtifact",
        route: "RouteDecision",
        options: "JobOptions",
        workspace: "Workspace",
    ) -> OutputArtifact:
        target = route.target_format
        output = self.output_path(workspace, route)

        try:
            if target == "gz":
                write_gzip(source.path, output)
            elif target == "zip":
                write_zip(source.path, output, member_name=source.original_name)
            else:
                raise ProcessingFailure(f"Archive backend cannot produce {target.upper()}")
        except OSError as e:
            raise ProcessingFailure(f"Compression failed: {e}") from e

        logger.info(
            f"[Archive] Job {workspace.job_id}: {source.original_name} -> {target} "
            f"({source.size_bytes} -> {output.stat().st_size} bytes)"
        )
        return OutputArtifact.from_path(output, target)
