"""
Passthrough backend.

Returns the input unchanged. Only reached for same-format compression of
inputs that are already compressed archives.
"""

import logging
import shutil
from typing import Optional, TYPE_CHECKING

from ..capabilities.registry import ToolName
from ..routing.router import BackendKind
from .base import Backend, OutputArtifact

if TYPE_CHECKING:
    from ..execution.workspace import Workspace
    from ..jobs.models import InputArtifact, JobOptions
    from ..routing.router import RouteDecision

logger = logging.getLogger(__name__)


class PassthroughBackend(Backend):
    """Byte-for-byte copy."""

    @property
    def kind(self) -> BackendKind:
        return BackendKind.PASSTHROUGH

    def required_tool(self, input_format: str, target_format: str) -> Optional[ToolName]:
        return None

    def produce(
        self,
        source: "InputArtifact",
        route: "RouteDecision",
        options: "JobOptions",
        workspace: "Workspace",
    ) -> OutputArtifact:
        output = self.output_path(workspace, route)
        shutil.copyfile(source.path, output)
        logger.info(f"[Passthrough] Job {workspace.job_id}: {source.format} returned unchanged")
        return OutputArtifact.from_path(output, route.target_format)
