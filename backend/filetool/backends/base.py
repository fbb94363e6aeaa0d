"""
Backend abstraction layer.

A backend turns one classified input into one output artifact inside the
job workspace. Routing decides WHICH backend runs; backends never route.

Design rules:
- Backends are stateless singletons; all context passed per call
- Tool requirements are declared up front (required_tool) so a missing
  tool fails before admission
- External processes only through ProcessRunner
- Output is written into the workspace, never elsewhere
- Failures raise ProcessingFailure / ToolUnavailableError
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, TYPE_CHECKING

from ..capabilities.registry import CapabilityRegistry, ToolName
from ..execution.process import ProcessRunner
from ..routing.formats import mime_type_for
from ..routing.router import BackendKind

if TYPE_CHECKING:
    from ..execution.workspace import Workspace
    from ..jobs.models import InputArtifact, JobOptions
    from ..routing.router import RouteDecision


@dataclass(frozen=True)
class OutputArtifact:
    """
    A produced file.

    Attributes:
        path: Location inside the job workspace
        format: Canonical token (also the extension)
        mime_type: Content-Type for streaming
        size_bytes: Size at production time
    """

    path: Path
    format: str
    mime_type: str
    size_bytes: int

    @classmethod
    def from_path(cls, path: Path, fmt: str) -> "OutputArtifact":
        size = path.stat().st_size if path.exists() else 0
        return cls(path=path, format=fmt, mime_type=mime_type_for(fmt), size_bytes=size)


class Backend(ABC):
    """
    Abstract base class for transformation backends.

    All backends must implement:
    - kind: Which BackendKind they serve
    - required_tool: The external capability a conversion needs
    - produce: Perform the transformation

    Args:
        capabilities: Startup tool registry (executable lookup)
        runner: Process invocation seam
    """

    def __init__(self, capabilities: CapabilityRegistry, runner: ProcessRunner):
        self.capabilities = capabilities
        self.runner = runner

    @property
    @abstractmethod
    def kind(self) -> BackendKind:
        """Return the backend kind identifier."""
        pass

    @abstractmethod
    def required_tool(self, input_format: str, target_format: str) -> Optional[ToolName]:
        """
        External capability needed for a conversion.

        Returns:
            ToolName, or None when the backend is self-sufficient
        """
        pass

    @abstractmethod
    def produce(
        self,
        source: "InputArtifact",
        route: "RouteDecision",
        options: "JobOptions",
        workspace: "Workspace",
    ) -> OutputArtifact:
        """
        Perform the transformation.

        Blocking; runs in a worker thread under the timeout guard.

        Args:
            source: Classified input stored in the workspace
            route: Routing decision (formats, operation)
            options: Quality / size / edit knobs
            workspace: Job workspace, cwd and process owner

        Returns:
            OutputArtifact inside the workspace

        Raises:
            ProcessingFailure: Transformation failed
            ToolUnavailableError: Required tool absent
        """
        pass

    def output_path(self, workspace: "Workspace", route: "RouteDecision") -> Path:
        """Canonical output location for a route."""
        return workspace.file(f"output.{route.output_extension}")
