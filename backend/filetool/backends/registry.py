"""
Backend registry.

Central registry for backend lookup by kind.

Design rules:
- One singleton backend per kind
- Lookup is explicit; the router already decided the kind
- No fallback backend
"""

import logging
from typing import Dict, Iterable, List, Optional

from ..capabilities.registry import CapabilityRegistry, ToolName
from ..execution.process import ProcessRunner
from ..routing.router import BackendKind
from .archive import ArchiveBackend
from .audio_video import AudioVideoBackend
from .base import Backend
from .document import DocumentBackend
from .image import ImageBackend
from .passthrough import PassthroughBackend

logger = logging.getLogger(__name__)

# Which backends can need each tool (for the capabilities listing)
TOOL_CONSUMERS: Dict[ToolName, List[BackendKind]] = {
    ToolName.FFMPEG: [BackendKind.AUDIO_VIDEO],
    ToolName.SOFFICE: [BackendKind.DOCUMENT],
    ToolName.GHOSTSCRIPT: [BackendKind.DOCUMENT],
    ToolName.PDFTOPPM: [BackendKind.DOCUMENT],
    ToolName.IMAGEMAGICK: [BackendKind.IMAGE],
    ToolName.PILLOW_WEBP: [BackendKind.IMAGE],
    ToolName.PILLOW_AVIF: [BackendKind.IMAGE],
}


class BackendRegistry:
    """
    Registry of transformation backends.

    Provides:
    - Backend lookup by kind
    - Backend listing for diagnostics

    Backends are singletons within a registry instance.
    """

    def __init__(
        self,
        capabilities: CapabilityRegistry,
        runner: ProcessRunner,
        backends: Optional[Iterable[Backend]] = None,
    ):
        self._backends: Dict[BackendKind, Backend] = {}
        if backends is None:
            backends = (
                ImageBackend(capabilities, runner),
                DocumentBackend(capabilities, runner),
                AudioVideoBackend(capabilities, runner),
                ArchiveBackend(capabilities, runner),
                PassthroughBackend(capabilities, runner),
            )
        for backend in backends:
            self.register(backend)

    def register(self, backend: Backend) -> None:
        """Install a backend, replacing any of the same kind."""
        self._backends[backend.kind] = backend
        logger.debug(f"[Backends] Registered {type(backend).__name__} for {backend.kind.value}")

    def get(self, kind: BackendKind) -> Backend:
        """
        Get backend by kind.

        Raises:
            KeyError: If no backend is registered for the kind
        """
        backend = self._backends.get(kind)
        if backend is None:
            raise KeyError(f"No backend registered for '{kind.value}'")
        return backend

    def list_kinds(self) -> List[BackendKind]:
        return list(self._backends)
