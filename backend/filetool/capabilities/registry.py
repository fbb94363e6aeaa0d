"""
Capability registry.

One-time startup probe of the external tools backends depend on.
Consulted before admission, so a missing tool fails the request cheaply
instead of surfacing as a failed spawn after a slot was taken.

Design rules:
- Probe once, at startup; never lazily at call time
- Explicit overrides (env) win over PATH lookup
- Status is truthful: unavailable tools carry a reason
"""

import logging
import os
import shutil
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from PIL import features

from ..errors import ToolUnavailableError

logger = logging.getLogger(__name__)


class ToolName(str, Enum):
    """External capabilities a backend may require."""

    FFMPEG = "ffmpeg"
    SOFFICE = "soffice"
    GHOSTSCRIPT = "ghostscript"
    PDFTOPPM = "pdftoppm"
    IMAGEMAGICK = "imagemagick"
    # Pillow codec plugins (library features, not executables)
    PILLOW_WEBP = "pillow_webp"
    PILLOW_AVIF = "pillow_avif"


# Executable candidates in lookup order
_EXECUTABLE_CANDIDATES: Dict[ToolName, Sequence[str]] = {
    ToolName.FFMPEG: ("ffmpeg",),
    ToolName.SOFFICE: (
        "soffice",
        "libreoffice",
        "/Applications/LibreOffice.app/Contents/MacOS/soffice",
    ),
    ToolName.GHOSTSCRIPT: ("gs", "gswin64c"),
    ToolName.PDFTOPPM: ("pdftoppm",),
    ToolName.IMAGEMAGICK: ("magick", "convert"),
}

_PILLOW_FEATURES: Dict[ToolName, str] = {
    ToolName.PILLOW_WEBP: "webp",
    ToolName.PILLOW_AVIF: "avif",
}

_PURPOSE: Dict[ToolName, str] = {
    ToolName.FFMPEG: "audio/video transcoder",
    ToolName.SOFFICE: "office document converter",
    ToolName.GHOSTSCRIPT: "PDF optimizer",
    ToolName.PDFTOPPM: "PDF rasterizer",
    ToolName.IMAGEMAGICK: "vector image rasterizer",
    ToolName.PILLOW_WEBP: "WebP image encoder",
    ToolName.PILLOW_AVIF: "AVIF image encoder",
}


@dataclass(frozen=True)
class ToolStatus:
    """
    Probe result for one tool.

    Attributes:
        tool: Which tool
        available: True if backends may rely on it
        path: Resolved executable (None for library features)
        reason: Why it is unavailable
    """

    tool: ToolName
    available: bool
    path: Optional[str] = None
    reason: Optional[str] = None

    @property
    def purpose(self) -> str:
        return _PURPOSE.get(self.tool, self.tool.value)

    def to_dict(self) -> dict:
        return {
            "tool": self.tool.value,
            "purpose": self.purpose,
            "available": self.available,
            "path": self.path,
            "reason": self.reason,
        }


def _resolve_executable(candidates: Iterable[str]) -> Optional[str]:
    for candidate in candidates:
        if os.path.isabs(candidate):
            if os.path.isfile(candidate) and os.access(candidate, os.X_OK):
                return candidate
            continue
        resolved = shutil.which(candidate)
        if resolved:
            return resolved
    return None


def probe_tool(tool: ToolName, override: Optional[str] = None) -> ToolStatus:
    """
    Probe a single tool.

    Args:
        tool: Tool to probe
        override: Explicit executable path (SOFFICE_PATH, FFMPEG_PATH, ...)
    """
    if tool in _PILLOW_FEATURES:
        feature = _PILLOW_FEATURES[tool]
        try:
            supported = bool(features.check(feature))
        except ValueError:
            # Unknown feature name on this Pillow release
            supported = False
        if supported:
            return ToolStatus(tool, True)
        return ToolStatus(tool, False, reason=f"Pillow was built without {feature} support")

    if override:
        path = _resolve_executable([override])
        if path:
            return ToolStatus(tool, True, path=path)
        return ToolStatus(tool, False, reason=f"Configured path '{override}' is not executable")

    path = _resolve_executable(_EXECUTABLE_CANDIDATES[tool])
    if path:
        return ToolStatus(tool, True, path=path)
    names = ", ".join(_EXECUTABLE_CANDIDATES[tool][:2])
    return ToolStatus(tool, False, reason=f"None of [{names}] found in PATH")


class CapabilityRegistry:
    """
    Startup record of available tools.

    Provides:
    - Availability lookup
    - Executable path lookup for argv construction
    - Listing for the capabilities endpoint
    """

    def __init__(self, statuses: Iterable[ToolStatus]):
        self._statuses: Dict[ToolName, ToolStatus] = {status.tool: status for status in statuses}

    @classmethod
    def probe(cls, overrides: Optional[Mapping[str, str]] = None) -> "CapabilityRegistry":
        """
        Probe every known tool.

        Args:
            overrides: Executable overrides keyed by ToolName value
        """
        overrides = overrides or {}
        statuses = [probe_tool(tool, overrides.get(tool.value)) for tool in ToolName]
        registry = cls(statuses)
        for status in statuses:
            state = f"available at {status.path}" if status.path else (
                "available" if status.available else f"not available ({status.reason})"
            )
            logger.info(f"[Capabilities] {status.tool.value} ({status.purpose}): {state}")
        return registry

    @classmethod
    def from_mapping(cls, availability: Mapping[ToolName, object]) -> "CapabilityRegistry":
        """
        Build a registry without probing.

        Values are either a bool or an executable path (available).
        Tools missing from the mapping are unavailable.
        """
        statuses = []
        for tool in ToolName:
            value = availability.get(tool, False)
            if isinstance(value, str):
                statuses.append(ToolStatus(tool, True, path=value))
            elif value:
                statuses.append(ToolStatus(tool, True, path=tool.value))
            else:
                statuses.append(ToolStatus(tool, False, reason="not registered"))
        return cls(statuses)

    def status(self, tool: ToolName) -> ToolStatus:
        return self._statuses.get(tool, ToolStatus(tool, False, reason="not probed"))

    def is_available(self, tool: ToolName) -> bool:
        return self.status(tool).available

    def require(self, tool: ToolName) -> ToolStatus:
        """
        Return the status of an available tool.

        Raises:
            ToolUnavailableError: If the tool is absent
        """
        status = self.status(tool)
        if not status.available:
            raise ToolUnavailableError(tool.value, status.reason or "")
        return status

    def executable(self, tool: ToolName) -> str:
        """Executable path for argv construction."""
        status = self.require(tool)
        return status.path or tool.value

    def list_tools(self) -> List[ToolStatus]:
        return [self.status(tool) for tool in ToolName]
