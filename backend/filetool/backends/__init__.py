"""
Transformation backends.

One stateless backend per family; the router picks which one runs.
"""

from .archive import ArchiveBackend
from .audio_video import AudioVideoBackend
from .base import Backend, OutputArtifact
from .document import DocumentBackend
from .image import ImageBackend
from .passthrough import PassthroughBackend
from .registry import TOOL_CONSUMERS, BackendRegistry

__all__ = [
    "Backend",
    "OutputArtifact",
    "ArchiveBackend",
    "AudioVideoBackend",
    "DocumentBackend",
    "ImageBackend",
    "PassthroughBackend",
    "BackendRegistry",
    "TOOL_CONSUMERS",
]
