"""
Format router.

Declarative table mapping (input class, target format) to a backend.
No backend contains routing logic; no routing logic lives outside this table.

Design rules:
- Synonyms are normalized before comparison
- convert X → X is rejected ("already in selected format")
- compress X → X is governed by SameFormatCompressPolicy
- A known target with no table entry is UnsupportedFormat, never a silent copy
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Mapping, Optional, Tuple

from ..config import SameFormatCompressPolicy
from ..errors import UnsupportedFormatError, ValidationError
from .formats import FORMATS, InputClass, normalize_format

logger = logging.getLogger(__name__)


class BackendKind(str, Enum):
    """Backend families. One singleton backend per kind."""

    IMAGE = "image"
    DOCUMENT = "document"
    AUDIO_VIDEO = "audio_video"
    ARCHIVE = "archive"
    PASSTHROUGH = "passthrough"


class Operation(str, Enum):
    """What the caller asked for."""

    CONVERT = "convert"
    COMPRESS = "compress"


@dataclass(frozen=True)
class RouteDecision:
    """
    Routing outcome.

    Attributes:
        backend: Backend family to execute
        input_format: Canonical input token
        target_format: Canonical target token (also the output extension)
        operation: Requested operation
        wraps_input: Output wraps the original file (archive), so the
            download name keeps the original name and appends the extension
    """

    backend: BackendKind
    input_format: str
    target_format: str
    operation: Operation
    wraps_input: bool = False

    @property
    def output_extension(self) -> str:
        return self.target_format

    @property
    def is_identity(self) -> bool:
        return self.input_format == self.target_format


# ============================================================================
# ROUTE TABLE
# ============================================================================

_ARCHIVE_TARGETS: FrozenSet[str] = frozenset({"gz", "zip"})
_RASTER_TARGETS: FrozenSet[str] = frozenset({"jpg", "png", "webp", "avif", "tiff", "gif", "bmp"})
_AUDIO_TARGETS: FrozenSet[str] = frozenset({"mp3", "wav", "ogg", "flac", "aac", "m4a", "opus"})
_VIDEO_TARGETS: FrozenSet[str] = frozenset({"mp4", "webm", "mkv", "mov", "avi"})


def _row(**groups: FrozenSet[str]) -> Dict[str, BackendKind]:
    row: Dict[str, BackendKind] = {}
    for kind_name, targets in groups.items():
        for target in targets:
            row[target] = BackendKind[kind_name.upper()]
    return row


ROUTE_TABLE: Mapping[InputClass, Mapping[str, BackendKind]] = {
    InputClass.IMAGE: _row(image=_RASTER_TARGETS | {"pdf"}, archive=_ARCHIVE_TARGETS),
    InputClass.VECTOR: _row(image=frozenset({"png", "jpg", "webp", "pdf"}), archive=_ARCHIVE_TARGETS),
    InputClass.PDF: _row(document=frozenset({"pdf", "png", "jpg", "txt"}), archive=_ARCHIVE_TARGETS),
    InputClass.DOCUMENT: _row(
        document=frozenset({"pdf", "docx", "doc", "odt", "rtf", "txt", "html"}),
        archive=_ARCHIVE_TARGETS,
    ),
    InputClass.SPREADSHEET: _row(
        document=frozenset({"pdf", "xlsx", "xls", "ods", "csv", "html"}),
        archive=_ARCHIVE_TARGETS,
    ),
    InputClass.PRESENTATION: _row(
        document=frozenset({"pdf", "pptx", "ppt", "odp"}),
        archive=_ARCHIVE_TARGETS,
    ),
    InputClass.TEXT: _row(
        document=frozenset({"pdf", "docx", "odt", "rtf", "html", "txt"}),
        archive=_ARCHIVE_TARGETS,
    ),
    InputClass.AUDIO: _row(audio_video=_AUDIO_TARGETS, archive=_ARCHIVE_TARGETS),
    InputClass.VIDEO: _row(audio_video=_VIDEO_TARGETS | _AUDIO_TARGETS, archive=_ARCHIVE_TARGETS),
    InputClass.ARCHIVE: _row(archive=_ARCHIVE_TARGETS),
    InputClass.BINARY: _row(archive=_ARCHIVE_TARGETS),
}

# compress X → X: (backend, target override). None keeps the input format.
SAME_FORMAT_COMPRESS_TABLE: Mapping[InputClass, Tuple[BackendKind, Optional[str]]] = {
    InputClass.IMAGE: (BackendKind.IMAGE, None),
    InputClass.PDF: (BackendKind.DOCUMENT, None),
    InputClass.AUDIO: (BackendKind.AUDIO_VIDEO, None),
    InputClass.VIDEO: (BackendKind.AUDIO_VIDEO, None),
    InputClass.VECTOR: (BackendKind.ARCHIVE, "gz"),
    InputClass.DOCUMENT: (BackendKind.ARCHIVE, "gz"),
    InputClass.SPREADSHEET: (BackendKind.ARCHIVE, "gz"),
    InputClass.PRESENTATION: (BackendKind.ARCHIVE, "gz"),
    InputClass.TEXT: (BackendKind.ARCHIVE, "gz"),
    InputClass.BINARY: (BackendKind.ARCHIVE, "gz"),
    InputClass.ARCHIVE: (BackendKind.PASSTHROUGH, None),
}


class FormatRouter:
    """
    Resolves a request to a backend using the route table.

    Stateless apart from the same-format compression policy.
    """

    def __init__(
        self,
        same_format_compress: SameFormatCompressPolicy = SameFormatCompressPolicy.ALLOW,
        route_table: Mapping[InputClass, Mapping[str, BackendKind]] = ROUTE_TABLE,
    ):
        self.same_format_compress = same_format_compress
        self._table = route_table

    def targets_for(self, input_class: InputClass) -> FrozenSet[str]:
        """All targets reachable from an input class."""
        return frozenset(self._table.get(input_class, {}))

    def route(
        self,
        input_format: str,
        requested_target: str,
        operation: Operation = Operation.CONVERT,
    ) -> RouteDecision:
        """
        Resolve a backend for a request.

        Args:
            input_format: Canonical input token (from the classifier)
            requested_target: Target as supplied by the caller
            operation: convert or compress

        Returns:
            RouteDecision

        Raises:
            ValidationError: Identity conversion not permitted
            UnsupportedFormatError: Unknown or unreachable target
        """
        source = normalize_format(input_format)
        if source is None:
            raise UnsupportedFormatError(f"Unknown input format '{input_format}'")
        input_class = FORMATS[source].input_class

        target = normalize_format(requested_target)
        if target is None:
            raise UnsupportedFormatError(f"Unknown target format '{requested_target}'")

        if target == source:
            return self._route_identity(source, input_class, operation)

        backend = self._table.get(input_class, {}).get(target)
        if backend is None:
            raise UnsupportedFormatError(
                f"Conversion from {source.upper()} to {target.upper()} is not supported"
            )

        decision = RouteDecision(
            backend=backend,
            input_format=source,
            target_format=target,
            operation=operation,
            wraps_input=backend == BackendKind.ARCHIVE,
        )
        logger.debug(f"[Router] {source} → {target} ({operation.value}) via {backend.value}")
        return decision

    def _route_identity(self, source: str, input_class: InputClass, operation: Operation) -> RouteDecision:
        if operation == Operation.CONVERT:
            raise ValidationError(f"The uploaded file is already in the selected format ({source.upper()}).")

        if self.same_format_compress == SameFormatCompressPolicy.REJECT:
            raise ValidationError(
                f"The uploaded file is already in the selected format ({source.upper()}); "
                "same-format compression is disabled."
            )

        backend, override = SAME_FORMAT_COMPRESS_TABLE[input_class]
        target = override or source
        return RouteDecision(
            backend=backend,
            input_format=source,
            target_format=target,
            operation=operation,
            wraps_input=backend == BackendKind.ARCHIVE,
        )
