"""
Type classifier.

Reconciles detected content type with the declared filename extension
and screens markup-capable inputs. Runs before admission, so a rejected
upload never consumes a concurrency slot.

Rules:
- Content decides the format, the filename only has to agree with it
- Signature-less formats are accepted on the extension alone (allow-list)
- Generic text yields to a declared text extension (.md, .csv, ...)
- SVG must pass the markup scan
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, FrozenSet, Optional

from ..errors import TypeMismatchError, UnsafeContentError, UnsupportedInputError
from ..routing.formats import (
    FORMATS,
    SIGNATURELESS_FORMATS,
    InputClass,
    normalize_format,
)
from .markup import scan_markup
from .signatures import OLE_COMPOUND, sniff_file

logger = logging.getLogger(__name__)


# Container families: a declared extension from the same family is
# trusted over the brand/doctype guess.
_CONTAINER_FAMILIES: Dict[str, FrozenSet[str]] = {
    "mp4": frozenset({"mp4", "m4a", "mov", "3gp"}),
    "m4a": frozenset({"mp4", "m4a", "mov", "3gp"}),
    "mov": frozenset({"mp4", "m4a", "mov", "3gp"}),
    "3gp": frozenset({"mp4", "m4a", "mov", "3gp"}),
    "mkv": frozenset({"mkv", "webm"}),
    "webm": frozenset({"mkv", "webm"}),
    "ogg": frozenset({"ogg", "opus"}),
    "opus": frozenset({"ogg", "opus"}),
    "mp3": frozenset({"mp3", "mpeg"}),
}

_OLE_FORMATS = frozenset({"doc", "xls", "ppt"})
_OFFICE_ZIP_FORMATS = frozenset({"docx", "xlsx", "pptx", "odt", "ods", "odp"})


@dataclass(frozen=True)
class ClassifiedInput:
    """
    Outcome of classification.

    Attributes:
        format: Canonical format token of the input
        input_class: Route table row for the input
        detected: Raw sniffing result (None when accepted via allow-list)
        is_safe: Markup screening verdict (always True for non-markup)
    """

    format: str
    input_class: InputClass
    detected: Optional[str]
    is_safe: bool = True


def declared_extension(filename: str) -> str:
    """Lower-case extension of a client filename, without the dot."""
    suffix = Path(filename or "").suffix
    return suffix[1:].lower() if suffix else ""


class TypeClassifier:
    """
    Classifies stored uploads.

    Stateless; one instance is shared by all jobs.
    """

    def __init__(self, markup_scan_limit: int = 16 * 1024 * 1024):
        self.markup_scan_limit = markup_scan_limit

    def classify(self, path: Path, declared_name: str) -> ClassifiedInput:
        """
        Classify a stored upload.

        Args:
            path: Stored upload inside the job workspace
            declared_name: Client-supplied filename

        Returns:
            ClassifiedInput with canonical format and class

        Raises:
            UnsupportedInputError: Undetectable content, extension not allow-listed
            TypeMismatchError: Extension contradicts the content
            UnsafeContentError: SVG with script or remote references
        """
        declared_raw = declared_extension(declared_name)
        declared = normalize_format(declared_raw)
        detected = sniff_file(path)

        logger.debug(
            f"[Classify] {declared_name!r}: declared={declared_raw or '-'} detected={detected or '-'}"
        )

        token = self._reconcile(declared_raw, declared, detected)
        spec = FORMATS[token]

        if spec.input_class == InputClass.VECTOR:
            self._screen_markup(path)

        return ClassifiedInput(format=token, input_class=spec.input_class, detected=detected)

    def _reconcile(self, declared_raw: str, declared: Optional[str], detected: Optional[str]) -> str:
        # Opaque binary is whatever the client says it is
        if declared == "bin":
            return "bin"

        if detected is None:
            if declared in SIGNATURELESS_FORMATS:
                return declared
            shown = f".{declared_raw}" if declared_raw else "(no extension)"
            raise UnsupportedInputError(
                f"Could not detect the file type and extension {shown} is not accepted without a signature"
            )

        if detected == OLE_COMPOUND:
            if declared in _OLE_FORMATS:
                return declared
            if not declared_raw:
                return "doc"
            raise TypeMismatchError(declared_raw, "office compound document")

        detected_spec = FORMATS[detected]

        if not declared_raw:
            return detected

        if declared == detected:
            return detected

        # Text sniffing is weak: any declared text format wins, and an
        # unknown extension on text content keeps the sniffed token.
        if detected_spec.input_class == InputClass.TEXT:
            if declared is None:
                return detected
            if FORMATS[declared].input_class == InputClass.TEXT:
                return declared
            raise TypeMismatchError(declared_raw, detected)

        if declared is not None and declared in _CONTAINER_FAMILIES.get(detected, frozenset()):
            return declared

        # An office document is a ZIP; treat it as one when the client does.
        if detected in _OFFICE_ZIP_FORMATS and declared == "zip":
            return "zip"

        raise TypeMismatchError(declared_raw, detected)

    def _screen_markup(self, path: Path) -> None:
        with path.open("rb") as handle:
            raw = handle.read(self.markup_scan_limit + 1)
        if len(raw) > self.markup_scan_limit:
            raise UnsafeContentError("Vector image is too large to screen for embedded content")

        verdict = scan_markup(raw.decode("utf-8", errors="replace"))
        if not verdict.safe:
            logger.warning(f"[Classify] Rejected unsafe markup in {path.name}: {verdict.reason}")
            raise UnsafeContentError(f"Unsafe SVG content detected ({verdict.reason})")
