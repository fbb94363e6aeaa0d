"""
Canonical format table.

Pure data: every format the service recognizes, its canonical token,
spelling synonyms, artifact family and MIME type.

CRITICAL RULES:
1. The canonical token IS the output file extension
2. Synonyms collapse to the canonical token before any comparison
3. No backend or tool knowledge lives here (see router.py)
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Optional


class InputClass(str, Enum):
    """Artifact family used as the row key of the route table."""

    IMAGE = "image"
    VECTOR = "vector"
    PDF = "pdf"
    DOCUMENT = "document"
    SPREADSHEET = "spreadsheet"
    PRESENTATION = "presentation"
    TEXT = "text"
    AUDIO = "audio"
    VIDEO = "video"
    ARCHIVE = "archive"
    BINARY = "binary"


@dataclass(frozen=True)
class FormatSpec:
    """
    One recognized format.

    Attributes:
        token: Canonical lower-case token, also the output extension
        input_class: Family the format belongs to when used as input
        mime_type: Content-Type sent when streaming this format
        synonyms: Alternative spellings accepted from users and filenames
    """

    token: str
    input_class: InputClass
    mime_type: str
    synonyms: FrozenSet[str] = frozenset()


def _spec(token: str, input_class: InputClass, mime_type: str, *synonyms: str) -> FormatSpec:
    return FormatSpec(token, input_class, mime_type, frozenset(synonyms))


# ============================================================================
# FORMAT TABLE
# ============================================================================

FORMATS: Dict[str, FormatSpec] = {
    spec.token: spec
    for spec in (
        # Raster images
        _spec("jpg", InputClass.IMAGE, "image/jpeg", "jpeg", "jpe", "jfif"),
        _spec("png", InputClass.IMAGE, "image/png"),
        _spec("webp", InputClass.IMAGE, "image/webp"),
        _spec("avif", InputClass.IMAGE, "image/avif"),
        _spec("gif", InputClass.IMAGE, "image/gif"),
        _spec("bmp", InputClass.IMAGE, "image/bmp", "dib"),
        _spec("tiff", InputClass.IMAGE, "image/tiff", "tif"),
        # Vector images (markup-capable)
        _spec("svg", InputClass.VECTOR, "image/svg+xml"),
        # Documents
        _spec("pdf", InputClass.PDF, "application/pdf"),
        _spec("doc", InputClass.DOCUMENT, "application/msword"),
        _spec(
            "docx",
            InputClass.DOCUMENT,
            "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        ),
        _spec("odt", InputClass.DOCUMENT, "application/vnd.oasis.opendocument.text"),
        _spec("rtf", InputClass.DOCUMENT, "application/rtf"),
        _spec("xls", InputClass.SPREADSHEET, "application/vnd.ms-excel"),
        _spec(
            "xlsx",
            InputClass.SPREADSHEET,
            "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        ),
        _spec("ods", InputClass.SPREADSHEET, "application/vnd.oasis.opendocument.spreadsheet"),
        _spec("ppt", InputClass.PRESENTATION, "application/vnd.ms-powerpoint"),
        _spec(
            "pptx",
            InputClass.PRESENTATION,
            "application/vnd.openxmlformats-officedocument.presentationml.presentation",
        ),
        _spec("odp", InputClass.PRESENTATION, "application/vnd.oasis.opendocument.presentation"),
        # Text
        _spec("txt", InputClass.TEXT, "text/plain; charset=utf-8", "text", "log"),
        _spec("md", InputClass.TEXT, "text/markdown; charset=utf-8", "markdown"),
        _spec("csv", InputClass.TEXT, "text/csv; charset=utf-8"),
        _spec("tsv", InputClass.TEXT, "text/tab-separated-values; charset=utf-8"),
        _spec("html", InputClass.TEXT, "text/html; charset=utf-8", "htm", "xhtml"),
        _spec("json", InputClass.TEXT, "application/json"),
        _spec("xml", InputClass.TEXT, "application/xml"),
        _spec("yaml", InputClass.TEXT, "application/yaml", "yml"),
        # Audio
        _spec("mp3", InputClass.AUDIO, "audio/mpeg"),
        _spec("wav", InputClass.AUDIO, "audio/wav", "wave"),
        _spec("ogg", InputClass.AUDIO, "audio/ogg", "oga"),
        _spec("opus", InputClass.AUDIO, "audio/opus"),
        _spec("flac", InputClass.AUDIO, "audio/flac"),
        _spec("aac", InputClass.AUDIO, "audio/aac"),
        _spec("m4a", InputClass.AUDIO, "audio/mp4"),
        # Video
        _spec("mp4", InputClass.VIDEO, "video/mp4", "m4v"),
        _spec("webm", InputClass.VIDEO, "video/webm"),
        _spec("mkv", InputClass.VIDEO, "video/x-matroska", "matroska"),
        _spec("mov", InputClass.VIDEO, "video/quicktime", "qt"),
        _spec("avi", InputClass.VIDEO, "video/x-msvideo"),
        _spec("mpeg", InputClass.VIDEO, "video/mpeg", "mpg"),
        _spec("flv", InputClass.VIDEO, "video/x-flv"),
        _spec("wmv", InputClass.VIDEO, "video/x-ms-wmv"),
        _spec("3gp", InputClass.VIDEO, "video/3gpp"),
        # Archives
        _spec("zip", InputClass.ARCHIVE, "application/zip"),
        _spec("gz", InputClass.ARCHIVE, "application/gzip", "gzip", "gzipped"),
        _spec("bz2", InputClass.ARCHIVE, "application/x-bzip2", "bzip2"),
        _spec("xz", InputClass.ARCHIVE, "application/x-xz"),
        _spec("7z", InputClass.ARCHIVE, "application/x-7z-compressed"),
        _spec("rar", InputClass.ARCHIVE, "application/vnd.rar"),
        _spec("tar", InputClass.ARCHIVE, "application/x-tar"),
        # Opaque binary
        _spec("bin", InputClass.BINARY, "application/octet-stream", "dat"),
    )
}

_SYNONYMS: Dict[str, str] = {
    alias: spec.token for spec in FORMATS.values() for alias in spec.synonyms
}

# Formats with no reliable content signature. Accepted on the declared
# extension alone when sniffing finds nothing.
SIGNATURELESS_FORMATS: FrozenSet[str] = frozenset({
    "txt", "md", "csv", "tsv", "json", "xml", "yaml",
    "aac", "mpeg", "wmv", "flv", "3gp", "tar", "bin",
})

DEFAULT_MIME_TYPE = "application/octet-stream"


def normalize_format(token: Optional[str]) -> Optional[str]:
    """
    Collapse a user- or filename-supplied token to its canonical form.

    Accepts leading dots and any case. Returns None for unknown tokens.
    """
    if not token:
        return None
    cleaned = token.strip().lower().lstrip(".")
    if cleaned in FORMATS:
        return cleaned
    return _SYNONYMS.get(cleaned)


def get_format(token: str) -> Optional[FormatSpec]:
    """Look up the spec for a token or synonym."""
    canonical = normalize_format(token)
    return FORMATS.get(canonical) if canonical else None


def mime_type_for(token: str) -> str:
    """MIME type for a token, octet-stream when unknown."""
    spec = get_format(token)
    return spec.mime_type if spec else DEFAULT_MIME_TYPE


def is_text_format(token: str) -> bool:
    spec = get_format(token)
    return spec is not None and spec.input_class == InputClass.TEXT
