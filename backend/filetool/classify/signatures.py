"""
Content signature sniffing.

Detects the real format of an artifact from its leading bytes, with
container inspection for ZIP (OOXML / OpenDocument) payloads.

Detection is by content only. Filenames are never consulted here;
reconciling the declared extension is the classifier's job.
"""

import codecs
import json
import logging
import re
import zipfile
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# Bytes read from the start of a file for sniffing
HEAD_SIZE = 64 * 1024

# Sentinel for OLE2 compound files (doc/xls/ppt share one container)
OLE_COMPOUND = "ole"

_OLE_MAGIC = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"
_ASF_MAGIC = b"\x30\x26\xb2\x75\x8e\x66\xcf\x11"

_ODF_MIMETYPES = {
    "application/vnd.oasis.opendocument.text": "odt",
    "application/vnd.oasis.opendocument.spreadsheet": "ods",
    "application/vnd.oasis.opendocument.presentation": "odp",
}

_OOXML_PREFIXES = (
    ("word/", "docx"),
    ("xl/", "xlsx"),
    ("ppt/", "pptx"),
)

_ISO_BMFF_BRANDS = {
    b"avif": "avif",
    b"avis": "avif",
    b"M4A ": "m4a",
    b"M4B ": "m4a",
    b"qt  ": "mov",
    b"3gp4": "3gp",
    b"3gp5": "3gp",
    b"3gp6": "3gp",
    b"3g2a": "3gp",
}

# HEIF stills are not decodable by the image backend
_UNSUPPORTED_BRANDS = {b"heic", b"heix", b"hevc", b"mif1", b"msf1"}

# Leading XML declaration, processing instructions, comments and doctype
# (including an internal subset) that may precede the root element
_PROLOG_ITEM_RE = re.compile(
    r"\s*(?:<\?.*?\?>|<!--.*?-->|<!doctype[^>\[]*(?:\[.*?\])?\s*>)", re.DOTALL
)
_ROOT_TAG_RE = re.compile(r"\s*<([a-z][\w:.-]*)")


def read_head(path: Path, size: int = HEAD_SIZE) -> bytes:
    """Read the sniffing window from the start of a file."""
    with path.open("rb") as handle:
        return handle.read(size)


def sniff_bytes(head: bytes) -> Optional[str]:
    """
    Detect a format token from leading bytes.

    Returns a canonical format token, OLE_COMPOUND for OLE2 containers,
    "zip" for any ZIP container (see sniff_zip_container), or None when
    nothing matches.
    """
    if not head:
        return None

    binary = _sniff_binary(head)
    if binary is not None:
        return binary

    return _sniff_text(head)


def sniff_zip_container(path: Path) -> str:
    """
    Refine a ZIP detection into an office format where possible.

    OpenDocument: first member `mimetype` names the document kind.
    OOXML: `[Content_Types].xml` plus a word/, xl/ or ppt/ tree.
    """
    try:
        with zipfile.ZipFile(path) as archive:
            names = archive.namelist()
            if "mimetype" in names:
                declared = archive.read("mimetype").decode("ascii", errors="ignore").strip()
                if declared in _ODF_MIMETYPES:
                    return _ODF_MIMETYPES[declared]
            if "[Content_Types].xml" in names:
                for prefix, token in _OOXML_PREFIXES:
                    if any(name.startswith(prefix) for name in names):
                        return token
    except (zipfile.BadZipFile, OSError) as e:
        logger.debug(f"[Sniff] ZIP container inspection failed for {path.name}: {e}")
    return "zip"


def sniff_file(path: Path) -> Optional[str]:
    """Detect the format of a file on disk."""
    head = read_head(path)
    token = sniff_bytes(head)
    if token == "zip":
        return sniff_zip_container(path)
    return token


def _sniff_binary(head: bytes) -> Optional[str]:
    # Images
    if head.startswith(b"\xff\xd8\xff"):
        return "jpg"
    if head.startswith(b"\x89PNG\r\n\x1a\n"):
        return "png"
    if head[:6] in (b"GIF87a", b"GIF89a"):
        return "gif"
    if head[:4] in (b"II*\x00", b"MM\x00*"):
        return "tiff"
    if head.startswith(b"BM") and len(head) >= 18 and head[6:10] == b"\x00\x00\x00\x00":
        return "bmp"

    # RIFF family
    if head.startswith(b"RIFF") and len(head) >= 12:
        kind = head[8:12]
        if kind == b"WEBP":
            return "webp"
        if kind == b"WAVE":
            return "wav"
        if kind == b"AVI ":
            return "avi"

    # ISO base media (mp4/mov/m4a/avif)
    if len(head) >= 12 and head[4:8] == b"ftyp":
        brand = head[8:12]
        if brand in _UNSUPPORTED_BRANDS:
            return None
        return _ISO_BMFF_BRANDS.get(brand, "mp4")

    # Documents
    if b"%PDF-" in head[:1024]:
        return "pdf"
    if head.startswith(b"{\\rtf"):
        return "rtf"
    if head.startswith(_OLE_MAGIC):
        return OLE_COMPOUND
    if head[:4] in (b"PK\x03\x04", b"PK\x05\x06"):
        return "zip"

    # Audio
    if head.startswith(b"fLaC"):
        return "flac"
    if head.startswith(b"OggS"):
        return "opus" if b"OpusHead" in head[:128] else "ogg"
    if head.startswith(b"ID3"):
        return "mp3"
    if len(head) >= 2 and head[0] == 0xFF:
        second = head[1]
        if second & 0xF6 == 0xF0:
            return "aac"
        if second & 0xE0 == 0xE0 and (second >> 1) & 0x03:
            return "mp3"

    # Video containers
    if head.startswith(b"\x1a\x45\xdf\xa3"):
        return "webm" if b"webm" in head[:64] else "mkv"
    if head[:4] in (b"\x00\x00\x01\xba", b"\x00\x00\x01\xb3"):
        return "mpeg"
    if head.startswith(b"FLV\x01"):
        return "flv"
    if head.startswith(_ASF_MAGIC):
        return "wmv"

    # Archives
    if head.startswith(b"\x1f\x8b"):
        return "gz"
    if head.startswith(b"BZh"):
        return "bz2"
    if head.startswith(b"\xfd7zXZ\x00"):
        return "xz"
    if head.startswith(b"7z\xbc\xaf\x27\x1c"):
        return "7z"
    if head.startswith(b"Rar!\x1a\x07"):
        return "rar"
    if len(head) >= 262 and head[257:262] == b"ustar":
        return "tar"

    return None


def _decode_text(head: bytes) -> Optional[str]:
    """Decode a UTF-8 window, tolerating a multi-byte char cut at the edge."""
    if b"\x00" in head:
        return None
    if head.startswith(codecs.BOM_UTF8):
        head = head[len(codecs.BOM_UTF8):]
    decoder = codecs.getincrementaldecoder("utf-8")()
    try:
        return decoder.decode(head, final=False)
    except UnicodeDecodeError:
        return None


def _root_element(lowered: str) -> Optional[str]:
    """Name of the first element after the prolog, or None."""
    pos = 0
    while True:
        item = _PROLOG_ITEM_RE.match(lowered, pos)
        if item is None or item.end() == pos:
            break
        pos = item.end()
    tag = _ROOT_TAG_RE.match(lowered, pos)
    return tag.group(1) if tag else None


def _sniff_text(head: bytes) -> Optional[str]:
    text = _decode_text(head)
    if text is None:
        return None

    stripped = text.lstrip()
    lowered = stripped[:4096].lower()

    if lowered.startswith("<!doctype html") or lowered.startswith("<html"):
        return "html"
    root = _root_element(lowered) if lowered.startswith("<") else None
    if root in ("svg", "svg:svg"):
        return "svg"
    if root == "html":
        return "html"
    if lowered.startswith("<?xml"):
        return "xml"
    if stripped[:1] in ("{", "[") and len(head) < HEAD_SIZE:
        try:
            json.loads(stripped)
            return "json"
        except ValueError:
            pass
    return "txt"
