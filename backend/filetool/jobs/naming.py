"""
Download filename resolution.

Client-supplied names are sanitized once, at ingest. Backends never
construct download names; they write `output.<ext>` into the workspace
and the engine names the artifact here.

Rules:
- Directory components and control / reserved characters are dropped
- Converted output: `<stem>.<target>`
- Wrapped output (archive): `<original name>.<target>`
"""

import re
import unicodedata
from pathlib import PurePosixPath
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..routing.router import RouteDecision

DEFAULT_NAME = "file"
MAX_NAME_LENGTH = 200

_RESERVED_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f\x7f]')


def sanitize_filename(name: str) -> str:
    """
    Make a client filename safe for Content-Disposition and archive members.

    Example:
        >>> sanitize_filename("../../etc/pass:wd.txt")
        "passwd.txt"
    """
    if not name:
        return DEFAULT_NAME
    name = unicodedata.normalize("NFC", name).replace("\\", "/")
    name = PurePosixPath(name).name
    name = _RESERVED_CHARS.sub("", name).strip().lstrip(".").strip()
    if not name:
        return DEFAULT_NAME
    if len(name) > MAX_NAME_LENGTH:
        suffix = PurePosixPath(name).suffix
        if len(suffix) >= MAX_NAME_LENGTH:
            suffix = ""
        name = name[: MAX_NAME_LENGTH - len(suffix)] + suffix
    return name


def download_name(original_name: str, route: "RouteDecision") -> str:
    """Filename offered to the client for the produced artifact."""
    if route.wraps_input:
        return f"{original_name}.{route.output_extension}"
    stem = PurePosixPath(original_name).stem or DEFAULT_NAME
    return f"{stem}.{route.output_extension}"
