"""
Markup safety screening.

Vector images are XML and can carry script. Before an SVG is accepted
it is scanned for executable constructs, remote inclusion markers and
event-handler attributes. Any hit rejects the upload.
"""

import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

# One start tag: name, then attributes with quoted values kept whole. An
# unterminated quote runs to the end of the text, so the scan stays linear.
_START_TAG_RE = re.compile(r"<[a-z][^\s/>]*(?:[^>\"']|\"[^\"]*\"?|'[^']*'?)*>?", re.IGNORECASE)
_EVENT_HANDLER_RE = re.compile(r"[\s\"'/]on[a-z]+\s*=", re.IGNORECASE)


def _has_event_handler(text: str) -> bool:
    """on*= inside a start tag; character data is ignored."""
    return any(_EVENT_HANDLER_RE.search(tag.group()) for tag in _START_TAG_RE.finditer(text))


_RULES: Tuple[Tuple[str, Callable[[str], object]], ...] = (
    ("script element", re.compile(r"<\s*script\b", re.IGNORECASE).search),
    ("script URL", re.compile(r"(?:java|vb)script\s*:", re.IGNORECASE).search),
    ("html data URL", re.compile(r"data\s*:\s*text/html", re.IGNORECASE).search),
    ("event handler attribute", _has_event_handler),
    (
        "remote reference",
        re.compile(r"\bhref\s*=\s*[\"']\s*(?:https?:)?//", re.IGNORECASE).search,
    ),
    ("foreignObject element", re.compile(r"<\s*foreignObject\b", re.IGNORECASE).search),
    ("embedded frame", re.compile(r"<\s*(?:iframe|embed|object)\b", re.IGNORECASE).search),
    ("entity declaration", re.compile(r"<!\s*ENTITY\b", re.IGNORECASE).search),
)


@dataclass(frozen=True)
class MarkupVerdict:
    """Result of a markup scan."""

    safe: bool
    findings: Tuple[str, ...] = ()

    @property
    def reason(self) -> Optional[str]:
        if self.safe:
            return None
        return ", ".join(self.findings)


def scan_markup(text: str) -> MarkupVerdict:
    """
    Scan markup text for unsafe constructs.

    Returns:
        MarkupVerdict listing every rule that matched
    """
    findings: List[str] = [name for name, matches in _RULES if matches(text)]
    return MarkupVerdict(safe=not findings, findings=tuple(findings))
