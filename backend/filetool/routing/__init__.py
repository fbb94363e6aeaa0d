"""
Format table and routing.
"""

from .formats import FORMATS, FormatSpec, InputClass, mime_type_for, normalize_format
from .router import BackendKind, FormatRouter, Operation, RouteDecision

__all__ = [
    "FORMATS",
    "FormatSpec",
    "InputClass",
    "mime_type_for",
    "normalize_format",
    "BackendKind",
    "FormatRouter",
    "Operation",
    "RouteDecision",
]
