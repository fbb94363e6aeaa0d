"""
Content-based type detection and markup screening.
"""

from .classifier import ClassifiedInput, TypeClassifier, declared_extension
from .markup import MarkupVerdict, scan_markup
from .signatures import sniff_bytes, sniff_file

__all__ = [
    "ClassifiedInput",
    "TypeClassifier",
    "declared_extension",
    "MarkupVerdict",
    "scan_markup",
    "sniff_bytes",
    "sniff_file",
]
