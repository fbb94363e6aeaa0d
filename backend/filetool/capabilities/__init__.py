"""
External tool capability probing.
"""

from .registry import CapabilityRegistry, ToolName, ToolStatus, probe_tool

__all__ = [
    "CapabilityRegistry",
    "ToolName",
    "ToolStatus",
    "probe_tool",
]
