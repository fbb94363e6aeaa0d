"""
Health and capabilities endpoints.

Usage:
    GET /api/tools/file/health        → admission and workspace counters
    GET /api/tools/file/capabilities  → probed tools and who needs them

Status is truthful: an unavailable tool is reported with its reason,
never hidden.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel

from ..backends.registry import TOOL_CONSUMERS
from ..capabilities.registry import CapabilityRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tools/file", tags=["health"])


# =============================================================================
# Response Models
# =============================================================================


class HealthResponse(BaseModel):
    """Live admission and workspace counters."""

    ok: bool
    activeProcesses: int
    waiting: int
    capacity: int
    maxQueueDepth: Optional[int] = None
    openWorkspaces: int


class ToolEntry(BaseModel):
    """One probed external capability."""

    tool: str
    purpose: str
    available: bool
    path: Optional[str] = None
    reason: Optional[str] = None
    usedBy: List[str]


class CapabilitiesResponse(BaseModel):
    """Complete capabilities report."""

    timestamp: str
    tools: List[ToolEntry]


# =============================================================================
# Endpoints
# =============================================================================


@router.get("/health", response_model=HealthResponse)
async def health(request: Request) -> HealthResponse:
    return HealthResponse(**request.app.state.job_engine.health())


@router.get("/capabilities", response_model=CapabilitiesResponse)
async def capabilities(request: Request) -> CapabilitiesResponse:
    """
    Report startup probe results.

    The registry is probed once at startup; this endpoint never re-probes.
    """
    registry: CapabilityRegistry = request.app.state.capabilities
    tools = [
        ToolEntry(
            **status.to_dict(),
            usedBy=[kind.value for kind in TOOL_CONSUMERS.get(status.tool, [])],
        )
        for status in registry.list_tools()
    ]
    return CapabilitiesResponse(
        timestamp=datetime.now(timezone.utc).isoformat(),
        tools=tools,
    )
