"""
Execution layer: concurrency, workspaces, process control and streaming.

Nothing in here knows about formats or backends. Backends call into
ProcessRunner; the job engine composes the rest.
"""

from .admission import AdmissionController, AdmissionSlot
from .process import CompletedRun, ProcessRunner
from .scope import JobScope
from .streaming import ArtifactResponse, verify_artifact
from .timeout import run_with_deadline
from .workspace import Workspace, WorkspaceFactory

__all__ = [
    # Admission
    "AdmissionController",
    "AdmissionSlot",
    # Processes
    "CompletedRun",
    "ProcessRunner",
    # Resources
    "JobScope",
    "Workspace",
    "WorkspaceFactory",
    # Deadline
    "run_with_deadline",
    # Streaming
    "ArtifactResponse",
    "verify_artifact",
]
