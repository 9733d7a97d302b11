"""构建编排"""

from buildpkg.services.orchestrator.models import (
    BuildMode,
    BuildOutcome,
    BuildRequest,
    BuildStatus,
)
from buildpkg.services.orchestrator.orchestrator import BuildOrchestrator

__all__ = [
    "BuildMode",
    "BuildOrchestrator",
    "BuildOutcome",
    "BuildRequest",
    "BuildStatus",
]
