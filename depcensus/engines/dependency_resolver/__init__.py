"""Dependency resolver engine — find the target package and the version it resolves to."""

from depcensus.engines.dependency_resolver.extractor import (
    find_indirect,
    resolve_all,
    resolve_direct,
)
from depcensus.engines.dependency_resolver.models import (
    AnalysisResult,
    DependencyRecord,
    LockfileKind,
    LockfileModel,
    RepoRef,
)
from depcensus.engines.dependency_resolver.registry import parse_lockfile

# Trigger parser auto-registration
import depcensus.engines.dependency_resolver.parsers  # noqa: F401, E402

__all__ = [
    "AnalysisResult",
    "DependencyRecord",
    "LockfileKind",
    "LockfileModel",
    "RepoRef",
    "find_indirect",
    "parse_lockfile",
    "resolve_all",
    "resolve_direct",
]
