"""Lockfile parsers — auto-registered on import."""

from depcensus.engines.dependency_resolver.parsers import (
    package_lock,  # noqa: F401
    yarn_lock,  # noqa: F401
)
