"""Parser for npm package-lock.json files (lockfileVersion 1, 2 and 3)."""

from __future__ import annotations

from typing import Any

from depcensus.engines.dependency_resolver.models import LockfileKind, LockfileModel
from depcensus.engines.dependency_resolver.parsers.tolerant_json import loads_tolerant
from depcensus.engines.dependency_resolver.registry import (
    LockfileParseError,
    register_parser,
)


def _entry_map(value: Any) -> dict[str, dict[str, Any]]:
    """Keep only object-valued entries of a packages/dependencies container."""
    if not isinstance(value, dict):
        return {}
    return {key: entry for key, entry in value.items() if isinstance(entry, dict)}


class PackageLockParser:
    kind = LockfileKind.PACKAGE_LOCK

    @property
    def file_name(self) -> str:
        return self.kind.file_name

    def parse(self, content: str, path: str) -> LockfileModel:
        try:
            data = loads_tolerant(content)
        except ValueError as exc:
            raise LockfileParseError(f"invalid JSON: {exc}") from exc

        if not isinstance(data, dict):
            raise LockfileParseError("top level is not an object")

        # v2/v3 carry "packages"; v1 (and v2 for back-compat) carry "dependencies".
        # Lookups try both, so they are kept side by side rather than merged.
        return LockfileModel(
            kind=self.kind,
            path=path,
            packages=_entry_map(data.get("packages")),
            dependencies=_entry_map(data.get("dependencies")),
        )


register_parser(PackageLockParser())
