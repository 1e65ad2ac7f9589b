"""Manifest scanning — parse package.json files and find direct declarations."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

import structlog

from depcensus.engines.dependency_resolver.models import (
    DependencyRecord,
    FileTreeEntry,
    ManifestObject,
)
from depcensus.engines.dependency_resolver.outcome import Err, ErrorKind, Ok
from depcensus.engines.dependency_resolver.parsers.tolerant_json import loads_tolerant

log = structlog.get_logger("depcensus.engine")

MANIFEST_FILE = "package.json"


def manifest_paths(tree: Iterable[FileTreeEntry]) -> list[str]:
    """Paths of every package.json in the tree, outside node_modules."""
    return [
        entry.path
        for entry in tree
        if entry.type == "blob"
        and (entry.path == MANIFEST_FILE or entry.path.endswith("/" + MANIFEST_FILE))
        and "node_modules" not in entry.path
    ]


def _string_map(value: Any) -> dict[str, str]:
    if not isinstance(value, dict):
        return {}
    return {str(k): str(v) for k, v in value.items() if isinstance(v, (str, int, float))}


def parse_manifest(path: str, content: str) -> Ok[ManifestObject] | Err:
    """Parse one package.json; malformed content becomes ``Err(PARSE_FAILURE)``."""
    try:
        data = loads_tolerant(content)
    except ValueError as exc:
        return Err(ErrorKind.PARSE_FAILURE, f"{path}: {exc}")
    if not isinstance(data, dict):
        return Err(ErrorKind.PARSE_FAILURE, f"{path}: top level is not an object")
    return Ok(
        ManifestObject(
            path=path,
            dependencies=_string_map(data.get("dependencies")),
            dev_dependencies=_string_map(data.get("devDependencies")),
        )
    )


def parse_manifests(files: Iterable[tuple[str, str]]) -> list[ManifestObject]:
    """Parse ``(path, content)`` pairs, skipping and logging malformed files."""
    manifests: list[ManifestObject] = []
    for path, content in files:
        outcome = parse_manifest(path, content)
        if isinstance(outcome, Err):
            log.warning("manifest.parse_failed", path=path, error=outcome.detail)
            continue
        manifests.append(outcome.value)
    return manifests


def find_direct_dependencies(
    manifests: Iterable[ManifestObject], target: str
) -> list[DependencyRecord]:
    """One record per manifest that declares *target*.

    ``dependencies`` is checked before ``devDependencies``; when a manifest
    lists the target in both, the runtime declaration wins.
    """
    results: list[DependencyRecord] = []
    for manifest in manifests:
        version = manifest.dependencies.get(target) or manifest.dev_dependencies.get(target)
        if version:
            results.append(DependencyRecord(package_path=manifest.path, specified_version=version))
    return results
