"""Prototype detection."""

from __future__ import annotations

from collections.abc import Collection, Iterable

from depcensus.engines.dependency_resolver.models import FileTreeEntry, ManifestObject


def is_prototype(
    manifests: Iterable[ManifestObject],
    tree: Iterable[FileTreeEntry],
    *,
    marker_files: Collection[str] = ("lib/usage_data.js",),
    prototype_packages: Collection[str] = ("govuk-prototype-kit",),
) -> bool:
    """True for instances of a prototyping kit.

    A marker file at an exact path is the cheaper and more reliable signal
    for older kit instances, so it is checked before any manifest.
    """
    if any(entry.path in marker_files for entry in tree):
        return True
    return any(
        package in manifest.dependencies
        for manifest in manifests
        for package in prototype_packages
    )
