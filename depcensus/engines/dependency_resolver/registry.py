"""Lockfile parser registry — match lockfile kinds to parsers and locate files."""

from __future__ import annotations

import posixpath
from collections.abc import Collection, Iterable
from typing import Protocol, runtime_checkable

from depcensus.engines.dependency_resolver.models import (
    FileTreeEntry,
    LockfileKind,
    LockfileModel,
)
from depcensus.engines.dependency_resolver.outcome import Err, ErrorKind, Ok

# Colocated lockfiles are checked in this order.
LOCKFILE_PRIORITY = (LockfileKind.PACKAGE_LOCK, LockfileKind.YARN_LOCK)


class LockfileParseError(ValueError):
    """Raised by a parser when content is not in its format."""


@runtime_checkable
class LockfileParser(Protocol):
    """Interface that every lockfile parser must satisfy."""

    kind: LockfileKind

    @property
    def file_name(self) -> str: ...

    def parse(self, content: str, path: str) -> LockfileModel: ...


PARSER_REGISTRY: dict[LockfileKind, LockfileParser] = {}


def register_parser(parser: LockfileParser) -> None:
    """Register a parser instance by its lockfile kind."""
    PARSER_REGISTRY[parser.kind] = parser


def parse_lockfile(
    content: str, kind: LockfileKind, path: str = ""
) -> Ok[LockfileModel] | Err:
    """Parse raw lockfile text into a :class:`LockfileModel`.

    Never raises for bad content: a parser failure comes back as
    ``Err(PARSE_FAILURE)``.  A kind with no registered parser is a
    programming error and raises ``KeyError``.
    """
    parser = PARSER_REGISTRY[kind]
    try:
        return Ok(parser.parse(content, path))
    except LockfileParseError as exc:
        return Err(ErrorKind.PARSE_FAILURE, f"{path or kind.file_name}: {exc}")


def manifest_dir(manifest_path: str) -> str:
    """Directory of a manifest path, ``""`` for the repository root."""
    return posixpath.dirname(manifest_path)


def sibling_path(directory: str, file_name: str) -> str:
    return posixpath.join(directory, file_name) if directory else file_name


def locate_lockfile(
    directory: str, tree_paths: Collection[str]
) -> tuple[LockfileKind, str] | None:
    """Find the lockfile colocated with *directory* by tree existence.

    ``package-lock.json`` wins over ``yarn.lock``.  Only *directory* itself
    is checked, never its parents.
    """
    for kind in LOCKFILE_PRIORITY:
        candidate = sibling_path(directory, kind.file_name)
        if candidate in tree_paths:
            return kind, candidate
    return None


def tree_path_set(tree: Iterable[FileTreeEntry]) -> frozenset[str]:
    return frozenset(entry.path for entry in tree)
