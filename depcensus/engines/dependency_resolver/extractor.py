"""Version extraction — resolve the target's version and find who pulls it in."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable, Iterator
from dataclasses import dataclass, field, replace
from typing import Any

import structlog

from depcensus.engines.dependency_resolver.models import (
    DependencyRecord,
    LockfileKind,
    LockfileModel,
    needs_resolution,
)
from depcensus.engines.dependency_resolver.outcome import Err, ErrorKind, Ok
from depcensus.engines.dependency_resolver.registry import manifest_dir

log = structlog.get_logger("depcensus.engine")

# Maps of an entry that can declare the target, in precedence order.
# ``requires`` is the lockfileVersion 1 spelling of ``dependencies``.
_DECLARING_FIELDS = ("dependencies", "devDependencies", "peerDependencies", "requires")

VersionLookup = Callable[[str], Awaitable["Ok[str | None] | Err"]]
ModelLoader = Callable[[str], Awaitable["Ok[LockfileModel] | Err"]]


def _version_of(entry: Any) -> str | None:
    if not isinstance(entry, dict):
        return None
    version = entry.get("version")
    return str(version) if version else None


# ── Contract A: direct resolution ────────────────────────────────────────


def resolve_direct(model: LockfileModel, target: str) -> str | None:
    """Return the version the lockfile resolves *target* to, if any.

    package-lock: ``packages["node_modules/<target>"]`` then the legacy
    ``dependencies[<target>]``.  yarn.lock: the first ``<target>@...`` key
    in file order; further keys are not merged.
    """
    if model.kind is LockfileKind.PACKAGE_LOCK:
        return _version_of(model.packages.get(f"node_modules/{target}")) or _version_of(
            model.dependencies.get(target)
        )
    if model.kind is LockfileKind.YARN_LOCK:
        prefix = f"{target}@"
        for key, entry in model.entries.items():
            if key.startswith(prefix):
                return _version_of(entry)
        return None
    raise ValueError(f"unsupported lockfile kind: {model.kind!r}")


def resolve_all(model: LockfileModel, target: str) -> dict[str, str]:
    """Every resolved copy of *target*, keyed by lockfile entry key.

    Covers nested ``node_modules`` installs and multiple yarn ranges, which
    :func:`resolve_direct` deliberately collapses to one answer.
    """
    found: dict[str, str] = {}
    for key, entry in _iter_entries(model):
        if _is_target_key(model.kind, key, target):
            version = _version_of(entry)
            if version:
                found[key] = version
    return found


# ── Contract B: indirect discovery ───────────────────────────────────────


def find_indirect(model: LockfileModel, target: str) -> list[DependencyRecord]:
    """Records for every lockfile entry that declares *target* as a dependency.

    Emitted in lockfile order.  ``actual_version`` is the lockfile's own
    resolution of *target* (looked up once); for yarn.lock the exact
    ``<target>@<range>`` entry wins when it exists.
    """
    resolved = resolve_direct(model, target)
    records: list[DependencyRecord] = []
    for key, entry in _iter_entries(model):
        if _is_project_key(model, key) or _is_target_key(model.kind, key, target):
            continue
        declared = _declared_range(entry, target)
        if declared is None:
            continue

        actual = resolved
        if model.kind is LockfileKind.YARN_LOCK:
            actual = _version_of(model.entries.get(f"{target}@{declared}")) or resolved

        records.append(
            DependencyRecord(
                package_path=model.path,
                specified_version=declared,
                actual_version=actual,
                parent=key,
                version_doubt=actual is None and needs_resolution(declared),
            )
        )
    return records


def _declared_range(entry: dict[str, Any], target: str) -> str | None:
    for field_name in _DECLARING_FIELDS:
        deps = entry.get(field_name)
        if not isinstance(deps, dict):
            continue
        # v1 "dependencies" nests whole entries; only string ranges count.
        value = deps.get(target)
        if isinstance(value, str) and value:
            return value
    return None


def _iter_entries(model: LockfileModel) -> Iterator[tuple[str, dict[str, Any]]]:
    if model.kind is LockfileKind.PACKAGE_LOCK:
        # v2 lockfiles mirror "packages" into "dependencies"; walk the
        # legacy container only when it is the sole one (v1).
        yield from (model.packages or model.dependencies).items()
    elif model.kind is LockfileKind.YARN_LOCK:
        # A multi-specifier block is one entry under several keys.
        seen: set[int] = set()
        for key, entry in model.entries.items():
            if id(entry) in seen:
                continue
            seen.add(id(entry))
            yield key, entry
    else:
        raise ValueError(f"unsupported lockfile kind: {model.kind!r}")


def _is_project_key(model: LockfileModel, key: str) -> bool:
    """The project itself or one of its workspaces, never an installed package."""
    if model.kind is LockfileKind.YARN_LOCK:
        return "@workspace:" in key
    if key == "":
        return True
    # lockfileVersion 2+ lists local workspaces by their path in "packages"
    return bool(model.packages) and "node_modules/" not in key


def _is_target_key(kind: LockfileKind, key: str, target: str) -> bool:
    if kind is LockfileKind.YARN_LOCK:
        return key.startswith(f"{target}@")
    return key == target or key.endswith(f"node_modules/{target}")


# ── Disambiguation ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class Disambiguation:
    records: tuple[DependencyRecord, ...]
    unknown_lock_file_type: bool = False
    errors: tuple[Err, ...] = ()


@dataclass(frozen=True)
class IndirectDiscovery:
    groups: tuple[tuple[DependencyRecord, ...], ...]
    unknown_lock_file_type: bool = False
    errors: tuple[Err, ...] = ()


@dataclass
class _Flags:
    unknown: bool = False
    errors: list[Err] = field(default_factory=list)

    def absorb(self, err: Err) -> None:
        """Fold a lockfile lookup failure into the flags."""
        if err.kind in (ErrorKind.UNSUPPORTED_LOCKFILE, ErrorKind.PARSE_FAILURE):
            self.unknown = True
        elif err.kind is ErrorKind.REQUEST_FAILED:
            if err not in self.errors:
                self.errors.append(err)
        else:
            raise ValueError(f"unexpected lockfile lookup error: {err.kind!r}")


async def disambiguate(
    records: Iterable[DependencyRecord], lookup: VersionLookup
) -> Disambiguation:
    """Resolve range declarations to the version actually installed.

    *lookup(directory)* resolves the target from the lockfile colocated with
    *directory*; ``lookup("")`` is the repository root and is expected to be
    memoized by the caller.  A range is tried against its own directory,
    then the root, and nothing in between.  Comparators, x-ranges and tags
    are treated like ranges; only exact releases resolve to themselves.
    """
    flags = _Flags()
    resolved: list[DependencyRecord] = []

    for record in records:
        if not record.needs_resolution:
            resolved.append(replace(record, actual_version=record.specified_version))
            continue

        directory = manifest_dir(record.package_path)
        candidates = [directory, ""] if directory else [""]
        version: str | None = None
        missing: list[Err] = []
        for candidate in candidates:
            outcome = await lookup(candidate)
            if isinstance(outcome, Ok):
                version = outcome.value
                if version:
                    break
            elif outcome.kind is ErrorKind.UNSUPPORTED_LOCKFILE:
                missing.append(outcome)
            else:
                flags.absorb(outcome)

        if version is None:
            # No lockfile anywhere we are allowed to look.
            if len(missing) == len(candidates):
                flags.absorb(missing[0])
            log.debug(
                "extractor.version_doubt",
                package_path=record.package_path,
                specified=record.specified_version,
            )
        resolved.append(
            replace(record, actual_version=version, version_doubt=version is None)
        )

    return Disambiguation(
        records=tuple(resolved),
        unknown_lock_file_type=flags.unknown,
        errors=tuple(flags.errors),
    )


async def discover_indirect(
    directories: Iterable[str], load: ModelLoader, target: str
) -> IndirectDiscovery:
    """Run :func:`find_indirect` over the lockfile of every directory.

    Only lockfiles that yield at least one record contribute a group.
    """
    flags = _Flags()
    groups: list[tuple[DependencyRecord, ...]] = []
    found_lockfile = False
    missing: Err | None = None

    for directory in directories:
        outcome = await load(directory)
        if isinstance(outcome, Err):
            if outcome.kind is ErrorKind.UNSUPPORTED_LOCKFILE:
                missing = missing or outcome
            else:
                flags.absorb(outcome)
            continue
        found_lockfile = True
        records = find_indirect(outcome.value, target)
        if records:
            groups.append(tuple(records))

    if not found_lockfile and missing is not None:
        flags.absorb(missing)

    return IndirectDiscovery(
        groups=tuple(groups),
        unknown_lock_file_type=flags.unknown,
        errors=tuple(flags.errors),
    )


class RootVersionCache:
    """Memo of the root lockfile's resolved target version per repository snapshot.

    Keyed by ``(owner, name, sha)`` so a new commit is never served a stale
    answer.  Failures are cached too: the root lockfile is consulted once.
    """

    def __init__(self) -> None:
        self._values: dict[tuple[str, str, str], Ok[str | None] | Err] = {}

    def __len__(self) -> int:
        return len(self._values)

    async def get_or_compute(
        self,
        key: tuple[str, str, str],
        compute: Callable[[], Awaitable[Ok[str | None] | Err]],
    ) -> Ok[str | None] | Err:
        if key not in self._values:
            self._values[key] = await compute()
        return self._values[key]
