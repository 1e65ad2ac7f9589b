"""Data models for the dependency resolver engine."""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass, field
from typing import Any

RANGE_OPERATORS = ("^", "~", "*")
# A pinned release: 1.2.3, optionally "v" or "=" prefixed, with prerelease/build tags.
_EXACT_VERSION = re.compile(r"^[v=]?\d+\.\d+\.\d+(?:-[0-9A-Za-z.-]+)?(?:\+[0-9A-Za-z.-]+)?$")


class LockfileKind(enum.Enum):
    """The two lockfile formats the resolver understands."""

    PACKAGE_LOCK = "package-lock.json"
    YARN_LOCK = "yarn.lock"

    @property
    def file_name(self) -> str:
        return self.value


@dataclass(frozen=True)
class RepoRef:
    owner: str
    name: str

    def __post_init__(self) -> None:
        if not self.owner:
            raise ValueError("owner must be provided")
        if not self.name:
            raise ValueError("name must be provided")

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


@dataclass(frozen=True)
class RepoMetadata:
    """Repository metadata the analyzer needs from the API."""

    created_at: str | None
    updated_at: str | None
    default_branch: str | None = None
    head_sha: str | None = None


@dataclass(frozen=True)
class FileTreeEntry:
    """A single path in a repository tree at a given commit."""

    path: str
    type: str = "blob"


@dataclass(frozen=True)
class ManifestObject:
    """A parsed package.json: its tree path and its dependency maps."""

    path: str
    dependencies: dict[str, str] = field(default_factory=dict)
    dev_dependencies: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class DependencyRecord:
    """One occurrence of the target package, direct or indirect.

    *package_path* is the manifest the record came from (direct) or the
    lockfile it was found in (indirect).  *version_doubt* marks a range
    declaration that could not be resolved to a concrete version.
    """

    package_path: str
    specified_version: str
    actual_version: str | None = None
    parent: str | None = None
    version_doubt: bool = False

    @property
    def is_range(self) -> bool:
        return is_range(self.specified_version)

    @property
    def needs_resolution(self) -> bool:
        return needs_resolution(self.specified_version)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "packagePath": self.package_path,
            "specifiedVersion": self.specified_version,
        }
        if self.actual_version is not None:
            d["actualVersion"] = self.actual_version
        if self.parent is not None:
            d["parent"] = self.parent
        if self.version_doubt:
            d["versionDoubt"] = True
        return d


@dataclass(frozen=True)
class LockfileModel:
    """Normalized, format-tagged view of a parsed lockfile.

    ``PACKAGE_LOCK`` models keep the two npm containers apart:
    *packages* (keyed ``node_modules/<name>``) and the legacy
    *dependencies* (keyed by bare name).  ``YARN_LOCK`` models hold a
    single map in *entries*, keyed ``<name>@<range>``.
    """

    kind: LockfileKind
    path: str = ""
    packages: dict[str, dict[str, Any]] = field(default_factory=dict)
    dependencies: dict[str, dict[str, Any]] = field(default_factory=dict)
    entries: dict[str, dict[str, Any]] = field(default_factory=dict)


@dataclass(frozen=True)
class AnalysisResult:
    """Per-repository output record, emitted exactly once."""

    repo_owner: str
    repo_name: str
    built_by_government: bool = False
    is_prototype: bool = False
    created_at: str = ""
    updated_at: str = ""
    direct_dependencies: tuple[DependencyRecord, ...] = ()
    indirect_dependencies: tuple[tuple[DependencyRecord, ...], ...] = ()
    errors_thrown: tuple[str, ...] = ()
    unknown_lock_file_type: bool = False
    couldnt_access: bool = False
    service: dict[str, Any] | None = None

    @property
    def is_indirect(self) -> bool:
        return not self.direct_dependencies

    @property
    def is_valid(self) -> bool:
        """No errors, and either something was found or the lockfile was unknown."""
        if self.errors_thrown:
            return False
        if (
            not self.direct_dependencies
            and not self.indirect_dependencies
            and not self.unknown_lock_file_type
        ):
            return False
        return True

    def to_dict(self) -> dict[str, Any]:
        row: dict[str, Any] = {
            "repoOwner": self.repo_owner,
            "repoName": self.repo_name,
            "builtByGovernment": self.built_by_government,
            "isPrototype": self.is_prototype,
            "updatedAt": self.updated_at,
            "createdAt": self.created_at,
            "directDependencies": [d.to_dict() for d in self.direct_dependencies],
            "isIndirect": self.is_indirect,
            "indirectDependencies": [
                [d.to_dict() for d in group] for group in self.indirect_dependencies
            ],
            "errorsThrown": list(self.errors_thrown),
            "unknownLockFileType": self.unknown_lock_file_type,
            "couldntAccess": self.couldnt_access,
            "isValid": self.is_valid,
        }
        if self.service:
            row.update(service_fields(self.service))
        return row


def is_range(version: str | None) -> bool:
    """True when a declared version starts with ``^``, ``~`` or ``*``."""
    return bool(version) and version.strip().startswith(RANGE_OPERATORS)


def is_exact(version: str | None) -> bool:
    """True for a single pinned release such as ``5.1.0``."""
    return bool(version) and _EXACT_VERSION.match(version.strip()) is not None


def needs_resolution(version: str | None) -> bool:
    """Anything but an exact release must be looked up in a lockfile.

    Covers the ``^ ~ *`` operators as well as comparators (``>=3 <4``),
    x-ranges (``3.x``), dist-tags (``latest``) and URLs.
    """
    return is_range(version) or not is_exact(version)


def service_fields(service: dict[str, Any]) -> dict[str, Any]:
    """Flatten a service directory entry into output columns."""
    fields = {
        "name": service.get("name"),
        "description": service.get("description"),
        "theme": service.get("theme"),
        "organisation": service.get("organisation"),
        "liveservice": service.get("liveservice"),
        "facing": service.get("facing"),
        "sourceCode": service.get("sourceCode"),
        "startPage": service.get("start-page"),
    }
    tags = service.get("tags") or []
    if "Top 75" in tags:
        fields["top75"] = True
    return fields
