"""RepositoryAnalyzer — sequences fetch, scan, classify and resolve for one repository."""

from __future__ import annotations

import enum
from collections.abc import Awaitable, Callable
from dataclasses import replace
from typing import Any, Protocol, TypeVar

import httpx
import structlog

from depcensus.core.config import AnalysisConfig
from depcensus.engines.dependency_resolver.extractor import (
    RootVersionCache,
    disambiguate,
    discover_indirect,
    resolve_all,
    resolve_direct,
)
from depcensus.engines.dependency_resolver.manifest import (
    find_direct_dependencies,
    manifest_paths,
    parse_manifests,
)
from depcensus.engines.dependency_resolver.models import (
    AnalysisResult,
    FileTreeEntry,
    LockfileModel,
    ManifestObject,
    RepoMetadata,
    RepoRef,
)
from depcensus.engines.dependency_resolver.outcome import Err, ErrorKind, Ok
from depcensus.engines.dependency_resolver.prototype import is_prototype
from depcensus.engines.dependency_resolver.registry import (
    locate_lockfile,
    manifest_dir,
    parse_lockfile,
    tree_path_set,
)
from depcensus.engines.github_client import RateLimitError

# Ensure parsers are registered before any lockfile is parsed.
import depcensus.engines.dependency_resolver.parsers  # noqa: F401, E402

log = structlog.get_logger("depcensus.engine")

T = TypeVar("T")

_REQUEST_ERRORS = (httpx.HTTPError, RateLimitError)

# Failures that end the analysis of a repository early.
_FATAL_KINDS = (
    ErrorKind.METADATA_UNAVAILABLE,
    ErrorKind.NO_COMMITS,
    ErrorKind.TREE_UNAVAILABLE,
    ErrorKind.REQUEST_FAILED,
)


class AnalysisState(enum.Enum):
    START = "start"
    DENY_LIST_CHECKED = "deny_list_checked"
    METADATA_FETCHED = "metadata_fetched"
    TREE_FETCHED = "tree_fetched"
    MANIFESTS_SCANNED = "manifests_scanned"
    CLASSIFIED = "classified"
    DEPENDENCIES_RESOLVED = "dependencies_resolved"
    DONE = "done"
    ERRORED = "errored"


class RepositorySource(Protocol):
    """What the analyzer needs from the hosting API."""

    async def get_repository_metadata(self, owner: str, name: str) -> RepoMetadata: ...

    async def get_file_tree(self, owner: str, name: str, sha: str) -> list[FileTreeEntry]: ...

    async def get_file_content(
        self, owner: str, name: str, path: str, ref: str | None = None
    ) -> str: ...


async def _call(fn: Callable[..., Awaitable[T]], *args: Any) -> Ok[T] | Err:
    """Await a source call, turning request failures into ``Err(REQUEST_FAILED)``."""
    try:
        return Ok(await fn(*args))
    except _REQUEST_ERRORS as exc:
        return Err(ErrorKind.REQUEST_FAILED, f"{type(exc).__name__}: {exc}")


class _LockfileSession:
    """Lockfile access for one repository snapshot."""

    def __init__(
        self,
        source: RepositorySource,
        repo: RepoRef,
        sha: str,
        tree_paths: frozenset[str],
        target: str,
        cache: RootVersionCache,
    ) -> None:
        self._source = source
        self._repo = repo
        self._sha = sha
        self._tree_paths = tree_paths
        self._target = target
        self._cache = cache

    async def load_model(self, directory: str) -> Ok[LockfileModel] | Err:
        located = locate_lockfile(directory, self._tree_paths)
        if located is None:
            return Err(ErrorKind.UNSUPPORTED_LOCKFILE, f"no lockfile in '{directory or '/'}'")
        kind, path = located

        content = await _call(
            self._source.get_file_content, self._repo.owner, self._repo.name, path, self._sha
        )
        if isinstance(content, Err):
            return content

        outcome = parse_lockfile(content.value, kind, path)
        if isinstance(outcome, Err):
            log.warning("lockfile.parse_failed", path=path, error=outcome.detail)
        return outcome

    async def lookup_version(self, directory: str) -> Ok[str | None] | Err:
        """Target version from *directory*'s lockfile; the root is memoized."""
        if directory == "":
            key = (self._repo.owner, self._repo.name, self._sha)
            return await self._cache.get_or_compute(key, self._root_version)
        return self._resolve(await self.load_model(directory))

    async def _root_version(self) -> Ok[str | None] | Err:
        return self._resolve(await self.load_model(""))

    def _resolve(self, outcome: Ok[LockfileModel] | Err) -> Ok[str | None] | Err:
        if isinstance(outcome, Err):
            return outcome
        model = outcome.value
        versions = resolve_all(model, self._target)
        if len(set(versions.values())) > 1:
            log.info("lockfile.multiple_versions", path=model.path, versions=versions)
        return Ok(resolve_direct(model, self._target))


class RepositoryAnalyzer:
    """Runs one repository through the resolver and emits one result.

    The deny list, service-owner registry and target package come in through
    *config*; *cache* holds the root-lockfile version memo and may be shared
    across repositories of a run.
    """

    def __init__(
        self,
        source: RepositorySource,
        config: AnalysisConfig,
        cache: RootVersionCache | None = None,
    ) -> None:
        self._source = source
        self._config = config
        self._cache = cache if cache is not None else RootVersionCache()

    @property
    def config(self) -> AnalysisConfig:
        return self._config

    async def analyze(self, repo: RepoRef) -> AnalysisResult | None:
        """Analyze *repo*; ``None`` means it is deny-listed and was not touched."""
        if self._config.is_denied(repo.owner, repo.name):
            log.info("analyzer.deny_listed", repo=repo.full_name)
            return None

        with structlog.contextvars.bound_contextvars(repo=repo.full_name):
            self._transition(AnalysisState.DENY_LIST_CHECKED)
            built_by_government = self._config.is_service_owner(repo.owner)
            log.info("analyzer.start", built_by_government=built_by_government)
            result = AnalysisResult(
                repo_owner=repo.owner,
                repo_name=repo.name,
                built_by_government=built_by_government,
                service=self._config.service_for(repo.owner, repo.name),
            )
            result = await self._run(repo, result)
            self._transition(AnalysisState.ERRORED if result.couldnt_access else AnalysisState.DONE)
            log.info(
                "analyzer.done",
                direct=len(result.direct_dependencies),
                indirect=sum(len(g) for g in result.indirect_dependencies),
                errors=len(result.errors_thrown),
                valid=result.is_valid,
            )
            return result

    # ── stages ────────────────────────────────────────────────────────────

    async def _run(self, repo: RepoRef, result: AnalysisResult) -> AnalysisResult:
        metadata = await self._fetch_metadata(repo)
        if isinstance(metadata, Err):
            return self._record(result, metadata)
        meta = metadata.value
        result = replace(result, created_at=meta.created_at or "", updated_at=meta.updated_at or "")
        self._transition(AnalysisState.METADATA_FETCHED)

        tree_outcome = await self._fetch_tree(repo, meta.head_sha or "")
        if isinstance(tree_outcome, Err):
            return self._record(result, tree_outcome)
        tree = tree_outcome.value
        self._transition(AnalysisState.TREE_FETCHED)

        manifests, errors = await self._scan_manifests(repo, tree, meta.head_sha or "")
        for err in errors:
            result = self._record(result, err)
        self._transition(AnalysisState.MANIFESTS_SCANNED)

        prototype = is_prototype(
            manifests,
            tree,
            marker_files=self._config.prototype_markers,
            prototype_packages=self._config.prototype_packages,
        )
        if prototype:
            log.info("analyzer.prototype")
        result = replace(result, is_prototype=prototype)
        self._transition(AnalysisState.CLASSIFIED)

        session = _LockfileSession(
            self._source,
            repo,
            meta.head_sha or "",
            tree_path_set(tree),
            self._config.target_package,
            self._cache,
        )
        result = await self._resolve_dependencies(result, manifests, session)
        self._transition(AnalysisState.DEPENDENCIES_RESOLVED)
        return result

    async def _fetch_metadata(self, repo: RepoRef) -> Ok[RepoMetadata] | Err:
        log.debug("analyzer.fetch_metadata")
        outcome = await _call(self._source.get_repository_metadata, repo.owner, repo.name)
        if isinstance(outcome, Err):
            return outcome
        meta = outcome.value
        if not meta.created_at or not meta.updated_at:
            return Err(ErrorKind.METADATA_UNAVAILABLE, "could not fetch creation/update time")
        if not meta.head_sha:
            return Err(ErrorKind.NO_COMMITS, "could not fetch latest commit SHA")
        return outcome

    async def _fetch_tree(self, repo: RepoRef, sha: str) -> Ok[list[FileTreeEntry]] | Err:
        log.debug("analyzer.fetch_tree", sha=sha)
        outcome = await _call(self._source.get_file_tree, repo.owner, repo.name, sha)
        if isinstance(outcome, Err):
            return outcome
        if not outcome.value:
            return Err(ErrorKind.TREE_UNAVAILABLE, f"empty tree at {sha}")
        return outcome

    async def _scan_manifests(
        self, repo: RepoRef, tree: list[FileTreeEntry], sha: str
    ) -> tuple[list[ManifestObject], list[Err]]:
        files: list[tuple[str, str]] = []
        errors: list[Err] = []
        for path in manifest_paths(tree):
            outcome = await _call(self._source.get_file_content, repo.owner, repo.name, path, sha)
            if isinstance(outcome, Err):
                errors.append(outcome)
                continue
            files.append((path, outcome.value))
        manifests = parse_manifests(files)
        log.info("analyzer.manifests", found=len(files), parsed=len(manifests))
        return manifests, errors

    async def _resolve_dependencies(
        self,
        result: AnalysisResult,
        manifests: list[ManifestObject],
        session: _LockfileSession,
    ) -> AnalysisResult:
        target = self._config.target_package
        direct = find_direct_dependencies(manifests, target)

        if direct:
            log.info("analyzer.direct_dependencies", count=len(direct))
            resolved = await disambiguate(direct, session.lookup_version)
            result = replace(
                result,
                direct_dependencies=resolved.records,
                unknown_lock_file_type=result.unknown_lock_file_type
                or resolved.unknown_lock_file_type,
            )
            errors = resolved.errors
        else:
            directories: list[str] = []
            for manifest in manifests:
                directory = manifest_dir(manifest.path)
                if directory not in directories:
                    directories.append(directory)
            # The root lockfile is always searched.
            if "" not in directories:
                directories.append("")
            discovery = await discover_indirect(directories, session.load_model, target)
            log.info("analyzer.indirect_dependencies", lockfile_groups=len(discovery.groups))
            result = replace(
                result,
                indirect_dependencies=discovery.groups,
                unknown_lock_file_type=result.unknown_lock_file_type
                or discovery.unknown_lock_file_type,
            )
            errors = discovery.errors

        for err in errors:
            result = self._record(result, err)
        return result

    # ── helpers ───────────────────────────────────────────────────────────

    @staticmethod
    def _record(result: AnalysisResult, err: Err) -> AnalysisResult:
        """Fold a failure into the result according to its kind."""
        if err.kind in _FATAL_KINDS:
            log.error("analyzer.error", kind=err.kind.value, detail=err.detail)
            return replace(
                result,
                errors_thrown=result.errors_thrown + (str(err),),
                couldnt_access=True,
            )
        if err.kind in (ErrorKind.UNSUPPORTED_LOCKFILE, ErrorKind.PARSE_FAILURE):
            log.warning("analyzer.lockfile_unknown", kind=err.kind.value, detail=err.detail)
            return replace(result, unknown_lock_file_type=True)
        raise ValueError(f"unrecognized error kind: {err.kind!r}")

    @staticmethod
    def _transition(state: AnalysisState) -> None:
        log.debug("analyzer.state", state=state.value)
