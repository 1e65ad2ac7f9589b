"""Tests for version extraction, indirect discovery and disambiguation."""

from __future__ import annotations

import pytest

from depcensus.engines.dependency_resolver.extractor import (
    RootVersionCache,
    disambiguate,
    discover_indirect,
    find_indirect,
    resolve_all,
    resolve_direct,
)
from depcensus.engines.dependency_resolver.models import (
    DependencyRecord,
    LockfileKind,
    LockfileModel,
    is_range,
    needs_resolution,
)
from depcensus.engines.dependency_resolver.outcome import Err, ErrorKind, Ok

TARGET = "govuk-frontend"


def _npm(packages=None, dependencies=None, path="package-lock.json") -> LockfileModel:
    return LockfileModel(
        kind=LockfileKind.PACKAGE_LOCK,
        path=path,
        packages=packages or {},
        dependencies=dependencies or {},
    )


def _yarn(entries, path="yarn.lock") -> LockfileModel:
    return LockfileModel(kind=LockfileKind.YARN_LOCK, path=path, entries=entries)


def _lookup(table):
    """Version lookup backed by ``{directory: outcome}``; records calls."""
    calls: list[str] = []

    async def lookup(directory):
        calls.append(directory)
        return table.get(directory, Err(ErrorKind.UNSUPPORTED_LOCKFILE, "none"))

    lookup.calls = calls
    return lookup


# ── TestIsRange ───────────────────────────────────────────────────────────


class TestIsRange:
    def test_operators(self):
        assert is_range("^4.0.0")
        assert is_range("~4.0.0")
        assert is_range("*")

    def test_exact_and_other(self):
        assert not is_range("4.0.0")
        assert not is_range(">=4.0.0")
        assert not is_range("")
        assert not is_range(None)

    def test_only_exact_releases_skip_resolution(self):
        assert not needs_resolution("4.0.0")
        assert not needs_resolution("v5.1.0")
        assert not needs_resolution("5.0.0-beta.1")
        assert needs_resolution("^4.0.0")
        assert needs_resolution(">=4.0.0")
        assert needs_resolution("4.x")
        assert needs_resolution("latest")
        assert needs_resolution("git+https://github.com/o/r.git")


# ── TestResolveDirect ─────────────────────────────────────────────────────


class TestResolveDirect:
    def test_packages_container(self):
        model = _npm(packages={"node_modules/govuk-frontend": {"version": "5.2.0"}})
        assert resolve_direct(model, TARGET) == "5.2.0"

    def test_legacy_dependencies_fallback(self):
        model = _npm(dependencies={"govuk-frontend": {"version": "3.14.0"}})
        assert resolve_direct(model, TARGET) == "3.14.0"

    def test_packages_preferred_over_dependencies(self):
        model = _npm(
            packages={"node_modules/govuk-frontend": {"version": "5.2.0"}},
            dependencies={"govuk-frontend": {"version": "4.0.0"}},
        )
        assert resolve_direct(model, TARGET) == "5.2.0"

    def test_absent(self):
        assert resolve_direct(_npm(packages={"node_modules/other": {"version": "1"}}), TARGET) is None

    def test_yarn_first_key_wins(self):
        model = _yarn(
            {
                "govuk-frontend@^4.0.0": {"version": "4.7.0"},
                "govuk-frontend@^5.0.0": {"version": "5.1.0"},
            }
        )
        assert resolve_direct(model, TARGET) == "4.7.0"

    def test_yarn_prefix_does_not_match_similar_names(self):
        model = _yarn({"govuk-frontend-toolkit@^9.0.0": {"version": "9.0.1"}})
        assert resolve_direct(model, TARGET) is None

    def test_resolve_all_lists_every_copy(self):
        model = _npm(
            packages={
                "node_modules/govuk-frontend": {"version": "5.2.0"},
                "node_modules/widgets/node_modules/govuk-frontend": {"version": "4.7.0"},
            }
        )
        assert resolve_all(model, TARGET) == {
            "node_modules/govuk-frontend": "5.2.0",
            "node_modules/widgets/node_modules/govuk-frontend": "4.7.0",
        }

    def test_resolve_all_yarn(self):
        model = _yarn(
            {
                "govuk-frontend@^4.0.0": {"version": "4.7.0"},
                "govuk-frontend@^5.0.0": {"version": "5.1.0"},
                "other@1": {"version": "1.0.0"},
            }
        )
        assert set(resolve_all(model, TARGET).values()) == {"4.7.0", "5.1.0"}


# ── TestFindIndirect ──────────────────────────────────────────────────────


class TestFindIndirect:
    def test_package_lock_parent(self):
        model = _npm(
            packages={
                "": {"dependencies": {"govuk-frontend": "^5.0.0"}},
                "node_modules/widgets": {
                    "version": "2.0.0",
                    "dependencies": {"govuk-frontend": "^4.0.0"},
                },
                "node_modules/govuk-frontend": {"version": "4.7.0"},
            },
            path="app/package-lock.json",
        )
        records = find_indirect(model, TARGET)
        assert records == [
            DependencyRecord(
                package_path="app/package-lock.json",
                specified_version="^4.0.0",
                actual_version="4.7.0",
                parent="node_modules/widgets",
            )
        ]

    def test_workspace_packages_are_not_parents(self):
        model = _npm(
            packages={
                "": {"workspaces": ["packages/*"]},
                "packages/site": {"dependencies": {"govuk-frontend": "^5.0.0"}},
                "node_modules/site": {"resolved": "packages/site", "link": True},
                "packages/site/node_modules/widgets": {
                    "dependencies": {"govuk-frontend": "^5.0.0"}
                },
                "node_modules/govuk-frontend": {"version": "5.1.0"},
            }
        )
        parents = [r.parent for r in find_indirect(model, TARGET)]
        assert parents == ["packages/site/node_modules/widgets"]

    def test_yarn_workspace_entries_are_not_parents(self):
        model = _yarn(
            {
                "my-app@workspace:.": {
                    "version": "0.0.0-use.local",
                    "dependencies": {"govuk-frontend": "^5.0.0"},
                },
                "widgets@^2.0.0": {
                    "version": "2.1.0",
                    "dependencies": {"govuk-frontend": "^5.0.0"},
                },
                "govuk-frontend@^5.0.0": {"version": "5.1.0"},
            }
        )
        records = find_indirect(model, TARGET)
        assert [r.parent for r in records] == ["widgets@^2.0.0"]
        assert records[0].actual_version == "5.1.0"

    def test_peer_dependencies_count(self):
        model = _npm(
            packages={
                "node_modules/a": {"peerDependencies": {"govuk-frontend": "*"}},
                "node_modules/b": {"devDependencies": {"govuk-frontend": "~5.1.0"}},
            }
        )
        parents = [r.parent for r in find_indirect(model, TARGET)]
        assert parents == ["node_modules/a", "node_modules/b"]

    def test_v1_requires(self):
        model = _npm(
            dependencies={
                "widgets": {"version": "1.0.0", "requires": {"govuk-frontend": "^3.0.0"}},
                "govuk-frontend": {"version": "3.14.0"},
            }
        )
        (record,) = find_indirect(model, TARGET)
        assert record.parent == "widgets"
        assert record.actual_version == "3.14.0"

    def test_v2_dependencies_mirror_not_double_counted(self):
        model = _npm(
            packages={"node_modules/widgets": {"dependencies": {"govuk-frontend": "^4.0.0"}}},
            dependencies={"widgets": {"requires": {"govuk-frontend": "^4.0.0"}}},
        )
        assert len(find_indirect(model, TARGET)) == 1

    def test_unresolved_range_is_doubtful(self):
        model = _npm(packages={"node_modules/widgets": {"dependencies": {"govuk-frontend": "^4.0.0"}}})
        (record,) = find_indirect(model, TARGET)
        assert record.actual_version is None
        assert record.version_doubt is True

    def test_yarn_prefers_exact_range_entry(self):
        model = _yarn(
            {
                "govuk-frontend@^4.0.0": {"version": "4.7.0"},
                "govuk-frontend@^5.0.0": {"version": "5.1.0"},
                "widgets@^2.0.0": {"version": "2.0.0", "dependencies": {"govuk-frontend": "^5.0.0"}},
            }
        )
        (record,) = find_indirect(model, TARGET)
        assert record.parent == "widgets@^2.0.0"
        assert record.actual_version == "5.1.0"

    def test_yarn_shared_entry_reported_once(self):
        shared = {"version": "2.0.0", "dependencies": {"govuk-frontend": "^5.0.0"}}
        model = _yarn(
            {
                "widgets@^2.0.0": shared,
                "widgets@^2.1.0": shared,
                "govuk-frontend@^5.0.0": {"version": "5.1.0"},
            }
        )
        assert len(find_indirect(model, TARGET)) == 1

    def test_no_reference_is_empty(self):
        model = _npm(packages={"node_modules/a": {"dependencies": {"left-pad": "1.0.0"}}})
        assert find_indirect(model, TARGET) == []


# ── TestDisambiguate ──────────────────────────────────────────────────────


class TestDisambiguate:
    @pytest.mark.anyio
    async def test_exact_version_resolves_to_itself(self):
        lookup = _lookup({})
        record = DependencyRecord("package.json", "5.1.0")
        result = await disambiguate([record], lookup)
        assert result.records[0].actual_version == "5.1.0"
        assert lookup.calls == []

    @pytest.mark.anyio
    async def test_colocated_lockfile_wins(self):
        lookup = _lookup({"app": Ok("5.2.0"), "": Ok("4.0.0")})
        record = DependencyRecord("app/package.json", "^5.0.0")
        result = await disambiguate([record], lookup)
        assert result.records[0].actual_version == "5.2.0"
        assert result.records[0].version_doubt is False
        assert lookup.calls == ["app"]

    @pytest.mark.anyio
    async def test_root_fallback(self):
        lookup = _lookup({"": Ok("5.0.1")})
        record = DependencyRecord("packages/ui/package.json", "~5.0.0")
        result = await disambiguate([record], lookup)
        assert result.records[0].actual_version == "5.0.1"
        assert lookup.calls == ["packages/ui", ""]
        assert result.unknown_lock_file_type is False

    @pytest.mark.anyio
    async def test_intermediate_directories_not_searched(self):
        lookup = _lookup({"packages": Ok("9.9.9")})
        record = DependencyRecord("packages/ui/package.json", "^5.0.0")
        result = await disambiguate([record], lookup)
        assert "packages" not in lookup.calls
        assert result.records[0].actual_version is None

    @pytest.mark.anyio
    async def test_no_lockfile_anywhere(self):
        lookup = _lookup({})
        record = DependencyRecord("package.json", "^5.0.0")
        result = await disambiguate([record], lookup)
        (resolved,) = result.records
        assert resolved.actual_version is None
        assert resolved.version_doubt is True
        assert result.unknown_lock_file_type is True
        assert result.errors == ()

    @pytest.mark.anyio
    @pytest.mark.parametrize("declared", [">=3.0.0 <4", "3.x", "latest"])
    async def test_loose_declarations_are_never_reported_as_resolved(self, declared):
        record = DependencyRecord("package.json", declared)

        resolved = await disambiguate([record], _lookup({"": Ok("3.14.0")}))
        assert resolved.records[0].actual_version == "3.14.0"

        doubtful = await disambiguate([record], _lookup({}))
        assert doubtful.records[0].actual_version is None
        assert doubtful.records[0].version_doubt is True

    @pytest.mark.anyio
    async def test_colocated_parse_failure_falls_back_to_root(self):
        lookup = _lookup(
            {"app": Err(ErrorKind.PARSE_FAILURE, "bad"), "": Ok("5.0.0")}
        )
        record = DependencyRecord("app/package.json", "^5.0.0")
        result = await disambiguate([record], lookup)
        assert result.records[0].actual_version == "5.0.0"
        assert result.unknown_lock_file_type is True

    @pytest.mark.anyio
    async def test_request_failure_recorded_once(self):
        failure = Err(ErrorKind.REQUEST_FAILED, "503")
        lookup = _lookup({"": failure})
        records = [
            DependencyRecord("package.json", "^5.0.0"),
            DependencyRecord("docs/package.json", "^5.0.0"),
        ]
        result = await disambiguate(records, lookup)
        assert result.errors == (failure,)
        assert all(r.version_doubt for r in result.records)

    @pytest.mark.anyio
    async def test_unexpected_error_kind_raises(self):
        lookup = _lookup({"": Err(ErrorKind.NO_COMMITS)})
        with pytest.raises(ValueError):
            await disambiguate([DependencyRecord("package.json", "^5.0.0")], lookup)


# ── TestDiscoverIndirect ──────────────────────────────────────────────────


class TestDiscoverIndirect:
    @pytest.mark.anyio
    async def test_groups_per_lockfile(self):
        with_ref = _npm(
            packages={"node_modules/w": {"dependencies": {"govuk-frontend": "^4.0.0"}}},
            path="app/package-lock.json",
        )
        without_ref = _npm(packages={"node_modules/x": {"version": "1.0.0"}})
        models = {"app": Ok(with_ref), "": Ok(without_ref)}

        async def load(directory):
            return models[directory]

        result = await discover_indirect(["app", ""], load, TARGET)
        assert len(result.groups) == 1
        assert result.groups[0][0].package_path == "app/package-lock.json"
        assert result.unknown_lock_file_type is False

    @pytest.mark.anyio
    async def test_no_lockfile_is_unknown(self):
        async def load(directory):
            return Err(ErrorKind.UNSUPPORTED_LOCKFILE, "none")

        result = await discover_indirect([""], load, TARGET)
        assert result.groups == ()
        assert result.unknown_lock_file_type is True

    @pytest.mark.anyio
    async def test_lockfile_without_reference_is_known(self):
        async def load(directory):
            if directory == "":
                return Ok(_npm(packages={"node_modules/x": {"version": "1.0.0"}}))
            return Err(ErrorKind.UNSUPPORTED_LOCKFILE, "none")

        result = await discover_indirect(["docs", ""], load, TARGET)
        assert result.groups == ()
        assert result.unknown_lock_file_type is False


# ── TestRootVersionCache ──────────────────────────────────────────────────


class TestRootVersionCache:
    @pytest.mark.anyio
    async def test_computes_once_per_snapshot(self):
        cache = RootVersionCache()
        calls = []

        async def compute():
            calls.append(1)
            return Ok("5.0.0")

        key = ("alphagov", "app", "sha1")
        assert await cache.get_or_compute(key, compute) == Ok("5.0.0")
        assert await cache.get_or_compute(key, compute) == Ok("5.0.0")
        assert len(calls) == 1

        await cache.get_or_compute(("alphagov", "app", "sha2"), compute)
        assert len(calls) == 2
        assert len(cache) == 2
