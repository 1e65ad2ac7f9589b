"""Key-data report — summary counts over a finished results file."""

from __future__ import annotations

import json
import re
from collections import Counter
from collections.abc import Iterable, Iterator
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import structlog

log = structlog.get_logger("depcensus.report")

TRACKED_MAJORS = ("0", "1", "2", "3", "4", "5")
ACTIVE_WINDOW = timedelta(days=365)

_LEADING_OPERATORS = re.compile(r"^[~^=<>\s]+")
_FIRST_DIGIT = re.compile(r"\d")


def _records(repo: dict[str, Any]) -> Iterator[dict[str, Any]]:
    yield from repo.get("directDependencies") or []
    for group in repo.get("indirectDependencies") or []:
        yield from group


def _has_dependencies(repo: dict[str, Any]) -> bool:
    return next(_records(repo), None) is not None


def _reported_version(record: dict[str, Any]) -> str | None:
    return record.get("actualVersion") or record.get("specifiedVersion") or None


def major_of(version: str) -> str | None:
    """Major version bucket of a reported version, ``None`` outside 0-5."""
    stripped = _LEADING_OPERATORS.sub("", version)
    major = stripped[:1]
    return major if major in TRACKED_MAJORS else None


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def depends_on_major(repo: dict[str, Any], major: str) -> bool:
    """True when any resolved version in *repo* starts with *major*."""
    for record in _records(repo):
        actual = record.get("actualVersion")
        if not actual:
            continue
        digit = _FIRST_DIGIT.search(actual)
        if digit and digit.group(0) == major:
            return True
    return False


def count_versions(results: Iterable[dict[str, Any]]) -> dict[str, int]:
    """Count reported versions by major, plus ``other`` and ``missing``."""
    counts: Counter[str] = Counter({major: 0 for major in TRACKED_MAJORS})
    counts["other"] = 0
    counts["missing"] = 0
    for repo in results:
        for record in _records(repo):
            version = _reported_version(record)
            if version is None:
                counts["missing"] += 1
                continue
            counts[major_of(version) or "other"] += 1
    return dict(counts)


def parent_counts(results: Iterable[dict[str, Any]]) -> dict[str, int]:
    counts: Counter[str] = Counter()
    for repo in results:
        for group in repo.get("indirectDependencies") or []:
            for record in group:
                if record.get("parent"):
                    counts[record["parent"]] += 1
    return dict(counts.most_common())


def build_key_data(
    results: list[dict[str, Any]],
    *,
    total_repos: int,
    unprocessed_count: int = 0,
    deny_list_size: int = 0,
    now: datetime | None = None,
) -> dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    cutoff = now - ACTIVE_WINDOW
    versions = count_versions(results)

    active_gov = []
    for repo in results:
        if not repo.get("builtByGovernment") or repo.get("isPrototype"):
            continue
        updated = _parse_timestamp(repo.get("updatedAt"))
        if updated is not None and updated > cutoff:
            active_gov.append(repo)

    key_data: dict[str, Any] = {
        "dateRun": now.isoformat(),
        "totalRepos": total_repos,
        "totalProcessed": len(results),
        "totalDependencies": sum(1 for repo in results for _ in _records(repo)),
        "reposWithoutDependencies": sum(1 for repo in results if not _has_dependencies(repo)),
        "reposWithServiceInfo": sum(1 for repo in results if repo.get("name")),
        "invalidRepos": sum(1 for repo in results if not repo.get("isValid")),
        "prototypes": sum(1 for repo in results if repo.get("isPrototype")),
        "builtByGovernment": sum(1 for repo in results if repo.get("builtByGovernment")),
    }
    for major in TRACKED_MAJORS:
        key_data[f"usingVersion{major}"] = versions[major]
    key_data["usingOtherVersions"] = versions["other"]
    key_data["missingVersions"] = versions["missing"]
    key_data["activeGovRepos"] = len(active_gov)
    for major in ("5", "4", "3", "2", "1"):
        key_data[f"activeGovV{major}"] = sum(
            1 for repo in active_gov if depends_on_major(repo, major)
        )
    key_data["activeGovReposWithServiceData"] = sum(1 for repo in active_gov if repo.get("name"))
    key_data["top75"] = sum(1 for repo in results if repo.get("top75"))
    key_data["parentPackageCount"] = len(parent_counts(results))

    problems = validate_key_data(
        key_data, unprocessed_count=unprocessed_count, deny_list_size=deny_list_size
    )
    key_data["keyDataValidated"] = not problems
    return key_data


def validate_key_data(
    key_data: dict[str, Any], *, unprocessed_count: int, deny_list_size: int
) -> list[str]:
    """Consistency checks between the counts; returns the problems found."""
    problems: list[str] = []
    if key_data["totalRepos"] < key_data["totalProcessed"]:
        problems.append("total processed exceeds total repos")
    unaccounted = key_data["totalRepos"] - (key_data["totalProcessed"] + unprocessed_count)
    if unaccounted > deny_list_size:
        problems.append("there are unprocessed repos which are not accounted for")
    counted = sum(key_data[f"usingVersion{major}"] for major in TRACKED_MAJORS)
    counted += key_data["usingOtherVersions"] + key_data["missingVersions"]
    if counted != key_data["totalDependencies"]:
        problems.append("some package results are missing versions")
    for problem in problems:
        log.error("key_data.invalid", problem=problem)
    return problems


def load_results(path: Path) -> list[dict[str, Any]]:
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a JSON array of results")
    return data


def write_key_data(path: Path, key_data: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(key_data, indent=2) + "\n", encoding="utf-8")
