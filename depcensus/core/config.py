"""Run configuration — environment variables plus the static data tables."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

_PACKAGE_DATA_DIR = Path(__file__).resolve().parent.parent / "data"

DEFAULT_TARGET_PACKAGE = "govuk-frontend"
DEFAULT_PROTOTYPE_PACKAGES = ("govuk-prototype-kit",)
DEFAULT_PROTOTYPE_MARKERS = ("lib/usage_data.js",)
DEFAULT_BATCH_SIZE = 500

DENY_LIST_FILE = "deny_list.json"
SERVICE_OWNERS_FILE = "service_owners.json"


@dataclass(frozen=True)
class AnalysisConfig:
    """Static inputs to the repository analyzer, loaded once per run."""

    target_package: str = DEFAULT_TARGET_PACKAGE
    deny_list: frozenset[tuple[str, str]] = frozenset()
    # owner -> {repo name -> service directory entry}
    service_owners: dict[str, dict[str, Any]] = field(default_factory=dict)
    prototype_packages: tuple[str, ...] = DEFAULT_PROTOTYPE_PACKAGES
    prototype_markers: tuple[str, ...] = DEFAULT_PROTOTYPE_MARKERS

    def is_denied(self, owner: str, name: str) -> bool:
        return (owner, name) in self.deny_list

    def is_service_owner(self, owner: str) -> bool:
        return owner in self.service_owners

    def service_for(self, owner: str, name: str) -> dict[str, Any] | None:
        return self.service_owners.get(owner, {}).get(name)


@dataclass(frozen=True)
class RunConfig:
    """Everything the batch run needs besides the candidate list."""

    analysis: AnalysisConfig
    data_dir: Path
    output_dir: Path
    batch_size: int = DEFAULT_BATCH_SIZE
    github_token: str | None = None
    database_url: str | None = None


def _env_int(key: str, default: int) -> int:
    return int(os.environ.get(key, default))


def _env_path(key: str, default: Path) -> Path:
    value = os.environ.get(key)
    return Path(value) if value else default


def load_deny_list(path: Path) -> frozenset[tuple[str, str]]:
    """Load ``[{"owner": ..., "name": ...}]`` into a set of pairs."""
    entries = json.loads(path.read_text(encoding="utf-8"))
    return frozenset((item["owner"], item["name"]) for item in entries)


def load_service_owners(path: Path) -> dict[str, dict[str, Any]]:
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected an object keyed by owner")
    return data


def _data_file(data_dir: Path, name: str) -> Path:
    """Prefer the run's data directory, fall back to the bundled defaults."""
    candidate = data_dir / name
    if candidate.is_file():
        return candidate
    return _PACKAGE_DATA_DIR / name


def load_config(
    *,
    data_dir: Path | None = None,
    output_dir: Path | None = None,
    target_package: str | None = None,
    batch_size: int | None = None,
) -> RunConfig:
    """Build the :class:`RunConfig` for one run.

    Explicit arguments win over environment variables:
        GITHUB_TOKEN              — API token (optional, unauthenticated otherwise)
        DEPCENSUS_TARGET_PACKAGE  — package to look for (default: govuk-frontend)
        DEPCENSUS_BATCH_SIZE      — results per output flush (default: 500)
        DEPCENSUS_DATA_DIR        — deny list / service owners / dependents (default: ./data)
        DEPCENSUS_OUTPUT_DIR      — where results are written (default: ./data)
        DEPCENSUS_DATABASE_URL    — optional SQLAlchemy URL for the repos table
    """
    data_dir = data_dir or _env_path("DEPCENSUS_DATA_DIR", Path("data"))
    output_dir = output_dir or _env_path("DEPCENSUS_OUTPUT_DIR", data_dir)
    target = target_package or os.environ.get(
        "DEPCENSUS_TARGET_PACKAGE", DEFAULT_TARGET_PACKAGE
    )
    size = batch_size or _env_int("DEPCENSUS_BATCH_SIZE", DEFAULT_BATCH_SIZE)
    if size < 1:
        raise ValueError(f"batch size must be positive, got {size}")

    analysis = AnalysisConfig(
        target_package=target,
        deny_list=load_deny_list(_data_file(data_dir, DENY_LIST_FILE)),
        service_owners=load_service_owners(_data_file(data_dir, SERVICE_OWNERS_FILE)),
    )
    return RunConfig(
        analysis=analysis,
        data_dir=data_dir,
        output_dir=output_dir,
        batch_size=size,
        github_token=os.environ.get("GITHUB_TOKEN"),
        database_url=os.environ.get("DEPCENSUS_DATABASE_URL"),
    )
