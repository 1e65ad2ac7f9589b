"""BatchRunner — drives the analyzer over the candidate list and flushes results."""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx
import structlog

from depcensus.core.config import DEFAULT_BATCH_SIZE
from depcensus.engines.batch.sinks import ResultSink
from depcensus.engines.dependency_resolver.analyzer import RepositoryAnalyzer
from depcensus.engines.dependency_resolver.models import AnalysisResult, RepoRef
from depcensus.engines.github_client import RateLimitError

log = structlog.get_logger("depcensus.engine")

CANDIDATES_KEY = "all_public_dependent_repos"
UNPROCESSED_FILE = "unprocessed.json"

RateLimitProbe = Callable[[], Awaitable["int | None"]]


def load_candidates(path: Path) -> list[dict[str, Any]]:
    """Read the dependents list: ``{"all_public_dependent_repos": [...]}``."""
    data = json.loads(path.read_text(encoding="utf-8"))
    entries = data.get(CANDIDATES_KEY) if isinstance(data, dict) else None
    if not isinstance(entries, list):
        raise ValueError(f"{path}: missing '{CANDIDATES_KEY}' list")
    return entries


def _repo_ref(entry: dict[str, Any]) -> RepoRef:
    return RepoRef(owner=entry["owner"], name=entry["repo_name"])


@dataclass
class BatchSummary:
    total: int = 0
    processed: int = 0
    emitted: int = 0
    deny_listed: int = 0
    batches: int = 0
    unprocessed: list[dict[str, Any]] = field(default_factory=list)


class BatchRunner:
    """Sequential driver: one repository at a time, flushing every *batch_size* results."""

    def __init__(
        self,
        analyzer: RepositoryAnalyzer,
        sinks: Sequence[ResultSink],
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        rate_limit_probe: RateLimitProbe | None = None,
        unprocessed_path: Path | None = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch size must be positive, got {batch_size}")
        self._analyzer = analyzer
        self._sinks = list(sinks)
        self._batch_size = batch_size
        self._rate_limit_probe = rate_limit_probe
        self._unprocessed_path = unprocessed_path

    async def run(self, candidates: Sequence[dict[str, Any]]) -> BatchSummary:
        summary = BatchSummary(total=len(candidates))
        processed: list[int] = []
        buffer: list[AnalysisResult] = []
        log.info("batch.start", total=summary.total, batch_size=self._batch_size)

        try:
            for index, entry in enumerate(candidates):
                try:
                    repo = _repo_ref(entry)
                except (KeyError, TypeError, ValueError) as exc:
                    log.warning("batch.invalid_candidate", index=index, error=str(exc))
                    continue

                result = await self._analyzer.analyze(repo)
                processed.append(index)
                if result is None:
                    summary.deny_listed += 1
                else:
                    buffer.append(result)
                    summary.emitted += 1
                log.info("batch.progress", repo=repo.full_name, position=index + 1, total=summary.total)
                await self._log_rate_limit()

                if len(buffer) >= self._batch_size:
                    self._flush(buffer)
                    summary.batches += 1
                    buffer = []
        finally:
            if buffer:
                self._flush(buffer)
                summary.batches += 1

        summary.processed = len(processed)
        summary.unprocessed = self._unprocessed(candidates, processed)
        if self._unprocessed_path is not None:
            write_unprocessed(self._unprocessed_path, summary.unprocessed)
        log.info(
            "batch.done",
            processed=summary.processed,
            emitted=summary.emitted,
            unprocessed=len(summary.unprocessed),
        )
        return summary

    def _flush(self, buffer: list[AnalysisResult]) -> None:
        for sink in self._sinks:
            sink.write(buffer)
        log.info("batch.flushed", size=len(buffer))

    def _unprocessed(
        self, candidates: Sequence[dict[str, Any]], processed: list[int]
    ) -> list[dict[str, Any]]:
        done = set(processed)
        config = self._analyzer.config
        return [
            entry
            for index, entry in enumerate(candidates)
            if index not in done
            and not (
                isinstance(entry, dict)
                and config.is_denied(entry.get("owner", ""), entry.get("repo_name", ""))
            )
        ]

    async def _log_rate_limit(self) -> None:
        if self._rate_limit_probe is None:
            return
        try:
            remaining = await self._rate_limit_probe()
        except (httpx.HTTPError, RateLimitError) as exc:
            log.warning("batch.rate_limit_unavailable", error=str(exc))
            return
        log.info("batch.rate_limit", remaining=remaining)


def write_unprocessed(path: Path, entries: list[dict[str, Any]]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(entries, indent=2) + "\n", encoding="utf-8")
