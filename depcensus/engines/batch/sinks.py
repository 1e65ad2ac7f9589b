"""Output sinks — where flushed batches of results end up."""

from __future__ import annotations

import csv
import json
from collections.abc import Sequence
from pathlib import Path
from typing import Any, Protocol

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from depcensus.engines.dependency_resolver.models import AnalysisResult
from depcensus.models.repo import Repo

log = structlog.get_logger("depcensus.engine")

CSV_COLUMNS = (
    "repoOwner",
    "repoName",
    "builtByGovernment",
    "isPrototype",
    "updatedAt",
    "createdAt",
    "directDependencies",
    "isIndirect",
    "indirectDependencies",
    "errorsThrown",
    "unknownLockFileType",
    "couldntAccess",
    "isValid",
    "name",
    "description",
    "theme",
    "organisation",
    "liveservice",
    "facing",
    "sourceCode",
    "startPage",
    "top75",
)


class ResultSink(Protocol):
    def write(self, results: Sequence[AnalysisResult]) -> None: ...

    def close(self) -> None: ...


class JsonArraySink:
    """Streams results into a single JSON array, one batch at a time."""

    def __init__(self, path: Path) -> None:
        self.path = path
        path.parent.mkdir(parents=True, exist_ok=True)
        self._fh = path.open("w", encoding="utf-8")
        self._fh.write("[")
        self._count = 0

    def write(self, results: Sequence[AnalysisResult]) -> None:
        for result in results:
            if self._count:
                self._fh.write(",")
            self._fh.write("\n" + json.dumps(result.to_dict(), indent=2))
            self._count += 1
        self._fh.flush()
        log.info("sink.json_written", path=str(self.path), batch=len(results), total=self._count)

    def close(self) -> None:
        if self._fh.closed:
            return
        self._fh.write("\n]\n" if self._count else "]\n")
        self._fh.close()


def _csv_cell(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, (list, dict, bool)):
        return json.dumps(value)
    return value


class CsvSink:
    """Flat CSV with a fixed header; nested fields are JSON-encoded."""

    def __init__(self, path: Path) -> None:
        self.path = path
        path.parent.mkdir(parents=True, exist_ok=True)
        self._fh = path.open("w", encoding="utf-8", newline="")
        self._writer = csv.DictWriter(
            self._fh, fieldnames=CSV_COLUMNS, restval="", extrasaction="ignore"
        )
        self._writer.writeheader()

    def write(self, results: Sequence[AnalysisResult]) -> None:
        for result in results:
            row = {key: _csv_cell(value) for key, value in result.to_dict().items()}
            self._writer.writerow(row)
        self._fh.flush()
        log.info("sink.csv_written", path=str(self.path), batch=len(results))

    def close(self) -> None:
        if not self._fh.closed:
            self._fh.close()


class SqlSink:
    """Upserts results into the ``repos`` table, one row per repository."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def write(self, results: Sequence[AnalysisResult]) -> None:
        with self._session_factory() as session:
            for result in results:
                values = Repo.values_from(result)
                row = session.scalars(
                    select(Repo).where(
                        Repo.repo_owner == result.repo_owner,
                        Repo.repo_name == result.repo_name,
                    )
                ).first()
                if row is None:
                    session.add(Repo(**values))
                else:
                    for key, value in values.items():
                        setattr(row, key, value)
            session.commit()
        log.info("sink.sql_written", batch=len(results))

    def close(self) -> None:
        engine = self._session_factory.kw.get("bind")
        if engine is not None:
            engine.dispose()
