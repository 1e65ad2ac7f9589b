"""Batch driver and output sinks."""

from depcensus.engines.batch.runner import (
    BatchRunner,
    BatchSummary,
    load_candidates,
    write_unprocessed,
)
from depcensus.engines.batch.sinks import CsvSink, JsonArraySink, ResultSink, SqlSink

__all__ = [
    "BatchRunner",
    "BatchSummary",
    "CsvSink",
    "JsonArraySink",
    "ResultSink",
    "SqlSink",
    "load_candidates",
    "write_unprocessed",
]
