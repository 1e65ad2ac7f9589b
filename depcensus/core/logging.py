"""Structured logging for depcensus runs — structlog over stdlib logging.

Console output goes to stderr so that ``depcensus analyze`` can print its
result row on stdout.  A batch run can additionally keep a JSON-lines log
file next to its output, one event per line, for later inspection.
"""

from __future__ import annotations

import logging
import logging.config
import os
from pathlib import Path
from typing import Any

import structlog

# Third-party loggers that are only interesting when something breaks.
QUIET_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine")


def _shared_processors() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]


def _formatter(
    renderer: structlog.types.Processor, pre_chain: list[structlog.types.Processor]
) -> dict[str, Any]:
    return {
        "()": structlog.stdlib.ProcessorFormatter,
        "foreign_pre_chain": pre_chain,
        "processors": [
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    }


def setup_logging(verbose: bool = False, log_file: Path | None = None) -> None:
    """Configure structlog and stdlib logging for one process.

    Environment:
        DEPCENSUS_LOG_LEVEL  — level for depcensus loggers (default: INFO)
        DEPCENSUS_LOG_FORMAT — console | json for stderr (default: console)
        DEPCENSUS_LOG_FILE   — JSON-lines log file, used when *log_file* is None

    *verbose* forces DEBUG.  The log file always receives JSON at the same
    level as the console.
    """
    level = "DEBUG" if verbose else os.environ.get("DEPCENSUS_LOG_LEVEL", "INFO").upper()
    console_format = os.environ.get("DEPCENSUS_LOG_FORMAT", "console").lower()
    if log_file is None and os.environ.get("DEPCENSUS_LOG_FILE"):
        log_file = Path(os.environ["DEPCENSUS_LOG_FILE"])

    pre_chain = _shared_processors()
    console_renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer()
        if console_format == "json"
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    formatters = {"console": _formatter(console_renderer, pre_chain)}
    handlers: dict[str, dict[str, Any]] = {
        "console": {
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stderr",
            "formatter": "console",
        },
    }
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        formatters["jsonl"] = _formatter(structlog.processors.JSONRenderer(), pre_chain)
        handlers["file"] = {
            "class": "logging.FileHandler",
            "filename": str(log_file),
            "encoding": "utf-8",
            "formatter": "jsonl",
        }

    structlog.configure(
        processors=pre_chain + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": formatters,
            "handlers": handlers,
            "root": {"handlers": list(handlers), "level": level},
            "loggers": {
                "depcensus": {"level": level},
                **{name: {"level": "WARNING"} for name in QUIET_LOGGERS},
            },
        }
    )
