"""Closed result type returned by every fallible resolver step."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Generic, TypeVar, Union

T = TypeVar("T")


class ErrorKind(enum.Enum):
    METADATA_UNAVAILABLE = "metadata_unavailable"
    NO_COMMITS = "no_commits"
    TREE_UNAVAILABLE = "tree_unavailable"
    REQUEST_FAILED = "request_failed"
    UNSUPPORTED_LOCKFILE = "unsupported_lockfile"
    PARSE_FAILURE = "parse_failure"


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Err:
    kind: ErrorKind
    detail: str = ""

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.detail}" if self.detail else self.kind.value


Outcome = Union[Ok[T], Err]
