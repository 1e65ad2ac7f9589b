"""Parser for yarn.lock files — legacy v1 blocks, with a YAML fallback for Berry."""

from __future__ import annotations

import json
import re
from typing import Any

import yaml

from depcensus.engines.dependency_resolver.models import LockfileKind, LockfileModel
from depcensus.engines.dependency_resolver.registry import (
    LockfileParseError,
    register_parser,
)

_QUOTED = r'"(?:[^"\\]|\\.)*"'

# key value   (key may be quoted; value is the rest of the line)
_PAIR_RE = re.compile(rf"^(?P<key>{_QUOTED}|[^\s\"]+)\s+(?P<value>.+)$")

# One specifier inside a comma-separated block header.
_HEADER_KEY_RE = re.compile(rf"{_QUOTED}|[^,\s][^,]*")

_CONFLICT_MARKERS = ("<<<<<<<", "=======", ">>>>>>>")

_INDENT = 2

_METADATA_KEY = "__metadata"


def _unquote(token: str) -> str:
    token = token.strip()
    if token.startswith('"'):
        try:
            return json.loads(token)
        except json.JSONDecodeError as exc:
            raise LockfileParseError(f"bad quoted string {token!r}") from exc
    return token


def _scalar(token: str) -> Any:
    token = token.strip()
    if token.startswith('"'):
        return _unquote(token)
    if token == "true":
        return True
    if token == "false":
        return False
    return token


def parse_legacy(content: str) -> dict[str, Any]:
    """Parse the yarn v1 block format into nested dicts.

    Raises LockfileParseError on anything that is not v1 syntax, including
    the ``key: value`` lines of the newer YAML-based format.
    """
    root: dict[str, Any] = {}
    # (indent of the line that opened the block, block)
    stack: list[tuple[int, dict[str, Any]]] = [(-_INDENT, root)]

    for lineno, raw in enumerate(content.splitlines(), start=1):
        stripped = raw.strip()
        if not stripped or stripped.startswith("#"):
            continue
        if raw.startswith(_CONFLICT_MARKERS):
            raise LockfileParseError(f"line {lineno}: merge conflict marker")

        indent = len(raw) - len(raw.lstrip(" "))
        while indent <= stack[-1][0]:
            stack.pop()
        expected = stack[-1][0] + _INDENT
        if indent != expected:
            raise LockfileParseError(
                f"line {lineno}: indent {indent}, expected {expected}"
            )
        block = stack[-1][1]

        if stripped.endswith(":"):
            keys = [_unquote(k) for k in _HEADER_KEY_RE.findall(stripped[:-1])]
            if not keys:
                raise LockfileParseError(f"line {lineno}: empty block header")
            child: dict[str, Any] = {}
            for key in keys:
                block[key] = child
            stack.append((indent, child))
            continue

        match = _PAIR_RE.match(stripped)
        if match is None:
            raise LockfileParseError(f"line {lineno}: expected 'key value'")
        key = match.group("key")
        if not key.startswith('"') and key.endswith(":"):
            raise LockfileParseError(f"line {lineno}: 'key: value' is not v1 syntax")
        if indent == 0:
            raise LockfileParseError(f"line {lineno}: top-level value outside a block")
        block[_unquote(key)] = _scalar(match.group("value"))

    return root


def parse_berry(content: str) -> dict[str, Any]:
    """Parse the YAML-compatible (Yarn 2+) format."""
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as exc:
        raise LockfileParseError(f"invalid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise LockfileParseError("top level is not a mapping")
    return data


def split_specifier(spec: str) -> tuple[str, str]:
    """``@scope/pkg@^1.0`` -> (``@scope/pkg``, ``^1.0``)."""
    at = spec.find("@", 1)
    if at == -1:
        return spec, ""
    return spec[:at], spec[at + 1 :]


def _strip_protocol(value: str) -> str:
    return value[4:] if value.startswith("npm:") else value


def normalize_entries(raw: dict[str, Any]) -> dict[str, dict[str, Any]]:
    """Key every entry by ``<name>@<range>``, one key per specifier."""
    entries: dict[str, dict[str, Any]] = {}
    for header, value in raw.items():
        if header == _METADATA_KEY or not isinstance(value, dict):
            continue
        entry = dict(value)
        if "version" in entry and entry["version"] is not None:
            entry["version"] = str(entry["version"])
        deps = entry.get("dependencies")
        if isinstance(deps, dict):
            entry["dependencies"] = {
                name: _strip_protocol(str(rng)) for name, rng in deps.items()
            }
        for spec in str(header).split(","):
            spec = spec.strip()
            if not spec:
                continue
            name, rng = split_specifier(spec)
            key = f"{name}@{_strip_protocol(rng)}"
            entries.setdefault(key, entry)
    return entries


class YarnLockParser:
    kind = LockfileKind.YARN_LOCK

    @property
    def file_name(self) -> str:
        return self.kind.file_name

    def parse(self, content: str, path: str) -> LockfileModel:
        try:
            raw = parse_legacy(content)
        except LockfileParseError as legacy_exc:
            try:
                raw = parse_berry(content)
            except LockfileParseError as berry_exc:
                raise LockfileParseError(
                    f"not a v1 lockfile ({legacy_exc}) nor YAML ({berry_exc})"
                ) from berry_exc
        return LockfileModel(kind=self.kind, path=path, entries=normalize_entries(raw))


register_parser(YarnLockParser())
