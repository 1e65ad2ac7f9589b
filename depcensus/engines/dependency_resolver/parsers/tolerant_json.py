"""JSON loading that tolerates hand-edited files (trailing commas, comments)."""

from __future__ import annotations

import json
from typing import Any

import json5


def loads_tolerant(content: str) -> Any:
    """Strict ``json`` first (fast path for large lockfiles), then JSON5.

    Raises ValueError when neither accepts the content.
    """
    content = content.lstrip("\ufeff")
    try:
        return json.loads(content)
    except json.JSONDecodeError:
        pass
    return json5.loads(content)
