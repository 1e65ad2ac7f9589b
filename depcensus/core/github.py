"""GitHub repository reference utilities."""

from __future__ import annotations


def parse_repo_ref(value: str) -> tuple[str, str]:
    """Extract (owner, repo) from ``owner/repo`` or a GitHub URL.

    Raises ValueError if the value cannot be parsed.
    """
    result = _extract_owner_repo(value)
    if result is None:
        raise ValueError(f"cannot parse GitHub repository reference: {value!r}")
    owner, repo = result.split("/", 1)
    return owner, repo


def _extract_owner_repo(value: str) -> str | None:
    """Extract 'owner/repo' from a shorthand or GitHub URL.

    Handles:
      - owner/repo
      - https://github.com/owner/repo
      - https://github.com/owner/repo.git
      - git@github.com:owner/repo.git
    """
    value = value.strip().rstrip("/")
    if value.endswith(".git"):
        value = value[:-4]

    # SSH format: git@github.com:owner/repo
    if value.startswith("git@"):
        colon_idx = value.find(":")
        if colon_idx == -1:
            return None
        value = value[colon_idx + 1 :]
    elif "://" in value:
        value = value.split("://", 1)[1]
        # drop the host
        if "/" not in value:
            return None
        value = value.split("/", 1)[1]

    parts = value.split("/")
    if len(parts) == 2 and all(parts):
        return f"{parts[0]}/{parts[1]}"
    return None
