"""Async GitHub API client with rate-limit handling and retries."""

from __future__ import annotations

import asyncio
import time
from typing import Any
from urllib.parse import quote

import httpx
import structlog

from depcensus.engines.dependency_resolver.models import FileTreeEntry, RepoMetadata

log = structlog.get_logger("depcensus.engine")

_MAX_RETRIES = 3
_RETRY_BASE_DELAY = 1.0  # seconds

_RAW_MEDIA_TYPE = "application/vnd.github.raw+json"


class RateLimitError(Exception):
    """Raised when GitHub rate limit is exhausted and we need to wait."""

    def __init__(self, retry_after: int) -> None:
        self.retry_after = retry_after
        super().__init__(f"rate limit exceeded, retry after {retry_after}s")


class GitHubClient:
    """Thin async wrapper around the GitHub REST API.

    Implements the repository source the analyzer reads from: metadata,
    the recursive tree at a commit, and raw file content.
    """

    def __init__(self, token: str | None = None, *, base_url: str = "https://api.github.com") -> None:
        headers: dict[str, str] = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if token:
            headers["Authorization"] = f"token {token}"
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=30.0,
        )

    # ── lifecycle ──────────────────────────────────────────────────────────

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> GitHubClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # ── repository source ─────────────────────────────────────────────────

    async def get_repository_metadata(self, owner: str, name: str) -> RepoMetadata:
        """Creation/update timestamps and the default branch head commit.

        ``head_sha`` is None for repositories without commits.
        """
        repo = await self.get(f"/repos/{owner}/{name}")
        branch = repo.get("default_branch")
        head_sha: str | None = None
        if branch:
            try:
                data = await self.get(f"/repos/{owner}/{name}/branches/{quote(branch, safe='')}")
                head_sha = (data.get("commit") or {}).get("sha")
            except httpx.HTTPStatusError as exc:
                # 404 / 409: empty repository, branch not created yet
                if exc.response.status_code not in (404, 409):
                    raise
        return RepoMetadata(
            created_at=repo.get("created_at"),
            updated_at=repo.get("pushed_at") or repo.get("updated_at"),
            default_branch=branch,
            head_sha=head_sha,
        )

    async def get_file_tree(self, owner: str, name: str, sha: str) -> list[FileTreeEntry]:
        """Recursive tree listing at *sha*."""
        data = await self.get(
            f"/repos/{owner}/{name}/git/trees/{sha}", params={"recursive": "1"}
        )
        if data.get("truncated"):
            log.warning("github.tree_truncated", repo=f"{owner}/{name}", sha=sha)
        return [
            FileTreeEntry(path=item["path"], type=item.get("type", "blob"))
            for item in data.get("tree") or []
            if item.get("path")
        ]

    async def get_file_content(
        self, owner: str, name: str, path: str, ref: str | None = None
    ) -> str:
        """Raw content of the file at *path*, at commit *ref* or the default branch."""
        response = await self._request_with_retry(
            f"/repos/{owner}/{name}/contents/{quote(path)}",
            params={"ref": ref} if ref else None,
            headers={"Accept": _RAW_MEDIA_TYPE},
        )
        await self._check_rate_limit(response)
        return response.text

    async def get_remaining_rate_limit(self) -> int | None:
        data = await self.get("/rate_limit")
        remaining = (data.get("rate") or {}).get("remaining")
        return remaining if isinstance(remaining, int) else None

    # ── public ─────────────────────────────────────────────────────────────

    async def get(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """Single-resource GET, returns parsed JSON.

        *headers* are merged on top of the client's default headers for this
        request only.
        """
        response = await self._request_with_retry(path, params, headers)
        await self._check_rate_limit(response)
        return response.json()

    # ── internal ───────────────────────────────────────────────────────────

    async def _request_with_retry(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """GET with exponential backoff on 5xx, 403/429 rate-limit, and timeout errors."""
        last_exc: Exception | None = None
        for attempt in range(_MAX_RETRIES):
            try:
                resp = await self._client.get(url, params=params, headers=headers)

                # 403/429 with rate-limit headers → sleep and retry
                if resp.status_code in (403, 429) and self._is_rate_limited(resp):
                    wait = self._get_rate_limit_wait(resp)
                    log.warning(
                        "github.rate_limit",
                        url=url,
                        wait_seconds=wait,
                        attempt=attempt + 1,
                        max_retries=_MAX_RETRIES,
                    )
                    await asyncio.sleep(wait)
                    last_exc = RateLimitError(wait)
                    continue

                if resp.status_code < 500:
                    resp.raise_for_status()
                    return resp

                # 5xx — retry
                log.warning(
                    "github.server_error",
                    url=url,
                    status=resp.status_code,
                    attempt=attempt + 1,
                    max_retries=_MAX_RETRIES,
                )
                last_exc = httpx.HTTPStatusError(
                    f"{resp.status_code}", request=resp.request, response=resp
                )
            except httpx.TimeoutException as exc:
                log.warning(
                    "github.timeout",
                    url=url,
                    attempt=attempt + 1,
                    max_retries=_MAX_RETRIES,
                )
                last_exc = exc

            if attempt < _MAX_RETRIES - 1:
                delay = _RETRY_BASE_DELAY * (2**attempt)
                await asyncio.sleep(delay)

        raise last_exc  # type: ignore[misc]

    async def _check_rate_limit(self, response: httpx.Response) -> None:
        """Sleep until rate-limit resets if remaining == 0."""
        remaining = self._parse_header_int(response.headers.get("X-RateLimit-Remaining"))
        if remaining is not None and remaining == 0:
            wait = self._get_rate_limit_wait(response)
            log.warning("github.rate_limit_wait", wait_seconds=wait)
            await asyncio.sleep(wait)

    @staticmethod
    def _is_rate_limited(response: httpx.Response) -> bool:
        """Check if a 403/429 response is due to rate limiting."""
        remaining = response.headers.get("X-RateLimit-Remaining")
        if remaining is not None:
            try:
                return int(remaining) == 0
            except (ValueError, TypeError):
                pass
        # GitHub also uses Retry-After header for secondary rate limits
        return "Retry-After" in response.headers

    @staticmethod
    def _get_rate_limit_wait(response: httpx.Response) -> int:
        """Calculate how long to wait based on rate-limit headers."""
        # Prefer Retry-After (used for secondary rate limits)
        retry_after = response.headers.get("Retry-After")
        if retry_after is not None:
            try:
                return max(int(retry_after), 1)
            except (ValueError, TypeError):
                pass
        # Fall back to X-RateLimit-Reset timestamp
        reset_ts = response.headers.get("X-RateLimit-Reset")
        if reset_ts is not None:
            try:
                return max(int(reset_ts) - int(time.time()), 1)
            except (ValueError, TypeError):
                pass
        return 60  # conservative fallback

    @staticmethod
    def _parse_header_int(value: str | None) -> int | None:
        """Safely parse an integer header value."""
        if value is None:
            return None
        try:
            return int(value)
        except (ValueError, TypeError):
            return None
