"""Shared fixtures for depcensus tests (no network, no database server)."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from depcensus.core.config import AnalysisConfig
from depcensus.engines.dependency_resolver.models import FileTreeEntry, RepoMetadata


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


class FakeSource:
    """In-memory repository source: a file map per repository.

    Every method is an ``AsyncMock`` wrapping the lookup, so tests can both
    inject failures (``side_effect``) and count calls.
    """

    def __init__(
        self,
        files: dict[str, str],
        *,
        created_at: str | None = "2020-01-01T00:00:00Z",
        updated_at: str | None = "2024-06-01T00:00:00Z",
        head_sha: str | None = "abc123",
    ) -> None:
        self.files = files
        self.metadata = RepoMetadata(
            created_at=created_at,
            updated_at=updated_at,
            default_branch="main",
            head_sha=head_sha,
        )
        self.get_repository_metadata = AsyncMock(side_effect=self._metadata)
        self.get_file_tree = AsyncMock(side_effect=self._tree)
        self.get_file_content = AsyncMock(side_effect=self._content)

    async def _metadata(self, owner, name):
        return self.metadata

    async def _tree(self, owner, name, sha):
        return [FileTreeEntry(path=path) for path in self.files]

    async def _content(self, owner, name, path, ref=None):
        return self.files[path]

    @property
    def call_count(self) -> int:
        return (
            self.get_repository_metadata.call_count
            + self.get_file_tree.call_count
            + self.get_file_content.call_count
        )

    def content_calls(self, path: str) -> int:
        return sum(1 for c in self.get_file_content.call_args_list if c.args[2] == path)


@pytest.fixture
def make_source():
    return FakeSource


@pytest.fixture
def analysis_config():
    return AnalysisConfig(
        target_package="govuk-frontend",
        deny_list=frozenset({("alphagov", "govuk-frontend")}),
        service_owners={
            "alphagov": {
                "pay-frontend": {
                    "name": "GOV.UK Pay",
                    "organisation": ["Government Digital Service"],
                    "start-page": "https://www.payments.service.gov.uk",
                    "tags": ["Top 75"],
                }
            }
        },
    )
