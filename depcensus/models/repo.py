"""repos table."""

import json
from typing import Any, Optional

from sqlalchemy import Boolean, Integer, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from depcensus.core.database import Base
from depcensus.engines.dependency_resolver.models import AnalysisResult


class Repo(Base):
    __tablename__ = "repos"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    repo_owner: Mapped[str] = mapped_column("repoOwner", Text, nullable=False)
    repo_name: Mapped[str] = mapped_column("repoName", Text, nullable=False)
    couldnt_access: Mapped[bool] = mapped_column("couldntAccess", Boolean, default=False)
    lockfile_version: Mapped[Optional[str]] = mapped_column("lockfileFrontendVersion", Text)
    # JSON list of the versions declared in manifests
    direct_dependency_versions: Mapped[Optional[str]] = mapped_column(
        "directDependencyVersions", Text
    )
    version_doubt: Mapped[bool] = mapped_column("versionDoubt", Boolean, default=False)
    built_by_government: Mapped[bool] = mapped_column("builtByGovernment", Boolean, default=False)
    indirect_dependency: Mapped[bool] = mapped_column("indirectDependency", Boolean, default=False)
    is_prototype: Mapped[bool] = mapped_column("isPrototype", Boolean, default=False)
    last_updated: Mapped[Optional[str]] = mapped_column("lastUpdated", Text)
    repo_created: Mapped[Optional[str]] = mapped_column("repoCreated", Text)
    # JSON list of parent package keys
    parent_dependency: Mapped[Optional[str]] = mapped_column("parentDependency", Text)
    error_thrown: Mapped[Optional[str]] = mapped_column("errorThrown", Text)

    __table_args__ = (UniqueConstraint("repoOwner", "repoName"),)

    @staticmethod
    def values_from(result: AnalysisResult) -> dict[str, Any]:
        """Column values for one analysis result."""
        indirect = [record for group in result.indirect_dependencies for record in group]
        records = list(result.direct_dependencies) or indirect
        resolved = next((r.actual_version for r in records if r.actual_version), None)
        return {
            "repo_owner": result.repo_owner,
            "repo_name": result.repo_name,
            "couldnt_access": result.couldnt_access,
            "lockfile_version": resolved,
            "direct_dependency_versions": json.dumps(
                [r.specified_version for r in result.direct_dependencies]
            ),
            "version_doubt": any(r.version_doubt for r in records),
            "built_by_government": result.built_by_government,
            "indirect_dependency": result.is_indirect and bool(indirect),
            "is_prototype": result.is_prototype,
            "last_updated": result.updated_at or None,
            "repo_created": result.created_at or None,
            "parent_dependency": json.dumps([r.parent for r in indirect if r.parent]),
            "error_thrown": "; ".join(result.errors_thrown) or None,
        }
