"""SQLAlchemy ORM models — one file per table."""

from depcensus.models.repo import Repo

__all__ = ["Repo"]
