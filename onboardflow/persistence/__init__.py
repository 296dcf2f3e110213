"""Storage backends for templates and workflow instances."""

from __future__ import annotations

from typing import Optional

from ..config import OnboardflowConfig, load_config
from .inmemory import InMemoryWorkflowRepository
from .repository import WorkflowRepository

SQL_URL_PREFIXES = ("sqlite", "postgres://", "postgresql")

_repository_instance: WorkflowRepository | None = None


def _build(database_url: Optional[str]) -> WorkflowRepository:
    if not database_url:
        return InMemoryWorkflowRepository()
    if not database_url.startswith(SQL_URL_PREFIXES):
        raise ValueError(f"Unsupported database backend: {database_url}")

    from .sql import SQLWorkflowRepository

    return SQLWorkflowRepository(database_url)


def get_repository(
    database_url: Optional[str] = None, config: Optional[OnboardflowConfig] = None
) -> WorkflowRepository:
    """Return the process-wide repository, creating it on first use.

    With neither argument the cached repository is reused. Otherwise the URL
    is taken from ``database_url`` or, failing that, from ``config`` (which
    already carries the ``ONBOARDFLOW_DATABASE_URL``/``DATABASE_URL``
    overrides). No URL at all means an in-memory store.
    """

    global _repository_instance
    if _repository_instance is None or database_url is not None or config is not None:
        if database_url is None:
            database_url = (config or load_config()).database_url
        _repository_instance = _build(database_url)
    return _repository_instance


def reset_repository() -> None:
    """Forget the cached repository (used by tests and the CLI)."""
    global _repository_instance
    _repository_instance = None


__all__ = [
    "WorkflowRepository",
    "InMemoryWorkflowRepository",
    "get_repository",
    "reset_repository",
]
