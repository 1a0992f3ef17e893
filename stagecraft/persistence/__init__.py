"""Workflow storage backends and the factory that picks one."""

from __future__ import annotations

import os
from typing import Optional

from ..config import StagecraftConfig, load_config
from .inmemory import InMemoryWorkflowRepository
from .repository import WorkflowRepository, format_workflow_id
from .serialization import deserialize_workflow, serialize_workflow
from .sqlite import SQLiteWorkflowRepository

SQLITE_SCHEME = "sqlite://"


def resolve_database_url(
    database_url: Optional[str] = None, config: Optional[StagecraftConfig] = None
) -> Optional[str]:
    """Explicit URL first, then the environment, then configuration."""
    if database_url:
        return database_url
    env_url = os.getenv("STAGECRAFT_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_url:
        return env_url
    config = config or load_config()
    return config.database_url


def get_repository(
    database_url: Optional[str] = None, config: Optional[StagecraftConfig] = None
) -> WorkflowRepository:
    """Build a new workflow repository for ``database_url``.

    Without any configured database an in-memory repository is returned.
    Every call opens its own backend; callers that need one shared store keep
    the returned object.

    Raises:
        ValueError: the URL names an unsupported backend.
    """
    url = resolve_database_url(database_url, config)
    if not url:
        return InMemoryWorkflowRepository()
    if url.startswith(SQLITE_SCHEME):
        return SQLiteWorkflowRepository(url[len(SQLITE_SCHEME):])
    raise ValueError(f"Unsupported database backend: {url}")


__all__ = [
    "WorkflowRepository",
    "SQLiteWorkflowRepository",
    "InMemoryWorkflowRepository",
    "deserialize_workflow",
    "format_workflow_id",
    "get_repository",
    "resolve_database_url",
    "serialize_workflow",
]
