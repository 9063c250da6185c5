"""
Grading Storage Module.

Persists task definitions and grading records behind a common async interface.
"""

from sheet_grader.config import Settings, get_settings
from sheet_grader.storage.base import GradingStore, NotFoundError
from sheet_grader.storage.memory import InMemoryGradingStore
from sheet_grader.storage.sql import SQLGradingStore

MEMORY_URL = "memory://"


def create_store(settings: Settings | None = None) -> GradingStore:
    """
    Create the storage backend named by ``settings.database_url``.

    Args:
        settings: Configuration settings. Uses global settings if not provided.

    Returns:
        An in-memory store for ``memory://``, otherwise a SQL store.
    """
    settings = settings or get_settings()
    if settings.database_url == MEMORY_URL:
        return InMemoryGradingStore()
    return SQLGradingStore(settings.database_url)


__all__ = [
    "GradingStore",
    "InMemoryGradingStore",
    "MEMORY_URL",
    "NotFoundError",
    "SQLGradingStore",
    "create_store",
]
