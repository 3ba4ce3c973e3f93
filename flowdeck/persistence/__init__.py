"""Persistence layer for flowdeck workflows and executions."""

from __future__ import annotations

from typing import Optional

from ..config import FlowdeckConfig, load_config
from .inmemory import InMemoryExecutionStore
from .postgres import PostgresExecutionStore
from .repository import ExecutionStore
from .sqlite import SQLiteExecutionStore


def get_store(
    database_url: Optional[str] = None, config: Optional[FlowdeckConfig] = None
) -> ExecutionStore:
    """Factory function to obtain an execution store.

    The backend is selected based on ``database_url``, which can be provided
    explicitly or taken from the loaded configuration (where the
    ``FLOWDECK_DATABASE_URL`` and ``DATABASE_URL`` environment variables
    already apply). When no database is configured, an in-memory store is
    returned.
    """

    if database_url is None:
        config = config or load_config()
        database_url = config.database_url

    if not database_url:
        return InMemoryExecutionStore()

    if database_url.startswith("sqlite://"):
        return SQLiteExecutionStore(database_url.replace("sqlite://", "", 1))
    if database_url.startswith("postgres://") or database_url.startswith("postgresql://"):
        return PostgresExecutionStore(database_url)
    raise ValueError(f"Unsupported database backend: {database_url}")


__all__ = [
    "ExecutionStore",
    "InMemoryExecutionStore",
    "SQLiteExecutionStore",
    "PostgresExecutionStore",
    "get_store",
]
