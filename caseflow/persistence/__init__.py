"""Persistence layer for caseflow process instances."""

from __future__ import annotations

import os
from typing import Optional

from ..config import CaseflowConfig, load_config
from .inmemory import InMemoryInstanceStore
from .models import (
    InstanceFilter,
    InstanceStatus,
    ProcessInstance,
    TransitionKind,
    TransitionRecord,
)
from .repository import InstanceStore, Mutation, prepare_swap
from .sqlite import SQLiteInstanceStore

try:  # pragma: no cover - optional dependency
    from .postgres import PostgresInstanceStore
except ImportError:  # pragma: no cover - optional dependency
    PostgresInstanceStore = None  # type: ignore


def get_store(
    database_url: Optional[str] = None, config: Optional[CaseflowConfig] = None
) -> InstanceStore:
    """Factory function to obtain an instance store.

    The backend is selected from ``database_url`` which can be provided
    explicitly, via environment variable ``CASEFLOW_DATABASE_URL`` or
    ``DATABASE_URL``, or from loaded configuration. When no database is
    configured, an in-memory store is returned.
    """

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("CASEFLOW_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or config.store.database_url
    )

    if not database_url:
        return InMemoryInstanceStore()

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        return SQLiteInstanceStore(path)
    if database_url.startswith("postgres://") or database_url.startswith(
        "postgresql://"
    ):
        if PostgresInstanceStore is None:
            raise RuntimeError("Postgres support not available")
        return PostgresInstanceStore(database_url)
    raise ValueError(f"Unsupported database backend: {database_url}")


__all__ = [
    "InstanceFilter",
    "InstanceStatus",
    "InstanceStore",
    "Mutation",
    "ProcessInstance",
    "TransitionKind",
    "TransitionRecord",
    "InMemoryInstanceStore",
    "SQLiteInstanceStore",
    "PostgresInstanceStore",
    "get_store",
    "prepare_swap",
]
