from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel

from .constants import (
    DEFAULT_CONFLICT_BACKOFF,
    DEFAULT_MAX_ADVANCE_ATTEMPTS,
    DEFAULT_REDIS_PREFIX,
)


class RedisConfig(BaseModel):
    """Configuration for the Redis event sink."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    prefix: str = DEFAULT_REDIS_PREFIX


class EventsConfig(BaseModel):
    """Event sink configuration settings."""

    backend: Literal["inmemory", "redis"] = "inmemory"
    redis: RedisConfig = RedisConfig()


class StoreConfig(BaseModel):
    """Instance store settings. No URL selects the in-memory store."""

    database_url: Optional[str] = None


class EngineConfig(BaseModel):
    max_advance_attempts: int = DEFAULT_MAX_ADVANCE_ATTEMPTS
    conflict_backoff: float = DEFAULT_CONFLICT_BACKOFF


class AuditConfig(BaseModel):
    """Optional SQL audit log fed from the event sink."""

    database_url: Optional[str] = None


class CaseflowConfig(BaseModel):
    """Top-level configuration model."""

    store: StoreConfig = StoreConfig()
    events: EventsConfig = EventsConfig()
    engine: EngineConfig = EngineConfig()
    audit: AuditConfig = AuditConfig()
    definitions_path: Optional[str] = None
    log_level: str = "INFO"


def load_config(path: Optional[str] = None) -> CaseflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to CASEFLOW_CONFIG env
            variable or 'caseflow.yaml' in the current directory.
    """

    config_path = path or os.getenv("CASEFLOW_CONFIG", "caseflow.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = CaseflowConfig(**data)
    else:
        config = CaseflowConfig()

    env_db_url = os.getenv("CASEFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.store.database_url = env_db_url
    return config
