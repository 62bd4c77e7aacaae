"""Event sink factory and initialization."""

from __future__ import annotations

import os
from typing import Optional

from ..config import CaseflowConfig, load_config
from .base import BaseEventSink, EventType, ProcessEvent, event_type_name, new_event_id
from .inmemory import EventHandler, InMemoryEventSink


def get_event_sink(
    backend: Optional[str] = None, config: Optional[CaseflowConfig] = None
) -> BaseEventSink:
    """Factory function to get the configured event sink."""

    config = config or load_config()
    backend = (
        backend
        or os.getenv("CASEFLOW_EVENT_SINK")
        or config.events.backend
    ).lower()

    if backend == "inmemory":
        return InMemoryEventSink()
    elif backend == "redis":
        from .redis import RedisEventSink

        redis_conf = config.events.redis
        return RedisEventSink(
            host=redis_conf.host,
            port=redis_conf.port,
            db=redis_conf.db,
            password=redis_conf.password,
            prefix=redis_conf.prefix,
        )
    else:
        raise ValueError(f"Unsupported event sink backend: {backend}")


__all__ = [
    "BaseEventSink",
    "EventHandler",
    "EventType",
    "InMemoryEventSink",
    "ProcessEvent",
    "event_type_name",
    "get_event_sink",
    "new_event_id",
]
