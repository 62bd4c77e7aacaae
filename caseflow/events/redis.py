"""Redis event sink for cross-process collaborators."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Optional, Union

import redis.asyncio as redis

from ..constants import DEFAULT_REDIS_PREFIX
from .base import BaseEventSink, EventType, ProcessEvent, event_type_name

logger = logging.getLogger(__name__)


class RedisEventSink(BaseEventSink):
    """Push events onto Redis lists, one list per event type.

    Collaborator workers drain a list with :meth:`consume`.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        prefix: str = DEFAULT_REDIS_PREFIX,
        client: Optional[Any] = None,
    ) -> None:
        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self.prefix = prefix
        self._redis: Optional[Any] = client

    def queue_name(self, event_type: Union[str, EventType]) -> str:
        return f"{self.prefix}:{event_type_name(event_type)}"

    async def connect(self) -> None:
        """Connect to Redis."""
        if self._redis is None:
            self._redis = redis.Redis(
                host=self.host,
                port=self.port,
                db=self.db,
                password=self.password,
                decode_responses=True,
            )
        await self._redis.ping()

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def deliver(self, event: ProcessEvent) -> None:
        if not self._redis:
            await self.connect()
        await self._redis.lpush(self.queue_name(event.event_type), event.to_json())

    async def consume(
        self, event_type: Union[str, EventType], lifespan: Optional[float] = None
    ) -> AsyncIterator[ProcessEvent]:
        """Yield events of ``event_type`` in emission order.

        Args:
            event_type: The event type to drain.
            lifespan: Maximum time in seconds to keep listening. If None, runs indefinitely.
        """
        if not self._redis:
            await self.connect()

        queue_name = self.queue_name(event_type)
        start_time = asyncio.get_running_loop().time() if lifespan else None

        while True:
            if lifespan and start_time is not None:
                elapsed = asyncio.get_running_loop().time() - start_time
                if elapsed >= lifespan:
                    break

            result = await self._redis.brpop(queue_name, timeout=1)
            if not result:
                continue
            _, raw = result
            try:
                yield ProcessEvent.from_json(raw)
            except ValueError as e:
                logger.warning(f"Skipping malformed event on {queue_name}: {e}")
