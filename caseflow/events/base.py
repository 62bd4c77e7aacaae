"""Base event sink interface for caseflow notifications."""

from __future__ import annotations

import abc
import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    PROCESS_STARTED = "ProcessStarted"
    PROCESS_ADVANCED = "ProcessAdvanced"
    PROCESS_COMPLETED = "ProcessCompleted"
    PROCESS_CANCELLED = "ProcessCancelled"


def event_type_name(event_type: Union[str, EventType]) -> str:
    return event_type.value if isinstance(event_type, EventType) else str(event_type)


def new_event_id() -> str:
    return str(uuid.uuid4())


class ProcessEvent(BaseModel):
    """Notification of a committed state change."""

    event_id: str = Field(default_factory=new_event_id)
    event_type: str
    instance_id: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_json(self) -> str:
        """Serialize event to JSON."""
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "ProcessEvent":
        """Deserialize event from JSON."""
        return cls.model_validate_json(data)


class BaseEventSink(metaclass=abc.ABCMeta):
    """Abstract sink decoupling the engine from its collaborators.

    :meth:`emit` is best effort: delivery failures are logged here and never
    reach the caller.
    """

    async def connect(self) -> None:
        """Open connection to the backend (no-op by default)."""
        pass

    async def disconnect(self) -> None:
        """Close connection to the backend (no-op by default)."""
        pass

    async def emit(
        self,
        event_type: Union[str, EventType],
        instance_id: str,
        payload: Optional[Dict[str, Any]] = None,
        event_id: Optional[str] = None,
    ) -> ProcessEvent:
        """Build a :class:`ProcessEvent` and attempt delivery."""
        event = ProcessEvent(
            event_id=event_id or new_event_id(),
            event_type=event_type_name(event_type),
            instance_id=instance_id,
            payload=payload or {},
        )
        try:
            await self.deliver(event)
        except Exception:
            logger.exception(
                f"Failed to deliver {event.event_type} event {event.event_id} "
                f"for instance {instance_id}"
            )
        return event

    @abc.abstractmethod
    async def deliver(self, event: ProcessEvent) -> None:
        """Hand ``event`` to the backend."""
        raise NotImplementedError
