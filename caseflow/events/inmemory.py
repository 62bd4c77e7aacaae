"""In-process event sink with per-type subscribers."""

from __future__ import annotations

import inspect
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Union

from ..constants import DEFAULT_EVENT_BUFFER_SIZE
from .base import BaseEventSink, EventType, ProcessEvent, event_type_name

logger = logging.getLogger(__name__)

EventHandler = Callable[[ProcessEvent], Union[None, Awaitable[Any]]]


class InMemoryEventSink(BaseEventSink):
    """Deliver events to handlers registered in this process.

    Handlers may be plain callables or coroutine functions and are called in
    subscription order, catch-all handlers first. A failing handler is
    logged and the remaining handlers still run.

    Example usage:

        sink = InMemoryEventSink()

        async def notify_applicant(event: ProcessEvent) -> None:
            ...

        sink.subscribe("ProcessCompleted", notify_applicant)
    """

    def __init__(self, buffer_size: int = DEFAULT_EVENT_BUFFER_SIZE) -> None:
        self._subscribers: Dict[str, List[EventHandler]] = {}
        self._global_subscribers: List[EventHandler] = []
        self._delivered: Deque[ProcessEvent] = deque(maxlen=buffer_size)

    def subscribe(self, event_type: Union[str, EventType], handler: EventHandler) -> None:
        name = event_type_name(event_type)
        handlers = self._subscribers.setdefault(name, [])
        if handler not in handlers:
            handlers.append(handler)
            logger.debug(f"Subscribed {_handler_name(handler)} to {name}")

    def subscribe_all(self, handler: EventHandler) -> None:
        if handler not in self._global_subscribers:
            self._global_subscribers.append(handler)
            logger.debug(f"Subscribed {_handler_name(handler)} to all events")

    def unsubscribe(self, event_type: Union[str, EventType], handler: EventHandler) -> bool:
        try:
            self._subscribers.get(event_type_name(event_type), []).remove(handler)
            return True
        except ValueError:
            return False

    def has_subscribers(self, event_type: Union[str, EventType]) -> bool:
        return bool(
            self._global_subscribers
            or self._subscribers.get(event_type_name(event_type))
        )

    @property
    def delivered(self) -> List[ProcessEvent]:
        """Most recent events handed to this sink, oldest first."""
        return list(self._delivered)

    def events_for(self, instance_id: str, event_type: Optional[str] = None) -> List[ProcessEvent]:
        return [
            e
            for e in self._delivered
            if e.instance_id == instance_id
            and (event_type is None or e.event_type == event_type_name(event_type))
        ]

    async def deliver(self, event: ProcessEvent) -> None:
        self._delivered.append(event)
        handlers = self._global_subscribers + self._subscribers.get(event.event_type, [])
        for handler in handlers:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(
                    f"Error in handler {_handler_name(handler)} for "
                    f"{event.event_type} event {event.event_id}"
                )


def _handler_name(handler: Callable[..., Any]) -> str:
    return getattr(handler, "__qualname__", None) or repr(handler)
