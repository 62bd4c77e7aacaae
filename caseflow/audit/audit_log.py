from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlmodel import SQLModel, select

from ..events import EventType, InMemoryEventSink, ProcessEvent
from .models import AuditEntry

logger = logging.getLogger(__name__)


class AuditLog:
    """Append-only SQL log of process events.

    Attach it to an :class:`~caseflow.events.InMemoryEventSink` to record
    every event the engine emits, then query it for compliance reports.
    """

    def __init__(self, database_url: str) -> None:
        connect_args = (
            {"check_same_thread": False} if database_url.startswith("sqlite") else {}
        )
        self.engine = create_async_engine(
            database_url, echo=False, future=True, connect_args=connect_args
        )

    async def init_db(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        async with AsyncSession(self.engine) as session:
            yield session

    def attach(self, sink: InMemoryEventSink) -> None:
        sink.subscribe_all(self.record)

    async def record(self, event: ProcessEvent) -> AuditEntry:
        payload = event.payload
        entry = AuditEntry(
            event_id=event.event_id,
            event_type=event.event_type,
            instance_id=event.instance_id,
            definition_name=payload.get("definition_name"),
            definition_version=payload.get("definition_version"),
            from_step_id=payload.get("from_step_id"),
            to_step_id=payload.get("to_step_id") or payload.get("step_id"),
            actor_id=payload.get("actor_id"),
            actor_role=payload.get("actor_role"),
            occurred_at=event.occurred_at,
            payload=payload,
        )
        async with self.session() as session:
            session.add(entry)
            await session.commit()
            await session.refresh(entry)
        logger.debug(f"Audited {event.event_type} {event.event_id} for {event.instance_id}")
        return entry

    async def entries(self, instance_id: str) -> List[AuditEntry]:
        async with self.session() as session:
            result = await session.execute(
                select(AuditEntry)
                .where(AuditEntry.instance_id == instance_id)
                .order_by(AuditEntry.id)
            )
            return list(result.scalars().all())

    async def _count_instances(self, event_type: EventType, definition_name: str) -> int:
        async with self.session() as session:
            result = await session.execute(
                select(func.count(func.distinct(AuditEntry.instance_id))).where(
                    AuditEntry.event_type == event_type.value,
                    AuditEntry.definition_name == definition_name,
                )
            )
            return int(result.scalar_one())

    async def completion_rate(self, definition_name: str) -> Optional[float]:
        """Share of started instances that reached a terminal step."""
        started = await self._count_instances(EventType.PROCESS_STARTED, definition_name)
        if not started:
            return None
        completed = await self._count_instances(EventType.PROCESS_COMPLETED, definition_name)
        return completed / started

    async def average_completion_seconds(self, definition_name: str) -> Optional[float]:
        async with self.session() as session:
            result = await session.execute(
                select(AuditEntry).where(
                    AuditEntry.definition_name == definition_name,
                    AuditEntry.event_type.in_(
                        [EventType.PROCESS_STARTED.value, EventType.PROCESS_COMPLETED.value]
                    ),
                )
            )
            rows = result.scalars().all()

        started: Dict[str, datetime] = {}
        completed: Dict[str, datetime] = {}
        for row in rows:
            target = started if row.event_type == EventType.PROCESS_STARTED.value else completed
            target[row.instance_id] = row.occurred_at
        durations = [
            (completed[iid] - started[iid]).total_seconds()
            for iid in completed
            if iid in started
        ]
        if not durations:
            return None
        return sum(durations) / len(durations)
