"""PostgreSQL implementation of the instance store."""

from __future__ import annotations

import json
from typing import Any, AsyncIterator, Optional

import asyncpg

from ..errors import DuplicateIdError, InstanceNotFound, VersionConflict
from .models import (
    InstanceFilter,
    InstanceStatus,
    ProcessInstance,
    TransitionKind,
    TransitionRecord,
)
from .repository import InstanceStore, Mutation, prepare_swap

QUERY_PAGE_SIZE = 100

_INSTANCE_COLUMNS = (
    "instance_id, definition_name, definition_version, current_step_id, status, "
    "created_at, updated_at, version, context_data, started_by"
)
_HISTORY_COLUMNS = (
    "sequence, from_step_id, to_step_id, actor_id, actor_role, timestamp, note, "
    "kind, events_emitted"
)


class PostgresInstanceStore(InstanceStore):
    """Persist process instances using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        await conn.set_type_codec(
            "jsonb", encoder=json.dumps, decoder=json.loads, schema="pg_catalog"
        )
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS process_instances (
                instance_id TEXT PRIMARY KEY,
                definition_name TEXT NOT NULL,
                definition_version INTEGER NOT NULL,
                current_step_id TEXT NOT NULL,
                status TEXT NOT NULL,
                created_at TIMESTAMPTZ NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL,
                version INTEGER NOT NULL,
                context_data JSONB NOT NULL,
                started_by TEXT
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS transition_history (
                id SERIAL PRIMARY KEY,
                instance_id TEXT NOT NULL REFERENCES process_instances(instance_id),
                sequence INTEGER NOT NULL,
                from_step_id TEXT NOT NULL,
                to_step_id TEXT NOT NULL,
                actor_id TEXT NOT NULL,
                actor_role TEXT,
                timestamp TIMESTAMPTZ NOT NULL,
                note TEXT,
                kind TEXT NOT NULL,
                events_emitted JSONB NOT NULL,
                UNIQUE (instance_id, sequence)
            )
            """
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS ix_instances_definition "
            "ON process_instances (definition_name, status)"
        )

    # ------------------------------------------------------------------
    @staticmethod
    def _record_from_row(row: asyncpg.Record) -> TransitionRecord:
        return TransitionRecord(
            sequence=row["sequence"],
            from_step_id=row["from_step_id"],
            to_step_id=row["to_step_id"],
            actor_id=row["actor_id"],
            actor_role=row["actor_role"],
            timestamp=row["timestamp"],
            note=row["note"],
            kind=TransitionKind(row["kind"]),
            events_emitted=row["events_emitted"],
        )

    async def _instance_from_row(
        self, conn: asyncpg.Connection, row: asyncpg.Record
    ) -> ProcessInstance:
        history_rows = await conn.fetch(
            f"SELECT {_HISTORY_COLUMNS} FROM transition_history "
            "WHERE instance_id = $1 ORDER BY sequence",
            row["instance_id"],
        )
        return ProcessInstance(
            instance_id=row["instance_id"],
            definition_name=row["definition_name"],
            definition_version=row["definition_version"],
            current_step_id=row["current_step_id"],
            status=InstanceStatus(row["status"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            version=row["version"],
            context_data=row["context_data"],
            started_by=row["started_by"],
            history=[self._record_from_row(r) for r in history_rows],
        )

    async def _load(self, conn: asyncpg.Connection, instance_id: str) -> ProcessInstance:
        row = await conn.fetchrow(
            f"SELECT {_INSTANCE_COLUMNS} FROM process_instances WHERE instance_id = $1",
            instance_id,
        )
        if row is None:
            raise InstanceNotFound(instance_id)
        return await self._instance_from_row(conn, row)

    @staticmethod
    async def _insert_history(
        conn: asyncpg.Connection, instance_id: str, records: list[TransitionRecord]
    ) -> None:
        if not records:
            return
        await conn.executemany(
            f"INSERT INTO transition_history (instance_id, {_HISTORY_COLUMNS}) "
            "VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)",
            [
                (
                    instance_id,
                    r.sequence,
                    r.from_step_id,
                    r.to_step_id,
                    r.actor_id,
                    r.actor_role,
                    r.timestamp,
                    r.note,
                    TransitionKind(r.kind).value,
                    r.events_emitted,
                )
                for r in records
            ],
        )

    # ------------------------------------------------------------------
    async def create(self, instance: ProcessInstance) -> str:
        conn = await self._connect()
        try:
            async with conn.transaction():
                await conn.execute(
                    f"INSERT INTO process_instances ({_INSTANCE_COLUMNS}) "
                    "VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)",
                    instance.instance_id,
                    instance.definition_name,
                    instance.definition_version,
                    instance.current_step_id,
                    InstanceStatus(instance.status).value,
                    instance.created_at,
                    instance.updated_at,
                    instance.version,
                    instance.context_data,
                    instance.started_by,
                )
                await self._insert_history(conn, instance.instance_id, instance.history)
        except asyncpg.UniqueViolationError:
            raise DuplicateIdError(instance.instance_id) from None
        finally:
            await conn.close()
        return instance.instance_id

    async def get(self, instance_id: str) -> ProcessInstance:
        conn = await self._connect()
        try:
            return await self._load(conn, instance_id)
        finally:
            await conn.close()

    async def compare_and_swap(
        self, instance_id: str, expected_version: int, mutation: Mutation
    ) -> ProcessInstance:
        conn = await self._connect()
        try:
            async with conn.transaction():
                current = await self._load(conn, instance_id)
                updated = prepare_swap(current, expected_version, mutation)
                status = await conn.execute(
                    """
                    UPDATE process_instances
                    SET current_step_id = $1, status = $2, updated_at = $3,
                        version = $4, context_data = $5
                    WHERE instance_id = $6 AND version = $7
                    """,
                    updated.current_step_id,
                    InstanceStatus(updated.status).value,
                    updated.updated_at,
                    updated.version,
                    updated.context_data,
                    instance_id,
                    expected_version,
                )
                if status.split()[-1] != "1":
                    raise VersionConflict(instance_id, expected_version)
                await self._insert_history(
                    conn, instance_id, updated.history[len(current.history):]
                )
        except asyncpg.UniqueViolationError:
            raise VersionConflict(instance_id, expected_version) from None
        finally:
            await conn.close()
        return updated

    async def query(
        self,
        definition_name: Optional[str] = None,
        status: Optional[InstanceStatus] = None,
        actor_role: Optional[str] = None,
        current_step_id: Optional[str] = None,
    ) -> AsyncIterator[ProcessInstance]:
        criteria = InstanceFilter(
            definition_name=definition_name,
            status=status,
            actor_role=actor_role,
            current_step_id=current_step_id,
        )
        after: Optional[str] = None
        while True:
            conn = await self._connect()
            try:
                sql, params = self._page_sql(criteria, after)
                rows = await conn.fetch(sql, *params)
                page = [await self._instance_from_row(conn, row) for row in rows]
            finally:
                await conn.close()
            for instance in page:
                yield instance
            if len(page) < QUERY_PAGE_SIZE:
                return
            after = page[-1].instance_id

    @staticmethod
    def _page_sql(criteria: InstanceFilter, after: Optional[str]) -> tuple[str, list[Any]]:
        clauses: list[str] = []
        params: list[Any] = []

        def bind(value: Any) -> str:
            params.append(value)
            return f"${len(params)}"

        if criteria.definition_name:
            clauses.append(f"p.definition_name = {bind(criteria.definition_name)}")
        if criteria.status:
            clauses.append(f"p.status = {bind(InstanceStatus(criteria.status).value)}")
        if criteria.current_step_id:
            clauses.append(f"p.current_step_id = {bind(criteria.current_step_id)}")
        if criteria.actor_role:
            clauses.append(
                "EXISTS (SELECT 1 FROM transition_history h WHERE "
                f"h.instance_id = p.instance_id AND h.actor_role = {bind(criteria.actor_role)})"
            )
        if after is not None:
            clauses.append(f"p.instance_id > {bind(after)}")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        columns = ", ".join("p." + c.strip() for c in _INSTANCE_COLUMNS.split(","))
        sql = (
            f"SELECT {columns} FROM process_instances p {where} "
            f"ORDER BY p.instance_id LIMIT {bind(QUERY_PAGE_SIZE)}"
        )
        return sql, params
