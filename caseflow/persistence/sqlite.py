"""SQLite implementation of the instance store."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator, Optional

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


class SQLiteInstanceStore(InstanceStore):
    """Persist process instances using SQLite.

    Compare-and-swap is an ``UPDATE ... WHERE version = ?`` whose history
    inserts share the same transaction, so several processes may point at
    one database file.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=30)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS process_instances (
                instance_id TEXT PRIMARY KEY,
                definition_name TEXT NOT NULL,
                definition_version INTEGER NOT NULL,
                current_step_id TEXT NOT NULL,
                status TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                version INTEGER NOT NULL,
                context_data TEXT NOT NULL,
                started_by TEXT
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS transition_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                instance_id TEXT NOT NULL REFERENCES process_instances(instance_id),
                sequence INTEGER NOT NULL,
                from_step_id TEXT NOT NULL,
                to_step_id TEXT NOT NULL,
                actor_id TEXT NOT NULL,
                actor_role TEXT,
                timestamp TEXT NOT NULL,
                note TEXT,
                kind TEXT NOT NULL,
                events_emitted TEXT NOT NULL,
                UNIQUE (instance_id, sequence)
            )
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS ix_instances_definition "
            "ON process_instances (definition_name, status)"
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS ix_history_role "
            "ON transition_history (actor_role, instance_id)"
        )
        self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # ------------------------------------------------------------------
    # Row mapping
    @staticmethod
    def _record_from_row(row: sqlite3.Row) -> TransitionRecord:
        return TransitionRecord(
            sequence=row["sequence"],
            from_step_id=row["from_step_id"],
            to_step_id=row["to_step_id"],
            actor_id=row["actor_id"],
            actor_role=row["actor_role"],
            timestamp=datetime.fromisoformat(row["timestamp"]),
            note=row["note"],
            kind=TransitionKind(row["kind"]),
            events_emitted=json.loads(row["events_emitted"]),
        )

    def _instance_from_row(self, row: sqlite3.Row) -> ProcessInstance:
        history_rows = self._conn.execute(
            f"SELECT {_HISTORY_COLUMNS} FROM transition_history "
            "WHERE instance_id = ? ORDER BY sequence",
            (row["instance_id"],),
        ).fetchall()
        return ProcessInstance(
            instance_id=row["instance_id"],
            definition_name=row["definition_name"],
            definition_version=row["definition_version"],
            current_step_id=row["current_step_id"],
            status=InstanceStatus(row["status"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
            version=row["version"],
            context_data=json.loads(row["context_data"]),
            started_by=row["started_by"],
            history=[self._record_from_row(r) for r in history_rows],
        )

    def _insert_history(self, instance_id: str, records: list[TransitionRecord]) -> None:
        self._conn.executemany(
            f"INSERT INTO transition_history (instance_id, {_HISTORY_COLUMNS}) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            [
                (
                    instance_id,
                    r.sequence,
                    r.from_step_id,
                    r.to_step_id,
                    r.actor_id,
                    r.actor_role,
                    r.timestamp.isoformat(),
                    r.note,
                    TransitionKind(r.kind).value,
                    json.dumps(r.events_emitted),
                )
                for r in records
            ],
        )

    # ------------------------------------------------------------------
    # Blocking operations, run through asyncio.to_thread
    def _create(self, instance: ProcessInstance) -> str:
        with self._lock:
            try:
                self._conn.execute(
                    f"INSERT INTO process_instances ({_INSTANCE_COLUMNS}) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        instance.instance_id,
                        instance.definition_name,
                        instance.definition_version,
                        instance.current_step_id,
                        InstanceStatus(instance.status).value,
                        instance.created_at.isoformat(),
                        instance.updated_at.isoformat(),
                        instance.version,
                        json.dumps(instance.context_data),
                        instance.started_by,
                    ),
                )
                self._insert_history(instance.instance_id, instance.history)
                self._conn.commit()
            except sqlite3.IntegrityError:
                self._conn.rollback()
                raise DuplicateIdError(instance.instance_id) from None
            except Exception:
                self._conn.rollback()
                raise
        return instance.instance_id

    def _load(self, instance_id: str) -> ProcessInstance:
        row = self._conn.execute(
            f"SELECT {_INSTANCE_COLUMNS} FROM process_instances WHERE instance_id = ?",
            (instance_id,),
        ).fetchone()
        if row is None:
            raise InstanceNotFound(instance_id)
        return self._instance_from_row(row)

    def _get(self, instance_id: str) -> ProcessInstance:
        with self._lock:
            return self._load(instance_id)

    def _swap(
        self, instance_id: str, expected_version: int, mutation: Mutation
    ) -> ProcessInstance:
        with self._lock:
            current = self._load(instance_id)
            updated = prepare_swap(current, expected_version, mutation)
            try:
                cur = self._conn.execute(
                    """
                    UPDATE process_instances
                    SET current_step_id = ?, status = ?, updated_at = ?, version = ?,
                        context_data = ?
                    WHERE instance_id = ? AND version = ?
                    """,
                    (
                        updated.current_step_id,
                        InstanceStatus(updated.status).value,
                        updated.updated_at.isoformat(),
                        updated.version,
                        json.dumps(updated.context_data),
                        instance_id,
                        expected_version,
                    ),
                )
                if cur.rowcount != 1:
                    # another process won between our read and write
                    self._conn.rollback()
                    raise VersionConflict(instance_id, expected_version)
                self._insert_history(instance_id, updated.history[len(current.history):])
                self._conn.commit()
            except VersionConflict:
                raise
            except sqlite3.IntegrityError:
                self._conn.rollback()
                raise VersionConflict(instance_id, expected_version) from None
            except Exception:
                self._conn.rollback()
                raise
        return updated

    def _query_page(
        self, criteria: InstanceFilter, after: Optional[str], limit: int
    ) -> list[ProcessInstance]:
        clauses: list[str] = []
        params: list[Any] = []
        if criteria.definition_name:
            clauses.append("p.definition_name = ?")
            params.append(criteria.definition_name)
        if criteria.status:
            clauses.append("p.status = ?")
            params.append(InstanceStatus(criteria.status).value)
        if criteria.current_step_id:
            clauses.append("p.current_step_id = ?")
            params.append(criteria.current_step_id)
        if criteria.actor_role:
            clauses.append(
                "EXISTS (SELECT 1 FROM transition_history h "
                "WHERE h.instance_id = p.instance_id AND h.actor_role = ?)"
            )
            params.append(criteria.actor_role)
        if after is not None:
            clauses.append("p.instance_id > ?")
            params.append(after)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._lock:
            rows = self._conn.execute(
                f"SELECT {', '.join('p.' + c.strip() for c in _INSTANCE_COLUMNS.split(','))} "
                f"FROM process_instances p {where} ORDER BY p.instance_id LIMIT ?",
                (*params, limit),
            ).fetchall()
            return [self._instance_from_row(row) for row in rows]

    # ------------------------------------------------------------------
    # Store API
    async def create(self, instance: ProcessInstance) -> str:
        return await asyncio.to_thread(self._create, instance)

    async def get(self, instance_id: str) -> ProcessInstance:
        return await asyncio.to_thread(self._get, instance_id)

    async def compare_and_swap(
        self, instance_id: str, expected_version: int, mutation: Mutation
    ) -> ProcessInstance:
        return await asyncio.to_thread(self._swap, instance_id, expected_version, mutation)

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
            page = await asyncio.to_thread(
                self._query_page, criteria, after, QUERY_PAGE_SIZE
            )
            for instance in page:
                yield instance
            if len(page) < QUERY_PAGE_SIZE:
                return
            after = page[-1].instance_id
