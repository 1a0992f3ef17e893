"""SQLite implementation of the workflow repository."""

from __future__ import annotations

import asyncio
import sqlite3
import threading
from datetime import date
from pathlib import Path
from typing import Any, Callable, TypeVar

from ..workflow.models import Workflow, WorkflowIndexEntry
from .repository import WorkflowFactory, WorkflowRepository, format_workflow_id, next_sequence
from .serialization import (
    deserialize_workflow,
    format_timestamp,
    parse_timestamp,
    serialize_workflow,
)

T = TypeVar("T")


class SQLiteWorkflowRepository(WorkflowRepository):
    """Persist workflow state using SQLite.

    The full workflow record, the index row and the id sequence are written
    in a single transaction.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflows (
                id TEXT PRIMARY KEY,
                data TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_index (
                id TEXT PRIMARY KEY,
                request_id TEXT NOT NULL,
                status TEXT NOT NULL,
                template TEXT NOT NULL,
                current_stage INTEGER NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_sequence (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                last_date TEXT,
                last_sequence INTEGER NOT NULL
            )
            """
        )
        cur.execute(
            "INSERT OR IGNORE INTO workflow_sequence (id, last_date, last_sequence) VALUES (1, NULL, 0)"
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _transaction(self, fn: Callable[[sqlite3.Cursor], T]) -> T:
        with self._lock, self._conn:
            return fn(self._conn.cursor())

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchall()

    @staticmethod
    def _write(cur: sqlite3.Cursor, workflow: Workflow) -> None:
        entry = WorkflowIndexEntry.from_workflow(workflow)
        cur.execute(
            "INSERT OR REPLACE INTO workflows (id, data) VALUES (?, ?)",
            (workflow.id, serialize_workflow(workflow)),
        )
        cur.execute(
            """
            INSERT OR REPLACE INTO workflow_index
                (id, request_id, status, template, current_stage, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                entry.id,
                entry.request_id,
                entry.status,
                entry.template,
                entry.current_stage,
                format_timestamp(entry.updated_at),
            ),
        )

    # ------------------------------------------------------------------
    # Repository API
    async def create_workflow(self, factory: WorkflowFactory, day: date) -> Workflow:
        def _create(cur: sqlite3.Cursor) -> Workflow:
            cur.execute("SELECT last_date, last_sequence FROM workflow_sequence WHERE id = 1")
            row = cur.fetchone()
            sequence = next_sequence(row["last_date"], row["last_sequence"], day)
            workflow = factory(format_workflow_id(day, sequence))
            self._write(cur, workflow)
            cur.execute(
                "UPDATE workflow_sequence SET last_date = ?, last_sequence = ? WHERE id = 1",
                (day.isoformat(), sequence),
            )
            return workflow

        return await asyncio.to_thread(self._transaction, _create)

    async def save_workflow(self, workflow: Workflow) -> None:
        await asyncio.to_thread(
            self._transaction, lambda cur: self._write(cur, workflow)
        )

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT data FROM workflows WHERE id = ?", workflow_id
        )
        if not row:
            return None
        return deserialize_workflow(row["data"])

    async def list_workflows(self) -> list[WorkflowIndexEntry]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT id, request_id, status, template, current_stage, updated_at FROM workflow_index",
        )
        return [
            WorkflowIndexEntry(
                id=row["id"],
                request_id=row["request_id"],
                status=row["status"],
                template=row["template"],
                current_stage=row["current_stage"],
                updated_at=parse_timestamp(row["updated_at"]),
            )
            for row in rows
        ]
