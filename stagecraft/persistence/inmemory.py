"""In-memory implementation of the workflow repository."""

from __future__ import annotations

from datetime import date
from typing import Dict, Optional

from ..workflow.models import Workflow, WorkflowIndexEntry
from .repository import WorkflowFactory, WorkflowRepository, format_workflow_id, next_sequence
from .serialization import deserialize_workflow, serialize_workflow


class InMemoryWorkflowRepository(WorkflowRepository):
    """Store workflow state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Records are kept serialized so callers
    never share mutable state with the store.
    """

    def __init__(self) -> None:
        self._records: Dict[str, str] = {}
        self._index: Dict[str, WorkflowIndexEntry] = {}
        self._last_date: Optional[str] = None
        self._last_sequence = 0

    # ------------------------------------------------------------------
    async def create_workflow(self, factory: WorkflowFactory, day: date) -> Workflow:
        sequence = next_sequence(self._last_date, self._last_sequence, day)
        workflow = factory(format_workflow_id(day, sequence))
        record = serialize_workflow(workflow)
        self._records[workflow.id] = record
        self._index[workflow.id] = WorkflowIndexEntry.from_workflow(workflow)
        self._last_date = day.isoformat()
        self._last_sequence = sequence
        return deserialize_workflow(record)

    async def save_workflow(self, workflow: Workflow) -> None:
        self._records[workflow.id] = serialize_workflow(workflow)
        self._index[workflow.id] = WorkflowIndexEntry.from_workflow(workflow)

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        record = self._records.get(workflow_id)
        if record is None:
            return None
        return deserialize_workflow(record)

    async def list_workflows(self) -> list[WorkflowIndexEntry]:
        return list(self._index.values())
