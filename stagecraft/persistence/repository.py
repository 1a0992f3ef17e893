"""Repository abstraction for workflow state persistence."""

from __future__ import annotations

from datetime import date
from typing import Callable, Optional, Protocol

from ..workflow.models import Workflow, WorkflowIndexEntry

WorkflowFactory = Callable[[str], Workflow]


def format_workflow_id(day: date, sequence: int) -> str:
    """Return ``WF-YYYYMMDD-NNN``."""
    return f"WF-{day.strftime('%Y%m%d')}-{sequence:03d}"


def next_sequence(last_date: Optional[str], last_sequence: int, day: date) -> int:
    """Next per-day sequence number; restarts at 1 when the day changes."""
    if last_date == day.isoformat():
        return last_sequence + 1
    return 1


class WorkflowRepository(Protocol):
    """Protocol for workflow state persistence backends.

    Every write covers the workflow record and its index entry together: a
    backend either persists both or neither.
    """

    async def create_workflow(self, factory: WorkflowFactory, day: date) -> Workflow:
        """Mint the next id for ``day``, build the workflow and persist it."""

    async def save_workflow(self, workflow: Workflow) -> None:
        """Persist the full workflow record and refresh its index entry."""

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        """Retrieve the workflow by id."""

    async def list_workflows(self) -> list[WorkflowIndexEntry]:
        """Return index entries for all persisted workflows."""
