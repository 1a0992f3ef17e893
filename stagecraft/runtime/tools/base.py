"""Tool call contracts shared by the registry, governance and executor."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    FrozenSet,
    List,
    Optional,
    Protocol,
    Tuple,
)

from pydantic import BaseModel, Field

from ...workflow.collaborators import TaskOperations
from ...workflow.models import AgentRole
from ..providers.base import ProviderTool

BOTH_ROLES: FrozenSet[str] = frozenset({"control", "impl"})


class ToolCall(BaseModel):
    """A named action requested by an agent."""

    name: str
    params: Dict[str, Any] = Field(default_factory=dict)
    id: Optional[str] = None


class ToolResult(BaseModel):
    success: bool
    data: Any = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None) -> "ToolResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> "ToolResult":
        return cls(success=False, error=error)


class TaskBoard(TaskOperations, Protocol):
    """Chain and task lookups backing the task tools."""

    async def chain_status(self, chain_id: str) -> Optional[Dict[str, Any]]: ...

    async def task_status(self, chain_id: str, task_id: str) -> Optional[Dict[str, Any]]: ...

    async def list_tasks(self, chain_id: str) -> List[Dict[str, Any]]: ...


class SessionSpawner(Protocol):
    """Runs a delegated impl session and returns a summary for the parent."""

    async def __call__(
        self, chain_id: str, task_id: str, context: Optional[str]
    ) -> Dict[str, Any]: ...


@dataclass
class ExecutionContext:
    """Everything a tool may touch, scoped to one session."""

    role: AgentRole
    workspace_root: Path
    chain_id: Optional[str] = None
    task_id: Optional[str] = None
    workflow_id: Optional[str] = None
    session_id: Optional[str] = None
    nesting_depth: int = 0
    max_nesting_depth: int = 2
    task_board: Optional[TaskBoard] = None
    session_spawner: Optional[SessionSpawner] = None

    def resolve(self, relative: str) -> Path:
        """Resolve ``relative`` inside the workspace root.

        Raises:
            ValueError: if the path escapes the workspace.
        """
        root = self.workspace_root.resolve()
        target = (root / relative.lstrip("/")).resolve()
        if target != root and root not in target.parents:
            raise ValueError(f"Path escapes workspace: {relative}")
        return target


ToolHandler = Callable[[Dict[str, Any], ExecutionContext], Awaitable[ToolResult]]


@dataclass(frozen=True)
class ToolDefinition:
    """Capability descriptor: who may call a tool and how it runs."""

    name: str
    description: str
    parameters: Dict[str, Any]
    allowed_roles: FrozenSet[str]
    handler: ToolHandler
    mutates: bool = False
    category: str = "general"
    required: Tuple[str, ...] = ()

    def allows(self, role: str) -> bool:
        return role in self.allowed_roles

    def to_provider_tool(self) -> ProviderTool:
        return ProviderTool(
            name=self.name,
            description=self.description,
            parameters={
                "type": "object",
                "properties": self.parameters,
                "required": list(self.required),
            },
        )
