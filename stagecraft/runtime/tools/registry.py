"""Closed registry mapping tool names to their definitions."""

from __future__ import annotations

from typing import Dict, FrozenSet, Iterable, List, Optional

from ...workflow.models import StageType
from ..providers.base import ProviderTool
from .base import ToolDefinition
from .filesystem import LIST_FILES, READ_FILE, SEARCH_FILES, WRITE_FILE
from .sessions import SPAWN_IMPL_SESSION
from .tasks import (
    CHAIN_STATUS,
    TASK_APPROVE,
    TASK_COMPLETE,
    TASK_LIST,
    TASK_START,
    TASK_STATUS,
)

DEFAULT_TOOLS = (
    CHAIN_STATUS,
    TASK_STATUS,
    TASK_LIST,
    TASK_START,
    TASK_COMPLETE,
    TASK_APPROVE,
    SPAWN_IMPL_SESSION,
    READ_FILE,
    WRITE_FILE,
    LIST_FILES,
    SEARCH_FILES,
)

_READ_ONLY = frozenset({"read_file", "list_files", "search_files"})
_STATUS = frozenset({"chain:status", "task:status", "task:list"})

# Tools each stage type exposes, intersected with the role's own tools.
STAGE_TOOLS: Dict[str, FrozenSet[str]] = {
    "request": _READ_ONLY | _STATUS,
    "design": _READ_ONLY | _STATUS,
    "implementation": _READ_ONLY
    | _STATUS
    | {"write_file", "task:start", "task:complete", "spawn_impl_session"},
    "verification": _READ_ONLY | _STATUS,
    "review": _READ_ONLY | _STATUS | {"task:approve"},
    "ideation": _READ_ONLY | {"chain:status"},
}


def is_tool_allowed_for_stage(stage_type: StageType, tool_name: str) -> bool:
    return tool_name in STAGE_TOOLS.get(stage_type, frozenset())


class ToolRegistry:
    """Name-keyed set of tool definitions with role and stage filtering."""

    def __init__(self, tools: Iterable[ToolDefinition] = DEFAULT_TOOLS):
        self._tools: Dict[str, ToolDefinition] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: ToolDefinition) -> None:
        """Add ``tool``, replacing any tool with the same name."""
        self._tools[tool.name] = tool

    def get(self, name: str) -> Optional[ToolDefinition]:
        return self._tools.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def names(self) -> List[str]:
        return list(self._tools)

    def all(self) -> List[ToolDefinition]:
        return list(self._tools.values())

    def is_allowed(self, name: str, role: str) -> bool:
        tool = self._tools.get(name)
        return tool is not None and tool.allows(role)

    def tools_for_role(self, role: str) -> List[ToolDefinition]:
        return [tool for tool in self._tools.values() if tool.allows(role)]

    def tools_for_stage(
        self, role: str, stage_type: Optional[StageType] = None
    ) -> List[ToolDefinition]:
        """Role tools, narrowed to the stage's tool set when a stage is given."""
        tools = self.tools_for_role(role)
        if stage_type is None:
            return tools
        return [tool for tool in tools if is_tool_allowed_for_stage(stage_type, tool.name)]

    def provider_tools(
        self, role: str, stage_type: Optional[StageType] = None
    ) -> List[ProviderTool]:
        return [tool.to_provider_tool() for tool in self.tools_for_stage(role, stage_type)]


def build_default_registry() -> ToolRegistry:
    """Return a fresh registry holding every built-in tool."""
    return ToolRegistry(DEFAULT_TOOLS)
