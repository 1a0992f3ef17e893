from .base import (
    ExecutionContext,
    SessionSpawner,
    TaskBoard,
    ToolCall,
    ToolDefinition,
    ToolResult,
)
from .executor import ToolExecutor
from .registry import (
    DEFAULT_TOOLS,
    STAGE_TOOLS,
    ToolRegistry,
    build_default_registry,
    is_tool_allowed_for_stage,
)

__all__ = [
    "DEFAULT_TOOLS",
    "STAGE_TOOLS",
    "ExecutionContext",
    "SessionSpawner",
    "TaskBoard",
    "ToolCall",
    "ToolDefinition",
    "ToolExecutor",
    "ToolRegistry",
    "ToolResult",
    "build_default_registry",
    "is_tool_allowed_for_stage",
]
