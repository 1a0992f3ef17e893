"""Delegation tool that spawns a nested impl session."""

from __future__ import annotations

from typing import Any, Dict

from .base import ExecutionContext, ToolDefinition, ToolResult


async def spawn_impl_session(params: Dict[str, Any], context: ExecutionContext) -> ToolResult:
    chain_id = params.get("chain_id")
    task_id = params.get("task_id")
    if not chain_id:
        return ToolResult.fail("Missing required parameter: chain_id")
    if not task_id:
        return ToolResult.fail("Missing required parameter: task_id")
    if context.nesting_depth + 1 > context.max_nesting_depth:
        return ToolResult.fail(
            f"Maximum nesting depth ({context.max_nesting_depth}) would be exceeded. "
            f"Current depth: {context.nesting_depth}"
        )
    if context.session_spawner is None:
        return ToolResult.fail("Session spawning is not available in this session")

    summary = await context.session_spawner(chain_id, task_id, params.get("context"))
    return ToolResult(success=bool(summary.get("success")), data=summary, error=summary.get("error"))


SPAWN_IMPL_SESSION = ToolDefinition(
    name="spawn_impl_session",
    description="Delegate a task to a nested implementation agent session.",
    parameters={
        "chain_id": {"type": "string", "description": "Chain containing the task"},
        "task_id": {"type": "string", "description": "Task to implement"},
        "context": {"type": "string", "description": "Extra instructions for the impl agent"},
    },
    required=("chain_id", "task_id"),
    allowed_roles=frozenset({"control"}),
    handler=spawn_impl_session,
    mutates=True,
    category="session",
)
