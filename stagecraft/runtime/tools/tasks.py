"""Chain and task tools backed by the host's task board."""

from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

from .base import BOTH_ROLES, ExecutionContext, TaskBoard, ToolDefinition, ToolResult

_CHAIN_PARAM = {"chain_id": {"type": "string", "description": "Chain id (defaults to the session chain)"}}
_TASK_PARAMS = {
    **_CHAIN_PARAM,
    "task_id": {"type": "string", "description": "Task id (defaults to the session task)"},
}


def _board(context: ExecutionContext) -> Optional[TaskBoard]:
    return context.task_board


def _ids(
    params: Dict[str, Any], context: ExecutionContext, need_task: bool = True
) -> Tuple[Optional[str], Optional[str], Optional[str]]:
    """Return ``(chain_id, task_id, error)``."""
    chain_id = params.get("chain_id") or context.chain_id
    task_id = params.get("task_id") or context.task_id
    if not chain_id:
        return None, None, "Missing required parameter: chain_id"
    if need_task and not task_id:
        return chain_id, None, "Missing required parameter: task_id"
    return chain_id, task_id, None


async def chain_status(params: Dict[str, Any], context: ExecutionContext) -> ToolResult:
    board = _board(context)
    if board is None:
        return ToolResult.fail("No task board configured")
    chain_id, _, error = _ids(params, context, need_task=False)
    if error:
        return ToolResult.fail(error)
    status = await board.chain_status(chain_id)
    if status is None:
        return ToolResult.fail(f"Chain not found: {chain_id}")
    return ToolResult.ok(status)


async def task_status(params: Dict[str, Any], context: ExecutionContext) -> ToolResult:
    board = _board(context)
    if board is None:
        return ToolResult.fail("No task board configured")
    chain_id, task_id, error = _ids(params, context)
    if error:
        return ToolResult.fail(error)
    status = await board.task_status(chain_id, task_id)
    if status is None:
        return ToolResult.fail(f"Task not found: {task_id} in chain {chain_id}")
    return ToolResult.ok(status)


async def task_list(params: Dict[str, Any], context: ExecutionContext) -> ToolResult:
    board = _board(context)
    if board is None:
        return ToolResult.fail("No task board configured")
    chain_id, _, error = _ids(params, context, need_task=False)
    if error:
        return ToolResult.fail(error)
    tasks = await board.list_tasks(chain_id)
    return ToolResult.ok({"chain_id": chain_id, "tasks": tasks, "count": len(tasks)})


async def _transition(
    params: Dict[str, Any], context: ExecutionContext, transition: str
) -> ToolResult:
    board = _board(context)
    if board is None:
        return ToolResult.fail("No task board configured")
    chain_id, task_id, error = _ids(params, context)
    if error:
        return ToolResult.fail(error)
    operation = {
        "start": board.start_task,
        "complete": board.complete_task,
        "approve": board.approve_task,
    }[transition]
    result = await operation(chain_id, task_id)
    return ToolResult.ok({"chain_id": chain_id, "task_id": task_id, **(result or {})})


async def task_start(params: Dict[str, Any], context: ExecutionContext) -> ToolResult:
    return await _transition(params, context, "start")


async def task_complete(params: Dict[str, Any], context: ExecutionContext) -> ToolResult:
    return await _transition(params, context, "complete")


async def task_approve(params: Dict[str, Any], context: ExecutionContext) -> ToolResult:
    return await _transition(params, context, "approve")


CHAIN_STATUS = ToolDefinition(
    name="chain:status",
    description="Show the status and progress of a chain.",
    parameters=_CHAIN_PARAM,
    allowed_roles=BOTH_ROLES,
    handler=chain_status,
    category="chain",
)

TASK_STATUS = ToolDefinition(
    name="task:status",
    description="Show the status of a task.",
    parameters=_TASK_PARAMS,
    allowed_roles=BOTH_ROLES,
    handler=task_status,
    category="task",
)

TASK_LIST = ToolDefinition(
    name="task:list",
    description="List the tasks in a chain.",
    parameters=_CHAIN_PARAM,
    allowed_roles=BOTH_ROLES,
    handler=task_list,
    category="task",
)

TASK_START = ToolDefinition(
    name="task:start",
    description="Move a task from todo to in-progress.",
    parameters=_TASK_PARAMS,
    allowed_roles=frozenset({"control"}),
    handler=task_start,
    mutates=True,
    category="task",
)

TASK_COMPLETE = ToolDefinition(
    name="task:complete",
    description="Mark the current task as complete and ready for review.",
    parameters=_TASK_PARAMS,
    allowed_roles=frozenset({"impl"}),
    handler=task_complete,
    mutates=True,
    category="task",
)

TASK_APPROVE = ToolDefinition(
    name="task:approve",
    description="Approve a completed task after review.",
    parameters=_TASK_PARAMS,
    allowed_roles=frozenset({"control"}),
    handler=task_approve,
    mutates=True,
    category="task",
)
