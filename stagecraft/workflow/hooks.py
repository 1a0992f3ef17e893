"""Transition hook runner.

Hooks are ordered lists of :data:`TransitionAction` attached to stage entry
and exit (``on_enter``/``on_exit``) or to task and chain lifecycle events.
Actions run strictly in order. A failed non-blocking action is recorded and
the run continues; a failed blocking action stops the run and raises
:class:`HookExecutionError` carrying the partial results. Side effects that
already happened are not rolled back.
"""

from __future__ import annotations

import asyncio
import logging
import re
import shutil
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field, TypeAdapter

from ..exceptions import HookExecutionError
from .collaborators import (
    CommandRunner,
    TaskOperations,
    ValidationReport,
    run_shell_command,
)
from .models import (
    CommandAction,
    CustomAction,
    EmitEventAction,
    FileMoveAction,
    MessageRole,
    PostMessageAction,
    SpawnAgentAction,
    TaskTransitionAction,
    TransitionAction,
    ValidationAction,
    WorkflowStage,
)

logger = logging.getLogger(__name__)

ON_ENTER = "on_enter"
ON_EXIT = "on_exit"
LIFECYCLE_HOOKS = (
    "on_task_start",
    "on_task_complete",
    "on_task_approve",
    "on_chain_complete",
)

_PLACEHOLDER = re.compile(r"\{\{\s*(\w+)\s*\}\}")
_ACTION_ADAPTER: TypeAdapter[Any] = TypeAdapter(TransitionAction)


class TransitionHookContext(BaseModel):
    workflow_id: str
    stage_index: int
    chain_id: Optional[str] = None
    task_id: Optional[str] = None

    def variables(self) -> Dict[str, str]:
        values = {
            "workflowId": self.workflow_id,
            "stageIndex": str(self.stage_index),
            "chainId": self.chain_id,
            "taskId": self.task_id,
        }
        return {key: value for key, value in values.items() if value is not None}


class HookActionResult(BaseModel):
    action: str
    success: bool
    blocking: bool = True
    error: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class HookRunResult(BaseModel):
    hook: str
    stage_name: Optional[str] = None
    stage_type: Optional[str] = None
    stage_index: int
    results: List[HookActionResult] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return all(result.success for result in self.results)

    def summary(self) -> str:
        """``command:ok, file_move:fail`` style digest for audit messages."""
        return ", ".join(
            f"{result.action}:{'ok' if result.success else 'fail'}"
            for result in self.results
        )


MessagePoster = Callable[[TransitionHookContext, str, MessageRole], Awaitable[Any]]
EventEmitter = Callable[[TransitionHookContext, str, Dict[str, Any]], Awaitable[Any]]
AgentSpawner = Callable[[TransitionHookContext, SpawnAgentAction], Awaitable[Any]]
ValidationCheck = Callable[[TransitionHookContext, str], Awaitable[ValidationReport]]
CustomHandler = Callable[[TransitionHookContext, CustomAction], Awaitable[Any]]


class _ActionFailed(Exception):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.details = details or {}


def interpolate(value: Any, variables: Dict[str, str]) -> Any:
    """Replace ``{{name}}`` placeholders in every string nested in ``value``.

    Placeholders without a matching variable are left as they are.
    """
    if isinstance(value, str):
        return _PLACEHOLDER.sub(
            lambda m: variables.get(m.group(1), m.group(0)), value
        )
    if isinstance(value, list):
        return [interpolate(item, variables) for item in value]
    if isinstance(value, dict):
        return {key: interpolate(item, variables) for key, item in value.items()}
    return value


class HookRunner:
    """Execute transition actions against injected collaborators."""

    def __init__(
        self,
        project_root: str | Path,
        command_runner: CommandRunner | None = None,
        task_operations: TaskOperations | None = None,
        message_poster: MessagePoster | None = None,
        event_emitter: EventEmitter | None = None,
        agent_spawner: AgentSpawner | None = None,
        validation_check: ValidationCheck | None = None,
        custom_handlers: Optional[Dict[str, CustomHandler]] = None,
    ) -> None:
        self.project_root = Path(project_root)
        self._command_runner = command_runner or run_shell_command
        self._task_operations = task_operations
        self._message_poster = message_poster
        self._event_emitter = event_emitter
        self._agent_spawner = agent_spawner
        self._validation_check = validation_check
        self._custom_handlers: Dict[str, CustomHandler] = dict(custom_handlers or {})

    def register_handler(self, name: str, handler: CustomHandler) -> None:
        self._custom_handlers[name] = handler

    async def run_on_enter(
        self, stage: WorkflowStage, context: TransitionHookContext
    ) -> HookRunResult:
        actions = stage.hooks.on_enter if stage.hooks else []
        return await self.run(ON_ENTER, actions, context, stage)

    async def run_on_exit(
        self, stage: WorkflowStage, context: TransitionHookContext
    ) -> HookRunResult:
        actions = stage.hooks.on_exit if stage.hooks else []
        return await self.run(ON_EXIT, actions, context, stage)

    async def run(
        self,
        hook: str,
        actions: Sequence[TransitionAction],
        context: TransitionHookContext,
        stage: Optional[WorkflowStage] = None,
    ) -> HookRunResult:
        """Run ``actions`` in order for ``hook``.

        Raises:
            HookExecutionError: when a blocking action fails. ``result`` holds
                every result up to and including the failing action.
        """
        run = HookRunResult(
            hook=hook,
            stage_name=stage.name if stage else None,
            stage_type=stage.type if stage else None,
            stage_index=context.stage_index,
        )
        variables = context.variables()
        for raw_action in actions:
            action = _ACTION_ADAPTER.validate_python(
                interpolate(raw_action.model_dump(by_alias=True), variables)
            )
            result = await self._execute(action, context, stage)
            run.results.append(result)
            if result.success:
                continue
            label = stage.name if stage else hook
            if result.blocking:
                logger.warning(
                    f"Blocking {result.action} action failed in {hook} for {label}: {result.error}"
                )
                raise HookExecutionError(
                    f"Hook {hook} failed for stage {label}: {result.error}", run
                )
            logger.info(
                f"Non-blocking {result.action} action failed in {hook} for {label}: {result.error}"
            )
        return run

    async def _execute(
        self,
        action: TransitionAction,
        context: TransitionHookContext,
        stage: Optional[WorkflowStage],
    ) -> HookActionResult:
        try:
            if isinstance(action, CommandAction):
                details = await self._run_command(action)
            elif isinstance(action, TaskTransitionAction):
                details = await self._run_task_transition(action, context, stage)
            elif isinstance(action, FileMoveAction):
                details = await self._run_file_move(action)
            elif isinstance(action, PostMessageAction):
                details = await self._run_post_message(action, context)
            elif isinstance(action, EmitEventAction):
                details = await self._run_emit_event(action, context)
            elif isinstance(action, SpawnAgentAction):
                details = await self._run_spawn_agent(action, context)
            elif isinstance(action, ValidationAction):
                details = await self._run_validation(action, context)
            elif isinstance(action, CustomAction):
                details = await self._run_custom(action, context)
            else:
                raise TypeError(f"Unsupported hook action: {action!r}")
        except _ActionFailed as exc:
            return HookActionResult(
                action=action.type,
                success=False,
                blocking=action.blocking,
                error=str(exc),
                details=exc.details,
            )
        except Exception as exc:
            logger.exception(f"Hook action {action.type} raised")
            return HookActionResult(
                action=action.type,
                success=False,
                blocking=action.blocking,
                error=str(exc),
            )
        return HookActionResult(
            action=action.type, success=True, blocking=action.blocking, details=details
        )

    # ------------------------------------------------------------------
    # Action implementations
    async def _run_command(self, action: CommandAction) -> Dict[str, Any]:
        if not action.command:
            raise _ActionFailed("Command action requires a command")
        result = await self._command_runner(action.command, self.project_root)
        details = {
            "command": action.command,
            "exit_code": result.exit_code,
            "stdout": result.stdout,
            "stderr": result.stderr,
        }
        if result.exit_code != 0:
            raise _ActionFailed(
                f"Command failed with exit code {result.exit_code}", details
            )
        return details

    async def _run_task_transition(
        self,
        action: TaskTransitionAction,
        context: TransitionHookContext,
        stage: Optional[WorkflowStage],
    ) -> Dict[str, Any]:
        chain_id = action.chain_id or context.chain_id or (stage.chain_id if stage else None)
        task_id = action.task_id or context.task_id
        if not chain_id:
            raise _ActionFailed("task_transition requires a chain id")
        if not task_id:
            raise _ActionFailed("task_transition requires a task id")
        if self._task_operations is None:
            raise _ActionFailed("No task operations configured")

        operations = {
            "start": self._task_operations.start_task,
            "complete": self._task_operations.complete_task,
            "approve": self._task_operations.approve_task,
        }
        operation = operations.get(action.transition)
        if operation is None:
            raise _ActionFailed(f"Unsupported task transition: {action.transition}")
        await operation(chain_id, task_id)
        return {"transition": action.transition, "chain_id": chain_id, "task_id": task_id}

    async def _run_file_move(self, action: FileMoveAction) -> Dict[str, Any]:
        if not action.from_path or not action.to_path:
            raise _ActionFailed("file_move requires from and to")
        source = self.project_root / action.from_path
        destination = self.project_root / action.to_path
        destination.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(shutil.move, str(source), str(destination))
        return {"from": action.from_path, "to": action.to_path}

    async def _run_post_message(
        self, action: PostMessageAction, context: TransitionHookContext
    ) -> Dict[str, Any]:
        if self._message_poster is None:
            raise _ActionFailed("No message poster configured")
        await self._message_poster(context, action.content, action.role)
        return {"content": action.content, "role": action.role}

    async def _run_emit_event(
        self, action: EmitEventAction, context: TransitionHookContext
    ) -> Dict[str, Any]:
        if self._event_emitter is None:
            raise _ActionFailed("No event emitter configured")
        await self._event_emitter(context, action.event, action.payload)
        return {"event": action.event}

    async def _run_spawn_agent(
        self, action: SpawnAgentAction, context: TransitionHookContext
    ) -> Dict[str, Any]:
        if self._agent_spawner is None:
            raise _ActionFailed("No agent spawner configured")
        await self._agent_spawner(context, action)
        return {"role": action.role}

    async def _run_validation(
        self, action: ValidationAction, context: TransitionHookContext
    ) -> Dict[str, Any]:
        if self._validation_check is None:
            raise _ActionFailed("No validation check configured")
        report = await self._validation_check(context, action.gate)
        details = {"gate": action.gate, "errors": list(report.errors)}
        if not report.valid:
            reason = "; ".join(report.errors) or "validation failed"
            raise _ActionFailed(f"Validation {action.gate} failed: {reason}", details)
        return details

    async def _run_custom(
        self, action: CustomAction, context: TransitionHookContext
    ) -> Dict[str, Any]:
        if not action.handler:
            raise _ActionFailed("Custom action requires a handler")
        handler = self._custom_handlers.get(action.handler)
        if handler is None:
            raise _ActionFailed(f"Custom handler not found: {action.handler}")
        await handler(context, action)
        return {"handler": action.handler}
