"""Agent session loop.

Each turn calls the provider (with retry), charges token usage against the
session budget, then runs the proposed tool calls one at a time through
governance, checkpoint approval and the executor. Denials are fed back to
the agent as ordinary tool results. Control sessions may delegate a task to
a child impl session one nesting level deeper.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, Optional

from pydantic import BaseModel, Field

from ..config import ModelPrice, RetrySettings, SessionSettings
from ..constants import DEFAULT_MAX_ITERATIONS, DEFAULT_MAX_NESTING_DEPTH
from ..governance.gate import GovernanceGate, LockLookup, ValidationResult
from ..utils.retry import with_retry
from ..workflow.manager import WorkflowManager
from ..workflow.models import AgentRole, MessageRole, Workflow, WorkflowStage, utcnow
from .checkpoint import Approver, CheckpointHandler
from .cost import CostSnapshot, CostTracker
from .prompts import PromptLoader, build_initial_user_message, build_stage_instructions
from .providers.base import ChatMessage, LLMProvider, ProviderTool, ProviderToolCall
from .session import (
    GovernanceRecord,
    Session,
    SessionOutcome,
    SessionToolCall,
    ToolCallResult,
    generate_session_id,
)
from .tools.base import ExecutionContext, TaskBoard, ToolCall, ToolResult
from .tools.executor import ToolExecutor
from .tools.registry import ToolRegistry, build_default_registry

logger = logging.getLogger(__name__)

StopReason = Literal[
    "end_turn", "max_iterations", "max_depth", "cost_limit", "paused", "error", "interrupted"
]


@dataclass
class AgentSessionConfig:
    """Per-session settings. Limits are never shared with child sessions."""

    role: AgentRole
    provider: LLMProvider
    workspace_root: Path | str = "."
    chain_id: Optional[str] = None
    task_id: Optional[str] = None
    workflow_id: Optional[str] = None
    stage_index: Optional[int] = None
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    dry_run: bool = False
    parent_session_id: Optional[str] = None
    nesting_depth: int = 0
    max_nesting_depth: int = DEFAULT_MAX_NESTING_DEPTH
    parent_context: Optional[str] = None
    retry: RetrySettings = field(default_factory=RetrySettings)
    max_tokens: Optional[int] = None
    max_cost: Optional[float] = None
    checkpoint: SessionSettings = field(default_factory=SessionSettings)
    pricing: Mapping[str, ModelPrice] = field(default_factory=dict)


@dataclass
class LoopDependencies:
    """Collaborators for a session, built fresh unless supplied."""

    registry: Optional[ToolRegistry] = None
    executor: Optional[ToolExecutor] = None
    governance: Optional[GovernanceGate] = None
    prompt_loader: Optional[PromptLoader] = None
    checkpoint: Optional[CheckpointHandler] = None
    approver: Optional[Approver] = None
    workflow_manager: Optional[WorkflowManager] = None
    task_board: Optional[TaskBoard] = None
    lock_lookup: Optional[LockLookup] = None
    sleep: Any = asyncio.sleep


class ToolCallRecord(BaseModel):
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)
    allowed: bool
    denial_reason: Optional[str] = None
    result: Optional[ToolResult] = None
    timestamp: datetime = Field(default_factory=utcnow)


class TokensUsed(BaseModel):
    input: int = 0
    output: int = 0


class SessionResult(BaseModel):
    success: bool
    iterations: int = 0
    tool_calls: List[ToolCallRecord] = Field(default_factory=list)
    tokens_used: TokensUsed = Field(default_factory=TokensUsed)
    error: Optional[str] = None
    stop_reason: StopReason
    cost_snapshot: Optional[CostSnapshot] = None
    session_id: str
    child_sessions: List["SessionResult"] = Field(default_factory=list)


_OUTCOMES: Dict[str, SessionOutcome] = {"end_turn": "success", "interrupted": "interrupted"}


def build_tool_message(call: ProviderToolCall, record: ToolCallRecord) -> ChatMessage:
    """Tool result as the agent sees it: a denial or the executed result."""
    if not record.allowed:
        payload: Dict[str, Any] = {
            "error": f"DENIED: {record.denial_reason}",
            "tool_name": call.name,
        }
    elif record.result is not None:
        payload = {
            "success": record.result.success,
            "data": record.result.data,
            "error": record.result.error,
        }
    else:
        payload = {"error": "No result available"}
    return ChatMessage(
        role="tool",
        content=json.dumps(payload, default=str),
        tool_call_id=call.id,
        tool_name=call.name,
    )


class _AgentSession:
    """State for one run of the loop."""

    def __init__(self, config: AgentSessionConfig, deps: LoopDependencies):
        self.config = config
        self.deps = deps
        self.workspace_root = Path(config.workspace_root)
        self.registry = deps.registry or build_default_registry()
        self.executor = deps.executor or ToolExecutor(self.registry)
        self.governance = deps.governance or GovernanceGate(
            self.registry, lock_lookup=deps.lock_lookup
        )
        self.prompt_loader = deps.prompt_loader or PromptLoader(self.workspace_root)
        self.session = Session.create(
            self.workspace_root,
            role=config.role,
            model=config.provider.model,
            chain_id=config.chain_id,
            task_id=config.task_id,
            workflow_id=config.workflow_id,
            stage_index=config.stage_index,
            parent_session_id=config.parent_session_id,
            nesting_depth=config.nesting_depth,
        )
        self.checkpoint = deps.checkpoint or CheckpointHandler(
            config.checkpoint, session_id=self.session.id, approver=deps.approver
        )
        self.cost = CostTracker(
            config.provider.model,
            max_tokens=config.max_tokens,
            max_cost=config.max_cost,
            pricing=config.pricing,
        )
        self.records: List[ToolCallRecord] = []
        self.children: List[SessionResult] = []
        self.messages: List[ChatMessage] = []
        self.provider_tools: List[ProviderTool] = []
        self.iterations = 0
        self.workflow: Optional[Workflow] = None
        self.stage_index: Optional[int] = None
        self.stage: Optional[WorkflowStage] = None

    # ------------------------------------------------------------------
    # Setup
    async def load_workflow(self) -> None:
        manager = self.deps.workflow_manager
        if manager is None:
            raise ValueError(
                f"Workflow {self.config.workflow_id} given but no workflow manager configured"
            )
        workflow = await manager.get(self.config.workflow_id)
        if workflow is None:
            raise ValueError(f"Workflow not found: {self.config.workflow_id}")
        index = self.config.stage_index
        if index is None:
            index = min(workflow.current_stage, len(workflow.stages) - 1)
        if not 0 <= index < len(workflow.stages):
            raise ValueError(f"Stage {index} does not exist in workflow {workflow.id}")
        self.workflow = workflow
        self.stage_index = index
        self.stage = workflow.stages[index]
        self.session.data.stage_index = index

    async def seed_conversation(self) -> None:
        stage_type = self.stage.type if self.stage else None
        tools = self.registry.tools_for_stage(self.config.role, stage_type)
        self.provider_tools = [tool.to_provider_tool() for tool in tools]
        system_prompt = await self.prompt_loader.load(
            self.config.role,
            self.session.id,
            tools,
            chain_id=self.config.chain_id,
            task_id=self.config.task_id,
        )
        self._push(ChatMessage(role="system", content=system_prompt))
        if self.workflow is not None and self.stage is not None:
            instructions = build_stage_instructions(
                self.workflow, self.stage, self.config.chain_id
            )
            if instructions:
                self._push(ChatMessage(role="user", content=instructions))
        self._push(
            ChatMessage(
                role="user",
                content=build_initial_user_message(
                    self.config.role,
                    self.config.chain_id,
                    self.config.task_id,
                    self.config.parent_context,
                ),
            )
        )

    def _push(self, message: ChatMessage) -> None:
        self.messages.append(message)
        self.session.add_message(message)

    # ------------------------------------------------------------------
    # Workflow audit trail
    async def record_workflow_message(
        self, role: MessageRole, content: str, metadata: Optional[dict] = None
    ) -> None:
        if self.workflow is None or self.deps.workflow_manager is None:
            return
        try:
            await self.deps.workflow_manager.add_message(
                self.workflow.id, role, content, self.stage_index, metadata
            )
        except Exception as exc:
            logger.error(f"Failed to record workflow message: {exc}")

    # ------------------------------------------------------------------
    # Child sessions
    async def spawn_child(
        self, chain_id: str, task_id: str, context: Optional[str]
    ) -> Dict[str, Any]:
        logger.info(f"Spawning child impl session for task {task_id}")
        child_config = AgentSessionConfig(
            role="impl",
            provider=self.config.provider,
            workspace_root=self.workspace_root,
            chain_id=chain_id,
            task_id=task_id,
            max_iterations=self.config.max_iterations,
            dry_run=self.config.dry_run,
            parent_session_id=self.session.id,
            nesting_depth=self.config.nesting_depth + 1,
            max_nesting_depth=self.config.max_nesting_depth,
            parent_context=context,
            retry=self.config.retry,
            checkpoint=self.config.checkpoint,
            pricing=self.config.pricing,
        )
        child_deps = LoopDependencies(
            registry=self.registry,
            executor=self.executor,
            governance=self.governance,
            prompt_loader=self.prompt_loader,
            approver=self.deps.approver,
            task_board=self.deps.task_board,
            lock_lookup=self.deps.lock_lookup,
            sleep=self.deps.sleep,
        )
        result = await run_agent_session(child_config, child_deps)
        self.children.append(result)
        await self.session.add_child_session(result.session_id)
        return {
            "success": result.success,
            "session_id": result.session_id,
            "iterations": result.iterations,
            "tokens_used": result.tokens_used.model_dump(),
            "error": result.error,
            "summary": (
                f"Impl session completed in {result.iterations} iterations"
                if result.success
                else f"Impl session failed: {result.error}"
            ),
        }

    def execution_context(self) -> ExecutionContext:
        return ExecutionContext(
            role=self.config.role,
            workspace_root=self.workspace_root,
            chain_id=self.config.chain_id,
            task_id=self.config.task_id,
            workflow_id=self.workflow.id if self.workflow else None,
            session_id=self.session.id,
            nesting_depth=self.config.nesting_depth,
            max_nesting_depth=self.config.max_nesting_depth,
            task_board=self.deps.task_board,
            session_spawner=self.spawn_child,
        )

    # ------------------------------------------------------------------
    # Tool calls
    async def process_tool_call(self, call: ProviderToolCall) -> ToolCallRecord:
        logger.info(f"Tool call: {call.name}")
        tool_call = ToolCall(name=call.name, params=call.arguments, id=call.id)
        validation = await self.governance.validate_async(
            tool_call, self.config.role, self.config.chain_id
        )
        if not validation.allowed:
            logger.info(f"DENIED: {validation.reason}")
            return await self._record(call, validation, None)

        if self.checkpoint.requires_approval(call.name, call.arguments):
            approval = await self.checkpoint.request_approval(call.name, call.arguments)
            if not approval.approved:
                reason = (
                    "Action rejected: approval timeout"
                    if approval.reason == "timeout"
                    else "Action rejected by human operator"
                )
                return await self._record(call, ValidationResult.deny(reason), None)

        if self.config.dry_run:
            logger.info(f"DRY RUN: would execute {call.name}")
            result = ToolResult.ok({"dry_run": True})
        else:
            result = await self.executor.execute(tool_call, self.execution_context())
            logger.info(f"Result: {'success' if result.success else 'failed'}")
        return await self._record(call, validation, result)

    async def _record(
        self,
        call: ProviderToolCall,
        validation: ValidationResult,
        result: Optional[ToolResult],
    ) -> ToolCallRecord:
        record = ToolCallRecord(
            name=call.name,
            arguments=call.arguments,
            allowed=validation.allowed,
            denial_reason=validation.reason,
            result=result,
        )
        self.records.append(record)
        if result is not None:
            stored = ToolCallResult(**result.model_dump())
        else:
            stored = ToolCallResult(success=False, error=validation.reason)
        await self.session.record_tool_call(
            SessionToolCall(
                timestamp=record.timestamp,
                name=call.name,
                params=call.arguments,
                result=stored,
                governance_result=GovernanceRecord(**validation.model_dump()),
            )
        )
        return record

    # ------------------------------------------------------------------
    # Loop
    async def finish(self, stop_reason: StopReason, error: Optional[str] = None) -> SessionResult:
        await self.session.end(_OUTCOMES.get(stop_reason, "failure"))
        logger.info(f"Session {self.session.id} ended: {stop_reason}")
        if self.cost.has_limits():
            logger.info(self.cost.format_session_summary())
        return SessionResult(
            success=stop_reason == "end_turn",
            iterations=self.iterations,
            tool_calls=list(self.records),
            tokens_used=TokensUsed(input=self.cost.input_tokens, output=self.cost.output_tokens),
            error=error,
            stop_reason=stop_reason,
            cost_snapshot=self.cost.snapshot(),
            session_id=self.session.id,
            child_sessions=list(self.children),
        )

    async def run(self) -> SessionResult:
        if self.config.workflow_id:
            try:
                await self.load_workflow()
            except Exception as exc:
                logger.error(f"Workflow load failed: {exc}")
                return await self.finish("error", str(exc))

        await self.seed_conversation()
        workflow_role: MessageRole = "impl" if self.config.role == "impl" else "control"
        max_iterations = self.config.max_iterations

        while self.iterations < max_iterations:
            self.iterations += 1
            logger.debug(f"Iteration {self.iterations}/{max_iterations}")

            outcome = await with_retry(
                lambda: self.config.provider.chat(list(self.messages), self.provider_tools),
                self.config.retry,
                sleep=self.deps.sleep,
            )
            if not outcome.success:
                retry_info = (
                    f"retried {outcome.attempts - 1} times"
                    if outcome.was_retryable
                    else "non-retryable"
                )
                logger.error(f"Provider call failed ({retry_info}): {outcome.error}")
                return await self.finish("error", str(outcome.error))
            response = outcome.data

            self.cost.add_usage(response.usage.input_tokens, response.usage.output_tokens)
            self.session.update_token_usage(
                response.usage.input_tokens, response.usage.output_tokens
            )
            if self.cost.has_limits():
                logger.info(self.cost.format_turn_summary(self.iterations))
            limits = self.cost.check_limits()
            if limits.exceeded:
                return await self.finish("cost_limit", limits.message or "Cost limit exceeded")
            if limits.warning:
                logger.warning(limits.message)

            if response.content or response.tool_calls:
                self._push(
                    ChatMessage(
                        role="assistant",
                        content=response.content,
                        tool_calls=list(response.tool_calls),
                    )
                )
            if response.content:
                await self.record_workflow_message(workflow_role, response.content)

            for call in response.tool_calls:
                record = await self.process_tool_call(call)
                if self.checkpoint.paused:
                    return await self.finish("paused", "Session paused: approval timeout")
                tool_message = build_tool_message(call, record)
                self._push(tool_message)
                await self.record_workflow_message(
                    "system",
                    tool_message.content,
                    {"tool": call.name, "allowed": record.allowed},
                )

            if response.stop_reason == "end_turn":
                return await self.finish("end_turn")

        return await self.finish(
            "max_iterations", f"Maximum iterations ({max_iterations}) reached"
        )


async def run_agent_session(
    config: AgentSessionConfig, deps: Optional[LoopDependencies] = None
) -> SessionResult:
    """Run one agent session to completion.

    Raises:
        asyncio.CancelledError: re-raised after the session is saved with
            outcome ``interrupted``.
    """
    deps = deps or LoopDependencies()
    if config.nesting_depth > config.max_nesting_depth:
        message = f"Maximum nesting depth ({config.max_nesting_depth}) exceeded"
        logger.error(message)
        return SessionResult(
            success=False,
            error=message,
            stop_reason="max_depth",
            session_id=generate_session_id(),
        )

    agent = _AgentSession(config, deps)
    try:
        return await agent.run()
    except asyncio.CancelledError:
        await agent.session.end("interrupted")
        logger.warning(f"Session {agent.session.id} interrupted")
        raise
    except Exception as exc:
        logger.error(f"Session error: {exc}")
        return await agent.finish("error", str(exc))
