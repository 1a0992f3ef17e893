"""Workflow engine: creation, gate evaluation and stage advancement."""

from __future__ import annotations

import asyncio
import logging
import weakref
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from ..exceptions import (
    BlockingFeedbackError,
    HookExecutionError,
    InvalidTransitionError,
    WorkflowNotActiveError,
    WorkflowNotFoundError,
)
from ..persistence.inmemory import InMemoryWorkflowRepository
from ..persistence.repository import WorkflowRepository
from .collaborators import (
    AuditChainCreator,
    AuditChainRequest,
    ChainStatusLookup,
    CommandRunner,
    FeedbackSource,
    TaskOperations,
    run_shell_command,
)
from .gates import GateEvaluator, mark_gate_satisfied
from .hooks import (
    AgentSpawner,
    CustomHandler,
    EventEmitter,
    HookRunner,
    HookRunResult,
    TransitionHookContext,
    ValidationCheck,
)
from .models import (
    TERMINAL_STATUSES,
    CommitMetadata,
    MessageRole,
    StageGate,
    TransitionAction,
    Workflow,
    WorkflowIndexEntry,
    WorkflowMessage,
    WorkflowStage,
    WorkflowStatus,
    utcnow,
)
from .template_store import TemplateStore
from .templates import TemplateStage, WorkflowTemplate

logger = logging.getLogger(__name__)

DEFAULT_APPROVAL_PROMPT = "Approval required to proceed."


class WorkflowManager:
    """Owns the :class:`Workflow` aggregate.

    Every mutation of a workflow id runs under an exclusive per-id lock and
    is persisted as a whole (record plus index entry) or not at all. Hook
    results are always written to the audit trail, including when a blocking
    hook aborts a transition.
    """

    def __init__(
        self,
        project_root: str | Path = ".",
        repository: WorkflowRepository | None = None,
        template_store: TemplateStore | None = None,
        command_runner: CommandRunner | None = None,
        chain_status: ChainStatusLookup | None = None,
        feedback_source: FeedbackSource | None = None,
        task_operations: TaskOperations | None = None,
        event_emitter: EventEmitter | None = None,
        agent_spawner: AgentSpawner | None = None,
        validation_check: ValidationCheck | None = None,
        custom_handlers: Optional[Dict[str, CustomHandler]] = None,
        audit_chain_creator: AuditChainCreator | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.project_root = Path(project_root)
        self.repository = repository or InMemoryWorkflowRepository()
        self.templates = template_store or TemplateStore(self.project_root)
        command_runner = command_runner or run_shell_command
        self._gates = GateEvaluator(self.project_root, command_runner, chain_status)
        self._hooks = HookRunner(
            self.project_root,
            command_runner=command_runner,
            task_operations=task_operations,
            message_poster=self._post_hook_message,
            event_emitter=event_emitter,
            agent_spawner=agent_spawner,
            validation_check=validation_check,
            custom_handlers=custom_handlers,
        )
        self._feedback_source = feedback_source
        self._audit_chain_creator = audit_chain_creator
        self._clock = clock
        # Entries disappear once no coroutine holds or waits on the lock.
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._staged_messages: Dict[str, List[WorkflowMessage]] = {}
        self._background: set[asyncio.Task] = set()

    @property
    def hook_runner(self) -> HookRunner:
        return self._hooks

    # ------------------------------------------------------------------
    # Queries
    async def get(self, workflow_id: str) -> Optional[Workflow]:
        return await self.repository.get_workflow(workflow_id)

    async def list(
        self, status: Optional[WorkflowStatus] = None
    ) -> List[WorkflowIndexEntry]:
        """Index entries, most recently updated first."""
        entries = await self.repository.list_workflows()
        if status is not None:
            entries = [entry for entry in entries if entry.status == status]
        return sorted(entries, key=lambda entry: entry.updated_at, reverse=True)

    # ------------------------------------------------------------------
    # Creation
    async def create(
        self, request_id: str, template: str | WorkflowTemplate
    ) -> Workflow:
        if isinstance(template, str):
            template = await self.templates.get(template)
        now = self._clock()

        def build(workflow_id: str) -> Workflow:
            stages = [self._instantiate_stage(stage) for stage in template.stages]
            stages[0].status = "active"
            stages[0].started_at = now
            for stage in stages:
                if stage.gate.type == "auto":
                    mark_gate_satisfied(stage, "system")
            workflow = Workflow(
                id=workflow_id,
                request_id=request_id,
                template=template.name,
                stages=stages,
                created_at=now,
                updated_at=now,
            )
            self._add_gate_prompt_if_needed(workflow, 0)
            return workflow

        workflow = await self.repository.create_workflow(build, now.date())
        logger.info(
            f"Created workflow {workflow.id} for {request_id} from template {template.name}"
        )
        return workflow

    @staticmethod
    def _instantiate_stage(stage: TemplateStage) -> WorkflowStage:
        return WorkflowStage(
            name=stage.name,
            type=stage.type,
            chain_id=stage.chain_id or stage.gate.chain_id,
            session_id=stage.session_id,
            gate=StageGate(**stage.gate.model_dump()),
            hooks=stage.hooks.model_copy(deep=True) if stage.hooks else None,
            init_prompt=stage.init_prompt,
        )

    # ------------------------------------------------------------------
    # Advancement
    async def advance(self, workflow_id: str) -> Workflow:
        """Move the workflow past its current stage.

        Raises:
            WorkflowNotActiveError: the workflow is completed, cancelled or
                discarded.
            BlockingFeedbackError: unresolved blocker feedback exists.
            GateNotSatisfiedError: the current gate does not hold. Nothing is
                changed.
            HookExecutionError: a blocking exit or entry hook failed. Only
                the hook audit messages are persisted.
        """
        async with self._lock_for(workflow_id):
            original = await self._load(workflow_id)
            if original.status in TERMINAL_STATUSES:
                raise WorkflowNotActiveError(workflow_id)
            await self._ensure_no_blocking_feedback(original)

            workflow = original.model_copy(deep=True)
            stage = workflow.active_stage
            if stage is None:
                raise WorkflowNotActiveError(workflow_id)
            await self._gates.ensure_satisfied(stage)

            now = self._clock()
            completed_index = workflow.current_stage
            runs: List[HookRunResult] = []
            try:
                runs.append(
                    await self._hooks.run_on_exit(
                        stage, self._hook_context(workflow, completed_index)
                    )
                )
                stage.status = "completed"
                stage.completed_at = now
                workflow.current_stage += 1

                next_stage = workflow.active_stage
                if next_stage is None:
                    workflow.status = "completed"
                else:
                    next_stage.status = "active"
                    next_stage.started_at = now
                    if next_stage.gate.type == "auto":
                        mark_gate_satisfied(next_stage, "system")
                    runs.append(
                        await self._hooks.run_on_enter(
                            next_stage,
                            self._hook_context(workflow, workflow.current_stage),
                        )
                    )
                    self._add_gate_prompt_if_needed(workflow, workflow.current_stage)
            except HookExecutionError as exc:
                await self._abort_transition(original, runs + [exc.result])
                raise

            for run in runs:
                self._record_hook_results(workflow, run)
            self._drain_staged_messages(workflow)
            workflow.updated_at = now
            await self.repository.save_workflow(workflow)

        if workflow.status == "completed":
            logger.info(f"Workflow {workflow_id} completed")
        else:
            logger.info(
                f"Workflow {workflow_id} advanced to stage {workflow.current_stage} "
                f"({workflow.stages[workflow.current_stage].name})"
            )
        self._schedule_audit_chain(workflow, completed_index)
        return workflow

    async def _ensure_no_blocking_feedback(self, workflow: Workflow) -> None:
        if self._feedback_source is None:
            return
        items = await self._feedback_source(workflow.id)
        blockers = [item.id for item in items if item.is_unresolved_blocker]
        if blockers != workflow.blocking_feedback_ids:
            workflow.blocking_feedback_ids = blockers
            workflow.updated_at = self._clock()
            await self.repository.save_workflow(workflow)
        if blockers:
            raise BlockingFeedbackError(workflow.id, blockers)

    async def _abort_transition(
        self, original: Workflow, runs: Sequence[HookRunResult]
    ) -> None:
        for run in runs:
            self._record_hook_results(original, run)
        self._drain_staged_messages(original)
        original.updated_at = self._clock()
        await self.repository.save_workflow(original)

    # ------------------------------------------------------------------
    # Gates
    async def satisfy_gate(
        self, workflow_id: str, stage_index: int, satisfied_by: str
    ) -> Workflow:
        async with self._lock_for(workflow_id):
            workflow = await self._load(workflow_id)
            stage = self._current_stage_at(workflow, stage_index)
            mark_gate_satisfied(stage, satisfied_by)
            if stage.status == "active":
                stage.status = "awaiting_gate"
            return await self._save(workflow)

    async def attach_commit(
        self, workflow_id: str, stage_index: int, commit: CommitMetadata
    ) -> Workflow:
        """Record commit metadata on the current ``post_commit`` gate."""
        async with self._lock_for(workflow_id):
            workflow = await self._load(workflow_id)
            stage = self._current_stage_at(workflow, stage_index)
            if stage.gate.type != "post_commit":
                raise InvalidTransitionError(
                    f"Stage {stage.name} does not have a post_commit gate"
                )
            if stage.gate.satisfied:
                raise InvalidTransitionError(
                    f"Gate for stage {stage.name} is already satisfied"
                )
            stage.gate.commit = commit
            mark_gate_satisfied(stage, commit.author or "system")
            if stage.status == "active":
                stage.status = "awaiting_gate"
            return await self._save(workflow)

    async def trigger_gate_prompt(self, workflow_id: str, stage_index: int) -> Workflow:
        """Post the approval prompt for an agent-triggered approval gate."""
        async with self._lock_for(workflow_id):
            workflow = await self._load(workflow_id)
            stage = self._current_stage_at(workflow, stage_index)
            if stage.gate.type != "human_approval" or not stage.gate.agent_triggered:
                raise InvalidTransitionError(
                    f"Stage {stage.name} does not have an agent-triggered approval gate"
                )
            self._add_gate_prompt_if_needed(workflow, stage_index, force=True)
            return await self._save(workflow)

    def _current_stage_at(self, workflow: Workflow, stage_index: int) -> WorkflowStage:
        if stage_index != workflow.current_stage or workflow.active_stage is None:
            raise InvalidTransitionError(
                f"Gate satisfaction is only allowed for current stage {workflow.current_stage}"
            )
        return workflow.stages[stage_index]

    def _add_gate_prompt_if_needed(
        self, workflow: Workflow, stage_index: int, force: bool = False
    ) -> None:
        stage = workflow.stages[stage_index]
        gate = stage.gate
        if gate.type != "human_approval" or gate.satisfied:
            return
        if gate.agent_triggered and not force:
            return
        workflow.messages.append(
            WorkflowMessage(
                role="system",
                content=f"Approval Required: {gate.prompt or DEFAULT_APPROVAL_PROMPT}",
                stage_index=stage_index,
                timestamp=self._clock(),
                metadata={"type": "gate_prompt", "gate_type": gate.type},
            )
        )

    # ------------------------------------------------------------------
    # Audit trail and status
    async def add_message(
        self,
        workflow_id: str,
        role: MessageRole,
        content: str,
        stage_index: Optional[int] = None,
        metadata: Optional[dict] = None,
    ) -> WorkflowMessage:
        async with self._lock_for(workflow_id):
            workflow = await self._load(workflow_id)
            if stage_index is None:
                stage_index = min(workflow.current_stage, len(workflow.stages) - 1)
            if not 0 <= stage_index < len(workflow.stages):
                raise InvalidTransitionError(
                    f"Stage {stage_index} does not exist in workflow {workflow_id}"
                )
            message = WorkflowMessage(
                role=role,
                content=content,
                stage_index=stage_index,
                timestamp=self._clock(),
                metadata=metadata or {},
            )
            workflow.messages.append(message)
            await self._save(workflow)
            return message

    async def update_status(self, workflow_id: str, status: WorkflowStatus) -> Workflow:
        async with self._lock_for(workflow_id):
            workflow = await self._load(workflow_id)
            previous = workflow.status
            if previous in TERMINAL_STATUSES and status != previous:
                raise InvalidTransitionError(
                    f"Workflow {workflow_id} is {previous} and cannot change to {status}"
                )
            if status == "completed" and workflow.current_stage < len(workflow.stages):
                raise InvalidTransitionError(
                    f"Workflow {workflow_id} cannot complete before its last stage"
                )
            workflow.status = status
            self._append_system_message(
                workflow,
                f"Status changed from {previous} to {status}",
                {"type": "status_change", "from": previous, "to": status},
            )
            logger.info(f"Workflow {workflow_id} status {previous} -> {status}")
            return await self._save(workflow)

    async def discard(self, workflow_id: str, reason: str) -> Workflow:
        reason = (reason or "").strip()
        if not reason:
            raise InvalidTransitionError("Discard reason is required")
        async with self._lock_for(workflow_id):
            workflow = await self._load(workflow_id)
            self._append_system_message(
                workflow, reason, {"type": "discard_reason"}
            )
            workflow.status = "discarded"
            logger.info(f"Workflow {workflow_id} discarded: {reason}")
            return await self._save(workflow)

    async def run_lifecycle_hook(
        self,
        workflow_id: str,
        hook: str,
        actions: Sequence[TransitionAction],
        task_id: Optional[str] = None,
        chain_id: Optional[str] = None,
    ) -> HookRunResult:
        """Run task or chain lifecycle hook actions against a workflow."""
        async with self._lock_for(workflow_id):
            workflow = await self._load(workflow_id)
            stage_index = min(workflow.current_stage, len(workflow.stages) - 1)
            stage = workflow.stages[stage_index]
            context = TransitionHookContext(
                workflow_id=workflow.id,
                stage_index=stage_index,
                chain_id=chain_id or stage.chain_id,
                task_id=task_id,
            )
            try:
                run = await self._hooks.run(hook, actions, context, stage)
            except HookExecutionError as exc:
                self._record_hook_results(workflow, exc.result)
                self._drain_staged_messages(workflow)
                await self._save(workflow)
                raise
            self._record_hook_results(workflow, run)
            self._drain_staged_messages(workflow)
            await self._save(workflow)
            return run

    def _append_system_message(
        self, workflow: Workflow, content: str, metadata: dict
    ) -> None:
        stage_index = min(workflow.current_stage, len(workflow.stages) - 1)
        workflow.messages.append(
            WorkflowMessage(
                role="system",
                content=content,
                stage_index=stage_index,
                timestamp=self._clock(),
                metadata=metadata,
            )
        )

    def _record_hook_results(self, workflow: Workflow, run: HookRunResult) -> None:
        if not run.results:
            return
        label = run.stage_name or f"stage {run.stage_index}"
        workflow.messages.append(
            WorkflowMessage(
                role="system",
                content=f"Hook {run.hook} for {label}: {run.summary()}",
                stage_index=run.stage_index,
                timestamp=self._clock(),
                metadata={
                    "type": "hook_results",
                    "hook": run.hook,
                    "results": [result.model_dump(mode="json") for result in run.results],
                },
            )
        )

    async def _post_hook_message(
        self, context: TransitionHookContext, content: str, role: MessageRole
    ) -> None:
        self._staged_messages.setdefault(context.workflow_id, []).append(
            WorkflowMessage(
                role=role,
                content=content,
                stage_index=context.stage_index,
                timestamp=self._clock(),
                metadata={"type": "hook_message"},
            )
        )

    def _drain_staged_messages(self, workflow: Workflow) -> None:
        workflow.messages.extend(self._staged_messages.pop(workflow.id, []))

    # ------------------------------------------------------------------
    # Post-commit audit chains
    def _schedule_audit_chain(self, workflow: Workflow, stage_index: int) -> None:
        gate = workflow.stages[stage_index].gate
        if (
            gate.type != "post_commit"
            or not gate.audit_enabled
            or gate.audit_chain_id
            or gate.commit is None
            or self._audit_chain_creator is None
        ):
            return
        request = AuditChainRequest(
            workflow_id=workflow.id,
            request_id=workflow.request_id,
            stage_index=stage_index,
            commit=gate.commit,
        )
        task = asyncio.create_task(self._create_audit_chain(request))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _create_audit_chain(self, request: AuditChainRequest) -> None:
        assert self._audit_chain_creator is not None
        try:
            chain_id = await self._audit_chain_creator(request)
        except Exception:
            logger.exception(
                f"Audit chain creation failed for {request.workflow_id} stage {request.stage_index}"
            )
            return
        if not chain_id:
            return
        async with self._lock_for(request.workflow_id):
            workflow = await self._load(request.workflow_id)
            gate = workflow.stages[request.stage_index].gate
            if gate.audit_chain_id:
                return
            gate.audit_chain_id = chain_id
            await self._save(workflow)
        logger.info(f"Created audit chain {chain_id} for {request.workflow_id}")

    async def wait_for_background_tasks(self) -> None:
        """Wait for pending audit chain creations to finish."""
        if self._background:
            await asyncio.gather(*list(self._background))

    # ------------------------------------------------------------------
    # Helpers
    def _lock_for(self, workflow_id: str) -> asyncio.Lock:
        lock = self._locks.get(workflow_id)
        if lock is None:
            lock = self._locks[workflow_id] = asyncio.Lock()
        return lock

    async def _load(self, workflow_id: str) -> Workflow:
        workflow = await self.repository.get_workflow(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)
        return workflow

    async def _save(self, workflow: Workflow) -> Workflow:
        workflow.updated_at = self._clock()
        await self.repository.save_workflow(workflow)
        return workflow

    @staticmethod
    def _hook_context(workflow: Workflow, stage_index: int) -> TransitionHookContext:
        return TransitionHookContext(
            workflow_id=workflow.id,
            stage_index=stage_index,
            chain_id=workflow.stages[stage_index].chain_id,
        )
