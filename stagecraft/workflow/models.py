"""Workflow aggregate, stage, gate and transition action models."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional, Union, get_args

from pydantic import BaseModel, ConfigDict, Field

StageType = Literal[
    "request", "design", "review", "implementation", "verification", "ideation"
]
WorkflowStatus = Literal[
    "active", "paused", "completed", "failed", "cancelled", "discarded"
]
StageStatus = Literal["pending", "active", "awaiting_gate", "completed", "skipped"]
GateType = Literal[
    "auto", "human_approval", "chain_complete", "verification_pass", "post_commit"
]
MessageRole = Literal["human", "control", "impl", "system"]
AgentRole = Literal["control", "impl"]

STAGE_TYPES: tuple[str, ...] = get_args(StageType)
GATE_TYPES: tuple[str, ...] = get_args(GateType)
TERMINAL_STATUSES = frozenset({"completed", "cancelled", "discarded"})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CommitMetadata(BaseModel):
    """Commit attached to a ``post_commit`` gate."""

    sha: str
    message: Optional[str] = None
    author: Optional[str] = None
    files_changed: List[str] = Field(default_factory=list)


# ----------------------------------------------------------------------
# Transition actions


class _Action(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    blocking: bool = True


class CommandAction(_Action):
    type: Literal["command"] = "command"
    command: Optional[str] = None


class TaskTransitionAction(_Action):
    type: Literal["task_transition"] = "task_transition"
    transition: str
    chain_id: Optional[str] = None
    task_id: Optional[str] = None


class FileMoveAction(_Action):
    type: Literal["file_move"] = "file_move"
    from_path: Optional[str] = Field(default=None, alias="from")
    to_path: Optional[str] = Field(default=None, alias="to")


class CustomAction(_Action):
    type: Literal["custom"] = "custom"
    handler: Optional[str] = None
    params: Dict[str, Any] = Field(default_factory=dict)


class SpawnAgentAction(_Action):
    type: Literal["spawn_agent"] = "spawn_agent"
    role: AgentRole = "impl"
    prompt: Optional[str] = None
    chain_id: Optional[str] = None
    task_id: Optional[str] = None


class PostMessageAction(_Action):
    type: Literal["post_message"] = "post_message"
    content: str
    role: MessageRole = "system"


class EmitEventAction(_Action):
    type: Literal["emit_event"] = "emit_event"
    event: str
    payload: Dict[str, Any] = Field(default_factory=dict)


class ValidationAction(_Action):
    type: Literal["validation"] = "validation"
    gate: str
    chain_id: Optional[str] = None


TransitionAction = Annotated[
    Union[
        CommandAction,
        TaskTransitionAction,
        FileMoveAction,
        CustomAction,
        SpawnAgentAction,
        PostMessageAction,
        EmitEventAction,
        ValidationAction,
    ],
    Field(discriminator="type"),
]


class StageHooks(BaseModel):
    on_enter: List[TransitionAction] = Field(default_factory=list)
    on_exit: List[TransitionAction] = Field(default_factory=list)


# ----------------------------------------------------------------------
# Workflow aggregate


class StageGate(BaseModel):
    """Condition that must hold before a workflow leaves a stage."""

    type: GateType
    prompt: Optional[str] = None
    chain_id: Optional[str] = None
    commands: List[str] = Field(default_factory=list)
    commit: Optional[CommitMetadata] = None
    audit_enabled: bool = True
    audit_chain_id: Optional[str] = None
    agent_triggered: bool = False
    satisfied: bool = False
    satisfied_by: Optional[str] = None
    satisfied_at: Optional[datetime] = None


class WorkflowStage(BaseModel):
    name: str
    type: StageType
    status: StageStatus = "pending"
    chain_id: Optional[str] = None
    session_id: Optional[str] = None
    gate: StageGate
    hooks: Optional[StageHooks] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    init_prompt: Optional[str] = None


class WorkflowMessage(BaseModel):
    """Entry in the append-only workflow audit trail."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    role: MessageRole
    content: str
    stage_index: int
    timestamp: datetime = Field(default_factory=utcnow)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class Workflow(BaseModel):
    """One end-to-end run of a request through a stage sequence."""

    id: str
    request_id: str
    template: str
    current_stage: int = 0
    status: WorkflowStatus = "active"
    stages: List[WorkflowStage] = Field(default_factory=list)
    messages: List[WorkflowMessage] = Field(default_factory=list)
    blocking_feedback_ids: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def active_stage(self) -> Optional[WorkflowStage]:
        """Stage at ``current_stage`` or ``None`` once past the last stage."""
        if 0 <= self.current_stage < len(self.stages):
            return self.stages[self.current_stage]
        return None


class WorkflowIndexEntry(BaseModel):
    """Lightweight listing record kept in the shared index."""

    id: str
    request_id: str
    status: WorkflowStatus
    template: str
    current_stage: int
    updated_at: datetime

    @classmethod
    def from_workflow(cls, workflow: Workflow) -> "WorkflowIndexEntry":
        return cls(
            id=workflow.id,
            request_id=workflow.request_id,
            status=workflow.status,
            template=workflow.template,
            current_stage=workflow.current_stage,
            updated_at=workflow.updated_at,
        )


class FeedbackItem(BaseModel):
    """Feedback raised against a workflow by an agent or human."""

    id: str
    workflow_id: str
    type: str
    status: Literal["pending", "acknowledged", "resolved", "dismissed"] = "pending"
    content: str = ""

    @property
    def is_unresolved_blocker(self) -> bool:
        return self.type == "blocker" and self.status in ("pending", "acknowledged")
