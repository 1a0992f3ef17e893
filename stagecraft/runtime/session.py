"""Session records persisted under ``.stagecraft/sessions``.

A session is written after every tool call so that a crash loses at most
the turn in flight.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from ..constants import SESSIONS_DIR, STATE_DIR
from ..persistence.serialization import deserialize_session, serialize_session
from ..workflow.models import AgentRole, utcnow
from .providers.base import ChatMessage

logger = logging.getLogger(__name__)

SessionOutcome = Literal["success", "failure", "interrupted"]


def generate_session_id(now: Optional[datetime] = None) -> str:
    """Return an id shaped ``session-YYYYMMDD-HHMMSS-xxxxxx``."""
    now = now or utcnow()
    return f"session-{now:%Y%m%d-%H%M%S}-{secrets.token_hex(3)}"


class SessionTokenUsage(BaseModel):
    input: int = 0
    output: int = 0
    total: int = 0


class GovernanceRecord(BaseModel):
    allowed: bool
    reason: Optional[str] = None


class ToolCallResult(BaseModel):
    success: bool
    data: Any = None
    error: Optional[str] = None


class SessionToolCall(BaseModel):
    timestamp: datetime = Field(default_factory=utcnow)
    name: str
    params: Dict[str, Any] = Field(default_factory=dict)
    result: ToolCallResult
    governance_result: GovernanceRecord


class SessionData(BaseModel):
    id: str
    role: AgentRole
    model: str
    chain_id: Optional[str] = None
    task_id: Optional[str] = None
    workflow_id: Optional[str] = None
    stage_index: Optional[int] = None
    start_time: datetime = Field(default_factory=utcnow)
    end_time: Optional[datetime] = None
    outcome: Optional[SessionOutcome] = None
    token_usage: SessionTokenUsage = Field(default_factory=SessionTokenUsage)
    messages: List[ChatMessage] = Field(default_factory=list)
    tool_calls: List[SessionToolCall] = Field(default_factory=list)
    parent_session_id: Optional[str] = None
    child_session_ids: List[str] = Field(default_factory=list)
    nesting_depth: int = 0


def sessions_dir(workspace_root: Path | str) -> Path:
    return Path(workspace_root) / STATE_DIR / SESSIONS_DIR


class Session:
    """Mutable wrapper around :class:`SessionData` bound to its file."""

    def __init__(self, data: SessionData, workspace_root: Path | str):
        self.data = data
        self.path = sessions_dir(workspace_root) / f"{data.id}.json"

    @classmethod
    def create(
        cls,
        workspace_root: Path | str,
        role: AgentRole,
        model: str,
        chain_id: Optional[str] = None,
        task_id: Optional[str] = None,
        workflow_id: Optional[str] = None,
        stage_index: Optional[int] = None,
        parent_session_id: Optional[str] = None,
        nesting_depth: int = 0,
    ) -> "Session":
        data = SessionData(
            id=generate_session_id(),
            role=role,
            model=model,
            chain_id=chain_id,
            task_id=task_id,
            workflow_id=workflow_id,
            stage_index=stage_index,
            parent_session_id=parent_session_id,
            nesting_depth=nesting_depth,
        )
        return cls(data, workspace_root)

    @classmethod
    async def load(cls, session_id: str, workspace_root: Path | str) -> Optional["Session"]:
        """Load a saved session, or ``None`` if no record exists."""
        path = sessions_dir(workspace_root) / f"{session_id}.json"
        if not path.exists():
            return None
        raw = await asyncio.to_thread(path.read_text, encoding="utf-8")
        return cls(deserialize_session(raw), workspace_root)

    @property
    def id(self) -> str:
        return self.data.id

    @property
    def is_root(self) -> bool:
        return self.data.parent_session_id is None

    def add_message(self, message: ChatMessage) -> None:
        self.data.messages.append(message)

    def update_token_usage(self, input_tokens: int, output_tokens: int) -> None:
        usage = self.data.token_usage
        usage.input += input_tokens
        usage.output += output_tokens
        usage.total = usage.input + usage.output

    async def record_tool_call(self, record: SessionToolCall) -> None:
        self.data.tool_calls.append(record)
        await self.save()

    async def add_child_session(self, child_session_id: str) -> None:
        self.data.child_session_ids.append(child_session_id)
        await self.save()

    async def end(self, outcome: SessionOutcome) -> None:
        self.data.end_time = utcnow()
        self.data.outcome = outcome
        await self.save()

    async def save(self) -> None:
        content = serialize_session(self.data)
        await asyncio.to_thread(self._write, content)

    def _write(self, content: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(content, encoding="utf-8")


def list_session_ids(workspace_root: Path | str) -> List[str]:
    """Saved session ids, newest first."""
    directory = sessions_dir(workspace_root)
    if not directory.is_dir():
        return []
    return sorted((p.stem for p in directory.glob("session-*.json")), reverse=True)
