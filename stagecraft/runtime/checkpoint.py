"""Human approval checkpoints for sensitive tool calls."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Literal, Mapping, Optional

import typer
from pydantic import BaseModel

from ..config import SessionSettings

logger = logging.getLogger(__name__)

SENSITIVE_ACTIONS = frozenset(
    {"write_file", "task:complete", "chain:close", "spawn_impl_session"}
)

Approver = Callable[[str], Awaitable[bool]]


class ApprovalResult(BaseModel):
    approved: bool
    reason: Optional[Literal["rejected", "timeout"]] = None


async def terminal_approver(prompt: str) -> bool:
    """Ask on the terminal; runs ``typer.confirm`` off the event loop."""
    return await asyncio.to_thread(typer.confirm, prompt, default=False)


def _is_delete(params: Mapping[str, Any]) -> bool:
    content = params.get("content")
    return not content or not str(content).strip()


class CheckpointHandler:
    """Gates sensitive actions behind human approval.

    A rejected action is reported back to the agent. A timed out approval
    additionally pauses the session until :meth:`resume` is called.
    """

    def __init__(
        self,
        settings: Optional[SessionSettings] = None,
        session_id: Optional[str] = None,
        approver: Optional[Approver] = None,
    ):
        settings = settings or SessionSettings()
        self.require_approval = settings.require_approval
        self.auto_approve = settings.auto_approve
        self.approval_timeout_ms = settings.approval_timeout_ms
        self.session_id = session_id
        self._approver = approver or terminal_approver
        self._paused = False

    @property
    def paused(self) -> bool:
        return self._paused

    def resume(self) -> None:
        self._paused = False

    def requires_approval(self, action: str, params: Mapping[str, Any]) -> bool:
        if not self.require_approval or self.auto_approve:
            return False
        if action not in SENSITIVE_ACTIONS:
            return False
        if action == "write_file":
            return _is_delete(params)
        return True

    def format_prompt(self, action: str, params: Mapping[str, Any]) -> str:
        label = action
        if action == "write_file" and _is_delete(params):
            label = "write_file (delete)"
        elif action == "spawn_impl_session":
            label = "spawn_impl_session (nested)"

        seconds = self.approval_timeout_ms // 1000
        timeout = f"{seconds // 60}m" if seconds >= 60 else f"{seconds}s"
        lines = ["APPROVAL REQUIRED", f"  Action: {label}"]
        details: Dict[str, Any] = {
            "Path": params.get("path"),
            "Chain": params.get("chain_id"),
            "Task": params.get("task_id"),
            "Session": self.session_id,
        }
        lines.extend(f"  {key}: {value}" for key, value in details.items() if value)
        lines.append(f"Approve? (timeout: {timeout})")
        return "\n".join(lines)

    async def request_approval(
        self, action: str, params: Mapping[str, Any]
    ) -> ApprovalResult:
        if self.auto_approve:
            return ApprovalResult(approved=True)

        prompt = self.format_prompt(action, params)
        try:
            approved = await asyncio.wait_for(
                self._approver(prompt), timeout=self.approval_timeout_ms / 1000
            )
        except asyncio.TimeoutError:
            self._paused = True
            logger.warning(f"Approval for {action} timed out; pausing session")
            return ApprovalResult(approved=False, reason="timeout")

        if not approved:
            logger.info(f"Approval for {action} rejected")
            return ApprovalResult(approved=False, reason="rejected")
        return ApprovalResult(approved=True)
