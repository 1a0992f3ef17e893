"""System prompt and opening message assembly for agent sessions."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Dict, Optional, Sequence

from ..workflow.hooks import interpolate
from ..workflow.models import AgentRole, Workflow, WorkflowStage
from .tools.base import ToolDefinition

FALLBACK_PROMPTS: Dict[str, str] = {
    "control": (
        "# Control Agent\n\n"
        "You manage work: create and review task chains, approve or return "
        "completed tasks. You do not implement code yourself."
    ),
    "impl": (
        "# Implementation Agent\n\n"
        "You implement one task at a time against its acceptance criteria and "
        "report completion. You do not approve your own work."
    ),
}

FOOTER = (
    "Every tool call is validated against governance rules before it runs. "
    "A denied call returns its reason as the tool result."
)


class PromptLoader:
    """Builds a role prompt from ``docs/agents`` plus session details."""

    def __init__(self, workspace_root: Path | str):
        self.docs_path = Path(workspace_root) / "docs" / "agents"

    async def load(
        self,
        role: AgentRole,
        session_id: str,
        tools: Sequence[ToolDefinition],
        chain_id: Optional[str] = None,
        task_id: Optional[str] = None,
    ) -> str:
        base = await self._load_base_prompt(role)
        sections = [
            base,
            "---",
            self._session_section(role, session_id, chain_id, task_id),
            self._tools_section(tools),
            "---",
            FOOTER,
        ]
        return "\n\n".join(sections)

    async def _load_base_prompt(self, role: AgentRole) -> str:
        path = self.docs_path / f"{role}-agent.md"
        if not path.is_file():
            return FALLBACK_PROMPTS[role]
        content = await asyncio.to_thread(path.read_text, encoding="utf-8")
        return content.strip()

    @staticmethod
    def _session_section(
        role: str, session_id: str, chain_id: Optional[str], task_id: Optional[str]
    ) -> str:
        lines = ["## Current Session", "", f"- **Session ID**: {session_id}", f"- **Role**: {role}"]
        if chain_id:
            lines.append(f"- **Chain**: {chain_id}")
        if task_id:
            lines.append(f"- **Task**: {task_id}")
        return "\n".join(lines)

    @staticmethod
    def _tools_section(tools: Sequence[ToolDefinition]) -> str:
        if not tools:
            return "## Available Tools\n\nNo tools available for this session."
        lines = ["## Available Tools", ""]
        lines.extend(f"- **{tool.name}**: {tool.description}" for tool in tools)
        return "\n".join(lines)


def build_stage_instructions(
    workflow: Workflow, stage: WorkflowStage, chain_id: Optional[str] = None
) -> Optional[str]:
    """Render the stage ``init_prompt``, or ``None`` when the stage has none."""
    if not stage.init_prompt:
        return None
    variables = {
        "requestId": workflow.request_id,
        "workflowId": workflow.id,
        "chainId": chain_id or stage.chain_id or "",
        "stageName": stage.name,
        "stageType": stage.type,
    }
    return f"## Stage Instructions\n\n{interpolate(stage.init_prompt, variables)}"


def build_initial_user_message(
    role: AgentRole,
    chain_id: Optional[str] = None,
    task_id: Optional[str] = None,
    parent_context: Optional[str] = None,
) -> str:
    if role == "impl" and chain_id and task_id:
        parts = [
            f"You are assigned to work on task {task_id} in chain {chain_id}.",
            "Please read the task file and implement according to the acceptance criteria.",
        ]
    elif role == "control" and chain_id:
        parts = [
            f"You are managing chain {chain_id}.",
            "Please review the chain status and take appropriate action.",
        ]
    elif role == "control":
        parts = [
            "You are a control agent ready to manage work.",
            "What would you like me to help you with?",
        ]
    else:
        parts = [
            "You are an implementation agent ready to work.",
            "What would you like me to help you with?",
        ]

    message = " ".join(parts)
    if parent_context:
        message += f"\n\nAdditional context from parent session:\n{parent_context}"
    return message
