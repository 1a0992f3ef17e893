"""Interfaces the workflow engine and hook runner depend on.

Implementations are supplied by the host (CLI, tests, other services). The
engine never talks to chains, tasks, feedback or the shell directly.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from pydantic import BaseModel, Field

from .models import CommitMetadata, FeedbackItem

logger = logging.getLogger(__name__)


class CommandResult(BaseModel):
    exit_code: int
    stdout: str = ""
    stderr: str = ""


class CommandRunner(Protocol):
    async def __call__(self, command: str, cwd: Path) -> CommandResult: ...


class TaskOperations(Protocol):
    """Task status transitions performed by hooks and agent tools."""

    async def start_task(self, chain_id: str, task_id: str) -> Dict[str, Any]: ...

    async def complete_task(self, chain_id: str, task_id: str) -> Dict[str, Any]: ...

    async def approve_task(self, chain_id: str, task_id: str) -> Dict[str, Any]: ...


class ValidationReport(BaseModel):
    valid: bool
    errors: List[str] = Field(default_factory=list)


class AuditChainRequest(BaseModel):
    workflow_id: str
    request_id: str
    stage_index: int
    commit: CommitMetadata


ChainStatusLookup = Callable[[str], Awaitable[Optional[str]]]
"""Return the status of a chain (``"done"`` when complete) or ``None``."""

FeedbackSource = Callable[[str], Awaitable[List[FeedbackItem]]]
"""Return the feedback items raised against a workflow id."""

AuditChainCreator = Callable[[AuditChainRequest], Awaitable[Optional[str]]]
"""Create an audit chain for a commit, returning its chain id."""


async def run_shell_command(command: str, cwd: Path) -> CommandResult:
    """Default command runner: run ``command`` through the shell in ``cwd``."""
    logger.debug(f"Running command in {cwd}: {command}")
    process = await asyncio.create_subprocess_shell(
        command,
        cwd=str(cwd),
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, stderr = await process.communicate()
    return CommandResult(
        exit_code=process.returncode if process.returncode is not None else 1,
        stdout=stdout.decode(errors="replace"),
        stderr=stderr.decode(errors="replace"),
    )
