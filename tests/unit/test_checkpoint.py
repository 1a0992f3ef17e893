import asyncio

import pytest

from stagecraft.config import SessionSettings
from stagecraft.runtime.checkpoint import CheckpointHandler


def _handler(approver=None, **settings):
    options = {"require_approval": True, **settings}
    return CheckpointHandler(SessionSettings(**options), session_id="session-1", approver=approver)


def test_requires_approval_only_for_sensitive_actions():
    handler = _handler()
    assert handler.requires_approval("task:complete", {})
    assert handler.requires_approval("spawn_impl_session", {"chain_id": "C1"})
    assert handler.requires_approval("write_file", {"path": "a.ts", "content": "  "})
    assert not handler.requires_approval("write_file", {"path": "a.ts", "content": "x"})
    assert not handler.requires_approval("read_file", {"path": "a.ts"})


def test_disabled_or_auto_approve_never_prompts():
    assert not _handler(require_approval=False).requires_approval("task:complete", {})
    assert not _handler(auto_approve=True).requires_approval("task:complete", {})


def test_format_prompt():
    prompt = _handler(approval_timeout_ms=120_000).format_prompt(
        "write_file", {"path": "src/old.ts", "content": ""}
    )
    assert prompt.splitlines() == [
        "APPROVAL REQUIRED",
        "  Action: write_file (delete)",
        "  Path: src/old.ts",
        "  Session: session-1",
        "Approve? (timeout: 2m)",
    ]


@pytest.mark.asyncio
async def test_approved_and_rejected():
    prompts = []

    async def yes(prompt):
        prompts.append(prompt)
        return True

    async def no(prompt):
        return False

    approved = await _handler(yes).request_approval("task:complete", {"task_id": "T1"})
    assert approved.approved
    assert "  Task: T1" in prompts[0]

    handler = _handler(no)
    rejected = await handler.request_approval("task:complete", {})
    assert not rejected.approved
    assert rejected.reason == "rejected"
    assert not handler.paused


@pytest.mark.asyncio
async def test_timeout_pauses_session():
    async def never(prompt):
        await asyncio.sleep(10)
        return True

    handler = _handler(never, approval_timeout_ms=10)
    result = await handler.request_approval("task:complete", {})
    assert not result.approved
    assert result.reason == "timeout"
    assert handler.paused

    handler.resume()
    assert not handler.paused


@pytest.mark.asyncio
async def test_auto_approve_skips_approver():
    async def fail(prompt):
        raise AssertionError("approver should not be called")

    result = await _handler(fail, auto_approve=True).request_approval("task:complete", {})
    assert result.approved
