import re

import pytest

from stagecraft.runtime.providers import ChatMessage
from stagecraft.runtime.session import (
    GovernanceRecord,
    Session,
    SessionToolCall,
    ToolCallResult,
    generate_session_id,
    list_session_ids,
)


def test_session_id_format():
    assert re.fullmatch(r"session-\d{8}-\d{6}-[0-9a-f]{6}", generate_session_id())
    assert generate_session_id() != generate_session_id()


@pytest.mark.asyncio
async def test_session_round_trip(tmp_path):
    session = Session.create(tmp_path, role="impl", model="llama3.1", chain_id="C1", task_id="T1")
    assert session.is_root
    session.add_message(ChatMessage(role="user", content="hello"))
    session.update_token_usage(100, 20)
    session.update_token_usage(50, 5)
    await session.record_tool_call(
        SessionToolCall(
            name="read_file",
            params={"path": "a.ts"},
            result=ToolCallResult(success=True, data={"content": "x"}),
            governance_result=GovernanceRecord(allowed=True),
        )
    )
    await session.add_child_session("session-child")
    await session.end("success")

    path = tmp_path / ".stagecraft" / "sessions" / f"{session.id}.json"
    assert path.is_file()

    loaded = await Session.load(session.id, tmp_path)
    data = loaded.data
    assert data.role == "impl"
    assert data.chain_id == "C1"
    assert data.outcome == "success"
    assert data.end_time is not None
    assert data.token_usage.total == 175
    assert data.messages[0].content == "hello"
    assert data.tool_calls[0].params == {"path": "a.ts"}
    assert data.child_session_ids == ["session-child"]


@pytest.mark.asyncio
async def test_tool_calls_are_saved_immediately(tmp_path):
    session = Session.create(tmp_path, role="control", model="m")
    await session.record_tool_call(
        SessionToolCall(
            name="task:approve",
            result=ToolCallResult(success=False, error="denied"),
            governance_result=GovernanceRecord(allowed=False, reason="denied"),
        )
    )
    loaded = await Session.load(session.id, tmp_path)
    assert loaded.data.outcome is None
    assert not loaded.data.tool_calls[0].governance_result.allowed


@pytest.mark.asyncio
async def test_load_missing_and_listing(tmp_path):
    assert await Session.load("session-missing", tmp_path) is None
    assert list_session_ids(tmp_path) == []

    child = Session.create(tmp_path, role="impl", model="m", parent_session_id="p", nesting_depth=1)
    assert not child.is_root
    await child.save()
    assert list_session_ids(tmp_path) == [child.id]
