import pytest

from stagecraft.runtime.tools import (
    ExecutionContext,
    ToolCall,
    ToolDefinition,
    ToolExecutor,
    ToolResult,
    build_default_registry,
)
from stagecraft.runtime.tools.registry import STAGE_TOOLS, is_tool_allowed_for_stage


def _context(tmp_path, role="impl", **kwargs):
    return ExecutionContext(role=role, workspace_root=tmp_path, **kwargs)


async def _run(tmp_path, name, params=None, **kwargs):
    executor = ToolExecutor(build_default_registry())
    return await executor.execute(ToolCall(name=name, params=params or {}), _context(tmp_path, **kwargs))


# ----------------------------------------------------------------------
# registry


def test_registry_contents_and_roles():
    registry = build_default_registry()
    assert len(registry) == 11
    assert "write_file" in registry
    assert "run_command" not in registry
    assert registry.is_allowed("task:approve", "control")
    assert not registry.is_allowed("task:approve", "impl")
    assert not registry.is_allowed("write_file", "control")

    impl = {tool.name for tool in registry.tools_for_role("impl")}
    assert impl == {
        "chain:status",
        "task:status",
        "task:list",
        "task:complete",
        "read_file",
        "write_file",
        "list_files",
        "search_files",
    }


def test_registry_is_not_shared():
    first = build_default_registry()
    second = build_default_registry()

    async def handler(params, context):
        return ToolResult.ok()

    first.register(
        ToolDefinition(
            name="custom",
            description="custom",
            parameters={},
            allowed_roles=frozenset({"impl"}),
            handler=handler,
        )
    )
    assert "custom" in first
    assert "custom" not in second


def test_stage_filtering():
    registry = build_default_registry()
    design = {tool.name for tool in registry.tools_for_stage("impl", "design")}
    assert "write_file" not in design
    assert "read_file" in design

    implementation = {tool.name for tool in registry.tools_for_stage("impl", "implementation")}
    assert {"write_file", "task:complete"} <= implementation

    review = {tool.name for tool in registry.tools_for_stage("control", "review")}
    assert "task:approve" in review
    assert "spawn_impl_session" not in review

    assert is_tool_allowed_for_stage("ideation", "chain:status")
    assert not is_tool_allowed_for_stage("ideation", "task:list")
    assert set(STAGE_TOOLS) == {
        "request",
        "design",
        "implementation",
        "verification",
        "review",
        "ideation",
    }


def test_provider_tool_schema():
    tools = {t.name: t for t in build_default_registry().provider_tools("impl")}
    schema = tools["write_file"].parameters
    assert schema["type"] == "object"
    assert schema["required"] == ["path", "content"]
    assert "content" in schema["properties"]


# ----------------------------------------------------------------------
# executor


@pytest.mark.asyncio
async def test_unknown_tool(tmp_path):
    result = await _run(tmp_path, "nope")
    assert result == ToolResult(success=False, error="Unknown tool: nope")


@pytest.mark.asyncio
async def test_handler_exception_becomes_failed_result(tmp_path):
    async def explode(params, context):
        raise RuntimeError("kaboom")

    registry = build_default_registry()
    registry.register(
        ToolDefinition(
            name="explode",
            description="",
            parameters={},
            allowed_roles=frozenset({"impl"}),
            handler=explode,
        )
    )
    result = await ToolExecutor(registry).execute(ToolCall(name="explode"), _context(tmp_path))
    assert not result.success
    assert result.error == "Tool execution failed: kaboom"


# ----------------------------------------------------------------------
# filesystem tools


@pytest.mark.asyncio
async def test_write_then_read_file(tmp_path):
    created = await _run(tmp_path, "write_file", {"path": "src/a.txt", "content": "one\ntwo\nthree"})
    assert created.success
    assert created.data["action"] == "created"

    modified = await _run(tmp_path, "write_file", {"path": "src/a.txt", "content": "1\n2\n3\n4"})
    assert modified.data["action"] == "modified"

    read = await _run(tmp_path, "read_file", {"path": "src/a.txt", "offset": 2, "limit": 2})
    assert read.success
    assert read.data["total_lines"] == 4
    assert read.data["start_line"] == 2
    assert read.data["end_line"] == 3
    assert read.data["lines_returned"] == 2
    assert read.data["content"] == "     2\t2\n     3\t3"


@pytest.mark.asyncio
async def test_write_file_create_only(tmp_path):
    (tmp_path / "a.txt").write_text("x")
    result = await _run(tmp_path, "write_file", {"path": "a.txt", "content": "y", "create_only": True})
    assert result.error == "File already exists: a.txt"
    assert (tmp_path / "a.txt").read_text() == "x"


@pytest.mark.asyncio
async def test_file_errors(tmp_path):
    missing = await _run(tmp_path, "read_file", {"path": "nope.txt"})
    assert missing.error == "File not found: nope.txt"

    escape = await _run(tmp_path, "read_file", {"path": "../outside.txt"})
    assert escape.error == "Path escapes workspace: ../outside.txt"

    no_path = await _run(tmp_path, "read_file", {})
    assert no_path.error == "Missing required parameter: path"

    (tmp_path / "blob.bin").write_bytes(b"\x00\x01\x02")
    binary = await _run(tmp_path, "read_file", {"path": "blob.bin"})
    assert binary.error == "Cannot read binary file: blob.bin"


@pytest.mark.asyncio
async def test_list_files(tmp_path):
    (tmp_path / "src" / "nested").mkdir(parents=True)
    (tmp_path / "src" / "a.py").write_text("a")
    (tmp_path / "src" / "b.md").write_text("b")
    (tmp_path / "src" / "nested" / "c.py").write_text("c")

    flat = await _run(tmp_path, "list_files", {"path": "src"})
    assert [e["name"] for e in flat.data["entries"]] == ["nested/", "a.py", "b.md"]

    recursive = await _run(tmp_path, "list_files", {"path": "src", "pattern": "*.py", "recursive": True})
    assert [e["name"] for e in recursive.data["entries"]] == ["a.py", "nested/c.py"]
    assert recursive.data["count"] == 2

    missing = await _run(tmp_path, "list_files", {"path": "nope"})
    assert missing.error == "Directory not found: nope"


@pytest.mark.asyncio
async def test_search_files(tmp_path):
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "app.py").write_text("def main():\n    return 1\n# TODO: main\n")
    (tmp_path / "node_modules").mkdir()
    (tmp_path / "node_modules" / "dep.py").write_text("def main(): pass\n")

    result = await _run(tmp_path, "search_files", {"query": r"main"})
    assert result.success
    assert [(m["file"], m["line"]) for m in result.data["matches"]] == [
        ("src/app.py", 1),
        ("src/app.py", 3),
    ]
    assert not result.data["truncated"]

    invalid = await _run(tmp_path, "search_files", {"query": "("})
    assert invalid.error.startswith("Invalid search pattern")


@pytest.mark.asyncio
async def test_search_files_truncates(tmp_path):
    (tmp_path / "big.txt").write_text("hit\n" * 150)
    result = await _run(tmp_path, "search_files", {"query": "hit"})
    assert result.data["count"] == 100
    assert result.data["truncated"]


# ----------------------------------------------------------------------
# task tools


@pytest.mark.asyncio
async def test_task_tools_use_session_ids(tmp_path, task_board):
    listed = await _run(tmp_path, "task:list", task_board=task_board, chain_id="CHAIN-1")
    assert listed.data["count"] == 2

    completed = await _run(
        tmp_path, "task:complete", task_board=task_board, chain_id="CHAIN-1", task_id="T1"
    )
    assert completed.data == {"chain_id": "CHAIN-1", "task_id": "T1", "status": "completed"}
    assert task_board.transitions == [("complete", "CHAIN-1", "T1")]

    status = await _run(tmp_path, "task:status", {"chain_id": "CHAIN-1", "task_id": "T2"}, task_board=task_board)
    assert status.data == {"task_id": "T2", "status": "pending"}


@pytest.mark.asyncio
async def test_task_tool_errors(tmp_path, task_board):
    no_board = await _run(tmp_path, "chain:status", {"chain_id": "CHAIN-1"})
    assert no_board.error == "No task board configured"

    no_chain = await _run(tmp_path, "chain:status", task_board=task_board)
    assert no_chain.error == "Missing required parameter: chain_id"

    no_task = await _run(tmp_path, "task:status", {"chain_id": "CHAIN-1"}, task_board=task_board)
    assert no_task.error == "Missing required parameter: task_id"

    unknown_chain = await _run(tmp_path, "chain:status", {"chain_id": "X"}, task_board=task_board)
    assert unknown_chain.error == "Chain not found: X"

    unknown_task = await _run(
        tmp_path, "task:status", {"chain_id": "CHAIN-1", "task_id": "T9"}, task_board=task_board
    )
    assert unknown_task.error == "Task not found: T9 in chain CHAIN-1"


# ----------------------------------------------------------------------
# spawn_impl_session


@pytest.mark.asyncio
async def test_spawn_respects_depth(tmp_path):
    result = await _run(
        tmp_path,
        "spawn_impl_session",
        {"chain_id": "CHAIN-1", "task_id": "T1"},
        role="control",
        nesting_depth=2,
        max_nesting_depth=2,
    )
    assert result.error == "Maximum nesting depth (2) would be exceeded. Current depth: 2"


@pytest.mark.asyncio
async def test_spawn_delegates_to_spawner(tmp_path):
    calls = []

    async def spawner(chain_id, task_id, context):
        calls.append((chain_id, task_id, context))
        return {"success": True, "session_id": "session-x", "error": None}

    result = await _run(
        tmp_path,
        "spawn_impl_session",
        {"chain_id": "CHAIN-1", "task_id": "T1", "context": "be brief"},
        role="control",
        session_spawner=spawner,
    )
    assert result.success
    assert result.data["session_id"] == "session-x"
    assert calls == [("CHAIN-1", "T1", "be brief")]

    unavailable = await _run(
        tmp_path, "spawn_impl_session", {"chain_id": "CHAIN-1", "task_id": "T1"}, role="control"
    )
    assert unavailable.error == "Session spawning is not available in this session"
