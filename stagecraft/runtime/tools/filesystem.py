"""Workspace file tools: read, write, list and search."""

from __future__ import annotations

import asyncio
import fnmatch
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from ...utils.globs import match_path
from .base import BOTH_ROLES, ExecutionContext, ToolDefinition, ToolResult

BINARY_SAMPLE_SIZE = 8192
MAX_SEARCH_MATCHES = 100
MAX_SEARCH_FILE_SIZE = 10 * 1024 * 1024
SKIPPED_DIRS = {"node_modules", ".git", "dist", "build", "coverage", "__pycache__", ".venv"}


def _is_binary(path: Path) -> bool:
    with open(path, "rb") as f:
        return b"\0" in f.read(BINARY_SAMPLE_SIZE)


def _resolve(params: Dict[str, Any], context: ExecutionContext, key: str = "path") -> Path:
    value = params.get(key)
    if not value:
        raise _MissingParam(key)
    return context.resolve(str(value))


class _MissingParam(Exception):
    def __init__(self, name: str) -> None:
        super().__init__(f"Missing required parameter: {name}")


# ----------------------------------------------------------------------
# read_file
def _read_file(params: Dict[str, Any], context: ExecutionContext) -> ToolResult:
    try:
        path = _resolve(params, context)
    except (_MissingParam, ValueError) as exc:
        return ToolResult.fail(str(exc))
    display = params["path"]
    if not path.exists():
        return ToolResult.fail(f"File not found: {display}")
    if not path.is_file():
        return ToolResult.fail(f"Path is not a file: {display}")
    if _is_binary(path):
        return ToolResult.fail(f"Cannot read binary file: {display}")

    lines = path.read_text(encoding="utf-8", errors="replace").split("\n")
    offset = max(1, int(params.get("offset") or 1))
    limit = params.get("limit")
    start = offset - 1
    end = len(lines) if limit is None else min(start + int(limit), len(lines))
    selected = lines[start:end]
    content = "\n".join(
        f"{start + index + 1:>6}\t{line}" for index, line in enumerate(selected)
    )
    return ToolResult.ok(
        {
            "path": display,
            "content": content,
            "total_lines": len(lines),
            "start_line": start + 1,
            "end_line": end,
            "lines_returned": len(selected),
        }
    )


async def read_file(params: Dict[str, Any], context: ExecutionContext) -> ToolResult:
    return await asyncio.to_thread(_read_file, params, context)


# ----------------------------------------------------------------------
# write_file
def _write_file(params: Dict[str, Any], context: ExecutionContext) -> ToolResult:
    try:
        path = _resolve(params, context)
    except (_MissingParam, ValueError) as exc:
        return ToolResult.fail(str(exc))
    content = params.get("content")
    if content is None:
        return ToolResult.fail("Missing required parameter: content")
    display = params["path"]
    if path.is_dir():
        return ToolResult.fail(f"Path is a directory: {display}")
    existed = path.is_file()
    if params.get("create_only") and existed:
        return ToolResult.fail(f"File already exists: {display}")

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(str(content), encoding="utf-8")
    return ToolResult.ok(
        {
            "path": display,
            "action": "modified" if existed else "created",
            "bytes": path.stat().st_size,
        }
    )


async def write_file(params: Dict[str, Any], context: ExecutionContext) -> ToolResult:
    return await asyncio.to_thread(_write_file, params, context)


# ----------------------------------------------------------------------
# list_files
def _entry(path: Path, name: str) -> Dict[str, Any]:
    if path.is_dir():
        return {"name": f"{name}/", "type": "directory", "items": len(list(path.iterdir()))}
    return {"name": name, "type": "file", "size": path.stat().st_size}


def _list_files(params: Dict[str, Any], context: ExecutionContext) -> ToolResult:
    try:
        root = _resolve(params, context)
    except (_MissingParam, ValueError) as exc:
        return ToolResult.fail(str(exc))
    display = params["path"]
    if not root.exists():
        return ToolResult.fail(f"Directory not found: {display}")
    if not root.is_dir():
        return ToolResult.fail(f"Path is not a directory: {display}")

    pattern: Optional[str] = params.get("pattern")
    candidates = root.rglob("*") if params.get("recursive") else root.iterdir()
    entries: List[Dict[str, Any]] = []
    for path in candidates:
        if pattern and not fnmatch.fnmatch(path.name.lower(), pattern.lower()):
            continue
        entries.append(_entry(path, path.relative_to(root).as_posix()))
    entries.sort(key=lambda e: (e["type"] != "directory", e["name"]))
    return ToolResult.ok({"path": display, "entries": entries, "count": len(entries)})


async def list_files(params: Dict[str, Any], context: ExecutionContext) -> ToolResult:
    return await asyncio.to_thread(_list_files, params, context)


# ----------------------------------------------------------------------
# search_files
def _iter_search_files(root: Path, include: Optional[str], exclude: Optional[str]):
    for path in sorted(root.rglob("*")):
        relative = path.relative_to(root)
        if any(part in SKIPPED_DIRS for part in relative.parts):
            continue
        if not path.is_file():
            continue
        if exclude and match_path(relative.as_posix(), exclude):
            continue
        if include and not fnmatch.fnmatch(path.name, include):
            continue
        yield path


def _search_files(params: Dict[str, Any], context: ExecutionContext) -> ToolResult:
    query = params.get("query")
    if not query:
        return ToolResult.fail("Missing required parameter: query")
    try:
        regex = re.compile(str(query))
    except re.error as exc:
        return ToolResult.fail(f"Invalid search pattern: {exc}")
    try:
        root = context.resolve(str(params.get("path") or "."))
    except ValueError as exc:
        return ToolResult.fail(str(exc))
    if not root.is_dir():
        return ToolResult.fail(f"Directory not found: {params.get('path')}")

    workspace = context.workspace_root.resolve()
    matches: List[Dict[str, Any]] = []
    truncated = False
    for path in _iter_search_files(root, params.get("include"), params.get("exclude")):
        if path.stat().st_size > MAX_SEARCH_FILE_SIZE or _is_binary(path):
            continue
        text = path.read_text(encoding="utf-8", errors="replace")
        for number, line in enumerate(text.split("\n"), start=1):
            if not regex.search(line):
                continue
            if len(matches) >= MAX_SEARCH_MATCHES:
                truncated = True
                break
            matches.append(
                {
                    "file": path.relative_to(workspace).as_posix(),
                    "line": number,
                    "content": line[:200],
                }
            )
        if truncated:
            break
    return ToolResult.ok(
        {"query": query, "matches": matches, "count": len(matches), "truncated": truncated}
    )


async def search_files(params: Dict[str, Any], context: ExecutionContext) -> ToolResult:
    return await asyncio.to_thread(_search_files, params, context)


READ_FILE = ToolDefinition(
    name="read_file",
    description="Read a file with line numbers. Use offset and limit for large files.",
    parameters={
        "path": {"type": "string", "description": "Path relative to the project root"},
        "offset": {"type": "number", "description": "First line to return (1-indexed)"},
        "limit": {"type": "number", "description": "Maximum number of lines"},
    },
    required=("path",),
    allowed_roles=BOTH_ROLES,
    handler=read_file,
    category="filesystem",
)

WRITE_FILE = ToolDefinition(
    name="write_file",
    description="Write content to a file, creating parent directories as needed.",
    parameters={
        "path": {"type": "string", "description": "Path relative to the project root"},
        "content": {"type": "string", "description": "Full file content"},
        "create_only": {"type": "boolean", "description": "Fail if the file exists"},
    },
    required=("path", "content"),
    allowed_roles=frozenset({"impl"}),
    handler=write_file,
    mutates=True,
    category="filesystem",
)

LIST_FILES = ToolDefinition(
    name="list_files",
    description="List files and directories at a path, optionally recursive and filtered.",
    parameters={
        "path": {"type": "string", "description": "Directory relative to the project root"},
        "pattern": {"type": "string", "description": "Name glob such as '*.md'"},
        "recursive": {"type": "boolean", "description": "Include subdirectories"},
    },
    required=("path",),
    allowed_roles=BOTH_ROLES,
    handler=list_files,
    category="filesystem",
)

SEARCH_FILES = ToolDefinition(
    name="search_files",
    description="Search file contents with a regular expression.",
    parameters={
        "query": {"type": "string", "description": "Regular expression"},
        "path": {"type": "string", "description": "Directory to search (default: root)"},
        "include": {"type": "string", "description": "File name glob to include"},
        "exclude": {"type": "string", "description": "Relative path glob to exclude"},
    },
    required=("query",),
    allowed_roles=BOTH_ROLES,
    handler=search_files,
    category="filesystem",
)
