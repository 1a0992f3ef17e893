"""Dispatch validated tool calls to their handlers."""

from __future__ import annotations

import logging

from .base import ExecutionContext, ToolCall, ToolResult
from .registry import ToolRegistry

logger = logging.getLogger(__name__)


class ToolExecutor:
    """Runs a tool call against an execution context.

    Governance is expected to have approved the call already; the executor
    only resolves the handler and turns handler exceptions into failed
    results.
    """

    def __init__(self, registry: ToolRegistry):
        self.registry = registry

    async def execute(self, call: ToolCall, context: ExecutionContext) -> ToolResult:
        tool = self.registry.get(call.name)
        if tool is None:
            return ToolResult.fail(f"Unknown tool: {call.name}")

        try:
            return await tool.handler(call.params, context)
        except Exception as exc:
            logger.error(f"Tool {call.name} raised: {exc}")
            return ToolResult.fail(f"Tool execution failed: {exc}")
