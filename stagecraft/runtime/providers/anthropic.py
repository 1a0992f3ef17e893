"""Anthropic Messages API provider."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx

from .base import (
    ChatMessage,
    ChatResponse,
    ProviderTool,
    ProviderToolCall,
    StopReason,
    TokenUsage,
)
from .http import HTTPChatProvider, object_schema, parse_arguments

DEFAULT_ANTHROPIC_URL = "https://api.anthropic.com"
DEFAULT_ANTHROPIC_MODEL = "claude-sonnet-4-20250514"
ANTHROPIC_VERSION = "2023-06-01"

_STOP_REASONS: Dict[str, StopReason] = {"tool_use": "tool_use", "max_tokens": "max_tokens"}


class AnthropicProvider(HTTPChatProvider):
    """Claude models over ``POST /v1/messages``.

    The system turn goes in the top-level ``system`` field, assistant tool
    calls become ``tool_use`` blocks and tool results are sent back as
    ``tool_result`` blocks in a user turn.
    """

    name = "anthropic"
    label = "Anthropic API"

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_ANTHROPIC_MODEL,
        max_tokens: int = 4096,
        temperature: Optional[float] = None,
        base_url: str = DEFAULT_ANTHROPIC_URL,
        timeout: float = 120.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        super().__init__(
            base_url,
            timeout=timeout,
            headers={"x-api-key": api_key, "anthropic-version": ANTHROPIC_VERSION},
            client=client,
        )
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature

    async def chat(
        self, messages: List[ChatMessage], tools: List[ProviderTool]
    ) -> ChatResponse:
        payload: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": self._format_messages(messages),
        }
        system = next((m.content for m in messages if m.role == "system"), None)
        if system:
            payload["system"] = system
        if self.temperature is not None:
            payload["temperature"] = self.temperature
        if tools:
            payload["tools"] = [
                {
                    "name": tool.name,
                    "description": tool.description,
                    "input_schema": object_schema(tool.parameters),
                }
                for tool in tools
            ]
        return self._parse_response(await self._post("/v1/messages", payload))

    @staticmethod
    def _format_messages(messages: List[ChatMessage]) -> List[Dict[str, Any]]:
        formatted: List[Dict[str, Any]] = []
        for message in messages:
            if message.role == "system":
                continue
            if message.role == "tool":
                block = {
                    "type": "tool_result",
                    "tool_use_id": message.tool_call_id or "",
                    "content": message.content,
                }
                # Consecutive results for one assistant turn share a user turn.
                previous = formatted[-1] if formatted else None
                if (
                    previous is not None
                    and previous["role"] == "user"
                    and isinstance(previous["content"], list)
                ):
                    previous["content"].append(block)
                else:
                    formatted.append({"role": "user", "content": [block]})
            elif message.role == "assistant" and message.tool_calls:
                blocks: List[Dict[str, Any]] = []
                if message.content:
                    blocks.append({"type": "text", "text": message.content})
                blocks.extend(
                    {
                        "type": "tool_use",
                        "id": call.id,
                        "name": call.name,
                        "input": call.arguments,
                    }
                    for call in message.tool_calls
                )
                formatted.append({"role": "assistant", "content": blocks})
            else:
                formatted.append({"role": message.role, "content": message.content})
        return formatted

    @staticmethod
    def _parse_response(data: Dict[str, Any]) -> ChatResponse:
        blocks = data.get("content") or []
        text = "".join(block.get("text", "") for block in blocks if block.get("type") == "text")
        tool_calls = [
            ProviderToolCall(
                id=block.get("id", ""),
                name=block.get("name", ""),
                arguments=parse_arguments(block.get("input")),
            )
            for block in blocks
            if block.get("type") == "tool_use"
        ]
        usage = data.get("usage") or {}
        return ChatResponse(
            content=text,
            tool_calls=tool_calls,
            stop_reason=_STOP_REASONS.get(data.get("stop_reason") or "", "end_turn"),
            usage=TokenUsage(
                input_tokens=usage.get("input_tokens") or 0,
                output_tokens=usage.get("output_tokens") or 0,
            ),
        )
