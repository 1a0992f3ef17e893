"""OpenAI Chat Completions provider."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

import httpx

from ...exceptions import ProviderError
from .base import (
    ChatMessage,
    ChatResponse,
    ProviderTool,
    ProviderToolCall,
    StopReason,
    TokenUsage,
)
from .http import HTTPChatProvider, object_schema, parse_arguments

DEFAULT_OPENAI_URL = "https://api.openai.com/v1"
DEFAULT_OPENAI_MODEL = "gpt-4o"

_FINISH_REASONS: Dict[str, StopReason] = {"tool_calls": "tool_use", "length": "max_tokens"}


class OpenAIProvider(HTTPChatProvider):
    """GPT models over ``POST /chat/completions``."""

    name = "openai"
    label = "OpenAI API"

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_OPENAI_MODEL,
        max_tokens: int = 4096,
        temperature: Optional[float] = None,
        base_url: str = DEFAULT_OPENAI_URL,
        timeout: float = 120.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        super().__init__(
            base_url,
            timeout=timeout,
            headers={"Authorization": f"Bearer {api_key}"},
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
            "messages": [self._format_message(message) for message in messages],
        }
        if self.temperature is not None:
            payload["temperature"] = self.temperature
        if tools:
            payload["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": tool.name,
                        "description": tool.description,
                        "parameters": object_schema(tool.parameters),
                    },
                }
                for tool in tools
            ]
        return self._parse_response(await self._post("/chat/completions", payload))

    @staticmethod
    def _format_message(message: ChatMessage) -> Dict[str, Any]:
        if message.role == "tool":
            return {
                "role": "tool",
                "tool_call_id": message.tool_call_id or "",
                "content": message.content,
            }
        formatted: Dict[str, Any] = {"role": message.role, "content": message.content}
        if message.role == "assistant" and message.tool_calls:
            formatted["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": json.dumps(call.arguments)},
                }
                for call in message.tool_calls
            ]
        return formatted

    @staticmethod
    def _parse_response(data: Dict[str, Any]) -> ChatResponse:
        choices = data.get("choices") or []
        if not choices:
            raise ProviderError("No response from OpenAI")
        choice = choices[0]
        message = choice.get("message") or {}
        tool_calls = [
            ProviderToolCall(
                id=raw.get("id", ""),
                name=(raw.get("function") or {}).get("name", ""),
                arguments=parse_arguments((raw.get("function") or {}).get("arguments")),
            )
            for raw in message.get("tool_calls") or []
        ]
        usage = data.get("usage") or {}
        return ChatResponse(
            content=message.get("content") or "",
            tool_calls=tool_calls,
            stop_reason=_FINISH_REASONS.get(choice.get("finish_reason") or "", "end_turn"),
            usage=TokenUsage(
                input_tokens=usage.get("prompt_tokens") or 0,
                output_tokens=usage.get("completion_tokens") or 0,
            ),
        )
