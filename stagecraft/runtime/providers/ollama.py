"""Ollama chat provider using the native ``/api/chat`` endpoint."""

from __future__ import annotations

import uuid
from typing import Any, Dict, List, Optional

import httpx

from .base import (
    ChatMessage,
    ChatResponse,
    ProviderTool,
    ProviderToolCall,
    TokenUsage,
)
from .http import HTTPChatProvider, parse_arguments

DEFAULT_OLLAMA_HOST = "http://localhost:11434"
DEFAULT_OLLAMA_MODEL = "llama3.1"


class OllamaProvider(HTTPChatProvider):
    """Talk to a local Ollama server."""

    name = "ollama"
    label = "Ollama server"

    def __init__(
        self,
        host: str = DEFAULT_OLLAMA_HOST,
        model: str = DEFAULT_OLLAMA_MODEL,
        max_tokens: int = 4096,
        timeout: float = 120.0,
        temperature: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        super().__init__(host, timeout=timeout, client=client)
        self.host = self.base_url
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature

    async def chat(
        self, messages: List[ChatMessage], tools: List[ProviderTool]
    ) -> ChatResponse:
        options: Dict[str, Any] = {"num_predict": self.max_tokens}
        if self.temperature is not None:
            options["temperature"] = self.temperature
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": [self._format_message(message) for message in messages],
            "stream": False,
            "options": options,
        }
        if tools:
            payload["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": tool.name,
                        "description": tool.description,
                        "parameters": tool.parameters,
                    },
                }
                for tool in tools
            ]
        return self._parse_response(await self._post("/api/chat", payload))

    @staticmethod
    def _format_message(message: ChatMessage) -> Dict[str, Any]:
        formatted: Dict[str, Any] = {"role": message.role, "content": message.content}
        if message.tool_calls:
            formatted["tool_calls"] = [
                {"function": {"name": call.name, "arguments": call.arguments}}
                for call in message.tool_calls
            ]
        if message.role == "tool" and message.tool_name:
            formatted["tool_name"] = message.tool_name
        return formatted

    @staticmethod
    def _parse_response(data: Dict[str, Any]) -> ChatResponse:
        message = data.get("message") or {}
        tool_calls: List[ProviderToolCall] = []
        for raw in message.get("tool_calls") or []:
            function = raw.get("function") or {}
            tool_calls.append(
                ProviderToolCall(
                    id=f"ollama-{uuid.uuid4().hex[:12]}",
                    name=function.get("name", ""),
                    arguments=parse_arguments(function.get("arguments")),
                )
            )
        return ChatResponse(
            content=message.get("content") or "",
            tool_calls=tool_calls,
            stop_reason="tool_use" if tool_calls else "end_turn",
            usage=TokenUsage(
                input_tokens=data.get("prompt_eval_count") or 0,
                output_tokens=data.get("eval_count") or 0,
            ),
        )
