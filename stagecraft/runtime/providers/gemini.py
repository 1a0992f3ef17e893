"""Google Gemini ``generateContent`` provider."""

from __future__ import annotations

import json
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
from .http import HTTPChatProvider, object_schema, parse_arguments

DEFAULT_GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_GEMINI_MODEL = "gemini-2.0-flash"


class GeminiProvider(HTTPChatProvider):
    """Gemini models. Gemini has no tool call ids, so ids are minted locally."""

    name = "gemini"
    label = "Gemini API"

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_GEMINI_MODEL,
        max_tokens: int = 4096,
        temperature: Optional[float] = None,
        base_url: str = DEFAULT_GEMINI_URL,
        timeout: float = 120.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        super().__init__(
            base_url, timeout=timeout, headers={"x-goog-api-key": api_key}, client=client
        )
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature

    async def chat(
        self, messages: List[ChatMessage], tools: List[ProviderTool]
    ) -> ChatResponse:
        generation: Dict[str, Any] = {"maxOutputTokens": self.max_tokens}
        if self.temperature is not None:
            generation["temperature"] = self.temperature
        payload: Dict[str, Any] = {
            "contents": self._format_contents(messages),
            "generationConfig": generation,
        }
        system = next((m.content for m in messages if m.role == "system"), None)
        if system:
            payload["systemInstruction"] = {"parts": [{"text": system}]}
        if tools:
            payload["tools"] = [
                {
                    "functionDeclarations": [
                        {
                            "name": tool.name,
                            "description": tool.description,
                            "parameters": object_schema(tool.parameters),
                        }
                        for tool in tools
                    ]
                }
            ]
        data = await self._post(f"/models/{self.model}:generateContent", payload)
        return self._parse_response(data)

    @staticmethod
    def _format_contents(messages: List[ChatMessage]) -> List[Dict[str, Any]]:
        contents: List[Dict[str, Any]] = []
        for message in messages:
            if message.role == "system":
                continue
            if message.role == "tool":
                try:
                    result = json.loads(message.content)
                except json.JSONDecodeError:
                    result = {"content": message.content}
                if not isinstance(result, dict):
                    result = {"content": result}
                contents.append(
                    {
                        "role": "user",
                        "parts": [
                            {
                                "functionResponse": {
                                    "name": message.tool_name or "",
                                    "response": result,
                                }
                            }
                        ],
                    }
                )
            elif message.role == "assistant":
                parts: List[Dict[str, Any]] = []
                if message.content:
                    parts.append({"text": message.content})
                parts.extend(
                    {"functionCall": {"name": call.name, "args": call.arguments}}
                    for call in message.tool_calls
                )
                contents.append({"role": "model", "parts": parts})
            else:
                contents.append({"role": "user", "parts": [{"text": message.content}]})
        return contents

    @staticmethod
    def _parse_response(data: Dict[str, Any]) -> ChatResponse:
        candidates = data.get("candidates") or [{}]
        candidate = candidates[0]
        parts = (candidate.get("content") or {}).get("parts") or []
        text = "".join(part.get("text", "") for part in parts if "text" in part)
        tool_calls = [
            ProviderToolCall(
                id=f"gemini-{uuid.uuid4().hex[:12]}",
                name=part["functionCall"].get("name", ""),
                arguments=parse_arguments(part["functionCall"].get("args")),
            )
            for part in parts
            if "functionCall" in part
        ]
        if tool_calls:
            stop_reason = "tool_use"
        elif candidate.get("finishReason") == "MAX_TOKENS":
            stop_reason = "max_tokens"
        else:
            stop_reason = "end_turn"
        usage = data.get("usageMetadata") or {}
        return ChatResponse(
            content=text,
            tool_calls=tool_calls,
            stop_reason=stop_reason,
            usage=TokenUsage(
                input_tokens=usage.get("promptTokenCount") or 0,
                output_tokens=usage.get("candidatesTokenCount") or 0,
            ),
        )
