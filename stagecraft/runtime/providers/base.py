"""LLM provider abstraction.

Providers normalize a vendor chat API to :class:`ChatResponse`; the session
loop never sees vendor payloads.
"""

from __future__ import annotations

import abc
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

MessageRole = Literal["system", "user", "assistant", "tool"]
StopReason = Literal["end_turn", "tool_use", "max_tokens"]


class ProviderToolCall(BaseModel):
    id: str
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


class ChatMessage(BaseModel):
    """One conversation turn. Assistant turns carry the tool calls they made."""

    role: MessageRole
    content: str
    tool_calls: List[ProviderToolCall] = Field(default_factory=list)
    tool_call_id: Optional[str] = None
    tool_name: Optional[str] = None


class ProviderTool(BaseModel):
    """Tool schema offered to the model."""

    name: str
    description: str
    parameters: Dict[str, Any] = Field(default_factory=dict)


class TokenUsage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0


class ChatResponse(BaseModel):
    content: str = ""
    tool_calls: List[ProviderToolCall] = Field(default_factory=list)
    stop_reason: StopReason = "end_turn"
    usage: TokenUsage = Field(default_factory=TokenUsage)


class LLMProvider(metaclass=abc.ABCMeta):
    """Abstract chat-completion provider."""

    name: str = "provider"
    model: str = ""

    @abc.abstractmethod
    async def chat(
        self, messages: List[ChatMessage], tools: List[ProviderTool]
    ) -> ChatResponse:
        """Send the conversation and available tools, return one reply."""
        raise NotImplementedError

    async def close(self) -> None:
        """Release network resources (no-op by default)."""
        pass
