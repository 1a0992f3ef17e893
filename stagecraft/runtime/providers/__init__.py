"""LLM providers for the agent session loop."""

from __future__ import annotations

import os
from typing import Optional

from ...config import ProviderSettings
from ...exceptions import ProviderError
from .anthropic import AnthropicProvider
from .base import (
    ChatMessage,
    ChatResponse,
    LLMProvider,
    ProviderTool,
    ProviderToolCall,
    TokenUsage,
)
from .gemini import GeminiProvider
from .http import HTTPChatProvider
from .ollama import DEFAULT_OLLAMA_HOST, DEFAULT_OLLAMA_MODEL, OllamaProvider
from .openai import OpenAIProvider
from .scripted import ScriptedProvider

API_KEY_ENV_VARS = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
    "gemini": "GEMINI_API_KEY",
}

_HOSTED = {
    "anthropic": AnthropicProvider,
    "openai": OpenAIProvider,
    "gemini": GeminiProvider,
}


def get_provider(settings: Optional[ProviderSettings] = None) -> LLMProvider:
    """Build the provider named in ``settings``.

    Raises:
        ProviderError: a hosted provider has no API key, or the scripted
            provider has no script.
        ValueError: the provider name is unknown.
    """
    settings = settings or ProviderSettings()
    if settings.name == "ollama":
        return OllamaProvider(
            host=settings.host or DEFAULT_OLLAMA_HOST,
            model=settings.model or DEFAULT_OLLAMA_MODEL,
            max_tokens=settings.max_tokens,
            temperature=settings.temperature,
            timeout=settings.timeout,
        )
    if settings.name in _HOSTED:
        env_var = API_KEY_ENV_VARS[settings.name]
        api_key = settings.api_key or os.getenv(env_var)
        if not api_key:
            raise ProviderError(
                f"API key is required for {settings.name} provider. "
                f"Set {env_var} environment variable or provide api_key in config."
            )
        kwargs = {
            "api_key": api_key,
            "max_tokens": settings.max_tokens,
            "temperature": settings.temperature,
            "timeout": settings.timeout,
        }
        if settings.model:
            kwargs["model"] = settings.model
        if settings.host:
            kwargs["base_url"] = settings.host
        return _HOSTED[settings.name](**kwargs)
    if settings.name == "scripted":
        if not settings.script:
            raise ProviderError("Scripted provider requires a script file")
        return ScriptedProvider.from_file(settings.script, model=settings.model or "scripted")
    raise ValueError(f"Unsupported provider: {settings.name}")


__all__ = [
    "API_KEY_ENV_VARS",
    "AnthropicProvider",
    "ChatMessage",
    "ChatResponse",
    "GeminiProvider",
    "HTTPChatProvider",
    "LLMProvider",
    "OllamaProvider",
    "OpenAIProvider",
    "ProviderTool",
    "ProviderToolCall",
    "ScriptedProvider",
    "TokenUsage",
    "get_provider",
]
