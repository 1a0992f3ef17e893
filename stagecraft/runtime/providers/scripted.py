"""Provider that replays a fixed list of responses."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, List, Optional, Union

import yaml

from .base import ChatMessage, ChatResponse, LLMProvider, ProviderTool

ScriptStep = Union[ChatResponse, Exception]


class ScriptedProvider(LLMProvider):
    """Return queued responses in order; queued exceptions are raised.

    When the script runs out, ``fallback`` is returned on every call, or a
    plain ``end_turn`` reply if none was given. Every request is kept in
    ``calls`` for inspection.
    """

    name = "scripted"

    def __init__(
        self,
        responses: Iterable[ScriptStep] = (),
        model: str = "scripted",
        fallback: Optional[ChatResponse] = None,
    ) -> None:
        self.model = model
        self._responses: List[ScriptStep] = list(responses)
        self._fallback = fallback
        self.calls: List[tuple[list[ChatMessage], list[ProviderTool]]] = []

    @classmethod
    def from_file(cls, path: Path | str, model: str = "scripted") -> "ScriptedProvider":
        """Load replies from a YAML list of :class:`ChatResponse` mappings.

        Raises:
            ValueError: the file does not hold a non-empty list.
        """
        data = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
        if not isinstance(data, list) or not data:
            raise ValueError(f"Script {path} must be a non-empty list of responses")
        return cls([ChatResponse.model_validate(item) for item in data], model=model)

    async def chat(
        self, messages: List[ChatMessage], tools: List[ProviderTool]
    ) -> ChatResponse:
        self.calls.append((list(messages), list(tools)))
        if self._responses:
            step = self._responses.pop(0)
            if isinstance(step, Exception):
                raise step
            return step
        if self._fallback is not None:
            return self._fallback
        return ChatResponse(content="", stop_reason="end_turn")
