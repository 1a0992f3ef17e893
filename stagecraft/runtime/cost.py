"""Token usage and cost accounting for agent sessions."""

from __future__ import annotations

from typing import Dict, Literal, Mapping, Optional

from pydantic import BaseModel

from ..config import ModelPrice
from ..constants import COST_WARNING_THRESHOLD

# USD per one million tokens.
MODEL_PRICING: Dict[str, ModelPrice] = {
    "claude-sonnet-4-20250514": ModelPrice(input=3.0, output=15.0),
    "claude-3-5-sonnet-20241022": ModelPrice(input=3.0, output=15.0),
    "claude-3-5-haiku-20241022": ModelPrice(input=1.0, output=5.0),
    "claude-3-opus-20240229": ModelPrice(input=15.0, output=75.0),
    "gpt-4o": ModelPrice(input=2.5, output=10.0),
    "gpt-4o-mini": ModelPrice(input=0.15, output=0.6),
    "gpt-4-turbo": ModelPrice(input=10.0, output=30.0),
    "gpt-4": ModelPrice(input=30.0, output=60.0),
    "gemini-2.0-flash": ModelPrice(input=0.1, output=0.4),
    "gemini-1.5-pro": ModelPrice(input=1.25, output=5.0),
    "gemini-1.5-flash": ModelPrice(input=0.075, output=0.3),
}

DEFAULT_PRICING = ModelPrice(input=3.0, output=15.0)


def usage_ratio(used: float, limit: float) -> float:
    """Fraction of ``limit`` consumed; a ceiling of zero or less is always spent."""
    if limit <= 0:
        return float("inf")
    return used / limit


class TokenTotals(BaseModel):
    input: int = 0
    output: int = 0
    total: int = 0


class LimitCheck(BaseModel):
    warning: bool = False
    exceeded: bool = False
    percentage: Optional[float] = None
    limit_type: Optional[Literal["tokens", "cost"]] = None
    message: Optional[str] = None


class CostSnapshot(BaseModel):
    tokens: TokenTotals
    estimated_cost: float
    model: str
    limits: LimitCheck


class CostTracker:
    """Accumulates token usage and evaluates token and cost ceilings.

    The token ceiling is checked before the cost ceiling, so a session over
    both reports the token limit. Usage at or above a ceiling is exceeded;
    from 80% up it is a warning.
    """

    def __init__(
        self,
        model: str,
        max_tokens: Optional[int] = None,
        max_cost: Optional[float] = None,
        pricing: Optional[Mapping[str, ModelPrice]] = None,
    ):
        self.model = model
        table = {**MODEL_PRICING, **(pricing or {})}
        self.pricing = table.get(model, DEFAULT_PRICING)
        self.max_tokens = max_tokens
        self.max_cost = max_cost
        self.input_tokens = 0
        self.output_tokens = 0

    def add_usage(self, input_tokens: int, output_tokens: int) -> None:
        self.input_tokens += input_tokens
        self.output_tokens += output_tokens

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def token_usage(self) -> TokenTotals:
        return TokenTotals(
            input=self.input_tokens, output=self.output_tokens, total=self.total_tokens
        )

    def estimated_cost(self) -> float:
        return (
            self.input_tokens / 1_000_000 * self.pricing.input
            + self.output_tokens / 1_000_000 * self.pricing.output
        )

    def has_limits(self) -> bool:
        return self.max_tokens is not None or self.max_cost is not None

    def check_limits(self) -> LimitCheck:
        total = self.total_tokens
        if self.max_tokens is not None:
            pct = usage_ratio(total, self.max_tokens)
            label = f"{total:,} / {self.max_tokens:,} tokens ({pct * 100:.0f}%)"
            if pct >= 1.0:
                return LimitCheck(
                    warning=True,
                    exceeded=True,
                    percentage=pct,
                    limit_type="tokens",
                    message=f"Token limit exceeded: {label}",
                )
            if pct >= COST_WARNING_THRESHOLD:
                return LimitCheck(
                    warning=True,
                    percentage=pct,
                    limit_type="tokens",
                    message=f"Token limit warning: {label}",
                )

        if self.max_cost is not None:
            cost = self.estimated_cost()
            pct = usage_ratio(cost, self.max_cost)
            label = f"${cost:.2f} / ${self.max_cost:.2f} ({pct * 100:.0f}%)"
            if pct >= 1.0:
                return LimitCheck(
                    warning=True,
                    exceeded=True,
                    percentage=pct,
                    limit_type="cost",
                    message=f"Cost limit exceeded: {label}",
                )
            if pct >= COST_WARNING_THRESHOLD:
                return LimitCheck(
                    warning=True,
                    percentage=pct,
                    limit_type="cost",
                    message=f"Cost limit warning: {label}",
                )

        return LimitCheck()

    def snapshot(self) -> CostSnapshot:
        return CostSnapshot(
            tokens=self.token_usage(),
            estimated_cost=self.estimated_cost(),
            model=self.model,
            limits=self.check_limits(),
        )

    def format_turn_summary(self, turn: int) -> str:
        line = (
            f"Turn {turn} | Tokens: {self.total_tokens:,} "
            f"(in: {self.input_tokens:,}, out: {self.output_tokens:,}) "
            f"| Cost: ${self.estimated_cost():.2f}"
        )
        limits = self.check_limits()
        if limits.percentage is not None:
            line += f" | Limit: {limits.percentage * 100:.0f}%"
            if limits.exceeded:
                line += " (exceeded)"
            elif limits.warning:
                line += " (warning)"
        return line

    def format_session_summary(self) -> str:
        cost = self.estimated_cost()
        lines = [
            f"Total tokens: {self.total_tokens:,} "
            f"(input: {self.input_tokens:,}, output: {self.output_tokens:,})",
            f"Estimated cost: ${cost:.4f} (model: {self.model})",
        ]
        if self.max_tokens is not None:
            pct = usage_ratio(self.total_tokens, self.max_tokens) * 100
            lines.append(f"Token limit: {self.total_tokens:,} / {self.max_tokens:,} ({pct:.1f}%)")
        if self.max_cost is not None:
            pct = usage_ratio(cost, self.max_cost) * 100
            lines.append(f"Cost limit: ${cost:.2f} / ${self.max_cost:.2f} ({pct:.1f}%)")
        return "\n".join(lines)
