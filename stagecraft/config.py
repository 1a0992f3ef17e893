from __future__ import annotations

import logging
import os
from typing import Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from .constants import (
    DEFAULT_APPROVAL_TIMEOUT_MS,
    DEFAULT_BASE_DELAY_MS,
    DEFAULT_MAX_DELAY_MS,
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_MAX_NESTING_DEPTH,
    DEFAULT_MAX_RETRIES,
)

logger = logging.getLogger(__name__)


class RetrySettings(BaseModel):
    """Backoff settings for provider calls."""

    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay_ms: int = DEFAULT_BASE_DELAY_MS
    max_delay_ms: int = DEFAULT_MAX_DELAY_MS
    enabled: bool = True


class BudgetSettings(BaseModel):
    """Token and cost ceilings for a single session."""

    max_tokens: Optional[int] = None
    max_cost: Optional[float] = None


class SessionSettings(BaseModel):
    """Agent session loop limits and checkpoint behaviour."""

    max_iterations: int = DEFAULT_MAX_ITERATIONS
    max_nesting_depth: int = DEFAULT_MAX_NESTING_DEPTH
    require_approval: bool = False
    auto_approve: bool = False
    approval_timeout_ms: int = DEFAULT_APPROVAL_TIMEOUT_MS


class ProviderSettings(BaseModel):
    """LLM provider selection.

    ``host`` overrides the vendor endpoint. Hosted providers read their API
    key from ``api_key`` or the vendor's environment variable. ``script``
    points the scripted provider at a YAML list of canned replies.
    """

    name: Literal["ollama", "anthropic", "openai", "gemini", "scripted"] = "ollama"
    host: Optional[str] = None
    model: Optional[str] = None
    api_key: Optional[str] = None
    max_tokens: int = 4096
    temperature: Optional[float] = None
    timeout: float = 120.0
    script: Optional[str] = None


class ModelPrice(BaseModel):
    """Price in USD per one million tokens."""

    input: float
    output: float


class PathRules(BaseModel):
    """Ordered allow/deny glob patterns for one role."""

    allowed: List[str] = Field(default_factory=list)
    denied: List[str] = Field(default_factory=list)


class StagecraftConfig(BaseModel):
    """Top-level configuration model."""

    project_root: str = "."
    database_url: Optional[str] = None
    retry: RetrySettings = Field(default_factory=RetrySettings)
    budget: BudgetSettings = Field(default_factory=BudgetSettings)
    session: SessionSettings = Field(default_factory=SessionSettings)
    provider: ProviderSettings = Field(default_factory=ProviderSettings)
    pricing: Dict[str, ModelPrice] = Field(default_factory=dict)
    governance: Dict[str, PathRules] = Field(default_factory=dict)


def parse_approval_timeout(raw: str) -> Optional[int]:
    """Parse an approval timeout, reading values below 1000 as seconds."""
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid approval timeout: {raw!r}")
        return None
    if value <= 0:
        return None
    return value * 1000 if value < 1000 else value


def load_config(path: Optional[str] = None) -> StagecraftConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to STAGECRAFT_CONFIG env
            variable or 'stagecraft.yaml' in the current directory.
    """

    config_path = path or os.getenv("STAGECRAFT_CONFIG", "stagecraft.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = StagecraftConfig(**data)
    else:
        config = StagecraftConfig()

    env_db_url = os.getenv("STAGECRAFT_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url

    max_tokens = os.getenv("STAGECRAFT_MAX_TOKENS")
    if max_tokens:
        try:
            config.budget.max_tokens = int(max_tokens)
        except ValueError:
            logger.warning(f"Ignoring invalid STAGECRAFT_MAX_TOKENS: {max_tokens!r}")

    max_cost = os.getenv("STAGECRAFT_MAX_COST")
    if max_cost:
        try:
            config.budget.max_cost = float(max_cost)
        except ValueError:
            logger.warning(f"Ignoring invalid STAGECRAFT_MAX_COST: {max_cost!r}")

    provider = os.getenv("STAGECRAFT_PROVIDER")
    if provider:
        try:
            config.provider.name = ProviderSettings(name=provider).name
        except ValidationError:
            logger.warning(f"Ignoring invalid STAGECRAFT_PROVIDER: {provider!r}")

    approval_timeout = os.getenv("STAGECRAFT_APPROVAL_TIMEOUT")
    if approval_timeout:
        timeout_ms = parse_approval_timeout(approval_timeout)
        if timeout_ms is not None:
            config.session.approval_timeout_ms = timeout_ms
    return config
