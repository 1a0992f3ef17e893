"""Policy decision point for agent tool calls."""

from __future__ import annotations

import logging
import posixpath
from typing import Awaitable, Callable, Dict, List, Literal, Mapping, Optional

from pydantic import BaseModel, model_validator

from ..config import PathRules
from ..runtime.tools.base import ToolCall
from ..runtime.tools.registry import ToolRegistry
from ..utils.globs import match_path
from .rules import resolve_path_rules

logger = logging.getLogger(__name__)

FileAction = Literal["create", "modify", "delete"]


def normalize_policy_path(path: str) -> str:
    """Strip a leading slash and collapse ``.`` and ``..`` segments.

    Patterns are matched against the collapsed form so that a path cannot
    climb out of an allowed directory into a denied one.
    """
    stripped = path[1:] if path.startswith("/") else path
    return posixpath.normpath(stripped).lstrip("/") if stripped else stripped


class ValidationResult(BaseModel):
    """Allow/deny decision. Denials always carry a reason, allows never do."""

    allowed: bool
    reason: Optional[str] = None

    @model_validator(mode="after")
    def _reason_matches_decision(self) -> "ValidationResult":
        if self.allowed and self.reason is not None:
            raise ValueError("An allowed decision cannot carry a reason")
        if not self.allowed and not self.reason:
            raise ValueError("A denial requires a reason")
        return self

    @classmethod
    def allow(cls) -> "ValidationResult":
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: str) -> "ValidationResult":
        return cls(allowed=False, reason=reason)


class LockStatus(BaseModel):
    locked: bool = False
    chain_id: Optional[str] = None


LockLookup = Callable[[str], Awaitable[LockStatus]]


class GovernanceGate:
    """Authorizes tool calls by role, file path policy and file locks.

    The gate only reads lock state through ``lock_lookup``; acquiring and
    releasing locks belongs to whoever owns the lock table.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        path_rules: Optional[Mapping[str, PathRules]] = None,
        lock_lookup: Optional[LockLookup] = None,
    ):
        self.registry = registry
        self.path_rules: Dict[str, PathRules] = resolve_path_rules(path_rules)
        self.lock_lookup = lock_lookup

    def validate(self, call: ToolCall, role: str) -> ValidationResult:
        tool = self.registry.get(call.name)
        if tool is None:
            return ValidationResult.deny(f"Unknown tool: {call.name}")
        if not tool.allows(role):
            return ValidationResult.deny(
                f"Tool {call.name} is not available to {role} role"
            )

        if call.name == "write_file":
            path = call.params.get("path")
            if isinstance(path, str) and path:
                return self.validate_file_path(path, role, "modify")

        return ValidationResult.allow()

    def validate_file_path(
        self, path: str, role: str, action: FileAction = "modify"
    ) -> ValidationResult:
        """Check ``path`` against the role's denied patterns, then its allowed ones."""
        normalized = normalize_policy_path(path)
        if normalized == ".." or normalized.startswith("../"):
            return ValidationResult.deny(
                f"Role {role} cannot {action} {path} - path escapes the project root"
            )
        rules = self.path_rules.get(role) or PathRules()

        for pattern in rules.denied:
            if match_path(normalized, pattern):
                return ValidationResult.deny(
                    f"Role {role} cannot {action} {path} - matches denied pattern {pattern}"
                )

        if not any(match_path(normalized, pattern) for pattern in rules.allowed):
            return ValidationResult.deny(
                f"Role {role} cannot {action} {path} - does not match any allowed pattern"
            )

        return ValidationResult.allow()

    async def check_lock(self, path: str, chain_id: Optional[str] = None) -> Optional[str]:
        """Return the owning chain when ``path`` is unavailable to ``chain_id``.

        A lock seen by a caller without a chain id is treated as held by
        someone else.
        """
        if self.lock_lookup is None:
            return None
        status = await self.lock_lookup(path)
        if not status.locked:
            return None
        if chain_id is not None and status.chain_id == chain_id:
            return None
        return status.chain_id or "unknown"

    async def validate_async(
        self, call: ToolCall, role: str, chain_id: Optional[str] = None
    ) -> ValidationResult:
        result = self.validate(call, role)
        if not result.allowed:
            return result

        if call.name == "write_file" and self.lock_lookup is not None:
            path = call.params.get("path")
            if isinstance(path, str) and path:
                owner = await self.check_lock(normalize_policy_path(path), chain_id)
                if owner is not None:
                    logger.info(f"Denied write to {path}: locked by chain {owner}")
                    return ValidationResult.deny(f"File {path} is locked by chain {owner}")

        return result

    def validate_batch(self, calls: List[ToolCall], role: str) -> List[ValidationResult]:
        return [self.validate(call, role) for call in calls]

    def all_allowed(self, calls: List[ToolCall], role: str) -> bool:
        return all(self.validate(call, role).allowed for call in calls)
