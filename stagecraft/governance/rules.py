"""Role-scoped file path policy."""

from __future__ import annotations

from typing import Dict, Mapping, Optional

from ..config import PathRules

DEFAULT_PATH_RULES: Dict[str, PathRules] = {
    "impl": PathRules(
        allowed=[
            "packages/**/src/**/*.ts",
            "packages/**/__tests__/**/*.ts",
            "packages/**/src/**/*.json",
            "*.config.*",
            "**/README.md",
        ],
        denied=["docs/tasks/**", "docs/requests/**", "docs/adr/**"],
    ),
    "control": PathRules(
        allowed=[
            "docs/**/*.md",
            "docs/tasks/**",
            "docs/requests/**",
            "docs/adr/**",
            "AGENTS.md",
            "**/AGENTS.md",
        ],
        denied=["packages/**/src/**/*.ts", "packages/**/__tests__/**/*.ts"],
    ),
}


def resolve_path_rules(
    overrides: Optional[Mapping[str, PathRules]] = None,
) -> Dict[str, PathRules]:
    """Default rules with per-role ``overrides`` replacing whole entries."""
    rules = {role: value.model_copy(deep=True) for role, value in DEFAULT_PATH_RULES.items()}
    for role, value in (overrides or {}).items():
        rules[role] = value.model_copy(deep=True)
    return rules
