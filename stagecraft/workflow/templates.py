"""Workflow template models, built-in templates and validation."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..exceptions import TemplateValidationError
from .models import (
    GATE_TYPES,
    STAGE_TYPES,
    CommitMetadata,
    GateType,
    StageHooks,
    StageType,
    utcnow,
)


class GateTemplate(BaseModel):
    """Gate blueprint; runtime fields are added when a workflow is created."""

    type: GateType
    prompt: Optional[str] = None
    chain_id: Optional[str] = None
    commands: List[str] = Field(default_factory=list)
    commit: Optional[CommitMetadata] = None
    audit_enabled: bool = True
    agent_triggered: bool = False


class TemplateStage(BaseModel):
    name: str
    type: StageType
    gate: GateTemplate
    hooks: Optional[StageHooks] = None
    chain_id: Optional[str] = None
    session_id: Optional[str] = None
    init_prompt: Optional[str] = None


class WorkflowTemplate(BaseModel):
    """Versioned stage/gate blueprint."""

    name: str
    description: Optional[str] = None
    builtin: bool = False
    version: int = 1
    stages: List[TemplateStage] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class TemplateVersion(BaseModel):
    """Immutable snapshot of one published template version."""

    template_name: str
    version: int
    snapshot: WorkflowTemplate
    changed_by: str = "system"
    change_description: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


def validate_template_data(data: Any) -> None:
    """Check raw template data before it is turned into a model.

    Raises:
        TemplateValidationError: describing the first rule that is violated.
    """
    if not isinstance(data, dict):
        raise TemplateValidationError("Template definition must be a mapping")
    name = data.get("name")
    if not isinstance(name, str) or not name.strip():
        raise TemplateValidationError("Template must have a name")

    stages = data.get("stages")
    if not isinstance(stages, list) or not stages:
        raise TemplateValidationError(f"Template {name} must have at least one stage")

    for index, stage in enumerate(stages):
        if not isinstance(stage, dict) or not stage.get("name"):
            raise TemplateValidationError(
                f"Stage {index} in template {name} is missing a name"
            )
        stage_name = stage["name"]
        stage_type = stage.get("type")
        if stage_type not in STAGE_TYPES:
            raise TemplateValidationError(
                f"Stage {stage_name} has invalid type {stage_type}"
            )
        gate = stage.get("gate")
        if not isinstance(gate, dict):
            raise TemplateValidationError(f"Stage {stage_name} must define a gate")
        gate_type = gate.get("type")
        if gate_type not in GATE_TYPES:
            raise TemplateValidationError(
                f"Stage {stage_name} has invalid gate type {gate_type}"
            )
        if gate_type == "verification_pass" and not gate.get("commands"):
            raise TemplateValidationError(
                f"Stage {stage_name} verification_pass gate requires commands"
            )


def parse_template(data: Any, builtin: bool = False) -> WorkflowTemplate:
    """Validate raw data (as loaded from YAML) and build a template."""
    validate_template_data(data)
    try:
        template = WorkflowTemplate.model_validate({**data, "builtin": builtin})
    except ValueError as exc:
        raise TemplateValidationError(
            f"Template {data['name']} is invalid: {exc}"
        ) from exc
    return template


_BUILTIN_TIMESTAMP = datetime(2024, 1, 1, tzinfo=timezone.utc)

_BUILTIN_DEFINITIONS: Dict[str, Dict[str, Any]] = {
    "standard": {
        "name": "standard",
        "description": "Full change request lifecycle",
        "stages": [
            {
                "name": "request",
                "type": "request",
                "gate": {
                    "type": "human_approval",
                    "prompt": "CR created. Proceed to design?",
                },
            },
            {
                "name": "design",
                "type": "design",
                "gate": {
                    "type": "human_approval",
                    "prompt": "Design complete. Proceed to implementation?",
                },
            },
            {
                "name": "implementation",
                "type": "implementation",
                "gate": {"type": "chain_complete"},
            },
            {
                "name": "verification",
                "type": "verification",
                "gate": {
                    "type": "verification_pass",
                    "commands": ["pnpm build", "pnpm test", "pnpm lint"],
                },
            },
            {
                "name": "completion",
                "type": "review",
                "gate": {
                    "type": "human_approval",
                    "prompt": "All checks pass. Approve and merge?",
                },
            },
        ],
    },
    "hotfix": {
        "name": "hotfix",
        "description": "Fix request fast path",
        "stages": [
            {
                "name": "request",
                "type": "request",
                "gate": {
                    "type": "human_approval",
                    "prompt": "FR created. Proceed directly to implementation?",
                },
            },
            {
                "name": "implementation",
                "type": "implementation",
                "gate": {"type": "chain_complete"},
            },
            {
                "name": "verification",
                "type": "verification",
                "gate": {
                    "type": "verification_pass",
                    "commands": ["pnpm build", "pnpm test"],
                },
            },
            {
                "name": "completion",
                "type": "review",
                "gate": {
                    "type": "human_approval",
                    "prompt": "Hotfix ready. Approve and merge?",
                },
            },
        ],
    },
    "documentation": {
        "name": "documentation",
        "description": "Documentation-only changes",
        "stages": [
            {"name": "request", "type": "request", "gate": {"type": "auto"}},
            {
                "name": "implementation",
                "type": "implementation",
                "gate": {"type": "chain_complete"},
            },
            {
                "name": "completion",
                "type": "review",
                "gate": {
                    "type": "human_approval",
                    "prompt": "Documentation updated. Approve?",
                },
            },
        ],
    },
}

BUILTIN_TEMPLATE_NAMES = tuple(sorted(_BUILTIN_DEFINITIONS))


def get_builtin_template(name: str) -> Optional[WorkflowTemplate]:
    """Return a fresh copy of a built-in template, or ``None``."""
    definition = _BUILTIN_DEFINITIONS.get(name)
    if definition is None:
        return None
    template = parse_template(definition, builtin=True)
    template.created_at = _BUILTIN_TIMESTAMP
    template.updated_at = _BUILTIN_TIMESTAMP
    return template
