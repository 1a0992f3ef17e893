"""Workflow engine: templates, gates, hooks and the workflow manager."""

from .models import (
    FeedbackItem,
    StageGate,
    TransitionAction,
    Workflow,
    WorkflowIndexEntry,
    WorkflowMessage,
    WorkflowStage,
)
from .templates import WorkflowTemplate, get_builtin_template
from .template_store import TemplateStore
from .hooks import HookRunner, HookRunResult, TransitionHookContext
from .manager import WorkflowManager

__all__ = [
    "FeedbackItem",
    "HookRunResult",
    "HookRunner",
    "StageGate",
    "TemplateStore",
    "TransitionAction",
    "TransitionHookContext",
    "Workflow",
    "WorkflowIndexEntry",
    "WorkflowManager",
    "WorkflowMessage",
    "WorkflowStage",
    "WorkflowTemplate",
    "get_builtin_template",
]
