"""Stagecraft: stage-gated workflows and governed agent sessions."""

from .config import StagecraftConfig, load_config
from .workflow import TemplateStore, Workflow, WorkflowManager
from .persistence import get_repository
from .governance import GovernanceGate, ValidationResult
from .runtime.loop import AgentSessionConfig, SessionResult, run_agent_session
from .runtime.tools import ToolCall, ToolRegistry, build_default_registry

__version__ = "0.1.0"
__all__ = [
    "AgentSessionConfig",
    "GovernanceGate",
    "SessionResult",
    "StagecraftConfig",
    "TemplateStore",
    "ToolCall",
    "ToolRegistry",
    "ValidationResult",
    "Workflow",
    "WorkflowManager",
    "build_default_registry",
    "get_repository",
    "load_config",
    "run_agent_session",
]
