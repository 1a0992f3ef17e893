"""Exception hierarchy for stagecraft."""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from .workflow.hooks import HookRunResult


class StagecraftError(Exception):
    """Base class for all stagecraft errors."""


class WorkflowNotFoundError(StagecraftError, LookupError):
    def __init__(self, workflow_id: str) -> None:
        super().__init__(f"Workflow not found: {workflow_id}")
        self.workflow_id = workflow_id


class WorkflowNotActiveError(StagecraftError):
    def __init__(self, workflow_id: str) -> None:
        super().__init__(f"Workflow {workflow_id} is not active")
        self.workflow_id = workflow_id


class GateNotSatisfiedError(StagecraftError):
    """Raised by ``advance`` when the current stage gate does not hold.

    Never fatal: the workflow is left untouched and may be advanced later.
    """


class BlockingFeedbackError(StagecraftError):
    def __init__(self, workflow_id: str, blocker_ids: List[str]) -> None:
        super().__init__(
            f"Workflow {workflow_id} has unresolved blockers: {', '.join(blocker_ids)}"
        )
        self.workflow_id = workflow_id
        self.blocker_ids = list(blocker_ids)


class HookExecutionError(StagecraftError):
    """A blocking hook action failed; ``result`` holds the partial run."""

    def __init__(self, message: str, result: "HookRunResult") -> None:
        super().__init__(message)
        self.result = result


class TemplateValidationError(StagecraftError, ValueError):
    """Template definition violates a structural rule."""


class TemplateNotFoundError(StagecraftError, LookupError):
    def __init__(self, name: str, version: Optional[int] = None) -> None:
        if version is None:
            message = f"Template {name} not found"
        else:
            message = f"Version {version} for template {name} not found"
        super().__init__(message)
        self.name = name
        self.version = version


class TemplateConflictError(StagecraftError):
    """Template operation not permitted (exists already, built-in, renamed)."""


class ProviderError(StagecraftError):
    """LLM provider request failed.

    ``status_code`` carries the HTTP status when one was received and ``code``
    a network error code such as ``ECONNREFUSED``.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class InvalidTransitionError(StagecraftError, ValueError):
    """Requested workflow operation is not valid in the current state."""
