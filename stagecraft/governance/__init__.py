from .gate import GovernanceGate, LockLookup, LockStatus, ValidationResult
from .rules import DEFAULT_PATH_RULES, resolve_path_rules

__all__ = [
    "DEFAULT_PATH_RULES",
    "GovernanceGate",
    "LockLookup",
    "LockStatus",
    "ValidationResult",
    "resolve_path_rules",
]
