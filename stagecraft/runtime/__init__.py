"""Agent runtime support: providers, tools, budgets, approvals and sessions.

The session loop itself lives in :mod:`stagecraft.runtime.loop`.
"""

from .checkpoint import CheckpointHandler
from .cost import CostTracker
from .session import Session, SessionData

__all__ = ["CheckpointHandler", "CostTracker", "Session", "SessionData"]
