"""Explicit (de)serialization of persisted aggregates.

Dates are written as ISO-8601 strings and revived to ``datetime`` values on
load. Nothing else in the package converts persisted dates.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict

from ..workflow.models import Workflow

if TYPE_CHECKING:
    from ..runtime.session import SessionData


def serialize_workflow(workflow: Workflow) -> str:
    return workflow.model_dump_json(by_alias=True)


def deserialize_workflow(data: str | bytes | Dict[str, Any]) -> Workflow:
    if isinstance(data, (str, bytes)):
        return Workflow.model_validate_json(data)
    return Workflow.model_validate(data)


def serialize_session(session: "SessionData") -> str:
    return session.model_dump_json(indent=2)


def deserialize_session(data: str | bytes) -> "SessionData":
    from ..runtime.session import SessionData

    return SessionData.model_validate_json(data)


def format_timestamp(value: datetime) -> str:
    """ISO-8601 in UTC with a ``Z`` suffix, matching the JSON documents."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
        return value.replace(tzinfo=None).isoformat() + "Z"
    return value.isoformat()


def parse_timestamp(value: str) -> datetime:
    if value.endswith("Z"):
        return datetime.fromisoformat(value[:-1]).replace(tzinfo=timezone.utc)
    return datetime.fromisoformat(value)
