"""Messages pushed to observers over the real-time channel."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from .session import Session, SessionStatus

EventType = Literal[
    "execution_update",
    "manual_verification_required",
    "execution_complete",
    "execution_error",
]


class ExecutionEvent(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    type: EventType
    session_id: int
    status: Optional[SessionStatus] = None
    current_step: Optional[int] = None
    total_steps: Optional[int] = None
    message: Optional[str] = None

    @classmethod
    def for_session(cls, type: EventType, session: Session, message: str, **overrides) -> "ExecutionEvent":
        """Build an event from a session snapshot."""
        fields = {
            "status": session.status,
            "current_step": session.current_step,
            "total_steps": session.total_steps,
        }
        fields.update(overrides)
        return cls(type=type, session_id=session.id, message=message, **fields)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)
