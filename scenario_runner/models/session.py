"""Pydantic models for execution session state."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    MANUAL_VERIFICATION = "manual"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


ACTIVE_STATUSES = frozenset(
    {SessionStatus.RUNNING, SessionStatus.PAUSED, SessionStatus.MANUAL_VERIFICATION}
)
TERMINAL_STATUSES = frozenset({SessionStatus.COMPLETED, SessionStatus.ERROR})


class SessionEvent(str, Enum):
    """Things that move a session from one status to another."""

    CREATED = "start"
    PAUSE = "pause"
    RESUME = "resume"
    REQUIRE_VERIFICATION = "require verification for"
    VERIFICATION_COMPLETE = "complete verification for"
    STOP = "stop"
    FINISH = "finish"
    FAIL = "fail"


# (from, event) -> to. Anything missing here is rejected.
TRANSITIONS: dict[tuple[SessionStatus, SessionEvent], SessionStatus] = {
    (SessionStatus.IDLE, SessionEvent.CREATED): SessionStatus.RUNNING,
    (SessionStatus.RUNNING, SessionEvent.PAUSE): SessionStatus.PAUSED,
    (SessionStatus.PAUSED, SessionEvent.RESUME): SessionStatus.RUNNING,
    (SessionStatus.RUNNING, SessionEvent.REQUIRE_VERIFICATION): SessionStatus.MANUAL_VERIFICATION,
    (SessionStatus.MANUAL_VERIFICATION, SessionEvent.VERIFICATION_COMPLETE): SessionStatus.RUNNING,
    (SessionStatus.RUNNING, SessionEvent.STOP): SessionStatus.COMPLETED,
    (SessionStatus.PAUSED, SessionEvent.STOP): SessionStatus.COMPLETED,
    (SessionStatus.MANUAL_VERIFICATION, SessionEvent.STOP): SessionStatus.COMPLETED,
    (SessionStatus.RUNNING, SessionEvent.FINISH): SessionStatus.COMPLETED,
    (SessionStatus.RUNNING, SessionEvent.FAIL): SessionStatus.ERROR,
    # Only failure path out of Paused: the step was issued while Running and
    # its call failed after the pause was recorded. Nothing else fails a
    # paused session.
    (SessionStatus.PAUSED, SessionEvent.FAIL): SessionStatus.ERROR,
}


class LogEntry(BaseModel):
    timestamp: datetime = Field(default_factory=utcnow)
    message: str
    type: Literal["info", "success", "warning", "error"] = "info"


class Session(BaseModel):
    """Progress record for one run of a scenario model."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: int
    project_id: int
    status: SessionStatus = SessionStatus.IDLE
    current_step: int = 0
    total_steps: int = 0
    logs: list[LogEntry] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
