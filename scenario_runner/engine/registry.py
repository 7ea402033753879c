"""Authoritative store of execution sessions and their control signals.

Every read-modify-write of a session happens under that session's own
``asyncio.Condition``; there is no registry-wide lock. The executor blocks on
the same condition while paused or waiting for a human, so control signals
wake it immediately instead of being picked up by a polling loop.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import sys
from dataclasses import dataclass, field
from typing import Optional

from ..constants import LOG_ERROR, LOG_INFO, LOG_SUCCESS, LOG_WARNING
from ..models.session import (
    TRANSITIONS,
    LogEntry,
    Session,
    SessionEvent,
    SessionStatus,
    utcnow,
)
from .errors import AlreadyRunning, InvalidTransition, SessionNotFound

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

_SIGNAL_LOG_MESSAGES = {
    SessionEvent.PAUSE: "Execution paused",
    SessionEvent.RESUME: "Execution resumed",
    SessionEvent.STOP: "Execution stopped",
    SessionEvent.VERIFICATION_COMPLETE: "Manual verification completed",
}


@dataclass
class _Entry:
    session: Session
    changed: asyncio.Condition = field(default_factory=asyncio.Condition)
    cancelled: bool = False


class SessionRegistry:
    """In-memory session records plus per-session locking and signalling."""

    def __init__(self):
        self._entries: dict[int, _Entry] = {}
        self._ids = itertools.count(1)
        self._project_locks: dict[int, asyncio.Lock] = {}

    # ── Reads ────────────────────────────────────────────────────────────────

    def _entry(self, session_id: int) -> _Entry:
        entry = self._entries.get(session_id)
        if entry is None:
            raise SessionNotFound(session_id)
        return entry

    def get(self, session_id: int) -> Session:
        """Snapshot of a session. Raises SessionNotFound."""
        return self._entry(session_id).session.model_copy(deep=True)

    def get_active(self, project_id: int) -> Optional[Session]:
        for entry in self._entries.values():
            if entry.session.project_id == project_id and entry.session.status.is_active:
                return entry.session.model_copy(deep=True)
        return None

    def is_active(self, project_id: int) -> bool:
        return self.get_active(project_id) is not None

    def is_cancelled(self, session_id: int) -> bool:
        return self._entry(session_id).cancelled

    def list_sessions(self, project_id: Optional[int] = None) -> list[Session]:
        return [
            entry.session.model_copy(deep=True)
            for entry in self._entries.values()
            if project_id is None or entry.session.project_id == project_id
        ]

    def active_session_ids(self) -> list[int]:
        return [sid for sid, entry in self._entries.items() if entry.session.status.is_active]

    def continue_ids_from(self, next_id: int):
        """Start numbering new sessions at ``next_id`` (after persisted history)."""
        highest = max(self._entries, default=0)
        self._ids = itertools.count(max(next_id, highest + 1))

    # ── Lifecycle ────────────────────────────────────────────────────────────

    async def create(self, project_id: int, total_steps: int) -> Session:
        """Register a new session for ``project_id`` and move it to Running.

        Raises:
            AlreadyRunning: the project has a running, paused or waiting session.
        """
        async with self._project_locks.setdefault(project_id, asyncio.Lock()):
            active = self.get_active(project_id)
            if active is not None:
                raise AlreadyRunning(project_id, active.id)

            session = Session(id=next(self._ids), project_id=project_id, total_steps=total_steps)
            entry = _Entry(session)
            self._entries[session.id] = entry
            async with entry.changed:
                self._transition(entry, SessionEvent.CREATED)
                self._log(entry, f"Execution started ({total_steps} steps)", LOG_INFO)
            return session.model_copy(deep=True)

    def discard(self, session_id: int) -> bool:
        """Forget a finished session and, when idle, its project's create lock.

        Active sessions are kept. Returns whether the session was dropped.
        """
        entry = self._entries.get(session_id)
        if entry is None or entry.session.status.is_active:
            return False
        del self._entries[session_id]

        project_id = entry.session.project_id
        lock = self._project_locks.get(project_id)
        still_tracked = any(e.session.project_id == project_id for e in self._entries.values())
        if lock is not None and not lock.locked() and not still_tracked:
            del self._project_locks[project_id]
        return True

    async def apply(self, session_id: int, event: SessionEvent) -> Session:
        """Apply an external control signal (pause, resume, stop, verification).

        Raises:
            SessionNotFound: unknown session id.
            InvalidTransition: the signal is not allowed from the current status.
        """
        entry = self._entry(session_id)
        async with entry.changed:
            self._transition(entry, event)
            if event is SessionEvent.STOP:
                entry.cancelled = True
            self._log(entry, _SIGNAL_LOG_MESSAGES.get(event, event.value), LOG_INFO)
            return entry.session.model_copy(deep=True)

    async def pause(self, session_id: int) -> Session:
        return await self.apply(session_id, SessionEvent.PAUSE)

    async def resume(self, session_id: int) -> Session:
        return await self.apply(session_id, SessionEvent.RESUME)

    async def stop(self, session_id: int) -> Session:
        return await self.apply(session_id, SessionEvent.STOP)

    async def complete_verification(self, session_id: int) -> Session:
        return await self.apply(session_id, SessionEvent.VERIFICATION_COMPLETE)

    # ── Executor-side updates ────────────────────────────────────────────────
    # These return None once the session was stopped, so the executor can
    # bail out without emitting anything further.

    async def wait_until_running(self, session_id: int) -> bool:
        """Block while the session is paused. False if it was stopped."""
        entry = self._entry(session_id)
        async with entry.changed:
            return await self._wait_unpaused(entry)

    async def record_progress(self, session_id: int, message: str) -> Optional[Session]:
        """Count one more completed step and log it."""
        entry = self._entry(session_id)
        async with entry.changed:
            if entry.cancelled or entry.session.status.is_terminal:
                return None
            session = entry.session
            session.current_step = min(session.current_step + 1, session.total_steps)
            self._log(entry, message, LOG_INFO)
            return session.model_copy(deep=True)

    async def enter_manual_verification(self, session_id: int, message: str) -> Optional[Session]:
        entry = self._entry(session_id)
        async with entry.changed:
            if not await self._wait_unpaused(entry):
                return None
            self._transition(entry, SessionEvent.REQUIRE_VERIFICATION)
            self._log(entry, message, LOG_WARNING)
            return entry.session.model_copy(deep=True)

    async def wait_for_verification(self, session_id: int) -> bool:
        """Block until a human completes verification. False if stopped.

        No timeout: only a verification or stop signal ends the wait.
        """
        entry = self._entry(session_id)
        async with entry.changed:
            await entry.changed.wait_for(
                lambda: entry.cancelled
                or entry.session.status is not SessionStatus.MANUAL_VERIFICATION
            )
            return not entry.cancelled

    async def finish(self, session_id: int) -> Optional[Session]:
        entry = self._entry(session_id)
        async with entry.changed:
            if not await self._wait_unpaused(entry):
                return None
            self._transition(entry, SessionEvent.FINISH)
            self._log(entry, "All tests completed successfully", LOG_SUCCESS)
            return entry.session.model_copy(deep=True)

    async def fail(self, session_id: int, message: str) -> Optional[Session]:
        entry = self._entry(session_id)
        async with entry.changed:
            if entry.cancelled or entry.session.status.is_terminal:
                return None
            self._transition(entry, SessionEvent.FAIL)
            self._log(entry, message, LOG_ERROR)
            return entry.session.model_copy(deep=True)

    # ── Internals (caller holds entry.changed) ───────────────────────────────

    async def _wait_unpaused(self, entry: _Entry) -> bool:
        await entry.changed.wait_for(
            lambda: entry.cancelled or entry.session.status is not SessionStatus.PAUSED
        )
        return not entry.cancelled

    def _transition(self, entry: _Entry, event: SessionEvent) -> SessionStatus:
        session = entry.session
        target = TRANSITIONS.get((session.status, event))
        if target is None:
            raise InvalidTransition(session.id, session.status.value, event.value)

        logger.info(f"Session {session.id}: {session.status.value} -> {target.value} ({event.name})")
        session.status = target
        if target.is_terminal:
            session.completed_at = utcnow()
        entry.changed.notify_all()
        return target

    def _log(self, entry: _Entry, message: str, type: str):
        entry.session.logs.append(LogEntry(timestamp=utcnow(), message=message, type=type))
