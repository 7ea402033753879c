"""Engine error hierarchy.

Backend adapters raise ``AdapterError`` subclasses only; the HTTP layer maps
the remaining classes to status codes.
"""

from __future__ import annotations


class EngineError(Exception):
    """Base class for every error raised by the execution engine."""


# ── Capability contract failures ─────────────────────────────────────────────


class AdapterError(EngineError):
    """A browser-automation call failed."""


class ElementNotFound(AdapterError):
    """The selector did not match an element (or it was not visible)."""


class Timeout(AdapterError):
    """The backend gave up waiting for a selector or page."""


class NavigationFailure(AdapterError):
    """The page could not be loaded."""


class BackendUnavailable(AdapterError):
    """The browser could not be launched or has gone away."""


# ── Session lifecycle ────────────────────────────────────────────────────────


class AlreadyRunning(EngineError):
    """A project already has a running, paused or waiting session."""

    def __init__(self, project_id: int, session_id: int):
        self.project_id = project_id
        self.session_id = session_id
        super().__init__(
            f"Execution already in progress for project {project_id} (session {session_id})"
        )


class SessionNotFound(EngineError):
    def __init__(self, session_id: int):
        self.session_id = session_id
        super().__init__(f"Session {session_id} not found")


class InvalidTransition(EngineError):
    """The requested control signal is not allowed from the current status."""

    def __init__(self, session_id: int, status: str, event: str):
        self.session_id = session_id
        self.status = status
        self.event = event
        super().__init__(f"Cannot {event} session {session_id} while it is {status}")


class ValidationError(EngineError):
    """The submitted scenario model is malformed."""

    def __init__(self, problems: list[str]):
        self.problems = problems
        super().__init__("Invalid scenario model: " + "; ".join(problems))
