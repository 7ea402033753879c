"""MCP tools for reading execution history straight from the local database."""

from __future__ import annotations

import json

import aiosqlite

from ..config import DB_PATH
from ..database.models import initialize_db
from ..database.repository import SessionRepository


async def _get_repo() -> tuple[aiosqlite.Connection, SessionRepository]:
    """Get a database connection and repository."""
    db = await aiosqlite.connect(str(DB_PATH))
    db.row_factory = aiosqlite.Row
    await initialize_db(db)
    return db, SessionRepository(db)


async def list_execution_history(project_id: int = 0, limit: int = 10) -> str:
    """List finished executions, newest first.

    Works even when the engine is not running.

    Args:
        project_id: Only this project's runs (0=all projects).
        limit: Max sessions to return (default 10).

    Returns:
        JSON list of session summaries.
    """
    db, repo = await _get_repo()
    try:
        sessions = await repo.list_sessions(project_id or None, limit)
    finally:
        await db.close()

    if not sessions:
        return "No executions recorded yet."

    summaries = [
        {
            "sessionId": s.id,
            "projectId": s.project_id,
            "status": s.status.value,
            "progress": f"{s.current_step}/{s.total_steps}",
            "startedAt": s.started_at.isoformat(),
            "completedAt": s.completed_at.isoformat() if s.completed_at else None,
            "lastLog": s.logs[-1].message if s.logs else "",
        }
        for s in sessions
    ]
    return json.dumps(summaries, indent=2)
