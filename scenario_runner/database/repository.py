"""Async repository for finished execution sessions."""

from __future__ import annotations

import json
import logging
import sys
from typing import Optional

import aiosqlite

from ..models.session import Session

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


class SessionRepository:
    """Async repository for session history in SQLite."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    async def upsert_session(self, session: Session):
        """Insert or update a session snapshot."""
        data = session.model_dump(mode="json")
        await self._db.execute(
            """
            INSERT INTO execution_sessions (
                id, project_id, status, current_step, total_steps,
                logs, started_at, completed_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                status = excluded.status,
                current_step = excluded.current_step,
                total_steps = excluded.total_steps,
                logs = excluded.logs,
                completed_at = excluded.completed_at
            """,
            (
                data["id"], data["project_id"], data["status"], data["current_step"],
                data["total_steps"], json.dumps(data["logs"]), data["started_at"],
                data["completed_at"],
            ),
        )
        await self._db.commit()

    async def get_session(self, session_id: int) -> Optional[Session]:
        """Get a single session by ID."""
        async with self._db.execute(
            "SELECT * FROM execution_sessions WHERE id = ?", (session_id,)
        ) as cursor:
            row = await cursor.fetchone()
            if row:
                return self._row_to_session(row, cursor.description)
        return None

    async def list_sessions(self, project_id: Optional[int] = None, limit: int = 25) -> list[Session]:
        """Most recent sessions first, optionally for one project."""
        where = "WHERE project_id = ?" if project_id is not None else ""
        params: list = [project_id] if project_id is not None else []
        params.append(limit)

        async with self._db.execute(
            f"SELECT * FROM execution_sessions {where} ORDER BY started_at DESC, id DESC LIMIT ?",
            params,
        ) as cursor:
            rows = await cursor.fetchall()
            return [self._row_to_session(row, cursor.description) for row in rows]

    async def max_session_id(self) -> int:
        async with self._db.execute("SELECT MAX(id) FROM execution_sessions") as cursor:
            row = await cursor.fetchone()
            return row[0] or 0

    def _row_to_session(self, row: tuple, description) -> Session:
        """Convert a database row to a Session model."""
        col_names = [d[0] for d in description]
        data = dict(zip(col_names, row))

        if isinstance(data.get("logs"), str):
            try:
                data["logs"] = json.loads(data["logs"])
            except json.JSONDecodeError:
                logger.warning(f"Unreadable logs for session {data.get('id')}")
                data["logs"] = []

        return Session.model_validate(data)
