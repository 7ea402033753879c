"""SQLite schema for execution history and its initialization."""

from __future__ import annotations

import aiosqlite

SCHEMA = """
CREATE TABLE IF NOT EXISTS execution_sessions (
    id INTEGER PRIMARY KEY,
    project_id INTEGER NOT NULL,
    status TEXT NOT NULL DEFAULT 'idle',
    current_step INTEGER DEFAULT 0,
    total_steps INTEGER DEFAULT 0,
    logs TEXT DEFAULT '[]',
    started_at TEXT NOT NULL,
    completed_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_sessions_project ON execution_sessions(project_id);
CREATE INDEX IF NOT EXISTS idx_sessions_started ON execution_sessions(started_at);
"""


async def initialize_db(db: aiosqlite.Connection):
    """Create tables and indexes if they don't exist."""
    await db.executescript(SCHEMA)
    await db.commit()
