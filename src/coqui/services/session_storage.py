"""SQLite-backed session, message and child-run storage."""

from __future__ import annotations

import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

DB_FILENAME = "coqui.db"
SESSION_FILENAME = ".coqui-session"

SCHEMA = """
CREATE TABLE IF NOT EXISTS sessions (
    id TEXT PRIMARY KEY,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    model_role TEXT NOT NULL,
    model TEXT NOT NULL,
    token_count INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id TEXT NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
    role TEXT NOT NULL,
    content TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS child_runs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id TEXT NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
    parent_iteration INTEGER NOT NULL,
    agent_role TEXT NOT NULL,
    model TEXT NOT NULL,
    prompt TEXT NOT NULL,
    result TEXT NOT NULL,
    token_count INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_messages_session ON messages(session_id);
CREATE INDEX IF NOT EXISTS idx_child_runs_session ON child_runs(session_id);
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


class SessionStorage:
    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self.db_path))
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.executescript(SCHEMA)

    @classmethod
    def for_workspace(cls, workspace: Path) -> SessionStorage:
        return cls(Path(workspace) / "data" / DB_FILENAME)

    def close(self) -> None:
        self._conn.close()

    def create_session(self, model_role: str, model: str) -> str:
        session_id = uuid.uuid4().hex
        now = _now()
        with self._conn:
            self._conn.execute(
                "INSERT INTO sessions (id, created_at, updated_at, model_role, model) VALUES (?, ?, ?, ?, ?)",
                (session_id, now, now, model_role, model),
            )
        logger.debug("Created session %s", session_id)
        return session_id

    def get_session(self, session_id: str) -> dict | None:
        row = self._conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
        return dict(row) if row is not None else None

    def list_sessions(self, limit: int = 20) -> list[dict]:
        rows = self._conn.execute(
            "SELECT s.*, (SELECT COUNT(*) FROM messages m WHERE m.session_id = s.id) AS message_count "
            "FROM sessions s ORDER BY s.updated_at DESC, s.rowid DESC LIMIT ?",
            (limit,),
        ).fetchall()
        return [dict(row) for row in rows]

    def get_latest_session_id(self) -> str | None:
        row = self._conn.execute(
            "SELECT id FROM sessions ORDER BY updated_at DESC, rowid DESC LIMIT 1"
        ).fetchone()
        return row["id"] if row is not None else None

    def add_message(self, session_id: str, role: str, content: str) -> None:
        now = _now()
        with self._conn:
            self._conn.execute(
                "INSERT INTO messages (session_id, role, content, created_at) VALUES (?, ?, ?, ?)",
                (session_id, role, content, now),
            )
            self._conn.execute("UPDATE sessions SET updated_at = ? WHERE id = ?", (now, session_id))

    def get_messages(self, session_id: str) -> list[dict]:
        rows = self._conn.execute(
            "SELECT role, content, created_at FROM messages WHERE session_id = ? ORDER BY id",
            (session_id,),
        ).fetchall()
        return [dict(row) for row in rows]

    def log_child_run(
        self,
        session_id: str,
        parent_iteration: int,
        agent_role: str,
        model: str,
        prompt: str,
        result: str,
        token_count: int = 0,
    ) -> None:
        with self._conn:
            self._conn.execute(
                "INSERT INTO child_runs "
                "(session_id, parent_iteration, agent_role, model, prompt, result, token_count, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (session_id, parent_iteration, agent_role, model, prompt, result, token_count, _now()),
            )

    def get_child_runs(self, session_id: str) -> list[dict]:
        rows = self._conn.execute(
            "SELECT * FROM child_runs WHERE session_id = ? ORDER BY id",
            (session_id,),
        ).fetchall()
        return [dict(row) for row in rows]

    def update_token_count(self, session_id: str, tokens: int) -> None:
        """Add `tokens` to the session's running total."""
        with self._conn:
            self._conn.execute(
                "UPDATE sessions SET token_count = token_count + ?, updated_at = ? WHERE id = ?",
                (tokens, _now(), session_id),
            )

    def delete_session(self, session_id: str) -> None:
        with self._conn:
            self._conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))


def read_session_file(workspace: Path) -> str | None:
    path = Path(workspace) / SESSION_FILENAME
    if not path.is_file():
        return None
    session_id = path.read_text(encoding="utf-8").strip()
    return session_id or None


def write_session_file(workspace: Path, session_id: str) -> None:
    (Path(workspace) / SESSION_FILENAME).write_text(session_id + "\n", encoding="utf-8")
