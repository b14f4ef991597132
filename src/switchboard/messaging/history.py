"""Per-session conversation history (what the web UI renders on its next poll)."""

from __future__ import annotations

import sqlite3

from switchboard.infrastructure.clock import now_ms
from switchboard.messaging.types import HistoryMessage


class ConversationHistory:
    def __init__(self, db: sqlite3.Connection) -> None:
        self._db = db

    def add_message(self, session_id: str, message: HistoryMessage) -> None:
        self._db.execute(
            "INSERT INTO conversation_messages (session_id, type, content, created_at) VALUES (?, ?, ?, ?)",
            (session_id, message.type, message.content, message.created_at or now_ms()),
        )
        self._db.commit()

    def get_messages(self, session_id: str, limit: int = 100) -> list[HistoryMessage]:
        """Most recent ``limit`` messages, oldest first."""
        rows = self._db.execute(
            """SELECT * FROM (
                   SELECT * FROM conversation_messages WHERE session_id = ? ORDER BY id DESC LIMIT ?
               ) ORDER BY id ASC""",
            (session_id, limit),
        ).fetchall()
        return [HistoryMessage(**dict(row)) for row in rows]
