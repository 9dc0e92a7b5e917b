from __future__ import annotations

import json
import os
import sqlite3
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any

from fastapi.encoders import jsonable_encoder

from discover_assistant.core.schemas import InteractionType, SessionUpsert

DEFAULT_TITLE = "New Chat"
TITLE_MAX_CHARS = 50
LIST_LIMIT = 50

_INTERACTION_COLUMNS: dict[str, str] = {
    "click": "results_clicked",
    "add_to_collection": "results_added_to_collection",
}


@dataclass
class ChatEvent:
    session_id: str
    user_message: str
    intent: str
    response_time_ms: int
    result_ids: list[int] = field(default_factory=list)
    result_types: list[str] = field(default_factory=list)
    extracted_genres: list[int] = field(default_factory=list)
    extracted_keywords: list[str] = field(default_factory=list)
    extracted_year: int | None = None
    extracted_type: str | None = None


def _default_data_dir() -> Path:
    return Path(os.environ.get("DISCOVER_ASSISTANT_DATA_DIR", "data")).resolve()


def _ts(value: float) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)


def default_title(messages: list[Any]) -> str:
    """Title from the first message: its first 50 chars, with "..." when cut."""

    if messages:
        first = messages[0]
        content = first.get("content") if isinstance(first, dict) else getattr(first, "content", None)
        if isinstance(content, str) and content:
            return content[:TITLE_MAX_CHARS] + "..." if len(content) > TITLE_MAX_CHARS else content
    return DEFAULT_TITLE


class ChatStore:
    """SQLite-backed store for chat sessions and chat events.

    Sessions are upserted by ``session_id`` and listed newest-first.
    Chat events are append-only rows written by the chat endpoint; interaction
    telemetry increments counters on the latest event of a session.
    """

    def __init__(
        self,
        *,
        db_path: Path | None = None,
        max_sessions: int = 4096,
        max_age_s: float = 60 * 60 * 24 * 90,  # 90 days
    ) -> None:
        self._max_sessions = max_sessions
        self._max_age_s = max_age_s
        base = _default_data_dir()
        default_db = db_path or (base / "chat.sqlite3")
        self._db_path = Path(
            os.environ.get("DISCOVER_ASSISTANT_CHAT_DB", str(default_db))
        ).resolve()
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        self._lock = Lock()
        # check_same_thread=False because TestClient may access across threads.
        self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS chat_sessions (
              session_id TEXT PRIMARY KEY,
              mode TEXT NOT NULL,
              title TEXT NOT NULL,
              messages_json TEXT NOT NULL,
              metadata_json TEXT,
              created_at REAL NOT NULL,
              updated_at REAL NOT NULL
            );
            CREATE INDEX IF NOT EXISTS chat_sessions_mode_updated
              ON chat_sessions (mode, updated_at);
            CREATE TABLE IF NOT EXISTS chat_events (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              session_id TEXT NOT NULL,
              user_message TEXT NOT NULL,
              intent TEXT NOT NULL,
              response_time_ms INTEGER NOT NULL,
              results_count INTEGER NOT NULL,
              result_ids_json TEXT NOT NULL,
              result_types_json TEXT NOT NULL,
              extracted_genres_json TEXT NOT NULL,
              extracted_keywords_json TEXT NOT NULL,
              extracted_year INTEGER,
              extracted_type TEXT,
              results_clicked INTEGER NOT NULL DEFAULT 0,
              results_added_to_collection INTEGER NOT NULL DEFAULT 0,
              created_at REAL NOT NULL
            );
            CREATE INDEX IF NOT EXISTS chat_events_session
              ON chat_events (session_id, created_at);
            """
        )
        self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # -- sessions -----------------------------------------------------------

    def upsert_session(self, session: SessionUpsert) -> dict[str, Any]:
        messages = jsonable_encoder(session.messages)
        title = session.title or default_title(messages)
        metadata_json = json.dumps(session.metadata) if session.metadata is not None else None

        with self._lock:
            now = time.time()
            self._conn.execute(
                "INSERT INTO chat_sessions("
                "session_id, mode, title, messages_json, metadata_json, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(session_id) DO UPDATE SET "
                "mode = excluded.mode, title = excluded.title, "
                "messages_json = excluded.messages_json, "
                "metadata_json = COALESCE(excluded.metadata_json, chat_sessions.metadata_json), "
                "updated_at = excluded.updated_at",
                (session.session_id, session.mode, title, json.dumps(messages), metadata_json, now, now),
            )
            row = self._fetch_session_row(session.session_id)
            self._conn.commit()
            self._evict_if_needed(now)

        return self._session_from_row(row)

    def get_session(self, session_id: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._fetch_session_row(session_id)
        return self._session_from_row(row) if row is not None else None

    def list_sessions(self, *, mode: str | None = None, limit: int = LIST_LIMIT) -> list[dict[str, Any]]:
        query = "SELECT * FROM chat_sessions"
        params: tuple[Any, ...] = ()
        if mode:
            query += " WHERE mode = ?"
            params = (mode,)
        query += " ORDER BY updated_at DESC LIMIT ?"
        with self._lock:
            rows = self._conn.execute(query, (*params, limit)).fetchall()
        return [self._session_from_row(r) for r in rows]

    def delete_session(self, session_id: str) -> bool:
        with self._lock:
            cur = self._conn.execute(
                "DELETE FROM chat_sessions WHERE session_id = ?", (session_id,)
            )
            self._conn.commit()
            return cur.rowcount > 0

    def _fetch_session_row(self, session_id: str) -> sqlite3.Row | None:
        cur = self._conn.execute(
            "SELECT * FROM chat_sessions WHERE session_id = ?", (session_id,)
        )
        return cur.fetchone()

    @staticmethod
    def _session_from_row(row: sqlite3.Row) -> dict[str, Any]:
        try:
            messages = json.loads(row["messages_json"])
        except json.JSONDecodeError:
            messages = []
        metadata = json.loads(row["metadata_json"]) if row["metadata_json"] else None
        return {
            "session_id": row["session_id"],
            "mode": row["mode"],
            "title": row["title"],
            "messages": messages,
            "metadata": metadata,
            "created_at": _ts(row["created_at"]),
            "updated_at": _ts(row["updated_at"]),
        }

    def _evict_if_needed(self, now: float) -> None:
        # Remove old sessions.
        cutoff = now - self._max_age_s
        self._conn.execute("DELETE FROM chat_sessions WHERE updated_at < ?", (cutoff,))

        # Cap number of sessions. Remove least-recently-updated first.
        cur = self._conn.execute("SELECT COUNT(*) FROM chat_sessions")
        (count,) = cur.fetchone() or (0,)
        if count <= self._max_sessions:
            self._conn.commit()
            return

        to_delete = count - self._max_sessions
        self._conn.execute(
            "DELETE FROM chat_sessions WHERE session_id IN ("
            "SELECT session_id FROM chat_sessions ORDER BY updated_at ASC LIMIT ?"
            ")",
            (to_delete,),
        )
        self._conn.commit()

    # -- events -------------------------------------------------------------

    def record_event(self, event: ChatEvent) -> int:
        with self._lock:
            cur = self._conn.execute(
                "INSERT INTO chat_events("
                "session_id, user_message, intent, response_time_ms, results_count, "
                "result_ids_json, result_types_json, extracted_genres_json, "
                "extracted_keywords_json, extracted_year, extracted_type, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    event.session_id,
                    event.user_message,
                    event.intent,
                    event.response_time_ms,
                    len(event.result_ids),
                    json.dumps(event.result_ids),
                    json.dumps(event.result_types),
                    json.dumps(event.extracted_genres),
                    json.dumps(event.extracted_keywords),
                    event.extracted_year,
                    event.extracted_type,
                    time.time(),
                ),
            )
            self._conn.commit()
            return int(cur.lastrowid)

    def record_interaction(self, session_id: str, interaction_type: InteractionType) -> bool:
        column = _INTERACTION_COLUMNS[interaction_type]
        with self._lock:
            cur = self._conn.execute(
                f"UPDATE chat_events SET {column} = {column} + 1 WHERE id = ("
                "SELECT id FROM chat_events WHERE session_id = ? "
                "ORDER BY created_at DESC, id DESC LIMIT 1"
                ")",
                (session_id,),
            )
            self._conn.commit()
            return cur.rowcount > 0

    def load_events(
        self, *, start: datetime | None = None, end: datetime | None = None
    ) -> list[dict[str, Any]]:
        query, params = self._events_where(start, end)
        with self._lock:
            rows = self._conn.execute(
                f"SELECT * FROM chat_events{query} ORDER BY created_at ASC", params
            ).fetchall()
        return [self._event_from_row(r) for r in rows]

    def page_events(self, *, page: int, page_size: int) -> tuple[list[dict[str, Any]], int]:
        with self._lock:
            (total,) = self._conn.execute("SELECT COUNT(*) FROM chat_events").fetchone()
            rows = self._conn.execute(
                "SELECT * FROM chat_events ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
                (page_size, (page - 1) * page_size),
            ).fetchall()
        return [self._event_from_row(r) for r in rows], int(total)

    @staticmethod
    def _events_where(
        start: datetime | None, end: datetime | None
    ) -> tuple[str, tuple[float, ...]]:
        clauses: list[str] = []
        params: list[float] = []
        if start is not None:
            clauses.append("created_at >= ?")
            params.append(start.timestamp())
        if end is not None:
            clauses.append("created_at <= ?")
            params.append(end.timestamp())
        if not clauses:
            return "", ()
        return " WHERE " + " AND ".join(clauses), tuple(params)

    @staticmethod
    def _event_from_row(row: sqlite3.Row) -> dict[str, Any]:
        return {
            "id": row["id"],
            "session_id": row["session_id"],
            "user_message": row["user_message"],
            "intent": row["intent"],
            "response_time_ms": row["response_time_ms"],
            "results_count": row["results_count"],
            "result_ids": json.loads(row["result_ids_json"]),
            "result_types": json.loads(row["result_types_json"]),
            "extracted_genres": json.loads(row["extracted_genres_json"]),
            "extracted_keywords": json.loads(row["extracted_keywords_json"]),
            "extracted_year": row["extracted_year"],
            "extracted_type": row["extracted_type"],
            "results_clicked": row["results_clicked"],
            "results_added_to_collection": row["results_added_to_collection"],
            "created_at": _ts(row["created_at"]),
        }


def create_chat_store() -> ChatStore:
    return ChatStore()
