"""SQLite persistence layer."""

from __future__ import annotations

import json
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

from agentchat.models import Conversation, Message

SCHEMA_VERSION = 1


class Database:
    """Small SQLite wrapper with explicit schema management.

    Every call opens its own connection, so concurrent chat tasks never share
    a cursor; SQLite serializes the writes.
    """

    def __init__(self, path: Path) -> None:
        self._path = path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._path, timeout=30)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create or migrate schema."""

        with self._connect() as conn:
            conn.execute("CREATE TABLE IF NOT EXISTS schema_version (version INTEGER NOT NULL)")
            row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
            if row is None:
                self._create_schema(conn)
                conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
            elif row["version"] != SCHEMA_VERSION:
                raise RuntimeError(
                    f"Unsupported schema version {row['version']} (expected {SCHEMA_VERSION})"
                )

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS conversations (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                title TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                conversation_id TEXT NOT NULL,
                role TEXT NOT NULL,
                content TEXT NOT NULL,
                parts_json TEXT,
                tool_call_id TEXT,
                tool_calls_json TEXT,
                created_at TEXT NOT NULL,
                FOREIGN KEY(conversation_id) REFERENCES conversations(id)
            );

            CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id, id);

            CREATE TABLE IF NOT EXISTS tool_executions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                conversation_id TEXT NOT NULL,
                tool_name TEXT NOT NULL,
                input_json TEXT NOT NULL,
                output_json TEXT NOT NULL,
                succeeded INTEGER NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS search_cache (
                query_hash TEXT PRIMARY KEY,
                normalized_query TEXT NOT NULL,
                result_json TEXT NOT NULL,
                created_at TEXT NOT NULL,
                expires_at TEXT NOT NULL,
                hit_count INTEGER NOT NULL DEFAULT 0,
                last_accessed_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_search_cache_expiry ON search_cache(query_hash, expires_at);

            CREATE TABLE IF NOT EXISTS skills (
                id TEXT PRIMARY KEY,
                user_id TEXT,
                name TEXT NOT NULL,
                display_name TEXT NOT NULL,
                description TEXT NOT NULL,
                content TEXT NOT NULL,
                category TEXT NOT NULL,
                learning_enabled INTEGER NOT NULL DEFAULT 0,
                rag_integration INTEGER NOT NULL DEFAULT 0,
                auto_switch_rules_json TEXT,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS user_skills (
                user_id TEXT NOT NULL,
                skill_id TEXT NOT NULL,
                is_default INTEGER NOT NULL DEFAULT 0,
                enabled INTEGER NOT NULL DEFAULT 1,
                order_index INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                PRIMARY KEY(user_id, skill_id),
                FOREIGN KEY(skill_id) REFERENCES skills(id)
            );

            CREATE TABLE IF NOT EXISTS conversation_active_skills (
                conversation_id TEXT PRIMARY KEY,
                skill_id TEXT NOT NULL,
                previous_skill_id TEXT,
                trigger_type TEXT NOT NULL,
                activated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS skill_usage (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                skill_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                conversation_id TEXT NOT NULL,
                trigger_type TEXT NOT NULL,
                trigger_message TEXT,
                previous_skill_id TEXT,
                started_at TEXT NOT NULL,
                completed_at TEXT,
                tokens_used INTEGER,
                tool_calls_count INTEGER NOT NULL DEFAULT 0,
                success INTEGER,
                error_message TEXT
            );

            CREATE TABLE IF NOT EXISTS conversation_summaries (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                conversation_id TEXT NOT NULL UNIQUE,
                summary TEXT NOT NULL,
                message_count INTEGER NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS document_chunks (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                filename TEXT NOT NULL,
                content TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS sessions (
                token TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                expires_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS user_settings (
                user_id TEXT PRIMARY KEY,
                system_message TEXT,
                tavily_api_key TEXT,
                updated_at TEXT NOT NULL
            );
            """
        )

    # Conversations and messages

    def create_conversation(self, user_id: str, title: str) -> str:
        conversation_id = uuid.uuid4().hex
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO conversations(id, user_id, title, created_at) VALUES (?, ?, ?, ?)",
                (conversation_id, user_id, title, _utc_now_iso()),
            )
        return conversation_id

    def get_conversation(self, conversation_id: str) -> Conversation | None:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT c.id, c.user_id, c.title, c.created_at,
                       cas.skill_id AS active_skill_id,
                       (SELECT COUNT(*) FROM messages m WHERE m.conversation_id = c.id) AS message_count
                FROM conversations c
                LEFT JOIN conversation_active_skills cas ON cas.conversation_id = c.id
                WHERE c.id = ?
                """,
                (conversation_id,),
            ).fetchone()
        if row is None:
            return None
        return Conversation(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            created_at=datetime.fromisoformat(row["created_at"]),
            active_skill_id=row["active_skill_id"],
            message_count=int(row["message_count"]),
        )

    def add_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        parts: list[dict[str, Any]] | None = None,
        tool_call_id: str | None = None,
        tool_calls: list[dict[str, Any]] | None = None,
    ) -> int:
        with self._connect() as conn:
            cur = conn.execute(
                """
                INSERT INTO messages(conversation_id, role, content, parts_json, tool_call_id, tool_calls_json, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    conversation_id,
                    role,
                    content,
                    json.dumps(parts) if parts is not None else None,
                    tool_call_id,
                    json.dumps(tool_calls) if tool_calls is not None else None,
                    _utc_now_iso(),
                ),
            )
            return int(cur.lastrowid)

    def load_messages(self, conversation_id: str) -> list[Message]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT role, content, parts_json, tool_call_id, tool_calls_json, created_at
                FROM messages
                WHERE conversation_id = ?
                ORDER BY id ASC
                """,
                (conversation_id,),
            ).fetchall()
        return [
            Message(
                role=row["role"],
                content=row["content"],
                parts=json.loads(row["parts_json"]) if row["parts_json"] else None,
                tool_call_id=row["tool_call_id"],
                tool_calls=json.loads(row["tool_calls_json"]) if row["tool_calls_json"] else None,
                created_at=datetime.fromisoformat(row["created_at"]),
            )
            for row in rows
        ]

    def count_messages(self, conversation_id: str) -> int:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS n FROM messages WHERE conversation_id = ?", (conversation_id,)
            ).fetchone()
        return int(row["n"])

    def log_tool_execution(
        self,
        conversation_id: str,
        tool_name: str,
        tool_input: dict[str, Any],
        tool_output: Any,
        succeeded: bool,
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO tool_executions(conversation_id, tool_name, input_json, output_json, succeeded, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    conversation_id,
                    tool_name,
                    json.dumps(tool_input),
                    json.dumps(tool_output, default=str),
                    int(succeeded),
                    _utc_now_iso(),
                ),
            )

    def list_tool_executions(self, conversation_id: str) -> list[dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT tool_name, input_json, succeeded FROM tool_executions WHERE conversation_id = ? ORDER BY id",
                (conversation_id,),
            ).fetchall()
        return [dict(row) for row in rows]

    # Search cache

    def get_cache_row(self, query_hash: str, now: datetime) -> dict[str, Any] | None:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT query_hash, normalized_query, result_json, created_at, expires_at,
                       hit_count, last_accessed_at
                FROM search_cache
                WHERE query_hash = ? AND expires_at > ?
                LIMIT 1
                """,
                (query_hash, _iso(now)),
            ).fetchone()
        return dict(row) if row else None

    def touch_cache_row(self, query_hash: str, now: datetime) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE search_cache SET hit_count = hit_count + 1, last_accessed_at = ? WHERE query_hash = ?",
                (_iso(now), query_hash),
            )

    def upsert_cache_row(
        self,
        query_hash: str,
        normalized_query: str,
        result: Any,
        created_at: datetime,
        expires_at: datetime,
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO search_cache(query_hash, normalized_query, result_json, created_at, expires_at,
                                         hit_count, last_accessed_at)
                VALUES (?, ?, ?, ?, ?, 0, ?)
                ON CONFLICT(query_hash) DO UPDATE SET
                    normalized_query=excluded.normalized_query,
                    result_json=excluded.result_json,
                    created_at=excluded.created_at,
                    expires_at=excluded.expires_at,
                    hit_count=0,
                    last_accessed_at=excluded.last_accessed_at
                """,
                (
                    query_hash,
                    normalized_query,
                    json.dumps(result),
                    _iso(created_at),
                    _iso(expires_at),
                    _iso(created_at),
                ),
            )

    # Skills

    def insert_skill(self, skill: dict[str, Any]) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO skills(id, user_id, name, display_name, description, content, category,
                                   learning_enabled, rag_integration, auto_switch_rules_json, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    skill["id"],
                    skill.get("user_id"),
                    skill["name"],
                    skill["display_name"],
                    skill.get("description", ""),
                    skill["content"],
                    skill.get("category", "workflow"),
                    int(bool(skill.get("learning_enabled"))),
                    int(bool(skill.get("rag_integration"))),
                    json.dumps(skill["auto_switch_rules"]) if skill.get("auto_switch_rules") else None,
                    _utc_now_iso(),
                ),
            )

    def get_skill_row(self, skill_id: str) -> dict[str, Any] | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM skills WHERE id = ?", (skill_id,)).fetchone()
        return dict(row) if row else None

    def get_user_skill_rows(self, user_id: str) -> list[dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT s.*, us.is_default, us.order_index
                FROM skills s
                JOIN user_skills us ON s.id = us.skill_id
                WHERE us.user_id = ? AND us.enabled = 1
                ORDER BY us.order_index, s.name
                """,
                (user_id,),
            ).fetchall()
        return [dict(row) for row in rows]

    def get_default_user_skill_row(self, user_id: str) -> dict[str, Any] | None:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT s.* FROM skills s
                JOIN user_skills us ON s.id = us.skill_id
                WHERE us.user_id = ? AND us.is_default = 1 AND us.enabled = 1
                LIMIT 1
                """,
                (user_id,),
            ).fetchone()
        return dict(row) if row else None

    def assign_skill_to_user(self, user_id: str, skill_id: str, is_default: bool, order_index: int) -> None:
        with self._connect() as conn:
            if is_default:
                conn.execute("UPDATE user_skills SET is_default = 0 WHERE user_id = ?", (user_id,))
            conn.execute(
                """
                INSERT INTO user_skills(user_id, skill_id, is_default, enabled, order_index, created_at)
                VALUES (?, ?, ?, 1, ?, ?)
                ON CONFLICT(user_id, skill_id) DO UPDATE SET
                    is_default=excluded.is_default,
                    enabled=1,
                    order_index=excluded.order_index
                """,
                (user_id, skill_id, int(is_default), order_index, _utc_now_iso()),
            )

    def get_active_skill_row(self, conversation_id: str) -> dict[str, Any] | None:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT s.*, cas.trigger_type, cas.previous_skill_id, cas.activated_at
                FROM skills s
                JOIN conversation_active_skills cas ON s.id = cas.skill_id
                WHERE cas.conversation_id = ?
                """,
                (conversation_id,),
            ).fetchone()
        return dict(row) if row else None

    def activate_skill(
        self,
        conversation_id: str,
        skill_id: str,
        user_id: str,
        trigger_type: str,
        trigger_message: str | None,
    ) -> str | None:
        """Point the conversation at ``skill_id`` and open a usage record.

        Returns the id of the skill that was active before, if any.
        """
        now = _utc_now_iso()
        with self._connect() as conn:
            row = conn.execute(
                "SELECT skill_id FROM conversation_active_skills WHERE conversation_id = ?",
                (conversation_id,),
            ).fetchone()
            previous = row["skill_id"] if row else None
            conn.execute(
                """
                INSERT INTO skill_usage(skill_id, user_id, conversation_id, trigger_type, trigger_message,
                                        previous_skill_id, started_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (skill_id, user_id, conversation_id, trigger_type, trigger_message, previous, now),
            )
            conn.execute(
                """
                INSERT INTO conversation_active_skills(conversation_id, skill_id, previous_skill_id,
                                                       trigger_type, activated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(conversation_id) DO UPDATE SET
                    skill_id=excluded.skill_id,
                    previous_skill_id=excluded.previous_skill_id,
                    trigger_type=excluded.trigger_type,
                    activated_at=excluded.activated_at
                """,
                (conversation_id, skill_id, previous, trigger_type, now),
            )
        return previous

    def deactivate_skill(self, conversation_id: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM conversation_active_skills WHERE conversation_id = ?", (conversation_id,))

    def complete_skill_usage(
        self,
        conversation_id: str,
        success: bool,
        tokens_used: int | None,
        tool_calls_count: int,
        error_message: str | None,
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE skill_usage
                SET completed_at = ?, success = ?, tokens_used = ?, tool_calls_count = ?, error_message = ?
                WHERE id = (
                    SELECT id FROM skill_usage
                    WHERE conversation_id = ? AND completed_at IS NULL
                    ORDER BY id DESC
                    LIMIT 1
                )
                """,
                (_utc_now_iso(), int(success), tokens_used, tool_calls_count, error_message, conversation_id),
            )

    def list_skill_usage(self, conversation_id: str) -> list[dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM skill_usage WHERE conversation_id = ? ORDER BY id", (conversation_id,)
            ).fetchall()
        return [dict(row) for row in rows]

    # Memory summaries

    def save_summary(self, user_id: str, conversation_id: str, summary: str, message_count: int) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO conversation_summaries(user_id, conversation_id, summary, message_count, created_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(conversation_id) DO UPDATE SET
                    summary=excluded.summary,
                    message_count=excluded.message_count,
                    created_at=excluded.created_at
                """,
                (user_id, conversation_id, summary, message_count, _utc_now_iso()),
            )

    def get_summary_message_count(self, conversation_id: str) -> int | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT message_count FROM conversation_summaries WHERE conversation_id = ?",
                (conversation_id,),
            ).fetchone()
        return int(row["message_count"]) if row else None

    def get_recent_summaries(self, user_id: str, limit: int, term: str | None = None) -> list[dict[str, Any]]:
        query = "SELECT conversation_id, summary, created_at FROM conversation_summaries WHERE user_id = ?"
        params: list[Any] = [user_id]
        if term:
            query += " AND summary LIKE ?"
            params.append(f"%{term}%")
        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [dict(row) for row in rows]

    # Documents

    def add_document_chunk(self, user_id: str, filename: str, content: str) -> int:
        with self._connect() as conn:
            cur = conn.execute(
                "INSERT INTO document_chunks(user_id, filename, content, created_at) VALUES (?, ?, ?, ?)",
                (user_id, filename, content, _utc_now_iso()),
            )
            return int(cur.lastrowid)

    def list_document_chunks(self, user_id: str) -> list[dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT id, filename, content FROM document_chunks WHERE user_id = ? ORDER BY id",
                (user_id,),
            ).fetchall()
        return [dict(row) for row in rows]

    # Sessions and user settings

    def create_session(self, user_id: str, token: str, expires_at: datetime) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO sessions(token, user_id, expires_at) VALUES (?, ?, ?)",
                (token, user_id, _iso(expires_at)),
            )

    def get_session_user(self, token: str, now: datetime | None = None) -> str | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT user_id FROM sessions WHERE token = ? AND expires_at > ?",
                (token, _iso(now or datetime.now(timezone.utc))),
            ).fetchone()
        return row["user_id"] if row else None

    def save_user_settings(
        self, user_id: str, system_message: str | None = None, tavily_api_key: str | None = None
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO user_settings(user_id, system_message, tavily_api_key, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    system_message=excluded.system_message,
                    tavily_api_key=excluded.tavily_api_key,
                    updated_at=excluded.updated_at
                """,
                (user_id, system_message, tavily_api_key, _utc_now_iso()),
            )

    def get_user_settings(self, user_id: str) -> dict[str, Any]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT system_message, tavily_api_key FROM user_settings WHERE user_id = ?", (user_id,)
            ).fetchone()
        return dict(row) if row else {}


def _iso(value: datetime) -> str:
    # Fixed width so stored timestamps compare correctly as strings.
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _utc_now_iso() -> str:
    return _iso(datetime.now(timezone.utc))
