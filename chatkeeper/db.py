"""SQLite persistence for preferences and group metadata."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

SCHEMA_VERSION = 1


class Database:
    """Small SQLite wrapper with explicit schema management."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create or migrate schema."""

        self._path.parent.mkdir(parents=True, exist_ok=True)
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
            CREATE TABLE IF NOT EXISTS groups (
                group_id TEXT PRIMARY KEY,
                name TEXT,
                metadata_json TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS user_settings (
                user_id TEXT PRIMARY KEY,
                chatbot_enabled INTEGER NOT NULL DEFAULT 1,
                ai_provider TEXT,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS group_settings (
                group_id TEXT PRIMARY KEY,
                chatbot_enabled INTEGER NOT NULL DEFAULT 1,
                updated_at TEXT NOT NULL
            );
            """
        )

    def upsert_group(self, group_id: str, name: str | None = None, metadata: dict[str, Any] | None = None) -> None:
        now = _utc_now_iso()
        metadata_json = json.dumps(metadata or {})
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO groups(group_id, name, metadata_json, created_at, updated_at)
                VALUES(?, ?, ?, ?, ?)
                ON CONFLICT(group_id) DO UPDATE SET
                    name=excluded.name,
                    metadata_json=excluded.metadata_json,
                    updated_at=excluded.updated_at
                """,
                (group_id, name, metadata_json, now, now),
            )

    def get_group(self, group_id: str) -> dict[str, Any] | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT group_id, name, metadata_json, updated_at FROM groups WHERE group_id = ?",
                (group_id,),
            ).fetchone()
        if row is None:
            return None
        return {
            "group_id": row["group_id"],
            "name": row["name"],
            "metadata": json.loads(row["metadata_json"] or "{}"),
            "updated_at": row["updated_at"],
        }

    def get_user_settings(self, user_id: str) -> dict[str, Any]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT chatbot_enabled, ai_provider FROM user_settings WHERE user_id = ?",
                (user_id,),
            ).fetchone()
        if row is None:
            return {"chatbot_enabled": True, "ai_provider": None}
        return {"chatbot_enabled": bool(row["chatbot_enabled"]), "ai_provider": row["ai_provider"]}

    def set_user_chatbot(self, user_id: str, enabled: bool) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO user_settings(user_id, chatbot_enabled, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    chatbot_enabled=excluded.chatbot_enabled,
                    updated_at=excluded.updated_at
                """,
                (user_id, int(enabled), _utc_now_iso()),
            )

    def set_user_provider(self, user_id: str, provider: str | None) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO user_settings(user_id, ai_provider, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    ai_provider=excluded.ai_provider,
                    updated_at=excluded.updated_at
                """,
                (user_id, provider, _utc_now_iso()),
            )

    def get_group_settings(self, group_id: str) -> dict[str, Any]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT chatbot_enabled FROM group_settings WHERE group_id = ?",
                (group_id,),
            ).fetchone()
        if row is None:
            return {"chatbot_enabled": True}
        return {"chatbot_enabled": bool(row["chatbot_enabled"])}

    def set_group_chatbot(self, group_id: str, enabled: bool) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO group_settings(group_id, chatbot_enabled, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(group_id) DO UPDATE SET
                    chatbot_enabled=excluded.chatbot_enabled,
                    updated_at=excluded.updated_at
                """,
                (group_id, int(enabled), _utc_now_iso()),
            )


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
