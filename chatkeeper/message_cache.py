"""SQLite-backed cache of observed messages."""

from __future__ import annotations

import base64
import json
import logging
import sqlite3
import time
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterator

from chatkeeper.content import detect_kind, extract_text, is_view_once
from chatkeeper.models import CachedMessage, CacheStats, InboundMessage, MessageKind

LOGGER = logging.getLogger(__name__)

RETENTION_WINDOW = timedelta(hours=24)


class MessageCache:
    """Durable store of every observed message, keyed by (id, chat id).

    Each write commits before returning so a message revoked seconds after it
    was sent can still be looked up, including across restarts. Revocation
    never deletes rows; only ``delete_message`` and the age-based sweep do.
    """

    def __init__(self, path: Path, retention: timedelta = RETENTION_WINDOW) -> None:
        self._path = path
        self._retention = retention
        self._initialized = False
        self._total_messages = 0
        self._deleted_recovered = 0
        self._last_cleanup: str | None = None

    @property
    def initialized(self) -> bool:
        return self._initialized

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
        """Create the schema and load persisted counters."""

        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS messages (
                    id TEXT NOT NULL,
                    chat_id TEXT NOT NULL,
                    sender_id TEXT NOT NULL,
                    sender_name TEXT,
                    timestamp INTEGER NOT NULL,
                    message_type TEXT NOT NULL,
                    text_content TEXT,
                    is_view_once INTEGER NOT NULL DEFAULT 0,
                    message_data TEXT,
                    PRIMARY KEY (id, chat_id)
                );

                CREATE INDEX IF NOT EXISTS idx_messages_chat_id ON messages(chat_id);
                CREATE INDEX IF NOT EXISTS idx_messages_timestamp ON messages(timestamp);

                CREATE TABLE IF NOT EXISTS cache_stats (
                    key TEXT PRIMARY KEY,
                    value TEXT
                );
                """
            )
            rows = conn.execute("SELECT key, value FROM cache_stats").fetchall()
        stored = {row["key"]: row["value"] for row in rows}
        self._total_messages = int(stored.get("total_messages") or 0)
        self._deleted_recovered = int(stored.get("deleted_recovered") or 0)
        self._last_cleanup = stored.get("last_cleanup") or _utc_now_iso()
        self._initialized = True
        LOGGER.info("Message cache ready at %s", self._path)

    def add_message(self, message: InboundMessage) -> CachedMessage | None:
        """Upsert a message; later writes for the same key replace earlier ones."""

        if not self._initialized or not message.content:
            return None

        timestamp = message.timestamp * 1000 if message.timestamp else _now_ms()
        cached = CachedMessage(
            id=message.id,
            chat_id=message.chat_id,
            sender_id=message.resolved_sender,
            sender_name=message.push_name or "Unknown",
            timestamp=int(timestamp),
            kind=detect_kind(message.content),
            text=extract_text(message.content),
            is_view_once=is_view_once(message.content),
        )
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO messages
                        (id, chat_id, sender_id, sender_name, timestamp, message_type,
                         text_content, is_view_once, message_data)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        cached.id,
                        cached.chat_id,
                        cached.sender_id,
                        cached.sender_name,
                        cached.timestamp,
                        cached.kind.value,
                        cached.text,
                        int(cached.is_view_once),
                        json.dumps(message.to_dict(), default=_encode_opaque),
                    ),
                )
        except (TypeError, ValueError, sqlite3.Error):
            LOGGER.warning("Failed to cache message %s in %s", message.id, message.chat_id, exc_info=True)
            return None
        self._total_messages += 1
        return cached

    def get_message(self, message_id: str, chat_id: str | None = None) -> CachedMessage | None:
        if not self._initialized:
            return None
        query = "SELECT * FROM messages WHERE id = ?"
        params: list[str] = [message_id]
        if chat_id:
            query += " AND chat_id = ?"
            params.append(chat_id)
        with self._connect() as conn:
            row = conn.execute(query, params).fetchone()
        if row is None:
            return None

        payload = None
        try:
            payload = json.loads(row["message_data"]) if row["message_data"] else None
        except json.JSONDecodeError:
            LOGGER.warning("Stored payload for message %s is not valid JSON", message_id)

        return CachedMessage(
            id=row["id"],
            chat_id=row["chat_id"],
            sender_id=row["sender_id"],
            sender_name=row["sender_name"] or "Unknown",
            timestamp=int(row["timestamp"]),
            kind=MessageKind(row["message_type"]),
            text=row["text_content"] or "",
            is_view_once=bool(row["is_view_once"]),
            payload=payload,
        )

    def recover_message(self, message_id: str, chat_id: str | None = None) -> CachedMessage | None:
        """Look up a message the sender revoked, counting successful recoveries."""

        cached = self.get_message(message_id, chat_id)
        if cached is not None:
            self._deleted_recovered += 1
        return cached

    def delete_message(self, message_id: str) -> bool:
        if not self._initialized:
            return False
        with self._connect() as conn:
            conn.execute("DELETE FROM messages WHERE id = ?", (message_id,))
        return True

    def cleanup_old_messages(self, now: datetime | None = None) -> int:
        """Delete rows strictly older than the retention window; return the count."""

        if not self._initialized:
            return 0
        now = now or datetime.now(timezone.utc)
        boundary_ms = int((now - self._retention).timestamp() * 1000)
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM messages WHERE timestamp < ?", (boundary_ms,))
            removed = cur.rowcount
        self._last_cleanup = _utc_now_iso()
        if removed > 0:
            LOGGER.info("Swept %d cached messages older than %s", removed, self._retention)
        return removed

    def get_stats(self) -> CacheStats:
        stats = CacheStats(
            total_messages=self._total_messages,
            deleted_recovered=self._deleted_recovered,
            last_cleanup=self._last_cleanup,
        )
        if not self._initialized:
            return stats
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    SELECT
                        COUNT(*) AS cache_size,
                        COUNT(DISTINCT chat_id) AS unique_chats,
                        SUM(is_view_once) AS view_once_messages
                    FROM messages
                    """
                ).fetchone()
        except sqlite3.Error:
            LOGGER.warning("Message cache stats query failed", exc_info=True)
            return stats
        stats.cache_size = row["cache_size"] or 0
        stats.unique_chats = row["unique_chats"] or 0
        stats.view_once_messages = row["view_once_messages"] or 0
        return stats

    def flush_stats(self) -> None:
        """Persist the aggregate counters."""

        if not self._initialized:
            return
        values = {
            "total_messages": str(self._total_messages),
            "deleted_recovered": str(self._deleted_recovered),
            "last_cleanup": self._last_cleanup or "",
        }
        try:
            with self._connect() as conn:
                conn.executemany(
                    """
                    INSERT INTO cache_stats(key, value) VALUES (?, ?)
                    ON CONFLICT(key) DO UPDATE SET value = excluded.value
                    """,
                    list(values.items()),
                )
        except sqlite3.Error:
            LOGGER.warning("Failed to persist message cache counters", exc_info=True)


def _encode_opaque(value: Any) -> Any:
    """JSON fallback for transport payload values such as thumbnails and media keys."""

    if isinstance(value, (bytes, bytearray, memoryview)):
        return {"__bytes__": base64.b64encode(bytes(value)).decode("ascii")}
    return repr(value)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
