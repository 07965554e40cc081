"""Key/value storage backends for the offline cache, queue and group registry.

Values are JSON documents grouped by namespace. The interface is async so a
backend may suspend; callers must not assume that storage calls are atomic
with respect to other tasks.
"""

import json
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol


class Storage(Protocol):
    """Durable key/value storage used by the offline components."""

    async def get(self, namespace: str, key: str) -> Any | None: ...

    async def put(self, namespace: str, key: str, value: Any) -> None: ...

    async def delete(self, namespace: str, key: str) -> None: ...

    async def list(self, namespace: str) -> list[tuple[str, Any]]: ...


class Database:
    """SQLite storage backend; survives process restarts.

    The sqlite3 calls run synchronously on the event loop thread. They are
    short single-row statements on a local file, so the coroutines never
    actually yield.
    """

    def __init__(self, db_path: Path):
        """Initialize database connection."""
        self.db_path = db_path
        self.conn = sqlite3.connect(str(db_path))
        self.conn.row_factory = sqlite3.Row
        self._init_schema()

    def _init_schema(self):
        """Initialize database schema."""
        cursor = self.conn.cursor()

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS kv_store (
                namespace TEXT NOT NULL,
                key TEXT NOT NULL,
                value TEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (namespace, key)
            )
        """
        )

        self.conn.commit()

    def close(self):
        """Close database connection."""
        self.conn.close()

    async def get(self, namespace: str, key: str) -> Any | None:
        """Get a value, or None if the key is absent."""
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT value FROM kv_store WHERE namespace = ? AND key = ?",
            (namespace, key),
        )
        row = cursor.fetchone()
        return json.loads(row["value"]) if row else None

    async def put(self, namespace: str, key: str, value: Any) -> None:
        """Insert or overwrite a value."""
        cursor = self.conn.cursor()
        cursor.execute(
            """
            INSERT INTO kv_store (namespace, key, value, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(namespace, key) DO UPDATE SET
                value = excluded.value,
                updated_at = excluded.updated_at
            """,
            (namespace, key, json.dumps(value), datetime.now().isoformat()),
        )
        self.conn.commit()

    async def delete(self, namespace: str, key: str) -> None:
        """Delete a value; deleting an absent key is a no-op."""
        cursor = self.conn.cursor()
        cursor.execute(
            "DELETE FROM kv_store WHERE namespace = ? AND key = ?",
            (namespace, key),
        )
        self.conn.commit()

    async def list(self, namespace: str) -> list[tuple[str, Any]]:
        """List (key, value) pairs of a namespace in insertion order."""
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT key, value FROM kv_store WHERE namespace = ? ORDER BY rowid",
            (namespace,),
        )
        return [(row["key"], json.loads(row["value"])) for row in cursor.fetchall()]


class MemoryDatabase:
    """In-memory storage backend with the same semantics as Database."""

    def __init__(self):
        """Initialize an empty store."""
        self._data: dict[str, dict[str, str]] = {}

    def close(self):
        """Drop all stored values."""
        self._data.clear()

    async def get(self, namespace: str, key: str) -> Any | None:
        """Get a copy of a value, or None if the key is absent."""
        raw = self._data.get(namespace, {}).get(key)
        return json.loads(raw) if raw is not None else None

    async def put(self, namespace: str, key: str, value: Any) -> None:
        """Insert or overwrite a value."""
        # Stored serialized so callers never share mutable state with the store
        self._data.setdefault(namespace, {})[key] = json.dumps(value)

    async def delete(self, namespace: str, key: str) -> None:
        """Delete a value; deleting an absent key is a no-op."""
        self._data.get(namespace, {}).pop(key, None)

    async def list(self, namespace: str) -> list[tuple[str, Any]]:
        """List (key, value) pairs of a namespace in insertion order."""
        return [
            (key, json.loads(raw)) for key, raw in self._data.get(namespace, {}).items()
        ]
