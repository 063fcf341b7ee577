"""
Durable key/value stores.

Hosts hand one of these to the usage tracker. Values are replaced
wholesale on every write and ``update(key, None)`` removes the key.
"""

import asyncio
import copy
import json
from typing import Any, Dict, Optional, Protocol

from .db import DEFAULT_DB_PATH, get_connection, initialize_schema


class KeyValueStore(Protocol):
    """Minimal durable store the usage tracker persists into."""

    async def get(self, key: str, default: Any = None) -> Any:
        ...

    async def update(self, key: str, value: Any) -> None:
        ...


class InMemoryKeyValueStore:
    """Process-local store with the same semantics as the durable one.

    Values are deep-copied on the way in and out so callers can never
    mutate stored state by holding on to a returned object.
    """

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._values: Dict[str, Any] = copy.deepcopy(initial or {})

    async def get(self, key: str, default: Any = None) -> Any:
        if key not in self._values:
            return default
        return copy.deepcopy(self._values[key])

    async def update(self, key: str, value: Any) -> None:
        if value is None:
            self._values.pop(key, None)
        else:
            self._values[key] = copy.deepcopy(value)


class SQLiteKeyValueStore:
    """Key/value store persisted in a SQLite database.

    Every call opens its own connection and runs in a worker thread so the
    event loop is never blocked on disk I/O.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH, create_schema: bool = True):
        """Initialize the store with a database path.

        Args:
            db_path: Path to SQLite database file
            create_schema: Create the backing table if it is missing
        """
        self.db_path = db_path
        if create_schema:
            initialize_schema(db_path)

    async def get(self, key: str, default: Any = None) -> Any:
        """Return the decoded value for ``key`` or ``default`` if absent."""
        raw = await asyncio.to_thread(self._read, key)
        if raw is None:
            return default
        return json.loads(raw)

    async def update(self, key: str, value: Any) -> None:
        """Replace the value for ``key``; ``None`` deletes it.

        Raises:
            sqlite3.Error: Propagated without modification
            TypeError: If the value is not JSON serializable
        """
        if value is None:
            await asyncio.to_thread(self._delete, key)
        else:
            await asyncio.to_thread(self._write, key, json.dumps(value))

    def _read(self, key: str) -> Optional[str]:
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                "SELECT value FROM key_value_store WHERE key = ?", (key,)
            )
            row = cursor.fetchone()
            return row[0] if row else None
        finally:
            conn.close()

    def _write(self, key: str, raw: str) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                "INSERT OR REPLACE INTO key_value_store (key, value) VALUES (?, ?)",
                (key, raw)
            )
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _delete(self, key: str) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.execute("DELETE FROM key_value_store WHERE key = ?", (key,))
            conn.commit()
        finally:
            conn.close()
