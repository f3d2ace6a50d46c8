"""Local durable key-value store, scoped per user identity."""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

from ..config import Config

__all__ = ["SQLiteStore", "MemoryStore", "StoreUnavailableError"]

logger = logging.getLogger(__name__)


class StoreUnavailableError(Exception):
    """Local storage cannot be read or written (disabled, full, locked)."""

    pass


class SQLiteStore:
    """SQLite-backed store keyed by (owner, name).

    Every write is committed before returning, so it is safe to call from a
    shutdown or signal handler.
    """

    def __init__(self, db_path: Optional[Path] = None):
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file

        Raises:
            StoreUnavailableError: If the database cannot be created
        """
        if db_path is None:
            db_path = Config.get_data_dir() / "local_store.db"

        self.db_path = db_path
        self._local = threading.local()
        self._connections: list[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()
        try:
            self._init_db()
        except (sqlite3.Error, OSError) as e:
            raise StoreUnavailableError(f"Cannot open store at {db_path}: {e}") from e

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection.

        Each connection is only used by the thread that opened it. They are
        tracked so close() can reach those opened on scheduler workers.
        """
        if not hasattr(self._local, "connection"):
            conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            with self._connections_lock:
                self._connections.append(conn)
            self._local.connection = conn
        return self._local.connection

    @contextmanager
    def _cursor(self) -> Iterator[sqlite3.Cursor]:
        """Context manager for database cursor."""
        conn = self._get_connection()
        cursor = conn.cursor()
        try:
            yield cursor
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()

    def _init_db(self) -> None:
        """Initialize the database schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._cursor() as cursor:
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS kv_store (
                    owner TEXT NOT NULL,
                    name TEXT NOT NULL,
                    value BLOB NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (owner, name)
                )
                """
            )

    def get(self, owner: str, name: str) -> Optional[bytes]:
        """Read a value.

        Returns:
            Stored bytes, or None if the key was never written
        """
        try:
            with self._cursor() as cursor:
                cursor.execute(
                    "SELECT value FROM kv_store WHERE owner = ? AND name = ?",
                    (owner, name),
                )
                row = cursor.fetchone()
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Read failed for {owner}/{name}: {e}") from e
        if row is None:
            return None
        return bytes(row[0])

    def set(self, owner: str, name: str, value: bytes) -> None:
        """Write a value, replacing any previous one."""
        now = datetime.now(timezone.utc).isoformat()
        try:
            with self._cursor() as cursor:
                cursor.execute(
                    """
                    INSERT INTO kv_store (owner, name, value, updated_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(owner, name) DO UPDATE SET
                        value = excluded.value,
                        updated_at = excluded.updated_at
                    """,
                    (owner, name, sqlite3.Binary(value), now),
                )
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Write failed for {owner}/{name}: {e}") from e

    def delete(self, owner: str, name: str) -> None:
        """Remove a value if present."""
        try:
            with self._cursor() as cursor:
                cursor.execute(
                    "DELETE FROM kv_store WHERE owner = ? AND name = ?",
                    (owner, name),
                )
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Delete failed for {owner}/{name}: {e}") from e

    def names(self, owner: str) -> list[str]:
        """List the names stored for an owner."""
        try:
            with self._cursor() as cursor:
                cursor.execute(
                    "SELECT name FROM kv_store WHERE owner = ? ORDER BY name",
                    (owner,),
                )
                return [row[0] for row in cursor.fetchall()]
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Listing failed for {owner}: {e}") from e

    def close(self) -> None:
        """Close the database connections opened by every thread."""
        with self._connections_lock:
            connections, self._connections = self._connections, []
            self._local = threading.local()
        for conn in connections:
            conn.close()


class MemoryStore:
    """Process-lifetime store. Used in tests and when disk storage is unavailable."""

    def __init__(self):
        self._data: dict[tuple[str, str], bytes] = {}
        self._lock = threading.Lock()

    def get(self, owner: str, name: str) -> Optional[bytes]:
        with self._lock:
            return self._data.get((owner, name))

    def set(self, owner: str, name: str, value: bytes) -> None:
        with self._lock:
            self._data[(owner, name)] = bytes(value)

    def delete(self, owner: str, name: str) -> None:
        with self._lock:
            self._data.pop((owner, name), None)

    def names(self, owner: str) -> list[str]:
        with self._lock:
            return sorted(name for (o, name) in self._data if o == owner)

    def close(self) -> None:
        pass
