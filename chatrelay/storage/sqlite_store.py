"""
SQLite storage for thread state.
One table of namespaced string values. Message bodies, thread indexes and
per-user progress all live here as JSON or comma-joined strings.
Single portable file.
"""

import sqlite3
import logging
from datetime import datetime, timezone
from pathlib import Path
from contextlib import contextmanager

from chatrelay.errors import StoreError
from .base import KVStore

logger = logging.getLogger(__name__)

CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS kv (
    namespace TEXT NOT NULL DEFAULT '',
    key TEXT NOT NULL,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (namespace, key)
);
"""


class SQLiteStore(KVStore):
    """Namespaced key-value store on top of SQLite."""

    def __init__(self, db_path: str):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self):
        with self._connect() as conn:
            conn.executescript(CREATE_TABLES)
        logger.info("SQLite store initialized at %s", self.db_path)

    @contextmanager
    def _connect(self):
        try:
            conn = sqlite3.connect(str(self.db_path))
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open {self.db_path}: {e}") from e
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StoreError(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def get(self, key: str, namespace: str | None = None) -> str | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT value FROM kv WHERE namespace = ? AND key = ?",
                (namespace or "", key),
            ).fetchone()
        return row[0] if row else None

    def set(self, key: str, value: str, namespace: str | None = None) -> None:
        with self._connect() as conn:
            conn.execute(
                """INSERT OR REPLACE INTO kv (namespace, key, value, updated_at)
                   VALUES (?, ?, ?, ?)""",
                (namespace or "", key, value, datetime.now(timezone.utc).isoformat()),
            )
        logger.debug("Stored %s (namespace=%s)", key, namespace)
