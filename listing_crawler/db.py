"""Minimal SQLite persistence for named key/value blobs.

Purpose: keep the crawl input and the crawled-names state between runs.
Values are JSON documents (orjson); each key holds exactly one blob.
"""

import sqlite3
from pathlib import Path
from typing import Any, List, Optional

import orjson

SCHEMA = """
CREATE TABLE IF NOT EXISTS kv_store (
    key TEXT PRIMARY KEY,
    value BLOB NOT NULL,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
"""


class KeyValueStore:
    """One SQLite file, one table, one JSON blob per key."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.init_db()

    def get_conn(self):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        return sqlite3.connect(self.path)

    def init_db(self):
        with self.get_conn() as conn:
            conn.executescript(SCHEMA)

    def get_value(self, key: str, default: Optional[Any] = None) -> Any:
        with self.get_conn() as conn:
            cur = conn.execute("SELECT value FROM kv_store WHERE key=?", (key,))
            row = cur.fetchone()
        if not row:
            return default
        return orjson.loads(row[0])

    def set_value(self, key: str, value: Any):
        """Insert or overwrite the blob stored under ``key``."""
        payload = orjson.dumps(value)
        with self.get_conn() as conn:
            conn.execute(
                "INSERT INTO kv_store(key, value, updated_at) VALUES(?, ?, CURRENT_TIMESTAMP) "
                "ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=CURRENT_TIMESTAMP",
                (key, payload),
            )
            conn.commit()

    def delete_value(self, key: str):
        with self.get_conn() as conn:
            conn.execute("DELETE FROM kv_store WHERE key=?", (key,))
            conn.commit()

    def keys(self) -> List[str]:
        with self.get_conn() as conn:
            cur = conn.execute("SELECT key FROM kv_store ORDER BY key")
            return [row[0] for row in cur.fetchall()]
