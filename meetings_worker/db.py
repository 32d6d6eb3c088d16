"""
db.py — SQLite key/value snapshot store

This module provides:
  - Database path resolution (WORKER_DB_PATH or a file next to the package)
  - Connection helper with safe defaults
  - Idempotent schema creation
  - JSON get/set helpers used for merged meeting snapshots and saved digests
"""

import json
import os
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Union

PathLike = Union[str, Path]

MEETINGS_KEY = "meetings:merged"


def resolve_db_path(db_path: Optional[PathLike] = None) -> Path:
    raw = db_path or os.getenv("WORKER_DB_PATH")
    path = Path(raw).expanduser() if raw else Path(__file__).parent / "worker.db"
    return path.resolve()


def get_connection(db_path: Optional[PathLike] = None) -> sqlite3.Connection:
    path = resolve_db_path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    return sqlite3.connect(str(path))


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def initialize_db(db_path: Optional[PathLike] = None) -> None:
    """
    Create the kv_store table if it doesn't exist.
    Safe to call on every startup.
    """
    with get_connection(db_path) as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS kv_store (
                key        TEXT PRIMARY KEY,
                value      TEXT NOT NULL,   -- JSON document
                updated_at TEXT NOT NULL    -- ISO8601 UTC
            );
            """
        )
        conn.commit()


def kv_set(key: str, value: Any, db_path: Optional[PathLike] = None) -> None:
    payload = json.dumps(value, ensure_ascii=False, default=str)
    with get_connection(db_path) as conn:
        conn.execute(
            """
            INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
            """,
            (key, payload, utc_now_iso()),
        )
        conn.commit()


def kv_get(key: str, default: Any = None, db_path: Optional[PathLike] = None) -> Any:
    with get_connection(db_path) as conn:
        row = conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
    if row is None:
        return default
    try:
        return json.loads(row[0])
    except ValueError:
        return default


def aggregate_key(domain: str, when: Optional[datetime] = None) -> str:
    day = (when or datetime.now(timezone.utc)).date().isoformat()
    return f"aggregate:{domain}:{day}"
