"""
Database connection utilities.
Centralizes DB_PATH, get_db(), get_db_conn() context manager, gen_id() and
the UTC timestamp helpers every table uses.
"""

import logging
import os
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

from mission_engine import config

logger = logging.getLogger(__name__)

DB_PATH = config.DB_PATH


def get_db():
    """Get a database connection with row_factory for dict-like access."""
    conn = sqlite3.connect(DB_PATH, timeout=30)
    conn.row_factory = sqlite3.Row
    # Tests switch to DELETE journal mode to avoid WAL side files
    journal_mode = os.environ.get("MISSION_JOURNAL_MODE", config.DB_JOURNAL_MODE)
    conn.execute(f"PRAGMA journal_mode={journal_mode}")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


@contextmanager
def get_db_conn():
    """Context manager for database connections. Ensures connections are always closed."""
    conn = get_db()
    try:
        yield conn
    finally:
        conn.close()


def gen_id(prefix=""):
    """Generate a prefixed UUID."""
    short = uuid.uuid4().hex[:12]
    return f"{prefix}_{short}" if prefix else short


def utcnow() -> datetime:
    """Naive UTC now, the reference clock for every stored timestamp."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_iso(value: Optional[datetime] = None) -> str:
    """Second-precision ISO string so stored timestamps compare lexically."""
    return (value or utcnow()).replace(microsecond=0).isoformat()


def _safe_update(table: str, record_id: str, data: dict, allowed_fields: set, id_column: str = "id") -> Optional[dict]:
    """Generic safe update that whitelists field names to prevent SQL injection."""
    safe_data = {k: v for k, v in data.items() if k in allowed_fields}
    if not safe_data:
        return None
    fields = ", ".join(f"{k}=?" for k in safe_data.keys())
    values = list(safe_data.values()) + [record_id]
    with get_db_conn() as conn:
        conn.execute(f"UPDATE {table} SET {fields} WHERE {id_column}=?", values)
        conn.commit()
        row = conn.execute(f"SELECT * FROM {table} WHERE {id_column}=?", (record_id,)).fetchone()
        return dict(row) if row else None
