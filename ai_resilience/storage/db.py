"""
Database connection management.

Provides the SQLite connection used by the prompt store and audit log.
"""

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = "ai_resilience.db"


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Open a SQLite connection with foreign keys enabled.

    Each call returns a fresh connection, so callers on different threads
    never share one.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection with foreign key constraints enabled
    """
    path = Path(db_path)
    conn = sqlite3.connect(str(path))
    conn.execute("PRAGMA foreign_keys = ON")
    return conn
