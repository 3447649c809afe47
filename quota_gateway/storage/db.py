"""
Database connection management.

Provides SQLite connection for the durable usage store.
"""

import sqlite3
from pathlib import Path


def get_connection(db_path: str = ".quota-gateway.db") -> sqlite3.Connection:
    """Create and return a SQLite database connection.

    The connection may be shared across request threads; writes are
    serialized by SQLite itself.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection
    """
    path = Path(db_path)
    if path.parent and not path.parent.exists():
        raise sqlite3.OperationalError(f"Directory does not exist: {path.parent}")
    conn = sqlite3.connect(str(path), timeout=5.0, check_same_thread=False)
    try:
        conn.execute("PRAGMA journal_mode = WAL")
    except sqlite3.Error:
        conn.close()
        raise
    return conn
