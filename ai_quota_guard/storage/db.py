"""
Database connection management.

Provides SQLite connections for the usage counters.
"""

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = "ai_quota_guard.db"


def get_connection(db_path: str = DEFAULT_DB_PATH, timeout: float = 10.0) -> sqlite3.Connection:
    """Open a SQLite connection.

    Each operation opens its own connection, so connections are never
    shared between threads. ``timeout`` is how long a writer waits for a
    concurrent writer's lock before failing.

    Args:
        db_path: Path to SQLite database file
        timeout: Seconds to wait on a locked database

    Returns:
        SQLite connection
    """
    path = Path(db_path)
    return sqlite3.connect(str(path), timeout=timeout)
