"""
SQLite connection helper for thousand-words.

Uses the standard library sqlite3 module. The connection is shared by a
single index instance and driven from worker threads, so it is opened
with ``check_same_thread=False``; callers serialize access themselves.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

from loguru import logger


def _py_lower(value: str | None) -> str | None:
    # SQLite's lower() only folds ASCII
    return value.lower() if value is not None else None


def connect_sqlite(db_path: str) -> sqlite3.Connection:
    """
    Open a SQLite database for the story index.

    Args:
        db_path: Path to the database file, or ":memory:".

    Returns:
        sqlite3.Connection: Connection in autocommit mode with Row factory
        and a Unicode-aware ``py_lower`` SQL function.
    """
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    try:
        conn = sqlite3.connect(db_path, check_same_thread=False, isolation_level=None)
    except sqlite3.Error as e:
        logger.error(f"Failed to open SQLite database at '{db_path}': {e}")
        raise

    conn.row_factory = sqlite3.Row
    conn.create_function("py_lower", 1, _py_lower, deterministic=True)
    if db_path != ":memory:":
        conn.execute("PRAGMA journal_mode = WAL")
    logger.debug(f"Opened SQLite database at '{db_path}'")
    return conn
