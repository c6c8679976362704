"""
SQLite persistence for the local ledger stand-in.
Stores raw byte values keyed by string, mirroring the contract's getData/setData.
"""

import sqlite3
from contextlib import contextmanager
from typing import Generator, List, Optional, Tuple

from .config import LEDGER_DB_PATH, ensure_db_directory


@contextmanager
def get_db(db_path: str = None) -> Generator[sqlite3.Connection, None, None]:
    """Get a SQLite database connection."""
    conn = sqlite3.connect(db_path or LEDGER_DB_PATH)
    try:
        yield conn
    finally:
        conn.close()


def init_db(db_path: str = None):
    """Initialize the database with required tables."""
    ensure_db_directory(db_path)
    with get_db(db_path) as conn:
        cursor = conn.cursor()

        # One row per ledger key; every commit overwrites the value
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS ledger_data (
                key TEXT PRIMARY KEY,
                value BLOB NOT NULL,
                committed_by TEXT,
                committed_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        ''')

        # Append-only commit log for auditing
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS ledger_commits (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                key TEXT NOT NULL,
                size INTEGER NOT NULL,
                committed_by TEXT,
                committed_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        ''')

        conn.commit()


def read_value(key: str, db_path: str = None) -> bytes:
    """Return the stored bytes for ``key``, or empty bytes if never written."""
    with get_db(db_path) as conn:
        cursor = conn.cursor()
        cursor.execute("SELECT value FROM ledger_data WHERE key = ?", (key,))
        row = cursor.fetchone()
        return bytes(row[0]) if row else b""


def write_value(key: str, value: bytes, committed_by: Optional[str] = None, db_path: str = None):
    """Overwrite ``key`` with ``value`` and record the commit."""
    with get_db(db_path) as conn:
        cursor = conn.cursor()
        cursor.execute(
            "INSERT INTO ledger_data (key, value, committed_by) VALUES (?, ?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value, "
            "committed_by = excluded.committed_by, committed_at = CURRENT_TIMESTAMP",
            (key, sqlite3.Binary(value), committed_by)
        )
        cursor.execute(
            "INSERT INTO ledger_commits (key, size, committed_by) VALUES (?, ?, ?)",
            (key, len(value), committed_by)
        )
        conn.commit()


def list_commits(key: str = None, db_path: str = None) -> List[Tuple[str, int, Optional[str]]]:
    """List commits, oldest first, optionally for a single key."""
    with get_db(db_path) as conn:
        cursor = conn.cursor()
        if key is None:
            cursor.execute("SELECT key, size, committed_by FROM ledger_commits ORDER BY id")
        else:
            cursor.execute(
                "SELECT key, size, committed_by FROM ledger_commits WHERE key = ? ORDER BY id",
                (key,)
            )
        return cursor.fetchall()


def health_check(db_path: str = None):
    """Check database health."""
    try:
        with get_db(db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT name FROM sqlite_master WHERE type='table';")
            tables = cursor.fetchall()

            # Check if required tables exist
            table_names = [table[0] for table in tables]
            required_tables = ['ledger_data', 'ledger_commits']

            return all(table in table_names for table in required_tables)
    except sqlite3.Error:
        return False
