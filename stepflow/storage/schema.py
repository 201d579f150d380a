"""
SQLite schema for the stepflow state store
"""

import sqlite3
from contextlib import contextmanager
from typing import Iterator


def get_connection(db_path: str) -> sqlite3.Connection:
    """Get database connection"""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row  # For column access by name
    return conn


@contextmanager
def connection(db_path: str) -> Iterator[sqlite3.Connection]:
    """Connection that commits on success, rolls back on error and always closes"""
    conn = get_connection(db_path)
    try:
        with conn:
            yield conn
    finally:
        conn.close()


def init_database(db_path: str) -> None:
    """Initialize database with table creation"""
    with connection(db_path) as conn:
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS state_entries (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                expires_at REAL,
                updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
            )
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_state_entries_expires_at
            ON state_entries (expires_at)
        """)
