"""
SQLite persistence for records, collection metadata and index centroids.

Connections are opened per operation in autocommit mode; callers that need a
transaction issue BEGIN/COMMIT themselves so the index update can sit between
the write and the commit.
"""

import sqlite3
from contextlib import contextmanager
from typing import Generator, Optional

import numpy as np

from .config import ensure_db_directory

BUSY_TIMEOUT_SEC = 30.0


@contextmanager
def get_db(db_path: str) -> Generator[sqlite3.Connection, None, None]:
    """Get a SQLite database connection."""
    conn = sqlite3.connect(db_path, timeout=BUSY_TIMEOUT_SEC, isolation_level=None)
    try:
        yield conn
    finally:
        conn.close()


def init_db(db_path: str):
    """Initialize the database with required tables."""
    ensure_db_directory(db_path)
    with get_db(db_path) as conn:
        cursor = conn.cursor()

        # WAL lets readers proceed while a writer holds the lock
        cursor.execute('PRAGMA journal_mode=WAL')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS records (
                id TEXT PRIMARY KEY,
                vector BLOB NOT NULL,
                payload TEXT NOT NULL,
                version INTEGER NOT NULL,
                updated_at TEXT NOT NULL
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS collection_meta (
                key TEXT PRIMARY KEY,
                value TEXT
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS centroids (
                idx INTEGER PRIMARY KEY,
                vector BLOB NOT NULL
            )
        ''')


def encode_vector(vector: np.ndarray) -> bytes:
    return np.asarray(vector, dtype=np.float64).tobytes()


def decode_vector(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype=np.float64).copy()


def get_meta(conn: sqlite3.Connection, key: str) -> Optional[str]:
    row = conn.execute("SELECT value FROM collection_meta WHERE key = ?", (key,)).fetchone()
    return row[0] if row else None


def set_meta(conn: sqlite3.Connection, key: str, value: Optional[str]) -> None:
    conn.execute(
        "INSERT INTO collection_meta (key, value) VALUES (?, ?) "
        "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
        (key, value)
    )


def load_centroids(conn: sqlite3.Connection) -> Optional[np.ndarray]:
    rows = conn.execute("SELECT vector FROM centroids ORDER BY idx").fetchall()
    if not rows:
        return None
    return np.vstack([decode_vector(row[0]) for row in rows])


def save_centroids(conn: sqlite3.Connection, centroids: Optional[np.ndarray]) -> None:
    conn.execute("DELETE FROM centroids")
    if centroids is None:
        return
    conn.executemany(
        "INSERT INTO centroids (idx, vector) VALUES (?, ?)",
        [(i, encode_vector(c)) for i, c in enumerate(centroids)]
    )


def health_check(db_path: str) -> bool:
    """Check database health."""
    try:
        with get_db(db_path) as conn:
            tables = conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
            table_names = [table[0] for table in tables]
            return all(t in table_names for t in ('records', 'collection_meta', 'centroids'))
    except sqlite3.Error:
        return False
