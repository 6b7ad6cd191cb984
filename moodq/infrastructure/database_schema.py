"""
Database schema initialization for moodq.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

from moodq.observability.logging import get_logger

logger = get_logger(__name__)

EXPECTED_TABLES = ("insights_cache", "mood_entries", "journal_entries")


def init_database(db_path: Path | str) -> None:
    """
    Initialize database with schema (idempotent)

    Safe to run multiple times - uses CREATE TABLE IF NOT EXISTS.

    Side Effects:
    - Creates tables in the database if they don't exist
    - Creates indexes for the newest-first record reads
    - Creates the parent directory if needed
    """
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)
    try:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS insights_cache (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                owner_id TEXT NOT NULL UNIQUE,
                data_hash TEXT NOT NULL,
                insights_data TEXT NOT NULL,
                source TEXT NOT NULL DEFAULT 'heuristic',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                expires_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS mood_entries (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                owner_id TEXT NOT NULL,
                mood TEXT NOT NULL
                    CHECK (mood IN ('excellent', 'good', 'neutral', 'bad', 'terrible')),
                energy_level INTEGER CHECK (energy_level BETWEEN 1 AND 10),
                notes TEXT,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS journal_entries (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                owner_id TEXT NOT NULL,
                title TEXT,
                content TEXT NOT NULL DEFAULT '',
                mood TEXT,
                tags TEXT NOT NULL DEFAULT '[]',
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_insights_cache_expires
                ON insights_cache(expires_at);
            CREATE INDEX IF NOT EXISTS idx_mood_entries_owner_created
                ON mood_entries(owner_id, created_at DESC);
            CREATE INDEX IF NOT EXISTS idx_journal_entries_owner_created
                ON journal_entries(owner_id, created_at DESC);
        """)
        conn.commit()
    finally:
        conn.close()

    logger.info("Database initialized: %s", db_path)


def validate_schema(conn: sqlite3.Connection) -> bool:
    """
    Validate database has expected schema

    Raises:
        ValueError: If tables are missing
    """
    rows = conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
    present = {row[0] for row in rows}
    missing = [table for table in EXPECTED_TABLES if table not in present]
    if missing:
        raise ValueError(f"Missing tables: {', '.join(missing)}")
    return True
