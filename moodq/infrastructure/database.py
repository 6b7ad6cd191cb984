"""Centralized database configuration

**DATABASE POLICY**: moodq uses ONE SQLite database: moodq/data/moodq.db
(override with MOODQ_DB_PATH). Records and the insights cache live side by side.

Provides:
- Single source of truth for database path
- Connection management with proper settings (WAL, Row factory)
- Transactions that commit on success and roll back on error
- Retry with exponential backoff on SQLITE_BUSY

Connections are opened per operation. Cache and records calls run on worker
threads (asyncio.to_thread), so a connection is never shared across threads.
"""

from __future__ import annotations

import os
import random
import sqlite3
import time
from collections.abc import Callable, Generator
from contextlib import contextmanager
from functools import wraps
from pathlib import Path
from typing import Any, TypeVar

from moodq.config import (
    DB_CONNECT_TIMEOUT,
    DB_PATH,
    DB_RETRY_BASE_DELAY,
    DB_RETRY_JITTER,
    DB_RETRY_MAX,
    DB_RETRY_MAX_DELAY,
)
from moodq.observability.logging import get_logger

F = TypeVar("F", bound=Callable[..., Any])

logger = get_logger(__name__)


def retry_on_db_lock(
    max_retries: int = DB_RETRY_MAX,
    base_delay: float = DB_RETRY_BASE_DELAY,
    max_delay: float = DB_RETRY_MAX_DELAY,
) -> Callable[[F], F]:
    """
    Decorator to retry database operations on SQLITE_BUSY errors

    Args:
        max_retries: Maximum number of retry attempts (default: 5)
        base_delay: Initial delay in seconds (default: 0.1)
        max_delay: Maximum delay between retries (default: 2.0)

    Side Effects:
        - Retries wrapped function up to max_retries times on database lock errors
        - Sleeps between retries (exponential backoff with jitter)
        - Logs warning messages for each retry attempt
    """

    def decorator(func: F) -> F:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)

                except sqlite3.OperationalError as e:
                    # Only retry on lock errors
                    if "locked" not in str(e).lower() and "busy" not in str(e).lower():
                        raise

                    if attempt >= max_retries:
                        logger.error(
                            "Database lock retry exhausted after %d attempts: %s",
                            max_retries,
                            e,
                        )
                        raise

                    delay = min(base_delay * (2**attempt), max_delay)
                    sleep_time = delay + random.uniform(0, delay * DB_RETRY_JITTER)

                    logger.warning(
                        "Database locked (attempt %d/%d), retrying in %.2fs: %s",
                        attempt + 1,
                        max_retries,
                        sleep_time,
                        e,
                    )
                    time.sleep(sleep_time)

            raise AssertionError("unreachable")

        return wrapper  # type: ignore[return-value]

    return decorator


def get_db_path() -> Path:
    """
    Get database path (environment-aware)

    Checks MOODQ_DB_PATH environment variable first,
    falls back to default location.
    """
    if env_path := os.getenv("MOODQ_DB_PATH"):
        return Path(env_path)

    return DB_PATH


def _create_connection(db_path: Path) -> sqlite3.Connection:
    conn = sqlite3.connect(str(db_path), timeout=DB_CONNECT_TIMEOUT)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA synchronous=NORMAL")
    conn.row_factory = sqlite3.Row
    return conn


@contextmanager
def get_db_connection(db_path: Path | str | None = None) -> Generator[sqlite3.Connection, None, None]:
    """
    Open a database connection (context manager)

    Usage:
        with get_db_connection() as conn:
            rows = conn.execute("SELECT * FROM mood_entries").fetchall()
        # Connection closed on exit

    Raises:
        FileNotFoundError: If database doesn't exist
    """
    path = Path(db_path) if db_path is not None else get_db_path()

    if not path.exists():
        raise FileNotFoundError(f"Database not found: {path}\nRun: moodq-insights init-db")

    conn = _create_connection(path)
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def db_transaction(db_path: Path | str | None = None) -> Generator[sqlite3.Connection, None, None]:
    """
    Context manager for database transactions

    Automatically commits on success, rolls back on error.

    Side Effects:
        - Commits transaction on success (writes changes to disk)
        - Rolls back transaction on exception (discards uncommitted changes)
    """
    with get_db_connection(db_path) as conn:
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
