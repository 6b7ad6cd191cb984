"""
Persistent cache of computed insights, one row per owner.

A row is served only while its fingerprint matches the owner's current records
and it has not expired (24h). Backend failures never reach the caller: reads
degrade to a cache miss, writes to a no-op. The first failure trips a
process-lifetime circuit breaker, after which the backend is skipped entirely
until reset_availability() is called.

Backends are synchronous (sqlite3); the store runs them on worker threads so
the event loop is never blocked.
"""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any, TypeVar

from pydantic import ValidationError

from moodq.config import CACHE_EXPIRY_HOURS, CACHE_SWEEP_INTERVAL_SECONDS
from moodq.contracts import CacheBackend
from moodq.infrastructure.circuitbreaker import StoreCircuitBreaker
from moodq.infrastructure.database import db_transaction, get_db_connection, retry_on_db_lock
from moodq.insights.errors import CacheError, InvariantViolation
from moodq.insights.fingerprint import is_valid_fingerprint
from moodq.insights.models import CacheEntry, EnhancedInsights, InsightsSource, utc_now
from moodq.observability.logging import get_logger
from moodq.observability.structured import EventType, log_stage_event
from moodq.observability.telemetry import counter

logger = get_logger(__name__)

T = TypeVar("T")

TROUBLESHOOTING_STEPS = (
    "1. Check that the insights_cache table exists (run: moodq-insights init-db)",
    "2. Verify the database file is readable and writable by this process",
    "3. Ensure MOODQ_DB_PATH points at the intended database",
    "4. Check that the disk is not full and the directory still exists",
    "5. Call reset_availability() (or restart) once the cause is fixed",
)


def _to_db_time(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def _from_db_time(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


# --- Backends ---


class SQLiteCacheBackend:
    """insights_cache table in the central moodq database."""

    def __init__(self, db_path: Path | str | None = None):
        self.db_path = db_path

    @retry_on_db_lock()
    def _fetch_row(self, owner_id: str) -> sqlite3.Row | None:
        with get_db_connection(self.db_path) as conn:
            return conn.execute(
                """
                SELECT owner_id, data_hash, insights_data, source,
                       created_at, updated_at, expires_at
                FROM insights_cache WHERE owner_id = ?
                """,
                (owner_id,),
            ).fetchone()

    def fetch(self, owner_id: str) -> CacheEntry | None:
        try:
            row = self._fetch_row(owner_id)
        except (sqlite3.Error, OSError) as e:
            raise CacheError(f"insights_cache read failed: {e}") from e

        if row is None:
            return None

        try:
            return CacheEntry(
                owner_id=row["owner_id"],
                fingerprint=row["data_hash"],
                payload=EnhancedInsights.model_validate(json.loads(row["insights_data"])),
                source=row["source"],
                created_at=_from_db_time(row["created_at"]),
                updated_at=_from_db_time(row["updated_at"]),
                expires_at=_from_db_time(row["expires_at"]),
            )
        except (ValueError, ValidationError) as e:
            # Unreadable row: treat as a miss, the next put overwrites it
            counter("cache.insights.corrupt_row")
            logger.warning("Discarding unreadable cache row for owner=%s: %s", owner_id, e)
            return None

    @retry_on_db_lock()
    def _upsert(self, entry: CacheEntry) -> None:
        with db_transaction(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO insights_cache
                    (owner_id, data_hash, insights_data, source, created_at, updated_at, expires_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(owner_id) DO UPDATE SET
                    data_hash = excluded.data_hash,
                    insights_data = excluded.insights_data,
                    source = excluded.source,
                    created_at = excluded.created_at,
                    updated_at = excluded.updated_at,
                    expires_at = excluded.expires_at
                """,
                (
                    entry.owner_id,
                    entry.fingerprint,
                    json.dumps(entry.payload.to_wire()),
                    entry.source,
                    _to_db_time(entry.created_at),
                    _to_db_time(entry.updated_at),
                    _to_db_time(entry.expires_at),
                ),
            )

    def upsert(self, entry: CacheEntry) -> None:
        try:
            self._upsert(entry)
        except (sqlite3.Error, OSError) as e:
            raise CacheError(f"insights_cache write failed: {e}") from e

    @retry_on_db_lock()
    def _delete(self, owner_id: str) -> int:
        with db_transaction(self.db_path) as conn:
            return conn.execute("DELETE FROM insights_cache WHERE owner_id = ?", (owner_id,)).rowcount

    def delete(self, owner_id: str) -> bool:
        try:
            return self._delete(owner_id) > 0
        except (sqlite3.Error, OSError) as e:
            raise CacheError(f"insights_cache delete failed: {e}") from e

    @retry_on_db_lock()
    def _delete_expired(self, cutoff: str) -> int:
        with db_transaction(self.db_path) as conn:
            return conn.execute("DELETE FROM insights_cache WHERE expires_at <= ?", (cutoff,)).rowcount

    def delete_expired(self, now: datetime) -> int:
        try:
            return self._delete_expired(_to_db_time(now))
        except (sqlite3.Error, OSError) as e:
            raise CacheError(f"insights_cache sweep failed: {e}") from e

    def ping(self) -> None:
        try:
            with get_db_connection(self.db_path) as conn:
                conn.execute("SELECT 1 FROM insights_cache LIMIT 1").fetchall()
        except (sqlite3.Error, OSError) as e:
            raise CacheError(f"insights_cache unavailable: {e}") from e


class InMemoryCacheBackend:
    """Dict-backed backend for tests and single-process use."""

    def __init__(self) -> None:
        self._rows: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def fetch(self, owner_id: str) -> CacheEntry | None:
        with self._lock:
            return self._rows.get(owner_id)

    def upsert(self, entry: CacheEntry) -> None:
        with self._lock:
            self._rows[entry.owner_id] = entry

    def delete(self, owner_id: str) -> bool:
        with self._lock:
            return self._rows.pop(owner_id, None) is not None

    def delete_expired(self, now: datetime) -> int:
        with self._lock:
            expired = [owner for owner, entry in self._rows.items() if entry.is_expired(now)]
            for owner in expired:
                del self._rows[owner]
            return len(expired)

    def ping(self) -> None:
        return None

    def __len__(self) -> int:
        return len(self._rows)


# --- Store ---


class InsightsCacheStore:
    """
    Async cache API over a synchronous backend.

    Args:
        backend: Row store (SQLiteCacheBackend, InMemoryCacheBackend, ...)
        expiry: Lifetime of a written entry (24h by default)
        sweep_interval_seconds: Minimum gap between opportunistic sweeps
        clock: UTC "now" source (injectable for tests)
    """

    def __init__(
        self,
        backend: CacheBackend,
        expiry: timedelta = timedelta(hours=CACHE_EXPIRY_HOURS),
        sweep_interval_seconds: float = CACHE_SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], datetime] = utc_now,
        breaker: StoreCircuitBreaker | None = None,
    ):
        self.backend = backend
        self.expiry = expiry
        self.sweep_interval = timedelta(seconds=sweep_interval_seconds)
        self._clock = clock
        self._breaker = breaker or StoreCircuitBreaker(stage="cache.insights")
        self._last_sweep_at: datetime | None = None

    async def _run(
        self,
        operation: str,
        func: Callable[..., T],
        *args: Any,
        default: T,
        owner_id: str | None = None,
    ) -> T:
        if not self._breaker.allow_request():
            return default
        try:
            result = await asyncio.to_thread(func, *args)
        except InvariantViolation:
            raise
        except Exception as e:
            self._breaker.record_failure(e)
            log_stage_event(
                EventType.CACHE_ERROR,
                owner_id=owner_id,
                operation=operation,
                error_type=type(e).__name__,
                error=str(e),
            )
            return default
        self._breaker.record_success()
        return result

    async def get(self, owner_id: str) -> CacheEntry | None:
        """Return the owner's entry if present and not expired."""
        entry = await self._run("get", self.backend.fetch, owner_id, default=None, owner_id=owner_id)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            counter("cache.insights.expired")
            return None
        return entry

    async def is_valid(self, owner_id: str, fingerprint: str) -> bool:
        entry = await self.get(owner_id)
        return entry is not None and entry.fingerprint == fingerprint

    async def put(
        self,
        owner_id: str,
        fingerprint: str,
        payload: EnhancedInsights,
        source: InsightsSource | str = InsightsSource.HEURISTIC,
    ) -> CacheEntry | None:
        """
        Upsert the owner's entry with a fresh 24h expiry.

        Returns the written entry, or None when the backend is unavailable.

        Raises:
            InvariantViolation: empty owner id or malformed fingerprint

        Side Effects:
            - Writes one row to the backend (best effort)
        """
        if not owner_id:
            raise InvariantViolation("Cache write without an owner id")
        if not is_valid_fingerprint(fingerprint):
            raise InvariantViolation(f"Malformed fingerprint: {fingerprint!r}")

        now = self._clock()
        entry = CacheEntry(
            owner_id=owner_id,
            fingerprint=fingerprint,
            payload=payload,
            source=source,
            created_at=now,
            updated_at=now,
            expires_at=now + self.expiry,
        )
        written = await self._run("put", self._upsert, entry, default=False, owner_id=owner_id)
        return entry if written else None

    def _upsert(self, entry: CacheEntry) -> bool:
        self.backend.upsert(entry)
        return True

    async def invalidate(self, owner_id: str) -> bool:
        """Drop the owner's entry (records changed outside the enrichment flow)."""
        removed = await self._run(
            "invalidate", self.backend.delete, owner_id, default=False, owner_id=owner_id
        )
        if removed:
            counter("cache.insights.invalidate")
        return removed

    async def sweep_expired(self) -> int:
        """
        Best-effort batch delete of expired rows.

        Side Effects:
            - Deletes expired rows from the backend
            - Emits a cache.sweep event with the count
        """
        now = self._clock()
        self._last_sweep_at = now
        removed = await self._run("sweep", self.backend.delete_expired, now, default=0)
        log_stage_event(EventType.CACHE_SWEEP, removed=removed)
        return removed

    async def maybe_sweep_expired(self) -> int | None:
        """Sweep at most once per sweep interval; returns None when skipped."""
        now = self._clock()
        if self._last_sweep_at is not None and now - self._last_sweep_at < self.sweep_interval:
            return None
        return await self.sweep_expired()

    async def check_availability(self) -> bool:
        """Ping the backend (trips the breaker on failure)."""
        return await self._run("ping", self._ping, default=False)

    def _ping(self) -> bool:
        self.backend.ping()
        return True

    def reset_availability(self) -> None:
        self._breaker.reset()
        logger.info("Insights cache availability reset")

    @property
    def is_available(self) -> bool:
        return not self._breaker.is_open

    def status(self) -> dict[str, Any]:
        """Troubleshooting report for the cache backend."""
        available = self.is_available
        return {
            "available": available,
            "backend": type(self.backend).__name__,
            "last_error": None if available else self._breaker.last_error,
            "last_sweep_at": self._last_sweep_at.isoformat() if self._last_sweep_at else None,
            "troubleshooting_steps": [] if available else list(TROUBLESHOOTING_STEPS),
        }
