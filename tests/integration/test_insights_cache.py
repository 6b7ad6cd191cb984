"""
Integration tests for the insights cache store

Runs the store against the SQLite backend (real database file) and the
in-memory backend, with a fake clock driving expiry and sweeps.
"""

from __future__ import annotations

import sqlite3
from datetime import timedelta

import pytest

from moodq.infrastructure.database import db_transaction
from moodq.insights import heuristics
from moodq.insights.errors import CacheError, InvariantViolation
from moodq.insights.models import InsightsSource
from moodq.observability.telemetry import get_counter
from moodq.storage.insights_cache import (
    TROUBLESHOOTING_STEPS,
    InMemoryCacheBackend,
    InsightsCacheStore,
    SQLiteCacheBackend,
)

FP_A = "v1:1:0:local:" + "a" * 64
FP_B = "v1:1:0:local:" + "b" * 64


@pytest.fixture
def payload(make_mood):
    return heuristics.analyze([make_mood("good", 7)], [])


@pytest.fixture(params=["sqlite", "memory"])
def store(request, db_path, clock):
    if request.param == "sqlite":
        backend = SQLiteCacheBackend(db_path)
    else:
        backend = InMemoryCacheBackend()
    return InsightsCacheStore(backend, clock=clock)


class FailingBackend:
    """Backend whose every call raises, counting how often it was reached."""

    def __init__(self):
        self.calls = 0

    def _fail(self, *args):
        self.calls += 1
        raise CacheError("no such table: insights_cache")

    fetch = upsert = delete = delete_expired = ping = _fail


@pytest.mark.asyncio
async def test_put_then_get_round_trips(store, payload, clock):
    written = await store.put("alice", FP_A, payload, InsightsSource.PROVIDER)
    assert written is not None
    assert written.expires_at == clock.now + timedelta(hours=24)

    entry = await store.get("alice")
    assert entry is not None
    assert entry.fingerprint == FP_A
    assert entry.payload == payload
    assert entry.source == "provider"
    assert entry.created_at == clock.now


@pytest.mark.asyncio
async def test_get_absent_owner(store):
    assert await store.get("nobody") is None


@pytest.mark.asyncio
async def test_entry_expires_after_24_hours(store, payload, clock):
    await store.put("alice", FP_A, payload)

    clock.advance(hours=23, minutes=59)
    assert await store.get("alice") is not None

    clock.advance(minutes=1)
    assert await store.get("alice") is None
    assert get_counter("cache.insights.expired") == 1


@pytest.mark.asyncio
async def test_is_valid_compares_fingerprint(store, payload):
    await store.put("alice", FP_A, payload)
    assert await store.is_valid("alice", FP_A)
    assert not await store.is_valid("alice", FP_B)
    assert not await store.is_valid("bob", FP_A)


@pytest.mark.asyncio
async def test_upsert_replaces_row_and_resets_times(store, payload, make_mood, clock):
    await store.put("alice", FP_A, payload)
    clock.advance(hours=2)
    other = heuristics.analyze([make_mood("bad", 3)], [])

    await store.put("alice", FP_B, other, InsightsSource.HEURISTIC)

    entry = await store.get("alice")
    assert entry.fingerprint == FP_B
    assert entry.payload == other
    assert entry.created_at == clock.now
    assert entry.expires_at == clock.now + timedelta(hours=24)


@pytest.mark.asyncio
async def test_invalidate(store, payload):
    await store.put("alice", FP_A, payload)
    assert await store.invalidate("alice")
    assert await store.get("alice") is None
    assert not await store.invalidate("alice")


@pytest.mark.asyncio
async def test_sweep_removes_only_expired_rows(store, payload, clock):
    await store.put("alice", FP_A, payload)
    clock.advance(hours=12)
    await store.put("bob", FP_B, payload)
    clock.advance(hours=13)

    assert await store.sweep_expired() == 1
    assert await store.get("alice") is None
    assert await store.get("bob") is not None
    assert get_counter("cache.sweep") == 1


@pytest.mark.asyncio
async def test_maybe_sweep_respects_interval(store, clock):
    assert await store.maybe_sweep_expired() == 0
    clock.advance(minutes=4)
    assert await store.maybe_sweep_expired() is None
    clock.advance(minutes=1)
    assert await store.maybe_sweep_expired() == 0


@pytest.mark.asyncio
async def test_put_rejects_malformed_input(store, payload):
    with pytest.raises(InvariantViolation):
        await store.put("alice", "not-a-fingerprint", payload)
    with pytest.raises(InvariantViolation):
        await store.put("", FP_A, payload)


@pytest.mark.asyncio
async def test_failing_backend_degrades_and_trips_breaker(payload, clock):
    backend = FailingBackend()
    store = InsightsCacheStore(backend, clock=clock)

    assert await store.get("alice") is None
    assert not store.is_available
    assert get_counter("cache.error") == 1

    # Breaker open: the backend is not reached again
    assert await store.put("alice", FP_A, payload) is None
    assert not await store.invalidate("alice")
    assert await store.sweep_expired() == 0
    assert backend.calls == 1

    status = store.status()
    assert status["available"] is False
    assert status["backend"] == "FailingBackend"
    assert "no such table" in status["last_error"]
    assert status["troubleshooting_steps"] == list(TROUBLESHOOTING_STEPS)

    store.reset_availability()
    assert store.is_available
    assert store.status()["troubleshooting_steps"] == []
    assert await store.get("alice") is None
    assert backend.calls == 2


@pytest.mark.asyncio
async def test_missing_database_is_a_miss(tmp_path, payload, clock):
    store = InsightsCacheStore(SQLiteCacheBackend(tmp_path / "missing.db"), clock=clock)

    assert await store.get("alice") is None
    assert await store.put("alice", FP_A, payload) is None
    assert not store.is_available


@pytest.mark.asyncio
async def test_missing_table_fails_availability_check(tmp_path, clock):
    path = tmp_path / "empty.db"
    sqlite3.connect(path).close()
    store = InsightsCacheStore(SQLiteCacheBackend(path), clock=clock)

    assert not await store.check_availability()
    assert "insights_cache" in store.status()["last_error"]


@pytest.mark.asyncio
async def test_check_availability_on_healthy_database(db_path, clock):
    store = InsightsCacheStore(SQLiteCacheBackend(db_path), clock=clock)
    assert await store.check_availability()
    assert store.status()["available"] is True


@pytest.mark.asyncio
async def test_corrupt_row_is_a_miss(db_path, payload, clock):
    store = InsightsCacheStore(SQLiteCacheBackend(db_path), clock=clock)
    await store.put("alice", FP_A, payload)
    with db_transaction(db_path) as conn:
        conn.execute("UPDATE insights_cache SET insights_data = '{broken' WHERE owner_id = 'alice'")

    assert await store.get("alice") is None
    assert store.is_available
    assert get_counter("cache.insights.corrupt_row") == 1

    # Next write overwrites the unreadable row
    await store.put("alice", FP_A, payload)
    assert (await store.get("alice")).payload == payload
