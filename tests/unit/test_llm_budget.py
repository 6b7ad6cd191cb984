"""Unit tests for the per-owner provider rate limiter

Tests cover:
- Calls under the limit allowed
- Ceiling enforcement (monotonic within a window)
- Per-owner isolation
- Window reset after 24h
- Full owner table never drops an unexpired window
- Usage report and explicit reset
"""

from __future__ import annotations

import threading

import pytest

from moodq.infrastructure.llm_budget import ProviderRateLimiter
from moodq.insights.errors import InvariantViolation
from moodq.observability.telemetry import get_counter


@pytest.fixture
def limiter(clock):
    return ProviderRateLimiter(limit=3, window_seconds=86400, clock=clock.seconds)


def test_calls_under_limit_allowed(limiter):
    assert limiter.try_consume("alice")
    assert limiter.try_consume("alice")
    assert limiter.usage("alice").count == 2


def test_ceiling_is_monotonic_within_window(limiter, clock):
    results = [limiter.try_consume("alice") for _ in range(5)]
    assert results == [True, True, True, False, False]

    clock.advance(hours=23)
    assert not limiter.try_consume("alice")
    assert limiter.usage("alice").count == 3
    assert get_counter("llm.budget.denied") == 3


def test_owners_are_isolated(limiter):
    for _ in range(3):
        limiter.try_consume("alice")
    assert not limiter.try_consume("alice")
    assert limiter.try_consume("bob")
    assert limiter.usage("bob").count == 1


def test_window_resets_after_expiry(limiter, clock):
    for _ in range(3):
        limiter.try_consume("alice")
    assert not limiter.try_consume("alice")

    clock.advance(hours=24, seconds=1)
    assert limiter.try_consume("alice")
    assert limiter.usage("alice").count == 1


def test_usage_reports_reset_time(limiter, clock):
    start = clock.now
    limiter.try_consume("alice")
    status = limiter.usage("alice")
    assert status.limit == 3
    assert status.is_allowed
    assert status.reason is None
    assert status.reset_at.timestamp() == pytest.approx(start.timestamp() + 86400)


def test_usage_for_unknown_owner(limiter):
    status = limiter.usage("nobody")
    assert status.count == 0
    assert status.reset_at is None
    assert status.is_allowed


def test_usage_when_exhausted(limiter):
    for _ in range(3):
        limiter.try_consume("alice")
    status = limiter.usage("alice")
    assert not status.is_allowed
    assert "3/3" in status.reason


def test_reset_single_owner_and_all(limiter):
    for owner in ("alice", "bob"):
        for _ in range(3):
            limiter.try_consume(owner)

    limiter.reset("alice")
    assert limiter.try_consume("alice")
    assert not limiter.try_consume("bob")

    limiter.reset()
    assert limiter.usage("bob").count == 0


def test_zero_limit_denies_everything(clock):
    limiter = ProviderRateLimiter(limit=0, clock=clock.seconds)
    assert not limiter.try_consume("alice")


def test_negative_limit_is_rejected():
    with pytest.raises(InvariantViolation):
        ProviderRateLimiter(limit=-1)


def test_concurrent_consumers_never_exceed_limit():
    limiter = ProviderRateLimiter(limit=50)
    allowed: list[bool] = []
    lock = threading.Lock()

    def worker():
        for _ in range(20):
            ok = limiter.try_consume("alice")
            with lock:
                allowed.append(ok)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sum(allowed) == 50
    assert limiter.usage("alice").count == 50


def test_exhausted_owner_keeps_window_when_table_fills(clock):
    limiter = ProviderRateLimiter(limit=1, max_owners=2, clock=clock.seconds)
    assert limiter.try_consume("alice")
    assert not limiter.try_consume("alice")

    assert limiter.try_consume("bob")
    assert not limiter.try_consume("carol")
    assert not limiter.try_consume("alice")
    assert limiter.usage("alice").count == 1
    assert get_counter("llm.budget.owner_capacity") == 1


def test_full_table_admits_new_owners_after_windows_expire(clock):
    limiter = ProviderRateLimiter(limit=1, max_owners=2, clock=clock.seconds)
    limiter.try_consume("alice")
    limiter.try_consume("bob")
    assert not limiter.try_consume("carol")

    clock.advance(hours=24, seconds=1)
    assert limiter.try_consume("carol")
    assert limiter.try_consume("alice")
