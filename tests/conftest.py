"""
Pytest configuration for moodq tests

Provides record factories, fake clocks and database fixtures shared across
unit and integration tests.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from moodq.infrastructure.database_schema import init_database
from moodq.insights.models import JournalRecord, MoodRecord
from moodq.observability.telemetry import reset_counters, reset_latencies

BASE_TIME = datetime(2025, 6, 15, 12, 0, tzinfo=UTC)


class FakeClock:
    """Manually advanced clock; returns epoch seconds (rate limiter) or datetimes (cache)."""

    def __init__(self, start: datetime = BASE_TIME):
        self.now = start

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)

    def seconds(self) -> float:
        return self.now.timestamp()

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture(autouse=True)
def _reset_telemetry():
    reset_counters()
    reset_latencies()
    yield
    reset_counters()
    reset_latencies()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_mood():
    """Factory: make_mood("good", energy=7, days_ago=1)"""

    def _make(mood: str, energy: int | None = None, days_ago: float = 0, notes: str | None = None):
        return MoodRecord(
            mood=mood,
            energy_level=energy,
            notes=notes,
            occurred_at=BASE_TIME - timedelta(days=days_ago),
        )

    return _make


@pytest.fixture
def make_journal():
    """Factory: make_journal("Title", "content", mood="good", tags=["work"], days_ago=0)"""

    def _make(
        title: str | None,
        content: str = "",
        mood: str | None = None,
        tags: list[str] | None = None,
        days_ago: float = 0,
    ):
        return JournalRecord(
            title=title,
            content=content,
            mood=mood,
            tags=tags or [],
            occurred_at=BASE_TIME - timedelta(days=days_ago),
        )

    return _make


@pytest.fixture
def db_path(tmp_path):
    """Fresh SQLite database with the moodq schema."""
    path = tmp_path / "moodq_test.db"
    init_database(path)
    return path


@pytest.fixture
def base_time():
    return BASE_TIME
