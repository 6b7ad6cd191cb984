"""Tests for record and insights models (wire names, lenient provider parsing)."""

from __future__ import annotations

from datetime import timedelta

import pytest
from pydantic import ValidationError

from moodq.insights import heuristics
from moodq.insights.models import (
    CacheEntry,
    JournalRecord,
    MoodRecord,
    ProviderInsights,
    SentimentAnalysis,
)


def test_mood_record_accepts_wire_names(base_time):
    record = MoodRecord.model_validate(
        {"mood": "good", "energyLevel": 7, "occurredAt": base_time.isoformat()}
    )
    assert record.energy_level == 7
    assert record.score == 4


def test_mood_record_rejects_unknown_mood(base_time):
    with pytest.raises(ValidationError):
        MoodRecord(mood="meh", occurred_at=base_time)


def test_mood_record_rejects_out_of_range_energy(base_time):
    with pytest.raises(ValidationError):
        MoodRecord(mood="good", energy_level=11, occurred_at=base_time)


def test_records_are_frozen(make_mood):
    record = make_mood("good", 5)
    with pytest.raises(ValidationError):
        record.mood = "bad"


def test_journal_tags_are_an_ordered_set(base_time):
    record = JournalRecord(title="t", tags=["work", "sleep", "work", " "], occurred_at=base_time)
    assert record.tags == ("work", "sleep")


def test_sentiment_score_nan_becomes_zero():
    assert SentimentAnalysis(sentiment_score=float("nan")).sentiment_score == 0.0
    assert SentimentAnalysis(sentiment_score="oops").sentiment_score == 0.0
    assert SentimentAnalysis(sentiment_score=-3).sentiment_score == -1.0


def test_provider_insights_non_object_sections_default():
    value = ProviderInsights.model_validate({"sentiment": "positive", "predictions": None, "insights": "one"})
    assert value.sentiment.overall_sentiment == "neutral"
    assert value.predictions.mood_prediction == "stable"
    assert value.insights == ["one"]


def test_enhanced_insights_wire_shape(make_mood):
    wire = heuristics.analyze([make_mood("good", 6)], []).to_wire()
    assert set(wire) == {
        "moodSummary",
        "journalSummary",
        "sentiment",
        "predictions",
        "generatedInsights",
        "recommendations",
        "weeklyTrend",
    }
    assert "overallSentiment" in wire["sentiment"]
    assert "nextWeekPrediction" in wire["predictions"]
    assert "averageMood" in wire["moodSummary"]


def test_cache_entry_expiry_boundary(base_time):
    entry = CacheEntry(
        owner_id="alice",
        fingerprint="v1:0:0:local:" + "0" * 64,
        payload=heuristics.analyze([], []),
        created_at=base_time,
        updated_at=base_time,
        expires_at=base_time + timedelta(hours=24),
    )
    assert not entry.is_expired(base_time + timedelta(hours=23, minutes=59))
    assert entry.is_expired(base_time + timedelta(hours=24))
