"""
Domain models for mood/journal records and the insights computed from them.

Python attributes are snake_case; every model serializes to the camelCase wire
names (``energyLevel``, ``sentimentScore`` ...) used by the provider prompt and
the cached blob. Provider-facing models are lenient: unknown enum values fall
back to their defaults and scores are clamped, so a partially valid provider
response still yields a well-formed value.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    """Return current UTC time as a timezone-aware datetime."""
    return datetime.now(UTC)


class MoodLevel(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    NEUTRAL = "neutral"
    BAD = "bad"
    TERRIBLE = "terrible"


MOOD_SCORES: dict[str, int] = {
    MoodLevel.EXCELLENT.value: 5,
    MoodLevel.GOOD.value: 4,
    MoodLevel.NEUTRAL.value: 3,
    MoodLevel.BAD.value: 2,
    MoodLevel.TERRIBLE.value: 1,
}

POSITIVE_MOODS = frozenset({MoodLevel.EXCELLENT.value, MoodLevel.GOOD.value})
NEGATIVE_MOODS = frozenset({MoodLevel.BAD.value, MoodLevel.TERRIBLE.value})


class RecordKind(str, Enum):
    MOOD = "mood"
    JOURNAL = "journal"


class Sentiment(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


class MoodPrediction(str, Enum):
    LIKELY_IMPROVE = "likely_improve"
    LIKELY_DECLINE = "likely_decline"
    STABLE = "stable"


class MoodTrend(str, Enum):
    IMPROVING = "improving"
    DECLINING = "declining"
    STABLE = "stable"


class InsightsSource(str, Enum):
    """Which path produced an insights value."""

    PROVIDER = "provider"
    HEURISTIC = "heuristic"
    CACHE = "cache"


DEFAULT_NEXT_WEEK_PREDICTION = "No prediction available"


def coerce_str_list(value: Any) -> list[str]:
    """Normalize provider list fields: None -> [], scalar -> [scalar], dedupe in order."""
    if value is None:
        return []
    if isinstance(value, (str, int, float)):
        value = [value]
    if not isinstance(value, (list, tuple, set, frozenset)):
        return []

    seen: set[str] = set()
    items: list[str] = []
    for item in value:
        if item is None or isinstance(item, (dict, list)):
            continue
        text = str(item).strip()
        if text and text not in seen:
            seen.add(text)
            items.append(text)
    return items


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
    )


# --- Records (read-only inputs) ---


class MoodRecord(_WireModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
        frozen=True,
    )

    mood: MoodLevel
    energy_level: int | None = Field(default=None, ge=1, le=10)
    notes: str | None = None
    occurred_at: datetime

    @property
    def score(self) -> int:
        return MOOD_SCORES[self.mood]


class JournalRecord(_WireModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
        frozen=True,
    )

    title: str | None = None
    content: str = ""
    mood: str | None = None
    tags: tuple[str, ...] = ()
    occurred_at: datetime

    @field_validator("tags", mode="before")
    @classmethod
    def tags_as_ordered_set(cls, v: Any) -> tuple[str, ...]:
        return tuple(coerce_str_list(v))

    @property
    def text(self) -> str:
        return f"{self.title or ''} {self.content or ''}"


# --- Insights (outputs) ---


class SentimentAnalysis(_WireModel):
    overall_sentiment: Sentiment = Sentiment.NEUTRAL
    sentiment_score: float = 0.0
    emotional_keywords: list[str] = Field(default_factory=list)
    stress_indicators: list[str] = Field(default_factory=list)

    @field_validator("overall_sentiment", mode="before")
    @classmethod
    def known_sentiment(cls, v: Any) -> str:
        if isinstance(v, str) and v.strip().lower() in {s.value for s in Sentiment}:
            return v.strip().lower()
        return Sentiment.NEUTRAL.value

    @field_validator("sentiment_score", mode="before")
    @classmethod
    def clamp_score(cls, v: Any) -> float:
        try:
            score = float(v)
        except (TypeError, ValueError):
            return 0.0
        if score != score:  # NaN
            return 0.0
        return max(-1.0, min(1.0, score))

    @field_validator("emotional_keywords", "stress_indicators", mode="before")
    @classmethod
    def str_lists(cls, v: Any) -> list[str]:
        return coerce_str_list(v)


class PredictiveInsights(_WireModel):
    mood_prediction: MoodPrediction = MoodPrediction.STABLE
    risk_factors: list[str] = Field(default_factory=list)
    positive_factors: list[str] = Field(default_factory=list)
    next_week_prediction: str = DEFAULT_NEXT_WEEK_PREDICTION

    @field_validator("mood_prediction", mode="before")
    @classmethod
    def known_prediction(cls, v: Any) -> str:
        if isinstance(v, str) and v.strip().lower() in {p.value for p in MoodPrediction}:
            return v.strip().lower()
        return MoodPrediction.STABLE.value

    @field_validator("risk_factors", "positive_factors", mode="before")
    @classmethod
    def str_lists(cls, v: Any) -> list[str]:
        return coerce_str_list(v)

    @field_validator("next_week_prediction", mode="before")
    @classmethod
    def non_empty_prediction(cls, v: Any) -> str:
        if isinstance(v, str) and v.strip():
            return v.strip()
        return DEFAULT_NEXT_WEEK_PREDICTION


class MoodSummary(_WireModel):
    average_mood: float = 3.0
    most_common_mood: str = MoodLevel.NEUTRAL.value
    mood_trend: MoodTrend = MoodTrend.STABLE
    mood_variability: float = 0.0
    streak_days: int = 0


class JournalSummary(_WireModel):
    total_entries: int = 0
    common_themes: list[str] = Field(default_factory=list)
    average_length: int = 0
    emotional_patterns: list[str] = Field(default_factory=list)
    positive_trends: list[str] = Field(default_factory=list)
    areas_of_concern: list[str] = Field(default_factory=list)


class ProviderInsights(_WireModel):
    """The JSON object a provider is asked to return, default-filled."""

    sentiment: SentimentAnalysis = Field(default_factory=SentimentAnalysis)
    predictions: PredictiveInsights = Field(default_factory=PredictiveInsights)
    insights: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)

    @field_validator("sentiment", "predictions", mode="before")
    @classmethod
    def objects_or_default(cls, v: Any) -> Any:
        if isinstance(v, BaseModel):
            return v
        return v if isinstance(v, dict) else {}

    @field_validator("insights", "recommendations", mode="before")
    @classmethod
    def str_lists(cls, v: Any) -> list[str]:
        return coerce_str_list(v)


class EnhancedInsights(_WireModel):
    mood_summary: MoodSummary
    journal_summary: JournalSummary
    sentiment: SentimentAnalysis
    predictions: PredictiveInsights
    generated_insights: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    weekly_trend: Sentiment = Sentiment.NEUTRAL

    def to_wire(self) -> dict[str, Any]:
        """camelCase JSON-compatible dict (the shape the presentation layer consumes)."""
        return self.model_dump(mode="json", by_alias=True)


class CacheEntry(_WireModel):
    owner_id: str
    fingerprint: str
    payload: EnhancedInsights
    source: InsightsSource = InsightsSource.HEURISTIC
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    expires_at: datetime

    def is_expired(self, now: datetime | None = None) -> bool:
        now = now or utc_now()
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)
        return now >= expires_at
