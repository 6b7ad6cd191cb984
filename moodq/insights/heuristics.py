"""
Heuristic Analyzer - offline, deterministic insights from raw records.

Used whenever the provider path is unavailable, unconfigured, rate limited or
returns text that cannot be repaired. Everything here is a pure function of the
records passed in: no network, no budget, no wall clock (ordering uses the
records' own timestamps only), so identical inputs always give identical output.
"""

from __future__ import annotations

import statistics
from collections import Counter
from collections.abc import Iterable, Sequence

from moodq.insights.models import (
    MOOD_SCORES,
    NEGATIVE_MOODS,
    POSITIVE_MOODS,
    EnhancedInsights,
    JournalRecord,
    JournalSummary,
    MoodPrediction,
    MoodRecord,
    MoodSummary,
    MoodTrend,
    PredictiveInsights,
    Sentiment,
    SentimentAnalysis,
)

RECENT_WINDOW = 7
SENTIMENT_THRESHOLD = 0.1
IMPROVE_THRESHOLD = 3.5
DECLINE_THRESHOLD = 2.5
TREND_DELTA = 0.5
TOP_THEMES = 5

POSITIVE_WORDS = (
    "happy", "good", "great", "excellent", "wonderful", "amazing", "positive",
    "grateful", "joy", "excited", "pleased", "content", "satisfied", "blessed",
    "fortunate", "lucky", "cheerful", "optimistic", "hopeful", "inspired",
)  # fmt: skip
NEGATIVE_WORDS = (
    "sad", "bad", "terrible", "awful", "depressed", "anxious", "worried", "stress",
    "angry", "frustrated", "disappointed", "upset", "hurt", "lonely", "hopeless",
    "desperate", "miserable", "dreadful", "horrible", "devastated",
)  # fmt: skip
STRESS_WORDS = (
    "stress", "anxiety", "overwhelmed", "tired", "exhausted", "pressure", "tense",
    "nervous", "panicked", "worried", "concerned", "fearful", "scared", "frightened",
    "terrified", "paranoid", "obsessed", "compulsive",
)  # fmt: skip
TREND_POSITIVE_WORDS = POSITIVE_WORDS[:8]
CONCERN_WORDS = (
    "stress", "anxiety", "worry", "sad", "depressed", "lonely", "overwhelmed", "tired",
)  # fmt: skip


def _newest_first(records: Iterable[MoodRecord | JournalRecord]) -> list:
    # stable: records sharing a timestamp keep their fetch order
    return sorted(records, key=lambda r: r.occurred_at, reverse=True)


def _average(values: Sequence[float], default: float) -> float:
    return sum(values) / len(values) if values else default


def _contains_any(text: str, words: Iterable[str]) -> bool:
    return any(word in text for word in words)


# --- Summaries ---


def summarize_moods(mood_records: Sequence[MoodRecord]) -> MoodSummary:
    if not mood_records:
        return MoodSummary()

    entries = _newest_first(mood_records)
    scores = [entry.score for entry in entries]
    average = _average(scores, 3.0)

    trend = MoodTrend.STABLE
    recent, older = scores[:RECENT_WINDOW], scores[RECENT_WINDOW : RECENT_WINDOW * 2]
    if len(recent) >= 3 and len(older) >= 3:
        recent_avg, older_avg = _average(recent, 3.0), _average(older, 3.0)
        if recent_avg > older_avg + TREND_DELTA:
            trend = MoodTrend.IMPROVING
        elif recent_avg < older_avg - TREND_DELTA:
            trend = MoodTrend.DECLINING

    most_common = Counter(entry.mood for entry in entries).most_common(1)[0][0]

    streak = 0
    for current, previous in zip(entries, entries[1:]):
        gap_days = (current.occurred_at - previous.occurred_at).total_seconds() // 86400
        if gap_days > 1:
            break
        streak += 1

    return MoodSummary(
        average_mood=average,
        most_common_mood=most_common,
        mood_trend=trend,
        mood_variability=statistics.pstdev(scores),
        streak_days=streak,
    )


def _emotional_patterns(journal_records: Sequence[JournalRecord]) -> list[str]:
    moods = [entry.mood.lower() for entry in journal_records if entry.mood]
    if not moods:
        return []

    counts = Counter(moods)
    total = len(moods)
    positive = sum(counts[m] for m in POSITIVE_MOODS)
    negative = sum(counts[m] for m in NEGATIVE_MOODS)

    patterns: list[str] = []
    if positive / total > 0.6:
        patterns.append("Generally positive emotional state")
    elif negative / total > 0.4:
        patterns.append("Frequent negative emotions noted")
    else:
        patterns.append("Mixed emotional patterns")

    if counts["excellent"] / total > 0.2:
        patterns.append("Experiences moments of high positivity")
    if counts["terrible"] / total > 0.1:
        patterns.append("Occasional very low moods")
    return patterns


def summarize_journals(journal_records: Sequence[JournalRecord]) -> JournalSummary:
    if not journal_records:
        return JournalSummary()

    entries = _newest_first(journal_records)
    total = len(entries)
    texts = [entry.text.lower() for entry in entries]

    tag_counts = Counter(tag for entry in entries for tag in entry.tags)
    themes = [tag for tag, _ in tag_counts.most_common(TOP_THEMES)]

    positive_trends: list[str] = []
    if total >= 2:
        recent = texts[:5]
        hits = sum(1 for text in recent if _contains_any(text, TREND_POSITIVE_WORDS))
        if hits > len(recent) * 0.6:
            positive_trends.append("Increasing positive content in recent entries")

    concerns: list[str] = []
    concern_hits = sum(1 for text in texts if _contains_any(text, CONCERN_WORDS))
    if concern_hits > total * 0.3:
        concerns.append("Frequent mentions of stress or negative emotions")

    return JournalSummary(
        total_entries=total,
        common_themes=themes,
        average_length=round(sum(len(entry.content) for entry in entries) / total),
        emotional_patterns=_emotional_patterns(entries),
        positive_trends=positive_trends,
        areas_of_concern=concerns,
    )


def weekly_trend(mood_summary: MoodSummary) -> Sentiment:
    if mood_summary.average_mood > IMPROVE_THRESHOLD:
        return Sentiment.POSITIVE
    if mood_summary.average_mood < DECLINE_THRESHOLD:
        return Sentiment.NEGATIVE
    return Sentiment.NEUTRAL


# --- Sentiment / predictions ---


def analyze_sentiment(journal_records: Sequence[JournalRecord]) -> SentimentAnalysis:
    """
    Lexicon sentiment over journal titles and content.

    score = (positive matches - negative matches) / max(entries, 1), clamped to
    [-1, 1]; above 0.1 is positive, below -0.1 negative.
    """
    positive_count = negative_count = 0
    keywords: list[str] = []
    stress: list[str] = []

    for entry in _newest_first(journal_records):
        text = entry.text.lower()
        for word in POSITIVE_WORDS:
            if word in text:
                positive_count += 1
                keywords.append(word)
        for word in NEGATIVE_WORDS:
            if word in text:
                negative_count += 1
                keywords.append(word)
        for word in STRESS_WORDS:
            if word in text:
                stress.append(word)

    score = (positive_count - negative_count) / max(len(journal_records), 1)
    score = max(-1.0, min(1.0, score))

    overall = Sentiment.NEUTRAL
    if score > SENTIMENT_THRESHOLD:
        overall = Sentiment.POSITIVE
    elif score < -SENTIMENT_THRESHOLD:
        overall = Sentiment.NEGATIVE

    return SentimentAnalysis(
        overall_sentiment=overall,
        sentiment_score=score,
        emotional_keywords=keywords,
        stress_indicators=stress,
    )


def predict(
    mood_records: Sequence[MoodRecord],
    journal_records: Sequence[JournalRecord] = (),
) -> PredictiveInsights:
    recent = [entry.mood for entry in _newest_first(mood_records)[:RECENT_WINDOW]]
    avg = _average([MOOD_SCORES[m] for m in recent], 3.0)

    prediction = MoodPrediction.STABLE
    if avg > IMPROVE_THRESHOLD:
        prediction = MoodPrediction.LIKELY_IMPROVE
    elif avg < DECLINE_THRESHOLD:
        prediction = MoodPrediction.LIKELY_DECLINE

    risk_factors: list[str] = []
    positive_factors: list[str] = []

    if avg < 3:
        risk_factors.append("Low mood trend detected")
        risk_factors.append("Potential stress indicators present")
    if sum(1 for m in recent if m in NEGATIVE_MOODS) > 2:
        risk_factors.append("Multiple negative mood entries recently")

    if avg > IMPROVE_THRESHOLD:
        positive_factors.append("Positive mood trend observed")
        positive_factors.append("Good emotional consistency")
    if sum(1 for m in recent if m in POSITIVE_MOODS) > 2:
        positive_factors.append("Multiple positive mood entries recently")
    if len(journal_records) > 5:
        positive_factors.append("Active journaling habit supports emotional processing")

    if prediction == MoodPrediction.LIKELY_IMPROVE:
        next_week = "Your recent positive trends suggest continued mood improvement in the coming week."
    elif prediction == MoodPrediction.LIKELY_DECLINE:
        next_week = (
            "Your recent patterns suggest you might experience some mood challenges. "
            "Consider implementing stress management techniques."
        )
    else:
        next_week = "Based on recent patterns, your mood is likely to remain stable."

    return PredictiveInsights(
        mood_prediction=prediction,
        risk_factors=risk_factors,
        positive_factors=positive_factors,
        next_week_prediction=next_week,
    )


# --- Text templates ---


def generate_insights(
    mood_records: Sequence[MoodRecord],
    journal_records: Sequence[JournalRecord],
) -> list[str]:
    insights: list[str] = []

    if journal_records:
        insights.append(
            "You've been actively journaling, which is excellent for self-reflection "
            "and emotional processing."
        )
        if len(journal_records) > 5:
            insights.append(
                "Your consistent journaling habit shows strong commitment to mental health awareness."
            )
        avg_length = _average([len(entry.content) for entry in journal_records], 0.0)
        if avg_length > 100:
            insights.append(
                "Your detailed journal entries provide rich insights into your emotional patterns."
            )
    else:
        insights.append(
            "Consider starting a journaling practice to better understand your thoughts and feelings."
        )

    if mood_records:
        insights.append("Regular mood tracking helps identify patterns, triggers, and emotional trends.")
        if len(mood_records) > 10:
            insights.append(
                "Your extensive mood history provides valuable data for understanding "
                "your emotional patterns."
            )
        recent = [entry.mood for entry in _newest_first(mood_records)[:RECENT_WINDOW]]
        positive = sum(1 for m in recent if m in POSITIVE_MOODS)
        negative = sum(1 for m in recent if m in NEGATIVE_MOODS)
        if positive > negative:
            insights.append(
                "Your recent mood trends show a positive outlook, which is great for overall well-being."
            )
        elif negative > positive:
            insights.append(
                "Your recent mood patterns suggest you might be experiencing some challenges. "
                "Consider reaching out for support."
            )
    else:
        insights.append("Start tracking your daily moods to gain insights into your emotional patterns.")

    if journal_records and mood_records:
        insights.append(
            "Combining mood tracking with journaling provides a comprehensive view "
            "of your mental health journey."
        )
    return insights


def generate_recommendations(mood_summary: MoodSummary, journal_summary: JournalSummary) -> list[str]:
    recommendations: list[str] = []

    if mood_summary.average_mood < 3:
        recommendations.append("Consider reaching out to a mental health professional for support")
        recommendations.append("Try incorporating more physical activity into your daily routine")
    elif mood_summary.average_mood > 4:
        recommendations.append("Great job maintaining positive moods! Keep up the good work")

    if journal_summary.total_entries == 0:
        recommendations.append("Start journaling regularly to track your thoughts and feelings")
    elif journal_summary.total_entries < 5:
        recommendations.append("Try to journal more frequently to build a consistent habit")
    else:
        recommendations.append("Excellent journaling consistency! Consider adding more detailed entries")

    if journal_summary.areas_of_concern:
        recommendations.append(
            "Consider discussing your concerns with a trusted friend or professional"
        )

    recommendations.append("Practice mindfulness or meditation for 10-15 minutes daily")
    recommendations.append("Ensure you're getting adequate sleep (7-9 hours per night)")
    recommendations.append("Stay hydrated and maintain a balanced diet")

    if mood_summary.streak_days > 7:
        recommendations.append("Impressive mood tracking streak! Keep up the consistency")
    elif mood_summary.streak_days < 3:
        recommendations.append("Try to track your mood daily to build a consistent habit")

    return recommendations


def analyze(
    mood_records: Sequence[MoodRecord],
    journal_records: Sequence[JournalRecord],
) -> EnhancedInsights:
    """Full heuristic insights for one owner's records."""
    mood_summary = summarize_moods(mood_records)
    journal_summary = summarize_journals(journal_records)

    return EnhancedInsights(
        mood_summary=mood_summary,
        journal_summary=journal_summary,
        sentiment=analyze_sentiment(journal_records),
        predictions=predict(mood_records, journal_records),
        generated_insights=generate_insights(mood_records, journal_records),
        recommendations=generate_recommendations(mood_summary, journal_summary),
        weekly_trend=weekly_trend(mood_summary),
    )
