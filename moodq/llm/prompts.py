"""
Prompt construction for the consolidated insights call.

One prompt per enrichment cycle carries both record collections; the provider
is asked to answer with the ProviderInsights JSON object only.
"""

from __future__ import annotations

import re
from collections.abc import Sequence

from moodq.config import PROMPT_CONTENT_PREVIEW_CHARS
from moodq.insights.models import JournalRecord, MoodRecord

PROMPT_VERSION = "insights_v1"

# Connectivity check only; carries no record data
CONNECTIVITY_PROMPT = 'Hello, this is a test message. Please respond with "Test successful."'

_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_WHITESPACE_RE = re.compile(r"\s+")

PROMPT_TEMPLATE = """Analyze this mental health data and provide insights in JSON format:

MOOD DATA ({mood_count} entries):
{mood_lines}

JOURNAL DATA ({journal_count} entries):
{journal_lines}

USER PATTERNS:
- Mood frequency: {mood_count} entries per week
- Journal frequency: {journal_count} entries per week
- Average energy level: {average_energy}

Respond with ONLY a valid JSON object in this exact format (no markdown, no explanations):
{{
  "sentiment": {{
    "overallSentiment": "positive",
    "sentimentScore": 0.5,
    "emotionalKeywords": ["happy", "good"],
    "stressIndicators": []
  }},
  "predictions": {{
    "moodPrediction": "likely_improve",
    "riskFactors": [],
    "positiveFactors": ["positive mood trend"],
    "nextWeekPrediction": "Your mood is likely to improve based on recent patterns."
  }},
  "insights": [
    "You have been consistently tracking your mood",
    "Your journaling habit shows good self-reflection"
  ],
  "recommendations": [
    "Continue your daily mood tracking",
    "Keep journaling regularly for better insights"
  ]
}}"""


def sanitize(text: str | None, max_length: int = 500) -> str:
    """Collapse whitespace, drop control chars, truncate with an ellipsis."""
    if not text:
        return ""
    text = _CONTROL_CHARS_RE.sub("", text)
    text = _WHITESPACE_RE.sub(" ", text).strip()
    if len(text) > max_length:
        return text[:max_length] + "..."
    return text


def _mood_line(record: MoodRecord) -> str:
    energy = record.energy_level if record.energy_level is not None else "N/A"
    line = f"- {record.occurred_at.date().isoformat()}: {record.mood} (energy: {energy})"
    if record.notes:
        line += f" - {sanitize(record.notes, max_length=200)}"
    return line


def _journal_line(record: JournalRecord) -> str:
    title = sanitize(record.title, max_length=120) or "No title"
    preview = sanitize(record.content, max_length=PROMPT_CONTENT_PREVIEW_CHARS)
    return f"- {record.occurred_at.date().isoformat()}: {title} - {preview}"


def build_insights_prompt(
    mood_records: Sequence[MoodRecord],
    journal_records: Sequence[JournalRecord],
) -> str:
    energies = [r.energy_level for r in mood_records if r.energy_level is not None]
    average_energy = f"{sum(energies) / len(energies):.1f}" if energies else "N/A"

    return PROMPT_TEMPLATE.format(
        mood_count=len(mood_records),
        journal_count=len(journal_records),
        mood_lines="\n".join(_mood_line(r) for r in mood_records) or "- none",
        journal_lines="\n".join(_journal_line(r) for r in journal_records) or "- none",
        average_energy=average_energy,
    )
