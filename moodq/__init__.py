"""moodq - Insights enrichment and caching for mood and journal records"""

from __future__ import annotations

__version__ = "1.0.0"


# Lazy imports for the insights module
def __getattr__(name: str):
    """
    Lazy imports to avoid loading httpx/pydantic when only importing lightweight modules.
    """
    if name in ("EnhancedInsights", "JournalRecord", "MoodRecord"):
        from moodq.insights import models

        return getattr(models, name)

    if name in ("InsightsOutcome", "InsightsService"):
        from moodq.insights import service

        return getattr(service, name)

    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)


__all__ = [
    "EnhancedInsights",
    "InsightsOutcome",
    "InsightsService",
    "JournalRecord",
    "MoodRecord",
]
