"""
Insights orchestrator.

One call to generate() runs one enrichment cycle for an owner:

    CheckCache ──hit──────────────────────────────────────────> return cached
        │ miss / stale / expired
        v
    Regenerate ─ no records ─────────────> Heuristic ─┐
        │        no provider/credential ─> Heuristic ─┤
        │        rate limit denied ──────> Heuristic ─┤
        v                                             │
    ProviderCall ─ failure (any) ────────> Heuristic ─┤
        │ success                                     │
        v                                             v
    Assemble ──────────────────────────────────> PersistAndReturn

The flow always yields a valid EnhancedInsights. Provider, repair and cache
failures are logged as stage events and absorbed; only InvariantViolation
(a programming defect) and cancellation propagate. At most one provider call
and one budget unit are spent per cycle.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from moodq.config import ENV, JOURNAL_RECORD_LIMIT, MOOD_RECORD_LIMIT
from moodq.contracts import InsightsProvider, RecordsSource
from moodq.infrastructure.llm_budget import BudgetStatus, ProviderRateLimiter
from moodq.infrastructure.settings import ProviderSettings
from moodq.insights import heuristics
from moodq.insights.errors import (
    ConfigurationError,
    InvariantViolation,
    ProviderError,
    QuotaError,
    RepairExhaustedError,
)
from moodq.insights.fingerprint import compute_fingerprint
from moodq.insights.models import (
    EnhancedInsights,
    InsightsSource,
    JournalRecord,
    MoodRecord,
    ProviderInsights,
    RecordKind,
)
from moodq.llm.prompts import CONNECTIVITY_PROMPT, PROMPT_VERSION, build_insights_prompt
from moodq.llm.repair import RepairPipeline, object_pipeline
from moodq.observability.logging import get_logger
from moodq.observability.structured import EventType, log_stage_event
from moodq.observability.telemetry import time_block
from moodq.storage.insights_cache import InsightsCacheStore

logger = get_logger(__name__)

LOCAL_PROVIDER_ID = "local"


@dataclass(frozen=True)
class InsightsOutcome:
    """Result of one enrichment cycle.

    source is the path that answered this call (cache, provider, heuristic);
    origin is the path that originally computed the payload, so a cache hit
    on a provider result still reports ai_enhanced.
    """

    insights: EnhancedInsights
    source: InsightsSource
    fingerprint: str
    origin: InsightsSource

    @property
    def ai_enhanced(self) -> bool:
        return self.origin == InsightsSource.PROVIDER


class InsightsService:
    """
    Enrichment cycle over injected collaborators.

    Args:
        records: Source of the owner's recent records
        cache: Insights cache store
        rate_limiter: Per-owner provider budget
        provider: Inference provider, or None for heuristics only
        pipeline_factory: Builds the repair pipeline for provider text
    """

    def __init__(
        self,
        records: RecordsSource,
        cache: InsightsCacheStore,
        rate_limiter: ProviderRateLimiter,
        provider: InsightsProvider | None = None,
        mood_limit: int = MOOD_RECORD_LIMIT,
        journal_limit: int = JOURNAL_RECORD_LIMIT,
        pipeline_factory: Callable[[], RepairPipeline] = object_pipeline,
    ):
        if mood_limit < 0 or journal_limit < 0:
            raise InvariantViolation("Record limits must be non-negative")

        self.records = records
        self.cache = cache
        self.rate_limiter = rate_limiter
        self.provider = provider
        self.mood_limit = mood_limit
        self.journal_limit = journal_limit
        self._pipeline_factory = pipeline_factory

    @classmethod
    def from_settings(
        cls,
        db_path: Path | str | None = None,
        settings: ProviderSettings | None = None,
    ) -> InsightsService:
        """Wire the SQLite-backed service from environment configuration."""
        from moodq.llm.providers import build_provider
        from moodq.storage.insights_cache import SQLiteCacheBackend
        from moodq.storage.records import SQLiteRecordsSource

        return cls(
            records=SQLiteRecordsSource(db_path),
            cache=InsightsCacheStore(SQLiteCacheBackend(db_path)),
            rate_limiter=ProviderRateLimiter(),
            provider=build_provider(settings),
        )

    @property
    def provider_id(self) -> str:
        if self.provider is None or not self.provider.is_configured:
            return LOCAL_PROVIDER_ID
        return self.provider.provider_id

    async def generate(self, owner_id: str) -> EnhancedInsights:
        return (await self.generate_outcome(owner_id)).insights

    async def generate_outcome(self, owner_id: str) -> InsightsOutcome:
        """
        Run one enrichment cycle for the owner.

        Side Effects:
            - Reads the owner's recent records (mood and journal concurrently)
            - May sweep expired cache rows (at most once per sweep interval)
            - On a miss: at most one provider call and one budget unit
            - On a miss: upserts the owner's cache row (best effort)
            - Emits structured stage events
        """
        if not owner_id:
            raise InvariantViolation("Insights requested without an owner id")

        await self.cache.maybe_sweep_expired()

        mood_records, journal_records = await self._load_records(owner_id)
        fingerprint = compute_fingerprint(mood_records, journal_records, self.provider_id)

        entry = await self.cache.get(owner_id)
        if entry is not None and entry.fingerprint == fingerprint:
            log_stage_event(EventType.CACHE_HIT, owner_id=owner_id, fingerprint=fingerprint)
            return InsightsOutcome(
                insights=entry.payload,
                source=InsightsSource.CACHE,
                fingerprint=fingerprint,
                origin=InsightsSource(entry.source),
            )

        log_stage_event(
            EventType.CACHE_MISS,
            owner_id=owner_id,
            fingerprint=fingerprint,
            reason="absent" if entry is None else "stale",
        )

        with time_block("insights.regenerate.latency"):
            insights, origin = await self._regenerate(
                owner_id, fingerprint, mood_records, journal_records
            )

        written = await self.cache.put(owner_id, fingerprint, insights, origin)
        if written is not None:
            log_stage_event(
                EventType.CACHE_WRITE,
                owner_id=owner_id,
                fingerprint=fingerprint,
                source=origin.value,
            )

        return InsightsOutcome(
            insights=insights, source=origin, fingerprint=fingerprint, origin=origin
        )

    async def invalidate(self, owner_id: str) -> bool:
        """Forget the owner's cached insights (records changed elsewhere)."""
        return await self.cache.invalidate(owner_id)

    def usage(self, owner_id: str) -> BudgetStatus:
        return self.rate_limiter.usage(owner_id)

    def status(self) -> dict[str, Any]:
        return {
            "environment": ENV,
            "provider": self.provider_id,
            "provider_configured": self.provider is not None and self.provider.is_configured,
            "cache": self.cache.status(),
        }

    async def check_provider(self) -> dict[str, Any]:
        """
        Send one small request to the configured provider (diagnostics only).

        Runs outside the enrichment cycle: no owner budget is consumed, nothing
        is cached and the reply is not repaired.

        Returns:
            Report with ok, provider, latency_ms and error (None when ok)
        """
        report: dict[str, Any] = {
            "ok": False,
            "provider": self.provider_id,
            "latency_ms": None,
            "error": None,
        }
        provider = self.provider
        if provider is None or not provider.is_configured:
            report["error"] = "not_configured"
            return report

        try:
            raw = await provider.enrich(CONNECTIVITY_PROMPT)
        except (ConfigurationError, ProviderError) as e:
            logger.warning("Provider check failed: provider=%s error=%s", provider.provider_id, e)
            report["error"] = f"{type(e).__name__}: {e}"
            return report

        report["ok"] = True
        report["latency_ms"] = round(raw.latency_ms, 1)
        return report

    async def _load_records(
        self, owner_id: str
    ) -> tuple[Sequence[MoodRecord], Sequence[JournalRecord]]:
        mood_records, journal_records = await asyncio.gather(
            self.records.list_recent(owner_id, RecordKind.MOOD, self.mood_limit),
            self.records.list_recent(owner_id, RecordKind.JOURNAL, self.journal_limit),
        )
        return list(mood_records), list(journal_records)

    async def _regenerate(
        self,
        owner_id: str,
        fingerprint: str,
        mood_records: Sequence[MoodRecord],
        journal_records: Sequence[JournalRecord],
    ) -> tuple[EnhancedInsights, InsightsSource]:
        def fallback(reason: str) -> tuple[EnhancedInsights, InsightsSource]:
            log_stage_event(
                EventType.PROVIDER_FALLBACK,
                owner_id=owner_id,
                fingerprint=fingerprint,
                reason=reason,
            )
            return heuristics.analyze(mood_records, journal_records), InsightsSource.HEURISTIC

        if not mood_records and not journal_records:
            return fallback("no_records")

        provider = self.provider
        if provider is None or not provider.is_configured:
            return fallback("not_configured")

        if not self.rate_limiter.try_consume(owner_id):
            log_stage_event(EventType.RATELIMIT_DENIED, owner_id=owner_id, fingerprint=fingerprint)
            return fallback("rate_limited")

        log_stage_event(
            EventType.PROVIDER_CALL,
            owner_id=owner_id,
            fingerprint=fingerprint,
            provider=provider.provider_id,
            moods=len(mood_records),
            journals=len(journal_records),
            prompt_version=PROMPT_VERSION,
        )

        prompt = build_insights_prompt(mood_records, journal_records)
        try:
            raw = await provider.enrich(prompt)
            result = self._pipeline_factory().run(raw.text)
        except QuotaError as e:
            log_stage_event(
                EventType.PROVIDER_QUOTA,
                owner_id=owner_id,
                fingerprint=fingerprint,
                status_code=e.status_code,
            )
            return fallback("quota")
        except RepairExhaustedError as e:
            log_stage_event(
                EventType.REPAIR_EXHAUSTED, owner_id=owner_id, fingerprint=fingerprint, error=str(e)
            )
            return fallback("repair_exhausted")
        except ConfigurationError:
            return fallback("not_configured")
        except ProviderError as e:
            log_stage_event(
                EventType.PROVIDER_ERROR,
                owner_id=owner_id,
                fingerprint=fingerprint,
                error_type=type(e).__name__,
                status_code=e.status_code,
            )
            return fallback("provider_error")

        if result.degraded:
            log_stage_event(
                EventType.REPAIR_DEGRADED,
                owner_id=owner_id,
                fingerprint=fingerprint,
                strategy=result.strategy,
            )

        log_stage_event(
            EventType.PROVIDER_OK,
            owner_id=owner_id,
            fingerprint=fingerprint,
            provider=raw.provider,
            latency_ms=round(raw.latency_ms, 1),
        )
        return assemble(mood_records, journal_records, result.value), InsightsSource.PROVIDER


def assemble(
    mood_records: Sequence[MoodRecord],
    journal_records: Sequence[JournalRecord],
    provider_insights: ProviderInsights,
) -> EnhancedInsights:
    """Provider analysis plus locally computed summaries and weekly trend."""
    mood_summary = heuristics.summarize_moods(mood_records)
    return EnhancedInsights(
        mood_summary=mood_summary,
        journal_summary=heuristics.summarize_journals(journal_records),
        sentiment=provider_insights.sentiment,
        predictions=provider_insights.predictions,
        generated_insights=provider_insights.insights,
        recommendations=provider_insights.recommendations,
        weekly_trend=heuristics.weekly_trend(mood_summary),
    )
