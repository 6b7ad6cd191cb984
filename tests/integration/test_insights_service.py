"""
Integration tests for the insights orchestrator

Exercises full enrichment cycles with in-memory records and cache, a fake
provider that counts calls, and a real provider client wired to
httpx.MockTransport where network behaviour matters.
"""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from moodq.infrastructure.llm_budget import ProviderRateLimiter
from moodq.infrastructure.settings import ProviderSettings
from moodq.insights import heuristics
from moodq.insights.errors import (
    CacheError,
    InvariantViolation,
    MalformedResponseError,
    QuotaError,
    TransientProviderError,
)
from moodq.insights.models import InsightsSource
from moodq.insights.service import InsightsService
from moodq.llm.providers import GeminiProvider, RawProviderResult
from moodq.observability.telemetry import get_counter
from moodq.storage.insights_cache import InMemoryCacheBackend, InsightsCacheStore
from moodq.storage.records import InMemoryRecordsSource

PROVIDER_PAYLOAD = {
    "sentiment": {
        "overallSentiment": "positive",
        "sentimentScore": 0.7,
        "emotionalKeywords": ["grateful"],
        "stressIndicators": [],
    },
    "predictions": {
        "moodPrediction": "likely_improve",
        "riskFactors": [],
        "positiveFactors": ["regular exercise"],
        "nextWeekPrediction": "Your mood is likely to keep improving.",
    },
    "insights": ["Your mornings tend to be brighter than evenings"],
    "recommendations": ["Keep your morning walk routine"],
}


class FakeProvider:
    """Stands in for a provider client; returns canned text or raises."""

    provider_id = "gemini"

    def __init__(self, text: str | None = None, error: Exception | None = None, configured: bool = True):
        self.text = text if text is not None else json.dumps(PROVIDER_PAYLOAD)
        self.error = error
        self.configured = configured
        self.calls = 0
        self.prompts: list[str] = []

    @property
    def is_configured(self) -> bool:
        return self.configured

    async def enrich(self, prompt: str) -> RawProviderResult:
        self.calls += 1
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return RawProviderResult(
            text=self.text, provider=self.provider_id, model="fake", status_code=200, latency_ms=1.0
        )


class BrokenBackend:
    def _fail(self, *args):
        raise CacheError("database is locked")

    fetch = upsert = delete = delete_expired = ping = _fail


@pytest.fixture
def records(make_mood, make_journal):
    source = InMemoryRecordsSource()
    source.add(
        "alice",
        [
            make_mood("good", 7, days_ago=0),
            make_mood("neutral", 5, days_ago=1),
            make_mood("excellent", 8, days_ago=2),
            make_journal("Walk", "A happy morning walk with friends", tags=["exercise"], days_ago=0),
        ],
    )
    return source


@pytest.fixture
def backend():
    return InMemoryCacheBackend()


@pytest.fixture
def make_service(records, backend, clock):
    def _make(provider=None, limit=10, cache_backend=None):
        return InsightsService(
            records=records,
            cache=InsightsCacheStore(cache_backend or backend, clock=clock),
            rate_limiter=ProviderRateLimiter(limit=limit, clock=clock.seconds),
            provider=provider,
        )

    return _make


# --- Provider path and caching ---


@pytest.mark.asyncio
async def test_provider_result_is_assembled_with_local_summaries(make_service):
    provider = FakeProvider()
    service = make_service(provider)

    outcome = await service.generate_outcome("alice")

    assert outcome.source == InsightsSource.PROVIDER
    assert outcome.ai_enhanced
    insights = outcome.insights
    assert insights.generated_insights == PROVIDER_PAYLOAD["insights"]
    assert insights.recommendations == PROVIDER_PAYLOAD["recommendations"]
    assert insights.sentiment.overall_sentiment == "positive"
    assert insights.predictions.mood_prediction == "likely_improve"
    assert insights.mood_summary.average_mood == 4.0
    assert insights.journal_summary.total_entries == 1
    assert provider.calls == 1
    assert "MOOD DATA (3 entries)" in provider.prompts[0]


@pytest.mark.asyncio
async def test_second_call_is_served_from_cache(make_service):
    provider = FakeProvider()
    service = make_service(provider)

    first = await service.generate_outcome("alice")
    second = await service.generate_outcome("alice")

    assert second.source == InsightsSource.CACHE
    assert second.origin == InsightsSource.PROVIDER
    assert second.ai_enhanced
    assert second.insights == first.insights
    assert second.insights.to_wire() == first.insights.to_wire()
    assert provider.calls == 1
    assert service.usage("alice").count == 1
    assert get_counter("cache.hit") == 1


@pytest.mark.asyncio
async def test_changed_records_regenerate(make_service, records, make_mood):
    provider = FakeProvider()
    service = make_service(provider)

    first = await service.generate_outcome("alice")
    records.add("alice", [make_mood("bad", 3, days_ago=3)])
    second = await service.generate_outcome("alice")

    assert second.source == InsightsSource.PROVIDER
    assert second.fingerprint != first.fingerprint
    assert provider.calls == 2


@pytest.mark.asyncio
async def test_expired_entry_regenerates(make_service, clock):
    provider = FakeProvider()
    service = make_service(provider)

    await service.generate("alice")
    clock.advance(hours=24)
    outcome = await service.generate_outcome("alice")

    assert outcome.source == InsightsSource.PROVIDER
    assert provider.calls == 2


@pytest.mark.asyncio
async def test_degraded_repair_still_counts_as_provider(make_service):
    provider = FakeProvider(text=f"```json\n{json.dumps([PROVIDER_PAYLOAD])}\n```")
    service = make_service(provider)

    outcome = await service.generate_outcome("alice")

    assert outcome.source == InsightsSource.PROVIDER
    assert outcome.insights.generated_insights == PROVIDER_PAYLOAD["insights"]
    assert get_counter("repair.degraded") == 1


# --- Heuristic fallbacks ---


@pytest.mark.asyncio
async def test_no_credential_never_touches_the_network(make_service):
    requests: list[httpx.Request] = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={})

    settings = ProviderSettings(provider="gemini", model="gemini-test", api_key=None)
    provider = GeminiProvider(settings, transport=httpx.MockTransport(handler))
    service = make_service(provider)

    outcome = await service.generate_outcome("alice")

    assert outcome.source == InsightsSource.HEURISTIC
    assert not outcome.ai_enhanced
    assert requests == []
    assert service.usage("alice").count == 0
    assert ":local:" in outcome.fingerprint
    assert service.provider_id == "local"


@pytest.mark.asyncio
async def test_heuristic_output_matches_analyzer(make_service, records):
    service = make_service(provider=None)

    insights = await service.generate("alice")

    moods = await records.list_recent("alice", "mood", 50)
    journals = await records.list_recent("alice", "journal", 30)
    assert insights == heuristics.analyze(moods, journals)


@pytest.mark.asyncio
async def test_rate_limit_denied_falls_back(make_service):
    provider = FakeProvider()
    service = make_service(provider, limit=0)

    outcome = await service.generate_outcome("alice")

    assert outcome.source == InsightsSource.HEURISTIC
    assert provider.calls == 0
    assert get_counter("ratelimit.denied") == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "provider",
    [
        FakeProvider(error=QuotaError("quota exceeded", status_code=429)),
        FakeProvider(error=TransientProviderError("timed out")),
        FakeProvider(error=MalformedResponseError("rejected", status_code=400)),
        FakeProvider(text="I'm sorry, I can't help with that."),
        FakeProvider(text="[" * 200000),
    ],
    ids=["quota", "transient", "malformed", "repair_exhausted", "deep_nesting"],
)
async def test_provider_failures_fall_back_to_heuristics(make_service, provider):
    service = make_service(provider)

    outcome = await service.generate_outcome("alice")

    assert outcome.source == InsightsSource.HEURISTIC
    assert provider.calls == 1
    assert get_counter("provider.fallback") == 1
    assert outcome.insights.generated_insights


@pytest.mark.asyncio
async def test_fallback_result_is_cached(make_service):
    provider = FakeProvider(error=TransientProviderError("timed out"))
    service = make_service(provider)

    await service.generate_outcome("alice")
    second = await service.generate_outcome("alice")

    assert second.source == InsightsSource.CACHE
    assert second.origin == InsightsSource.HEURISTIC
    assert provider.calls == 1


@pytest.mark.asyncio
async def test_no_records_uses_heuristics_without_provider(make_service):
    provider = FakeProvider()
    service = make_service(provider)

    outcome = await service.generate_outcome("nobody")

    assert outcome.source == InsightsSource.HEURISTIC
    assert provider.calls == 0
    assert outcome.insights.mood_summary == heuristics.summarize_moods([])
    assert outcome.fingerprint.startswith("v1:0:0:")


# --- Cache failures and cancellation ---


@pytest.mark.asyncio
async def test_cache_failure_is_absorbed(make_service):
    provider = FakeProvider()
    service = make_service(provider, cache_backend=BrokenBackend())

    first = await service.generate_outcome("alice")
    second = await service.generate_outcome("alice")

    assert first.source == InsightsSource.PROVIDER
    assert second.source == InsightsSource.PROVIDER
    assert provider.calls == 2
    assert service.status()["cache"]["available"] is False


@pytest.mark.asyncio
async def test_cancelled_cycle_writes_nothing(make_service, backend):
    started = asyncio.Event()

    class HangingProvider(FakeProvider):
        async def enrich(self, prompt):
            self.calls += 1
            started.set()
            await asyncio.Event().wait()

    service = make_service(HangingProvider())
    task = asyncio.create_task(service.generate("alice"))
    await started.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert len(backend) == 0


@pytest.mark.asyncio
async def test_empty_owner_is_rejected(make_service):
    with pytest.raises(InvariantViolation):
        await make_service().generate("")


@pytest.mark.asyncio
async def test_invalidate_forces_regeneration(make_service):
    provider = FakeProvider()
    service = make_service(provider)

    await service.generate("alice")
    assert await service.invalidate("alice")
    await service.generate("alice")

    assert provider.calls == 2


# --- Provider connectivity check ---


@pytest.mark.asyncio
async def test_check_provider_sends_one_small_request(make_service, backend):
    provider = FakeProvider(text="Test successful.")
    service = make_service(provider)

    report = await service.check_provider()

    assert report == {"ok": True, "provider": "gemini", "latency_ms": 1.0, "error": None}
    assert provider.calls == 1
    assert "Test successful" in provider.prompts[0]
    assert service.usage("alice").count == 0
    assert len(backend) == 0


@pytest.mark.asyncio
async def test_check_provider_reports_failure(make_service):
    provider = FakeProvider(error=QuotaError("quota exceeded", status_code=429))

    report = await make_service(provider).check_provider()

    assert report["ok"] is False
    assert report["error"] == "QuotaError: quota exceeded"
    assert report["latency_ms"] is None


@pytest.mark.asyncio
async def test_check_provider_without_credential_skips_request(make_service):
    provider = FakeProvider(configured=False)

    report = await make_service(provider).check_provider()

    assert report["error"] == "not_configured"
    assert report["provider"] == "local"
    assert provider.calls == 0


# --- End to end ---


@pytest.mark.asyncio
async def test_three_moods_without_provider(make_mood, clock):
    records = InMemoryRecordsSource()
    records.add(
        "carol",
        [
            make_mood("excellent", 8, days_ago=2),
            make_mood("good", 7, days_ago=1),
            make_mood("terrible", 2, days_ago=0),
        ],
    )
    service = InsightsService(
        records=records,
        cache=InsightsCacheStore(InMemoryCacheBackend(), clock=clock),
        rate_limiter=ProviderRateLimiter(clock=clock.seconds),
    )

    insights = await service.generate("carol")

    assert insights.predictions.mood_prediction == "stable"
    assert insights.sentiment.overall_sentiment == "neutral"
    assert insights.sentiment.sentiment_score == 0
    assert insights.mood_summary.average_mood == pytest.approx(10 / 3, abs=0.01)
