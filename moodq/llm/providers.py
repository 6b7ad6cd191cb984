"""
Inference provider clients.

Each provider sends ONE consolidated prompt over HTTP and returns the raw text
of the completion; parsing the domain JSON is the repair pipeline's job.
Failures are classified into the insights error taxonomy so the orchestrator
can route them without knowing which provider is configured:

    timeout / network / 5xx        -> TransientProviderError
    429 / quota exceeded           -> QuotaError
    other non-2xx / no envelope    -> MalformedResponseError
    no credential                  -> ConfigurationError (before any I/O)

No retries here: a failed call falls back to heuristics for this cycle.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any

import httpx

from moodq.config import (
    GEMINI_API_BASE,
    HUGGINGFACE_API_BASE,
    LLM_MAX_OUTPUT_TOKENS,
    LLM_TEMPERATURE,
    OPENAI_API_BASE,
)
from moodq.infrastructure.settings import ProviderSettings, load_provider_settings
from moodq.insights.errors import (
    ConfigurationError,
    MalformedResponseError,
    QuotaError,
    TransientProviderError,
)
from moodq.observability.logging import get_logger
from moodq.observability.telemetry import counter, time_block

logger = get_logger(__name__)

_QUOTA_MARKERS = ("quota", "resource_exhausted", "rate limit", "rate_limit")


@dataclass(frozen=True)
class RawProviderResult:
    text: str
    provider: str
    model: str
    status_code: int
    latency_ms: float


class BaseInsightsProvider:
    """
    Shared request/classify flow; subclasses describe the endpoint and envelope.

    Args:
        settings: Provider snapshot (credential, model, endpoint, timeout)
        transport: Optional httpx transport (tests pass httpx.MockTransport)
    """

    provider_id = "base"

    def __init__(
        self,
        settings: ProviderSettings,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings
        self.model = settings.model
        self.timeout = settings.timeout_seconds
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return self.settings.is_enabled

    def _build_request(self, prompt: str) -> dict[str, Any]:
        raise NotImplementedError

    def _extract_text(self, data: Any) -> str | None:
        raise NotImplementedError

    async def _post(self, prompt: str) -> httpx.Response:
        request = self._build_request(prompt)
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            return await client.post(**request)

    async def enrich(self, prompt: str) -> RawProviderResult:
        """
        Send the prompt and return the completion text.

        Raises:
            ConfigurationError: no credential configured (no request made)
            TransientProviderError: timeout, network failure or 5xx
            QuotaError: 429 or quota exceeded upstream
            MalformedResponseError: other non-2xx or missing completion text

        Side Effects:
            - One outbound HTTP POST
            - Increments llm.<provider>.* counters and records latency
        """
        if not self.is_configured:
            counter(f"llm.{self.provider_id}.not_configured")
            raise ConfigurationError(f"No credential configured for provider '{self.provider_id}'")

        start = time.perf_counter()
        try:
            with time_block(f"llm.{self.provider_id}.latency"):
                response = await asyncio.wait_for(self._post(prompt), timeout=self.timeout)
        except (TimeoutError, httpx.TimeoutException) as e:
            counter(f"llm.{self.provider_id}.timeout")
            logger.warning("LLM call timed out after %.1fs (%s)", self.timeout, self.provider_id)
            raise TransientProviderError(f"{self.provider_id} call timed out") from e
        except httpx.RequestError as e:
            counter(f"llm.{self.provider_id}.network_error")
            logger.warning("LLM request failed (%s): %s", self.provider_id, type(e).__name__)
            raise TransientProviderError(f"{self.provider_id} request failed: {e}") from e
        latency_ms = (time.perf_counter() - start) * 1000

        self._raise_for_status(response)

        try:
            data = response.json()
        except ValueError as e:
            counter(f"llm.{self.provider_id}.bad_envelope")
            raise MalformedResponseError(
                f"{self.provider_id} returned non-JSON envelope", status_code=response.status_code
            ) from e

        text = self._extract_text(data)
        if not isinstance(text, str) or not text.strip():
            counter(f"llm.{self.provider_id}.bad_envelope")
            raise MalformedResponseError(
                f"{self.provider_id} response missing completion text",
                status_code=response.status_code,
            )

        counter(f"llm.{self.provider_id}.ok")
        return RawProviderResult(
            text=text,
            provider=self.provider_id,
            model=self.model,
            status_code=response.status_code,
            latency_ms=latency_ms,
        )

    def _raise_for_status(self, response: httpx.Response) -> None:
        status = response.status_code
        if 200 <= status < 300:
            return

        body = response.text[:500].lower()
        if status == 429 or any(marker in body for marker in _QUOTA_MARKERS):
            counter(f"llm.{self.provider_id}.rate_limited")
            logger.warning("LLM rate limited (%s, %d)", self.provider_id, status)
            raise QuotaError(f"{self.provider_id} quota exceeded", status_code=status)
        if status >= 500:
            counter(f"llm.{self.provider_id}.server_error")
            logger.warning("LLM server error (%s, %d)", self.provider_id, status)
            raise TransientProviderError(f"{self.provider_id} server error", status_code=status)

        counter(f"llm.{self.provider_id}.client_error")
        logger.error("LLM request rejected (%s, %d)", self.provider_id, status)
        raise MalformedResponseError(f"{self.provider_id} request rejected", status_code=status)


class GeminiProvider(BaseInsightsProvider):
    provider_id = "gemini"

    def _build_request(self, prompt: str) -> dict[str, Any]:
        base = self.settings.endpoint or GEMINI_API_BASE
        return {
            "url": f"{base}/models/{self.model}:generateContent",
            "params": {"key": self.settings.credential},
            "headers": {"Content-Type": "application/json"},
            "json": {
                "contents": [{"parts": [{"text": prompt}]}],
                "generationConfig": {
                    "temperature": LLM_TEMPERATURE,
                    "maxOutputTokens": LLM_MAX_OUTPUT_TOKENS,
                },
            },
        }

    def _extract_text(self, data: Any) -> str | None:
        try:
            return data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError):
            return None


class OpenAIProvider(BaseInsightsProvider):
    provider_id = "openai"

    def _build_request(self, prompt: str) -> dict[str, Any]:
        base = self.settings.endpoint or OPENAI_API_BASE
        return {
            "url": f"{base}/chat/completions",
            "headers": {
                "Authorization": f"Bearer {self.settings.credential}",
                "Content-Type": "application/json",
            },
            "json": {
                "model": self.model,
                "messages": [{"role": "user", "content": prompt}],
                "temperature": LLM_TEMPERATURE,
                "max_tokens": LLM_MAX_OUTPUT_TOKENS,
            },
        }

    def _extract_text(self, data: Any) -> str | None:
        try:
            return data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            return None


class HuggingFaceProvider(BaseInsightsProvider):
    provider_id = "huggingface"

    def _build_request(self, prompt: str) -> dict[str, Any]:
        base = self.settings.endpoint or HUGGINGFACE_API_BASE
        return {
            "url": f"{base}/{self.model}",
            "headers": {
                "Authorization": f"Bearer {self.settings.credential}",
                "Content-Type": "application/json",
            },
            "json": {
                "inputs": prompt,
                "parameters": {
                    "max_new_tokens": LLM_MAX_OUTPUT_TOKENS,
                    "temperature": LLM_TEMPERATURE,
                    "return_full_text": False,
                },
            },
        }

    def _extract_text(self, data: Any) -> str | None:
        if isinstance(data, list):
            data = data[0] if data else None
        if isinstance(data, dict):
            return data.get("generated_text")
        return None


PROVIDERS: dict[str, type[BaseInsightsProvider]] = {
    GeminiProvider.provider_id: GeminiProvider,
    OpenAIProvider.provider_id: OpenAIProvider,
    HuggingFaceProvider.provider_id: HuggingFaceProvider,
}


def build_provider(
    settings: ProviderSettings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> BaseInsightsProvider | None:
    """
    Select the provider once, at construction time.

    Returns None for the "local" provider (heuristics only). A provider
    without a credential is still returned so callers can report
    is_configured; calling enrich() on it raises ConfigurationError.
    """
    settings = settings or load_provider_settings()
    provider_cls = PROVIDERS.get(settings.provider)
    if provider_cls is None:
        logger.info("Inference provider disabled (provider=%s)", settings.provider)
        return None

    provider = provider_cls(settings, transport=transport)
    if not settings.is_enabled:
        logger.warning("Provider %s selected but no credential configured", settings.provider)
    return provider
