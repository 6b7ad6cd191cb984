"""
Error taxonomy for the insights pipeline.

Everything except InvariantViolation is recoverable: the orchestrator routes it
to the heuristic path (provider side) or treats it as a cache miss (store side).
"""

from __future__ import annotations


class InsightsError(RuntimeError):
    """Base class for insights pipeline errors."""


class ConfigurationError(InsightsError):
    """No provider credential configured. Never retried."""


class ProviderError(InsightsError):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TransientProviderError(ProviderError):
    """Timeout, network failure or 5xx."""


class QuotaError(ProviderError):
    """429 / quota exceeded upstream, or local rate limiter denial."""


class MalformedResponseError(ProviderError):
    """Non-2xx outside the transient/quota ranges, or a missing response envelope."""


class RepairExhaustedError(MalformedResponseError):
    """Every repair strategy failed on the provider text."""


class CacheError(InsightsError):
    """Cache backend unreachable, misconfigured or missing its table."""


class InvariantViolation(InsightsError):
    """A programming defect. Raised loudly, never absorbed."""
