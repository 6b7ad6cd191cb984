"""
Insights Collaborator Protocols

Interfaces the orchestrator depends on. Concrete implementations live in
moodq.storage (records, cache backends) and moodq.llm (providers); tests pass
in-memory or fake implementations.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import TYPE_CHECKING, Protocol

from moodq.insights.models import CacheEntry, JournalRecord, MoodRecord, RecordKind

if TYPE_CHECKING:
    from moodq.llm.providers import RawProviderResult


class RecordsSource(Protocol):
    """Read access to an owner's recent records."""

    async def list_recent(
        self, owner_id: str, kind: RecordKind, limit: int
    ) -> Sequence[MoodRecord] | Sequence[JournalRecord]:
        """Return up to `limit` records of `kind`, newest first.

        Side Effects:
            None - read only
        """
        ...


class CacheBackend(Protocol):
    """Synchronous row store for cache entries (one row per owner)."""

    def fetch(self, owner_id: str) -> CacheEntry | None:
        """Return the owner's row regardless of expiry, or None."""
        ...

    def upsert(self, entry: CacheEntry) -> None:
        """Insert or replace the owner's row.

        Side Effects:
            Writes one row
        """
        ...

    def delete(self, owner_id: str) -> bool:
        """Delete the owner's row. Returns True if a row existed."""
        ...

    def delete_expired(self, now: datetime) -> int:
        """Delete rows with expires_at <= now. Returns rows removed."""
        ...

    def ping(self) -> None:
        """Raise if the backend is unreachable or missing its table."""
        ...


class InsightsProvider(Protocol):
    """Remote inference provider: one prompt in, raw completion text out."""

    provider_id: str

    @property
    def is_configured(self) -> bool: ...

    async def enrich(self, prompt: str) -> RawProviderResult:
        """Send one prompt.

        Raises:
            ConfigurationError, TransientProviderError, QuotaError,
            MalformedResponseError
        """
        ...
