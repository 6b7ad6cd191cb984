"""
Content fingerprints for an owner's record set.

The fingerprint is both the cache key component and the change detector: it is
built from record counts plus normalized record content (never timestamps, row
ids, notes or tags), so metadata churn does not invalidate the cache while any
added, removed or edited record does.

Key: compute_fingerprint() -> "v1:<moods>:<journals>:<provider>:<sha256>"
"""

from __future__ import annotations

import json
import re
from collections.abc import Sequence
from hashlib import sha256

from moodq.insights.models import JournalRecord, MoodRecord

FINGERPRINT_VERSION = "v1"

_FINGERPRINT_RE = re.compile(r"^v1:\d+:\d+:[a-z0-9_-]+:[0-9a-f]{64}$")
_WHITESPACE_RE = re.compile(r"\s+")


def _normalize_text(value: str | None) -> str:
    return _WHITESPACE_RE.sub(" ", value or "").strip()


def mood_token(record: MoodRecord) -> str:
    return json.dumps([record.mood, record.energy_level or 0])


def journal_token(record: JournalRecord) -> str:
    return json.dumps(
        [
            _normalize_text(record.title),
            _normalize_text(record.content),
            _normalize_text(record.mood),
        ],
        ensure_ascii=False,
    )


def compute_fingerprint(
    mood_records: Sequence[MoodRecord],
    journal_records: Sequence[JournalRecord],
    provider_id: str = "local",
) -> str:
    """
    Derive the content fingerprint for one owner's records.

    Per-record tokens are sorted before hashing, so the result does not depend
    on the order the records were fetched in. Empty input yields the stable
    "no data" fingerprint for the provider.

    Side Effects:
        None (pure function)
    """
    mood_tokens = sorted(mood_token(r) for r in mood_records)
    journal_tokens = sorted(journal_token(r) for r in journal_records)
    provider = (provider_id or "local").lower()

    content = json.dumps(
        {
            "moodCount": len(mood_tokens),
            "journalCount": len(journal_tokens),
            "moodContent": mood_tokens,
            "journalContent": journal_tokens,
            "provider": provider,
        },
        sort_keys=True,
        ensure_ascii=False,
    )
    digest = sha256(content.encode("utf-8")).hexdigest()
    return f"{FINGERPRINT_VERSION}:{len(mood_tokens)}:{len(journal_tokens)}:{provider}:{digest}"


def is_valid_fingerprint(value: object) -> bool:
    return isinstance(value, str) and bool(_FINGERPRINT_RE.match(value))
