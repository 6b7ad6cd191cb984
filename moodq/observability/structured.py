"""
Structured stage events for the insights pipeline.

Every decision the orchestrator takes (cache hit, provider call, fallback,
degraded repair) is emitted as one line of JSON keyed by stage, carrying the
owner id and a short fingerprint digest, so log-based metrics can be built
without coupling the core to a metrics backend.

Usage:
    from moodq.observability.structured import EventType, log_stage_event

    log_stage_event(EventType.PROVIDER_FALLBACK, owner_id="u1", fingerprint=fp, reason="quota")

Output:
    {"ts":"2025-11-11T23:45:12.123+00:00","level":"WARNING","event":"provider.fallback","owner":"u1","fp":"5c1e0f7a9b3d","reason":"quota"}
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any

from moodq.observability.telemetry import counter

logger = logging.getLogger("moodq.structured")

_MAX_FIELD_CHARS = 200


class EventType(str, Enum):
    """Event taxonomy keyed by pipeline stage"""

    # Cache
    CACHE_HIT = "cache.hit"
    CACHE_MISS = "cache.miss"
    CACHE_WRITE = "cache.write"
    CACHE_ERROR = "cache.error"
    CACHE_SWEEP = "cache.sweep"

    # Budget
    RATELIMIT_DENIED = "ratelimit.denied"

    # Provider
    PROVIDER_CALL = "provider.call"
    PROVIDER_OK = "provider.ok"
    PROVIDER_ERROR = "provider.error"
    PROVIDER_QUOTA = "provider.quota"
    PROVIDER_FALLBACK = "provider.fallback"

    # Repair
    REPAIR_DEGRADED = "repair.degraded"
    REPAIR_EXHAUSTED = "repair.exhausted"


EVENT_SEVERITY = {
    EventType.CACHE_HIT: logging.INFO,
    EventType.CACHE_MISS: logging.INFO,
    EventType.CACHE_WRITE: logging.DEBUG,
    EventType.CACHE_ERROR: logging.WARNING,
    EventType.CACHE_SWEEP: logging.INFO,
    EventType.RATELIMIT_DENIED: logging.WARNING,
    EventType.PROVIDER_CALL: logging.DEBUG,
    EventType.PROVIDER_OK: logging.INFO,
    EventType.PROVIDER_ERROR: logging.ERROR,
    EventType.PROVIDER_QUOTA: logging.WARNING,
    EventType.PROVIDER_FALLBACK: logging.WARNING,
    EventType.REPAIR_DEGRADED: logging.WARNING,
    EventType.REPAIR_EXHAUSTED: logging.ERROR,
}


class SafeJSONEncoder(json.JSONEncoder):
    """JSON encoder that handles common non-serializable types."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        if hasattr(obj, "__dict__"):
            return str(obj)
        return super().default(obj)


def short_fingerprint(fingerprint: str | None) -> str | None:
    """Last 12 chars of a fingerprint (the digest part) for log lines."""
    if not fingerprint:
        return None
    return fingerprint[-12:]


def log_stage_event(
    event_type: EventType,
    owner_id: str | None = None,
    fingerprint: str | None = None,
    **fields: Any,
) -> None:
    """
    Emit one structured stage event.

    Side Effects:
        - Writes a one-line JSON entry to the "moodq.structured" logger
        - Increments the in-memory counter named after the event
    """
    severity = EVENT_SEVERITY.get(event_type, logging.INFO)
    counter(event_type.value)

    event: dict[str, Any] = {
        "ts": datetime.now(UTC).isoformat(),
        "level": logging.getLevelName(severity),
        "event": event_type.value,
    }
    if owner_id is not None:
        event["owner"] = owner_id
    if fingerprint is not None:
        event["fp"] = short_fingerprint(fingerprint)

    for key, value in fields.items():
        if isinstance(value, str) and len(value) > _MAX_FIELD_CHARS:
            event[key] = value[:_MAX_FIELD_CHARS] + "..."
        else:
            event[key] = value

    try:
        logger.log(severity, json.dumps(event, separators=(",", ":"), cls=SafeJSONEncoder))
    except (TypeError, ValueError) as e:
        logger.error("structured_log_error: event=%s error=%s", event_type.value, e)
