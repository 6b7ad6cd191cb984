"""
LLM Budget Tracking for insights enrichment (in-memory, per owner).

Caps provider calls per owner per day so a busy or abusive owner cannot run up
inference costs. Uses an in-memory TTLCache; counters reset on process restart,
which is acceptable for abuse prevention but means the ceiling is per process,
not global. Nothing here is persisted.

Budget limits:
- Per owner: 1000 provider calls per 24h window (MOODQ_LLM_DAILY_LIMIT)

A window opens on the owner's first call and closes 24h later; the next call
after that starts a fresh window at zero.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import NamedTuple

from cachetools import TTLCache

from moodq.config import LLM_USER_DAILY_LIMIT, RATE_LIMIT_MAX_OWNERS, RATE_LIMIT_WINDOW_SECONDS
from moodq.insights.errors import InvariantViolation
from moodq.observability.logging import get_logger
from moodq.observability.telemetry import counter

logger = get_logger(__name__)

DEFAULT_OWNER_DAILY_LIMIT = LLM_USER_DAILY_LIMIT


@dataclass
class RateLimitWindow:
    owner_id: str
    count: int
    window_started_at: float


class BudgetStatus(NamedTuple):
    """Current budget status for an owner."""

    owner_id: str
    count: int
    limit: int
    reset_at: datetime | None
    is_allowed: bool
    reason: str | None


class ProviderRateLimiter:
    """
    Per-owner fixed-window call counter.

    try_consume() is the only mutating call on the hot path; the check and the
    increment happen under one lock so two concurrent requests for the same
    owner can never both take the last slot.

    Args:
        limit: Max provider calls per owner per window
        window_seconds: Window length (24h by default)
        max_owners: Owners tracked at once; new owners are denied while the
            table is full of unexpired windows
        clock: Seconds-since-epoch source (injectable for tests)
    """

    def __init__(
        self,
        limit: int = DEFAULT_OWNER_DAILY_LIMIT,
        window_seconds: float = RATE_LIMIT_WINDOW_SECONDS,
        max_owners: int = RATE_LIMIT_MAX_OWNERS,
        clock: Callable[[], float] = time.time,
    ):
        if limit < 0:
            raise InvariantViolation(f"Rate limit must be non-negative, got {limit}")
        if window_seconds <= 0:
            raise InvariantViolation(f"Rate limit window must be positive, got {window_seconds}")

        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._windows: TTLCache[str, RateLimitWindow] = TTLCache(
            maxsize=max_owners, ttl=window_seconds, timer=clock
        )

    def _current_window(self, owner_id: str, now: float) -> RateLimitWindow | None:
        window = self._windows.get(owner_id)
        if window is not None and now - window.window_started_at >= self.window_seconds:
            del self._windows[owner_id]
            return None
        return window

    def _has_room(self) -> bool:
        # TTLCache evicts the least recently used entry when full, which would
        # hand an exhausted owner a fresh window; only expired windows may go.
        self._windows.expire()
        return len(self._windows) < self._windows.maxsize

    def try_consume(self, owner_id: str) -> bool:
        """
        Take one call from the owner's budget.

        Returns:
            True if the call is allowed (and has been counted), False otherwise

        Side Effects:
            - Increments the owner's in-memory window count when allowed
            - Increments "llm.budget.call" / "llm.budget.denied" counters
        """
        with self._lock:
            now = self._clock()
            window = self._current_window(owner_id, now)
            if window is None:
                if not self._has_room():
                    counter("llm.budget.owner_capacity")
                    logger.warning(
                        "LLM budget owner table full (%d owners), denying owner=%s",
                        self._windows.maxsize,
                        owner_id,
                    )
                    return False
                window = RateLimitWindow(owner_id=owner_id, count=0, window_started_at=now)
                self._windows[owner_id] = window

            if window.count >= self.limit:
                counter("llm.budget.denied")
                logger.warning(
                    "LLM budget exhausted: owner=%s (%d/%d)", owner_id, window.count, self.limit
                )
                return False

            window.count += 1
            count = window.count

        counter("llm.budget.call")
        logger.debug("Recorded provider call: owner=%s, count=%d", owner_id, count)
        return True

    def usage(self, owner_id: str) -> BudgetStatus:
        """Read-only usage report for one owner (no window is opened)."""
        with self._lock:
            window = self._current_window(owner_id, self._clock())
            count = window.count if window else 0
            reset_at = (
                datetime.fromtimestamp(window.window_started_at + self.window_seconds, UTC)
                if window
                else None
            )

        allowed = count < self.limit
        return BudgetStatus(
            owner_id=owner_id,
            count=count,
            limit=self.limit,
            reset_at=reset_at,
            is_allowed=allowed,
            reason=None if allowed else f"Owner daily limit exceeded ({count}/{self.limit})",
        )

    def reset(self, owner_id: str | None = None) -> None:
        """Clear one owner's window, or every window when owner_id is None."""
        with self._lock:
            if owner_id is None:
                self._windows.clear()
            else:
                self._windows.pop(owner_id, None)
