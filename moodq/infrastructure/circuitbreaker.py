# Process-lifetime breaker for the cache store: once the backend proves unreachable
# every further cache call is skipped until reset() is called explicitly.
from __future__ import annotations

import threading
from dataclasses import dataclass, field

from moodq.observability.telemetry import counter, log_event


@dataclass
class StoreCircuitBreaker:
    stage: str
    fail_max: int = 1
    _failures: int = field(default=0, init=False)
    _open: bool = field(default=False, init=False)
    _last_error: str | None = field(default=None, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def allow_request(self) -> bool:
        with self._lock:
            if self._open:
                counter(f"{self.stage}.circuit_skip")
            return not self._open

    def record_success(self) -> None:
        with self._lock:
            self._failures = 0

    def record_failure(self, error: BaseException | str | None = None) -> None:
        """
        Count one backend failure; trip after fail_max consecutive failures.

        Side Effects:
            - Increments "<stage>.circuit_opened" and logs when the breaker trips
        """
        with self._lock:
            self._failures += 1
            if error is not None:
                self._last_error = str(error)
            if self._failures >= self.fail_max and not self._open:
                self._open = True
                counter(f"{self.stage}.circuit_opened")
                log_event(
                    "circuit.opened",
                    stage=self.stage,
                    failures=self._failures,
                    error=self._last_error,
                )

    def reset(self) -> None:
        """Close the breaker and forget recorded failures."""
        with self._lock:
            self._failures = 0
            self._open = False
            self._last_error = None

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def last_error(self) -> str | None:
        return self._last_error
