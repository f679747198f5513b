"""Per-provider circuit breaker for text generation.

A provider that keeps failing is skipped for a cool-down period instead of
spending its full retry budget on every request.

States:

* ``CLOSED`` - calls go through; failures inside the counting window are
  tallied and the breaker opens at ``failure_threshold``.
* ``OPEN`` - calls are refused until ``cooldown_seconds`` have passed.
* ``HALF_OPEN`` - trial calls go through; ``success_threshold`` successes
  close the breaker, any failure opens it again.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum


logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class CircuitState(StrEnum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(slots=True)
class CircuitBreaker:
    name: str
    failure_threshold: int = 5
    success_threshold: int = 2
    cooldown_seconds: float = 60.0
    window_seconds: float = 300.0
    clock: Clock = time.monotonic

    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    success_count: int = 0
    last_failure_at: float | None = None
    opened_at: float | None = None

    def allow(self) -> bool:
        """Return whether a call may go through, moving OPEN to HALF_OPEN when due."""
        if self.state is not CircuitState.OPEN:
            return True
        if self.opened_at is not None and self.clock() - self.opened_at < self.cooldown_seconds:
            return False
        self.state = CircuitState.HALF_OPEN
        self.success_count = 0
        logger.info("Circuit for %s is half-open; allowing a trial call", self.name)
        return True

    def retry_after(self) -> float:
        if self.state is not CircuitState.OPEN or self.opened_at is None:
            return 0.0
        return max(self.cooldown_seconds - (self.clock() - self.opened_at), 0.0)

    def record_success(self) -> None:
        if self.state is CircuitState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= self.success_threshold:
                self._close()
        elif self._window_elapsed():
            self.failure_count = 0

    def record_failure(self) -> None:
        now = self.clock()
        if self.state is CircuitState.HALF_OPEN:
            self.failure_count += 1
            self._open(now)
        elif self.state is CircuitState.CLOSED:
            if self._window_elapsed():
                self.failure_count = 0
            self.failure_count += 1
            if self.failure_count >= self.failure_threshold:
                self._open(now)
        self.last_failure_at = now

    def _window_elapsed(self) -> bool:
        return (
            self.last_failure_at is not None
            and self.clock() - self.last_failure_at > self.window_seconds
        )

    def _open(self, now: float) -> None:
        self.state = CircuitState.OPEN
        self.opened_at = now
        logger.warning(
            "Circuit for %s opened after %d failure(s); cooling down for %.0fs",
            self.name,
            self.failure_count,
            self.cooldown_seconds,
        )

    def _close(self) -> None:
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.opened_at = None
        logger.info("Circuit for %s closed", self.name)
