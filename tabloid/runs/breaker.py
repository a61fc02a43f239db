"""Process-wide circuit breaker over the real generation path.

State: open_until (epoch seconds), slow_count, fail_count. The counters
are consecutive counts since the breaker last reset, not totals.

Transitions:
- slow outcome: slow_count += 1; at SLOW_THRESHOLD trip
- failed outcome: fail_count += 1; at the path's threshold trip
  (fresh 5, mutation 2)
- success: slow_count = 0; fail_count = 0 only if strictly under deadline
- trip: open_until = now + cooldown, both counters -> 0
- reset: all three fields -> 0

Every read-modify-write runs under one lock so concurrent runs never lose
an update. Breaker state is single-process and lost on restart (CLOSED).
"""

import logging
import os
import threading
import time
from typing import Callable, Optional

from tabloid.runs.schemas import BreakerSnapshot, RunPath

logger = logging.getLogger(__name__)

COOLDOWN_S = 120.0
SLOW_THRESHOLD = 2
FAIL_THRESHOLD_FRESH = 5
FAIL_THRESHOLD_MUTATION = 2


class CircuitBreaker:
    def __init__(
        self,
        cooldown_s: float = COOLDOWN_S,
        slow_threshold: int = SLOW_THRESHOLD,
        fail_thresholds: Optional[dict[RunPath, int]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.cooldown_s = cooldown_s
        self.slow_threshold = slow_threshold
        self.fail_thresholds = {
            RunPath.FRESH: FAIL_THRESHOLD_FRESH,
            RunPath.MUTATION: FAIL_THRESHOLD_MUTATION,
        }
        if fail_thresholds:
            self.fail_thresholds.update(fail_thresholds)
        self._clock = clock
        self._lock = threading.Lock()
        self._open_until = 0.0
        self._slow_count = 0
        self._fail_count = 0

    def is_open(self) -> bool:
        """Pure function of wall-clock time vs open_until. Never blocks."""
        return self._clock() < self._open_until

    def _trip(self, cause: str) -> None:
        # Caller holds the lock
        self._open_until = self._clock() + self.cooldown_s
        self._slow_count = 0
        self._fail_count = 0
        logger.warning(f"Circuit breaker OPEN for {self.cooldown_s:.0f}s ({cause})")

    def record_slow(self) -> bool:
        """Record a deadline overrun. Returns True if this tripped the breaker."""
        with self._lock:
            self._slow_count += 1
            if self._slow_count >= self.slow_threshold:
                self._trip(f"{self.slow_threshold} slow attempts")
                return True
            logger.info(f"Breaker slow_count={self._slow_count}")
            return False

    def record_failure(self, path: RunPath) -> bool:
        """Record a generator error. Returns True if this tripped the breaker."""
        threshold = self.fail_thresholds[path]
        with self._lock:
            self._fail_count += 1
            if self._fail_count >= threshold:
                self._trip(f"{self._fail_count} failures, {path.value} threshold {threshold}")
                return True
            logger.info(f"Breaker fail_count={self._fail_count} ({path.value} threshold {threshold})")
            return False

    def record_success(self, elapsed_s: float, deadline_s: float) -> None:
        with self._lock:
            self._slow_count = 0
            if elapsed_s < deadline_s:
                self._fail_count = 0

    def reset(self) -> None:
        with self._lock:
            self._open_until = 0.0
            self._slow_count = 0
            self._fail_count = 0
        logger.info("Circuit breaker reset")

    def snapshot(self) -> BreakerSnapshot:
        with self._lock:
            return BreakerSnapshot(
                open=self._clock() < self._open_until,
                open_until=self._open_until,
                slow_count=self._slow_count,
                fail_count=self._fail_count,
            )


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, default))
    except ValueError:
        logger.warning(f"Ignoring non-integer {name}={os.environ.get(name)!r}")
        return default


# Singleton instance
_breaker: Optional[CircuitBreaker] = None


def get_breaker() -> CircuitBreaker:
    """Get or create the global CircuitBreaker instance."""
    global _breaker
    if _breaker is None:
        _breaker = CircuitBreaker(
            cooldown_s=float(_env_int("BREAKER_COOLDOWN_S", int(COOLDOWN_S))),
            slow_threshold=_env_int("BREAKER_SLOW_THRESHOLD", SLOW_THRESHOLD),
            fail_thresholds={
                RunPath.FRESH: _env_int("BREAKER_FAIL_THRESHOLD_FRESH", FAIL_THRESHOLD_FRESH),
                RunPath.MUTATION: _env_int("BREAKER_FAIL_THRESHOLD_MUTATION", FAIL_THRESHOLD_MUTATION),
            },
        )
    return _breaker
