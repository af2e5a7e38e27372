# flasharb/circuit_breaker.py
"""
Per-venue circuit breaker

CLOSED -> OPEN after `failure_threshold` consecutive failures.
OPEN -> HALF_OPEN once the cooldown elapses; a single probe is let through.
HALF_OPEN -> CLOSED on success, back to OPEN with a doubled cooldown on failure.
Outcomes reported while OPEN belong to requests issued before the trip and
are ignored.

Not thread-safe on its own; VenueRegistry serializes access per venue.
"""

import logging
import time
from enum import Enum
from typing import Callable

logger = logging.getLogger(__name__)


class BreakerState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        cooldown: float = 60.0,
        max_cooldown: float = 960.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.base_cooldown = cooldown
        self.max_cooldown = max_cooldown
        self._clock = clock

        self.state = BreakerState.CLOSED
        self.consecutive_failures = 0
        self.cooldown = cooldown
        self.opened_at = 0.0
        self._probe_in_flight = False

    def allow_request(self) -> bool:
        if self.state == BreakerState.CLOSED:
            return True

        if self.state == BreakerState.OPEN:
            if self._clock() - self.opened_at < self.cooldown:
                return False
            self.state = BreakerState.HALF_OPEN
            self._probe_in_flight = False
            logger.info(f"Breaker {self.name}: half-open, probing")

        # HALF_OPEN: exactly one probe
        if self._probe_in_flight:
            return False
        self._probe_in_flight = True
        return True

    def record_success(self):
        if self.state == BreakerState.OPEN:
            # late answer to a request issued before the trip
            logger.debug(f"Breaker {self.name}: ignoring success while open")
            return
        if self.state == BreakerState.HALF_OPEN:
            logger.info(f"Breaker {self.name}: closed")
        self.state = BreakerState.CLOSED
        self.consecutive_failures = 0
        self.cooldown = self.base_cooldown
        self._probe_in_flight = False

    def record_failure(self):
        if self.state == BreakerState.OPEN:
            return
        self.consecutive_failures += 1

        if self.state == BreakerState.HALF_OPEN:
            self.cooldown = min(self.cooldown * 2, self.max_cooldown)
            self._trip()
        elif self.state == BreakerState.CLOSED and self.consecutive_failures >= self.failure_threshold:
            self._trip()

    def _trip(self):
        self.state = BreakerState.OPEN
        self.opened_at = self._clock()
        self._probe_in_flight = False
        logger.warning(
            f"Breaker {self.name}: open for {self.cooldown:.0f}s "
            f"after {self.consecutive_failures} consecutive failures"
        )

    def release_probe(self):
        """Hand back a probe slot whose request never reached the venue"""
        if self.state == BreakerState.HALF_OPEN:
            self._probe_in_flight = False

    def remaining_cooldown(self) -> float:
        if self.state != BreakerState.OPEN:
            return 0.0
        return max(0.0, self.cooldown - (self._clock() - self.opened_at))
