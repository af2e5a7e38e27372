# flasharb/venue_registry.py
"""
Venue Registry
Single owner of per-venue mutable state: circuit breaker, reliability
window and performance counters. Every mutation for a venue goes through
that venue's lock.
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List

from flasharb.circuit_breaker import BreakerState, CircuitBreaker
from flasharb.config import AggregatorSettings
from flasharb.pairs import VenueConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VenueStatus:
    """Point-in-time view of a venue for metrics"""
    name: str
    kind: str
    enabled: bool
    breaker_state: str
    reliability_pct: int
    quotes: int
    failures: int
    executions: int
    avg_latency_ms: float


class _VenueEntry:

    def __init__(self, config: VenueConfig, breaker: CircuitBreaker, window: int):
        self.config = config
        self.breaker = breaker
        self.lock = threading.Lock()
        self.enabled = True
        self.outcomes = deque(maxlen=window)
        self.quotes = 0
        self.failures = 0
        self.executions = 0
        self.total_latency = 0.0


class VenueRegistry:

    def __init__(
        self,
        venues: Iterable[VenueConfig],
        settings: AggregatorSettings = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        settings = settings or AggregatorSettings()
        self._entries: Dict[str, _VenueEntry] = {}
        for venue in venues:
            breaker = CircuitBreaker(
                venue.name,
                failure_threshold=settings.breaker_threshold,
                cooldown=settings.breaker_cooldown,
                max_cooldown=settings.breaker_max_cooldown,
                clock=clock,
            )
            self._entries[venue.name] = _VenueEntry(venue, breaker, settings.reliability_window)

    def _entry(self, name: str) -> _VenueEntry:
        try:
            return self._entries[name]
        except KeyError:
            raise KeyError(f"Unknown venue: {name}") from None

    def names(self) -> List[str]:
        return list(self._entries)

    def config(self, name: str) -> VenueConfig:
        return self._entry(name).config

    # -------------------------------------------------------------------------
    # Circuit breaker
    # -------------------------------------------------------------------------

    def allow_request(self, name: str) -> bool:
        entry = self._entry(name)
        with entry.lock:
            return entry.enabled and entry.breaker.allow_request()

    def breaker_state(self, name: str) -> BreakerState:
        entry = self._entry(name)
        with entry.lock:
            return entry.breaker.state

    def record_success(self, name: str, latency: float):
        entry = self._entry(name)
        with entry.lock:
            entry.breaker.record_success()
            entry.outcomes.append(True)
            entry.quotes += 1
            entry.total_latency += latency

    def record_failure(self, name: str):
        entry = self._entry(name)
        with entry.lock:
            entry.breaker.record_failure()
            entry.outcomes.append(False)
            entry.failures += 1

    def release_probe(self, name: str):
        entry = self._entry(name)
        with entry.lock:
            entry.breaker.release_probe()

    # -------------------------------------------------------------------------
    # Reliability
    # -------------------------------------------------------------------------

    def record_execution(self, name: str, success: bool):
        """Confirmed executions raise reliability, failed ones lower it"""
        entry = self._entry(name)
        with entry.lock:
            entry.outcomes.append(success)
            entry.executions += 1

    def reliability_pct(self, name: str) -> int:
        entry = self._entry(name)
        with entry.lock:
            if not entry.outcomes:
                return 100
            return sum(entry.outcomes) * 100 // len(entry.outcomes)

    def disable(self, name: str):
        entry = self._entry(name)
        with entry.lock:
            entry.enabled = False
        logger.warning(f"Venue {name} disabled")

    def enable(self, name: str):
        entry = self._entry(name)
        with entry.lock:
            entry.enabled = True
        logger.info(f"Venue {name} enabled")

    # -------------------------------------------------------------------------
    # Metrics
    # -------------------------------------------------------------------------

    def snapshot(self) -> List[VenueStatus]:
        statuses = []
        for name, entry in self._entries.items():
            with entry.lock:
                reliability = (
                    sum(entry.outcomes) * 100 // len(entry.outcomes)
                    if entry.outcomes else 100
                )
                avg_latency = entry.total_latency / entry.quotes * 1000 if entry.quotes else 0.0
                statuses.append(VenueStatus(
                    name=name,
                    kind=entry.config.kind.value,
                    enabled=entry.enabled,
                    breaker_state=entry.breaker.state.value,
                    reliability_pct=reliability,
                    quotes=entry.quotes,
                    failures=entry.failures,
                    executions=entry.executions,
                    avg_latency_ms=round(avg_latency, 1),
                ))
        return statuses
