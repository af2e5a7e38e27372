# flasharb/opportunity_store.py
"""
Opportunity Store
At most one live opportunity per asset pair, at most one execution in
flight per pair. Each pair key is serialized by its own lock.
"""

import logging
import threading
import time
from typing import Callable, Dict, List, Optional

from flasharb.models import Opportunity, Recommendation

logger = logging.getLogger(__name__)

LIVE_RECOMMENDATIONS = (Recommendation.EXECUTE, Recommendation.WAIT)


class OpportunityStore:

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._active: Dict[str, Opportunity] = {}
        self._held: Dict[str, Opportunity] = {}
        self._in_flight: Dict[str, str] = {}  # pair key -> opportunity id
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock(self, key: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def _keys(self) -> List[str]:
        with self._locks_guard:
            return list(self._locks)

    def offer(self, opportunity: Opportunity) -> bool:
        """
        Supersede whatever is waiting for the pair. While the pair is
        executing the newcomer is held instead and promoted on release.
        Returns True when the opportunity became the active entry.
        """
        if opportunity.recommendation not in LIVE_RECOMMENDATIONS:
            return False
        key = opportunity.pair.key
        with self._lock(key):
            if opportunity.is_expired(self._clock()):
                return False
            if key in self._in_flight:
                self._held[key] = opportunity
                logger.debug(f"[{opportunity.opportunity_id}] held, pair {key} executing")
                return False
            previous = self._active.get(key)
            self._active[key] = opportunity
        if previous is not None:
            logger.debug(f"[{opportunity.opportunity_id}] supersedes {previous.opportunity_id}")
        return True

    def get(self, key: str) -> Optional[Opportunity]:
        with self._lock(key):
            opportunity = self._active.get(key)
            if opportunity is not None and opportunity.is_expired(self._clock()):
                del self._active[key]
                return None
            return opportunity

    def acquire(self, key: str) -> Optional[Opportunity]:
        """
        Hand the pair's executable opportunity to a coordinator.
        The store stops tracking it and marks the pair in flight until release().
        """
        with self._lock(key):
            if key in self._in_flight:
                return None
            opportunity = self._active.get(key)
            if opportunity is None:
                return None
            if opportunity.is_expired(self._clock()):
                del self._active[key]
                return None
            if opportunity.recommendation != Recommendation.EXECUTE:
                return None
            del self._active[key]
            self._in_flight[key] = opportunity.opportunity_id
            return opportunity

    def release(self, key: str):
        with self._lock(key):
            self._in_flight.pop(key, None)
            held = self._held.pop(key, None)
            if held is not None and not held.is_expired(self._clock()):
                self._active[key] = held

    def in_flight(self, key: str) -> bool:
        with self._lock(key):
            return key in self._in_flight

    def in_flight_count(self) -> int:
        return sum(1 for key in self._keys() if self.in_flight(key))

    def sweep(self) -> int:
        """Drop every expired active or held entry; returns how many went"""
        purged = 0
        for key in self._keys():
            with self._lock(key):
                now = self._clock()
                for table in (self._active, self._held):
                    opportunity = table.get(key)
                    if opportunity is not None and opportunity.is_expired(now):
                        del table[key]
                        purged += 1
        return purged

    def active(self) -> List[Opportunity]:
        live = []
        for key in self._keys():
            opportunity = self.get(key)
            if opportunity is not None:
                live.append(opportunity)
        return live

    def executable(self) -> List[Opportunity]:
        return [o for o in self.active() if o.recommendation == Recommendation.EXECUTE]
