# flasharb/quote_engine.py
"""
Multi-Venue Quote Aggregation
Fans quote requests out to every eligible venue in parallel, isolates slow
or failing venues behind circuit breakers and keeps a short-lived cache.
"""

import logging
import threading
import time
from collections import defaultdict
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set, Tuple

from flasharb.circuit_breaker import BreakerState
from flasharb.config import LOG_ALL_QUOTES, AggregatorSettings
from flasharb.errors import FlashArbError, QuoteMismatch, VenueError, VenueUnavailable
from flasharb.models import BPS, Quote
from flasharb.venue_registry import VenueRegistry

logger = logging.getLogger(__name__)

CACHE_SIGNIFICANT_DIGITS = 4
CACHE_MAX_ENTRIES = 2048
JOIN_POLL_INTERVAL = 0.02  # seconds between checks on requests still queued


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass
class AggregationResult:
    """Best quote per venue for one direction of one pair"""
    token_in: str
    token_out: str
    amount_in: int
    quotes: Dict[str, Quote] = field(default_factory=dict)
    failed: List[str] = field(default_factory=list)  # errors / timeouts
    skipped: List[str] = field(default_factory=list)  # breaker open or disabled
    unsupported: List[str] = field(default_factory=list)  # no pool / no liquidity
    errors: Dict[str, str] = field(default_factory=dict)
    cache_hits: int = 0
    latency_ms: float = 0.0

    @property
    def failed_count(self) -> int:
        return len(self.failed) + len(self.skipped)

    @property
    def coverage_bps(self) -> int:
        """Share of venues that could have answered and did"""
        eligible = len(self.quotes) + self.failed_count
        if eligible == 0:
            return 0
        return len(self.quotes) * BPS // eligible

    @property
    def best_quote(self) -> Optional[Quote]:
        if not self.quotes:
            return None
        return select_best(self.quotes.values())


def select_best(quotes) -> Quote:
    """Largest output wins, ties go to the lower fee tier"""
    return max(quotes, key=lambda q: (q.amount_out, -q.fee_tier))


def round_amount(amount: int, digits: int = CACHE_SIGNIFICANT_DIGITS) -> int:
    """Truncate to a few significant digits so near-identical sizes share a cache slot"""
    length = len(str(amount))
    if length <= digits:
        return amount
    scale = 10 ** (length - digits)
    return amount // scale * scale


class _Request:
    """One (venue, fee tier) fetch, stamped by the worker when it starts"""

    __slots__ = ("venue", "key", "started_at")

    def __init__(self, venue: str, key: Tuple):
        self.venue = venue
        self.key = key
        self.started_at: Optional[float] = None


# =============================================================================
# QUOTE AGGREGATOR
# =============================================================================

class QuoteAggregator:

    def __init__(
        self,
        adapters: Dict[str, object],
        registry: VenueRegistry,
        settings: AggregatorSettings = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.adapters = adapters
        self.registry = registry
        self.settings = settings or AggregatorSettings()
        self._clock = clock
        self._executor = ThreadPoolExecutor(
            max_workers=self.settings.max_workers,
            thread_name_prefix="quote",
        )
        self._cache: Dict[Tuple, Quote] = {}
        self._cache_lock = threading.Lock()
        self.cache_hits = 0
        self.cache_misses = 0

    # -------------------------------------------------------------------------
    # Cache
    # -------------------------------------------------------------------------

    @staticmethod
    def _cache_key(venue: str, tier: Optional[int], token_in: str, token_out: str, amount_in: int) -> Tuple:
        return (venue, tier, token_in.lower(), token_out.lower(), round_amount(amount_in))

    def _cached(self, key: Tuple, now: float) -> Optional[Quote]:
        with self._cache_lock:
            quote = self._cache.get(key)
            if quote is not None and now - quote.fetched_at < self.settings.cache_ttl and not quote.is_stale(now):
                self.cache_hits += 1
                return quote
            self.cache_misses += 1
            return None

    def _store(self, key: Tuple, quote: Quote):
        with self._cache_lock:
            self._cache[key] = quote
            if len(self._cache) > CACHE_MAX_ENTRIES:
                now = self._clock()
                self._cache = {
                    k: q for k, q in self._cache.items()
                    if now - q.fetched_at < self.settings.cache_ttl
                }

    def cache_stats(self) -> dict:
        with self._cache_lock:
            total = self.cache_hits + self.cache_misses
            return {
                "hits": self.cache_hits,
                "misses": self.cache_misses,
                "hit_rate_pct": round(self.cache_hits * 100 / total, 1) if total else 0.0,
                "entries": len(self._cache),
            }

    # -------------------------------------------------------------------------
    # Fetching
    # -------------------------------------------------------------------------

    def _fetch(self, request: _Request, tier: Optional[int], token_in: str, token_out: str, amount_in: int):
        request.started_at = time.monotonic()
        start = self._clock()
        quote = self.adapters[request.venue].quote(token_in, token_out, amount_in, fee_tier=tier)
        return quote, self._clock() - start

    def _submit(self, venue: str, key: Tuple, tier: Optional[int], token_in: str, token_out: str, amount_in: int):
        request = _Request(venue, key)
        future = self._executor.submit(self._fetch, request, tier, token_in, token_out, amount_in)
        return future, request

    def _join(self, requests: Dict[Future, _Request]) -> Tuple[Set[Future], Set[Future], Set[Future]]:
        """
        Wait for submitted requests.

        Each request gets `request_timeout` from the moment a worker picks
        it up, and the whole join is bounded by the aggregation deadline.
        Returns (done, timed_out, not_run). Requests in not_run never reached
        their venue, or ran out of aggregation time before their own timeout.
        """
        request_timeout = self.settings.request_timeout
        hard_deadline = time.monotonic() + self.settings.aggregation_timeout
        pending = set(requests)
        done: Set[Future] = set()
        timed_out: Set[Future] = set()

        while pending:
            now = time.monotonic()
            if now >= hard_deadline:
                break
            wake = hard_deadline
            for future in list(pending):
                started = requests[future].started_at
                if future.done():
                    pending.discard(future)
                    done.add(future)
                elif started is None:
                    wake = min(wake, now + JOIN_POLL_INTERVAL)
                elif now - started >= request_timeout:
                    pending.discard(future)
                    timed_out.add(future)
                else:
                    wake = min(wake, started + request_timeout)
            if not pending:
                break
            finished, pending = wait(pending, timeout=max(wake - now, 0.0), return_when=FIRST_COMPLETED)
            done |= finished

        not_run: Set[Future] = set()
        now = time.monotonic()
        for future in pending:
            started = requests[future].started_at
            if future.done():
                done.add(future)
            elif future.cancel():
                not_run.add(future)
            elif started is not None and now - started >= request_timeout:
                timed_out.add(future)
            else:
                not_run.add(future)
        return done, timed_out, not_run

    def aggregate(self, token_in: str, token_out: str, amount_in: int) -> AggregationResult:
        """
        One task per (venue, fee tier), joined with per-request and overall deadlines.
        Venue errors are absorbed here and reported as coverage.
        """
        start = self._clock()
        result = AggregationResult(token_in=token_in, token_out=token_out, amount_in=amount_in)

        found: Dict[str, List[Quote]] = defaultdict(list)
        errors: Dict[str, List[FlashArbError]] = defaultdict(list)
        latency: Dict[str, float] = defaultdict(float)
        requests: Dict[Future, _Request] = {}

        for name, adapter in self.adapters.items():
            use_cache = self.registry.breaker_state(name) == BreakerState.CLOSED
            if not self.registry.allow_request(name):
                result.skipped.append(name)
                continue
            for tier in adapter.fee_tiers:
                key = self._cache_key(name, tier, token_in, token_out, amount_in)
                cached = self._cached(key, start) if use_cache else None
                if cached is not None:
                    found[name].append(cached)
                    result.cache_hits += 1
                    continue
                future, request = self._submit(name, key, tier, token_in, token_out, amount_in)
                requests[future] = request

        done, timed_out, not_run = self._join(requests) if requests else (set(), set(), set())

        for future in timed_out:
            name = requests[future].venue
            errors[name].append(VenueUnavailable(name, f"timed out after {self.settings.request_timeout:.1f}s"))

        crowded = {requests[future].venue for future in not_run}

        for future in done:
            request = requests[future]
            name = request.venue
            try:
                quote, elapsed = future.result()
            except FlashArbError as e:
                errors[name].append(e)
                continue
            except Exception as e:
                errors[name].append(VenueUnavailable(name, f"{type(e).__name__}: {e}"))
                continue
            self._store(request.key, quote)
            found[name].append(quote)
            latency[name] = max(latency[name], elapsed)

        fetched = {request.venue for request in requests.values()}
        for name in self.adapters:
            if name in result.skipped:
                continue
            messages = [str(e) for e in errors.get(name, [])]
            if name in crowded:
                messages.append(f"{name}: not started before the aggregation deadline")
            if messages:
                result.errors[name] = "; ".join(messages)

            venue_errors = errors.get(name, [])
            if found.get(name):
                result.quotes[name] = select_best(found[name])
                if name in fetched:
                    self.registry.record_success(name, latency[name])
            elif any(isinstance(e, (VenueUnavailable, QuoteMismatch)) for e in venue_errors):
                self.registry.record_failure(name)
                result.failed.append(name)
                logger.warning(f"Venue {name} failed: {result.errors[name]}")
            elif name in crowded:
                # never reached the venue, so no verdict on its health
                self.registry.release_probe(name)
                result.skipped.append(name)
                logger.warning(f"Venue {name} skipped: quote workers saturated")
            elif name in fetched:
                # answered, but has no usable pool for this pair
                self.registry.record_success(name, latency[name])
                result.unsupported.append(name)

        result.latency_ms = (self._clock() - start) * 1000

        if LOG_ALL_QUOTES:
            for name, quote in result.quotes.items():
                logger.debug(
                    f"{name}: {quote.amount_in} -> {quote.amount_out} "
                    f"(tier {quote.fee_tier}, impact {quote.price_impact_bps} bps)"
                )
        return result

    def fetch_fresh(
        self,
        venue: str,
        token_in: str,
        token_out: str,
        amount_in: int,
        fee_tier: Optional[int] = None,
    ) -> Quote:
        """Uncached single-venue quote for execution-time revalidation"""
        if not self.registry.allow_request(venue):
            raise VenueUnavailable(venue, "circuit open")

        key = self._cache_key(venue, fee_tier, token_in, token_out, amount_in)
        future, request = self._submit(venue, key, fee_tier, token_in, token_out, amount_in)
        _, timed_out, not_run = self._join({future: request})
        if not_run:
            self.registry.release_probe(venue)
            raise VenueUnavailable(venue, "not started before the aggregation deadline")
        if timed_out:
            self.registry.record_failure(venue)
            raise VenueUnavailable(venue, "timed out during revalidation")

        try:
            quote, elapsed = future.result()
        except (VenueUnavailable, QuoteMismatch):
            self.registry.record_failure(venue)
            raise
        except VenueError:
            self.registry.record_success(venue, 0.0)
            raise
        except Exception as e:
            self.registry.record_failure(venue)
            raise VenueUnavailable(venue, f"{type(e).__name__}: {e}") from e

        self.registry.record_success(venue, elapsed)
        self._store(key, quote)
        return quote

    def shutdown(self):
        self._executor.shutdown(wait=False, cancel_futures=True)
