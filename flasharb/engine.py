# flasharb/engine.py
"""
Arbitrage Engine Main Loop
Each tick: aggregate quotes for every pair, size and score candidates,
refresh the opportunity store, hand executable pairs to the coordinator.
"""

import logging
import threading
import time
from collections import defaultdict
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence

from flasharb.config import EngineSettings
from flasharb.errors import FlashArbError
from flasharb.gas import GasQuote
from flasharb.models import AssetPair, ExecutionRecord, Opportunity, Outcome, Quote, Recommendation
from flasharb.pairs import get_symbol, pair_label

logger = logging.getLogger(__name__)


# =============================================================================
# STATISTICS TRACKER
# =============================================================================

class StatisticsTracker:
    """Track engine performance statistics"""

    def __init__(self):
        self.start_time = datetime.now()
        self._lock = threading.Lock()
        self.tick_count = 0
        self.candidates_found = 0
        self.opportunities_offered = 0
        self.executions = 0
        self.confirmed = 0
        self.failed = 0
        self.aborted = 0
        self.profit_by_token: Dict[str, int] = defaultdict(int)
        self.gas_spent_wei = 0
        self.best_margin_bps = 0

    def record_tick(self, candidates: int, offered: int, best_margin_bps: int = 0):
        with self._lock:
            self.tick_count += 1
            self.candidates_found += candidates
            self.opportunities_offered += offered
            self.best_margin_bps = max(self.best_margin_bps, best_margin_bps)

    def record_execution(self, record: ExecutionRecord, asset: str = ""):
        with self._lock:
            self.executions += 1
            self.gas_spent_wei += record.gas_cost_wei
            if record.outcome == Outcome.SUCCEEDED:
                self.confirmed += 1
                if record.actual_profit:
                    self.profit_by_token[asset] += record.actual_profit
            elif record.outcome == Outcome.FAILED:
                self.failed += 1
            else:
                self.aborted += 1

    def get_summary(self) -> str:
        with self._lock:
            runtime = datetime.now() - self.start_time
            submitted = self.confirmed + self.failed
            success_rate = self.confirmed / submitted * 100 if submitted else 0
            profits = ", ".join(
                f"{amount} {get_symbol(token)}" for token, amount in self.profit_by_token.items()
            ) or "0"

            return (
                f"\n{'='*60}\n"
                f"📊 ENGINE STATISTICS\n"
                f"{'='*60}\n"
                f"Runtime: {runtime}\n"
                f"Ticks: {self.tick_count}\n"
                f"Candidates Found: {self.candidates_found}\n"
                f"Offered to Store: {self.opportunities_offered}\n"
                f"Executions: {self.executions} (aborted {self.aborted})\n"
                f"Confirmed: {self.confirmed} ({success_rate:.1f}% of submitted)\n"
                f"Failed: {self.failed}\n"
                f"Profit: {profits}\n"
                f"Gas Spent: {self.gas_spent_wei / 10**18:.6f} native\n"
                f"Best Margin: {self.best_margin_bps} bps\n"
                f"{'='*60}\n"
            )


# =============================================================================
# PAIR SCAN RESULT
# =============================================================================

@dataclass
class PairScan:
    pair: AssetPair
    coverage_bps: int = 0
    failed_venues: List[str] = field(default_factory=list)
    candidates: int = 0
    opportunity: Optional[Opportunity] = None
    offered: bool = False
    latency_ms: float = 0.0


# =============================================================================
# ARBITRAGE ENGINE
# =============================================================================

class ArbitrageEngine:

    def __init__(
        self,
        pairs: Sequence[AssetPair],
        aggregator,
        registry,
        profit_model,
        assessor,
        store,
        coordinator,
        gas_oracle,
        sink,
        guard=None,
        oracle=None,
        settings: EngineSettings = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.pairs = list(pairs)
        self.aggregator = aggregator
        self.registry = registry
        self.profit_model = profit_model
        self.assessor = assessor
        self.store = store
        self.coordinator = coordinator
        self.gas_oracle = gas_oracle
        self.sink = sink
        self.guard = guard
        self.oracle = oracle
        self.settings = settings or EngineSettings()
        self._clock = clock

        self.stats = StatisticsTracker()
        self._pair_pool = ThreadPoolExecutor(
            max_workers=self.settings.pair_workers,
            thread_name_prefix="pair",
        )
        self._exec_pool = ThreadPoolExecutor(
            max_workers=self.settings.execution_workers,
            thread_name_prefix="exec",
        )
        self._dispatched: Dict[str, Future] = {}

    # -------------------------------------------------------------------------
    # Pair evaluation
    # -------------------------------------------------------------------------

    def _oracle_filter(self, quotes: Dict[str, Quote]) -> Dict[str, Quote]:
        """Drop quotes too far from the oracle cross rate"""
        if self.oracle is None or not self.settings.oracle_check:
            return quotes
        kept = {}
        for name, quote in quotes.items():
            try:
                deviation = self.oracle.deviation_bps(
                    quote.token_in, quote.token_out, quote.amount_in, quote.amount_out,
                )
            except FlashArbError as e:
                logger.debug(f"Oracle check skipped for {name}: {e}")
                kept[name] = quote
                continue
            if deviation is not None and deviation > self.settings.max_oracle_deviation_bps:
                logger.warning(f"{name} quote deviates {deviation} bps from oracle, ignored")
                continue
            kept[name] = quote
        return kept

    def evaluate_pair(self, pair: AssetPair, gas: GasQuote) -> PairScan:
        start = self._clock()
        scan = PairScan(pair=pair)

        forward = self.aggregator.aggregate(pair.base, pair.quote, pair.trade_size)
        scan.failed_venues = forward.failed + forward.skipped
        best_forward = forward.best_quote
        if best_forward is None:
            scan.latency_ms = (self._clock() - start) * 1000
            return scan

        reverse = self.aggregator.aggregate(pair.quote, pair.base, best_forward.amount_out)
        scan.failed_venues = sorted(set(scan.failed_venues + reverse.failed + reverse.skipped))
        scan.coverage_bps = min(forward.coverage_bps, reverse.coverage_bps)

        buys = self._oracle_filter(forward.quotes)
        sells = self._oracle_filter(reverse.quotes)

        now = self._clock()
        candidates = []
        for buy in buys.values():
            for sell in sells.values():
                evaluation = self.profit_model.evaluate(pair, buy, sell, gas, now, scan.coverage_bps)
                if evaluation.ok:
                    candidates.append(evaluation.opportunity)
        scan.candidates = len(candidates)

        if candidates:
            best = max(candidates, key=lambda o: (o.net_profit, o.margin_bps))
            assessment = self.assessor.assess(
                best,
                self.registry.reliability_pct(best.buy_quote.venue),
                self.registry.reliability_pct(best.sell_quote.venue),
                self._clock(),
            )
            best = self.assessor.apply(best, assessment)
            scan.opportunity = best

            if best.recommendation == Recommendation.SKIP:
                logger.debug(f"[{best.opportunity_id}] skipped at risk {best.risk_score}")
            else:
                scan.offered = self.store.offer(best)
                logger.info(
                    f"💰 {pair_label(pair)}: buy {best.buy_quote.venue}, sell {best.sell_quote.venue} | "
                    f"amount {best.optimal_amount}, net {best.net_profit} ({best.margin_bps} bps) | "
                    f"risk {best.risk_score} {best.recommendation.value}"
                )

        scan.latency_ms = (self._clock() - start) * 1000
        return scan

    # -------------------------------------------------------------------------
    # Execution dispatch
    # -------------------------------------------------------------------------

    def _execute(self, pair_key: str):
        try:
            record = self.coordinator.execute(pair_key)
        except Exception as e:
            logger.error(f"Execution for {pair_key} crashed: {e}")
            return None
        if record is not None:
            asset = pair_key.split(":")[0]
            self.stats.record_execution(record, asset)
        return record

    def dispatch(self, network_gas_price: int = 0) -> int:
        """Submit each executable pair not already running; returns how many went"""
        dispatched = 0
        for opportunity in self.store.executable():
            key = opportunity.pair.key
            running = self._dispatched.get(key)
            if running is not None and not running.done():
                continue
            if self.guard is not None:
                allowed, reason = self.guard.allow(network_gas_price)
                if not allowed:
                    logger.warning(f"Execution halted: {reason}")
                    break
            self._dispatched[key] = self._exec_pool.submit(self._execute, key)
            dispatched += 1
        return dispatched

    # -------------------------------------------------------------------------
    # Tick / loop
    # -------------------------------------------------------------------------

    def _gas_quotes(self) -> Dict[str, GasQuote]:
        quotes = {}
        for base in {pair.base for pair in self.pairs}:
            try:
                quotes[base] = self.gas_oracle.quote(base)
            except FlashArbError as e:
                logger.warning(f"No gas price for {get_symbol(base)}, its pairs skipped: {e}")
        return quotes

    def tick(self) -> dict:
        """One scheduling cycle; never raises for a single pair's failure"""
        start = self._clock()
        purged = self.store.sweep()
        gas_quotes = self._gas_quotes()

        futures = {
            self._pair_pool.submit(self.evaluate_pair, pair, gas_quotes[pair.base]): pair
            for pair in self.pairs
            if pair.base in gas_quotes
        }

        scans: List[PairScan] = []
        for future in as_completed(futures):
            pair = futures[future]
            try:
                scans.append(future.result())
            except Exception as e:
                logger.error(f"Pair {pair_label(pair)} evaluation failed: {e}")

        network_gas_price = max((g.network_gas_price_wei for g in gas_quotes.values()), default=0)
        dispatched = self.dispatch(network_gas_price)

        candidates = sum(s.candidates for s in scans)
        offered = sum(1 for s in scans if s.offered)
        best_margin = max((s.opportunity.margin_bps for s in scans if s.opportunity), default=0)
        self.stats.record_tick(candidates, offered, best_margin)

        stats = {
            "pairs": len(scans),
            "candidates": candidates,
            "offered": offered,
            "dispatched": dispatched,
            "purged": purged,
            "in_flight": self.store.in_flight_count(),
            "coverage_bps": {pair_label(s.pair): s.coverage_bps for s in scans},
            "failed_venues": sorted({v for s in scans for v in s.failed_venues}),
            "pair_latency_ms": {pair_label(s.pair): round(s.latency_ms, 1) for s in scans},
            "latency_ms": round((self._clock() - start) * 1000, 1),
            "cache": self.aggregator.cache_stats(),
            "rejections": self.profit_model.rejection_counts(),
        }
        self.sink.record_tick(stats)
        logger.info(
            f"Tick: {len(scans)} pairs, {candidates} candidates, {offered} offered, "
            f"{dispatched} dispatched ({stats['latency_ms']:.0f}ms)"
        )
        return stats

    def run(self, stop_event: threading.Event = None):
        """
        Main engine loop
        Ticks every scan interval until stop_event is set
        """
        stop_event = stop_event or threading.Event()
        logger.info("=" * 60)
        logger.info("🚀 ARBITRAGE ENGINE STARTING")
        logger.info(f"Pairs: {', '.join(pair_label(p) for p in self.pairs)}")
        logger.info(f"Venues: {', '.join(self.registry.names())}")
        logger.info("=" * 60)

        try:
            while not stop_event.is_set():
                try:
                    self.tick()
                except Exception as e:
                    logger.error(f"Loop error: {e}")
                stop_event.wait(self.settings.scan_interval)
        except KeyboardInterrupt:
            logger.info("Keyboard interrupt received")
        finally:
            logger.info(self.stats.get_summary())
            self.shutdown()
            logger.info("Engine stopped.")

    def shutdown(self):
        self._pair_pool.shutdown(wait=False, cancel_futures=True)
        self._exec_pool.shutdown(wait=True)
        self.aggregator.shutdown()
