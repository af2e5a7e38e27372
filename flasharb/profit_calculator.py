# flasharb/profit_calculator.py
"""
Profit Model
Turns a buy quote (base -> quote) and a sell quote (quote -> base) into a
sized opportunity, net of flash loan fee and gas, or a counted rejection.
"""

import itertools
import logging
import threading
import time
from collections import Counter
from dataclasses import dataclass
from typing import Callable, List, Optional

from flasharb.amm import max_input_for_impact, price_impact_bps
from flasharb.config import ProfitSettings
from flasharb.errors import PriceImpactExceeded, QuoteStale
from flasharb.gas import GasQuote
from flasharb.models import BPS, AssetPair, Opportunity, Quote

logger = logging.getLogger(__name__)

# Rejection reasons (counter keys)
REJECT_SAME_VENUE = "same_venue"
REJECT_TOKEN_MISMATCH = "token_mismatch"
REJECT_STALE_QUOTE = "stale_quote"
REJECT_ZERO_LIQUIDITY = "zero_liquidity"
REJECT_NEGATIVE_SPREAD = "negative_spread"
REJECT_PRICE_IMPACT = "price_impact"
REJECT_MIN_PROFIT = "below_min_profit"
REJECT_MIN_MARGIN = "below_min_margin"


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass
class ProfitEvaluation:
    ok: bool
    reason: str = ""
    detail: str = ""
    opportunity: Optional[Opportunity] = None


# =============================================================================
# SEARCH HELPERS
# =============================================================================

def is_unimodal(values: List[int]) -> bool:
    """Non-decreasing then non-increasing"""
    i = 0
    n = len(values)
    while i + 1 < n and values[i + 1] >= values[i]:
        i += 1
    while i + 1 < n and values[i + 1] <= values[i]:
        i += 1
    return i == n - 1


def maximize(f: Callable[[int], int], lo: int, hi: int, grid_points: int = 16) -> int:
    """
    Integer argmax of f on [lo, hi].

    Samples a fixed grid first. If the samples are unimodal the bracket
    around the best sample is refined by ternary search, otherwise the best
    sample is returned as is. Ties prefer the smaller amount.
    """
    if hi <= lo:
        return lo

    n = max(grid_points, 3)
    points = sorted({lo + (hi - lo) * k // (n - 1) for k in range(n)})
    values = [f(p) for p in points]
    best = max(range(len(points)), key=lambda k: (values[k], -points[k]))

    if not is_unimodal(values):
        return points[best]

    a = points[max(best - 1, 0)]
    b = points[min(best + 1, len(points) - 1)]
    while b - a > 2:
        m1 = a + (b - a) // 3
        m2 = b - (b - a) // 3
        if f(m1) < f(m2):
            a = m1 + 1
        else:
            b = m2

    candidates = list(range(a, b + 1)) + [points[best]]
    return max(candidates, key=lambda x: (f(x), -x))


# =============================================================================
# PROFIT MODEL
# =============================================================================

class ProfitModel:
    """
    Pure computation over quotes and their pool snapshots.
    The only state is the rejection counter and the id sequence.
    """

    def __init__(self, settings: ProfitSettings = None):
        self.settings = settings or ProfitSettings()
        self.rejections = Counter()
        self._lock = threading.Lock()
        self._ids = itertools.count(1)

    def _reject(self, reason: str, detail: str = "") -> ProfitEvaluation:
        with self._lock:
            self.rejections[reason] += 1
        logger.debug(f"Rejected ({reason}) {detail}")
        return ProfitEvaluation(ok=False, reason=reason, detail=detail)

    def rejection_counts(self) -> dict:
        with self._lock:
            return dict(self.rejections)

    def flash_loan_fee(self, amount: int) -> int:
        return -(-amount * self.settings.flash_loan_fee_bps // BPS)

    @staticmethod
    def spread_bps(buy: Quote, sell: Quote) -> int:
        """Round-trip rate of the two quotes minus one, in bps of token A"""
        round_trip = buy.amount_out * sell.amount_out * BPS // (buy.amount_in * sell.amount_in)
        return round_trip - BPS

    def liquidity_cap(self, pair: AssetPair, buy: Quote, sell: Quote) -> int:
        """Largest base amount keeping both legs within the impact ceiling"""
        ceiling = self.settings.max_price_impact_bps
        cap = max_input_for_impact(buy.pool, ceiling)
        sell_cap = max_input_for_impact(sell.pool, ceiling)

        if buy.pool.amount_out(cap) > sell_cap:
            lo, hi = 0, cap
            while hi - lo > 1:
                mid = (lo + hi) // 2
                if buy.pool.amount_out(mid) <= sell_cap:
                    lo = mid
                else:
                    hi = mid
            cap = lo

        if pair.max_amount is not None:
            cap = min(cap, pair.max_amount)
        return cap

    @staticmethod
    def check_fresh(buy: Quote, sell: Quote, now: float):
        for quote in (buy, sell):
            if quote.is_stale(now):
                raise QuoteStale(f"{quote.venue} quote expired {now - quote.valid_until:.1f}s ago")

    def check_impact(self, buy_impact: int, sell_impact: int):
        ceiling = self.settings.max_price_impact_bps
        if buy_impact > ceiling or sell_impact > ceiling:
            raise PriceImpactExceeded(f"impact {buy_impact}/{sell_impact} bps over {ceiling}")

    def evaluate(
        self,
        pair: AssetPair,
        buy: Quote,
        sell: Quote,
        gas: GasQuote,
        now: float,
        coverage_bps: int = BPS,
    ) -> ProfitEvaluation:
        # Cheap checks first
        if buy.venue == sell.venue:
            return self._reject(REJECT_SAME_VENUE, buy.venue)

        if not (
            buy.token_in.lower() == sell.token_out.lower() == pair.base.lower()
            and buy.token_out.lower() == sell.token_in.lower() == pair.quote.lower()
        ):
            return self._reject(REJECT_TOKEN_MISMATCH, f"{buy.venue}/{sell.venue}")

        try:
            self.check_fresh(buy, sell, now)
        except QuoteStale as e:
            return self._reject(REJECT_STALE_QUOTE, str(e))

        if buy.pool.depth() <= 0 or sell.pool.depth() <= 0:
            return self._reject(REJECT_ZERO_LIQUIDITY, f"{buy.venue}/{sell.venue}")

        spread = self.spread_bps(buy, sell)
        if spread <= 0:
            return self._reject(REJECT_NEGATIVE_SPREAD, f"{buy.venue}->{sell.venue} {spread} bps")

        # Sizing
        cap = self.liquidity_cap(pair, buy, sell)
        if cap < pair.min_amount:
            return self._reject(REJECT_PRICE_IMPACT, f"cap {cap} below minimum size")

        gas_units = self.settings.flash_loan_gas + buy.gas_estimate + sell.gas_estimate
        gas_cost = gas.cost_in_token(gas_units)

        def net_profit(amount: int) -> int:
            gross = sell.pool.amount_out(buy.pool.amount_out(amount))
            return gross - amount - self.flash_loan_fee(amount) - gas_cost

        amount = maximize(net_profit, pair.min_amount, cap, self.settings.grid_points)

        intermediate = buy.pool.amount_out(amount)
        gross_output = sell.pool.amount_out(intermediate)
        buy_impact = price_impact_bps(buy.pool, amount)
        sell_impact = price_impact_bps(sell.pool, intermediate)
        try:
            self.check_impact(buy_impact, sell_impact)
        except PriceImpactExceeded as e:
            return self._reject(REJECT_PRICE_IMPACT, str(e))

        flash_fee = self.flash_loan_fee(amount)
        net = gross_output - amount - gas_cost - flash_fee
        margin_bps = net * BPS // amount

        if net <= pair.min_profit:
            return self._reject(REJECT_MIN_PROFIT, f"net {net} <= {pair.min_profit}")
        if margin_bps < self.settings.min_margin_bps:
            return self._reject(REJECT_MIN_MARGIN, f"margin {margin_bps} bps")

        opportunity = Opportunity(
            opportunity_id=f"ARB-{int(time.time())}-{next(self._ids)}",
            pair=pair,
            buy_quote=buy,
            sell_quote=sell,
            optimal_amount=amount,
            intermediate_amount=intermediate,
            gross_output=gross_output,
            gross_spread_bps=spread,
            gas_cost=gas_cost,
            flash_loan_fee=flash_fee,
            net_profit=net,
            margin_bps=margin_bps,
            buy_impact_bps=buy_impact,
            sell_impact_bps=sell_impact,
            detected_at=now,
            deadline=min(buy.valid_until, sell.valid_until),
            coverage_bps=coverage_bps,
        )
        return ProfitEvaluation(ok=True, opportunity=opportunity)
