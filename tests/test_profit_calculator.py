"""Tests for profit evaluation and trade sizing."""

from dataclasses import replace

import pytest

from conftest import TOKEN_A, TOKEN_B, FakeGasOracle, cheap_pool, flat_pool, make_quote, rich_pool

from flasharb.amm import ConstantProductPool, max_input_for_impact, price_impact_bps
from flasharb.config import ProfitSettings
from flasharb.errors import PriceImpactExceeded, QuoteStale
from flasharb.gas import GasQuote
from flasharb.models import BPS, AssetPair, OpportunityState
from flasharb.profit_calculator import (
    REJECT_MIN_MARGIN,
    REJECT_MIN_PROFIT,
    REJECT_NEGATIVE_SPREAD,
    REJECT_SAME_VENUE,
    REJECT_STALE_QUOTE,
    REJECT_TOKEN_MISMATCH,
    REJECT_ZERO_LIQUIDITY,
    ProfitModel,
    is_unimodal,
    maximize,
)

NOW = 1000.0
ONE_A = 10 ** 18
GAS = FakeGasOracle().quote(TOKEN_A)


def legs(buy_pool=None, sell_pool=None, buy_venue="x", sell_venue="y", amount=ONE_A, now=NOW):
    buy_pool = buy_pool or cheap_pool()
    sell_pool = sell_pool or rich_pool()
    buy = make_quote(buy_venue, buy_pool, TOKEN_A, TOKEN_B, amount, now)
    sell = make_quote(sell_venue, sell_pool, TOKEN_B, TOKEN_A, buy.amount_out, now)
    return buy, sell


class TestSearch:
    """Derivative-free sizing helpers."""

    def test_is_unimodal(self):
        """Test the shape check accepts rise-then-fall only."""
        assert is_unimodal([1, 2, 3, 2, 1])
        assert is_unimodal([1, 2, 3])
        assert is_unimodal([3, 2, 1])
        assert not is_unimodal([1, 3, 2, 4])

    def test_maximize_concave(self):
        """Test the refinement finds the exact integer peak."""
        assert maximize(lambda x: -(x - 37) ** 2, 0, 100) == 37
        assert maximize(lambda x: -(x - 12_345_678) ** 2, 1, 10 ** 9) == 12_345_678

    def test_maximize_monotone(self):
        """Test an increasing objective sizes to the upper bound."""
        assert maximize(lambda x: x, 1, 10 ** 6) == 10 ** 6

    def test_maximize_non_unimodal_falls_back_to_grid(self):
        """Test an irregular objective returns the best grid sample."""
        def bumpy(x):
            return {0: 0, 25: 5, 50: 1, 75: 10, 100: 2}.get(x, -1)
        assert maximize(bumpy, 0, 100, grid_points=5) == 75

    def test_maximize_empty_range(self):
        """Test a degenerate range returns its lower bound."""
        assert maximize(lambda x: x, 5, 5) == 5


class TestRejections:
    """Cheap filters ahead of sizing."""

    def test_same_venue_is_rejected(self, pair, profit_model):
        """Test an identical venue on both legs never emits an opportunity."""
        buy, sell = legs(buy_venue="x", sell_venue="x")
        evaluation = profit_model.evaluate(pair, buy, sell, GAS, NOW)
        assert not evaluation.ok
        assert evaluation.reason == REJECT_SAME_VENUE
        assert evaluation.opportunity is None
        assert profit_model.rejection_counts()[REJECT_SAME_VENUE] == 1

    def test_negative_spread_short_circuits(self, pair, profit_model):
        """Test a losing round trip is rejected before sizing."""
        buy, sell = legs(sell_pool=flat_pool())
        evaluation = profit_model.evaluate(pair, buy, sell, GAS, NOW)
        assert evaluation.reason == REJECT_NEGATIVE_SPREAD

    def test_stale_quote_is_never_used(self, pair, profit_model):
        """Test a quote past validUntil is rejected."""
        buy, sell = legs()
        evaluation = profit_model.evaluate(pair, buy, sell, GAS, NOW + 10.5)
        assert evaluation.reason == REJECT_STALE_QUOTE
        assert "expired" in evaluation.detail

    def test_check_fresh_raises(self, profit_model):
        """Test using a quote past its deadline raises QuoteStale."""
        buy, sell = legs()
        profit_model.check_fresh(buy, sell, NOW + 10)
        with pytest.raises(QuoteStale, match="x quote expired"):
            profit_model.check_fresh(buy, sell, NOW + 10.5)

    def test_check_impact_raises(self, profit_model):
        """Test a leg past the impact ceiling raises PriceImpactExceeded."""
        ceiling = profit_model.settings.max_price_impact_bps
        profit_model.check_impact(ceiling, ceiling)
        with pytest.raises(PriceImpactExceeded):
            profit_model.check_impact(0, ceiling + 1)

    def test_token_mismatch(self, pair, profit_model):
        """Test legs that do not close the loop are rejected."""
        buy, sell = legs()
        sell = replace(sell, token_out=TOKEN_B)
        evaluation = profit_model.evaluate(pair, buy, sell, GAS, NOW)
        assert evaluation.reason == REJECT_TOKEN_MISMATCH

    def test_zero_liquidity(self, pair, profit_model):
        """Test an empty pool behind a quote is rejected."""
        buy, sell = legs()
        sell = replace(sell, pool=ConstantProductPool(0, 0, 0))
        evaluation = profit_model.evaluate(pair, buy, sell, GAS, NOW)
        assert evaluation.reason == REJECT_ZERO_LIQUIDITY

    def test_both_thresholds_required(self, pair):
        """Test a profitable trade below the margin floor is still rejected."""
        model = ProfitModel(ProfitSettings(min_margin_bps=200, max_price_impact_bps=100, flash_loan_fee_bps=5))
        buy, sell = legs()
        evaluation = model.evaluate(pair, buy, sell, GAS, NOW)
        assert evaluation.reason == REJECT_MIN_MARGIN

    def test_absolute_floor(self, profit_model):
        """Test a good margin on a small size is rejected by the absolute floor."""
        pair = AssetPair(TOKEN_A, TOKEN_B, trade_size=ONE_A, min_profit=10 ** 17, max_amount=ONE_A)
        buy, sell = legs()
        evaluation = profit_model.evaluate(pair, buy, sell, GAS, NOW)
        assert evaluation.reason == REJECT_MIN_PROFIT

    def test_gas_can_eat_the_spread(self, pair, profit_model):
        """Test expensive gas turns a positive spread into a rejection."""
        buy, sell = legs()
        pricey = GasQuote(gas_price_wei=50 * 10 ** 9, token_per_native=10 ** 18)
        evaluation = profit_model.evaluate(pair, buy, sell, pricey, NOW)
        assert evaluation.reason == REJECT_MIN_PROFIT


class TestAcceptedOpportunity:
    """Economics of an accepted round trip."""

    def test_scenario_a_is_profitable(self, pair, profit_model):
        """Test 1 A -> 2,000 B -> 1.010 A nets roughly 0.01 A minus costs."""
        buy, sell = legs()
        evaluation = profit_model.evaluate(pair, buy, sell, GAS, NOW)
        assert evaluation.ok, evaluation.reason

        opp = evaluation.opportunity
        assert opp.state == OpportunityState.DETECTED
        assert opp.gross_spread_bps > 90
        assert 8 * 10 ** 15 < opp.net_profit < 10 ** 16
        assert opp.deadline == NOW + 10.0
        assert opp.opportunity_id.startswith("ARB-")

    def test_net_profit_identity(self, pair, profit_model):
        """Test net = gross - amount - gas - flash fee and both floors hold."""
        buy, sell = legs()
        opp = profit_model.evaluate(pair, buy, sell, GAS, NOW).opportunity

        gross = sell.pool.amount_out(buy.pool.amount_out(opp.optimal_amount))
        assert opp.gross_output == gross
        assert opp.net_profit == gross - opp.optimal_amount - opp.gas_cost - opp.flash_loan_fee
        assert opp.net_profit > pair.min_profit
        assert opp.margin_bps >= profit_model.settings.min_margin_bps
        assert opp.margin_bps == opp.net_profit * BPS // opp.optimal_amount

    def test_flash_fee_rounds_up(self, profit_model):
        """Test the premium is never underestimated."""
        assert profit_model.flash_loan_fee(10 ** 18) == 5 * 10 ** 14
        assert profit_model.flash_loan_fee(1) == 1

    def test_gas_cost_in_base_token(self, pair, profit_model):
        """Test gas units are priced through the gas quote."""
        buy, sell = legs()
        opp = profit_model.evaluate(pair, buy, sell, GAS, NOW).opportunity
        units = profit_model.settings.flash_loan_gas + buy.gas_estimate + sell.gas_estimate
        assert opp.gas_cost == units * GAS.gas_price_wei

    def test_size_respects_pair_cap(self, pair, profit_model):
        """Test the flash loan cap bounds the trade."""
        buy, sell = legs()
        opp = profit_model.evaluate(pair, buy, sell, GAS, NOW).opportunity
        assert 99 * ONE_A // 100 < opp.optimal_amount <= pair.max_amount

    def test_size_respects_impact_ceiling(self, profit_model):
        """Test uncapped sizing stays within the liquidity cap and impact ceiling."""
        pair = AssetPair(TOKEN_A, TOKEN_B, trade_size=ONE_A, min_profit=10 ** 15)
        buy, sell = legs()
        opp = profit_model.evaluate(pair, buy, sell, GAS, NOW).opportunity

        ceiling = profit_model.settings.max_price_impact_bps
        assert opp.optimal_amount <= max_input_for_impact(buy.pool, ceiling)
        assert opp.intermediate_amount <= max_input_for_impact(sell.pool, ceiling)
        assert price_impact_bps(buy.pool, opp.optimal_amount) <= ceiling
        assert price_impact_bps(sell.pool, opp.intermediate_amount) <= ceiling
        assert opp.buy_impact_bps <= ceiling and opp.sell_impact_bps <= ceiling
        assert opp.optimal_amount > 100 * ONE_A

    def test_larger_size_is_not_better(self, profit_model):
        """Test the chosen size beats its neighbours on the search grid."""
        pair = AssetPair(TOKEN_A, TOKEN_B, trade_size=ONE_A, min_profit=10 ** 15)
        buy, sell = legs()
        opp = profit_model.evaluate(pair, buy, sell, GAS, NOW).opportunity

        def net(amount):
            gross = sell.pool.amount_out(buy.pool.amount_out(amount))
            return gross - amount - profit_model.flash_loan_fee(amount) - opp.gas_cost

        assert net(opp.optimal_amount) >= net(opp.optimal_amount // 2)
        assert net(opp.optimal_amount) >= net(opp.optimal_amount * 9 // 10)

    def test_coverage_is_carried(self, pair, profit_model):
        """Test thin venue coverage is recorded on the opportunity."""
        buy, sell = legs()
        opp = profit_model.evaluate(pair, buy, sell, GAS, NOW, coverage_bps=5_000).opportunity
        assert opp.coverage_bps == 5_000

    def test_ids_are_unique(self, pair, profit_model):
        """Test each accepted opportunity gets its own id."""
        buy, sell = legs()
        first = profit_model.evaluate(pair, buy, sell, GAS, NOW).opportunity
        second = profit_model.evaluate(pair, buy, sell, GAS, NOW).opportunity
        assert first.opportunity_id != second.opportunity_id
