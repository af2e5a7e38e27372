"""Tests for gas pricing and Chainlink reference prices."""

from unittest.mock import MagicMock, PropertyMock

import pytest

from conftest import TOKEN_A, ManualClock

from flasharb.errors import OracleUnavailable
from flasharb.gas import GasOracle, GasQuote
from flasharb.oracle import ChainlinkOracle
from flasharb.pairs import TOKENS, USDC_NATIVE, WMATIC

NOW = 1_700_000_000
GWEI = 10 ** 9


def feeds_w3(prices, updated_at=NOW):
    """Provider whose Chainlink feeds answer from `prices` (feed address -> answer)"""
    w3 = MagicMock()

    def contract(address, abi):
        feed = MagicMock()
        feed.functions.latestRoundData.return_value.call.return_value = (1, prices[address], 0, updated_at, 1)
        feed.functions.decimals.return_value.call.return_value = 8
        return feed

    w3.eth.contract.side_effect = contract
    return w3


@pytest.fixture
def oracle():
    prices = {
        TOKENS[WMATIC].chainlink_feed: 50_000_000,  # $0.50
        TOKENS[USDC_NATIVE].chainlink_feed: 100_000_000,  # $1.00
    }
    return ChainlinkOracle(feeds_w3(prices), max_age=3600, clock=ManualClock(), wall_clock=lambda: NOW + 60)


class TestGasQuote:
    """Gas cost in the borrowed token."""

    def test_cost_in_native(self):
        """Test a native-denominated quote costs units times price."""
        quote = GasQuote(gas_price_wei=30 * GWEI, token_per_native=10 ** 18)
        assert quote.cost_in_token(100_000) == 100_000 * 30 * GWEI

    def test_cost_rounds_up(self):
        """Test conversion into a 6-decimal token never rounds to zero."""
        quote = GasQuote(gas_price_wei=1, token_per_native=500_000)
        assert quote.cost_in_token(1) == 1


class TestGasOracle:
    """Network price, buffer and cap."""

    def make(self, network_price, token_per_native=10 ** 18):
        w3 = MagicMock()
        type(w3.eth).gas_price = PropertyMock(return_value=network_price)
        price_oracle = MagicMock()
        price_oracle.token_per_native.return_value = token_per_native
        return GasOracle(w3, price_oracle, max_gas_price_gwei=500, fallback_gas_price_gwei=50, buffer_bps=1_000)

    def test_bid_adds_buffer(self):
        """Test the bid is the network price plus ten percent."""
        quote = self.make(30 * GWEI).quote(TOKEN_A)
        assert quote.gas_price_wei == 33 * GWEI
        assert quote.network_gas_price_wei == 30 * GWEI

    def test_bid_is_capped(self):
        """Test the bid never exceeds the configured maximum."""
        quote = self.make(800 * GWEI).quote(TOKEN_A)
        assert quote.gas_price_wei == 500 * GWEI
        assert quote.network_gas_price_wei == 800 * GWEI

    def test_fallback_when_node_fails(self):
        """Test an unreadable gas price falls back to the target price."""
        w3 = MagicMock()
        type(w3.eth).gas_price = PropertyMock(side_effect=ConnectionError("reset"))
        gas = GasOracle(w3, MagicMock(), fallback_gas_price_gwei=50)
        assert gas.network_gas_price() == 50 * GWEI

    def test_token_conversion_from_oracle(self):
        """Test the quote carries the oracle's conversion rate."""
        quote = self.make(30 * GWEI, token_per_native=500_000).quote(USDC_NATIVE)
        assert quote.token_per_native == 500_000


class TestChainlinkOracle:
    """Reference prices."""

    def test_token_per_native(self, oracle):
        """Test one MATIC at $0.50 is worth 0.5 USDC."""
        assert oracle.token_per_native(USDC_NATIVE) == 500_000
        assert oracle.token_per_native(WMATIC) == 10 ** 18

    def test_deviation(self, oracle):
        """Test a quote matching the cross rate deviates zero bps."""
        assert oracle.deviation_bps(WMATIC, USDC_NATIVE, 10 ** 18, 500_000) == 0
        assert oracle.deviation_bps(WMATIC, USDC_NATIVE, 10 ** 18, 490_000) == 200

    def test_deviation_without_feed(self, oracle):
        """Test tokens without a feed are not checked."""
        assert oracle.deviation_bps(TOKEN_A, USDC_NATIVE, 10 ** 18, 1) is None

    def test_missing_feed_raises(self, oracle):
        """Test pricing an unknown token raises OracleUnavailable."""
        with pytest.raises(OracleUnavailable):
            oracle.price(TOKEN_A)

    def test_stale_price_raises(self):
        """Test an answer older than max_age is refused."""
        prices = {TOKENS[WMATIC].chainlink_feed: 50_000_000}
        stale = ChainlinkOracle(
            feeds_w3(prices, updated_at=NOW - 7200),
            max_age=3600,
            clock=ManualClock(),
            wall_clock=lambda: NOW,
        )
        with pytest.raises(OracleUnavailable, match="Stale"):
            stale.price(WMATIC)

    def test_price_is_cached(self, oracle):
        """Test repeat reads within the TTL hit the cache."""
        oracle.price(WMATIC)
        oracle.price(WMATIC)
        assert oracle.w3.eth.contract.call_count == 1
