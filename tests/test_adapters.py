"""Tests for the venue adapters against a mocked provider."""

from unittest.mock import MagicMock

import pytest
from eth_abi import decode

from conftest import TOKEN_A, TOKEN_B, ManualClock

from flasharb.amm import ConstantProductPool, StableSwapPool
from flasharb.dex import ConstantProductAdapter, StableSwapAdapter, build_adapters
from flasharb.dex.common import ZERO_ADDRESS, corroborate, encode_call, rpc_call
from flasharb.errors import InsufficientLiquidity, PoolNotFound, QuoteMismatch, VenueUnavailable
from flasharb.models import VenueKind
from flasharb.pairs import VenueConfig

PAIR = "0x" + "3" * 40
ROUTER = "0x" + "9" * 40
FACTORY = "0x" + "8" * 40
CURVE = "0x" + "4" * 40
RECIPIENT = "0x" + "5" * 40

RESERVE_A = 10 ** 24
RESERVE_B = 2 * 10 ** 27
AMOUNT = 10 ** 18


def returning(value):
    fn = MagicMock()
    fn.call.return_value = value
    return fn


class TestCommon:
    """Shared adapter helpers."""

    def test_corroborate_takes_lower(self):
        """Test agreeing quotes resolve to the more conservative one."""
        assert corroborate("x", 1_000, 998, tolerance_bps=50) == 998
        assert corroborate("x", 997, 1_000, tolerance_bps=50) == 997

    def test_corroborate_rejects_disagreement(self):
        """Test a deviation beyond tolerance raises QuoteMismatch."""
        with pytest.raises(QuoteMismatch):
            corroborate("x", 1_000, 900, tolerance_bps=50)

    def test_corroborate_rejects_zero(self):
        """Test zero output is a liquidity problem, not a mismatch."""
        with pytest.raises(InsufficientLiquidity):
            corroborate("x", 0, 1_000, tolerance_bps=50)

    def test_rpc_call_maps_errors(self):
        """Test transport errors become VenueUnavailable."""
        fn = MagicMock()
        fn.call.side_effect = TimeoutError("read timeout")
        with pytest.raises(VenueUnavailable, match="TimeoutError"):
            rpc_call("x", fn)

    def test_encode_call_selector(self):
        """Test calldata starts with the 4-byte selector."""
        data = encode_call("transfer(address,uint256)", ["address", "uint256"], [RECIPIENT, 1])
        assert data[:4].hex() == "a9059cbb"
        assert len(data) == 4 + 64


@pytest.fixture
def v2_w3():
    w3 = MagicMock()
    functions = w3.eth.contract.return_value.functions
    functions.getPair.return_value = returning(PAIR)
    functions.token0.return_value = returning(TOKEN_A)
    functions.getReserves.return_value = returning((RESERVE_A, RESERVE_B, 0))
    return w3


def v2_adapter(w3, external_out=None):
    venue = VenueConfig(name="quickswap", kind=VenueKind.CONSTANT_PRODUCT, router=ROUTER, factory=FACTORY, fee_tiers=(30,))
    adapter = ConstantProductAdapter(w3, venue, tolerance_bps=50, quote_validity=10.0, clock=ManualClock())
    local = ConstantProductPool(RESERVE_A, RESERVE_B, 30).amount_out(AMOUNT)
    out = local if external_out is None else external_out(local)
    w3.eth.contract.return_value.functions.getAmountsOut.return_value = returning([AMOUNT, out])
    return adapter


class TestConstantProductAdapter:
    """Router quotes checked against pair reserves."""

    def test_quote(self, v2_w3):
        """Test a corroborated quote carries the pool snapshot and validity."""
        adapter = v2_adapter(v2_w3)
        quote = adapter.quote(TOKEN_A, TOKEN_B, AMOUNT)

        expected = ConstantProductPool(RESERVE_A, RESERVE_B, 30).amount_out(AMOUNT)
        assert quote.amount_out == expected
        assert quote.external_amount_out == expected
        assert quote.pool_address == PAIR
        assert quote.fee_tier == 30
        assert quote.fetched_at == 1000.0
        assert quote.valid_until == 1010.0
        assert quote.kind == VenueKind.CONSTANT_PRODUCT

    def test_reserves_follow_token_order(self, v2_w3):
        """Test selling token1 uses the reserves in reverse."""
        adapter = v2_adapter(v2_w3, external_out=lambda _: 1)
        pool, _ = adapter.read_pool(TOKEN_B, TOKEN_A, 30)
        assert (pool.reserve_in, pool.reserve_out) == (RESERVE_B, RESERVE_A)

    def test_external_below_local_wins(self, v2_w3):
        """Test a slightly lower router answer is the accepted output."""
        adapter = v2_adapter(v2_w3, external_out=lambda local: local * 9_990 // 10_000)
        quote = adapter.quote(TOKEN_A, TOKEN_B, AMOUNT)
        assert quote.amount_out == quote.external_amount_out
        assert quote.amount_out < quote.pool.amount_out(AMOUNT)

    def test_mismatch(self, v2_w3):
        """Test a router answer far from the reserves is rejected."""
        adapter = v2_adapter(v2_w3, external_out=lambda local: local * 98 // 100)
        with pytest.raises(QuoteMismatch):
            adapter.quote(TOKEN_A, TOKEN_B, AMOUNT)

    def test_missing_pair(self, v2_w3):
        """Test an unknown pair is reported as unsupported."""
        v2_w3.eth.contract.return_value.functions.getPair.return_value = returning(ZERO_ADDRESS)
        adapter = v2_adapter(v2_w3)
        with pytest.raises(PoolNotFound):
            adapter.quote(TOKEN_A, TOKEN_B, AMOUNT)

    def test_empty_reserves(self, v2_w3):
        """Test a drained pair is reported as insufficient liquidity."""
        v2_w3.eth.contract.return_value.functions.getReserves.return_value = returning((0, 0, 0))
        adapter = v2_adapter(v2_w3)
        with pytest.raises(InsufficientLiquidity):
            adapter.quote(TOKEN_A, TOKEN_B, AMOUNT)

    def test_rpc_failure(self, v2_w3):
        """Test a failing node surfaces as VenueUnavailable."""
        adapter = v2_adapter(v2_w3)
        v2_w3.eth.contract.return_value.functions.getReserves.return_value.call.side_effect = ConnectionError("reset")
        with pytest.raises(VenueUnavailable):
            adapter.quote(TOKEN_A, TOKEN_B, AMOUNT)

    def test_pair_lookup_cached(self, v2_w3):
        """Test the factory is asked once per pair."""
        adapter = v2_adapter(v2_w3)
        adapter.quote(TOKEN_A, TOKEN_B, AMOUNT)
        adapter.quote(TOKEN_A, TOKEN_B, AMOUNT)
        assert v2_w3.eth.contract.return_value.functions.getPair.call_count == 1

    def test_execution_step(self, v2_w3):
        """Test the swap calldata carries the slippage floor and recipient."""
        adapter = v2_adapter(v2_w3)
        quote = adapter.quote(TOKEN_A, TOKEN_B, AMOUNT)
        step = adapter.build_execution_step(quote, 123, RECIPIENT, 1_700_000_010)

        assert step.target == ROUTER
        assert step.min_amount_out == 123
        amount_in, min_out, path, to, deadline = decode(
            ["uint256", "uint256", "address[]", "address", "uint256"], step.data[4:],
        )
        assert (amount_in, min_out, deadline) == (AMOUNT, 123, 1_700_000_010)
        assert [p.lower() for p in path] == [TOKEN_A, TOKEN_B]
        assert to.lower() == RECIPIENT


class TestStableSwapAdapter:
    """Curve pools quoted through get_dy."""

    BALANCES = (10 ** 24, 10 ** 24)

    @pytest.fixture
    def adapter(self):
        w3 = MagicMock()
        functions = w3.eth.contract.return_value.functions
        functions.balances.side_effect = lambda k: returning(self.BALANCES[k])
        functions.A.return_value = returning(200)
        functions.fee.return_value = returning(4_000_000)

        local = StableSwapPool(self.BALANCES, (1, 1), 200, 4_000_000, 0, 1).amount_out(AMOUNT)
        functions.get_dy.return_value = returning(local)

        venue = VenueConfig(name="curve", kind=VenueKind.STABLE_SWAP, pool=CURVE, coins=(TOKEN_A, TOKEN_B))
        return StableSwapAdapter(w3, venue, clock=ManualClock())

    def test_quote(self, adapter):
        """Test a balanced pool quotes close to one for one."""
        quote = adapter.quote(TOKEN_A, TOKEN_B, AMOUNT)
        assert 99 * AMOUNT // 100 < quote.amount_out < AMOUNT
        assert quote.pool.i == 0 and quote.pool.j == 1
        assert quote.pool_address == CURVE

    def test_unknown_coin(self, adapter):
        """Test a token outside the pool is unsupported."""
        with pytest.raises(PoolNotFound):
            adapter.quote(TOKEN_A, RECIPIENT, AMOUNT)

    def test_execution_step(self, adapter):
        """Test the exchange call uses the pool's coin indices."""
        quote = adapter.quote(TOKEN_A, TOKEN_B, AMOUNT)
        step = adapter.build_execution_step(quote, 77, RECIPIENT, 0)
        i, j, dx, min_dy = decode(["int128", "int128", "uint256", "uint256"], step.data[4:])
        assert (i, j, dx, min_dy) == (0, 1, AMOUNT, 77)
        assert step.target == CURVE


class TestAdapterRegistry:
    """Adapter selection by venue kind."""

    def test_build_adapters(self):
        """Test each venue gets the adapter for its kind."""
        venues = [
            VenueConfig(name="quickswap", kind=VenueKind.CONSTANT_PRODUCT, router=ROUTER, factory=FACTORY),
            VenueConfig(name="curve", kind=VenueKind.STABLE_SWAP, pool=CURVE, coins=(TOKEN_A, TOKEN_B)),
        ]
        adapters = build_adapters(MagicMock(), venues)
        assert isinstance(adapters["quickswap"], ConstantProductAdapter)
        assert isinstance(adapters["curve"], StableSwapAdapter)
