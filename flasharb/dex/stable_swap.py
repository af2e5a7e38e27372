# flasharb/dex/stable_swap.py
"""
Stable-swap venues (Curve)
Balances, A and fee are read from the pool and fed to the StableSwap
invariant; get_dy is the external check.
"""

import time
from typing import Callable, Optional, Tuple

from web3 import Web3

from flasharb.amm import StableSwapPool, price_impact_bps
from flasharb.config import QUOTE_TOLERANCE_BPS, QUOTE_VALIDITY_SECONDS
from flasharb.dex.abis import CURVE_POOL_ABI
from flasharb.dex.common import corroborate, encode_call, rpc_call
from flasharb.errors import InsufficientLiquidity, PoolNotFound
from flasharb.models import ExecutionStep, Quote, VenueKind
from flasharb.pairs import VenueConfig, get_decimals


class StableSwapAdapter:

    kind = VenueKind.STABLE_SWAP

    def __init__(
        self,
        w3: Web3,
        venue: VenueConfig,
        tolerance_bps: int = QUOTE_TOLERANCE_BPS,
        quote_validity: float = QUOTE_VALIDITY_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.w3 = w3
        self.venue = venue
        self.name = venue.name
        self.tolerance_bps = tolerance_bps
        self.quote_validity = quote_validity
        self._clock = clock

        self.pool = w3.eth.contract(address=venue.pool, abi=CURVE_POOL_ABI)
        self.coins = tuple(c.lower() for c in venue.coins)
        self.multipliers = tuple(10 ** (18 - get_decimals(c)) for c in venue.coins)

    @property
    def fee_tiers(self) -> Tuple[int, ...]:
        return self.venue.fee_tiers

    def _indices(self, token_in: str, token_out: str) -> Tuple[int, int]:
        try:
            return self.coins.index(token_in.lower()), self.coins.index(token_out.lower())
        except ValueError:
            raise PoolNotFound(self.name, f"{token_in}/{token_out} not in pool") from None

    def read_pool(self, token_in: str, token_out: str) -> StableSwapPool:
        i, j = self._indices(token_in, token_out)
        balances = tuple(
            rpc_call(self.name, self.pool.functions.balances(k)) for k in range(len(self.coins))
        )
        if balances[i] == 0 or balances[j] == 0:
            raise InsufficientLiquidity(self.name, "empty pool balance")

        return StableSwapPool(
            balances=balances,
            multipliers=self.multipliers,
            amp=rpc_call(self.name, self.pool.functions.A()),
            fee=rpc_call(self.name, self.pool.functions.fee()),
            i=i,
            j=j,
        )

    def quote(self, token_in: str, token_out: str, amount_in: int, fee_tier: Optional[int] = None) -> Quote:
        fetched_at = self._clock()

        pool = self.read_pool(token_in, token_out)
        local_out = pool.amount_out(amount_in)

        if self.venue.use_underlying:
            fn = self.pool.functions.get_dy_underlying(pool.i, pool.j, amount_in)
        else:
            fn = self.pool.functions.get_dy(pool.i, pool.j, amount_in)
        external_out = rpc_call(self.name, fn)
        amount_out = corroborate(self.name, external_out, local_out, self.tolerance_bps)

        return Quote(
            venue=self.name,
            kind=self.kind,
            token_in=token_in,
            token_out=token_out,
            amount_in=amount_in,
            amount_out=amount_out,
            price_impact_bps=price_impact_bps(pool, amount_in),
            gas_estimate=self.venue.gas_estimate,
            fetched_at=fetched_at,
            valid_until=fetched_at + self.quote_validity,
            pool=pool,
            fee_tier=self.fee_tiers[0] if fee_tier is None else fee_tier,
            pool_address=self.venue.pool,
            external_amount_out=external_out,
        )

    def build_execution_step(
        self,
        quote: Quote,
        min_amount_out: int,
        recipient: str,
        deadline: int,
    ) -> ExecutionStep:
        # Curve exchanges pay msg.sender; recipient and deadline are enforced by the settlement contract
        i, j = quote.pool.i, quote.pool.j
        method = "exchange_underlying" if self.venue.use_underlying else "exchange"
        data = encode_call(
            f"{method}(int128,int128,uint256,uint256)",
            ["int128", "int128", "uint256", "uint256"],
            [i, j, quote.amount_in, min_amount_out],
        )
        return ExecutionStep(
            venue=self.name,
            target=self.venue.pool,
            data=data,
            token_in=quote.token_in,
            token_out=quote.token_out,
            amount_in=quote.amount_in,
            min_amount_out=min_amount_out,
        )
