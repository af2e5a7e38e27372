# flasharb/dex/constant_product.py
"""
Constant-product venues (QuickSwap, SushiSwap and other Uniswap V2 forks)
Quotes come from router.getAmountsOut and are corroborated against the
pair's reserves.
"""

import threading
import time
from typing import Callable, Dict, Optional, Tuple

from web3 import Web3

from flasharb.amm import ConstantProductPool, price_impact_bps
from flasharb.config import QUOTE_TOLERANCE_BPS, QUOTE_VALIDITY_SECONDS
from flasharb.dex.abis import FACTORY_V2_ABI, PAIR_ABI, ROUTER_V2_ABI
from flasharb.dex.common import ZERO_ADDRESS, checksum, corroborate, encode_call, rpc_call
from flasharb.errors import InsufficientLiquidity, PoolNotFound
from flasharb.models import ExecutionStep, Quote, VenueKind
from flasharb.pairs import VenueConfig

SWAP_SIGNATURE = "swapExactTokensForTokens(uint256,uint256,address[],address,uint256)"


class ConstantProductAdapter:

    kind = VenueKind.CONSTANT_PRODUCT

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

        self.router = w3.eth.contract(address=venue.router, abi=ROUTER_V2_ABI)
        self.factory = w3.eth.contract(address=venue.factory, abi=FACTORY_V2_ABI)
        self._pair_cache: Dict[Tuple[str, str], Tuple[str, str]] = {}
        self._cache_lock = threading.Lock()

    @property
    def fee_tiers(self) -> Tuple[int, ...]:
        return self.venue.fee_tiers

    def get_pair(self, token_a: str, token_b: str) -> Tuple[str, str]:
        """(pair address, token0) with the factory lookup cached"""
        key = tuple(sorted((token_a.lower(), token_b.lower())))
        with self._cache_lock:
            cached = self._pair_cache.get(key)
        if cached:
            return cached

        pair_address = rpc_call(
            self.name,
            self.factory.functions.getPair(checksum(token_a), checksum(token_b)),
        )
        if not pair_address or pair_address == ZERO_ADDRESS:
            raise PoolNotFound(self.name, f"no pair for {token_a}/{token_b}")

        pair = self.w3.eth.contract(address=pair_address, abi=PAIR_ABI)
        token0 = rpc_call(self.name, pair.functions.token0())

        with self._cache_lock:
            self._pair_cache[key] = (pair_address, token0)
        return pair_address, token0

    def read_pool(self, token_in: str, token_out: str, fee_bps: int) -> Tuple[ConstantProductPool, str]:
        pair_address, token0 = self.get_pair(token_in, token_out)
        pair = self.w3.eth.contract(address=pair_address, abi=PAIR_ABI)
        reserve0, reserve1, _ = rpc_call(self.name, pair.functions.getReserves())

        if token0.lower() == token_in.lower():
            reserve_in, reserve_out = reserve0, reserve1
        else:
            reserve_in, reserve_out = reserve1, reserve0

        if reserve_in == 0 or reserve_out == 0:
            raise InsufficientLiquidity(self.name, f"empty reserves in {pair_address}")

        return ConstantProductPool(reserve_in, reserve_out, fee_bps), pair_address

    def quote(self, token_in: str, token_out: str, amount_in: int, fee_tier: Optional[int] = None) -> Quote:
        fee_bps = self.fee_tiers[0] if fee_tier is None else fee_tier
        fetched_at = self._clock()

        pool, pair_address = self.read_pool(token_in, token_out, fee_bps)
        local_out = pool.amount_out(amount_in)

        amounts = rpc_call(
            self.name,
            self.router.functions.getAmountsOut(amount_in, [checksum(token_in), checksum(token_out)]),
        )
        external_out = amounts[-1]
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
            fee_tier=fee_bps,
            pool_address=pair_address,
            external_amount_out=external_out,
        )

    def build_execution_step(
        self,
        quote: Quote,
        min_amount_out: int,
        recipient: str,
        deadline: int,
    ) -> ExecutionStep:
        data = encode_call(
            SWAP_SIGNATURE,
            ["uint256", "uint256", "address[]", "address", "uint256"],
            [
                quote.amount_in,
                min_amount_out,
                [checksum(quote.token_in), checksum(quote.token_out)],
                checksum(recipient),
                deadline,
            ],
        )
        return ExecutionStep(
            venue=self.name,
            target=self.venue.router,
            data=data,
            token_in=quote.token_in,
            token_out=quote.token_out,
            amount_in=quote.amount_in,
            min_amount_out=min_amount_out,
        )
