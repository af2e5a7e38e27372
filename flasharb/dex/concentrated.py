# flasharb/dex/concentrated.py
"""
Concentrated-liquidity venues (Uniswap V3)

Reads slot0, active liquidity and the initialized ticks around the current
price, replays the swap locally across tick boundaries and checks the
result against QuoterV2.
"""

import threading
import time
from typing import Callable, Dict, Optional, Tuple

from web3 import Web3

from flasharb.amm import ConcentratedPool, price_impact_bps
from flasharb.config import QUOTE_TOLERANCE_BPS, QUOTE_VALIDITY_SECONDS, V3_TICK_WORDS
from flasharb.dex.abis import FACTORY_V3_ABI, POOL_V3_ABI, QUOTER_V2_ABI
from flasharb.dex.common import ZERO_ADDRESS, checksum, corroborate, encode_call, rpc_call
from flasharb.errors import InsufficientLiquidity, PoolNotFound
from flasharb.models import ExecutionStep, Quote, VenueKind
from flasharb.pairs import VenueConfig

EXACT_INPUT_SINGLE = "exactInputSingle((address,address,uint24,address,uint256,uint256,uint256,uint160))"


class ConcentratedLiquidityAdapter:

    kind = VenueKind.CONCENTRATED_LIQUIDITY

    def __init__(
        self,
        w3: Web3,
        venue: VenueConfig,
        tolerance_bps: int = QUOTE_TOLERANCE_BPS,
        quote_validity: float = QUOTE_VALIDITY_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        tick_words: int = V3_TICK_WORDS,
    ):
        self.w3 = w3
        self.venue = venue
        self.name = venue.name
        self.tolerance_bps = tolerance_bps
        self.quote_validity = quote_validity
        self.tick_words = tick_words
        self._clock = clock

        self.factory = w3.eth.contract(address=venue.factory, abi=FACTORY_V3_ABI)
        self.quoter = w3.eth.contract(address=venue.quoter, abi=QUOTER_V2_ABI)
        # (sorted tokens, fee) -> (pool address, token0, tick spacing)
        self._pool_cache: Dict[Tuple[str, str, int], Tuple[str, str, int]] = {}
        self._cache_lock = threading.Lock()

    @property
    def fee_tiers(self) -> Tuple[int, ...]:
        return self.venue.fee_tiers

    def get_pool(self, token_a: str, token_b: str, fee: int) -> Tuple[str, str, int]:
        t0, t1 = sorted((token_a.lower(), token_b.lower()))
        key = (t0, t1, fee)
        with self._cache_lock:
            cached = self._pool_cache.get(key)
        if cached:
            return cached

        pool_address = rpc_call(
            self.name,
            self.factory.functions.getPool(checksum(token_a), checksum(token_b), fee),
        )
        if not pool_address or pool_address == ZERO_ADDRESS:
            raise PoolNotFound(self.name, f"no {fee} pool for {token_a}/{token_b}")

        pool = self.w3.eth.contract(address=pool_address, abi=POOL_V3_ABI)
        token0 = rpc_call(self.name, pool.functions.token0())
        spacing = rpc_call(self.name, pool.functions.tickSpacing())

        with self._cache_lock:
            self._pool_cache[key] = (pool_address, token0, spacing)
        return pool_address, token0, spacing

    def _load_ticks(self, pool, tick: int, spacing: int) -> Tuple[Tuple[int, int], ...]:
        """Initialized ticks within tick_words bitmap words of the current tick"""
        if self.tick_words <= 0:
            return ()
        word = (tick // spacing) >> 8
        ticks = []
        for position in range(word - self.tick_words, word + self.tick_words + 1):
            bitmap = rpc_call(self.name, pool.functions.tickBitmap(position))
            if not bitmap:
                continue
            for bit in range(256):
                if bitmap >> bit & 1:
                    initialized = ((position << 8) + bit) * spacing
                    info = rpc_call(self.name, pool.functions.ticks(initialized))
                    ticks.append((initialized, info[1]))
        return tuple(sorted(ticks))

    def read_pool(self, token_in: str, token_out: str, fee: int) -> Tuple[ConcentratedPool, str]:
        pool_address, token0, spacing = self.get_pool(token_in, token_out, fee)
        pool = self.w3.eth.contract(address=pool_address, abi=POOL_V3_ABI)

        slot0 = rpc_call(self.name, pool.functions.slot0())
        sqrt_price_x96, tick = slot0[0], slot0[1]
        liquidity = rpc_call(self.name, pool.functions.liquidity())
        if liquidity == 0 or sqrt_price_x96 == 0:
            raise InsufficientLiquidity(self.name, f"no active liquidity in {pool_address}")

        snapshot = ConcentratedPool(
            sqrt_price_x96=sqrt_price_x96,
            liquidity=liquidity,
            fee_pips=fee,
            zero_for_one=token_in.lower() == token0.lower(),
            ticks=self._load_ticks(pool, tick, spacing),
        )
        return snapshot, pool_address

    def quote(self, token_in: str, token_out: str, amount_in: int, fee_tier: Optional[int] = None) -> Quote:
        fee = self.fee_tiers[0] if fee_tier is None else fee_tier
        fetched_at = self._clock()

        pool, pool_address = self.read_pool(token_in, token_out, fee)
        local_out = pool.amount_out(amount_in)

        external_out, _, _, gas_estimate = rpc_call(
            self.name,
            self.quoter.functions.quoteExactInputSingle(
                (checksum(token_in), checksum(token_out), amount_in, fee, 0)
            ),
        )
        amount_out = corroborate(self.name, external_out, local_out, self.tolerance_bps)

        return Quote(
            venue=self.name,
            kind=self.kind,
            token_in=token_in,
            token_out=token_out,
            amount_in=amount_in,
            amount_out=amount_out,
            price_impact_bps=price_impact_bps(pool, amount_in),
            gas_estimate=max(gas_estimate, self.venue.gas_estimate),
            fetched_at=fetched_at,
            valid_until=fetched_at + self.quote_validity,
            pool=pool,
            fee_tier=fee,
            pool_address=pool_address,
            external_amount_out=external_out,
        )

    def build_execution_step(
        self,
        quote: Quote,
        min_amount_out: int,
        recipient: str,
        deadline: int,
    ) -> ExecutionStep:
        params = (
            checksum(quote.token_in),
            checksum(quote.token_out),
            quote.fee_tier,
            checksum(recipient),
            deadline,
            quote.amount_in,
            min_amount_out,
            0,  # no price limit, min_amount_out guards the leg
        )
        data = encode_call(
            EXACT_INPUT_SINGLE,
            ["(address,address,uint24,address,uint256,uint256,uint256,uint160)"],
            [params],
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
