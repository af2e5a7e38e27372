# flasharb/oracle.py
"""
Chainlink Reference Prices
Used to convert gas into the borrowed token and to reject venue quotes
that stray too far from the oracle cross rate.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from web3 import Web3

from flasharb.config import ORACLE_MAX_AGE_SECONDS
from flasharb.errors import OracleUnavailable
from flasharb.models import BPS
from flasharb.pairs import WRAPPED_NATIVE, get_decimals, get_symbol, get_token_info

logger = logging.getLogger(__name__)

# --------- Chainlink Aggregator ABI (minimal) ---------
AGGREGATOR_ABI = [
    {
        "name": "latestRoundData",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [
            {"name": "roundId", "type": "uint80"},
            {"name": "answer", "type": "int256"},
            {"name": "startedAt", "type": "uint256"},
            {"name": "updatedAt", "type": "uint256"},
            {"name": "answeredInRound", "type": "uint80"},
        ],
    },
    {
        "name": "decimals",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint8"}],
    },
]


@dataclass(frozen=True)
class FeedPrice:
    """USD price as Chainlink reports it: answer / 10**decimals"""
    answer: int
    decimals: int
    updated_at: int


class ChainlinkOracle:

    def __init__(
        self,
        w3: Web3,
        max_age: int = ORACLE_MAX_AGE_SECONDS,
        cache_ttl: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ):
        self.w3 = w3
        self.max_age = max_age
        self.cache_ttl = cache_ttl
        self._clock = clock
        self._wall_clock = wall_clock
        self._cache: Dict[str, Tuple[FeedPrice, float]] = {}
        self._lock = threading.Lock()

    def has_feed(self, token: str) -> bool:
        info = get_token_info(token)
        return bool(info and info.chainlink_feed)

    def price(self, token: str) -> FeedPrice:
        info = get_token_info(token)
        if not info or not info.chainlink_feed:
            raise OracleUnavailable(f"No Chainlink feed for {get_symbol(token)}")

        now = self._clock()
        with self._lock:
            cached = self._cache.get(info.chainlink_feed)
        if cached and now - cached[1] < self.cache_ttl:
            return cached[0]

        try:
            feed = self.w3.eth.contract(address=info.chainlink_feed, abi=AGGREGATOR_ABI)
            _, answer, _, updated_at, _ = feed.functions.latestRoundData().call()
            decimals = feed.functions.decimals().call()
        except Exception as e:
            raise OracleUnavailable(f"Chainlink read failed for {info.symbol}: {e}") from e

        if answer <= 0:
            raise OracleUnavailable(f"Non-positive oracle answer for {info.symbol}")
        if self._wall_clock() - updated_at > self.max_age:
            raise OracleUnavailable(f"Stale oracle price for {info.symbol}")

        price = FeedPrice(answer=answer, decimals=decimals, updated_at=updated_at)
        with self._lock:
            self._cache[info.chainlink_feed] = (price, now)
        return price

    def token_per_native(self, token: str) -> int:
        """Smallest units of `token` worth one whole native coin"""
        if token.lower() == WRAPPED_NATIVE.lower():
            return 10 ** 18
        native = self.price(WRAPPED_NATIVE)
        quoted = self.price(token)
        return (
            10 ** get_decimals(token) * native.answer * 10 ** quoted.decimals
            // (quoted.answer * 10 ** native.decimals)
        )

    def deviation_bps(self, token_in: str, token_out: str, amount_in: int, amount_out: int) -> Optional[int]:
        """
        How far a quoted amount_in -> amount_out rate sits from the oracle
        cross rate. None when either token has no feed.
        """
        if amount_in <= 0 or not (self.has_feed(token_in) and self.has_feed(token_out)):
            return None
        p_in = self.price(token_in)
        p_out = self.price(token_out)

        expected = (
            amount_in * p_in.answer * 10 ** p_out.decimals * 10 ** get_decimals(token_out)
        )
        scale = p_out.answer * 10 ** p_in.decimals * 10 ** get_decimals(token_in)
        quoted = amount_out * scale
        return abs(quoted - expected) * BPS // expected
