# flasharb/gas.py
"""Gas pricing and conversion of gas cost into the borrowed token"""

import logging
from dataclasses import dataclass

from web3 import Web3

from flasharb.config import GAS_PRICE_BUFFER_BPS, MAX_GAS_PRICE_GWEI, TARGET_GAS_PRICE_GWEI
from flasharb.models import BPS

logger = logging.getLogger(__name__)

WEI_PER_NATIVE = 10 ** 18


@dataclass(frozen=True)
class GasQuote:
    """
    gas_price_wei is what a transaction will bid; network_gas_price_wei is
    the raw node answer the execution guard compares against its cap.
    """
    gas_price_wei: int
    token_per_native: int  # smallest token units per 1 native coin
    network_gas_price_wei: int = 0

    def cost_in_token(self, gas_units: int) -> int:
        wei = gas_units * self.gas_price_wei
        return -(-wei * self.token_per_native // WEI_PER_NATIVE)


class GasOracle:

    def __init__(
        self,
        w3: Web3,
        oracle,
        max_gas_price_gwei: int = MAX_GAS_PRICE_GWEI,
        fallback_gas_price_gwei: int = TARGET_GAS_PRICE_GWEI,
        buffer_bps: int = GAS_PRICE_BUFFER_BPS,
    ):
        self.w3 = w3
        self.oracle = oracle
        self.max_gas_price_wei = max_gas_price_gwei * 10 ** 9
        self.fallback_gas_price_wei = fallback_gas_price_gwei * 10 ** 9
        self.buffer_bps = buffer_bps

    def network_gas_price(self) -> int:
        try:
            return self.w3.eth.gas_price
        except Exception as e:
            logger.warning(f"Gas price read failed, using fallback: {e}")
            return self.fallback_gas_price_wei

    def bid_gas_price(self, network_price: int) -> int:
        """Network price plus buffer, capped at the configured maximum"""
        if network_price > self.max_gas_price_wei:
            logger.warning(
                f"Gas price {network_price / 10**9:.1f} gwei exceeds max "
                f"{self.max_gas_price_wei / 10**9:.0f}"
            )
            return self.max_gas_price_wei
        return min(network_price * (BPS + self.buffer_bps) // BPS, self.max_gas_price_wei)

    def quote(self, token: str) -> GasQuote:
        network_price = self.network_gas_price()
        return GasQuote(
            gas_price_wei=self.bid_gas_price(network_price),
            token_per_native=self.oracle.token_per_native(token),
            network_gas_price_wei=network_price,
        )
