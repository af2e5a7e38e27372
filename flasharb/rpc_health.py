# flasharb/rpc_health.py
"""
RPC Health Monitoring
Checks node latency and head freshness, fails over across endpoints
"""

import logging
import time
from typing import List, Optional, Tuple

from web3 import Web3
from web3.middleware import ExtraDataToPOAMiddleware

from flasharb.config import MAX_BLOCK_LAG, MAX_RPC_LATENCY, RPC_ENDPOINTS, RPC_REQUEST_TIMEOUT

logger = logging.getLogger(__name__)

POLYGON_BLOCK_TIME = 2  # seconds


def make_web3(rpc_url: str, timeout: float = RPC_REQUEST_TIMEOUT) -> Web3:
    w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))
    w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
    return w3


class RPCHealth:
    """
    Monitor RPC health and provide failover
    """

    def __init__(self, rpc_url: str = None, w3: Web3 = None):
        self.rpc_url = rpc_url or RPC_ENDPOINTS[0]
        self.w3 = w3 or make_web3(self.rpc_url)

        if not self.w3.is_connected():
            raise RuntimeError(f"RPC not connected: {self.rpc_url}")

    def check(self) -> Tuple[bool, str]:
        """
        Check RPC health
        Returns (is_healthy, status_message)
        """
        try:
            start = time.time()
            block = self.w3.eth.get_block("latest")
            latency = time.time() - start

            # head timestamp behind wall clock, in blocks
            lag = max(int(time.time()) - block["timestamp"], 0) // POLYGON_BLOCK_TIME

            if latency > MAX_RPC_LATENCY:
                return False, f"High latency {latency:.2f}s"

            if lag > MAX_BLOCK_LAG:
                return False, f"Block lag {lag}"

            return True, f"OK (latency={latency:.2f}s, block={block['number']})"

        except Exception as e:
            return False, str(e)


def find_healthy_rpc(endpoints: List[str] = None) -> Tuple[Optional[Web3], Optional[str]]:
    """
    Find a healthy RPC from the list of endpoints
    Returns (Web3 instance, rpc_url) or (None, None) if all fail
    """
    for rpc_url in endpoints or RPC_ENDPOINTS:
        try:
            rpc = RPCHealth(rpc_url)
        except Exception as e:
            logger.warning(f"RPC {rpc_url} unreachable: {e}")
            continue
        ok, status = rpc.check()
        if ok:
            logger.info(f"RPC {rpc_url}: {status}")
            return rpc.w3, rpc_url
        logger.warning(f"RPC {rpc_url} unhealthy: {status}")

    return None, None
