# flasharb/dex/common.py
"""Helpers shared by the venue adapters"""

from eth_abi import encode
from web3 import Web3

from flasharb.errors import InsufficientLiquidity, QuoteMismatch, VenueUnavailable
from flasharb.models import BPS

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def rpc_call(venue: str, fn):
    """Run a contract call, mapping any transport/decoding error to VenueUnavailable"""
    try:
        return fn.call()
    except Exception as e:
        raise VenueUnavailable(venue, f"{type(e).__name__}: {e}") from e


def corroborate(venue: str, external: int, local: int, tolerance_bps: int) -> int:
    """
    Cross-check the venue's own quote against the local recomputation.
    Returns the lower of the two.
    """
    if external <= 0 or local <= 0:
        raise InsufficientLiquidity(venue, f"zero output (external={external}, local={local})")

    deviation_bps = abs(external - local) * BPS // max(external, local)
    if deviation_bps > tolerance_bps:
        raise QuoteMismatch(
            venue,
            f"external {external} vs local {local} differ by {deviation_bps} bps",
        )
    return min(external, local)


def encode_call(signature: str, types: list, values: list) -> bytes:
    """4-byte selector followed by ABI-encoded arguments"""
    return bytes(Web3.keccak(text=signature)[:4]) + encode(types, values)


def checksum(address: str) -> str:
    return Web3.to_checksum_address(address)
