# flasharb/dex/registry.py
"""
Venue adapter selection by kind tag

Every adapter exposes the same surface:
    name, kind, fee_tiers
    quote(token_in, token_out, amount_in, fee_tier=None) -> Quote
    build_execution_step(quote, min_amount_out, recipient, deadline) -> ExecutionStep
"""

from typing import Dict, Iterable

from web3 import Web3

from flasharb.dex.concentrated import ConcentratedLiquidityAdapter
from flasharb.dex.constant_product import ConstantProductAdapter
from flasharb.dex.stable_swap import StableSwapAdapter
from flasharb.models import VenueKind
from flasharb.pairs import VenueConfig

ADAPTERS = {
    VenueKind.CONSTANT_PRODUCT: ConstantProductAdapter,
    VenueKind.CONCENTRATED_LIQUIDITY: ConcentratedLiquidityAdapter,
    VenueKind.STABLE_SWAP: StableSwapAdapter,
}


def make_adapter(w3: Web3, venue: VenueConfig, **kwargs):
    try:
        adapter_cls = ADAPTERS[venue.kind]
    except KeyError:
        raise ValueError(f"No adapter for venue kind {venue.kind}") from None
    return adapter_cls(w3, venue, **kwargs)


def build_adapters(w3: Web3, venues: Iterable[VenueConfig], **kwargs) -> Dict:
    return {venue.name: make_adapter(w3, venue, **kwargs) for venue in venues}
