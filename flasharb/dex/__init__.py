# flasharb/dex/__init__.py
"""Venue adapters: one variant per venue kind"""

from flasharb.dex.concentrated import ConcentratedLiquidityAdapter
from flasharb.dex.constant_product import ConstantProductAdapter
from flasharb.dex.registry import ADAPTERS, build_adapters, make_adapter
from flasharb.dex.stable_swap import StableSwapAdapter

__all__ = [
    "ADAPTERS",
    "ConcentratedLiquidityAdapter",
    "ConstantProductAdapter",
    "StableSwapAdapter",
    "build_adapters",
    "make_adapter",
]
