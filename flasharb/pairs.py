# flasharb/pairs.py
"""
Token & Venue Registry for Polygon
Venue kinds, addresses and the default pair universe
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from web3 import Web3

from flasharb.config import GAS_ESTIMATES
from flasharb.models import AssetPair, VenueKind

# =============================================================================
# TOKEN ADDRESSES (Polygon Mainnet - All Checksummed)
# =============================================================================

# Stablecoins
USDC_NATIVE = Web3.to_checksum_address("0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359")
USDC_LEGACY = Web3.to_checksum_address("0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174")
USDT = Web3.to_checksum_address("0xc2132D05D31c914a87C6611C10748AEb04B58e8F")
DAI = Web3.to_checksum_address("0x8f3Cf7ad23Cd3CaDbD9735AFf958023239c6A063")

# Native/Wrapped
WMATIC = Web3.to_checksum_address("0x0d500B1d8E8eF31E21C99d1Db9A6444d3ADf1270")
WETH = Web3.to_checksum_address("0x7ceB23fD6bC0adD59E62ac25578270cFf1b9f619")
WBTC = Web3.to_checksum_address("0x1BFD67037B42Cf73acF2047067bd4F2C47D9BfD6")
LINK = Web3.to_checksum_address("0x53E0bca35eC356BD5ddDFebbD1Fc0fD03FaBad39")

WRAPPED_NATIVE = WMATIC

# =============================================================================
# TOKEN METADATA
# =============================================================================

@dataclass(frozen=True)
class TokenInfo:
    address: str
    symbol: str
    decimals: int
    is_stable: bool
    chainlink_feed: Optional[str] = None  # USD-denominated feed


TOKENS: Dict[str, TokenInfo] = {
    USDC_NATIVE: TokenInfo(USDC_NATIVE, "USDC", 6, True, "0xfE4A8cc5b5B2366C1B58Bea3858e81843581b2F7"),
    USDC_LEGACY: TokenInfo(USDC_LEGACY, "USDC.e", 6, True, "0xfE4A8cc5b5B2366C1B58Bea3858e81843581b2F7"),
    USDT: TokenInfo(USDT, "USDT", 6, True, "0x0A6513e40db6EB1b165753AD52E80663aeA50545"),
    DAI: TokenInfo(DAI, "DAI", 18, True, "0x4746DeC9e833A82EC7C2C1356372CcF2cfcD2F3D"),
    WMATIC: TokenInfo(WMATIC, "WMATIC", 18, False, "0xAB594600376Ec9fD91F8e885dADF0CE036862dE0"),
    WETH: TokenInfo(WETH, "WETH", 18, False, "0xF9680D99D6C9589e2a93a78A04A279e509205945"),
    WBTC: TokenInfo(WBTC, "WBTC", 8, False, "0xc907E116054Ad103354f2D350FD2514433D57F6f"),
    LINK: TokenInfo(LINK, "LINK", 18, False, "0xd9FFdb71EbE7496cC440152d43986Aae0AB76665"),
}

# =============================================================================
# VENUES
# =============================================================================

# Uniswap V3 fee tiers in hundredths of a bip
V3_FEE_TIERS = (100, 500, 3000, 10000)


@dataclass(frozen=True)
class VenueConfig:
    """
    Static description of one liquidity venue.

    fee_tiers are bps for constant-product venues and pips for
    concentrated-liquidity venues. Stable-swap pools read their fee
    on-chain and carry a single placeholder tier.
    """
    name: str
    kind: VenueKind
    router: str = ""
    factory: str = ""
    quoter: str = ""
    pool: str = ""
    coins: Tuple[str, ...] = ()
    fee_tiers: Tuple[int, ...] = (0,)
    gas_estimate: int = 0
    use_underlying: bool = False

    def __post_init__(self):
        if not self.gas_estimate:
            object.__setattr__(self, "gas_estimate", GAS_ESTIMATES[self.kind.value])


VENUES: Dict[str, VenueConfig] = {
    "quickswap": VenueConfig(
        name="quickswap",
        kind=VenueKind.CONSTANT_PRODUCT,
        router=Web3.to_checksum_address("0xa5E0829CaCEd8fFDD4De3c43696c57F7D7A678ff"),
        factory=Web3.to_checksum_address("0x5757371414417b8C6CAad45bAeF941aBc7d3Ab32"),
        fee_tiers=(30,),
    ),
    "sushiswap": VenueConfig(
        name="sushiswap",
        kind=VenueKind.CONSTANT_PRODUCT,
        router=Web3.to_checksum_address("0x1b02dA8Cb0d097eB8D57A175b88c7D8b47997506"),
        factory=Web3.to_checksum_address("0xc35DADB65012eC5796536bD9864eD8773aBc74C4"),
        fee_tiers=(30,),
    ),
    "uniswap_v3": VenueConfig(
        name="uniswap_v3",
        kind=VenueKind.CONCENTRATED_LIQUIDITY,
        router=Web3.to_checksum_address("0xE592427A0AEce92De3Edee1F18E0157C05861564"),
        factory=Web3.to_checksum_address("0x1F98431c8aD98523631AE4a59f267346ea31F984"),
        quoter=Web3.to_checksum_address("0x61fFE014bA17989E743c5F6cB21bF9697530B21e"),
        fee_tiers=V3_FEE_TIERS,
    ),
    "curve_aave": VenueConfig(
        name="curve_aave",
        kind=VenueKind.STABLE_SWAP,
        pool=Web3.to_checksum_address("0x445FE580eF8d70FF569aB36e80c647af338db351"),
        coins=(DAI, USDC_LEGACY, USDT),
        use_underlying=True,
    ),
}

# =============================================================================
# PAIR UNIVERSE
# =============================================================================

DEFAULT_PAIRS: List[AssetPair] = [
    AssetPair(WMATIC, USDC_LEGACY, trade_size=1_000 * 10 ** 18, min_profit=10 ** 17),
    AssetPair(WETH, USDC_LEGACY, trade_size=10 ** 18, min_profit=5 * 10 ** 13),
    AssetPair(USDC_LEGACY, USDT, trade_size=10_000 * 10 ** 6, min_profit=100_000),
    AssetPair(DAI, USDC_LEGACY, trade_size=10_000 * 10 ** 18, min_profit=10 ** 17),
    AssetPair(WETH, WBTC, trade_size=10 ** 18, min_profit=5 * 10 ** 13),
]


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def get_token_info(address: str) -> Optional[TokenInfo]:
    """Get token info by address (checksummed or not)"""
    return TOKENS.get(Web3.to_checksum_address(address))


def get_decimals(address: str) -> int:
    info = get_token_info(address)
    return info.decimals if info else 18


def get_symbol(address: str) -> str:
    info = get_token_info(address)
    return info.symbol if info else address[:8]


def pair_label(pair: AssetPair) -> str:
    return f"{get_symbol(pair.base)}/{get_symbol(pair.quote)}"
