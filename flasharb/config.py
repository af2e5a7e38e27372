# flasharb/config.py
"""
Engine Configuration
Static thresholds, timeouts and deployment flags, overridable from .env
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Tuple

from dotenv import load_dotenv

# -----------------------------
# Load .env safely
# -----------------------------
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = Path(os.getenv("FLASHARB_ENV_FILE", BASE_DIR / "config" / ".env"))

if ENV_PATH.exists():
    load_dotenv(ENV_PATH)


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value not in (None, "") else default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value not in (None, "") else default


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value in (None, ""):
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def require_env(name: str) -> str:
    """Fetch a setting that live trading cannot run without"""
    value = os.getenv(name)
    if not value:
        raise RuntimeError(f"{name} not set in .env")
    return value


# -----------------------------
# Chain Configuration
# -----------------------------
CHAIN_ID = _env_int("CHAIN_ID", 137)  # Polygon PoS
CHAIN_NAME = "polygon"

# -----------------------------
# RPC Configuration (Multiple for redundancy)
# -----------------------------
RPC_ENDPOINTS = [
    os.getenv("RPC_PRIMARY", "https://polygon-rpc.com"),
    "https://rpc.ankr.com/polygon",
    "https://polygon-bor-rpc.publicnode.com",
]
RPC_REQUEST_TIMEOUT = _env_float("RPC_REQUEST_TIMEOUT", 3.0)  # seconds, HTTP layer

# -----------------------------
# Flash Loan / Settlement (Aave V3 on Polygon)
# -----------------------------
AAVE_POOL_ADDRESS = "0x794a61358D6845594F94dc1DB02A252b5b4814aD"
AAVE_FLASH_LOAN_FEE_BPS = _env_int("AAVE_FLASH_LOAN_FEE_BPS", 5)  # 0.05%
SETTLEMENT_CONTRACT = os.getenv("SETTLEMENT_CONTRACT", "")

# -----------------------------
# Profit Thresholds
# -----------------------------
MIN_PROFIT_BPS = _env_int("MIN_PROFIT_BPS", 10)  # margin on input amount
MAX_PRICE_IMPACT_BPS = _env_int("MAX_PRICE_IMPACT_BPS", 100)  # 1.00% per leg
SIZING_GRID_POINTS = _env_int("SIZING_GRID_POINTS", 16)

# Slippage protection
MAX_SLIPPAGE_BPS = 50
DEFAULT_SLIPPAGE_BPS = min(_env_int("DEFAULT_SLIPPAGE_BPS", 30), MAX_SLIPPAGE_BPS)

# -----------------------------
# Gas Configuration
# -----------------------------
GAS_LIMIT_FLASH_LOAN = 350_000  # borrow + repay overhead, excluding swaps
GAS_ESTIMATES = {
    "constant_product": 130_000,
    "concentrated_liquidity": 180_000,
    "stable_swap": 250_000,
}

# Gas price limits (in Gwei)
MAX_GAS_PRICE_GWEI = _env_int("MAX_GAS_PRICE_GWEI", 500)
TARGET_GAS_PRICE_GWEI = 50  # fallback when the node does not answer
GAS_PRICE_BUFFER_BPS = 1_000  # +10% to land faster

# -----------------------------
# Quote Aggregation
# -----------------------------
QUOTE_REQUEST_TIMEOUT = _env_float("QUOTE_REQUEST_TIMEOUT", 3.0)  # seconds per venue
AGGREGATION_TIMEOUT = _env_float("AGGREGATION_TIMEOUT", 5.0)  # seconds per pair
QUOTE_VALIDITY_SECONDS = _env_float("QUOTE_VALIDITY_SECONDS", 10.0)
QUOTE_CACHE_TTL = _env_float("QUOTE_CACHE_TTL", 3.0)
QUOTE_TOLERANCE_BPS = _env_int("QUOTE_TOLERANCE_BPS", 50)  # external vs local
QUOTE_WORKERS = _env_int("QUOTE_WORKERS", 16)
V3_TICK_WORDS = _env_int("V3_TICK_WORDS", 1)  # bitmap words scanned each side

# Venue circuit breaker
BREAKER_FAILURE_THRESHOLD = _env_int("BREAKER_FAILURE_THRESHOLD", 5)
BREAKER_COOLDOWN_SECONDS = _env_float("BREAKER_COOLDOWN_SECONDS", 60.0)
BREAKER_MAX_COOLDOWN_SECONDS = _env_float("BREAKER_MAX_COOLDOWN_SECONDS", 960.0)
RELIABILITY_WINDOW = 50  # recent outcomes per venue

# -----------------------------
# Risk Scoring
# -----------------------------
RISK_WEIGHTS = {
    "liquidity": 30,
    "impact": 30,
    "reliability": 20,
    "time": 20,
}
RISK_EXECUTE_BELOW = _env_int("RISK_EXECUTE_BELOW", 30)
RISK_SKIP_ABOVE = _env_int("RISK_SKIP_ABOVE", 60)
LIQUIDITY_RISK_FULL_BPS = 500  # trade at 5% of pool depth scores maximum risk

# -----------------------------
# Safety Thresholds
# -----------------------------
MAX_RPC_LATENCY = 2.0  # seconds
MAX_BLOCK_LAG = 5  # blocks
MAX_ORACLE_DEVIATION_BPS = _env_int("MAX_ORACLE_DEVIATION_BPS", 500)
ORACLE_CHECK_ENABLED = _env_bool("ORACLE_CHECK_ENABLED", True)
ORACLE_MAX_AGE_SECONDS = 3600

# Trading circuit breakers
MAX_CONSECUTIVE_FAILURES = _env_int("MAX_CONSECUTIVE_FAILURES", 5)
FAILURE_COOLDOWN_SECONDS = _env_float("FAILURE_COOLDOWN_SECONDS", 300.0)
MAX_DAILY_GAS_LOSS_WEI = _env_int("MAX_DAILY_GAS_LOSS_WEI", 20 * 10 ** 18)
MAX_TRADES_PER_HOUR = _env_int("MAX_TRADES_PER_HOUR", 100)

# -----------------------------
# Execution
# -----------------------------
SUBMISSION_SAFETY_MARGIN = _env_float("SUBMISSION_SAFETY_MARGIN", 1.0)  # seconds
RECEIPT_POLL_INTERVAL = _env_float("RECEIPT_POLL_INTERVAL", 1.0)

# -----------------------------
# Scan Configuration
# -----------------------------
SCAN_INTERVAL_SECONDS = _env_float("SCAN_INTERVAL_SECONDS", 2.0)
PAIR_WORKERS = _env_int("PAIR_WORKERS", 4)
EXECUTION_WORKERS = _env_int("EXECUTION_WORKERS", 4)

# -----------------------------
# Logging & Monitoring
# -----------------------------
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_DIR = BASE_DIR / "logs"
LOG_ALL_QUOTES = _env_bool("LOG_ALL_QUOTES", False)

# -----------------------------
# Deployment Mode
# -----------------------------
DRY_RUN_MODE = _env_bool("DRY_RUN_MODE", True)  # stop after validation


# =============================================================================
# SETTINGS OBJECTS
# =============================================================================

@dataclass(frozen=True)
class AggregatorSettings:
    request_timeout: float = QUOTE_REQUEST_TIMEOUT
    aggregation_timeout: float = AGGREGATION_TIMEOUT
    quote_validity: float = QUOTE_VALIDITY_SECONDS
    cache_ttl: float = QUOTE_CACHE_TTL
    max_workers: int = QUOTE_WORKERS
    breaker_threshold: int = BREAKER_FAILURE_THRESHOLD
    breaker_cooldown: float = BREAKER_COOLDOWN_SECONDS
    breaker_max_cooldown: float = BREAKER_MAX_COOLDOWN_SECONDS
    reliability_window: int = RELIABILITY_WINDOW


@dataclass(frozen=True)
class ProfitSettings:
    min_margin_bps: int = MIN_PROFIT_BPS
    max_price_impact_bps: int = MAX_PRICE_IMPACT_BPS
    flash_loan_fee_bps: int = AAVE_FLASH_LOAN_FEE_BPS
    flash_loan_gas: int = GAS_LIMIT_FLASH_LOAN
    grid_points: int = SIZING_GRID_POINTS


@dataclass(frozen=True)
class RiskSettings:
    weights: Dict[str, int] = field(default_factory=lambda: dict(RISK_WEIGHTS))
    execute_below: int = RISK_EXECUTE_BELOW
    skip_above: int = RISK_SKIP_ABOVE
    liquidity_full_bps: int = LIQUIDITY_RISK_FULL_BPS
    max_price_impact_bps: int = MAX_PRICE_IMPACT_BPS


@dataclass(frozen=True)
class ExecutionSettings:
    slippage_bps: int = DEFAULT_SLIPPAGE_BPS
    safety_margin: float = SUBMISSION_SAFETY_MARGIN
    poll_interval: float = RECEIPT_POLL_INTERVAL
    dry_run: bool = DRY_RUN_MODE


@dataclass(frozen=True)
class GuardSettings:
    max_consecutive_failures: int = MAX_CONSECUTIVE_FAILURES
    failure_cooldown: float = FAILURE_COOLDOWN_SECONDS
    max_daily_gas_loss_wei: int = MAX_DAILY_GAS_LOSS_WEI
    max_trades_per_hour: int = MAX_TRADES_PER_HOUR
    max_gas_price_wei: int = MAX_GAS_PRICE_GWEI * 10 ** 9


@dataclass(frozen=True)
class EngineSettings:
    scan_interval: float = SCAN_INTERVAL_SECONDS
    pair_workers: int = PAIR_WORKERS
    execution_workers: int = EXECUTION_WORKERS
    oracle_check: bool = ORACLE_CHECK_ENABLED
    max_oracle_deviation_bps: int = MAX_ORACLE_DEVIATION_BPS


@dataclass(frozen=True)
class EngineConfig:
    """Read-only bundle handed to the engine at startup"""
    venues: Tuple = ()
    pairs: Tuple = ()
    aggregator: AggregatorSettings = field(default_factory=AggregatorSettings)
    profit: ProfitSettings = field(default_factory=ProfitSettings)
    risk: RiskSettings = field(default_factory=RiskSettings)
    execution: ExecutionSettings = field(default_factory=ExecutionSettings)
    guard: GuardSettings = field(default_factory=GuardSettings)
    engine: EngineSettings = field(default_factory=EngineSettings)


def load_config(venues=None, pairs=None) -> EngineConfig:
    """Assemble the engine config from the registry and environment"""
    from flasharb.pairs import DEFAULT_PAIRS, VENUES

    return EngineConfig(
        venues=tuple(VENUES.values()) if venues is None else tuple(venues),
        pairs=tuple(DEFAULT_PAIRS) if pairs is None else tuple(pairs),
    )
