# flasharb/models.py
"""
Core data model shared by every engine component

All monetary amounts are integers in the token's smallest unit.
Ratios are integers in basis points.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, List, Optional

BPS = 10_000


# =============================================================================
# ENUMS
# =============================================================================

class VenueKind(Enum):
    CONSTANT_PRODUCT = "constant_product"
    CONCENTRATED_LIQUIDITY = "concentrated_liquidity"
    STABLE_SWAP = "stable_swap"


class OpportunityState(Enum):
    DETECTED = "detected"
    VALIDATED = "validated"
    SUBMITTED = "submitted"
    CONFIRMING = "confirming"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    ABORTED = "aborted"


class Recommendation(Enum):
    EXECUTE = "execute"
    WAIT = "wait"
    SKIP = "skip"


class Outcome(Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ABORTED = "aborted"


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass(frozen=True)
class AssetPair:
    """A tradeable pair: borrow `base`, route through `quote`, repay in `base`"""
    base: str
    quote: str
    trade_size: int  # sizing hint, base units
    min_profit: int  # absolute floor, base units
    max_amount: Optional[int] = None  # flash loan cap, base units
    min_amount: int = 1

    @property
    def key(self) -> str:
        return f"{self.base.lower()}:{self.quote.lower()}"


@dataclass(frozen=True)
class Quote:
    """Single venue quote, corroborated against local pool math"""
    venue: str
    kind: VenueKind
    token_in: str
    token_out: str
    amount_in: int
    amount_out: int
    price_impact_bps: int
    gas_estimate: int
    fetched_at: float
    valid_until: float
    pool: Any  # amm snapshot used for sizing
    fee_tier: int = 0
    pool_address: str = ""
    external_amount_out: int = 0

    def __post_init__(self):
        if self.valid_until <= self.fetched_at:
            raise ValueError("quote must expire after it was fetched")

    def is_stale(self, now: float) -> bool:
        return now > self.valid_until


@dataclass(frozen=True)
class Opportunity:
    """Sized two-leg arbitrage candidate"""
    opportunity_id: str
    pair: AssetPair
    buy_quote: Quote  # base -> quote
    sell_quote: Quote  # quote -> base
    optimal_amount: int
    intermediate_amount: int
    gross_output: int
    gross_spread_bps: int
    gas_cost: int
    flash_loan_fee: int
    net_profit: int
    margin_bps: int
    buy_impact_bps: int
    sell_impact_bps: int
    detected_at: float
    deadline: float
    coverage_bps: int = BPS
    risk_score: int = 0
    recommendation: Optional[Recommendation] = None
    state: OpportunityState = OpportunityState.DETECTED

    @property
    def venues(self) -> tuple:
        return (self.buy_quote.venue, self.sell_quote.venue)

    def is_expired(self, now: float) -> bool:
        return now > self.deadline


@dataclass(frozen=True)
class ExecutionStep:
    """One swap leg handed to the settlement contract"""
    venue: str
    target: str
    data: bytes
    token_in: str
    token_out: str
    amount_in: int
    min_amount_out: int


@dataclass(frozen=True)
class ExecutionPlan:
    """Flash-loan-backed transaction parameters: borrow, legs, repay"""
    opportunity_id: str
    asset: str
    amount: int
    steps: List[ExecutionStep]
    deadline: int  # unix seconds, enforced on-chain


@dataclass(frozen=True)
class SettlementReceipt:
    tx_hash: str
    status: int
    gas_used: int
    effective_gas_price: int = 0
    profit: Optional[int] = None
    block_number: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == 1


@dataclass(frozen=True)
class ExecutionRecord:
    """Immutable outcome of one execution attempt"""
    opportunity_id: str
    pair_key: str
    outcome: Outcome
    final_state: OpportunityState
    expected_profit: int
    actual_profit: Optional[int] = None
    gas_used: int = 0
    gas_cost_wei: int = 0
    tx_hash: Optional[str] = None
    reason: str = ""
    started_at: float = 0.0
    finished_at: float = 0.0
    venues: tuple = field(default_factory=tuple)

    @property
    def duration_ms(self) -> float:
        return (self.finished_at - self.started_at) * 1000

    def to_event(self) -> dict:
        event = asdict(self)
        event["outcome"] = self.outcome.value
        event["final_state"] = self.final_state.value
        event["duration_ms"] = round(self.duration_ms, 1)
        event["venues"] = list(self.venues)
        return event
