# flasharb/__init__.py
"""
Flash-Loan Arbitrage Engine
Cross-venue DEX arbitrage on Polygon, settled atomically through an Aave V3 flash loan

Modules:
- config: Configuration and environment
- pairs: Token and venue registry
- amm: Pool math for each venue kind
- dex: Venue adapters
- quote_engine: Multi-venue quote aggregation
- profit_calculator: Net profit and trade sizing
- risk: Risk scoring
- opportunity_store: Live opportunities per pair
- executor: Execution state machine
- flash_loan: Settlement contract client
- engine: Scheduler
- app: Wiring and entry point
"""

__version__ = "1.0.0"

from flasharb.config import CHAIN_ID, DRY_RUN_MODE
from flasharb.models import (
    AssetPair,
    ExecutionRecord,
    Opportunity,
    OpportunityState,
    Quote,
    Recommendation,
    VenueKind,
)
from flasharb.pairs import DEFAULT_PAIRS, VENUES

__all__ = [
    "CHAIN_ID",
    "DRY_RUN_MODE",
    "AssetPair",
    "ExecutionRecord",
    "Opportunity",
    "OpportunityState",
    "Quote",
    "Recommendation",
    "VenueKind",
    "DEFAULT_PAIRS",
    "VENUES",
]
