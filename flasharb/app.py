# flasharb/app.py
"""
Engine wiring

Run with: python -m flasharb.app

DRY_RUN_MODE (default on) stops every execution after revalidation.
"""

import logging
import signal
import sys
import threading
from dataclasses import replace
from datetime import datetime
from pathlib import Path

from eth_account import Account
from web3 import Web3

from flasharb.config import (
    CHAIN_ID,
    CHAIN_NAME,
    LOG_DIR,
    LOG_LEVEL,
    QUOTE_TOLERANCE_BPS,
    SETTLEMENT_CONTRACT,
    EngineConfig,
    load_config,
    require_env,
)
from flasharb.dex import build_adapters
from flasharb.engine import ArbitrageEngine
from flasharb.events import LoggingEventSink
from flasharb.executor import ExecutionCoordinator
from flasharb.flash_loan import SettlementClient
from flasharb.gas import GasOracle
from flasharb.guard import ExecutionGuard
from flasharb.opportunity_store import OpportunityStore
from flasharb.oracle import ChainlinkOracle
from flasharb.profit_calculator import ProfitModel
from flasharb.quote_engine import QuoteAggregator
from flasharb.risk import RiskAssessor
from flasharb.rpc_health import find_healthy_rpc
from flasharb.venue_registry import VenueRegistry

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(message)s"


# =============================================================================
# LOGGING SETUP
# =============================================================================

def setup_logging(level: str = LOG_LEVEL, log_dir: Path = LOG_DIR):
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_dir / f"flasharb_{datetime.now().strftime('%Y%m%d')}.log"),
        ],
        force=True,
    )


# =============================================================================
# COMPOSITION
# =============================================================================

def connect() -> Web3:
    w3, rpc_url = find_healthy_rpc()
    if w3 is None:
        raise RuntimeError("No healthy RPC endpoint")

    chain_id = w3.eth.chain_id
    if chain_id != CHAIN_ID:
        raise RuntimeError(f"Connected to chain {chain_id}, expected {CHAIN_ID}")

    logger.info(f"✅ Connected to {CHAIN_NAME} via {rpc_url} (Chain ID: {chain_id})")
    return w3


def build_engine(w3: Web3, account, config: EngineConfig = None) -> ArbitrageEngine:
    config = config or load_config()
    contract = SETTLEMENT_CONTRACT or require_env("SETTLEMENT_CONTRACT")

    settlement = SettlementClient(w3, contract, account)
    profit_settings = replace(config.profit, flash_loan_fee_bps=settlement.get_flash_loan_fee_bps())

    adapters = build_adapters(
        w3,
        config.venues,
        tolerance_bps=QUOTE_TOLERANCE_BPS,
        quote_validity=config.aggregator.quote_validity,
    )
    registry = VenueRegistry(config.venues, config.aggregator)
    aggregator = QuoteAggregator(adapters, registry, config.aggregator)
    oracle = ChainlinkOracle(w3)
    gas_oracle = GasOracle(w3, oracle)
    profit_model = ProfitModel(profit_settings)
    assessor = RiskAssessor(config.risk)
    store = OpportunityStore()
    sink = LoggingEventSink()
    guard = ExecutionGuard(config.guard)

    coordinator = ExecutionCoordinator(
        store=store,
        aggregator=aggregator,
        registry=registry,
        profit_model=profit_model,
        assessor=assessor,
        adapters=adapters,
        settlement=settlement,
        gas_oracle=gas_oracle,
        sink=sink,
        guard=guard,
        settings=config.execution,
    )

    return ArbitrageEngine(
        pairs=config.pairs,
        aggregator=aggregator,
        registry=registry,
        profit_model=profit_model,
        assessor=assessor,
        store=store,
        coordinator=coordinator,
        gas_oracle=gas_oracle,
        sink=sink,
        guard=guard,
        oracle=oracle,
        settings=config.engine,
    )


# =============================================================================
# ENTRY POINT
# =============================================================================

def main():
    setup_logging()
    w3 = connect()
    account = Account.from_key(require_env("PRIVATE_KEY"))
    engine = build_engine(w3, account)

    stop_event = threading.Event()

    def _handle_shutdown(signum, frame):
        logger.info("🛑 Shutdown signal received...")
        stop_event.set()

    signal.signal(signal.SIGINT, _handle_shutdown)
    signal.signal(signal.SIGTERM, _handle_shutdown)

    engine.run(stop_event)


if __name__ == "__main__":
    main()
