"""Shared fakes and fixtures for the engine tests."""

import threading
import time
from types import SimpleNamespace

import pytest

from flasharb.amm import ConstantProductPool, price_impact_bps
from flasharb.config import AggregatorSettings, ExecutionSettings, ProfitSettings, RiskSettings
from flasharb.errors import InsufficientLiquidity, PoolNotFound
from flasharb.executor import ExecutionCoordinator
from flasharb.gas import GasQuote
from flasharb.models import AssetPair, ExecutionStep, Quote, VenueKind
from flasharb.opportunity_store import OpportunityStore
from flasharb.pairs import VenueConfig
from flasharb.profit_calculator import ProfitModel
from flasharb.quote_engine import QuoteAggregator
from flasharb.risk import RiskAssessor
from flasharb.venue_registry import VenueRegistry

TOKEN_A = "0x" + "1" * 40
TOKEN_B = "0x" + "2" * 40
ROUTER = "0x" + "9" * 40

ONE_A = 10 ** 18


class ManualClock:
    """Monotonic clock that only moves when told to"""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds

    sleep = advance


class FakeAdapter:
    """
    Venue adapter serving quotes from in-memory pool snapshots.

    pools maps (token_in, token_out) or (token_in, token_out, tier) to a pool.
    """

    def __init__(
        self,
        name,
        pools=None,
        fee_tiers=(30,),
        kind=VenueKind.CONSTANT_PRODUCT,
        gas_estimate=130_000,
        clock=None,
        validity=10.0,
    ):
        self.name = name
        self.kind = kind
        self.pools = dict(pools or {})
        self.fee_tiers = tuple(fee_tiers)
        self.gas_estimate = gas_estimate
        self.clock = clock or time.monotonic
        self.validity = validity
        self.error = None
        self.delay = 0.0
        self.calls = 0
        self._lock = threading.Lock()

    def _pool(self, token_in, token_out, tier):
        for key in ((token_in, token_out, tier), (token_in, token_out)):
            if key in self.pools:
                return self.pools[key]
        raise PoolNotFound(self.name, f"no pool for tier {tier}")

    def quote(self, token_in, token_out, amount_in, fee_tier=None):
        with self._lock:
            self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error

        tier = self.fee_tiers[0] if fee_tier is None else fee_tier
        pool = self._pool(token_in, token_out, tier)
        amount_out = pool.amount_out(amount_in)
        if amount_out <= 0:
            raise InsufficientLiquidity(self.name, "zero output")

        now = self.clock()
        return Quote(
            venue=self.name,
            kind=self.kind,
            token_in=token_in,
            token_out=token_out,
            amount_in=amount_in,
            amount_out=amount_out,
            price_impact_bps=price_impact_bps(pool, amount_in),
            gas_estimate=self.gas_estimate,
            fetched_at=now,
            valid_until=now + self.validity,
            pool=pool,
            fee_tier=tier,
            external_amount_out=amount_out,
        )

    def build_execution_step(self, quote, min_amount_out, recipient, deadline):
        return ExecutionStep(
            venue=self.name,
            target=ROUTER,
            data=b"\x01\x02",
            token_in=quote.token_in,
            token_out=quote.token_out,
            amount_in=quote.amount_in,
            min_amount_out=min_amount_out,
        )


class FakeSettlement:
    """Settlement client returning scripted receipts"""

    address = "0x" + "5" * 40

    def __init__(self, receipts=None, submit_error=None):
        self.receipts = list(receipts or [])
        self.submit_error = submit_error
        self.submitted = []
        self.polls = 0

    def submit(self, plan, gas_price, gas_limit):
        if self.submit_error is not None:
            raise self.submit_error
        self.submitted.append((plan, gas_price, gas_limit))
        return "0x" + "ab" * 32

    def get_receipt(self, tx_hash):
        self.polls += 1
        if not self.receipts:
            return None
        return self.receipts.pop(0)


class FakeGasOracle:
    """1 gwei, base token priced 1:1 with the native coin"""

    def __init__(self, gas_price_wei=10 ** 9, token_per_native=10 ** 18):
        self.gas_price_wei = gas_price_wei
        self.token_per_native = token_per_native

    def quote(self, token):
        return GasQuote(
            gas_price_wei=self.gas_price_wei,
            token_per_native=self.token_per_native,
            network_gas_price_wei=self.gas_price_wei,
        )


class RecordingSink:

    def __init__(self):
        self.ticks = []
        self.executions = []
        self.notifications = []

    def record_tick(self, stats):
        self.ticks.append(stats)

    def record_execution(self, record):
        self.executions.append(record)

    def notify(self, message, **fields):
        self.notifications.append((message, fields))


def make_quote(venue, pool, token_in, token_out, amount_in, now, validity=10.0, gas_estimate=130_000):
    return Quote(
        venue=venue,
        kind=pool.kind,
        token_in=token_in,
        token_out=token_out,
        amount_in=amount_in,
        amount_out=pool.amount_out(amount_in),
        price_impact_bps=price_impact_bps(pool, amount_in),
        gas_estimate=gas_estimate,
        fetched_at=now,
        valid_until=now + validity,
        pool=pool,
        fee_tier=pool.fee_bps if hasattr(pool, "fee_bps") else 0,
    )


def venue_config(name, kind=VenueKind.CONSTANT_PRODUCT):
    return VenueConfig(name=name, kind=kind, fee_tiers=(30,), gas_estimate=130_000)


# =============================================================================
# TWO-VENUE POOLS (~1% SPREAD)
# =============================================================================

def cheap_pool():
    """Venue X: 1.000 A buys ~2,000 B"""
    return ConstantProductPool(reserve_in=10 ** 24, reserve_out=2 * 10 ** 27, fee_bps=0)


def rich_pool():
    """Venue Y: 2,000 B sells for ~1.010 A"""
    return ConstantProductPool(reserve_in=2 * 10 ** 27, reserve_out=101 * 10 ** 22, fee_bps=0)


def flat_pool():
    """2,000 B sells for ~1.000 A, no spread against cheap_pool"""
    return ConstantProductPool(reserve_in=2 * 10 ** 27, reserve_out=10 ** 24, fee_bps=0)


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def pair():
    return AssetPair(TOKEN_A, TOKEN_B, trade_size=ONE_A, min_profit=10 ** 15, max_amount=ONE_A)


@pytest.fixture
def profit_model():
    return ProfitModel(ProfitSettings(
        min_margin_bps=10,
        max_price_impact_bps=100,
        flash_loan_fee_bps=5,
        flash_loan_gas=350_000,
        grid_points=16,
    ))


@pytest.fixture
def assessor():
    return RiskAssessor(RiskSettings())


@pytest.fixture
def scenario(clock, pair, profit_model, assessor):
    """Two venues with a ~1% round-trip spread, fully wired"""
    x = FakeAdapter("x", {(TOKEN_A, TOKEN_B): cheap_pool(), (TOKEN_B, TOKEN_A): flat_pool()}, clock=clock)
    y = FakeAdapter("y", {(TOKEN_A, TOKEN_B): cheap_pool(), (TOKEN_B, TOKEN_A): rich_pool()}, clock=clock)
    adapters = {"x": x, "y": y}

    settings = AggregatorSettings(
        request_timeout=2.0,
        aggregation_timeout=5.0,
        quote_validity=10.0,
        cache_ttl=3.0,
        max_workers=4,
        breaker_threshold=5,
        breaker_cooldown=60.0,
        breaker_max_cooldown=960.0,
        reliability_window=50,
    )
    registry = VenueRegistry([venue_config("x"), venue_config("y")], settings, clock=clock)
    aggregator = QuoteAggregator(adapters, registry, settings, clock=clock)
    store = OpportunityStore(clock=clock)
    sink = RecordingSink()
    gas_oracle = FakeGasOracle()

    def detect():
        """Price X -> Y, score it and offer it to the store"""
        buy = x.quote(TOKEN_A, TOKEN_B, pair.trade_size)
        sell = y.quote(TOKEN_B, TOKEN_A, buy.amount_out)
        evaluation = profit_model.evaluate(pair, buy, sell, gas_oracle.quote(TOKEN_A), clock())
        assert evaluation.ok, evaluation.reason
        assessment = assessor.assess(
            evaluation.opportunity,
            registry.reliability_pct("x"),
            registry.reliability_pct("y"),
            clock(),
        )
        opportunity = assessor.apply(evaluation.opportunity, assessment)
        store.offer(opportunity)
        return opportunity

    def coordinator(settlement, dry_run=False, guard=None):
        return ExecutionCoordinator(
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
            settings=ExecutionSettings(slippage_bps=30, safety_margin=1.0, poll_interval=1.0, dry_run=dry_run),
            clock=clock,
            wall_clock=lambda: 1_700_000_000.0,
            sleep=clock.sleep,
        )

    yield SimpleNamespace(
        clock=clock,
        pair=pair,
        x=x,
        y=y,
        adapters=adapters,
        registry=registry,
        aggregator=aggregator,
        store=store,
        sink=sink,
        gas_oracle=gas_oracle,
        profit_model=profit_model,
        assessor=assessor,
        detect=detect,
        coordinator=coordinator,
    )
    aggregator.shutdown()

