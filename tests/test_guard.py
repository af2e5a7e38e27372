"""Tests for the trading circuit breaker."""

import pytest

from conftest import ManualClock

from flasharb.config import GuardSettings
from flasharb.guard import ExecutionGuard
from flasharb.models import ExecutionRecord, OpportunityState, Outcome

STATES = {
    Outcome.SUCCEEDED: OpportunityState.CONFIRMED,
    Outcome.FAILED: OpportunityState.FAILED,
    Outcome.ABORTED: OpportunityState.ABORTED,
}


def record(outcome, tx_hash="0xabc", gas_cost_wei=0):
    return ExecutionRecord(
        opportunity_id="ARB-1",
        pair_key="a:b",
        outcome=outcome,
        final_state=STATES[outcome],
        expected_profit=1,
        tx_hash=tx_hash,
        gas_cost_wei=gas_cost_wei,
    )


@pytest.fixture
def wall():
    return ManualClock(1_700_000_000.0)


def make_guard(clock, wall, **overrides):
    values = dict(
        max_consecutive_failures=3,
        failure_cooldown=300.0,
        max_daily_gas_loss_wei=10 ** 18,
        max_trades_per_hour=100,
        max_gas_price_wei=500 * 10 ** 9,
    )
    values.update(overrides)
    return ExecutionGuard(GuardSettings(**values), clock=clock, wall_clock=wall)


class TestExecutionGuard:
    """Halting conditions."""

    def test_fresh_guard_allows(self, clock, wall):
        """Test nothing blocks a guard without history."""
        assert make_guard(clock, wall).allow() == (True, "")

    def test_consecutive_failures_pause(self, clock, wall):
        """Test the failure threshold pauses execution for the cooldown."""
        guard = make_guard(clock, wall)
        for _ in range(3):
            guard.record(record(Outcome.FAILED))

        allowed, reason = guard.allow()
        assert not allowed
        assert "paused" in reason

        clock.advance(300)
        assert guard.allow()[0]
        assert guard.status()["consecutive_failures"] == 0

    def test_success_resets_failures(self, clock, wall):
        """Test a confirmed trade clears the failure streak."""
        guard = make_guard(clock, wall)
        guard.record(record(Outcome.FAILED))
        guard.record(record(Outcome.FAILED))
        guard.record(record(Outcome.SUCCEEDED))
        guard.record(record(Outcome.FAILED))
        assert guard.allow()[0]
        assert guard.status()["consecutive_failures"] == 1

    def test_aborts_are_ignored(self, clock, wall):
        """Test aborted attempts neither count nor consume the trade budget."""
        guard = make_guard(clock, wall, max_trades_per_hour=1)
        for _ in range(5):
            guard.record(record(Outcome.ABORTED, tx_hash=None))
        assert guard.allow()[0]
        assert guard.status()["trades_last_hour"] == 0

    def test_daily_gas_loss(self, clock, wall):
        """Test losses stop trading until the UTC day rolls over."""
        guard = make_guard(clock, wall, max_daily_gas_loss_wei=10 ** 16)
        guard.record(record(Outcome.FAILED, gas_cost_wei=10 ** 16))

        allowed, reason = guard.allow()
        assert not allowed
        assert "daily gas loss" in reason

        wall.advance(86_400)
        assert guard.allow()[0]

    def test_hourly_trade_limit(self, clock, wall):
        """Test submissions older than an hour stop counting."""
        guard = make_guard(clock, wall, max_trades_per_hour=2)
        guard.record(record(Outcome.SUCCEEDED))
        clock.advance(10)
        guard.record(record(Outcome.SUCCEEDED))

        assert not guard.allow()[0]
        clock.advance(3590)
        assert guard.allow()[0]
        assert guard.status()["trades_last_hour"] == 1

    def test_gas_price_cap(self, clock, wall):
        """Test a network gas price above the cap blocks execution."""
        guard = make_guard(clock, wall, max_gas_price_wei=100 * 10 ** 9)
        assert guard.allow(100 * 10 ** 9)[0]

        allowed, reason = guard.allow(101 * 10 ** 9)
        assert not allowed
        assert "gwei" in reason
