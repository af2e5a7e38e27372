# flasharb/executor.py
"""
Execution Coordinator
Drives one opportunity through its lifecycle:

    Detected -> Validated -> Submitted -> Confirming -> Confirmed | Failed | Aborted

The coordinator owns the opportunity from acquire() until release(); the
store guarantees nobody else touches the pair in between.
"""

import logging
import time
from dataclasses import replace
from typing import Callable, Dict, Optional, Tuple

from flasharb.config import ExecutionSettings
from flasharb.errors import (
    AbortedByRevalidation,
    ExecutionReverted,
    FlashArbError,
    SubmissionFailed,
)
from flasharb.gas import GasQuote
from flasharb.models import (
    BPS,
    ExecutionPlan,
    ExecutionRecord,
    Opportunity,
    OpportunityState,
    Outcome,
    Recommendation,
    SettlementReceipt,
)

logger = logging.getLogger(__name__)

GAS_LIMIT_BUFFER_BPS = 2_000  # +20% over the summed estimates


def apply_slippage(expected: int, slippage_bps: int) -> int:
    """Minimum acceptable output for a leg"""
    return expected * (BPS - slippage_bps) // BPS


# =============================================================================
# EXECUTION COORDINATOR
# =============================================================================

class ExecutionCoordinator:

    def __init__(
        self,
        store,
        aggregator,
        registry,
        profit_model,
        assessor,
        adapters: Dict[str, object],
        settlement,
        gas_oracle,
        sink,
        guard=None,
        settings: ExecutionSettings = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.aggregator = aggregator
        self.registry = registry
        self.profit_model = profit_model
        self.assessor = assessor
        self.adapters = adapters
        self.settlement = settlement
        self.gas_oracle = gas_oracle
        self.sink = sink
        self.guard = guard
        self.settings = settings or ExecutionSettings()
        self._clock = clock
        self._wall_clock = wall_clock
        self._sleep = sleep

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    def execute(self, pair_key: str) -> Optional[ExecutionRecord]:
        """Run the pair's executable opportunity, if any, to a terminal state"""
        opportunity = self.store.acquire(pair_key)
        if opportunity is None:
            return None
        try:
            return self._drive(opportunity)
        finally:
            self.store.release(pair_key)

    def _transition(self, opportunity: Opportunity, state: OpportunityState) -> Opportunity:
        logger.info(f"[{opportunity.opportunity_id}] {opportunity.state.value} -> {state.value}")
        return replace(opportunity, state=state)

    def _drive(self, opportunity: Opportunity) -> ExecutionRecord:
        started = self._clock()
        opp_id = opportunity.opportunity_id
        logger.info(
            f"[{opp_id}] Starting execution: {opportunity.buy_quote.venue} -> "
            f"{opportunity.sell_quote.venue}, amount {opportunity.optimal_amount}, "
            f"expected net {opportunity.net_profit}"
        )

        # Detected -> Validated
        try:
            opportunity, gas = self.revalidate(opportunity)
        except AbortedByRevalidation as e:
            logger.info(f"[{opp_id}] Aborted: {e}")
            return self._abort(opportunity, started, str(e))

        if self.settings.dry_run:
            logger.info(f"[{opp_id}] DRY RUN - Skipping submission")
            return self._abort(opportunity, started, "dry run")

        submit_by = opportunity.deadline - self.settings.safety_margin
        if self._clock() > submit_by:
            return self._abort(opportunity, started, "submission window closed")

        # Validated -> Submitted
        try:
            plan = self.build_plan(opportunity)
            tx_hash = self.settlement.submit(plan, gas.gas_price_wei, self.gas_limit(opportunity))
        except SubmissionFailed as e:
            logger.error(f"[{opp_id}] Submission failed: {e}")
            self.sink.notify("submission failed", opportunity_id=opp_id, error=str(e))
            return self._finish(opportunity, OpportunityState.FAILED, started, reason=str(e))
        except Exception as e:
            logger.error(f"[{opp_id}] Unexpected submission error: {e}")
            self.sink.notify("unexpected submission error", opportunity_id=opp_id, error=str(e))
            return self._finish(opportunity, OpportunityState.FAILED, started, reason=f"{type(e).__name__}: {e}")

        opportunity = self._transition(opportunity, OpportunityState.SUBMITTED)

        # Submitted -> Confirming -> Confirmed | Failed
        opportunity = self._transition(opportunity, OpportunityState.CONFIRMING)
        receipt = self.wait_for_receipt(tx_hash, submit_by)

        if receipt is None:
            logger.warning(f"[{opp_id}] Not included before deadline: {tx_hash}")
            self._record_venues(opportunity, success=False)
            return self._finish(
                opportunity, OpportunityState.FAILED, started,
                tx_hash=tx_hash, reason="not included before deadline",
            )

        if not receipt.succeeded:
            error = ExecutionReverted(tx_hash)
            logger.error(f"[{opp_id}] {error}")
            self._record_venues(opportunity, success=False)
            self.sink.notify(
                "execution reverted",
                opportunity_id=opp_id,
                tx_hash=tx_hash,
                gas_used=receipt.gas_used,
            )
            return self._finish(
                opportunity, OpportunityState.FAILED, started,
                receipt=receipt, tx_hash=tx_hash, reason=str(error),
            )

        if receipt.profit is None:
            logger.warning(f"[{opp_id}] No ArbitrageExecuted event in {tx_hash}")
        self._record_venues(opportunity, success=True)
        logger.info(f"[{opp_id}] ✅ Execution successful! profit {receipt.profit}")
        return self._finish(
            opportunity, OpportunityState.CONFIRMED, started,
            receipt=receipt, tx_hash=tx_hash,
        )

    # -------------------------------------------------------------------------
    # Stages
    # -------------------------------------------------------------------------

    def revalidate(self, opportunity: Opportunity) -> Tuple[Opportunity, GasQuote]:
        """
        Re-fetch both legs, re-run profit and risk against the fresh state.

        The opportunity keeps its id and detection time; its deadline only
        moves forward. Raises AbortedByRevalidation when profit or risk
        has degraded.
        """
        now = self._clock()
        if opportunity.is_expired(now):
            raise AbortedByRevalidation("opportunity expired before revalidation")

        buy, sell = opportunity.buy_quote, opportunity.sell_quote
        try:
            fresh_buy = self.aggregator.fetch_fresh(
                buy.venue, buy.token_in, buy.token_out, opportunity.optimal_amount, buy.fee_tier,
            )
            fresh_sell = self.aggregator.fetch_fresh(
                sell.venue, sell.token_in, sell.token_out, fresh_buy.amount_out, sell.fee_tier,
            )
            gas = self.gas_oracle.quote(opportunity.pair.base)
        except FlashArbError as e:
            raise AbortedByRevalidation(f"revalidation fetch failed: {e}") from e

        now = self._clock()
        evaluation = self.profit_model.evaluate(
            opportunity.pair, fresh_buy, fresh_sell, gas, now, opportunity.coverage_bps,
        )
        if not evaluation.ok:
            raise AbortedByRevalidation(f"profit degraded ({evaluation.reason}) {evaluation.detail}".strip())

        fresh = replace(
            evaluation.opportunity,
            opportunity_id=opportunity.opportunity_id,
            detected_at=opportunity.detected_at,
            deadline=max(opportunity.deadline, evaluation.opportunity.deadline),
            state=opportunity.state,
        )
        assessment = self.assessor.assess(
            fresh,
            self.registry.reliability_pct(buy.venue),
            self.registry.reliability_pct(sell.venue),
            now,
        )
        if assessment.recommendation != Recommendation.EXECUTE:
            raise AbortedByRevalidation(
                f"risk {assessment.score} now {assessment.recommendation.value}"
            )

        logger.info(
            f"[{opportunity.opportunity_id}] Revalidated: net {opportunity.net_profit} -> "
            f"{fresh.net_profit}, risk {opportunity.risk_score} -> {assessment.score}"
        )
        fresh = self.assessor.apply(fresh, assessment)
        return self._transition(fresh, OpportunityState.VALIDATED), gas

    def build_plan(self, opportunity: Opportunity) -> ExecutionPlan:
        """Borrow the base token, swap both legs with slippage guards, repay"""
        remaining = max(opportunity.deadline - self._clock(), 0.0)
        deadline = int(self._wall_clock() + remaining)

        buy = replace(
            opportunity.buy_quote,
            amount_in=opportunity.optimal_amount,
            amount_out=opportunity.intermediate_amount,
        )
        sell = replace(
            opportunity.sell_quote,
            amount_in=opportunity.intermediate_amount,
            amount_out=opportunity.gross_output,
        )
        slippage = self.settings.slippage_bps
        recipient = self.settlement.address

        steps = [
            self.adapters[buy.venue].build_execution_step(
                buy, apply_slippage(buy.amount_out, slippage), recipient, deadline,
            ),
            self.adapters[sell.venue].build_execution_step(
                sell, apply_slippage(sell.amount_out, slippage), recipient, deadline,
            ),
        ]
        return ExecutionPlan(
            opportunity_id=opportunity.opportunity_id,
            asset=opportunity.pair.base,
            amount=opportunity.optimal_amount,
            steps=steps,
            deadline=deadline,
        )

    def gas_limit(self, opportunity: Opportunity) -> int:
        units = (
            self.profit_model.settings.flash_loan_gas
            + opportunity.buy_quote.gas_estimate
            + opportunity.sell_quote.gas_estimate
        )
        return units * (BPS + GAS_LIMIT_BUFFER_BPS) // BPS

    def wait_for_receipt(self, tx_hash: str, deadline: float) -> Optional[SettlementReceipt]:
        """Poll until included or the deadline passes, then check once more"""
        while self._clock() < deadline:
            receipt = self.settlement.get_receipt(tx_hash)
            if receipt is not None:
                return receipt
            self._sleep(self.settings.poll_interval)
        return self.settlement.get_receipt(tx_hash)

    # -------------------------------------------------------------------------
    # Outcomes
    # -------------------------------------------------------------------------

    def _record_venues(self, opportunity: Opportunity, success: bool):
        for venue in opportunity.venues:
            self.registry.record_execution(venue, success)

    def _abort(self, opportunity: Opportunity, started: float, reason: str) -> ExecutionRecord:
        return self._finish(opportunity, OpportunityState.ABORTED, started, reason=reason)

    def _finish(
        self,
        opportunity: Opportunity,
        state: OpportunityState,
        started: float,
        receipt: Optional[SettlementReceipt] = None,
        tx_hash: Optional[str] = None,
        reason: str = "",
    ) -> ExecutionRecord:
        opportunity = self._transition(opportunity, state)
        outcome = {
            OpportunityState.CONFIRMED: Outcome.SUCCEEDED,
            OpportunityState.FAILED: Outcome.FAILED,
            OpportunityState.ABORTED: Outcome.ABORTED,
        }[state]

        gas_used = receipt.gas_used if receipt else 0
        record = ExecutionRecord(
            opportunity_id=opportunity.opportunity_id,
            pair_key=opportunity.pair.key,
            outcome=outcome,
            final_state=state,
            expected_profit=opportunity.net_profit,
            actual_profit=receipt.profit if receipt and receipt.succeeded else None,
            gas_used=gas_used,
            gas_cost_wei=gas_used * receipt.effective_gas_price if receipt else 0,
            tx_hash=tx_hash,
            reason=reason,
            started_at=started,
            finished_at=self._clock(),
            venues=opportunity.venues,
        )

        if self.guard is not None:
            self.guard.record(record)
        self.sink.record_execution(record)
        return record
