# flasharb/risk.py
"""
Risk Assessor
Deterministic 0-100 score (higher = riskier) built from four components:

- liquidity:   trade size as a share of the shallower leg's depth
- impact:      worst leg impact relative to the impact ceiling
- reliability: inverse of the weaker venue's rolling success rate
- time:        share of the opportunity's validity window already spent
"""

from dataclasses import dataclass, replace

from flasharb.config import RiskSettings
from flasharb.models import BPS, Opportunity, Recommendation


@dataclass(frozen=True)
class RiskAssessment:
    score: int
    recommendation: Recommendation
    liquidity_risk: int
    impact_risk: int
    reliability_risk: int
    time_risk: int


def _clamp(value: int) -> int:
    return max(0, min(100, value))


class RiskAssessor:

    def __init__(self, settings: RiskSettings = None):
        self.settings = settings or RiskSettings()

    def liquidity_risk(self, opportunity: Opportunity) -> int:
        buy_depth = opportunity.buy_quote.pool.depth()
        sell_depth = opportunity.sell_quote.pool.depth()
        if buy_depth <= 0 or sell_depth <= 0:
            return 100
        share_bps = max(
            opportunity.optimal_amount * BPS // buy_depth,
            opportunity.intermediate_amount * BPS // sell_depth,
        )
        return _clamp(share_bps * 100 // self.settings.liquidity_full_bps)

    def impact_risk(self, opportunity: Opportunity) -> int:
        worst = max(opportunity.buy_impact_bps, opportunity.sell_impact_bps)
        return _clamp(worst * 100 // max(self.settings.max_price_impact_bps, 1))

    @staticmethod
    def reliability_risk(buy_reliability_pct: int, sell_reliability_pct: int) -> int:
        return _clamp(100 - min(buy_reliability_pct, sell_reliability_pct))

    @staticmethod
    def time_risk(opportunity: Opportunity, now: float) -> int:
        window = opportunity.deadline - opportunity.detected_at
        if window <= 0:
            return 100
        return _clamp(int((now - opportunity.detected_at) * 100 / window))

    def recommend(self, score: int) -> Recommendation:
        if score < self.settings.execute_below:
            return Recommendation.EXECUTE
        if score > self.settings.skip_above:
            return Recommendation.SKIP
        return Recommendation.WAIT

    def assess(
        self,
        opportunity: Opportunity,
        buy_reliability_pct: int,
        sell_reliability_pct: int,
        now: float,
    ) -> RiskAssessment:
        components = {
            "liquidity": self.liquidity_risk(opportunity),
            "impact": self.impact_risk(opportunity),
            "reliability": self.reliability_risk(buy_reliability_pct, sell_reliability_pct),
            "time": self.time_risk(opportunity, now),
        }
        weights = self.settings.weights
        total_weight = sum(weights.get(k, 0) for k in components) or 1
        score = sum(weights.get(k, 0) * v for k, v in components.items()) // total_weight

        return RiskAssessment(
            score=score,
            recommendation=self.recommend(score),
            liquidity_risk=components["liquidity"],
            impact_risk=components["impact"],
            reliability_risk=components["reliability"],
            time_risk=components["time"],
        )

    @staticmethod
    def apply(opportunity: Opportunity, assessment: RiskAssessment) -> Opportunity:
        return replace(
            opportunity,
            risk_score=assessment.score,
            recommendation=assessment.recommendation,
        )
