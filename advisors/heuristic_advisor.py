"""
Deterministic range advisor.
Works from KPIs alone and needs no external service.
"""
import logging
from typing import Dict, Any, Tuple
from config import Config
from lp_types import (
    KPISet, RangeRecommendation, RecommendationAction, RiskProfile, RISK_PROFILE_DRIFT_THRESHOLDS
)
from .base_advisor import BaseRangeAdvisor

logger = logging.getLogger(__name__)

# Half-width grows with volatility at this rate per profile
VOLATILITY_MULTIPLIERS = {
    RiskProfile.CONSERVATIVE: 0.5,
    RiskProfile.MEDIUM: 0.8,
    RiskProfile.AGGRESSIVE: 1.2,
}

MAINTAIN_CONFIDENCE = 0.5
REBALANCE_CONFIDENCE = 0.7

# Share of the max width kept free for tick-snapping growth
SNAPPING_HEADROOM = 0.9


class HeuristicRangeAdvisor(BaseRangeAdvisor):
    """
    Rule-based advisor.

    Rebalances when the price has left the range or drifted too far from its
    midpoint, when liquidity utilization is low or when volatility is high.
    Half-width comes from the risk-profile band, scaled by volatility.
    """

    def __init__(self, config: Config):
        super().__init__(config)
        self.utilization_threshold = config.UTILIZATION_REBALANCE_THRESHOLD
        self.volatility_threshold = config.HIGH_VOLATILITY_THRESHOLD
        self.max_width_pct = config.MAX_RANGE_WIDTH_PERCENTAGE

    def recommend(
        self,
        kpis: KPISet,
        current_range: Tuple[int, int],
        risk_profile: RiskProfile
    ) -> RangeRecommendation:
        half_width = self._half_width(kpis, risk_profile)
        health = self.assess_position_health(kpis)
        market = self.assess_market_conditions(kpis)
        risk = self.assess_risk_level(kpis)

        if not kpis.available:
            logger.warning("Analytics unavailable this cycle; recommending maintain")
            return RangeRecommendation(
                action=RecommendationAction.MAINTAIN,
                confidence=MAINTAIN_CONFIDENCE,
                half_width_pct=half_width,
                center_skew_pct=0.0,
                risk_profile=risk_profile,
                reasoning="Pool analytics unavailable; keeping the current range",
                expected_outcome="No change until analytics recover",
                source='heuristic'
            )

        triggers = []
        if not kpis.in_range:
            triggers.append(f"price outside the position range (tick distances "
                            f"{kpis.distance_to_lower_ticks}/{kpis.distance_to_upper_ticks})")
        else:
            drift = self.midpoint_drift(kpis)
            drift_threshold = RISK_PROFILE_DRIFT_THRESHOLDS[risk_profile]
            if drift > drift_threshold:
                triggers.append(f"price drifted {drift:.0%} of the half-range from the midpoint "
                                f"(> {drift_threshold:.0%})")
        if 'liquidity' not in kpis.missing_sources and kpis.utilization_pct < self.utilization_threshold:
            triggers.append(f"liquidity utilization {kpis.utilization_pct:.1f}% < {self.utilization_threshold:.0f}%")
        if 'hourly_prices' not in kpis.missing_sources and kpis.volatility > self.volatility_threshold:
            triggers.append(f"volatility {kpis.volatility:.2%} > {self.volatility_threshold:.0%}")

        summary = (f"Position health {health}, market {market}, risk {risk}. "
                   f"Utilization {kpis.utilization_pct:.1f}%, volatility {kpis.volatility:.2%}, "
                   f"impermanent loss estimate {kpis.impermanent_loss_pct:.1f}%.")

        if triggers:
            return RangeRecommendation(
                action=RecommendationAction.REBALANCE,
                confidence=REBALANCE_CONFIDENCE,
                half_width_pct=half_width,
                center_skew_pct=0.0,
                risk_profile=risk_profile,
                reasoning=f"{summary} Rebalance triggered by {' and '.join(triggers)}.",
                expected_outcome=(f"Recentered range of +/-{half_width:.2f}% should raise utilization; "
                                  f"impermanent loss risk {risk}"),
                source='heuristic'
            )

        return RangeRecommendation(
            action=RecommendationAction.MAINTAIN,
            confidence=MAINTAIN_CONFIDENCE,
            half_width_pct=half_width,
            center_skew_pct=0.0,
            risk_profile=risk_profile,
            reasoning=f"{summary} No rebalance trigger met.",
            expected_outcome="Current range keeps earning fees",
            source='heuristic'
        )

    @staticmethod
    def midpoint_drift(kpis: KPISet) -> float:
        """
        Distance of the current tick from the range midpoint

        Returns:
            0 at the midpoint, 1 at either edge
        """
        span = kpis.distance_to_lower_ticks + kpis.distance_to_upper_ticks
        if span <= 0:
            return 0.0
        return abs(kpis.distance_to_lower_ticks - kpis.distance_to_upper_ticks) / span

    def _half_width(self, kpis: KPISet, risk_profile: RiskProfile) -> float:
        band_min, band_max = self.policy_band(risk_profile)
        upper = min(band_max, self.max_width_pct / 2 * SNAPPING_HEADROOM)
        upper = max(upper, band_min)

        scaled = kpis.volatility * 100 * VOLATILITY_MULTIPLIERS[risk_profile]
        return round(min(max(scaled, band_min), upper), 2)

    def get_advisor_info(self) -> Dict[str, Any]:
        return {
            'name': 'Heuristic Range Advisor',
            'description': 'Rebalances when out of range, drifted, under-utilized or volatile; half-width from the risk band',
            'version': '1.0.0',
            'parameters': {
                'utilization_threshold': self.utilization_threshold,
                'volatility_threshold': self.volatility_threshold,
                'max_width_pct': self.max_width_pct
            }
        }
