"""
Abstract base class for range recommendation strategies.
"""
from abc import ABC, abstractmethod
from typing import Dict, Tuple, Any
from config import Config
from lp_types import KPISet, RangeRecommendation, RiskProfile, RISK_PROFILE_BANDS


class BaseRangeAdvisor(ABC):
    """
    Abstract base class for range advisors.

    Advisors decide whether a position should move and propose range
    parameters as percentages around the current price. They never
    produce ticks or token amounts; those are derived downstream.
    """

    def __init__(self, config: Config):
        """
        Initialize the advisor.

        Args:
            config: Configuration object with advisor thresholds
        """
        self.config = config
        self.advisor_name = self.__class__.__name__

    @abstractmethod
    def recommend(
        self,
        kpis: KPISet,
        current_range: Tuple[int, int],
        risk_profile: RiskProfile
    ) -> RangeRecommendation:
        """
        Recommend an action for a position.

        Args:
            kpis: KPIs computed for the position's pool and range
            current_range: (lower_tick, upper_tick) of the current position
            risk_profile: Risk profile that bounds the half-width

        Returns:
            RangeRecommendation
        """
        pass

    @abstractmethod
    def get_advisor_info(self) -> Dict[str, Any]:
        """
        Get information about the advisor.

        Returns:
            Dictionary with name, description and parameters
        """
        pass

    @staticmethod
    def policy_band(risk_profile: RiskProfile) -> Tuple[float, float]:
        """Half-width band (percent) for a risk profile"""
        return RISK_PROFILE_BANDS[risk_profile]

    @staticmethod
    def assess_position_health(kpis: KPISet) -> str:
        """Classify position health as excellent, good, fair or poor"""
        utilization = kpis.utilization_pct
        volatility = kpis.volatility
        if utilization > 80 and volatility < 0.05:
            return 'excellent'
        if utilization > 50 and volatility < 0.1:
            return 'good'
        if utilization < 20 or volatility > 0.2:
            return 'poor'
        return 'fair'

    @staticmethod
    def assess_market_conditions(kpis: KPISet) -> str:
        """Classify market conditions as favorable, neutral or unfavorable"""
        volatility = kpis.volatility
        price_change = abs(kpis.latest_price_change_pct)
        if volatility < 0.05 and price_change < 2:
            return 'favorable'
        if volatility > 0.15 or price_change > 10:
            return 'unfavorable'
        return 'neutral'

    @staticmethod
    def assess_risk_level(kpis: KPISet) -> str:
        """Classify risk as low, medium or high"""
        volatility = kpis.volatility
        impermanent_loss = kpis.impermanent_loss_pct
        if volatility < 0.05 and impermanent_loss < 5:
            return 'low'
        if volatility > 0.15 or impermanent_loss > 15:
            return 'high'
        return 'medium'
