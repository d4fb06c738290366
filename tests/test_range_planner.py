"""
Unit tests for range planning.
"""
import pytest
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from range_planner import RangePlanner
from lp_types import RangeRecommendation, RecommendationAction, RiskProfile
from utils import InvalidRange, PolicyViolation, UniswapV3Utils, MIN_TICK, MAX_TICK


def make_recommendation(half_width_pct, risk_profile=RiskProfile.MEDIUM):
    return RangeRecommendation(
        action=RecommendationAction.REBALANCE,
        confidence=0.7,
        half_width_pct=half_width_pct,
        center_skew_pct=0.0,
        risk_profile=risk_profile
    )


@pytest.mark.unit
class TestRangePlanner:
    """Test tick-aligned range construction."""

    def setup_method(self):
        """Set up test fixtures."""
        self.planner = RangePlanner(min_width_pct=1.0, max_width_pct=25.0)

    def test_symmetric_range_around_price(self):
        """A 5% half-width around 2000 yields a spacing-aligned ~10% range."""
        planned = self.planner.build_range(2000.0, 5.0, 0.0, 60)

        assert planned.lower_tick % 60 == 0
        assert planned.upper_tick % 60 == 0
        assert planned.lower_tick < planned.upper_tick
        assert planned.lower_price < 2000.0 < planned.upper_price
        # Snapping only ever widens the range
        assert 10.0 <= planned.width_pct <= 11.5

    def test_reconstructed_prices_match_ticks(self):
        """Human bounds are the reciprocals of the snapped tick prices."""
        planned = self.planner.build_range(2000.0, 5.0, 0.0, 60)

        assert planned.lower_price == pytest.approx(1 / UniswapV3Utils.tick_to_price(planned.upper_tick))
        assert planned.upper_price == pytest.approx(1 / UniswapV3Utils.tick_to_price(planned.lower_tick))

    def test_center_skew_shifts_range(self):
        """A positive skew moves the midpoint above the current price."""
        centered = self.planner.build_range(2000.0, 5.0, 0.0, 10)
        skewed = self.planner.build_range(2000.0, 5.0, 2.0, 10)

        centered_mid = (centered.lower_price + centered.upper_price) / 2
        skewed_mid = (skewed.lower_price + skewed.upper_price) / 2
        assert skewed_mid > centered_mid
        assert skewed.lower_price < 2000.0 < skewed.upper_price

    def test_skew_beyond_half_width_rejected(self):
        """The current price must stay strictly inside the range."""
        with pytest.raises(InvalidRange):
            self.planner.build_range(2000.0, 5.0, 10.0, 60)

    def test_half_width_is_clamped(self):
        """Half-widths are clamped to [0.1, 50] percent before planning."""
        planner = RangePlanner(min_width_pct=0.01, max_width_pct=200.0)

        narrow = planner.build_range(1.0, 0.01, 0.0, 1)
        assert 0.15 < narrow.width_pct < 0.3

        wide = planner.build_range(1.0, 80.0, 0.0, 1)
        assert 95.0 < wide.width_pct < 105.0

    def test_width_above_maximum_rejected(self):
        """A realized width above the maximum raises InvalidRange."""
        with pytest.raises(InvalidRange):
            self.planner.build_range(2000.0, 20.0, 0.0, 60)

    def test_width_below_minimum_rejected(self):
        """A realized width below the minimum raises InvalidRange."""
        planner = RangePlanner(min_width_pct=5.0, max_width_pct=25.0)
        with pytest.raises(InvalidRange):
            planner.build_range(2000.0, 1.0, 0.0, 10)

    @pytest.mark.parametrize("price", [0.0, -5.0, float('nan')])
    def test_invalid_price_rejected(self, price):
        """Non-positive or non-finite prices raise InvalidRange."""
        with pytest.raises(InvalidRange):
            self.planner.build_range(price, 5.0, 0.0, 60)

    def test_invalid_tick_spacing_rejected(self):
        """Tick spacing must be positive."""
        with pytest.raises(InvalidRange):
            self.planner.build_range(2000.0, 5.0, 0.0, 0)

    def test_negative_lower_bound_rejected(self):
        """A skew that pushes the lower bound to zero raises InvalidRange."""
        with pytest.raises(InvalidRange):
            self.planner.build_range(2000.0, 5.0, -100.0, 60)

    def test_ticks_outside_protocol_bounds_rejected(self):
        """Ranges beyond the maximum tick raise InvalidRange."""
        with pytest.raises(InvalidRange):
            self.planner.build_range(1e-40, 5.0, 0.0, 60)

    @pytest.mark.parametrize("tick_spacing", [1, 10, 60, 200])
    @pytest.mark.parametrize("price", [1e-12, 3.3e-7, 0.0005, 1.0, 37.5, 2000.0, 1.7e6, 1e12])
    def test_invariants_hold_across_prices_and_spacings(self, price, tick_spacing):
        """Every built range is aligned, ordered, in bounds, contains the price and respects width limits."""
        built = 0
        for half_width in (0.05, 0.5, 2.0, 5.0, 10.0, 20.0, 60.0):
            for skew in (0.0, 1.5, -3.0, 25.0):
                try:
                    planned = self.planner.build_range(price, half_width, skew, tick_spacing)
                except InvalidRange:
                    continue
                built += 1

                assert planned.lower_tick % tick_spacing == 0
                assert planned.upper_tick % tick_spacing == 0
                assert MIN_TICK <= planned.lower_tick < planned.upper_tick <= MAX_TICK
                assert planned.lower_price == pytest.approx(1 / UniswapV3Utils.tick_to_price(planned.upper_tick))
                assert planned.upper_price == pytest.approx(1 / UniswapV3Utils.tick_to_price(planned.lower_tick))
                assert planned.lower_price < price < planned.upper_price
                assert 1.0 <= planned.width_pct <= 25.0

        # A centered 5% half-width fits every spacing at every price here
        assert built > 0


@pytest.mark.unit
class TestPolicyBand:
    """Test risk-profile band validation."""

    @pytest.mark.parametrize("half_width,profile", [
        (2.0, RiskProfile.CONSERVATIVE),
        (5.0, RiskProfile.CONSERVATIVE),
        (5.0, RiskProfile.MEDIUM),
        (7.5, RiskProfile.MEDIUM),
        (10.0, RiskProfile.MEDIUM),
        (20.0, RiskProfile.AGGRESSIVE),
    ])
    def test_within_band(self, half_width, profile):
        """Half-widths inside the band pass, bounds included."""
        RangePlanner.validate_policy_band(make_recommendation(half_width, profile))

    @pytest.mark.parametrize("half_width,profile", [
        (1.9, RiskProfile.CONSERVATIVE),
        (12.0, RiskProfile.MEDIUM),
        (4.0, RiskProfile.MEDIUM),
        (25.0, RiskProfile.AGGRESSIVE),
    ])
    def test_outside_band(self, half_width, profile):
        """Half-widths outside the band raise PolicyViolation."""
        with pytest.raises(PolicyViolation):
            RangePlanner.validate_policy_band(make_recommendation(half_width, profile))
