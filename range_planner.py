"""
Range planning for concentrated liquidity positions.
Turns percentage-based range parameters into tick-aligned, validated ranges.
"""
import logging
import math

from lp_types import PlannedRange, RangeRecommendation, RISK_PROFILE_BANDS
from utils import UniswapV3Utils, InvalidRange, PolicyViolation, MIN_TICK, MAX_TICK

logger = logging.getLogger(__name__)

MIN_HALF_WIDTH_PCT = 0.1
MAX_HALF_WIDTH_PCT = 50.0


class RangePlanner:
    """Builds tick ranges around the current price"""

    def __init__(self, min_width_pct: float = 1.0, max_width_pct: float = 25.0):
        """
        Initialize the range planner

        Args:
            min_width_pct: Smallest realized range width allowed (percent of price)
            max_width_pct: Largest realized range width allowed (percent of price)
        """
        self.min_width_pct = min_width_pct
        self.max_width_pct = max_width_pct

    def build_range(self,
                    current_price: float,
                    half_width_pct: float,
                    center_skew_pct: float,
                    tick_spacing: int) -> PlannedRange:
        """
        Build a tick-aligned range around the current price

        Args:
            current_price: Price in token0-per-token1 orientation (reciprocal of pool price)
            half_width_pct: Distance from center to each bound, in percent
            center_skew_pct: Shift of the center relative to current price, in percent
            tick_spacing: Pool tick spacing

        Returns:
            PlannedRange with snapped ticks and realized width

        Raises:
            InvalidRange: If the range collapses or violates tick or width constraints
        """
        if not math.isfinite(current_price) or current_price <= 0:
            raise InvalidRange(f"Current price must be positive, got {current_price}")
        if tick_spacing <= 0:
            raise InvalidRange(f"Tick spacing must be positive, got {tick_spacing}")

        clamped = min(max(half_width_pct, MIN_HALF_WIDTH_PCT), MAX_HALF_WIDTH_PCT)
        if clamped != half_width_pct:
            logger.warning(f"Half-width {half_width_pct}% clamped to {clamped}%")
        half_width = clamped / 100

        center = current_price * (1 + center_skew_pct / 100)
        lower_bound = center * (1 - half_width)
        upper_bound = center * (1 + half_width)
        if lower_bound <= 0:
            raise InvalidRange(f"Center skew {center_skew_pct}% pushes the lower bound to {lower_bound}")

        # Pool ticks encode the reciprocal orientation
        pool_lower = 1 / upper_bound
        pool_upper = 1 / lower_bound

        raw_lower = UniswapV3Utils.price_to_tick(pool_lower)
        raw_upper = UniswapV3Utils.price_to_tick(pool_upper)
        if raw_lower >= raw_upper:
            raise InvalidRange(f"Range collapsed: raw ticks {raw_lower} >= {raw_upper}")

        lower_tick = (raw_lower // tick_spacing) * tick_spacing
        upper_tick = -((-raw_upper) // tick_spacing) * tick_spacing

        if lower_tick < MIN_TICK or upper_tick > MAX_TICK:
            raise InvalidRange(f"Ticks {lower_tick}..{upper_tick} outside [{MIN_TICK}, {MAX_TICK}]")

        lower_price = 1 / UniswapV3Utils.tick_to_price(upper_tick)
        upper_price = 1 / UniswapV3Utils.tick_to_price(lower_tick)

        if not lower_price < current_price < upper_price:
            raise InvalidRange(
                f"Current price {current_price} not inside snapped range "
                f"[{lower_price}, {upper_price}]"
            )

        width_pct = (upper_price - lower_price) / current_price * 100
        if width_pct < self.min_width_pct or width_pct > self.max_width_pct:
            raise InvalidRange(
                f"Realized width {width_pct:.2f}% outside "
                f"[{self.min_width_pct}%, {self.max_width_pct}%]"
            )

        logger.debug(f"Planned range ticks {lower_tick}..{upper_tick}, width {width_pct:.2f}%")
        return PlannedRange(
            lower_tick=lower_tick,
            upper_tick=upper_tick,
            width_pct=width_pct,
            lower_price=lower_price,
            upper_price=upper_price
        )

    @staticmethod
    def validate_policy_band(recommendation: RangeRecommendation) -> None:
        """
        Check the recommended half-width against its risk-profile band

        Raises:
            PolicyViolation: If the half-width is outside the band
        """
        band_min, band_max = RISK_PROFILE_BANDS[recommendation.risk_profile]
        if not band_min <= recommendation.half_width_pct <= band_max:
            raise PolicyViolation(
                f"Half-width {recommendation.half_width_pct}% outside "
                f"{recommendation.risk_profile.value} band [{band_min}%, {band_max}%]"
            )
