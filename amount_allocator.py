"""
Token amount allocation for concentrated liquidity deposits.
"""
import logging
import math
from typing import Optional

from lp_types import AllocationPlan, PlannedRange, SwapPlan
from utils import UniswapV3Utils

logger = logging.getLogger(__name__)

SINGLE_SIDED_FRACTION = 0.99
SAFETY_MARGIN = 0.995
FALLBACK_FRACTION = 0.95


class AmountAllocator:
    """
    Computes deposit amounts that match the token ratio a range requires.

    Amounts are in whatever units the balances are given in; prices must be
    expressed in the same units (see UniswapV3Utils.adjust_price_for_decimals).
    """

    def __init__(self):
        self.degraded_count = 0

    def allocate(self,
                 current_price: float,
                 planned_range: PlannedRange,
                 available0: float,
                 available1: float) -> AllocationPlan:
        """
        Size a deposit for the planned range

        Args:
            current_price: Price in token0-per-token1 orientation
            planned_range: Tick range to deposit into
            available0: Token0 balance available
            available1: Token1 balance available

        Returns:
            AllocationPlan never exceeding either available balance
        """
        available0 = max(available0, 0)
        available1 = max(available1, 0)

        try:
            amount0, amount1 = self._allocate_by_liquidity(
                current_price, planned_range.lower_tick, planned_range.upper_tick,
                available0, available1
            )
        except (ValueError, ZeroDivisionError, OverflowError) as e:
            self.degraded_count += 1
            logger.warning(
                f"Liquidity math failed ({e}); using degraded {FALLBACK_FRACTION:.0%} "
                f"balance fallback (degraded allocations so far: {self.degraded_count})"
            )
            return AllocationPlan(
                amount0=available0 * FALLBACK_FRACTION,
                amount1=available1 * FALLBACK_FRACTION,
                degraded=True,
                method='balance_fallback'
            )

        return AllocationPlan(
            amount0=min(amount0, available0),
            amount1=min(amount1, available1)
        )

    def _allocate_by_liquidity(self, current_price, lower_tick, upper_tick, available0, available1):
        if not math.isfinite(current_price) or current_price <= 0:
            raise ValueError(f"invalid current price {current_price}")

        sqrt_price = math.sqrt(1 / current_price)
        sqrt_lower = UniswapV3Utils.tick_to_sqrt_price(lower_tick)
        sqrt_upper = UniswapV3Utils.tick_to_sqrt_price(upper_tick)
        if not sqrt_lower < sqrt_upper:
            raise ValueError(f"invalid bounds: sqrt lower {sqrt_lower} >= sqrt upper {sqrt_upper}")

        if sqrt_price <= sqrt_lower:
            return available0 * SINGLE_SIDED_FRACTION, 0.0
        if sqrt_price >= sqrt_upper:
            return 0.0, available1 * SINGLE_SIDED_FRACTION

        # token0 needed per unit of token1 at equal liquidity
        ratio = (sqrt_upper - sqrt_price) / (sqrt_upper * sqrt_price * (sqrt_price - sqrt_lower))

        if available0 > available1 * ratio:
            amount1 = available1
            amount0 = available1 * ratio
        else:
            amount0 = available0
            amount1 = available0 / ratio

        return amount0 * SAFETY_MARGIN, amount1 * SAFETY_MARGIN

    @staticmethod
    def plan_swap(current_price: float,
                  available0: float,
                  available1: float,
                  plan: AllocationPlan,
                  imbalance_threshold: float,
                  slippage_bps: int = 100) -> Optional[SwapPlan]:
        """
        Decide whether idle balances justify a rebalance swap

        Args:
            current_price: Price in token0-per-token1 orientation
            available0: Token0 balance available
            available1: Token1 balance available
            plan: Allocation computed for those balances
            imbalance_threshold: Fraction of total value left idle that triggers a swap
            slippage_bps: Slippage tolerance for the swap output

        Returns:
            SwapPlan selling half the idle excess, or None if balanced enough
        """
        if current_price <= 0:
            return None

        price_token0_in_token1 = 1 / current_price
        idle0 = max(available0 - plan.amount0, 0)
        idle1 = max(available1 - plan.amount1, 0)
        idle0_value = idle0 * price_token0_in_token1

        total_value = available0 * price_token0_in_token1 + available1
        if total_value <= 0:
            return None

        idle_share = (idle0_value + idle1) / total_value
        if idle_share <= imbalance_threshold:
            return None

        if idle0_value >= idle1:
            amount_in = int(idle0 / 2)
            expected_out = amount_in * price_token0_in_token1
            zero_for_one = True
        else:
            amount_in = int(idle1 / 2)
            expected_out = amount_in * current_price
            zero_for_one = False

        if amount_in <= 0:
            return None

        logger.info(f"Idle share {idle_share:.1%} above {imbalance_threshold:.1%}; "
                    f"swapping {amount_in} {'token0' if zero_for_one else 'token1'}")
        return SwapPlan(
            zero_for_one=zero_for_one,
            amount_in=amount_in,
            min_amount_out=UniswapV3Utils.to_min_amount(int(expected_out), slippage_bps)
        )
