"""
Unit tests for deposit amount allocation and swap sizing.
"""
import pytest
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from amount_allocator import AmountAllocator
from range_planner import RangePlanner
from lp_types import AllocationPlan, PlannedRange


@pytest.mark.unit
class TestAmountAllocator:
    """Test allocation across the three price regimes."""

    def setup_method(self):
        """Set up test fixtures."""
        self.allocator = AmountAllocator()
        self.planned = RangePlanner().build_range(2000.0, 5.0, 0.0, 60)

    def test_price_below_range_uses_token1_only(self):
        """Below the range only token1 is deposited, at 99% of the balance."""
        plan = self.allocator.allocate(1500.0, self.planned, 0.0, 10.0)

        assert plan.amount0 == 0
        assert plan.amount1 == pytest.approx(0.99 * 10.0)
        assert plan.degraded is False

    def test_price_above_range_uses_token0_only(self):
        """Above the range only token0 is deposited, at 99% of the balance."""
        plan = self.allocator.allocate(2500.0, self.planned, 40000.0, 10.0)

        assert plan.amount0 == pytest.approx(0.99 * 40000.0)
        assert plan.amount1 == 0

    def test_in_range_uses_both_tokens(self):
        """Inside the range both tokens are used and one side is binding."""
        plan = self.allocator.allocate(2000.0, self.planned, 20000.0, 10.0)

        assert plan.amount0 > 0
        assert plan.amount1 > 0
        binding0 = plan.amount0 == pytest.approx(0.995 * 20000.0)
        binding1 = plan.amount1 == pytest.approx(0.995 * 10.0)
        assert binding0 or binding1

    def test_in_range_ratio_is_roughly_balanced_at_center(self):
        """At the range center, deposit values are of the same order."""
        plan = self.allocator.allocate(2000.0, self.planned, 1_000_000.0, 1_000.0)

        value0 = plan.amount0
        value1 = plan.amount1 * 2000.0
        assert 0.5 < value0 / value1 < 2.0

    @pytest.mark.parametrize("price", [1500.0, 1950.0, 2000.0, 2050.0, 2500.0])
    def test_never_exceeds_balances(self, price):
        """Allocations never exceed available balances."""
        plan = self.allocator.allocate(price, self.planned, 5000.0, 3.0)

        assert 0 <= plan.amount0 <= 5000.0
        assert 0 <= plan.amount1 <= 3.0

    def test_negative_balances_treated_as_zero(self):
        """Negative balances are clamped to zero."""
        plan = self.allocator.allocate(2000.0, self.planned, -5.0, -1.0)

        assert plan.amount0 == 0
        assert plan.amount1 == 0

    @pytest.mark.parametrize("price", [0.0, -1.0, float('nan')])
    def test_invalid_price_falls_back(self, price):
        """Math failures yield a degraded 95% balance allocation."""
        plan = self.allocator.allocate(price, self.planned, 100.0, 2.0)

        assert plan.degraded is True
        assert plan.method == 'balance_fallback'
        assert plan.amount0 == pytest.approx(95.0)
        assert plan.amount1 == pytest.approx(1.9)
        assert self.allocator.degraded_count == 1

    def test_inverted_range_falls_back(self):
        """A range whose bounds are not ordered takes the degraded path."""
        bad_range = PlannedRange(lower_tick=600, upper_tick=600, width_pct=0.0,
                                 lower_price=1.0, upper_price=1.0)
        plan = self.allocator.allocate(1.0, bad_range, 100.0, 100.0)

        assert plan.degraded is True
        assert self.allocator.degraded_count == 1

    def test_degraded_count_accumulates(self):
        """Each degraded allocation is counted."""
        self.allocator.allocate(0.0, self.planned, 1.0, 1.0)
        self.allocator.allocate(0.0, self.planned, 1.0, 1.0)
        self.allocator.allocate(2000.0, self.planned, 1.0, 1.0)

        assert self.allocator.degraded_count == 2


@pytest.mark.unit
class TestPlanSwap:
    """Test swap sizing from idle balances."""

    def test_balanced_allocation_needs_no_swap(self):
        """Small idle share returns None."""
        plan = AllocationPlan(amount0=19000, amount1=9)
        assert AmountAllocator.plan_swap(2000.0, 20000, 10, plan, 0.2) is None

    def test_idle_token0_is_sold(self):
        """Idle token0 above the threshold sells half the excess."""
        plan = AllocationPlan(amount0=0, amount1=0)
        swap = AmountAllocator.plan_swap(2000.0, 1_000_000, 0, plan, 0.2, slippage_bps=100)

        assert swap is not None
        assert swap.zero_for_one is True
        assert swap.amount_in == 500_000
        # 500000 token0 at 2000 token0 per token1 is 250 token1
        assert swap.min_amount_out == 247

    def test_idle_token1_is_sold(self):
        """Idle token1 above the threshold sells half the excess."""
        plan = AllocationPlan(amount0=0, amount1=0)
        swap = AmountAllocator.plan_swap(2000.0, 0, 1000, plan, 0.2, slippage_bps=100)

        assert swap.zero_for_one is False
        assert swap.amount_in == 500
        assert swap.min_amount_out == 990_000

    def test_empty_wallet_needs_no_swap(self):
        """Zero balances return None."""
        plan = AllocationPlan(amount0=0, amount1=0)
        assert AmountAllocator.plan_swap(2000.0, 0, 0, plan, 0.2) is None

    def test_invalid_price_needs_no_swap(self):
        """Non-positive prices return None."""
        plan = AllocationPlan(amount0=0, amount1=0)
        assert AmountAllocator.plan_swap(0.0, 100, 100, plan, 0.2) is None
