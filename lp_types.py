"""
Data records shared by the rebalancer components.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple


class RiskProfile(str, Enum):
    CONSERVATIVE = 'conservative'
    MEDIUM = 'medium'
    AGGRESSIVE = 'aggressive'


# Allowed half-width percentage per risk profile
RISK_PROFILE_BANDS: Dict[RiskProfile, Tuple[float, float]] = {
    RiskProfile.CONSERVATIVE: (2.0, 5.0),
    RiskProfile.MEDIUM: (5.0, 10.0),
    RiskProfile.AGGRESSIVE: (10.0, 20.0),
}

# Share of the half-range the price may drift from the range midpoint before rebalancing
RISK_PROFILE_DRIFT_THRESHOLDS: Dict[RiskProfile, float] = {
    RiskProfile.CONSERVATIVE: 0.8,
    RiskProfile.MEDIUM: 0.6,
    RiskProfile.AGGRESSIVE: 0.4,
}

# Minimum seconds between two rebalances of the same position
RISK_PROFILE_COOLDOWNS: Dict[RiskProfile, int] = {
    RiskProfile.CONSERVATIVE: 86400,
    RiskProfile.MEDIUM: 21600,
    RiskProfile.AGGRESSIVE: 3600,
}


class RecommendationAction(str, Enum):
    REBALANCE = 'rebalance'
    MAINTAIN = 'maintain'
    WITHDRAW = 'withdraw'


class WorkflowStage(str, Enum):
    FETCH = 'FETCH'
    ANALYZE = 'ANALYZE'
    WITHDRAW = 'WITHDRAW'
    SWAP = 'SWAP'
    SUPPLY = 'SUPPLY'
    NOTIFY_SUCCESS = 'NOTIFY_SUCCESS'
    FAIL = 'FAIL'
    NOTIFY_FAILURE = 'NOTIFY_FAILURE'


@dataclass(frozen=True)
class TokenInfo:
    address: str
    symbol: str
    decimals: int


@dataclass(frozen=True)
class WalletAccount:
    """The single signing account a rebalance cycle acts on behalf of."""
    address: str


@dataclass(frozen=True)
class Position:
    position_id: int
    pool_address: str
    chain_id: int
    token0: TokenInfo
    token1: TokenInfo
    fee: int
    tick_lower: int
    tick_upper: int
    liquidity: int
    tokens_owed0: int = 0
    tokens_owed1: int = 0


@dataclass(frozen=True)
class PoolState:
    """On-chain slot0 view of a pool."""
    pool_address: str
    current_tick: int
    sqrt_price_x96: int
    tick_spacing: int
    fee: int


@dataclass(frozen=True)
class HourlyPrice:
    period_start: int
    token0_price: float
    token1_price: float


@dataclass(frozen=True)
class DailyStats:
    date: int
    volume_usd: float
    fees_usd: float
    tvl_usd: float
    tx_count: int = 0


@dataclass(frozen=True)
class PoolSnapshot:
    """
    Raw pool data for one monitoring cycle.

    current_price is token0 per token1 in human units. hourly_prices are
    ordered newest first.
    """
    pool_address: str
    current_tick: int
    current_price: float
    tick_spacing: int
    liquidity_by_tick: Dict[int, int] = field(default_factory=dict)
    tvl_token0: float = 0.0
    tvl_token1: float = 0.0
    hourly_prices: Tuple[HourlyPrice, ...] = ()
    daily_stats: Tuple[DailyStats, ...] = ()
    unavailable_sources: Tuple[str, ...] = ()


@dataclass(frozen=True)
class KPISet:
    utilization_pct: float = 0.0
    hhi: float = 0.0
    gini: float = 0.0
    top_10pct_share: float = 0.0
    liquidity_skew: float = 0.0
    token0_ratio: float = 0.0
    token1_ratio: float = 0.0
    token0_volatility: float = 0.0
    token1_volatility: float = 0.0
    latest_price_change_pct: float = 0.0
    impermanent_loss_pct: float = 0.0
    active_tick_count: int = 0
    active_tick_range: Tuple[int, int] = (0, 0)
    avg_liquidity_per_tick: float = 0.0
    distance_to_lower_ticks: int = 0
    distance_to_upper_ticks: int = 0
    in_range: bool = False
    total_volume_usd: float = 0.0
    total_fees_usd: float = 0.0
    avg_fee_rate: float = 0.0
    avg_tvl_usd: float = 0.0
    avg_daily_volume_usd: float = 0.0
    total_tx_count: int = 0
    missing_sources: Tuple[str, ...] = ()

    @property
    def available(self) -> bool:
        """False when every analytics query failed this cycle"""
        return len(self.missing_sources) < 3

    @property
    def volatility(self) -> float:
        return max(self.token0_volatility, self.token1_volatility)


@dataclass(frozen=True)
class RangeRecommendation:
    action: RecommendationAction
    confidence: float
    half_width_pct: float
    center_skew_pct: float
    risk_profile: RiskProfile
    reasoning: str = ''
    expected_outcome: str = ''
    source: str = 'heuristic'


@dataclass(frozen=True)
class PlannedRange:
    lower_tick: int
    upper_tick: int
    width_pct: float
    lower_price: float
    upper_price: float


@dataclass(frozen=True)
class AllocationPlan:
    amount0: float
    amount1: float
    degraded: bool = False
    method: str = 'liquidity_math'


@dataclass
class RebalanceResult:
    position_id: int
    success: bool
    action: str = RecommendationAction.MAINTAIN.value
    stage: WorkflowStage = WorkflowStage.FETCH
    transaction_hashes: List[str] = field(default_factory=list)
    new_position_id: Optional[str] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    requires_intervention: bool = False
    recommendation: Optional[RangeRecommendation] = None
    planned_range: Optional[PlannedRange] = None
    # Step that raised; stage itself ends at NOTIFY_FAILURE
    failed_stage: Optional[WorkflowStage] = None


@dataclass(frozen=True)
class SwapPlan:
    """Rebalance swap sized from idle balances; zero_for_one sells token0."""
    zero_for_one: bool
    amount_in: int
    min_amount_out: int = 0
