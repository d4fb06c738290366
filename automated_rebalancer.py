"""
Core rebalancing logic for the concentrated LP rebalancer.
Evaluates configured positions and moves them to a new range when advised.
"""
import logging
import threading
import time
from dataclasses import dataclass, replace
from typing import Dict, Any, List, Optional, Tuple

from amount_allocator import AmountAllocator
from config import Config
from lp_types import (
    AllocationPlan, KPISet, PlannedRange, PoolSnapshot, PoolState, Position,
    RangeRecommendation, RebalanceResult, RecommendationAction, RiskProfile,
    SwapPlan, WalletAccount, WorkflowStage, RISK_PROFILE_COOLDOWNS
)
from payloads import parse_balances, parse_pool_state, parse_position, parse_transaction, TransactionReceipt
from pool_analytics import PoolAnalyticsEngine
from range_planner import RangePlanner
from utils import (
    ErrorHandler, ExecutionFailure, InsufficientBalance, RebalanceError, UniswapV3Utils
)

logger = logging.getLogger(__name__)


@dataclass
class CyclePlan:
    """Everything decided for a position before any transaction is sent"""
    position: Position
    pool_state: PoolState
    snapshot: PoolSnapshot
    kpis: KPISet
    recommendation: RangeRecommendation
    planning_price: float
    planned_range: Optional[PlannedRange] = None
    allocation: Optional[AllocationPlan] = None


class RebalanceOrchestrator:
    """
    Runs the per-position workflow:

        FETCH -> ANALYZE -> WITHDRAW -> SWAP (optional) -> SUPPLY -> NOTIFY_SUCCESS
                                    any failure -> FAIL -> NOTIFY_FAILURE

    Positions are handled one at a time and a failing position never stops
    the others. Nothing is retried inside a cycle; the next cycle starts
    from fresh on-chain state.
    """

    def __init__(self,
                 config: Config,
                 executor,
                 analytics: PoolAnalyticsEngine,
                 advisor,
                 account: Optional[WalletAccount] = None,
                 planner: Optional[RangePlanner] = None,
                 allocator: Optional[AmountAllocator] = None,
                 alert_manager=None):
        """
        Initialize the orchestrator

        Args:
            config: Configuration object
            executor: Execution collaborator answering call(operation, arguments) with envelopes
            analytics: Pool analytics engine
            advisor: Range advisor
            account: Signing wallet; required in active mode
            planner: Range planner (built from config width limits if omitted)
            allocator: Amount allocator
            alert_manager: Notification sink, optional
        """
        self.config = config
        self.executor = executor
        self.analytics = analytics
        self.advisor = advisor
        self.account = account
        self.planner = planner or RangePlanner(config.MIN_RANGE_WIDTH_PERCENTAGE,
                                               config.MAX_RANGE_WIDTH_PERCENTAGE)
        self.allocator = allocator or AmountAllocator()
        self.alert_manager = alert_manager

        self.risk_profile = RiskProfile(config.RISK_PROFILE)
        self.active = config.REBALANCER_MODE == 'active'
        if self.active and self.account is None:
            raise ValueError("Active mode requires a wallet account")

        cooldown = config.REBALANCE_COOLDOWN_SECONDS
        self.cooldown_seconds = int(cooldown) if cooldown else RISK_PROFILE_COOLDOWNS[self.risk_profile]
        # position id -> time of its last completed rebalance
        self.last_rebalance: Dict[int, float] = {}
        self.clock = time.time

        # Monitoring state
        self.is_running = False
        self.monitoring_thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._cycle_lock = threading.Lock()
        self.cycles_completed = 0
        self.last_cycle_time = 0.0
        self.last_results: List[RebalanceResult] = []

        logger.info(f"Rebalance orchestrator initialized ({'active' if self.active else 'passive'} mode, "
                    f"risk profile {self.risk_profile.value}, cooldown {self.cooldown_seconds}s)")

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    def run_cycle(self, position_ids: List[int]) -> List[RebalanceResult]:
        """
        Process every position once, sequentially

        Args:
            position_ids: Positions to evaluate

        Returns:
            One RebalanceResult per position, in input order

        Raises:
            RuntimeError: If a cycle is already running
        """
        if not self._cycle_lock.acquire(blocking=False):
            raise RuntimeError("A rebalance cycle is already running")

        try:
            logger.info(f"Starting cycle over {len(position_ids)} positions")
            results = [self.process_position(position_id) for position_id in position_ids]

            succeeded = sum(1 for result in results if result.success)
            logger.info(f"Cycle finished: {succeeded}/{len(results)} positions succeeded")

            self.last_results = results
            self.last_cycle_time = time.time()
            self.cycles_completed += 1
            return results
        finally:
            self._cycle_lock.release()

    def process_position(self, position_id: int) -> RebalanceResult:
        """
        Run the full workflow for one position

        Args:
            position_id: Position NFT id

        Returns:
            RebalanceResult; never raises for workflow failures
        """
        result = RebalanceResult(position_id=position_id, success=False)
        withdrawn = False

        try:
            result.stage = WorkflowStage.FETCH
            position, pool_state = self._fetch(position_id)

            result.stage = WorkflowStage.ANALYZE
            plan = self._analyze(position, pool_state)
            recommendation = plan.recommendation
            result.recommendation = recommendation
            result.action = recommendation.action.value
            result.planned_range = plan.planned_range

            if recommendation.action == RecommendationAction.MAINTAIN:
                logger.info(f"Position {position_id}: maintain ({recommendation.reasoning})")
                result.success = True
                return result

            if not self.active:
                logger.info(f"Position {position_id}: {recommendation.action.value} advised (passive mode, "
                            f"no transactions sent)")
                self._notify('send_recommendation_notification', position_id, recommendation, plan.kpis)
                result.success = True
                return result

            result.stage = WorkflowStage.WITHDRAW
            receipt = self._withdraw(position)
            withdrawn = True
            result.transaction_hashes.extend(receipt.transaction_hashes)

            if recommendation.action == RecommendationAction.WITHDRAW:
                logger.info(f"Position {position_id} withdrawn on advisor request")
                result.stage = WorkflowStage.NOTIFY_SUCCESS
                result.success = True
                self._notify('send_rebalance_notification', result, self._pair(position),
                             plan.snapshot.current_price)
                return result

            balance0, balance1 = self._get_balances(position)
            allocation = self.allocator.allocate(plan.planning_price, plan.planned_range, balance0, balance1)

            swap = self.allocator.plan_swap(
                plan.planning_price, balance0, balance1, allocation,
                self.config.SWAP_IMBALANCE_THRESHOLD, self.config.SLIPPAGE_BPS
            )
            if swap is not None:
                result.stage = WorkflowStage.SWAP
                receipt = self._swap(position, swap)
                result.transaction_hashes.extend(receipt.transaction_hashes)

            result.stage = WorkflowStage.SUPPLY
            receipt = self._supply(position, plan)
            result.transaction_hashes.extend(receipt.transaction_hashes)
            result.new_position_id = receipt.position_id or 'unknown'

            self._record_rebalance(position_id, result.new_position_id)

            result.stage = WorkflowStage.NOTIFY_SUCCESS
            result.success = True
            logger.info(f"Position {position_id} rebalanced into {result.new_position_id} "
                        f"[{plan.planned_range.lower_tick}, {plan.planned_range.upper_tick}]")
            self._notify('send_rebalance_notification', result, self._pair(position),
                         plan.snapshot.current_price)
            return result

        except Exception as e:
            self._fail(result, e, withdrawn)
            return result

    def _fail(self, result: RebalanceResult, error: Exception, withdrawn: bool):
        """Record a failure on the result and send the failure notifications"""
        failed_stage = result.stage
        result.failed_stage = failed_stage
        result.stage = WorkflowStage.FAIL
        result.success = False
        result.error = str(error)

        if isinstance(error, ExecutionFailure):
            result.transaction_hashes.extend(h for h in error.transaction_hashes
                                             if h not in result.transaction_hashes)
            result.error_type = ErrorHandler.handle_transaction_error(error)['type']
            # A withdraw that sent some transactions may already have pulled liquidity
            if failed_stage == WorkflowStage.WITHDRAW and error.transaction_hashes:
                withdrawn = True
        elif isinstance(error, RebalanceError):
            result.error_type = type(error).__name__
        else:
            result.error_type = 'unexpected'

        if result.error_type == 'unexpected':
            logger.exception(f"Position {result.position_id} failed at {failed_stage.value}: {error}")
        else:
            logger.error(f"Position {result.position_id} failed at {failed_stage.value}: {error}")

        result.requires_intervention = withdrawn
        result.stage = WorkflowStage.NOTIFY_FAILURE
        self._notify('send_failure_notification', result)

        if withdrawn:
            self._notify(
                'send_critical_alert',
                'Liquidity Not Re-supplied',
                f"Position {result.position_id} was withdrawn but {failed_stage.value} failed: {error}. "
                f"Funds are idle in the wallet.",
                True
            )

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _fetch(self, position_id: int) -> Tuple[Position, PoolState]:
        position = parse_position(self.executor.call('get_position', {'position_id': position_id}))
        pool_state = parse_pool_state(self.executor.call('get_pool_state', {'pool_address': position.pool_address}))

        logger.info(f"Position {position_id}: {self._pair(position)} fee {position.fee}, "
                    f"ticks [{position.tick_lower}, {position.tick_upper}], pool tick {pool_state.current_tick}")
        return position, pool_state

    def _analyze(self, position: Position, pool_state: PoolState) -> CyclePlan:
        """
        Build the complete plan for a position

        Args:
            position: Current position
            pool_state: Current pool state

        Returns:
            CyclePlan with KPIs, recommendation and, when rebalancing, the range and allocation

        Raises:
            PolicyViolation: Recommendation is outside the risk-profile band
            InvalidRange: Recommendation cannot be turned into a valid range
        """
        snapshot = self.analytics.fetch_snapshot(pool_state, position.token0.decimals, position.token1.decimals)
        kpis = self.analytics.compute_kpis(snapshot, (position.tick_lower, position.tick_upper))
        logger.info(f"Position {position.position_id} KPIs: utilization {kpis.utilization_pct:.1f}%, "
                    f"volatility {kpis.volatility:.4f}, in range {kpis.in_range}")

        recommendation = self.advisor.recommend(kpis, (position.tick_lower, position.tick_upper), self.risk_profile)

        if recommendation.action == RecommendationAction.WITHDRAW and not self.config.ALLOW_ADVISOR_WITHDRAW:
            logger.warning(f"Advisor asked to withdraw position {position.position_id} but "
                           f"ALLOW_ADVISOR_WITHDRAW is off; maintaining")
            recommendation = replace(recommendation, action=RecommendationAction.MAINTAIN,
                                     reasoning=f"Withdraw not permitted; {recommendation.reasoning}")

        if recommendation.action == RecommendationAction.REBALANCE:
            remaining = self.cooldown_remaining(position.position_id)
            if remaining > 0:
                logger.info(f"Position {position.position_id} rebalanced recently; "
                            f"next rebalance allowed in {remaining:.0f}s")
                recommendation = replace(
                    recommendation, action=RecommendationAction.MAINTAIN,
                    reasoning=f"Rebalance cooldown active ({remaining:.0f}s left); {recommendation.reasoning}"
                )

        # Planner and allocator work in base units, token0 per token1
        planning_price = UniswapV3Utils.adjust_price_for_decimals(
            snapshot.current_price, position.token0.decimals, position.token1.decimals
        )
        plan = CyclePlan(
            position=position,
            pool_state=pool_state,
            snapshot=snapshot,
            kpis=kpis,
            recommendation=recommendation,
            planning_price=planning_price
        )

        if recommendation.action != RecommendationAction.REBALANCE:
            return plan

        RangePlanner.validate_policy_band(recommendation)
        plan.planned_range = self.planner.build_range(
            planning_price,
            recommendation.half_width_pct,
            recommendation.center_skew_pct,
            pool_state.tick_spacing
        )
        logger.info(f"Planned range for {position.position_id}: [{plan.planned_range.lower_tick}, "
                    f"{plan.planned_range.upper_tick}] width {plan.planned_range.width_pct:.2f}%")

        if self.account is not None:
            balance0, balance1 = self._get_balances(position)
            plan.allocation = self.allocator.allocate(planning_price, plan.planned_range, balance0, balance1)
            logger.info(f"Preliminary allocation: {plan.allocation.amount0:.0f} token0, "
                        f"{plan.allocation.amount1:.0f} token1 ({plan.allocation.method})")

        return plan

    def _withdraw(self, position: Position) -> TransactionReceipt:
        logger.info(f"Withdrawing position {position.position_id}")
        return parse_transaction(self.executor.call('withdraw_liquidity', {'position_id': position.position_id}))

    def _swap(self, position: Position, swap: SwapPlan) -> TransactionReceipt:
        token_in, token_out = position.token0, position.token1
        if not swap.zero_for_one:
            token_in, token_out = token_out, token_in

        logger.info(f"Swapping {UniswapV3Utils.format_token_amount(swap.amount_in, token_in.decimals, token_in.symbol)} "
                    f"for {token_out.symbol}")
        return parse_transaction(self.executor.call('swap_tokens', {
            'token_in': token_in.address,
            'token_out': token_out.address,
            'fee': position.fee,
            'amount_in': swap.amount_in,
            'min_amount_out': swap.min_amount_out
        }))

    def _supply(self, position: Position, plan: CyclePlan) -> TransactionReceipt:
        """
        Re-read balances, size the deposit and mint the new position

        Raises:
            InsufficientBalance: Wallet cannot cover the deposit
        """
        balance0, balance1 = self._get_balances(position)
        allocation = self.allocator.allocate(plan.planning_price, plan.planned_range, balance0, balance1)
        if allocation.degraded:
            logger.warning(f"Supplying position {position.position_id} with a degraded allocation")

        amount0 = int(allocation.amount0)
        amount1 = int(allocation.amount1)
        if amount0 <= 0 and amount1 <= 0:
            raise InsufficientBalance(f"Nothing to supply (balances {balance0}/{balance1})")
        if amount0 > balance0 or amount1 > balance1:
            raise InsufficientBalance(f"Allocation {amount0}/{amount1} exceeds balances {balance0}/{balance1}")

        hashes = []
        for token, amount in ((position.token0, amount0), (position.token1, amount1)):
            if amount > 0:
                receipt = parse_transaction(self.executor.call('ensure_allowance', {
                    'token': token.address,
                    'amount': amount
                }))
                hashes.extend(receipt.transaction_hashes)

        receipt = parse_transaction(self.executor.call('supply_liquidity', {
            'token0': position.token0.address,
            'token1': position.token1.address,
            'fee': position.fee,
            'tick_lower': plan.planned_range.lower_tick,
            'tick_upper': plan.planned_range.upper_tick,
            'amount0': amount0,
            'amount1': amount1,
            'slippage_bps': self.config.SLIPPAGE_BPS
        }))
        receipt.transaction_hashes = hashes + receipt.transaction_hashes
        return receipt

    def cooldown_remaining(self, position_id: int) -> float:
        """Seconds until the position may be rebalanced again; 0 when allowed"""
        last = self.last_rebalance.get(position_id)
        if last is None:
            return 0.0
        return max(0.0, last + self.cooldown_seconds - self.clock())

    def _record_rebalance(self, position_id: int, new_position_id: Optional[str]):
        now = self.clock()
        self.last_rebalance[position_id] = now
        # The minted position inherits the cooldown
        if new_position_id and new_position_id.isdigit():
            self.last_rebalance[int(new_position_id)] = now

    def _get_balances(self, position: Position) -> Tuple[int, int]:
        return parse_balances(self.executor.call('get_wallet_balances', {
            'token0': position.token0.address,
            'token1': position.token1.address,
            'owner': self.account.address if self.account else None
        }))

    @staticmethod
    def _pair(position: Position) -> str:
        return f"{position.token0.symbol}/{position.token1.symbol}"

    def _notify(self, method: str, *args):
        """Send a notification; failures are logged and never affect the result"""
        if self.alert_manager is None:
            return
        try:
            getattr(self.alert_manager, method)(*args)
        except Exception as e:
            logger.warning(f"Notification {method} failed: {e}")

    # ------------------------------------------------------------------
    # Monitoring
    # ------------------------------------------------------------------

    def monitoring_loop(self, position_ids: List[int]):
        """
        Run one cycle per monitoring interval until stopped

        Args:
            position_ids: Positions to evaluate each cycle
        """
        logger.info("Starting monitoring loop...")

        while self.is_running:
            try:
                self.run_cycle(position_ids)
            except Exception as e:
                logger.error(f"Error in monitoring loop: {e}")

            if self._stop_event.wait(self.config.MONITORING_INTERVAL_SECONDS):
                break

        logger.info("Monitoring loop exited")

    def start_monitoring(self, position_ids: List[int]):
        """
        Start the monitoring thread

        Args:
            position_ids: Positions to evaluate each cycle
        """
        if self.is_running:
            logger.warning("Monitoring is already running")
            return

        self.is_running = True
        self._stop_event.clear()

        self.monitoring_thread = threading.Thread(
            target=self.monitoring_loop,
            args=(list(position_ids),),
            daemon=True
        )
        self.monitoring_thread.start()

        logger.info("Monitoring started")

    def stop_monitoring(self):
        """Stop the monitoring thread"""
        if not self.is_running:
            logger.warning("Monitoring is not running")
            return

        self.is_running = False
        self._stop_event.set()

        if self.monitoring_thread:
            self.monitoring_thread.join(timeout=5)

        logger.info("Monitoring stopped")

    def get_status(self) -> Dict[str, Any]:
        """Get current status of the orchestrator"""
        return {
            'is_running': self.is_running,
            'mode': 'active' if self.active else 'passive',
            'risk_profile': self.risk_profile.value,
            'cycles_completed': self.cycles_completed,
            'last_cycle_time': self.last_cycle_time,
            'last_results': [
                {
                    'position_id': result.position_id,
                    'success': result.success,
                    'action': result.action,
                    'stage': result.stage.value,
                    'failed_stage': result.failed_stage.value if result.failed_stage else None,
                    'error': result.error,
                    'requires_intervention': result.requires_intervention
                }
                for result in self.last_results
            ],
            'degraded_allocations': self.allocator.degraded_count,
            'rebalance_cooldown_seconds': self.cooldown_seconds,
            'monitoring_interval': self.config.MONITORING_INTERVAL_SECONDS
        }
