"""
Pool analytics for concentrated liquidity positions.
Fetches pool data from a Uniswap V3 style subgraph and derives health KPIs.
"""
import logging
from typing import Dict, Any, List, Tuple

import numpy as np
import pandas as pd
import requests

from lp_types import PoolState, PoolSnapshot, KPISet, HourlyPrice, DailyStats
from utils import UniswapV3Utils, UpstreamUnavailable, ParseError, ValidationError

logger = logging.getLogger(__name__)

VOLATILITY_WINDOW = 24
TOP_TICK_FRACTION = 0.1

LIQUIDITY_QUERY = """
query PoolLiquidity($pool: String!) {
  pool(id: $pool) {
    tick
    totalValueLockedToken0
    totalValueLockedToken1
  }
  ticks(first: 1000, where: {pool: $pool}, orderBy: tickIdx) {
    tickIdx
    liquidityNet
  }
}
"""

HOURLY_QUERY = """
query PoolHourData($pool: String!) {
  poolHourDatas(first: 24, orderBy: periodStartUnix, orderDirection: desc, where: {pool: $pool}) {
    periodStartUnix
    token0Price
    token1Price
  }
}
"""

DAILY_QUERY = """
query PoolDayData($pool: String!) {
  poolDayDatas(first: 30, orderBy: date, orderDirection: desc, where: {pool: $pool}) {
    date
    volumeUSD
    feesUSD
    tvlUSD
    txCount
  }
}
"""


class SubgraphAnalyticsSource:
    """Read-only GraphQL client for pool liquidity, price and volume data"""

    def __init__(self, url: str, api_key: str = '', timeout: float = 30.0):
        """
        Initialize the subgraph source

        Args:
            url: GraphQL endpoint
            api_key: Optional bearer token for hosted gateways
            timeout: Request timeout in seconds
        """
        self.url = url
        self.api_key = api_key
        self.timeout = timeout

    def _query(self, query: str, pool_address: str) -> Dict[str, Any]:
        headers = {'Content-Type': 'application/json'}
        if self.api_key:
            headers['Authorization'] = f"Bearer {self.api_key}"

        try:
            response = requests.post(
                self.url,
                json={'query': query, 'variables': {'pool': pool_address.lower()}},
                headers=headers,
                timeout=self.timeout
            )
        except requests.RequestException as e:
            raise UpstreamUnavailable(f"Subgraph request failed: {e}") from e

        if response.status_code != 200:
            raise UpstreamUnavailable(f"Subgraph returned HTTP {response.status_code}: {response.text[:200]}")

        try:
            body = response.json()
        except ValueError as e:
            raise ParseError(f"Subgraph returned non-JSON body: {e}") from e

        if not isinstance(body, dict):
            raise ParseError("Subgraph response is not a JSON object")
        if body.get('errors'):
            raise UpstreamUnavailable(f"Subgraph query errors: {body['errors']}")

        data = body.get('data')
        if not isinstance(data, dict):
            raise ParseError("Subgraph response has no data object")
        return data

    def fetch_liquidity(self, pool_address: str) -> Tuple[Dict[int, int], float, float]:
        """
        Fetch the per-tick liquidity distribution and TVL

        Returns:
            Tuple of (liquidity_net by tick, tvl token0, tvl token1)
        """
        data = self._query(LIQUIDITY_QUERY, pool_address)
        try:
            pool = data.get('pool') or {}
            ticks = {int(t['tickIdx']): int(t['liquidityNet']) for t in data.get('ticks') or []}
            tvl0 = float(pool.get('totalValueLockedToken0') or 0)
            tvl1 = float(pool.get('totalValueLockedToken1') or 0)
        except (KeyError, TypeError, ValueError) as e:
            raise ParseError(f"Malformed tick data: {e}") from e
        return ticks, tvl0, tvl1

    def fetch_hourly_prices(self, pool_address: str) -> List[HourlyPrice]:
        """Fetch up to 24 hourly price points, newest first"""
        data = self._query(HOURLY_QUERY, pool_address)
        try:
            return [
                HourlyPrice(
                    period_start=int(row['periodStartUnix']),
                    token0_price=float(row['token0Price']),
                    token1_price=float(row['token1Price'])
                )
                for row in data.get('poolHourDatas') or []
            ]
        except (KeyError, TypeError, ValueError) as e:
            raise ParseError(f"Malformed hourly data: {e}") from e

    def fetch_daily_stats(self, pool_address: str) -> List[DailyStats]:
        """Fetch up to 30 days of volume and fee history, newest first"""
        data = self._query(DAILY_QUERY, pool_address)
        try:
            return [
                DailyStats(
                    date=int(row['date']),
                    volume_usd=float(row['volumeUSD']),
                    fees_usd=float(row['feesUSD']),
                    tvl_usd=float(row['tvlUSD']),
                    tx_count=int(row.get('txCount') or 0)
                )
                for row in data.get('poolDayDatas') or []
            ]
        except (KeyError, TypeError, ValueError) as e:
            raise ParseError(f"Malformed daily data: {e}") from e


class PoolAnalyticsEngine:
    """Builds pool snapshots and computes KPIs from them"""

    def __init__(self, source: SubgraphAnalyticsSource):
        self.source = source

    def fetch_snapshot(self,
                       pool_state: PoolState,
                       token0_decimals: int,
                       token1_decimals: int) -> PoolSnapshot:
        """
        Combine on-chain pool state with subgraph data

        Each subgraph query is attempted once and independently. A failing
        query is logged and its fields stay at their defaults.

        Args:
            pool_state: slot0 view read from chain
            token0_decimals: Token0 decimals
            token1_decimals: Token1 decimals

        Returns:
            PoolSnapshot for this cycle
        """
        raw_price = UniswapV3Utils.sqrt_price_x96_to_price(pool_state.sqrt_price_x96)
        if raw_price <= 0:
            raise ValidationError(f"Pool {pool_state.pool_address} is not initialized")
        token1_per_token0 = raw_price * (10 ** (token0_decimals - token1_decimals))
        current_price = 1 / token1_per_token0

        pool = pool_state.pool_address.lower()
        unavailable = []

        ticks: Dict[int, int] = {}
        tvl0 = tvl1 = 0.0
        try:
            ticks, tvl0, tvl1 = self.source.fetch_liquidity(pool)
        except (UpstreamUnavailable, ParseError) as e:
            logger.warning(f"Liquidity distribution unavailable for {pool}: {e}")
            unavailable.append('liquidity')

        hourly: List[HourlyPrice] = []
        try:
            hourly = self.source.fetch_hourly_prices(pool)
        except (UpstreamUnavailable, ParseError) as e:
            logger.warning(f"Hourly price history unavailable for {pool}: {e}")
            unavailable.append('hourly_prices')

        daily: List[DailyStats] = []
        try:
            daily = self.source.fetch_daily_stats(pool)
        except (UpstreamUnavailable, ParseError) as e:
            logger.warning(f"Daily volume history unavailable for {pool}: {e}")
            unavailable.append('daily_stats')

        return PoolSnapshot(
            pool_address=pool,
            current_tick=pool_state.current_tick,
            current_price=current_price,
            tick_spacing=pool_state.tick_spacing,
            liquidity_by_tick=ticks,
            tvl_token0=tvl0,
            tvl_token1=tvl1,
            hourly_prices=tuple(hourly),
            daily_stats=tuple(daily),
            unavailable_sources=tuple(unavailable)
        )

    def compute_kpis(self, snapshot: PoolSnapshot, position_range: Tuple[int, int]) -> KPISet:
        """
        Derive health metrics for a position range

        Args:
            snapshot: Pool snapshot
            position_range: (lower_tick, upper_tick) of the position

        Returns:
            KPISet; metrics without input data are 0
        """
        lower, upper = position_range
        current = snapshot.current_tick

        kpis: Dict[str, Any] = {
            'distance_to_lower_ticks': current - lower,
            'distance_to_upper_ticks': upper - current,
            'in_range': lower <= current < upper,
            'missing_sources': snapshot.unavailable_sources,
        }
        kpis.update(self._liquidity_metrics(snapshot.liquidity_by_tick, current, lower, upper))
        kpis.update(self._token_ratios(snapshot))
        kpis.update(self._price_metrics(snapshot))
        kpis.update(self._volume_metrics(snapshot))

        return KPISet(**kpis)

    @staticmethod
    def _liquidity_metrics(liquidity_by_tick: Dict[int, int], current: int, lower: int, upper: int) -> Dict[str, Any]:
        active = [(tick, abs(liq)) for tick, liq in liquidity_by_tick.items() if liq != 0]
        if not active:
            return {}

        ticks = np.array([tick for tick, _ in active], dtype=np.int64)
        liquidity = np.array([liq for _, liq in active], dtype=float)
        total = liquidity.sum()
        if total <= 0:
            return {}

        n = len(liquidity)
        shares = liquidity / total
        sorted_shares = np.sort(shares)
        gini = 2 * np.sum(np.arange(1, n + 1) * sorted_shares) / (n * sorted_shares.sum()) - (n + 1) / n

        top_n = max(1, int(n * TOP_TICK_FRACTION))
        top_share = np.sort(liquidity)[::-1][:top_n].sum() / total

        above = liquidity[ticks > current].sum()
        below = liquidity[ticks < current].sum()
        skew = (above - below) / (above + below) if above + below > 0 else 0.0

        in_position = (ticks >= lower) & (ticks <= upper)
        utilization = liquidity[in_position].sum() / total * 100

        return {
            'utilization_pct': float(min(max(utilization, 0.0), 100.0)),
            'hhi': float(np.sum(shares ** 2)),
            'gini': float(gini),
            'top_10pct_share': float(top_share),
            'liquidity_skew': float(skew),
            'active_tick_count': int(in_position.sum()),
            'active_tick_range': (int(ticks.min()), int(ticks.max())),
            'avg_liquidity_per_tick': float(total / n),
        }

    @staticmethod
    def _token_ratios(snapshot: PoolSnapshot) -> Dict[str, float]:
        # TVL valued in token0 terms
        tvl1_in_token0 = snapshot.tvl_token1 * snapshot.current_price
        total = snapshot.tvl_token0 + tvl1_in_token0
        if total <= 0:
            return {}
        return {
            'token0_ratio': snapshot.tvl_token0 / total,
            'token1_ratio': tvl1_in_token0 / total,
        }

    @staticmethod
    def _price_metrics(snapshot: PoolSnapshot) -> Dict[str, float]:
        hourly = snapshot.hourly_prices
        if not hourly:
            return {}

        metrics: Dict[str, float] = {}

        earliest = hourly[-1].token0_price
        if earliest > 0 and snapshot.current_price > 0:
            metrics['impermanent_loss_pct'] = abs(snapshot.current_price / earliest - 1) * 100

        if len(hourly) < 2:
            return metrics

        df = pd.DataFrame([
            {'period_start': h.period_start, 'token0': h.token0_price, 'token1': h.token1_price}
            for h in hourly
        ]).sort_values('period_start')
        prices = df[['token0', 'token1']]
        prices = prices.where(prices > 0)
        changes = prices.pct_change(fill_method=None).iloc[1:].tail(VOLATILITY_WINDOW)

        for column in ('token0', 'token1'):
            series = changes[column].dropna()
            metrics[f'{column}_volatility'] = float(series.std(ddof=0)) if len(series) else 0.0

        latest = changes.iloc[-1].dropna()
        if len(latest):
            metrics['latest_price_change_pct'] = float(latest.mean() * 100)

        return metrics

    @staticmethod
    def _volume_metrics(snapshot: PoolSnapshot) -> Dict[str, Any]:
        if not snapshot.daily_stats:
            return {}

        df = pd.DataFrame([
            {'volume': d.volume_usd, 'fees': d.fees_usd, 'tvl': d.tvl_usd, 'txs': d.tx_count}
            for d in snapshot.daily_stats
        ])
        total_volume = float(df['volume'].sum())
        total_fees = float(df['fees'].sum())

        return {
            'total_volume_usd': total_volume,
            'total_fees_usd': total_fees,
            'avg_fee_rate': total_fees / total_volume if total_volume > 0 else 0.0,
            'avg_tvl_usd': float(df['tvl'].mean()),
            'avg_daily_volume_usd': total_volume / len(df),
            'total_tx_count': int(df['txs'].sum()),
        }
