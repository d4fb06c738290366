#!/usr/bin/env python3
"""
Main application for the concentrated LP rebalancer.
Runs a single evaluation cycle or the continuous monitoring loop.
"""
import argparse
import logging
import signal
import sys
import time
from typing import List, Optional

from advisors import AdvisorFactory
from alert_manager import TelegramAlertManager
from automated_rebalancer import RebalanceOrchestrator
from config import Config
from lp_position_manager import LPPositionManager
from lp_types import WalletAccount
from pool_analytics import PoolAnalyticsEngine, SubgraphAnalyticsSource
from uniswap_client import UniswapV3Client
from utils import Logger

logger = logging.getLogger(__name__)


class RebalancerApp:
    """Main application class for the rebalancer"""

    def __init__(self, config: Config):
        """
        Initialize the application and wire its collaborators

        Args:
            config: Validated configuration
        """
        self.config = config
        self.position_ids = config.get_position_ids()
        self.running = False

        active = config.is_active_mode()
        self.client = UniswapV3Client(config, read_only=not active)
        executor = LPPositionManager(self.client)

        source = SubgraphAnalyticsSource(
            config.SUBGRAPH_URL,
            api_key=config.SUBGRAPH_API_KEY,
            timeout=config.SUBGRAPH_TIMEOUT_SECONDS
        )
        analytics = PoolAnalyticsEngine(source)
        advisor = AdvisorFactory.create_advisor(config.ADVISOR, config)
        self.alert_manager = TelegramAlertManager(config)

        account = WalletAccount(self.client.wallet_address) if self.client.wallet_address else None

        self.orchestrator = RebalanceOrchestrator(
            config=config,
            executor=executor,
            analytics=analytics,
            advisor=advisor,
            account=account,
            alert_manager=self.alert_manager
        )

        # Set up signal handlers for graceful shutdown
        signal.signal(signal.SIGINT, self.signal_handler)
        signal.signal(signal.SIGTERM, self.signal_handler)

        logger.info("RebalancerApp initialized")

    def signal_handler(self, signum, frame):
        """Handle shutdown signals"""
        logger.info(f"Received signal {signum}, shutting down gracefully...")
        self.alert_manager.send_shutdown_notification(f"Received {signal.Signals(signum).name}")
        self.stop()

    def _log_results(self, results):
        for result in results:
            status = "OK" if result.success else f"FAILED at {(result.failed_stage or result.stage).value}: {result.error}"
            logger.info(f"  Position {result.position_id}: {result.action} - {status}")
            if result.requires_intervention:
                logger.error(f"  Position {result.position_id} requires manual intervention")

    def run_once(self) -> bool:
        """
        Run a single cycle over the configured positions

        Returns:
            True if every position succeeded
        """
        results = self.orchestrator.run_cycle(self.position_ids)
        self._log_results(results)
        return all(result.success for result in results)

    def start(self) -> bool:
        """
        Start monitoring and block until stopped

        Returns:
            True on clean shutdown
        """
        logger.info("Starting concentrated LP rebalancer")
        logger.info(f"Chain: {self.config.CHAIN_NAME} (ID: {self.config.CHAIN_ID})")
        logger.info(f"Mode: {self.config.REBALANCER_MODE}")
        logger.info(f"Risk profile: {self.config.RISK_PROFILE}")
        logger.info(f"Advisor: {self.config.ADVISOR}")
        logger.info(f"Positions: {self.position_ids}")
        logger.info(f"Monitoring Interval: {self.config.MONITORING_INTERVAL_SECONDS} seconds")

        self.alert_manager.send_startup_notification(
            chain_name=self.config.CHAIN_NAME,
            wallet_address=self.client.wallet_address,
            mode=self.config.REBALANCER_MODE,
            position_ids=self.position_ids
        )

        self.orchestrator.start_monitoring(self.position_ids)
        self.running = True

        logger.info("Rebalancer is now running...")
        logger.info("Press Ctrl+C to stop")

        # Keep the main thread alive
        while self.running:
            time.sleep(1)

        return True

    def stop(self):
        """Stop the rebalancer"""
        if self.running:
            logger.info("Stopping rebalancer...")
            self.orchestrator.stop_monitoring()
            self.running = False
            logger.info("Rebalancer stopped")

    def get_status(self) -> dict:
        """Get current status"""
        return self.orchestrator.get_status()


def apply_overrides(args: argparse.Namespace):
    """Apply command line overrides on top of the environment configuration"""
    if args.active:
        Config.REBALANCER_MODE = 'active'
    elif args.passive:
        Config.REBALANCER_MODE = 'passive'
    if args.positions:
        Config.POSITION_IDS = args.positions
    if args.risk_profile:
        Config.RISK_PROFILE = args.risk_profile
    if args.advisor:
        Config.ADVISOR = args.advisor
    if args.log_level:
        Config.LOG_LEVEL = args.log_level


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Concentrated liquidity rebalancer for Uniswap V3 positions',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Evaluate positions once, no transactions
  python main.py --once --passive --positions 12345

  # Monitor and rebalance continuously
  python main.py --active --positions 12345,67890 --risk-profile conservative

  # Use the LLM advisor
  python main.py --advisor llm
        """
    )

    parser.add_argument('--once', action='store_true',
                        help='Run a single cycle and exit')

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument('--passive', action='store_true',
                      help='Evaluate and notify only (overrides REBALANCER_MODE)')
    mode.add_argument('--active', action='store_true',
                      help='Send rebalance transactions (overrides REBALANCER_MODE)')

    parser.add_argument('--positions',
                        help='Comma-separated position ids (overrides POSITION_IDS)')
    parser.add_argument('--risk-profile', choices=['conservative', 'medium', 'aggressive'],
                        help='Risk profile (overrides RISK_PROFILE)')
    parser.add_argument('--advisor', choices=['heuristic', 'llm'],
                        help='Range advisor (overrides ADVISOR)')
    parser.add_argument('--log-level', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Logging level (overrides LOG_LEVEL)')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main function"""
    args = build_parser().parse_args(argv)
    apply_overrides(args)

    Logger.setup_logging(level=Config.LOG_LEVEL, log_file=Config.LOG_FILE or None)

    try:
        Config.validate_config()
        logger.info("✅ Configuration validation passed")
    except ValueError as e:
        logger.error(f"❌ {e}")
        return 1

    try:
        app = RebalancerApp(Config())
        if args.once:
            return 0 if app.run_once() else 1
        return 0 if app.start() else 1

    except KeyboardInterrupt:
        logger.info("🛑 Shutdown requested by user")
        return 1
    except Exception as e:
        logger.error(f"Unexpected error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
