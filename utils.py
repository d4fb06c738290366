"""
Concentrated LP Rebalancer - Utility Functions
Tick math, error taxonomy and logging helpers shared by the rebalancer
"""
import logging
import math
from typing import Dict, Any

logger = logging.getLogger(__name__)

MIN_TICK = -887272
MAX_TICK = 887272
TICK_BASE = 1.0001
Q96 = 2 ** 96


class RebalanceError(Exception):
    """Base class for all rebalancer errors"""


class ValidationError(RebalanceError):
    """Collapsed range, policy-band violation or otherwise invalid plan"""


class InvalidRange(ValidationError):
    """Planned range violates tick or width constraints"""


class PolicyViolation(ValidationError):
    """Recommended half-width is outside the risk-profile band"""


class UpstreamUnavailable(RebalanceError):
    """Analytics source, RPC node or advisor could not be reached"""


class InsufficientBalance(RebalanceError):
    """Wallet cannot cover the planned deposit"""


class ExecutionFailure(RebalanceError):
    """On-chain revert or failed result from an execution collaborator"""

    def __init__(self, message: str, transaction_hashes=None):
        super().__init__(message)
        self.transaction_hashes = list(transaction_hashes or [])


class ParseError(RebalanceError):
    """Malformed collaborator or advisor response"""


class UniswapV3Utils:
    """Utility functions for Uniswap V3 tick and price math"""

    @staticmethod
    def tick_to_price(tick: int) -> float:
        """
        Convert tick to price (pool orientation, token1 per token0)

        Args:
            tick: Tick value

        Returns:
            Price as float
        """
        return TICK_BASE ** tick

    @staticmethod
    def price_to_tick(price: float) -> int:
        """
        Convert price to the greatest tick whose price does not exceed it

        Args:
            price: Price as float (must be positive)

        Returns:
            Tick value
        """
        if price <= 0 or not math.isfinite(price):
            raise InvalidRange(f"Cannot convert non-positive or non-finite price to tick: {price}")

        tick = math.floor(math.log(price) / math.log(TICK_BASE))

        # log/pow rounding can land one tick off either side of the floor
        if UniswapV3Utils.tick_to_price(tick + 1) <= price:
            tick += 1
        elif UniswapV3Utils.tick_to_price(tick) > price:
            tick -= 1
        return tick

    @staticmethod
    def tick_to_sqrt_price(tick: int) -> float:
        """Square root of the tick price"""
        return math.sqrt(TICK_BASE ** tick)

    @staticmethod
    def sqrt_price_x96_to_price(sqrt_price_x96: int) -> float:
        """
        Convert a slot0 sqrtPriceX96 value to a raw pool price

        Args:
            sqrt_price_x96: Q64.96 encoded square root price

        Returns:
            Raw price (token1 base units per token0 base unit)
        """
        return (sqrt_price_x96 / Q96) ** 2

    @staticmethod
    def adjust_price_for_decimals(price: float, token0_decimals: int, token1_decimals: int) -> float:
        """
        Convert a human token0-per-token1 price into base-unit terms

        Args:
            price: Human price (token0 per token1)
            token0_decimals: Token0 decimals
            token1_decimals: Token1 decimals

        Returns:
            Price in token0 base units per token1 base unit
        """
        return price * (10 ** (token0_decimals - token1_decimals))

    @staticmethod
    def to_min_amount(amount: int, slippage_bps: int) -> int:
        """Minimum acceptable amount after slippage, in base units"""
        if amount <= 0:
            return 0
        return (int(amount) * (10000 - slippage_bps)) // 10000

    @staticmethod
    def format_token_amount(amount: int, decimals: int, symbol: str = "") -> str:
        """
        Format token amount for display

        Args:
            amount: Amount in base units
            decimals: Token decimals
            symbol: Token symbol

        Returns:
            Formatted string
        """
        formatted_amount = amount / (10 ** decimals)
        return f"{formatted_amount:.6f} {symbol}".strip()


class ErrorHandler:
    """Error handling utilities"""

    @staticmethod
    def handle_transaction_error(error: Exception) -> Dict[str, Any]:
        """
        Classify transaction errors and provide meaningful messages

        Args:
            error: Exception object

        Returns:
            Error information dictionary
        """
        error_msg = str(error)
        lowered = error_msg.lower()

        if "insufficient funds" in lowered:
            return {
                'type': 'insufficient_funds',
                'message': 'Insufficient native balance for gas fees',
                'suggestion': 'Add more ETH to your wallet'
            }
        elif "gas limit" in lowered or "out of gas" in lowered:
            return {
                'type': 'gas_limit',
                'message': 'Transaction gas limit exceeded',
                'suggestion': 'Increase MAX_GAS_LIMIT'
            }
        elif "slippage" in lowered or "price slippage check" in lowered or "too little received" in lowered:
            return {
                'type': 'slippage',
                'message': 'Price slippage too high',
                'suggestion': 'Increase SLIPPAGE_BPS or reduce position size'
            }
        elif "deadline" in lowered or "transaction too old" in lowered:
            return {
                'type': 'deadline',
                'message': 'Transaction deadline exceeded',
                'suggestion': 'Increase TX_DEADLINE_SECONDS'
            }
        elif "nonce" in lowered:
            return {
                'type': 'nonce',
                'message': 'Nonce error',
                'suggestion': 'Make sure only one rebalancer runs against this wallet'
            }
        else:
            return {
                'type': 'unknown',
                'message': error_msg,
                'suggestion': 'Check transaction parameters and position state'
            }


class Logger:
    """Logging setup utilities"""

    @staticmethod
    def setup_logging(level: str = "INFO", log_file: str = None):
        """
        Set up logging configuration

        Args:
            level: Logging level (DEBUG, INFO, WARNING, ERROR)
            log_file: Optional log file path
        """
        log_level = getattr(logging, level.upper())

        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)

        handlers = [console_handler]
        if log_file:
            file_handler = logging.FileHandler(log_file)
            file_handler.setFormatter(formatter)
            handlers.append(file_handler)

        logging.basicConfig(
            level=log_level,
            handlers=handlers
        )

    @staticmethod
    def log_transaction(tx_hash: str, operation: str, success: bool, details: Dict[str, Any] = None):
        """
        Log transaction details

        Args:
            tx_hash: Transaction hash
            operation: Operation type (withdraw_liquidity, supply_liquidity, etc.)
            success: Whether transaction was successful
            details: Additional details
        """
        status = "SUCCESS" if success else "FAILED"
        logger.info(f"Transaction {status}: {operation} - {tx_hash}")

        if details:
            for key, value in details.items():
                logger.info(f"  {key}: {value}")
