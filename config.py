"""
Configuration management for the concentrated LP rebalancer.
Loads settings from environment variables.
"""
import os
from typing import Dict, Any, List
from dotenv import load_dotenv
from web3 import Web3

from lp_types import RiskProfile

# Load environment variables
load_dotenv()

class Config:
    """Configuration class for the rebalancer"""

    # Network settings
    ETHEREUM_RPC_URL = os.getenv('ETHEREUM_RPC_URL', 'https://mainnet.infura.io/v3/YOUR_PROJECT_ID')

    # Private key handling - ONLY environment variable references allowed
    PRIVATE_KEY = os.getenv('PRIVATE_KEY')
    if PRIVATE_KEY:
        if not PRIVATE_KEY.startswith('${') or not PRIVATE_KEY.endswith('}'):
            raise ValueError("PRIVATE_KEY must reference an environment variable using ${VARIABLE_NAME} format. Never store private keys directly in files!")

        env_var_name = PRIVATE_KEY[2:-1]
        PRIVATE_KEY = os.getenv(env_var_name)

        if not PRIVATE_KEY:
            raise ValueError(f"Environment variable '{env_var_name}' referenced in PRIVATE_KEY is not set")
    else:
        # Not set is fine for passive mode and tests
        PRIVATE_KEY = None

    CHAIN_ID = int(os.getenv('CHAIN_ID', '1'))
    CHAIN_NAME = os.getenv('CHAIN_NAME', 'Ethereum Mainnet')

    # Gas settings
    MAX_GAS_LIMIT = int(os.getenv('MAX_GAS_LIMIT', '800000'))

    # Uniswap V3 contract addresses
    UNISWAP_V3_FACTORY = os.getenv('UNISWAP_V3_FACTORY')
    UNISWAP_V3_POSITION_MANAGER = os.getenv('UNISWAP_V3_POSITION_MANAGER')
    UNISWAP_V3_ROUTER = os.getenv('UNISWAP_V3_ROUTER')

    # Operation mode
    REBALANCER_MODE = os.getenv('REBALANCER_MODE', 'passive').lower()
    POSITION_IDS = os.getenv('POSITION_IDS', '')
    RISK_PROFILE = os.getenv('RISK_PROFILE', 'medium').lower()
    ADVISOR = os.getenv('ADVISOR', 'heuristic').lower()
    MONITORING_INTERVAL_SECONDS = int(os.getenv('MONITORING_INTERVAL_SECONDS', '3600'))

    # Rebalancing thresholds
    UTILIZATION_REBALANCE_THRESHOLD = float(os.getenv('UTILIZATION_REBALANCE_THRESHOLD', '20.0'))
    HIGH_VOLATILITY_THRESHOLD = float(os.getenv('HIGH_VOLATILITY_THRESHOLD', '0.2'))
    MIN_RANGE_WIDTH_PERCENTAGE = float(os.getenv('MIN_RANGE_WIDTH_PERCENTAGE', '1.0'))
    MAX_RANGE_WIDTH_PERCENTAGE = float(os.getenv('MAX_RANGE_WIDTH_PERCENTAGE', '25.0'))
    SWAP_IMBALANCE_THRESHOLD = float(os.getenv('SWAP_IMBALANCE_THRESHOLD', '0.2'))
    SLIPPAGE_BPS = int(os.getenv('SLIPPAGE_BPS', '100'))
    TX_DEADLINE_SECONDS = int(os.getenv('TX_DEADLINE_SECONDS', '600'))
    ALLOW_ADVISOR_WITHDRAW = os.getenv('ALLOW_ADVISOR_WITHDRAW', 'false').lower() == 'true'
    # Seconds between rebalances of one position; empty uses the risk profile default
    REBALANCE_COOLDOWN_SECONDS = os.getenv('REBALANCE_COOLDOWN_SECONDS', '').strip()

    # Pool analytics (The Graph)
    SUBGRAPH_URL = os.getenv('SUBGRAPH_URL', '')
    SUBGRAPH_API_KEY = os.getenv('SUBGRAPH_API_KEY', '')
    SUBGRAPH_TIMEOUT_SECONDS = float(os.getenv('SUBGRAPH_TIMEOUT_SECONDS', '30'))

    # LLM advisor
    OPENAI_API_KEY = os.getenv('OPENAI_API_KEY', '')
    OPENAI_MODEL = os.getenv('OPENAI_MODEL', 'gpt-4')
    OPENAI_BASE_URL = os.getenv('OPENAI_BASE_URL', 'https://api.openai.com/v1')
    OPENAI_TEMPERATURE = float(os.getenv('OPENAI_TEMPERATURE', '0.3'))
    OPENAI_TIMEOUT_SECONDS = float(os.getenv('OPENAI_TIMEOUT_SECONDS', '60'))

    # Telegram alerting
    TELEGRAM_BOT_TOKEN = os.getenv('TELEGRAM_BOT_TOKEN', '')
    TELEGRAM_CHAT_ID = os.getenv('TELEGRAM_CHAT_ID', '')
    TELEGRAM_ENABLED = bool(TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID)

    # Logging
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
    LOG_FILE = os.getenv('LOG_FILE', '')

    @classmethod
    def validate_config(cls) -> bool:
        """Validate that required configuration is present"""
        errors = []

        if not cls.ETHEREUM_RPC_URL or 'YOUR_PROJECT_ID' in cls.ETHEREUM_RPC_URL:
            errors.append("ETHEREUM_RPC_URL must be set to a valid RPC endpoint")

        if cls.REBALANCER_MODE not in ('passive', 'active'):
            errors.append(f"REBALANCER_MODE must be 'passive' or 'active', got {cls.REBALANCER_MODE}")

        if cls.RISK_PROFILE not in [profile.value for profile in RiskProfile]:
            errors.append(f"RISK_PROFILE must be one of conservative, medium, aggressive, got {cls.RISK_PROFILE}")

        if cls.REBALANCE_COOLDOWN_SECONDS and not cls.REBALANCE_COOLDOWN_SECONDS.isdigit():
            errors.append(f"REBALANCE_COOLDOWN_SECONDS must be a whole number of seconds, got {cls.REBALANCE_COOLDOWN_SECONDS}")

        if cls.ADVISOR not in ('heuristic', 'llm'):
            errors.append(f"ADVISOR must be 'heuristic' or 'llm', got {cls.ADVISOR}")

        if cls.ADVISOR == 'llm' and not cls.OPENAI_API_KEY:
            errors.append("OPENAI_API_KEY is required when ADVISOR=llm")

        if not cls.SUBGRAPH_URL:
            errors.append("SUBGRAPH_URL is required")

        try:
            if not cls.get_position_ids():
                errors.append("POSITION_IDS must list at least one position id")
        except ValueError as e:
            errors.append(str(e))

        if not cls.UNISWAP_V3_FACTORY:
            errors.append("UNISWAP_V3_FACTORY is required")

        if not cls.UNISWAP_V3_POSITION_MANAGER:
            errors.append("UNISWAP_V3_POSITION_MANAGER is required")

        if cls.REBALANCER_MODE == 'active':
            if not cls.PRIVATE_KEY:
                errors.append("PRIVATE_KEY is required in active mode")
            if not cls.UNISWAP_V3_ROUTER:
                errors.append("UNISWAP_V3_ROUTER is required in active mode")

        for name in ('UNISWAP_V3_FACTORY', 'UNISWAP_V3_POSITION_MANAGER', 'UNISWAP_V3_ROUTER'):
            value = getattr(cls, name)
            if value and not cls._is_valid_address(value):
                errors.append(f"Invalid {name} format: {value}")

        if not 0 < cls.MIN_RANGE_WIDTH_PERCENTAGE < cls.MAX_RANGE_WIDTH_PERCENTAGE:
            errors.append("MIN_RANGE_WIDTH_PERCENTAGE must be positive and below MAX_RANGE_WIDTH_PERCENTAGE")

        if not 0 <= cls.SLIPPAGE_BPS < 10000:
            errors.append(f"SLIPPAGE_BPS must be between 0 and 9999, got {cls.SLIPPAGE_BPS}")

        if errors:
            raise ValueError("Configuration validation failed:\n" + "\n".join(f"- {error}" for error in errors))

        return True

    @staticmethod
    def _is_valid_address(address: str) -> bool:
        """Check if address is a valid checksummable Ethereum address"""
        try:
            Web3.to_checksum_address(address)
            return True
        except (ValueError, TypeError):
            return False

    @classmethod
    def get_position_ids(cls) -> List[int]:
        """Parse the configured comma-separated position ids"""
        ids = []
        for raw in cls.POSITION_IDS.split(','):
            raw = raw.strip()
            if not raw:
                continue
            if not raw.isdigit():
                raise ValueError(f"Invalid position id in POSITION_IDS: {raw}")
            ids.append(int(raw))
        return ids

    @classmethod
    def is_active_mode(cls) -> bool:
        return cls.REBALANCER_MODE == 'active'

    @classmethod
    def get_chain_info(cls) -> Dict[str, Any]:
        """Get chain information from environment"""
        return {
            'chain_id': cls.CHAIN_ID,
            'chain_name': cls.CHAIN_NAME,
            'factory': cls.UNISWAP_V3_FACTORY,
            'position_manager': cls.UNISWAP_V3_POSITION_MANAGER,
            'router': cls.UNISWAP_V3_ROUTER
        }
