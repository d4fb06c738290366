"""
Unit tests for configuration parsing and command line overrides.
"""
import pytest
import sys
import os
from unittest.mock import patch

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import Config
import main

FACTORY = '0x1F98431c8aD98523631AE4a59f267346ea31F984'
POSITION_MANAGER = '0xC36442b4a4522E871399CD717aBDD847Ab11FE88'

VALID = {
    'ETHEREUM_RPC_URL': 'https://rpc.example',
    'REBALANCER_MODE': 'passive',
    'RISK_PROFILE': 'medium',
    'ADVISOR': 'heuristic',
    'SUBGRAPH_URL': 'https://subgraph.example',
    'POSITION_IDS': '1,2',
    'UNISWAP_V3_FACTORY': FACTORY,
    'UNISWAP_V3_POSITION_MANAGER': POSITION_MANAGER,
    'UNISWAP_V3_ROUTER': None,
    'PRIVATE_KEY': None,
    'MIN_RANGE_WIDTH_PERCENTAGE': 1.0,
    'MAX_RANGE_WIDTH_PERCENTAGE': 25.0,
    'SLIPPAGE_BPS': 100,
    'REBALANCE_COOLDOWN_SECONDS': '',
}


@pytest.mark.unit
class TestConfig:
    """Test configuration helpers and validation."""

    def test_position_ids(self):
        """Comma-separated ids are parsed, blanks ignored."""
        with patch.object(Config, 'POSITION_IDS', ' 12, 34,,56 '):
            assert Config.get_position_ids() == [12, 34, 56]

    def test_invalid_position_id(self):
        """Non-numeric ids raise ValueError."""
        with patch.object(Config, 'POSITION_IDS', '12,abc'):
            with pytest.raises(ValueError):
                Config.get_position_ids()

    def test_mode_helper(self):
        """The mode helper reads the class setting."""
        with patch.object(Config, 'REBALANCER_MODE', 'active'):
            assert Config.is_active_mode() is True
        with patch.object(Config, 'REBALANCER_MODE', 'passive'):
            assert Config.is_active_mode() is False

    def test_valid_passive_config(self):
        """A complete passive configuration validates."""
        with patch.multiple(Config, **VALID):
            assert Config.validate_config() is True

    def test_active_mode_requires_key_and_router(self):
        """Active mode needs a private key and a router."""
        with patch.multiple(Config, **dict(VALID, REBALANCER_MODE='active')):
            with pytest.raises(ValueError) as exc_info:
                Config.validate_config()

        message = str(exc_info.value)
        assert 'PRIVATE_KEY' in message
        assert 'UNISWAP_V3_ROUTER' in message

    def test_cooldown_must_be_whole_seconds(self):
        """A non-numeric rebalance cooldown is rejected; whole seconds pass."""
        with patch.multiple(Config, **dict(VALID, REBALANCE_COOLDOWN_SECONDS='6h')):
            with pytest.raises(ValueError) as exc_info:
                Config.validate_config()
        assert 'REBALANCE_COOLDOWN_SECONDS' in str(exc_info.value)

        with patch.multiple(Config, **dict(VALID, REBALANCE_COOLDOWN_SECONDS='7200')):
            assert Config.validate_config() is True

    def test_errors_are_collected(self):
        """All problems are reported together."""
        invalid = dict(VALID, RISK_PROFILE='yolo', POSITION_IDS='', SUBGRAPH_URL='',
                       UNISWAP_V3_FACTORY='0x123')
        with patch.multiple(Config, **invalid):
            with pytest.raises(ValueError) as exc_info:
                Config.validate_config()

        message = str(exc_info.value)
        assert 'RISK_PROFILE' in message
        assert 'POSITION_IDS' in message
        assert 'SUBGRAPH_URL' in message
        assert 'Invalid UNISWAP_V3_FACTORY' in message


@pytest.mark.unit
class TestCommandLine:
    """Test argument parsing and overrides."""

    def test_overrides_apply_to_config(self):
        """Command line flags override environment settings."""
        args = main.build_parser().parse_args([
            '--once', '--active', '--positions', '7,8', '--risk-profile', 'conservative',
            '--advisor', 'llm', '--log-level', 'DEBUG'
        ])

        with patch.multiple(Config, REBALANCER_MODE='passive', POSITION_IDS='1',
                            RISK_PROFILE='medium', ADVISOR='heuristic', LOG_LEVEL='INFO'):
            main.apply_overrides(args)

            assert args.once is True
            assert Config.REBALANCER_MODE == 'active'
            assert Config.get_position_ids() == [7, 8]
            assert Config.RISK_PROFILE == 'conservative'
            assert Config.ADVISOR == 'llm'
            assert Config.LOG_LEVEL == 'DEBUG'

    def test_mode_flags_are_exclusive(self):
        """--passive and --active cannot be combined."""
        with pytest.raises(SystemExit):
            main.build_parser().parse_args(['--passive', '--active'])

    def test_invalid_config_exits_nonzero(self):
        """main returns 1 when validation fails."""
        with patch.multiple(Config, **dict(VALID, SUBGRAPH_URL='')), \
                patch('main.Logger.setup_logging'):
            assert main.main(['--once']) == 1
