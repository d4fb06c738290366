"""
Unit tests for Telegram notifications.
"""
import pytest
import sys
import os
import requests
from unittest.mock import Mock, patch

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from alert_manager import TelegramAlertManager
from lp_types import (
    KPISet, PlannedRange, RangeRecommendation, RebalanceResult, RecommendationAction,
    RiskProfile, WorkflowStage
)


def make_config(enabled=True):
    config = Mock()
    config.TELEGRAM_BOT_TOKEN = 'bot-token' if enabled else ''
    config.TELEGRAM_CHAT_ID = '42' if enabled else ''
    config.TELEGRAM_ENABLED = enabled
    return config


@pytest.mark.unit
class TestTelegramAlertManager:
    """Test message delivery and formatting."""

    def setup_method(self):
        """Set up test fixtures."""
        with patch('alert_manager.requests.get') as mock_get:
            mock_get.return_value = Mock(status_code=200)
            self.manager = TelegramAlertManager(make_config())

    @patch('alert_manager.requests.post')
    def test_rebalance_notification(self, mock_post):
        """Rebalance notifications include ids, range and hashes."""
        mock_post.return_value = Mock(status_code=200)
        result = RebalanceResult(
            position_id=12345,
            success=True,
            action='rebalance',
            stage=WorkflowStage.NOTIFY_SUCCESS,
            transaction_hashes=['0xdecrease', '0xmint'],
            new_position_id='999',
            recommendation=RangeRecommendation(
                action=RecommendationAction.REBALANCE, confidence=0.7, half_width_pct=7.0,
                center_skew_pct=0.0, risk_profile=RiskProfile.MEDIUM, reasoning='Utilization <20%'
            ),
            planned_range=PlannedRange(lower_tick=-76740, upper_tick=-75300, width_pct=14.2,
                                       lower_price=1860.0, upper_price=2140.0)
        )

        assert self.manager.send_rebalance_notification(result, 'USDC/WETH', 2000.0) is True

        _, kwargs = mock_post.call_args
        text = kwargs['data']['text']
        assert kwargs['data']['chat_id'] == '42'
        assert kwargs['data']['parse_mode'] == 'HTML'
        assert '12345' in text
        assert '999' in text
        assert '-76740' in text
        assert '0xmint' in text
        # Advisor text is escaped for HTML
        assert 'Utilization &lt;20%' in text

    @patch('alert_manager.requests.post')
    def test_failure_notification_mentions_intervention(self, mock_post):
        """Failure notifications include the stage and intervention warning."""
        mock_post.return_value = Mock(status_code=200)
        result = RebalanceResult(
            position_id=7, success=False, stage=WorkflowStage.NOTIFY_FAILURE, failed_stage=WorkflowStage.SWAP,
            error='Too little received', error_type='slippage', requires_intervention=True
        )

        assert self.manager.send_failure_notification(result) is True

        text = mock_post.call_args[1]['data']['text']
        assert 'SWAP' in text
        assert 'Manual action required' in text

    @patch('alert_manager.requests.post')
    def test_recommendation_notification(self, mock_post):
        """Passive notifications include the action and KPIs."""
        mock_post.return_value = Mock(status_code=200)
        recommendation = RangeRecommendation(
            action=RecommendationAction.REBALANCE, confidence=0.7, half_width_pct=7.0,
            center_skew_pct=0.0, risk_profile=RiskProfile.MEDIUM
        )

        assert self.manager.send_recommendation_notification(7, recommendation, KPISet(utilization_pct=12.5)) is True

        text = mock_post.call_args[1]['data']['text']
        assert 'rebalance' in text
        assert '12.5%' in text

    @patch('alert_manager.requests.post')
    def test_http_error_returns_false(self, mock_post):
        """Non-200 responses return False."""
        mock_post.return_value = Mock(status_code=400, text='bad request')

        assert self.manager.send_shutdown_notification() is False

    @patch('alert_manager.requests.post')
    def test_transport_error_returns_false(self, mock_post):
        """Transport errors are logged and return False."""
        mock_post.side_effect = requests.ConnectionError("offline")

        assert self.manager.send_critical_alert('Test', 'message') is False

    @patch('alert_manager.requests.post')
    def test_disabled_sends_nothing(self, mock_post):
        """Without credentials nothing is sent."""
        manager = TelegramAlertManager(make_config(enabled=False))

        assert manager.send_startup_notification('Ethereum', None, 'passive', [1, 2]) is False
        mock_post.assert_not_called()
