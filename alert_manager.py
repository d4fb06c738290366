"""
Concentrated LP Rebalancer - Telegram Alert Manager
Handles notifications for rebalances, recommendations, failures and system events
"""
import html
import logging
import requests
from typing import List, Optional
from datetime import datetime
from config import Config
from lp_types import RebalanceResult, RangeRecommendation, KPISet

logger = logging.getLogger(__name__)


class TelegramAlertManager:
    """Manages Telegram notifications for the rebalancer"""

    def __init__(self, config: Config):
        """
        Initialize Telegram alert manager

        Args:
            config: Configuration object
        """
        self.config = config
        self.bot_token = config.TELEGRAM_BOT_TOKEN
        self.chat_id = config.TELEGRAM_CHAT_ID
        self.enabled = config.TELEGRAM_ENABLED

        if self.enabled:
            logger.info("Telegram alerts enabled")
            if not self._test_connection():
                logger.warning("Telegram connection test failed - alerts may not work")
        else:
            logger.info("Telegram alerts disabled (missing bot token or chat ID)")

    def _test_connection(self) -> bool:
        """
        Test Telegram bot connection

        Returns:
            True if connection successful, False otherwise
        """
        try:
            url = f"https://api.telegram.org/bot{self.bot_token}/getMe"
            response = requests.get(url, timeout=10)
            return response.status_code == 200
        except requests.RequestException as e:
            logger.error(f"Telegram connection test failed: {e}")
            return False

    def _send_message(self, message: str, parse_mode: str = "HTML") -> bool:
        """
        Send message to Telegram

        Args:
            message: Message to send
            parse_mode: Message parse mode (HTML or Markdown)

        Returns:
            True if message sent successfully, False otherwise
        """
        if not self.enabled:
            logger.debug("Telegram alerts disabled - not sending message")
            return False

        try:
            url = f"https://api.telegram.org/bot{self.bot_token}/sendMessage"
            data = {
                'chat_id': self.chat_id,
                'text': message,
                'parse_mode': parse_mode,
                'disable_web_page_preview': True
            }

            response = requests.post(url, data=data, timeout=10)

            if response.status_code == 200:
                logger.debug("Telegram message sent successfully")
                return True
            else:
                logger.error(f"Failed to send Telegram message: {response.status_code} - {response.text}")
                return False

        except requests.RequestException as e:
            logger.error(f"Error sending Telegram message: {e}")
            return False

    @staticmethod
    def _timestamp() -> str:
        return datetime.now().strftime("%Y-%m-%d %H:%M:%S")

    @staticmethod
    def _format_hashes(hashes: List[str]) -> str:
        if not hashes:
            return "  • none\n"
        return "".join(f"  • <code>{html.escape(tx_hash)}</code>\n" for tx_hash in hashes)

    def send_rebalance_notification(self, result: RebalanceResult, pair: str, current_price: float) -> bool:
        """
        Send rebalance success notification

        Args:
            result: Successful rebalance result
            pair: Token pair label, e.g. "WETH/USDC"
            current_price: Price at planning time (token0 per token1)

        Returns:
            True if notification sent successfully
        """
        range_text = ""
        if result.planned_range:
            planned = result.planned_range
            range_text = (f"\n📊 <b>New Range:</b>\n"
                          f"  • Ticks: {planned.lower_tick} → {planned.upper_tick}\n"
                          f"  • Width: {planned.width_pct:.2f}%\n")

        reasoning = ""
        if result.recommendation:
            reasoning = (f"\n🧠 <b>Advisor ({html.escape(result.recommendation.source)}):</b> "
                         f"{html.escape(result.recommendation.reasoning)}\n")

        message = f"""
🔄 <b>LP Rebalance Completed</b>
⏰ {self._timestamp()}

📈 <b>Position:</b>
  • Old ID: {result.position_id}
  • New ID: {html.escape(str(result.new_position_id or 'unknown'))}
  • Pair: {html.escape(pair)}
  • Price: {current_price:.6f}
{range_text}{reasoning}
🧾 <b>Transactions:</b>
{self._format_hashes(result.transaction_hashes)}
✅ Rebalance successful!
        """.strip()

        return self._send_message(message)

    def send_failure_notification(self, result: RebalanceResult) -> bool:
        """
        Send notification for a failed position workflow

        Args:
            result: Failed rebalance result

        Returns:
            True if notification sent successfully
        """
        intervention = ""
        if result.requires_intervention:
            intervention = "\n⚠️ Liquidity was withdrawn but not re-supplied. Manual action required.\n"

        message = f"""
🚨 <b>Rebalance Failed</b>
⏰ {self._timestamp()}

📍 <b>Position:</b> {result.position_id}
🧭 <b>Stage:</b> {(result.failed_stage or result.stage).value}
❌ <b>Error Type:</b> {html.escape(result.error_type or 'unknown')}
💬 <b>Message:</b> {html.escape(result.error or '')}
{intervention}
🧾 <b>Transactions:</b>
{self._format_hashes(result.transaction_hashes)}
        """.strip()

        return self._send_message(message)

    def send_recommendation_notification(self,
                                         position_id: int,
                                         recommendation: RangeRecommendation,
                                         kpis: KPISet) -> bool:
        """
        Send an advisory notification (passive mode)

        Args:
            position_id: Evaluated position
            recommendation: Advisor output
            kpis: KPIs the recommendation was based on

        Returns:
            True if notification sent successfully
        """
        message = f"""
🔎 <b>Position Evaluation</b>
⏰ {self._timestamp()}

📍 <b>Position:</b> {position_id}
🎯 <b>Action:</b> {recommendation.action.value} (confidence {recommendation.confidence:.2f})
📐 <b>Suggested Half-Width:</b> {recommendation.half_width_pct:.2f}% (skew {recommendation.center_skew_pct:+.2f}%)

📈 <b>KPIs:</b>
  • Utilization: {kpis.utilization_pct:.1f}%
  • Volatility: {kpis.volatility:.2%}
  • Impermanent loss est.: {kpis.impermanent_loss_pct:.2f}%
  • In range: {'yes' if kpis.in_range else 'no'}

🧠 {html.escape(recommendation.reasoning)}

ℹ️ Passive mode: no transactions were sent.
        """.strip()

        return self._send_message(message)

    def send_startup_notification(self,
                                  chain_name: str,
                                  wallet_address: Optional[str],
                                  mode: str,
                                  position_ids: List[int]) -> bool:
        """
        Send startup notification

        Args:
            chain_name: Chain name
            wallet_address: Wallet address (None in passive mode without a key)
            mode: passive or active
            position_ids: Monitored positions

        Returns:
            True if notification sent successfully
        """
        wallet = "not configured"
        if wallet_address:
            wallet = f"<code>{wallet_address[:10]}...{wallet_address[-8:]}</code>"

        message = f"""
🚀 <b>LP Rebalancer Started</b>
⏰ {self._timestamp()}

🌐 <b>Configuration:</b>
  • Chain: {html.escape(chain_name)}
  • Mode: {html.escape(mode)}
  • Positions: {', '.join(str(pid) for pid in position_ids)}
  • Wallet: {wallet}

✅ System initialized and monitoring started
        """.strip()

        return self._send_message(message)

    def send_shutdown_notification(self, reason: str = "Manual shutdown") -> bool:
        """
        Send shutdown notification

        Args:
            reason: Reason for shutdown

        Returns:
            True if notification sent successfully
        """
        message = f"""
🛑 <b>LP Rebalancer Stopped</b>
⏰ {self._timestamp()}

📝 <b>Reason:</b> {html.escape(reason)}

👋 Monitoring stopped
        """.strip()

        return self._send_message(message)

    def send_critical_alert(self,
                            alert_type: str,
                            message: str,
                            action_required: bool = True) -> bool:
        """
        Send critical alert requiring immediate attention

        Args:
            alert_type: Type of critical alert
            message: Alert message
            action_required: Whether immediate action is required

        Returns:
            True if notification sent successfully
        """
        urgency = "🚨 IMMEDIATE ACTION REQUIRED" if action_required else "⚠️ Attention Required"

        alert_message = f"""
{urgency}
⏰ {self._timestamp()}

🔴 <b>Critical Alert:</b> {html.escape(alert_type)}
💬 <b>Message:</b> {html.escape(message)}
        """.strip()

        return self._send_message(alert_message)
