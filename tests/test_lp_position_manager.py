"""
Unit tests for the execution collaborator, with a mocked chain client.
"""
import json
import pytest
import sys
import os
from unittest.mock import Mock

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from lp_position_manager import LPPositionManager
from utils import ExecutionFailure

TOKEN0 = '0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48'
TOKEN1 = '0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2'
ROUTER = '0xE592427A0AEce92De3Ede1F18E0157C05861564'
POSITION_MANAGER = '0xC36442b4a4522E871399CD717aBDD847Ab11FE88'


def payload_of(envelope):
    return json.loads(envelope['content'][0]['text'])


def position_info(liquidity=1000, owed0=0, owed1=0):
    return {
        'token0': TOKEN0, 'token1': TOKEN1, 'fee': 500,
        'tick_lower': 200000, 'tick_upper': 201000, 'liquidity': liquidity,
        'tokens_owed0': owed0, 'tokens_owed1': owed1
    }


@pytest.mark.unit
class TestLPPositionManager:
    """Test named operations and their envelopes."""

    def setup_method(self):
        """Set up test fixtures."""
        self.client = Mock()
        self.client.config = Mock()
        self.client.config.CHAIN_ID = 1
        self.client.config.SLIPPAGE_BPS = 100
        self.client.config.UNISWAP_V3_ROUTER = ROUTER
        self.client.config.UNISWAP_V3_POSITION_MANAGER = POSITION_MANAGER
        self.manager = LPPositionManager(self.client)

    def test_unknown_operation(self):
        """Unknown operations answer with an error envelope."""
        envelope = self.manager.call('teleport', {})

        assert envelope['is_error'] is True
        assert 'teleport' in payload_of(envelope)['error']

    def test_get_position(self):
        """Position info is combined with pool address and token metadata."""
        self.client.get_position_info.return_value = position_info()
        self.client.get_pool_address.return_value = '0xpool'
        self.client.get_token_info.side_effect = lambda address: {
            'address': address, 'symbol': 'T', 'decimals': 18
        }

        envelope = self.manager.call('get_position', {'position_id': 12345})
        payload = payload_of(envelope)

        assert envelope['is_error'] is False
        assert payload['position_id'] == 12345
        assert payload['pool_address'] == '0xpool'
        assert payload['chain_id'] == 1
        assert payload['token0']['address'] == TOKEN0

    def test_client_exception_becomes_error_envelope(self):
        """Exceptions are reported in an error envelope with a classification."""
        self.client.get_position_info.side_effect = Exception("insufficient funds for gas")

        envelope = self.manager.call('get_position', {'position_id': 1})
        payload = payload_of(envelope)

        assert envelope['is_error'] is True
        assert payload['error_type'] == 'insufficient_funds'
        assert payload['transaction_hashes'] == []

    def test_wallet_balances_use_owner(self):
        """Balances are read for the requested owner."""
        self.client.get_token_balance.side_effect = [5, 7]

        payload = payload_of(self.manager.call('get_wallet_balances', {
            'token0': TOKEN0, 'token1': TOKEN1, 'owner': '0xowner'
        }))

        assert payload == {'token0_balance': 5, 'token1_balance': 7}
        self.client.get_token_balance.assert_any_call(TOKEN0, '0xowner')

    def test_ensure_allowance_skips_when_sufficient(self):
        """No approval is sent when the allowance already covers the amount."""
        self.client.get_allowance.return_value = 10**30

        payload = payload_of(self.manager.call('ensure_allowance', {'token': TOKEN0, 'amount': 100}))

        assert payload == {'success': True, 'transaction_hashes': [], 'approved': False}
        self.client.approve.assert_not_called()

    def test_ensure_allowance_approves_when_short(self):
        """An approval is sent to the position manager when the allowance is short."""
        self.client.get_allowance.return_value = 0
        self.client.approve.return_value = '0xapprove'

        payload = payload_of(self.manager.call('ensure_allowance', {'token': TOKEN0, 'amount': 100}))

        assert payload['transaction_hashes'] == ['0xapprove']
        self.client.approve.assert_called_once_with(TOKEN0, POSITION_MANAGER)

    def test_withdraw_decreases_collects_and_burns(self):
        """A full withdraw sends decrease, collect and burn."""
        self.client.get_position_info.side_effect = [position_info(), position_info(liquidity=0)]
        self.client.decrease_liquidity.return_value = '0xdecrease'
        self.client.collect.return_value = '0xcollect'
        self.client.burn.return_value = '0xburn'

        payload = payload_of(self.manager.call('withdraw_liquidity', {'position_id': 12345}))

        assert payload['success'] is True
        assert payload['transaction_hashes'] == ['0xdecrease', '0xcollect', '0xburn']
        assert payload['burned'] is True

    def test_withdraw_skips_burn_when_not_empty(self):
        """Burn is skipped while tokens are still owed."""
        self.client.get_position_info.side_effect = [position_info(), position_info(liquidity=0, owed0=1)]
        self.client.decrease_liquidity.return_value = '0xdecrease'
        self.client.collect.return_value = '0xcollect'

        payload = payload_of(self.manager.call('withdraw_liquidity', {'position_id': 12345}))

        assert payload['burned'] is False
        self.client.burn.assert_not_called()

    def test_withdraw_failure_reports_partial_hashes(self):
        """A failing step reports success=false with the hashes already sent."""
        self.client.get_position_info.return_value = position_info()
        self.client.decrease_liquidity.return_value = '0xdecrease'
        self.client.collect.side_effect = ExecutionFailure("reverted", transaction_hashes=['0xcollect'])

        envelope = self.manager.call('withdraw_liquidity', {'position_id': 12345})
        payload = payload_of(envelope)

        assert envelope['is_error'] is False
        assert payload['success'] is False
        assert payload['transaction_hashes'] == ['0xdecrease', '0xcollect']

    def test_supply_applies_slippage_and_decodes_id(self):
        """Mint minimums apply slippage and the minted id is reported."""
        self.client.mint.return_value = ('0xmint', {'logs': []})
        self.client.decode_minted_token_id.return_value = 999

        payload = payload_of(self.manager.call('supply_liquidity', {
            'token0': TOKEN0, 'token1': TOKEN1, 'fee': 500,
            'tick_lower': 200000, 'tick_upper': 201000,
            'amount0': 10000, 'amount1': 20000, 'slippage_bps': 100
        }))

        assert payload == {'success': True, 'transaction_hashes': ['0xmint'], 'position_id': '999'}
        _, kwargs = self.client.mint.call_args
        assert kwargs['amount0_min'] == 9900
        assert kwargs['amount1_min'] == 19800

    def test_supply_with_undecodable_id(self):
        """An undecodable mint log reports the id as unknown."""
        self.client.mint.return_value = ('0xmint', {'logs': []})
        self.client.decode_minted_token_id.side_effect = ValueError("bad log")

        payload = payload_of(self.manager.call('supply_liquidity', {
            'token0': TOKEN0, 'token1': TOKEN1, 'fee': 500,
            'tick_lower': 200000, 'tick_upper': 201000, 'amount0': 1, 'amount1': 1
        }))

        assert payload['success'] is True
        assert payload['position_id'] == 'unknown'

    def test_swap_approves_router_when_needed(self):
        """Swaps approve the router before exactInputSingle if required."""
        self.client.get_allowance.return_value = 0
        self.client.approve.return_value = '0xapprove'
        self.client.exact_input_single.return_value = '0xswap'

        payload = payload_of(self.manager.call('swap_tokens', {
            'token_in': TOKEN0, 'token_out': TOKEN1, 'fee': 500,
            'amount_in': 500, 'min_amount_out': 10
        }))

        assert payload['transaction_hashes'] == ['0xapprove', '0xswap']
        self.client.approve.assert_called_once_with(TOKEN0, ROUTER)
        _, kwargs = self.client.exact_input_single.call_args
        assert kwargs['amount_out_minimum'] == 10

    def test_swap_failure_keeps_approval_hash(self):
        """An approval sent before a failing swap is still reported."""
        self.client.get_allowance.return_value = 0
        self.client.approve.return_value = '0xapprove'
        self.client.exact_input_single.side_effect = ValueError("gas estimation failed")

        envelope = self.manager.call('swap_tokens', {
            'token_in': TOKEN0, 'token_out': TOKEN1, 'fee': 500, 'amount_in': 500
        })
        payload = payload_of(envelope)

        assert envelope['is_error'] is False
        assert payload['success'] is False
        assert payload['transaction_hashes'] == ['0xapprove']
        assert 'gas estimation failed' in payload['error']

    def test_swap_revert_reports_every_hash(self):
        """A reverted swap reports both the approval and the swap hash."""
        self.client.get_allowance.return_value = 0
        self.client.approve.return_value = '0xapprove'
        self.client.exact_input_single.side_effect = ExecutionFailure(
            "Too little received", transaction_hashes=['0xswap']
        )

        payload = payload_of(self.manager.call('swap_tokens', {
            'token_in': TOKEN0, 'token_out': TOKEN1, 'fee': 500, 'amount_in': 500
        }))

        assert payload['success'] is False
        assert payload['transaction_hashes'] == ['0xapprove', '0xswap']
        assert payload['error_type'] == 'slippage'
