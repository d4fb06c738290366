"""
LP Position Manager for Uniswap V3
Executes named position operations and reports results as JSON envelopes
"""
import logging
from typing import Dict, Any, Callable
from web3 import Web3
from uniswap_client import UniswapV3Client
from payloads import build_envelope
from utils import ErrorHandler, ExecutionFailure, Logger, UniswapV3Utils

logger = logging.getLogger(__name__)


class LPPositionManager:
    """
    Execution collaborator for Uniswap V3 positions.

    Every operation is invoked as call(operation, arguments) and answers with
    an envelope whose JSON payload the orchestrator validates. Nothing is
    retried here; a failed step is reported with the hashes already sent.
    """

    def __init__(self, client: UniswapV3Client = None):
        """Initialize the LP Position Manager"""
        self.client = client or UniswapV3Client()
        self.config = self.client.config
        self._operations: Dict[str, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
            'get_position': self.get_position,
            'get_pool_state': self.get_pool_state,
            'get_wallet_balances': self.get_wallet_balances,
            'ensure_allowance': self.ensure_allowance,
            'withdraw_liquidity': self.withdraw_liquidity,
            'supply_liquidity': self.supply_liquidity,
            'swap_tokens': self.swap_tokens,
        }

    def call(self, operation: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
        """
        Run a named operation

        Args:
            operation: Operation name
            arguments: Operation arguments

        Returns:
            Result envelope
        """
        handler = self._operations.get(operation)
        if handler is None:
            return build_envelope({'success': False, 'error': f"Unknown operation '{operation}'"}, is_error=True)

        try:
            return build_envelope(handler(arguments))
        except Exception as e:
            error_info = ErrorHandler.handle_transaction_error(e)
            logger.error(f"{operation} failed: {error_info['message']} ({error_info['suggestion']})")
            return build_envelope({
                'success': False,
                'transaction_hashes': e.transaction_hashes if isinstance(e, ExecutionFailure) else [],
                'error': str(e),
                'error_type': error_info['type'],
                'suggestion': error_info['suggestion']
            }, is_error=True)

    def get_position(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        position_id = int(arguments['position_id'])
        info = self.client.get_position_info(position_id)
        pool_address = self.client.get_pool_address(info['token0'], info['token1'], info['fee'])

        return {
            'position_id': position_id,
            'pool_address': pool_address,
            'chain_id': self.config.CHAIN_ID,
            'token0': self.client.get_token_info(info['token0']),
            'token1': self.client.get_token_info(info['token1']),
            'fee': info['fee'],
            'tick_lower': info['tick_lower'],
            'tick_upper': info['tick_upper'],
            'liquidity': info['liquidity'],
            'tokens_owed0': info['tokens_owed0'],
            'tokens_owed1': info['tokens_owed1']
        }

    def get_pool_state(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        return self.client.get_pool_state(arguments['pool_address'])

    def get_wallet_balances(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        return {
            'token0_balance': self.client.get_token_balance(arguments['token0'], arguments.get('owner')),
            'token1_balance': self.client.get_token_balance(arguments['token1'], arguments.get('owner'))
        }

    def ensure_allowance(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        """Approve the spender for an unlimited amount if the allowance is short"""
        token = arguments['token']
        amount = int(arguments['amount'])
        spender = arguments.get('spender') or self.config.UNISWAP_V3_POSITION_MANAGER

        current = self.client.get_allowance(token, spender)
        if current >= amount:
            return {'success': True, 'transaction_hashes': [], 'approved': False}

        logger.info(f"Approving {spender} to spend {token} (allowance {current} < {amount})")
        tx_hash = self.client.approve(token, spender)
        Logger.log_transaction(tx_hash, 'approve', True, {'token': token, 'spender': spender})
        return {'success': True, 'transaction_hashes': [tx_hash], 'approved': True}

    def withdraw_liquidity(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        """
        Remove all liquidity, collect tokens and fees, then burn the NFT

        Args:
            arguments: {'position_id': int}

        Returns:
            Transaction payload with every hash sent
        """
        position_id = int(arguments['position_id'])
        hashes = []
        try:
            info = self.client.get_position_info(position_id)
            liquidity = info['liquidity']
            logger.info(f"Withdrawing position {position_id} with liquidity {liquidity}")

            if liquidity > 0:
                hashes.append(self.client.decrease_liquidity(position_id, liquidity))

            hashes.append(self.client.collect(position_id))

            remaining = self.client.get_position_info(position_id)
            burned = False
            if remaining['liquidity'] == 0 and remaining['tokens_owed0'] == 0 and remaining['tokens_owed1'] == 0:
                hashes.append(self.client.burn(position_id))
                burned = True
            else:
                logger.warning(f"Position {position_id} not empty after collect; skipping burn")

        except Exception as e:
            if isinstance(e, ExecutionFailure):
                hashes.extend(e.transaction_hashes)
            logger.error(f"Withdraw of position {position_id} failed after {len(hashes)} transactions: {e}")
            return {
                'success': False,
                'transaction_hashes': hashes,
                'error': str(e),
                'error_type': ErrorHandler.handle_transaction_error(e)['type']
            }

        for tx_hash in hashes:
            Logger.log_transaction(tx_hash, 'withdraw_liquidity', True)
        return {'success': True, 'transaction_hashes': hashes, 'liquidity_removed': liquidity, 'burned': burned}

    def supply_liquidity(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        """
        Mint a new position

        Args:
            arguments: token0, token1, fee, tick_lower, tick_upper, amount0, amount1, slippage_bps

        Returns:
            Transaction payload; position_id is 'unknown' if the mint log cannot be decoded
        """
        amount0 = int(arguments['amount0'])
        amount1 = int(arguments['amount1'])
        slippage_bps = int(arguments.get('slippage_bps', self.config.SLIPPAGE_BPS))

        tx_hash, receipt = self.client.mint(
            token0=arguments['token0'],
            token1=arguments['token1'],
            fee=int(arguments['fee']),
            tick_lower=int(arguments['tick_lower']),
            tick_upper=int(arguments['tick_upper']),
            amount0=amount0,
            amount1=amount1,
            amount0_min=UniswapV3Utils.to_min_amount(amount0, slippage_bps),
            amount1_min=UniswapV3Utils.to_min_amount(amount1, slippage_bps)
        )

        position_id = 'unknown'
        try:
            decoded = self.client.decode_minted_token_id(receipt)
            if decoded is not None:
                position_id = str(decoded)
        except Exception as e:
            logger.warning(f"Could not decode minted position id from {tx_hash}: {e}")

        Logger.log_transaction(tx_hash, 'supply_liquidity', True, {'position_id': position_id})
        return {'success': True, 'transaction_hashes': [tx_hash], 'position_id': position_id}

    def swap_tokens(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        """
        Swap an exact input amount through the router, approving it first if needed

        Args:
            arguments: token_in, token_out, fee, amount_in, min_amount_out

        Returns:
            Transaction payload with every hash sent, including a landed approval
        """
        token_in = arguments['token_in']
        spender = self.config.UNISWAP_V3_ROUTER
        amount_in = int(arguments['amount_in'])

        hashes = []
        try:
            if self.client.get_allowance(token_in, spender) < amount_in:
                hashes.append(self.client.approve(token_in, spender))

            tx_hash = self.client.exact_input_single(
                token_in=token_in,
                token_out=arguments['token_out'],
                fee=int(arguments['fee']),
                amount_in=amount_in,
                amount_out_minimum=int(arguments.get('min_amount_out', 0))
            )
            hashes.append(tx_hash)
        except Exception as e:
            if isinstance(e, ExecutionFailure):
                hashes.extend(h for h in e.transaction_hashes if h not in hashes)
            logger.error(f"Swap of {amount_in} {token_in} failed after {len(hashes)} transactions: {e}")
            return {
                'success': False,
                'transaction_hashes': hashes,
                'error': str(e),
                'error_type': ErrorHandler.handle_transaction_error(e)['type']
            }

        Logger.log_transaction(tx_hash, 'swap_tokens', True, {'token_in': Web3.to_checksum_address(token_in)})
        return {'success': True, 'transaction_hashes': hashes}
