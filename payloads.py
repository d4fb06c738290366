"""
Result envelopes returned by execution collaborators.

A collaborator answers each named operation with an envelope:

    {"is_error": false, "content": [{"type": "text", "text": "<json object>"}]}

Payloads are checked against an explicit field/type contract before they
become typed records.
"""
import json
import logging
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional, Tuple

from lp_types import Position, PoolState, TokenInfo
from utils import ParseError, ExecutionFailure

logger = logging.getLogger(__name__)

TOKEN_CONTRACT = {'address': str, 'symbol': str, 'decimals': int}

POSITION_CONTRACT = {
    'position_id': int,
    'pool_address': str,
    'chain_id': int,
    'token0': dict,
    'token1': dict,
    'fee': int,
    'tick_lower': int,
    'tick_upper': int,
    'liquidity': int,
    'tokens_owed0': int,
    'tokens_owed1': int,
}

POOL_STATE_CONTRACT = {
    'pool_address': str,
    'current_tick': int,
    'sqrt_price_x96': int,
    'tick_spacing': int,
    'fee': int,
}

BALANCES_CONTRACT = {'token0_balance': int, 'token1_balance': int}

TRANSACTION_CONTRACT = {'success': bool, 'transaction_hashes': list}


@dataclass
class TransactionReceipt:
    """Outcome of a state-changing operation"""
    transaction_hashes: List[str] = field(default_factory=list)
    position_id: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


def build_envelope(payload: Dict[str, Any], is_error: bool = False) -> Dict[str, Any]:
    """Wrap one payload as a collaborator envelope"""
    return {
        'is_error': is_error,
        'content': [{'type': 'text', 'text': json.dumps(payload)}]
    }


def parse_envelope(envelope: Any) -> Dict[str, Any]:
    """
    Decode every JSON payload in an envelope and merge them in order

    Raises:
        ParseError: Envelope or payload is malformed or missing
        ExecutionFailure: Envelope is flagged as an error
    """
    if not isinstance(envelope, dict):
        raise ParseError(f"Envelope must be an object, got {type(envelope).__name__}")

    content = envelope.get('content')
    if not isinstance(content, list) or not content:
        raise ParseError("Envelope has no payloads")

    merged: Dict[str, Any] = {}
    for index, item in enumerate(content):
        if not isinstance(item, dict) or not isinstance(item.get('text'), str):
            raise ParseError(f"Payload {index} has no text")
        try:
            payload = json.loads(item['text'])
        except ValueError as e:
            if envelope.get('is_error'):
                raise ExecutionFailure(item['text']) from e
            raise ParseError(f"Payload {index} is not JSON: {e}") from e
        if not isinstance(payload, dict):
            raise ParseError(f"Payload {index} is not a JSON object")
        merged.update(payload)

    if envelope.get('is_error'):
        hashes = merged.get('transaction_hashes')
        if not isinstance(hashes, list) or not all(isinstance(h, str) for h in hashes):
            hashes = []
        raise ExecutionFailure(str(merged.get('error') or 'Collaborator reported an error'), transaction_hashes=hashes)

    return merged


def check_contract(payload: Dict[str, Any], contract: Dict[str, type], name: str) -> None:
    """Raise ParseError unless every contract field is present with the right type"""
    for key, expected in contract.items():
        if key not in payload:
            raise ParseError(f"{name} payload missing field '{key}'")
        value = payload[key]
        # bool is an int subclass but never a valid int field
        if expected is int and isinstance(value, bool):
            raise ParseError(f"{name} field '{key}' must be int, got bool")
        if not isinstance(value, expected):
            raise ParseError(f"{name} field '{key}' must be {expected.__name__}, got {type(value).__name__}")


def parse_token(data: Any) -> TokenInfo:
    if not isinstance(data, dict):
        raise ParseError("Token payload is not an object")
    check_contract(data, TOKEN_CONTRACT, 'token')
    return TokenInfo(address=data['address'], symbol=data['symbol'], decimals=data['decimals'])


def parse_position(envelope: Any) -> Position:
    data = parse_envelope(envelope)
    check_contract(data, POSITION_CONTRACT, 'position')
    return Position(
        position_id=data['position_id'],
        pool_address=data['pool_address'],
        chain_id=data['chain_id'],
        token0=parse_token(data['token0']),
        token1=parse_token(data['token1']),
        fee=data['fee'],
        tick_lower=data['tick_lower'],
        tick_upper=data['tick_upper'],
        liquidity=data['liquidity'],
        tokens_owed0=data['tokens_owed0'],
        tokens_owed1=data['tokens_owed1']
    )


def parse_pool_state(envelope: Any) -> PoolState:
    data = parse_envelope(envelope)
    check_contract(data, POOL_STATE_CONTRACT, 'pool state')
    return PoolState(
        pool_address=data['pool_address'],
        current_tick=data['current_tick'],
        sqrt_price_x96=data['sqrt_price_x96'],
        tick_spacing=data['tick_spacing'],
        fee=data['fee']
    )


def parse_balances(envelope: Any) -> Tuple[int, int]:
    data = parse_envelope(envelope)
    check_contract(data, BALANCES_CONTRACT, 'balances')
    return data['token0_balance'], data['token1_balance']


def parse_transaction(envelope: Any) -> TransactionReceipt:
    """
    Interpret a state-changing operation's result

    Raises:
        ParseError: Payload does not match the transaction contract
        ExecutionFailure: Collaborator reported success=false
    """
    data = parse_envelope(envelope)
    check_contract(data, TRANSACTION_CONTRACT, 'transaction')

    hashes = data['transaction_hashes']
    if not all(isinstance(tx_hash, str) for tx_hash in hashes):
        raise ParseError("transaction_hashes must be a list of strings")

    if not data['success']:
        error = data.get('error') or 'Operation failed'
        raise ExecutionFailure(error, transaction_hashes=hashes)

    position_id = data.get('position_id')
    details = {k: v for k, v in data.items() if k not in ('success', 'transaction_hashes', 'position_id')}
    return TransactionReceipt(
        transaction_hashes=list(hashes),
        position_id=str(position_id) if position_id is not None else None,
        details=details
    )
