"""
Uniswap V3 client for interacting with the protocol.
Handles pool and position reads, token approvals and position transactions.
"""
import logging
from typing import Dict, Any, Optional, Tuple
from web3 import Web3
from web3.logs import DISCARD
from eth_account import Account
from hexbytes import HexBytes
from config import Config
from utils import ExecutionFailure

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
MAX_UINT128 = 2 ** 128 - 1
MAX_UINT256 = 2 ** 256 - 1


def _params(*fields: Tuple[str, str]) -> Dict[str, Any]:
    return {
        "components": [{"internalType": kind, "name": name, "type": kind} for name, kind in fields],
        "internalType": "struct",
        "name": "params",
        "type": "tuple"
    }


def _uint256_outputs(*names: str) -> list:
    return [{"internalType": "uint256", "name": name, "type": "uint256"} for name in names]


class UniswapV3Client:
    """Client for interacting with Uniswap V3 protocol"""

    def __init__(self, config: Config = None, read_only: bool = False):
        """Initialize the Uniswap V3 client"""
        self.config = config or Config()

        self.w3 = Web3(Web3.HTTPProvider(self.config.ETHEREUM_RPC_URL))
        if not self.w3.is_connected():
            raise ConnectionError("Failed to connect to Ethereum network")

        if not read_only and self.config.PRIVATE_KEY:
            self.account = Account.from_key(self.config.PRIVATE_KEY)
            self.wallet_address = self.account.address
        else:
            self.account = None
            self.wallet_address = None

        self.chain_info = self.config.get_chain_info()
        logger.info(f"Connected to {self.chain_info['chain_name']} (Chain ID: {self.chain_info['chain_id']})")
        if self.wallet_address:
            logger.info(f"Wallet: {self.wallet_address}")

        self.token_info_cache: Dict[str, Dict[str, Any]] = {}

        self.position_manager = self.w3.eth.contract(
            address=Web3.to_checksum_address(self.config.UNISWAP_V3_POSITION_MANAGER),
            abi=self._get_position_manager_abi()
        )
        self.factory = self.w3.eth.contract(
            address=Web3.to_checksum_address(self.config.UNISWAP_V3_FACTORY),
            abi=self._get_factory_abi()
        )
        self.router = None
        if self.config.UNISWAP_V3_ROUTER:
            self.router = self.w3.eth.contract(
                address=Web3.to_checksum_address(self.config.UNISWAP_V3_ROUTER),
                abi=self._get_router_abi()
            )
        self.pool_abi = self._get_pool_abi()
        self.erc20_abi = self._get_erc20_abi()

    def _get_position_manager_abi(self) -> list:
        """Get NonfungiblePositionManager ABI (subset)"""
        return [
            {
                "inputs": [_params(
                    ("token0", "address"), ("token1", "address"), ("fee", "uint24"),
                    ("tickLower", "int24"), ("tickUpper", "int24"),
                    ("amount0Desired", "uint256"), ("amount1Desired", "uint256"),
                    ("amount0Min", "uint256"), ("amount1Min", "uint256"),
                    ("recipient", "address"), ("deadline", "uint256")
                )],
                "name": "mint",
                "outputs": [
                    {"internalType": "uint256", "name": "tokenId", "type": "uint256"},
                    {"internalType": "uint128", "name": "liquidity", "type": "uint128"},
                    {"internalType": "uint256", "name": "amount0", "type": "uint256"},
                    {"internalType": "uint256", "name": "amount1", "type": "uint256"}
                ],
                "stateMutability": "payable",
                "type": "function"
            },
            {
                "inputs": [_params(
                    ("tokenId", "uint256"), ("liquidity", "uint128"),
                    ("amount0Min", "uint256"), ("amount1Min", "uint256"), ("deadline", "uint256")
                )],
                "name": "decreaseLiquidity",
                "outputs": _uint256_outputs("amount0", "amount1"),
                "stateMutability": "payable",
                "type": "function"
            },
            {
                "inputs": [_params(
                    ("tokenId", "uint256"), ("recipient", "address"),
                    ("amount0Max", "uint128"), ("amount1Max", "uint128")
                )],
                "name": "collect",
                "outputs": _uint256_outputs("amount0", "amount1"),
                "stateMutability": "payable",
                "type": "function"
            },
            {
                "inputs": [{"internalType": "uint256", "name": "tokenId", "type": "uint256"}],
                "name": "burn",
                "outputs": [],
                "stateMutability": "payable",
                "type": "function"
            },
            {
                "inputs": [{"internalType": "uint256", "name": "tokenId", "type": "uint256"}],
                "name": "positions",
                "outputs": [
                    {"internalType": "uint96", "name": "nonce", "type": "uint96"},
                    {"internalType": "address", "name": "operator", "type": "address"},
                    {"internalType": "address", "name": "token0", "type": "address"},
                    {"internalType": "address", "name": "token1", "type": "address"},
                    {"internalType": "uint24", "name": "fee", "type": "uint24"},
                    {"internalType": "int24", "name": "tickLower", "type": "int24"},
                    {"internalType": "int24", "name": "tickUpper", "type": "int24"},
                    {"internalType": "uint128", "name": "liquidity", "type": "uint128"},
                    {"internalType": "uint256", "name": "feeGrowthInside0LastX128", "type": "uint256"},
                    {"internalType": "uint256", "name": "feeGrowthInside1LastX128", "type": "uint256"},
                    {"internalType": "uint128", "name": "tokensOwed0", "type": "uint128"},
                    {"internalType": "uint128", "name": "tokensOwed1", "type": "uint128"}
                ],
                "stateMutability": "view",
                "type": "function"
            },
            {
                "anonymous": False,
                "inputs": [
                    {"indexed": True, "internalType": "address", "name": "from", "type": "address"},
                    {"indexed": True, "internalType": "address", "name": "to", "type": "address"},
                    {"indexed": True, "internalType": "uint256", "name": "tokenId", "type": "uint256"}
                ],
                "name": "Transfer",
                "type": "event"
            }
        ]

    def _get_factory_abi(self) -> list:
        """Get Factory ABI"""
        return [
            {
                "inputs": [
                    {"internalType": "address", "name": "tokenA", "type": "address"},
                    {"internalType": "address", "name": "tokenB", "type": "address"},
                    {"internalType": "uint24", "name": "fee", "type": "uint24"}
                ],
                "name": "getPool",
                "outputs": [{"internalType": "address", "name": "pool", "type": "address"}],
                "stateMutability": "view",
                "type": "function"
            }
        ]

    def _get_pool_abi(self) -> list:
        """Get Pool ABI (subset)"""
        return [
            {
                "inputs": [],
                "name": "slot0",
                "outputs": [
                    {"internalType": "uint160", "name": "sqrtPriceX96", "type": "uint160"},
                    {"internalType": "int24", "name": "tick", "type": "int24"},
                    {"internalType": "uint16", "name": "observationIndex", "type": "uint16"},
                    {"internalType": "uint16", "name": "observationCardinality", "type": "uint16"},
                    {"internalType": "uint16", "name": "observationCardinalityNext", "type": "uint16"},
                    {"internalType": "uint8", "name": "feeProtocol", "type": "uint8"},
                    {"internalType": "bool", "name": "unlocked", "type": "bool"}
                ],
                "stateMutability": "view",
                "type": "function"
            },
            {
                "inputs": [],
                "name": "tickSpacing",
                "outputs": [{"internalType": "int24", "name": "", "type": "int24"}],
                "stateMutability": "view",
                "type": "function"
            },
            {
                "inputs": [],
                "name": "fee",
                "outputs": [{"internalType": "uint24", "name": "", "type": "uint24"}],
                "stateMutability": "view",
                "type": "function"
            }
        ]

    def _get_erc20_abi(self) -> list:
        """Get ERC20 ABI for token interactions"""
        return [
            {
                "inputs": [],
                "name": "decimals",
                "outputs": [{"internalType": "uint8", "name": "", "type": "uint8"}],
                "stateMutability": "view",
                "type": "function"
            },
            {
                "inputs": [],
                "name": "symbol",
                "outputs": [{"internalType": "string", "name": "", "type": "string"}],
                "stateMutability": "view",
                "type": "function"
            },
            {
                "inputs": [{"internalType": "address", "name": "account", "type": "address"}],
                "name": "balanceOf",
                "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
                "stateMutability": "view",
                "type": "function"
            },
            {
                "inputs": [
                    {"internalType": "address", "name": "owner", "type": "address"},
                    {"internalType": "address", "name": "spender", "type": "address"}
                ],
                "name": "allowance",
                "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
                "stateMutability": "view",
                "type": "function"
            },
            {
                "inputs": [
                    {"internalType": "address", "name": "spender", "type": "address"},
                    {"internalType": "uint256", "name": "amount", "type": "uint256"}
                ],
                "name": "approve",
                "outputs": [{"internalType": "bool", "name": "", "type": "bool"}],
                "stateMutability": "nonpayable",
                "type": "function"
            }
        ]

    def _get_router_abi(self) -> list:
        """Get SwapRouter ABI (exactInputSingle only)"""
        return [
            {
                "inputs": [_params(
                    ("tokenIn", "address"), ("tokenOut", "address"), ("fee", "uint24"),
                    ("recipient", "address"), ("deadline", "uint256"), ("amountIn", "uint256"),
                    ("amountOutMinimum", "uint256"), ("sqrtPriceLimitX96", "uint160")
                )],
                "name": "exactInputSingle",
                "outputs": [{"internalType": "uint256", "name": "amountOut", "type": "uint256"}],
                "stateMutability": "payable",
                "type": "function"
            }
        ]

    def get_pool_address(self, token0: str, token1: str, fee: int) -> str:
        """Get the pool address for a given token pair and fee tier"""
        pool_address = self.factory.functions.getPool(
            Web3.to_checksum_address(token0), Web3.to_checksum_address(token1), fee
        ).call()
        if pool_address == ZERO_ADDRESS:
            raise ValueError(f"No pool found for tokens {token0}/{token1} with fee {fee}")
        return pool_address

    def get_token_info(self, token_address: str) -> Dict[str, Any]:
        """
        Get token symbol and decimals from blockchain

        Args:
            token_address: Token contract address

        Returns:
            Dictionary with address, symbol and decimals
        """
        address = Web3.to_checksum_address(token_address)
        if address in self.token_info_cache:
            return self.token_info_cache[address]

        token_contract = self.w3.eth.contract(address=address, abi=self.erc20_abi)
        decimals = token_contract.functions.decimals().call()
        try:
            symbol = token_contract.functions.symbol().call()
        except Exception as e:
            # Some tokens return bytes32 symbols
            logger.debug(f"Could not read symbol for {address}: {e}")
            symbol = 'UNKNOWN'

        info = {'address': address, 'symbol': symbol, 'decimals': decimals}
        self.token_info_cache[address] = info
        logger.debug(f"Fetched token info for {address}: {symbol} ({decimals} decimals)")
        return info

    def get_pool_state(self, pool_address: str) -> Dict[str, Any]:
        """Read slot0, tick spacing and fee of a pool"""
        pool = self.w3.eth.contract(address=Web3.to_checksum_address(pool_address), abi=self.pool_abi)
        slot0 = pool.functions.slot0().call()
        return {
            'pool_address': pool_address,
            'sqrt_price_x96': slot0[0],
            'current_tick': slot0[1],
            'tick_spacing': pool.functions.tickSpacing().call(),
            'fee': pool.functions.fee().call()
        }

    def get_position_info(self, token_id: int) -> Dict[str, Any]:
        """Get information about a specific position"""
        position = self.position_manager.functions.positions(token_id).call()
        return {
            'token_id': token_id,
            'token0': position[2],
            'token1': position[3],
            'fee': position[4],
            'tick_lower': position[5],
            'tick_upper': position[6],
            'liquidity': position[7],
            'tokens_owed0': position[10],
            'tokens_owed1': position[11]
        }

    def get_token_balance(self, token_address: str, owner: Optional[str] = None) -> int:
        """ERC20 balance in base units"""
        token = self.w3.eth.contract(address=Web3.to_checksum_address(token_address), abi=self.erc20_abi)
        return token.functions.balanceOf(Web3.to_checksum_address(owner or self.wallet_address)).call()

    def get_allowance(self, token_address: str, spender: str) -> int:
        token = self.w3.eth.contract(address=Web3.to_checksum_address(token_address), abi=self.erc20_abi)
        return token.functions.allowance(self.wallet_address, Web3.to_checksum_address(spender)).call()

    def get_deadline(self) -> int:
        """Deadline timestamp relative to the latest block"""
        return int(self.w3.eth.get_block('latest')['timestamp']) + self.config.TX_DEADLINE_SECONDS

    def approve(self, token_address: str, spender: str, amount: int = MAX_UINT256) -> str:
        token = self.w3.eth.contract(address=Web3.to_checksum_address(token_address), abi=self.erc20_abi)
        tx_hash, _ = self.send_transaction(token.functions.approve(Web3.to_checksum_address(spender), amount))
        return tx_hash

    def decrease_liquidity(self, token_id: int, liquidity: int, amount0_min: int = 0, amount1_min: int = 0) -> str:
        params = (token_id, liquidity, amount0_min, amount1_min, self.get_deadline())
        tx_hash, _ = self.send_transaction(self.position_manager.functions.decreaseLiquidity(params))
        return tx_hash

    def collect(self, token_id: int) -> str:
        params = (token_id, self.wallet_address, MAX_UINT128, MAX_UINT128)
        tx_hash, _ = self.send_transaction(self.position_manager.functions.collect(params))
        return tx_hash

    def burn(self, token_id: int) -> str:
        tx_hash, _ = self.send_transaction(self.position_manager.functions.burn(token_id))
        return tx_hash

    def mint(self, token0: str, token1: str, fee: int, tick_lower: int, tick_upper: int,
             amount0: int, amount1: int, amount0_min: int, amount1_min: int) -> Tuple[str, Any]:
        params = (
            Web3.to_checksum_address(token0), Web3.to_checksum_address(token1), fee,
            tick_lower, tick_upper, amount0, amount1, amount0_min, amount1_min,
            self.wallet_address, self.get_deadline()
        )
        return self.send_transaction(self.position_manager.functions.mint(params))

    def exact_input_single(self, token_in: str, token_out: str, fee: int,
                           amount_in: int, amount_out_minimum: int) -> str:
        if self.router is None:
            raise ValueError("UNISWAP_V3_ROUTER is not configured")
        params = (
            Web3.to_checksum_address(token_in), Web3.to_checksum_address(token_out), fee,
            self.wallet_address, self.get_deadline(), amount_in, amount_out_minimum, 0
        )
        tx_hash, _ = self.send_transaction(self.router.functions.exactInputSingle(params))
        return tx_hash

    def send_transaction(self, contract_function) -> Tuple[str, Any]:
        """
        Build, sign and send a contract call, then wait for its receipt

        Returns:
            Tuple of (transaction hash, receipt)

        Raises:
            ExecutionFailure: If the transaction reverted
        """
        if self.account is None:
            raise ValueError("No signing account configured (read-only client)")

        transaction = contract_function.build_transaction({
            'from': self.wallet_address,
            'nonce': self.w3.eth.get_transaction_count(self.wallet_address, 'pending'),
            'gas': self.estimate_gas(contract_function),
            'gasPrice': self.get_gas_price(),
            'chainId': self.config.CHAIN_ID
        })

        signed_txn = self.account.sign_transaction(transaction)
        tx_hash = HexBytes(self.w3.eth.send_raw_transaction(signed_txn.raw_transaction))
        tx_hash_hex = Web3.to_hex(tx_hash)
        logger.info(f"Transaction sent: {tx_hash_hex}")

        receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash)
        if receipt['status'] != 1:
            raise ExecutionFailure(f"Transaction {tx_hash_hex} reverted", transaction_hashes=[tx_hash_hex])
        return tx_hash_hex, receipt

    def decode_minted_token_id(self, receipt: Any) -> Optional[int]:
        """Token id from the Transfer(0x0 -> wallet) log of a mint receipt"""
        events = self.position_manager.events.Transfer().process_receipt(receipt, errors=DISCARD)
        for event in events:
            args = event['args']
            if args['from'] == ZERO_ADDRESS and args['to'] == self.wallet_address:
                return int(args['tokenId'])
        return None

    def get_gas_price(self) -> int:
        """Get current gas price from the network"""
        gas_price = self.w3.eth.gas_price
        logger.debug(f"Gas price: {gas_price} wei ({self.w3.from_wei(gas_price, 'gwei')} gwei)")
        return gas_price

    def estimate_gas(self, contract_function) -> int:
        """Estimate gas for a contract call, capped at MAX_GAS_LIMIT"""
        try:
            gas_estimate = contract_function.estimate_gas({'from': self.wallet_address})
            return min(int(gas_estimate * 1.2), self.config.MAX_GAS_LIMIT)
        except Exception as e:
            logger.warning(f"Gas estimation failed, using MAX_GAS_LIMIT: {e}")
            return self.config.MAX_GAS_LIMIT
