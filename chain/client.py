"""
Blockchain client abstraction.

All chain interaction goes through ChainClient: read-only calls, gas
estimation (which surfaces revert reasons before anything is signed),
signed submission and bounded confirmation waits. Web3ChainClient is the
JSON-RPC implementation; tests substitute an in-memory fake.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from eth_account import Account
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception

from chain.abi import input_types, load_abi
from config.config import ChainConfig
from errors import ChainClientError, ChainRevertError, ConfirmationTimeoutError

logger = logging.getLogger(__name__)


@dataclass
class TxReceipt:
    tx_hash: str
    block_number: int
    status: int
    gas_used: int = 0
    revert_reason: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            'txHash': self.tx_hash,
            'blockNumber': self.block_number,
            'status': self.status,
            'gasUsed': self.gas_used,
            'revertReason': self.revert_reason,
        }


class ChainClient:
    """Interface to a single deployed contract"""

    async def call(self, fn_name: str, *args) -> Any:
        raise NotImplementedError

    async def estimate_gas(self, fn_name: str, *args) -> int:
        """Gas estimate; raises ChainRevertError when the call would revert"""
        raise NotImplementedError

    async def submit(self, fn_name: str, *args) -> str:
        """Sign and broadcast a transaction, returning its hash"""
        raise NotImplementedError

    async def confirm(self, tx_hash: str, timeout: float) -> TxReceipt:
        """Wait for inclusion; raises ConfirmationTimeoutError on expiry"""
        raise NotImplementedError

    async def close(self):
        pass


def _revert_reason(error: ContractLogicError) -> str:
    message = getattr(error, 'message', None) or str(error)
    return message.replace('execution reverted:', '').strip() or 'execution reverted'


def _encode_args(types: List[str], args: tuple) -> List[Any]:
    encoded = []
    for abi_type, value in zip(types, args):
        if abi_type == 'bytes32' and isinstance(value, int):
            value = value.to_bytes(32, 'big')
        encoded.append(value)
    return encoded


class Web3ChainClient(ChainClient):
    """ChainClient over JSON-RPC using web3.py and a local signing key"""

    def __init__(self, config: ChainConfig, w3: Optional[AsyncWeb3] = None):
        if not config.contract_address:
            raise ChainClientError("No verifier contract address configured")

        self.config = config
        self.abi = load_abi(config.abi_path)
        self.w3 = w3 or AsyncWeb3(AsyncHTTPProvider(config.rpc_url))
        self.contract = self.w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(config.contract_address),
            abi=self.abi)

        key = config.private_key
        self.account = Account.from_key(key) if key else None
        # nonce assignment and broadcast must not interleave
        self._send_lock = asyncio.Lock()

    def _function(self, fn_name: str, args: tuple):
        encoded = _encode_args(input_types(self.abi, fn_name), args)
        return getattr(self.contract.functions, fn_name)(*encoded)

    def _sender(self) -> Dict[str, Any]:
        return {'from': self.account.address} if self.account else {}

    async def call(self, fn_name: str, *args) -> Any:
        try:
            return await self._function(fn_name, args).call(self._sender())
        except ContractLogicError as e:
            raise ChainRevertError(_revert_reason(e)) from e
        except (Web3Exception, OSError, asyncio.TimeoutError) as e:
            raise ChainClientError(f"{fn_name} call failed: {e}") from e

    async def estimate_gas(self, fn_name: str, *args) -> int:
        try:
            return await self._function(fn_name, args).estimate_gas(self._sender())
        except ContractLogicError as e:
            raise ChainRevertError(_revert_reason(e)) from e
        except (Web3Exception, OSError, asyncio.TimeoutError) as e:
            raise ChainClientError(f"{fn_name} gas estimation failed: {e}") from e

    async def submit(self, fn_name: str, *args) -> str:
        if self.account is None:
            raise ChainClientError(
                f"No signing key; set {self.config.private_key_env}")

        if self.config.gas_limit:
            gas = self.config.gas_limit
        else:
            estimate = await self.estimate_gas(fn_name, *args)
            gas = int(estimate * self.config.gas_multiplier)

        try:
            async with self._send_lock:
                chain_id = self.config.chain_id or await self.w3.eth.chain_id
                nonce = await self.w3.eth.get_transaction_count(self.account.address, 'pending')
                tx = await self._function(fn_name, args).build_transaction({
                    'from': self.account.address,
                    'nonce': nonce,
                    'gas': gas,
                    'chainId': chain_id,
                })
                signed = self.account.sign_transaction(tx)
                tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except ContractLogicError as e:
            raise ChainRevertError(_revert_reason(e)) from e
        except (Web3Exception, OSError, asyncio.TimeoutError) as e:
            raise ChainClientError(f"{fn_name} submission failed: {e}") from e

        tx_hex = AsyncWeb3.to_hex(tx_hash)
        logger.info(f"Submitted {fn_name} transaction {tx_hex} (gas {gas})")
        return tx_hex

    async def confirm(self, tx_hash: str, timeout: float) -> TxReceipt:
        try:
            receipt = await self.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=timeout, poll_latency=self.config.poll_latency)
        except TimeExhausted as e:
            raise ConfirmationTimeoutError(tx_hash, timeout) from e
        except (Web3Exception, OSError, asyncio.TimeoutError) as e:
            raise ChainClientError(f"Receipt lookup for {tx_hash} failed: {e}") from e

        result = TxReceipt(
            tx_hash=tx_hash,
            block_number=receipt['blockNumber'],
            status=receipt['status'],
            gas_used=receipt.get('gasUsed', 0),
        )
        if not result.succeeded:
            result.revert_reason = await self._replay_reason(tx_hash, result.block_number)
            logger.warning(f"Transaction {tx_hash} reverted: {result.revert_reason}")
        return result

    async def _replay_reason(self, tx_hash: str, block_number: int) -> Optional[str]:
        """Re-execute a mined, reverted transaction to recover its reason"""
        try:
            tx = await self.w3.eth.get_transaction(tx_hash)
            await self.w3.eth.call({
                'from': tx['from'],
                'to': tx['to'],
                'data': tx['input'],
                'value': tx['value'],
                'gas': tx['gas'],
            }, block_number)
        except ContractLogicError as e:
            return _revert_reason(e)
        except (Web3Exception, OSError, asyncio.TimeoutError) as e:
            logger.debug(f"Could not replay {tx_hash}: {e}")
        return None

    async def close(self):
        provider = self.w3.provider
        if hasattr(provider, 'disconnect'):
            await provider.disconnect()
