"""
Shared fixtures: in-memory store, a fake verifier chain and a fake prover.

The fake chain mimics the verifier contract: a bounded window of known
roots, on-chain nullifier bookkeeping and revert reasons surfaced at gas
estimation. The fake prover replays the witness path instead of running
a SNARK, so public signals are exactly what a real prover would emit.
"""

import asyncio
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from chain.client import ChainClient, TxReceipt
from config.config import ChainConfig, StoreConfig, SystemConfig
from errors import ChainRevertError, ConfirmationTimeoutError
from storage.store import VotingStore
from vote_coordinator import VotingSystem
from zk.hashing import mimc_hash
from zk.merkle import compute_path_root
from zk.proofs import Prover

ROOT_HISTORY_SIZE = 30

# generator of G1 on BN254
G1 = ['1', '2', '1']
G2 = [['3', '4'], ['5', '6'], ['1', '0']]


class FakeChainClient(ChainClient):
    """In-memory stand-in for the verifier contract"""

    def __init__(self, enforce_nullifiers: bool = True):
        self.enforce_nullifiers = enforce_nullifiers
        self.known_roots: List[int] = []
        self.used_nullifiers = set()
        self.votes: List[tuple] = []
        self.submitted: List[tuple] = []
        self.pending: Dict[str, tuple] = {}
        self.receipts: Dict[str, TxReceipt] = {}
        self.block_number = 100

        # knobs for failure injection
        self.revert_reason: Optional[str] = None
        self.mined_revert_reason: Optional[str] = None
        self.stall_confirmations = False
        self.reject_root_updates: Optional[str] = None

    @property
    def last_root(self) -> int:
        return self.known_roots[-1] if self.known_roots else 0

    @property
    def writes(self) -> int:
        return len(self.submitted)

    async def call(self, fn_name: str, *args) -> Any:
        await asyncio.sleep(0)
        if fn_name == 'getLastRoot':
            return self.last_root
        if fn_name == 'isKnownRoot':
            return args[0] != 0 and args[0] in self.known_roots
        raise ChainRevertError(f"unknown function {fn_name}")

    async def estimate_gas(self, fn_name: str, *args) -> int:
        await asyncio.sleep(0)
        if fn_name == 'updateRoot' and self.reject_root_updates:
            raise ChainRevertError(self.reject_root_updates)
        if fn_name == 'vote':
            if self.revert_reason:
                raise ChainRevertError(self.revert_reason)
            nullifier_hash, root = args[2], args[3]
            if self.enforce_nullifiers and nullifier_hash in self.used_nullifiers:
                raise ChainRevertError("Already voted")
            if root not in self.known_roots:
                raise ChainRevertError("Unknown root")
        return 100_000

    async def submit(self, fn_name: str, *args) -> str:
        await self.estimate_gas(fn_name, *args)
        tx_hash = '0x' + format(len(self.submitted) + 1, '064x')
        self.submitted.append((fn_name, args))
        self.pending[tx_hash] = (fn_name, args)
        return tx_hash

    async def confirm(self, tx_hash: str, timeout: float) -> TxReceipt:
        await asyncio.sleep(0)
        if self.stall_confirmations:
            raise ConfirmationTimeoutError(tx_hash, timeout)

        if tx_hash in self.receipts:
            return self.receipts[tx_hash]

        fn_name, args = self.pending.pop(tx_hash)
        self.block_number += 1
        reason = self._apply(fn_name, args)
        receipt = TxReceipt(tx_hash=tx_hash, block_number=self.block_number,
                            status=0 if reason else 1, gas_used=50_000,
                            revert_reason=reason)
        self.receipts[tx_hash] = receipt
        return receipt

    def _apply(self, fn_name: str, args: tuple) -> Optional[str]:
        if fn_name == 'updateRoot':
            self.known_roots.append(args[0])
            del self.known_roots[:-ROOT_HISTORY_SIZE]
            return None

        if fn_name == 'vote':
            if self.mined_revert_reason:
                return self.mined_revert_reason
            nullifier_hash = args[2]
            if self.enforce_nullifiers and nullifier_hash in self.used_nullifiers:
                return "Already voted"
            self.used_nullifiers.add(nullifier_hash)
            self.votes.append(args)
        return None


class FakeProver(Prover):
    """Emits a well-formed proof whose public signals follow the witness"""

    def __init__(self):
        self.calls = 0
        self.root_override: Optional[int] = None

    async def prove(self, inputs: Dict[str, Any]):
        self.calls += 1
        await asyncio.sleep(0)

        nullifier = int(inputs['nullifier'])
        secret = int(inputs['secret'])
        elements = [int(e) for e in inputs['pathElements']]
        indices = [int(i) for i in inputs['pathIndices']]

        commitment = mimc_hash([nullifier, secret])
        root = compute_path_root(commitment, elements, indices)
        if self.root_override is not None:
            root = self.root_override

        proof = {'pi_a': G1, 'pi_b': G2, 'pi_c': G1, 'protocol': 'groth16', 'curve': 'bn128'}
        return proof, [str(mimc_hash([nullifier])), str(root)]


@pytest.fixture
def store():
    voting_store = VotingStore(StoreConfig(database_url='sqlite://'))
    yield voting_store
    voting_store.close()


@pytest.fixture
def chain():
    return FakeChainClient()


@pytest.fixture
def prover():
    return FakeProver()


@pytest.fixture
def system_config(tmp_path):
    return SystemConfig(
        store=StoreConfig(database_url='sqlite://'),
        chain=ChainConfig(contract_address='0x' + '11' * 20, confirmation_timeout=5.0),
        log_dir=tmp_path / 'logs',
    )


@pytest.fixture
def system(system_config, store, chain, prover):
    return VotingSystem.from_config(system_config, client=chain, prover=prover, store=store)
