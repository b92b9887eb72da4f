"""Typed wrapper over the vote verifier contract."""

import logging
from typing import Any, Optional

from chain.client import ChainClient, TxReceipt
from zk.proofs import VoteProof

logger = logging.getLogger(__name__)


def normalize_root(value: Any) -> int:
    """Contract roots may come back as uint256, bytes32 or hex strings"""
    if isinstance(value, bool):
        raise TypeError("Root cannot be a bool")
    if isinstance(value, int):
        return value
    if isinstance(value, (bytes, bytearray)):
        return int.from_bytes(value, 'big')
    if isinstance(value, str):
        return int(value, 16) if value.startswith(('0x', '0X')) else int(value)
    raise TypeError(f"Unsupported root encoding: {type(value).__name__}")


class VerifierContract:
    """vote / getLastRoot / isKnownRoot / updateRoot"""

    def __init__(self, client: ChainClient):
        self.client = client

    @staticmethod
    def vote_args(election_id: int, party_id: int, proof: VoteProof) -> tuple:
        return (election_id, party_id, proof.nullifier_hash, proof.root,
                proof.proof_a, proof.proof_b, proof.proof_c)

    async def vote(self, election_id: int, party_id: int, proof: VoteProof) -> str:
        return await self.client.submit('vote', *self.vote_args(election_id, party_id, proof))

    async def get_last_root(self) -> Optional[int]:
        """Latest root accepted on-chain; None when none was ever set"""
        root = normalize_root(await self.client.call('getLastRoot'))
        return root or None

    async def is_known_root(self, root: int) -> bool:
        return bool(await self.client.call('isKnownRoot', root))

    async def update_root(self, root: int) -> str:
        return await self.client.submit('updateRoot', root)

    async def confirm(self, tx_hash: str, timeout: float) -> TxReceipt:
        return await self.client.confirm(tx_hash, timeout)
