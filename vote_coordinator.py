#!/usr/bin/env python3
"""
Vote Coordinator
================
Registration, vote preparation and vote submission with nullifier
replay protection.

Registration is the only path that inserts into the accumulator. Vote
preparation is read-only against the tree: it recreates the voter's
commitment, makes sure the verifier knows the current root and builds
the proof. Casting uses an optimistic pre-check and a pessimistic
post-check around the nullifier store; the store's atomic
mark-if-unused is the final guard against double voting. Broadcast
transactions are recorded so a timed-out confirmation can be resumed.
"""

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from chain.client import ChainClient, TxReceipt, Web3ChainClient
from chain.sync import RootSynchronizer
from chain.verifier import VerifierContract
from config.config import ChainConfig, SystemConfig
from errors import (AlreadyVotedError, ChainClientError, ChainRevertError,
                    ChainSubmissionError, ChainSyncError, ConfirmationTimeoutError,
                    NotRegisteredError, TreeCapacityError, ValidationError)
from storage.store import VotingStore
from utils.utils import PerformanceMonitor
from zk.commitments import Credentials, generate, parse_field_element, recreate
from zk.merkle import Accumulator, MerklePath, RootRecord
from zk.proofs import BN254_PRIME, ProofCoordinator, Prover, SnarkjsProver, VoteProof

logger = logging.getLogger(__name__)

UINT256_MAX = (1 << 256) - 1
ROOT_SYNC_ATTEMPTS = 3
MAX_TRACKED_STATES = 10_000


class VoteState(Enum):
    UNREGISTERED = "unregistered"
    REGISTERED = "registered"
    PROOF_PREPARED = "proof_prepared"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"


# (substrings, category); None marks a double vote
REVERT_CATEGORIES = [
    (("already voted", "nullifier"), None),
    (("not started", "not open"), "election not open"),
    (("closed", "ended"), "election closed"),
    (("invalid proof",), "invalid proof"),
    (("unknown root", "root"), "unknown root"),
]


def classify_revert(reason: Optional[str]) -> Optional[str]:
    """User-facing category for a revert reason; None for a double vote"""
    text = (reason or "").lower()
    for needles, category in REVERT_CATEGORIES:
        if any(needle in text for needle in needles):
            return category
    return "transaction reverted"


def _parse_uint(value: Any, name: str, bound: int = UINT256_MAX + 1) -> int:
    if value is None or value == "":
        raise ValidationError(f"Missing {name}")
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        raise ValidationError(f"Invalid {name}: {value!r}")
    try:
        number = int(value, 0) if isinstance(value, str) else int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {name}: {value!r}") from None
    if number < 0 or number >= bound:
        raise ValidationError(f"{name} out of range")
    return number


def _parse_coords(values: Any, name: str, length: int = 2) -> List[int]:
    if not isinstance(values, (list, tuple)) or len(values) != length:
        raise ValidationError(f"{name} must have {length} elements")
    return [_parse_uint(v, name, BN254_PRIME) for v in values]


@dataclass
class VotePayload:
    """Everything vote() needs, as returned by prepare_vote"""
    election_id: int
    party_id: int
    nullifier_hash: int
    root: int
    proof_a: List[int]
    proof_b: List[List[int]]
    proof_c: List[int]

    @classmethod
    def from_proof(cls, election_id: int, party_id: int, proof: VoteProof) -> 'VotePayload':
        return cls(election_id, party_id, proof.nullifier_hash, proof.root,
                   proof.proof_a, proof.proof_b, proof.proof_c)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'VotePayload':
        if not isinstance(data, dict):
            raise ValidationError("Vote payload must be an object")

        proof_b = data.get('proof_b')
        if not isinstance(proof_b, (list, tuple)) or len(proof_b) != 2:
            raise ValidationError("proof_b must be a 2x2 matrix")

        return cls(
            election_id=_parse_uint(data.get('electionId'), 'electionId'),
            party_id=_parse_uint(data.get('partyId'), 'partyId'),
            nullifier_hash=parse_field_element(data.get('nullifierHash'), 'nullifierHash'),
            root=parse_field_element(data.get('root'), 'root'),
            proof_a=_parse_coords(data.get('proof_a'), 'proof_a'),
            proof_b=[_parse_coords(row, 'proof_b') for row in proof_b],
            proof_c=_parse_coords(data.get('proof_c'), 'proof_c'),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'electionId': str(self.election_id),
            'partyId': str(self.party_id),
            'nullifierHash': str(self.nullifier_hash),
            'root': str(self.root),
            'proof_a': [str(x) for x in self.proof_a],
            'proof_b': [[str(x) for x in row] for row in self.proof_b],
            'proof_c': [str(x) for x in self.proof_c],
        }

    def to_proof(self) -> VoteProof:
        return VoteProof(self.nullifier_hash, self.root,
                         self.proof_a, self.proof_b, self.proof_c)


class VoteCoordinator:
    """Per-voter, per-election vote lifecycle keyed by nullifier hash"""

    def __init__(self, accumulator: Accumulator, store: VotingStore,
                 synchronizer: RootSynchronizer, proofs: ProofCoordinator,
                 verifier: VerifierContract, config: Optional[ChainConfig] = None,
                 monitor: Optional[PerformanceMonitor] = None):
        self.accumulator = accumulator
        self.store = store
        self.synchronizer = synchronizer
        self.proofs = proofs
        self.verifier = verifier
        self.config = config or ChainConfig()
        self.monitor = monitor or PerformanceMonitor()

        # serialises tree writes against path reads
        self._tree_lock = asyncio.Lock()
        # in-flight states only; the store answers for submitted and confirmed votes
        self._states: 'OrderedDict[int, VoteState]' = OrderedDict()

    def _set_state(self, nullifier_hash: int, state: VoteState):
        self._states[nullifier_hash] = state
        self._states.move_to_end(nullifier_hash)
        while len(self._states) > MAX_TRACKED_STATES:
            self._states.popitem(last=False)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def register(self, commitment: Union[int, str]) -> int:
        """Insert a commitment and persist the new root; returns the root"""
        commitment = parse_field_element(commitment, 'commitment')

        async with self._tree_lock:
            if self.accumulator.contains(commitment):
                raise ValidationError("Commitment already registered")

            leaf_index = self.accumulator.size
            if leaf_index >= self.accumulator.capacity:
                logger.error("Registration rejected: accumulator is full")
                raise TreeCapacityError(
                    f"Accumulator full ({self.accumulator.capacity} leaves)")

            self.store.save_commitment(commitment, leaf_index)
            result = self.accumulator.insert(commitment)
            self.store.save_root(result.root)

        logger.info(f"Registered commitment at leaf {leaf_index}, root {str(result.root)[:15]}...")
        return result.root

    async def enroll(self, identity_verified: bool) -> Credentials:
        """Issue credentials to a voter the identity service has verified"""
        if not identity_verified:
            logger.warning("Enrollment refused: identity not verified")
            raise ValidationError("Identity verification failed")

        credentials = generate()
        await self.register(credentials.commitment)
        return credentials

    # ------------------------------------------------------------------
    # Vote preparation
    # ------------------------------------------------------------------

    async def _synced_path(self, leaf_index: int) -> MerklePath:
        """Inclusion path whose root is the root last pushed to the verifier.

        Registrations may land while a root update is being confirmed; the
        path is only taken once the accumulator still matches the root
        that was synced.
        """
        for attempt in range(1, ROOT_SYNC_ATTEMPTS + 1):
            sync = await self.synchronizer.reconcile()
            if sync.updated:
                logger.info(f"Verifier root updated before proving (tx {sync.tx_hash})")

            async with self._tree_lock:
                if self.accumulator.root == sync.updated_root:
                    return self.accumulator.path(leaf_index)

            logger.info(f"Accumulator changed during root sync (attempt {attempt}), syncing again")

        raise ChainSyncError(
            f"Accumulator kept changing across {ROOT_SYNC_ATTEMPTS} root updates")

    async def prepare_vote(self, nullifier: Union[int, str], secret: Union[int, str],
                           election_id: Union[int, str], party_id: Union[int, str]) -> VotePayload:
        election_id = _parse_uint(election_id, 'electionId')
        party_id = _parse_uint(party_id, 'partyId')
        nullifier = parse_field_element(nullifier, 'nullifier')
        secret = parse_field_element(secret, 'secret')

        pair = recreate(nullifier, secret)
        leaf_index = self.accumulator.index_of(pair.commitment)
        if leaf_index is None:
            logger.warning("Vote preparation for unregistered commitment")
            raise NotRegisteredError("Commitment not found in accumulator")

        if self.has_voted(pair.nullifier_hash):
            raise AlreadyVotedError("Nullifier already used")

        path = await self._synced_path(leaf_index)

        witness = self.proofs.build_witness(nullifier, secret, path)
        proof = await self.proofs.generate_proof(witness)

        if self.config.verify_root_after_proof:
            try:
                known = await self.synchronizer.is_root_known(proof.root)
            except ChainSyncError as e:
                logger.warning(f"Could not confirm proof root is known: {e}")
            else:
                if not known:
                    logger.warning(
                        f"Proof root {str(proof.root)[:15]}... is not in the verifier's window")

        self._set_state(pair.nullifier_hash, VoteState.PROOF_PREPARED)
        return VotePayload.from_proof(election_id, party_id, proof)

    # ------------------------------------------------------------------
    # Vote submission
    # ------------------------------------------------------------------

    def _rejection(self, nullifier_hash: int, reason: Optional[str],
                   tx_hash: Optional[str] = None,
                   receipt: Optional[TxReceipt] = None) -> Exception:
        reason = reason or "execution reverted"
        category = classify_revert(reason)
        if category is None:
            # the verifier has seen this nullifier spent
            self.store.mark_nullifier_used(nullifier_hash)
            logger.warning(f"Vote rejected as double vote: {reason}")
            return AlreadyVotedError(f"Already voted: {reason}", receipt)
        logger.error(f"Vote rejected ({category}): {reason}")
        return ChainSubmissionError(reason, category, tx_hash)

    async def _await_receipt(self, tx_hash: str) -> TxReceipt:
        try:
            return await self.verifier.confirm(tx_hash, self.config.confirmation_timeout)
        except ConfirmationTimeoutError:
            logger.warning(f"Vote {tx_hash} still pending after "
                           f"{self.config.confirmation_timeout:.0f}s")
            raise

    def _finalize(self, nullifier_hash: int, tx_hash: str, receipt: TxReceipt) -> TxReceipt:
        if not receipt.succeeded:
            self._set_state(nullifier_hash, VoteState.REJECTED)
            self.store.clear_submission(nullifier_hash, tx_hash)
            if self.has_voted(nullifier_hash):
                raise AlreadyVotedError("Nullifier used by a concurrent vote", receipt)
            raise self._rejection(nullifier_hash, receipt.revert_reason, tx_hash, receipt)

        # post-check: fails when another transaction already spent the nullifier
        if not self.store.mark_nullifier_used(nullifier_hash, tx_hash):
            self._states.pop(nullifier_hash, None)
            logger.warning(f"Nullifier used while {tx_hash} was in flight")
            raise AlreadyVotedError("Nullifier used by a concurrent vote", receipt)

        self._states.pop(nullifier_hash, None)
        logger.info(f"Vote confirmed in block {receipt.block_number} ({tx_hash})")
        return receipt

    async def cast_vote(self, payload: Union[VotePayload, Dict[str, Any]]) -> TxReceipt:
        """Submit a prepared vote and mark its nullifier used once confirmed.

        A confirmation timeout leaves the vote SUBMITTED with its
        transaction recorded; confirm_vote() resumes the wait.
        """
        if isinstance(payload, VotePayload):
            payload = VotePayload.from_dict(payload.to_dict())
        else:
            payload = VotePayload.from_dict(payload)

        nullifier_hash = payload.nullifier_hash
        if self.has_voted(nullifier_hash):
            logger.warning(f"Rejected repeat vote for {str(nullifier_hash)[:15]}...")
            raise AlreadyVotedError("Nullifier already used")

        previous = self._states.get(nullifier_hash)
        self._set_state(nullifier_hash, VoteState.SUBMITTED)

        with self.monitor.start_operation("cast_vote", election_id=payload.election_id):
            try:
                tx_hash = await self.verifier.vote(
                    payload.election_id, payload.party_id, payload.to_proof())
            except ChainRevertError as e:
                self._set_state(nullifier_hash, VoteState.REJECTED)
                raise self._rejection(nullifier_hash, e.reason) from e
            except ChainClientError:
                self._restore(nullifier_hash, previous)
                raise

            self.store.record_submission(nullifier_hash, tx_hash)
            receipt = await self._await_receipt(tx_hash)
            return self._finalize(nullifier_hash, tx_hash, receipt)

    async def confirm_vote(self, nullifier_hash: Union[int, str]) -> TxReceipt:
        """Resume waiting on the vote last submitted for a nullifier hash"""
        nullifier_hash = parse_field_element(nullifier_hash, 'nullifierHash')

        tx_hash = self.store.submission_tx(nullifier_hash)
        if tx_hash is None:
            if self.has_voted(nullifier_hash):
                raise AlreadyVotedError("Nullifier already used")
            raise ValidationError("No vote submitted for this nullifier hash")

        with self.monitor.start_operation("confirm_vote"):
            receipt = await self._await_receipt(tx_hash)
            return self._finalize(nullifier_hash, tx_hash, receipt)

    def _restore(self, nullifier_hash: int, previous: Optional[VoteState]):
        if previous is None:
            self._states.pop(nullifier_hash, None)
        else:
            self._states[nullifier_hash] = previous

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_voted(self, nullifier_hash: Union[int, str]) -> bool:
        nullifier_hash = parse_field_element(nullifier_hash, 'nullifierHash')
        return self.store.nullifier_used(nullifier_hash)

    def vote_state(self, nullifier_hash: Union[int, str],
                   commitment: Optional[Union[int, str]] = None) -> VoteState:
        nullifier_hash = parse_field_element(nullifier_hash, 'nullifierHash')
        if self.store.nullifier_used(nullifier_hash):
            return VoteState.CONFIRMED
        if self.store.pending_submission(nullifier_hash):
            return VoteState.SUBMITTED

        state = self._states.get(nullifier_hash)
        if state is not None:
            return state

        if commitment is not None:
            commitment = parse_field_element(commitment, 'commitment')
            if self.accumulator.contains(commitment):
                return VoteState.REGISTERED
        return VoteState.UNREGISTERED


@dataclass
class VotingSystem:
    """All long-lived collaborators, built once at process start"""
    config: SystemConfig
    store: VotingStore
    accumulator: Accumulator
    client: ChainClient
    verifier: VerifierContract
    synchronizer: RootSynchronizer
    proofs: ProofCoordinator
    coordinator: VoteCoordinator
    monitor: PerformanceMonitor

    @classmethod
    def from_config(cls, config: SystemConfig, client: Optional[ChainClient] = None,
                    prover: Optional[Prover] = None,
                    store: Optional[VotingStore] = None) -> 'VotingSystem':
        monitor = PerformanceMonitor()
        client = client or Web3ChainClient(config.chain)
        store = store or VotingStore(config.store)

        history = [RootRecord(root, created_at.timestamp())
                   for root, created_at in store.root_history()]
        accumulator = Accumulator(config.tree.depth, leaves=store.all_commitments(),
                                  root_history=history)

        verifier = VerifierContract(client)
        synchronizer = RootSynchronizer(verifier, accumulator,
                                        config.chain.confirmation_timeout, monitor)
        proofs = ProofCoordinator(prover or SnarkjsProver(config.prover),
                                  config.tree.depth, monitor)
        coordinator = VoteCoordinator(accumulator, store, synchronizer, proofs,
                                      verifier, config.chain, monitor)

        logger.info(f"Voting system ready: {accumulator.size} registered commitments")
        return cls(config, store, accumulator, client, verifier,
                   synchronizer, proofs, coordinator, monitor)

    async def close(self):
        await self.client.close()
        self.store.close()
