"""
Zero-Knowledge Credential Module
MiMC hashing, commitment accumulator and Groth16 vote proofs
"""

from .hashing import CircomMiMCSponge, mimc_hash, hash_left_right, FIELD_SIZE, ZERO_VALUE
from .merkle import Accumulator, MerklePath, InsertResult, build_layers, verify_path, TREE_DEPTH
from .commitments import Credentials, CommitmentPair, generate, recreate, parse_field_element
from .proofs import (
    ProofCoordinator,
    Prover,
    SnarkjsProver,
    Witness,
    VoteProof,
    decode_groth16_proof,
    ensure_circuit_artifacts,
)

__version__ = "1.0.0"

__all__ = [
    # Hashing
    'CircomMiMCSponge',
    'mimc_hash',
    'hash_left_right',
    'FIELD_SIZE',
    'ZERO_VALUE',

    # Accumulator
    'Accumulator',
    'MerklePath',
    'InsertResult',
    'build_layers',
    'verify_path',
    'TREE_DEPTH',

    # Credentials
    'Credentials',
    'CommitmentPair',
    'generate',
    'recreate',
    'parse_field_element',

    # Proofs
    'ProofCoordinator',
    'Prover',
    'SnarkjsProver',
    'Witness',
    'VoteProof',
    'decode_groth16_proof',
    'ensure_circuit_artifacts',
]
