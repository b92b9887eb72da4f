"""
SNARK-friendly hashing shared with the voting circuit.

The circuit hashes commitments, nullifier hashes and tree nodes with
circomlib's MiMCSponge (220 rounds, x^5, key 0). Any divergence between
this module and the circuit makes every proof fail verification, so the
round constants are derived exactly like circomlibjs derives them.
"""

from typing import List, Sequence, Tuple

from eth_utils import keccak

# BN254 scalar field prime
FIELD_SIZE = 21888242871839275222246405745257275088548364400416034343698204186575808495617

# keccak256("tornado") % FIELD_SIZE, the empty-leaf value of the verifier contract
ZERO_VALUE = 21663839004416932945382355908790599225266501822907911457504978515578255421292


def derive_round_constants(seed: bytes, rounds: int, prime: int) -> List[int]:
    """Round constants by iterated keccak256 of the seed (first and last are 0)"""
    constants = [0] * rounds
    c = keccak(seed)
    for i in range(1, rounds):
        c = keccak(c)
        constants[i] = int.from_bytes(c, 'big') % prime
    constants[-1] = 0
    return constants


class CircomMiMCSponge:
    """circomlib-compatible MiMC sponge over the BN254 scalar field"""

    PRIME = FIELD_SIZE
    SEED = b"mimcsponge"
    ROUNDS = 220
    ROUND_CONSTANTS = derive_round_constants(SEED, ROUNDS, PRIME)

    @staticmethod
    def feistel(xl: int, xr: int, k: int = 0) -> Tuple[int, int]:
        """One MiMC Feistel permutation (all rounds)"""
        p = CircomMiMCSponge.PRIME
        constants = CircomMiMCSponge.ROUND_CONSTANTS
        last = CircomMiMCSponge.ROUNDS - 1

        for i in range(CircomMiMCSponge.ROUNDS):
            t = (xl + k) % p if i == 0 else (xl + k + constants[i]) % p
            t2 = t * t % p
            t5 = t2 * t2 % p * t % p
            if i < last:
                xl, xr = (xr + t5) % p, xl
            else:
                xr = (xr + t5) % p
        return xl, xr

    @staticmethod
    def multi_hash(inputs: Sequence[int], key: int = 0) -> int:
        """Sponge absorb of every input, single output (mimc.multiHash)"""
        r, c = 0, 0
        for value in inputs:
            r = (r + value) % CircomMiMCSponge.PRIME
            r, c = CircomMiMCSponge.feistel(r, c, key)
        return r


def is_field_element(value: int) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 0 <= value < FIELD_SIZE


def mimc_hash(elements: Sequence[int]) -> int:
    """Hash one or more field elements"""
    if not elements:
        raise ValueError("MiMC hash expects at least one input")

    for value in elements:
        if not is_field_element(value):
            raise ValueError(f"Value {value} outside field bounds")

    return CircomMiMCSponge.multi_hash(elements)


def hash_left_right(left: int, right: int) -> int:
    """Parent node of two tree children"""
    return mimc_hash([left, right])
