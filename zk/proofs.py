"""
Vote proof coordination.

Builds the circuit witness from the voter's credentials and inclusion
path, runs the external Groth16 prover (snarkjs) and decodes its output
into the calldata shape the verifier contract expects:
(a[2], b[2][2], c[2]) plus the public signals [nullifierHash, root].
"""

import asyncio
import hashlib
import json
import logging
import subprocess
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import requests

from config.config import ProverConfig
from errors import ProofGenerationError
from utils.utils import PerformanceMonitor
from zk.commitments import recreate
from zk.hashing import is_field_element
from zk.merkle import MerklePath, compute_path_root

logger = logging.getLogger(__name__)

# BN254 base field prime (curve coordinates)
BN254_PRIME = 21888242871839275222246405745257275088696311157297823662689037894645226208583


@dataclass
class Witness:
    """Circuit inputs plus the public values they must produce"""
    nullifier: int
    secret: int
    path_elements: List[int]
    path_indices: List[int]
    commitment: int
    nullifier_hash: int
    root: int

    def to_input(self) -> Dict[str, Any]:
        """Input JSON in the shape the circuit expects"""
        return {
            'nullifier': str(self.nullifier),
            'secret': str(self.secret),
            'pathElements': [str(e) for e in self.path_elements],
            'pathIndices': [str(i) for i in self.path_indices],
        }


@dataclass
class VoteProof:
    """Decoded Groth16 proof ready for the vote() call"""
    nullifier_hash: int
    root: int
    proof_a: List[int]
    proof_b: List[List[int]]
    proof_c: List[int]
    generation_time: float = 0.0
    timestamp: float = field(default_factory=time.time)

    def to_calldata(self) -> Dict[str, Any]:
        return {
            'nullifierHash': str(self.nullifier_hash),
            'root': str(self.root),
            'proof_a': [str(x) for x in self.proof_a],
            'proof_b': [[str(x) for x in row] for row in self.proof_b],
            'proof_c': [str(x) for x in self.proof_c],
        }


class Prover:
    """External proof system: witness input in, (proof, publicSignals) out"""

    async def prove(self, inputs: Dict[str, Any]) -> Tuple[Dict[str, Any], List[str]]:
        raise NotImplementedError


class SnarkjsProver(Prover):
    """Groth16 prover backed by the snarkjs CLI"""

    def __init__(self, config: ProverConfig):
        self.config = config

    async def prove(self, inputs: Dict[str, Any]) -> Tuple[Dict[str, Any], List[str]]:
        return await asyncio.to_thread(self._prove_sync, inputs)

    def _prove_sync(self, inputs: Dict[str, Any]) -> Tuple[Dict[str, Any], List[str]]:
        with tempfile.TemporaryDirectory() as temp_dir:
            temp_path = Path(temp_dir)

            input_file = temp_path / "input.json"
            with open(input_file, 'w') as f:
                json.dump(inputs, f)

            proof_file = temp_path / "proof.json"
            public_file = temp_path / "public.json"

            cmd = [
                self.config.snarkjs_bin, 'groth16', 'fullprove',
                str(input_file),
                str(self.config.wasm_path),
                str(self.config.zkey_path),
                str(proof_file),
                str(public_file)
            ]

            try:
                result = subprocess.run(cmd, capture_output=True, text=True,
                                        timeout=self.config.proof_timeout)
            except FileNotFoundError:
                raise ProofGenerationError(
                    f"Prover binary not found: {self.config.snarkjs_bin}") from None
            except subprocess.TimeoutExpired:
                raise ProofGenerationError(
                    f"Proof generation timed out after {self.config.proof_timeout}s") from None

            if result.returncode != 0:
                raise ProofGenerationError(
                    f"Proof generation failed: {result.stderr.strip() or result.stdout.strip()}")

            try:
                proof = json.loads(proof_file.read_text())
                public_signals = json.loads(public_file.read_text())
            except (OSError, ValueError) as e:
                raise ProofGenerationError(f"Unreadable prover output: {e}") from e

            return proof, public_signals


def _hash_file(file_path: Path) -> str:
    sha256 = hashlib.sha256()
    with open(file_path, 'rb') as f:
        for chunk in iter(lambda: f.read(1 << 20), b''):
            sha256.update(chunk)
    return sha256.hexdigest()


def ensure_circuit_artifacts(config: ProverConfig) -> None:
    """Download missing circuit artifacts and check their digests"""
    artifacts = [
        (Path(config.wasm_path), config.wasm_sha256),
        (Path(config.zkey_path), config.zkey_sha256),
    ]

    for path, expected in artifacts:
        if not path.exists():
            if not config.artifact_base_url:
                raise ProofGenerationError(
                    f"Circuit artifact {path} missing and no download URL configured")

            url = f"{config.artifact_base_url.rstrip('/')}/{path.name}"
            logger.info(f"Downloading circuit artifact {path.name} from {url}")
            path.parent.mkdir(parents=True, exist_ok=True)
            try:
                with requests.get(url, stream=True, timeout=config.download_timeout) as response:
                    response.raise_for_status()
                    with open(path, 'wb') as f:
                        for chunk in response.iter_content(chunk_size=1 << 20):
                            f.write(chunk)
            except requests.RequestException as e:
                if path.exists():
                    path.unlink()
                raise ProofGenerationError(f"Failed to download {url}: {e}") from e

        if expected:
            actual = _hash_file(path)
            if actual != expected.lower():
                logger.error(
                    f"Artifact hash mismatch for {path}: expected {expected}, got {actual}")
                path.unlink()
                raise ProofGenerationError(f"Circuit artifact {path.name} failed verification")


def _to_int(value: Any) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        text = value.strip()
        return int(text, 16) if text.lower().startswith('0x') else int(text)
    raise ValueError(f"Not a number: {value!r}")


def _g1_point(point: Sequence[Any]) -> List[int]:
    """Affine G1 point, checked against y^2 = x^3 + 3"""
    if len(point) < 2:
        raise ValueError("G1 point needs two coordinates")

    x, y = _to_int(point[0]), _to_int(point[1])
    if len(point) > 2 and _to_int(point[2]) != 1:
        raise ValueError("G1 point not in affine form")

    if not (0 <= x < BN254_PRIME and 0 <= y < BN254_PRIME):
        raise ValueError("G1 coordinate out of range")

    if (y * y - x * x * x - 3) % BN254_PRIME != 0:
        raise ValueError("Point not on curve")

    return [x, y]


def _g2_point(point: Sequence[Any]) -> List[List[int]]:
    """G2 point in calldata order (Fp2 limbs swapped)"""
    if len(point) < 2:
        raise ValueError("G2 point needs two coordinates")

    rows = []
    for coordinate in point[:2]:
        if len(coordinate) != 2:
            raise ValueError("G2 coordinate must have two limbs")
        c0, c1 = _to_int(coordinate[0]), _to_int(coordinate[1])
        if not (0 <= c0 < BN254_PRIME and 0 <= c1 < BN254_PRIME):
            raise ValueError("G2 coordinate out of range")
        rows.append([c1, c0])

    if len(point) > 2 and [_to_int(v) for v in point[2]] != [1, 0]:
        raise ValueError("G2 point not in affine form")

    return rows


def decode_groth16_proof(proof: Dict[str, Any], public_signals: Sequence[Any]) -> VoteProof:
    """snarkjs proof.json/public.json -> verifier calldata"""
    try:
        if proof.get('protocol', 'groth16') != 'groth16':
            raise ValueError(f"Invalid protocol: {proof.get('protocol')}")

        if len(public_signals) != 2:
            raise ValueError(f"Expected 2 public signals, got {len(public_signals)}")

        nullifier_hash = _to_int(public_signals[0])
        root = _to_int(public_signals[1])
        if not (is_field_element(nullifier_hash) and is_field_element(root)):
            raise ValueError("Public signal outside field bounds")

        return VoteProof(
            nullifier_hash=nullifier_hash,
            root=root,
            proof_a=_g1_point(proof['pi_a']),
            proof_b=_g2_point(proof['pi_b']),
            proof_c=_g1_point(proof['pi_c']),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise ProofGenerationError(f"Malformed prover output: {e}") from e


class ProofCoordinator:
    """Witness construction and proof generation for a single vote"""

    def __init__(self, prover: Prover, depth: int,
                 monitor: Optional[PerformanceMonitor] = None):
        self.prover = prover
        self.depth = depth
        self.monitor = monitor or PerformanceMonitor()

    def build_witness(self, nullifier: int, secret: int, path: MerklePath) -> Witness:
        """Assemble circuit inputs for a registered leaf"""
        if len(path.path_elements) != self.depth or len(path.path_indices) != self.depth:
            raise ProofGenerationError(
                f"Path must have {self.depth} elements, got {len(path.path_elements)}")

        values = [nullifier, secret] + list(path.path_elements)
        if not all(is_field_element(v) for v in values):
            raise ProofGenerationError("Witness value outside field bounds")

        if any(i not in (0, 1) for i in path.path_indices):
            raise ProofGenerationError("Path indices must be 0 or 1")

        pair = recreate(nullifier, secret)
        return Witness(
            nullifier=nullifier,
            secret=secret,
            path_elements=list(path.path_elements),
            path_indices=list(path.path_indices),
            commitment=pair.commitment,
            nullifier_hash=pair.nullifier_hash,
            root=compute_path_root(pair.commitment, path.path_elements, path.path_indices),
        )

    async def generate_proof(self, witness: Witness) -> VoteProof:
        """Run the prover and decode its output"""
        start_time = time.time()

        with self.monitor.start_operation("proof_generation"):
            proof, public_signals = await self.prover.prove(witness.to_input())

        vote_proof = decode_groth16_proof(proof, public_signals)

        if vote_proof.nullifier_hash != witness.nullifier_hash:
            raise ProofGenerationError("Proof nullifier hash does not match witness")

        if vote_proof.root != witness.root:
            raise ProofGenerationError("Proof root does not match witness path")

        vote_proof.generation_time = time.time() - start_time
        logger.info(f"Generated vote proof in {vote_proof.generation_time:.2f}s")
        return vote_proof


