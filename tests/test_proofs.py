"""Witness construction, proof decoding and artifact checks"""

import asyncio
import hashlib
from unittest import mock

import pytest
import requests

from config.config import ProverConfig
from errors import ProofGenerationError
from zk.commitments import recreate
from zk.merkle import TREE_DEPTH, Accumulator, MerklePath
from zk.proofs import (BN254_PRIME, ProofCoordinator, SnarkjsProver,
                       decode_groth16_proof, ensure_circuit_artifacts)

from conftest import G1, G2, FakeProver

NULLIFIER, SECRET = 111, 222


def snarkjs_proof(**overrides):
    proof = {
        'pi_a': list(G1),
        'pi_b': [list(row) for row in G2],
        'pi_c': list(G1),
        'protocol': 'groth16',
        'curve': 'bn128',
    }
    proof.update(overrides)
    return proof


@pytest.fixture
def registered_tree():
    tree = Accumulator()
    tree.insert(777)
    tree.insert(recreate(NULLIFIER, SECRET).commitment)
    tree.insert(888)
    return tree


class TestDecode:

    def test_calldata_shape(self):
        vote_proof = decode_groth16_proof(snarkjs_proof(), ['5', '6'])
        assert vote_proof.nullifier_hash == 5
        assert vote_proof.root == 6
        assert vote_proof.proof_a == [1, 2]
        assert vote_proof.proof_c == [1, 2]
        # Fp2 limbs swapped for the Solidity verifier
        assert vote_proof.proof_b == [[4, 3], [6, 5]]

    def test_hex_signals(self):
        vote_proof = decode_groth16_proof(snarkjs_proof(), ['0x05', '0x06'])
        assert (vote_proof.nullifier_hash, vote_proof.root) == (5, 6)

    def test_calldata_strings(self):
        data = decode_groth16_proof(snarkjs_proof(), ['5', '6']).to_calldata()
        assert data['proof_b'] == [['4', '3'], ['6', '5']]
        assert data['nullifierHash'] == '5'

    def test_point_off_curve(self):
        with pytest.raises(ProofGenerationError):
            decode_groth16_proof(snarkjs_proof(pi_a=['1', '3', '1']), ['5', '6'])

    def test_coordinate_out_of_range(self):
        with pytest.raises(ProofGenerationError):
            decode_groth16_proof(snarkjs_proof(pi_b=[[str(BN254_PRIME), '1'], ['1', '1'], ['1', '0']]),
                                 ['5', '6'])

    def test_missing_component(self):
        proof = snarkjs_proof()
        del proof['pi_c']
        with pytest.raises(ProofGenerationError):
            decode_groth16_proof(proof, ['5', '6'])

    def test_wrong_signal_count(self):
        with pytest.raises(ProofGenerationError):
            decode_groth16_proof(snarkjs_proof(), ['5'])

    def test_non_numeric_signal(self):
        with pytest.raises(ProofGenerationError):
            decode_groth16_proof(snarkjs_proof(), ['five', '6'])

    def test_wrong_protocol(self):
        with pytest.raises(ProofGenerationError):
            decode_groth16_proof(snarkjs_proof(protocol='plonk'), ['5', '6'])


class TestProofCoordinator:

    def test_witness_inputs(self, registered_tree):
        coordinator = ProofCoordinator(FakeProver(), TREE_DEPTH)
        witness = coordinator.build_witness(NULLIFIER, SECRET, registered_tree.path(1))

        assert witness.root == registered_tree.root
        assert witness.nullifier_hash == recreate(NULLIFIER, SECRET).nullifier_hash

        inputs = witness.to_input()
        assert set(inputs) == {'nullifier', 'secret', 'pathElements', 'pathIndices'}
        assert len(inputs['pathElements']) == TREE_DEPTH
        assert inputs['pathIndices'][0] == '1'

    def test_witness_rejects_short_path(self, registered_tree):
        path = registered_tree.path(1)
        short = MerklePath(1, path.path_elements[:5], path.path_indices[:5])
        with pytest.raises(ProofGenerationError):
            ProofCoordinator(FakeProver(), TREE_DEPTH).build_witness(NULLIFIER, SECRET, short)

    def test_generate_proof(self, registered_tree):
        prover = FakeProver()
        coordinator = ProofCoordinator(prover, TREE_DEPTH)
        witness = coordinator.build_witness(NULLIFIER, SECRET, registered_tree.path(1))

        vote_proof = asyncio.run(coordinator.generate_proof(witness))

        assert vote_proof.root == registered_tree.root
        assert vote_proof.nullifier_hash == witness.nullifier_hash
        assert vote_proof.generation_time >= 0
        assert prover.calls == 1
        assert coordinator.monitor.get_summary()['operations']['proof_generation']['count'] == 1

    def test_root_mismatch(self, registered_tree):
        prover = FakeProver()
        prover.root_override = 12345
        coordinator = ProofCoordinator(prover, TREE_DEPTH)
        witness = coordinator.build_witness(NULLIFIER, SECRET, registered_tree.path(1))
        with pytest.raises(ProofGenerationError):
            asyncio.run(coordinator.generate_proof(witness))

    def test_prover_failure_propagates(self, registered_tree):
        class FailingProver(FakeProver):
            async def prove(self, inputs):
                raise ProofGenerationError("witness rejected")

        coordinator = ProofCoordinator(FailingProver(), TREE_DEPTH)
        witness = coordinator.build_witness(NULLIFIER, SECRET, registered_tree.path(1))
        with pytest.raises(ProofGenerationError):
            asyncio.run(coordinator.generate_proof(witness))
        summary = coordinator.monitor.get_summary()['operations']['proof_generation']
        assert summary['failures'] == 1


class TestSnarkjsProver:

    def test_missing_binary(self, tmp_path):
        config = ProverConfig(snarkjs_bin=str(tmp_path / 'no-such-snarkjs'))
        with pytest.raises(ProofGenerationError):
            asyncio.run(SnarkjsProver(config).prove({'nullifier': '1'}))

    def test_nonzero_exit(self):
        failed = mock.Mock(returncode=1, stderr='Error: Assert Failed', stdout='')
        with mock.patch('zk.proofs.subprocess.run', return_value=failed):
            with pytest.raises(ProofGenerationError, match='Assert Failed'):
                asyncio.run(SnarkjsProver(ProverConfig()).prove({'nullifier': '1'}))


class TestArtifacts:

    def test_present_with_matching_digest(self, tmp_path):
        wasm = tmp_path / 'Verifier.wasm'
        zkey = tmp_path / 'Verifier.zkey'
        wasm.write_bytes(b'wasm')
        zkey.write_bytes(b'zkey')
        config = ProverConfig(wasm_path=wasm, zkey_path=zkey,
                              wasm_sha256=hashlib.sha256(b'wasm').hexdigest())
        ensure_circuit_artifacts(config)
        assert wasm.exists()

    def test_digest_mismatch_deletes_file(self, tmp_path):
        wasm = tmp_path / 'Verifier.wasm'
        zkey = tmp_path / 'Verifier.zkey'
        wasm.write_bytes(b'tampered')
        zkey.write_bytes(b'zkey')
        config = ProverConfig(wasm_path=wasm, zkey_path=zkey, wasm_sha256='00' * 32)
        with pytest.raises(ProofGenerationError):
            ensure_circuit_artifacts(config)
        assert not wasm.exists()

    def test_missing_without_url(self, tmp_path):
        config = ProverConfig(wasm_path=tmp_path / 'a.wasm', zkey_path=tmp_path / 'a.zkey')
        with pytest.raises(ProofGenerationError):
            ensure_circuit_artifacts(config)

    def test_downloads_missing(self, tmp_path):
        response = mock.MagicMock()
        response.__enter__.return_value = response
        response.iter_content.return_value = [b'circuit-', b'bytes']

        config = ProverConfig(wasm_path=tmp_path / 'c' / 'Verifier.wasm',
                              zkey_path=tmp_path / 'c' / 'Verifier.zkey',
                              artifact_base_url='https://artifacts.example/circuits/')
        with mock.patch('zk.proofs.requests.get', return_value=response) as get:
            ensure_circuit_artifacts(config)

        assert get.call_count == 2
        assert get.call_args_list[0].args[0] == 'https://artifacts.example/circuits/Verifier.wasm'
        assert config.wasm_path.read_bytes() == b'circuit-bytes'

    def test_download_failure(self, tmp_path):
        config = ProverConfig(wasm_path=tmp_path / 'Verifier.wasm',
                              zkey_path=tmp_path / 'Verifier.zkey',
                              artifact_base_url='https://artifacts.example')
        with mock.patch('zk.proofs.requests.get',
                        side_effect=requests.ConnectionError('unreachable')):
            with pytest.raises(ProofGenerationError):
                ensure_circuit_artifacts(config)
        assert not config.wasm_path.exists()
