"""MiMC sponge hashing shared with the circuit"""

import pytest
from eth_utils import keccak

from zk.hashing import (FIELD_SIZE, ZERO_VALUE, CircomMiMCSponge, hash_left_right,
                        is_field_element, mimc_hash)
from zk.merkle import zero_hashes


class TestRoundConstants:

    def test_constant_count(self):
        assert len(CircomMiMCSponge.ROUND_CONSTANTS) == CircomMiMCSponge.ROUNDS == 220

    def test_first_and_last_constants_are_zero(self):
        assert CircomMiMCSponge.ROUND_CONSTANTS[0] == 0
        assert CircomMiMCSponge.ROUND_CONSTANTS[-1] == 0

    def test_second_constant_is_double_keccak_of_seed(self):
        expected = int.from_bytes(keccak(keccak(b"mimcsponge")), 'big') % FIELD_SIZE
        assert CircomMiMCSponge.ROUND_CONSTANTS[1] == expected

    def test_constants_in_field(self):
        assert all(0 <= c < FIELD_SIZE for c in CircomMiMCSponge.ROUND_CONSTANTS)


class TestMiMCHash:

    def test_zero_value_is_reduced_keccak_of_tornado(self):
        assert ZERO_VALUE == int.from_bytes(keccak(b"tornado"), 'big') % FIELD_SIZE

    def test_deterministic(self):
        assert mimc_hash([1, 2]) == mimc_hash([1, 2])

    def test_order_matters(self):
        assert mimc_hash([1, 2]) != mimc_hash([2, 1])

    def test_arity_matters(self):
        assert mimc_hash([7]) != mimc_hash([7, 0])

    def test_output_in_field(self):
        for inputs in ([0], [1, 2], [FIELD_SIZE - 1, FIELD_SIZE - 1]):
            assert is_field_element(mimc_hash(inputs))

    def test_hash_left_right_matches_two_input_sponge(self):
        assert hash_left_right(3, 4) == mimc_hash([3, 4])
        assert hash_left_right(3, 4) == CircomMiMCSponge.multi_hash([3, 4])

    def test_feistel_is_permutation_of_state(self):
        assert CircomMiMCSponge.feistel(1, 0) != CircomMiMCSponge.feistel(2, 0)

    def test_rejects_empty_input(self):
        with pytest.raises(ValueError):
            mimc_hash([])

    @pytest.mark.parametrize("bad", [-1, FIELD_SIZE, FIELD_SIZE + 5])
    def test_rejects_out_of_field(self, bad):
        with pytest.raises(ValueError):
            mimc_hash([bad])


def test_is_field_element():
    assert is_field_element(0)
    assert is_field_element(FIELD_SIZE - 1)
    assert not is_field_element(FIELD_SIZE)
    assert not is_field_element(-1)
    assert not is_field_element(True)
    assert not is_field_element("5")


class TestKnownAnswers:
    """Values published by the tornado-core MerkleTreeWithHistory contract"""

    def test_zero_value(self):
        assert ZERO_VALUE == 0x2fe54c60d3acabf3343a35b6eba15db4821b340f76e741e2249685ed4899af6c

    @pytest.mark.parametrize("level,expected", [
        (1, 0x256a6135777eee2fd26f54b8b7037a25439d5235caee224154186d2b8a52e31d),
        (2, 0x1151949895e82ab19924de92c40a3d6f7bcb60d92b00504b8199613683f0c200),
    ])
    def test_zero_subtree_roots(self, level, expected):
        assert zero_hashes(2)[level] == expected

    def test_hash_left_right_of_empty_leaves(self):
        assert hash_left_right(ZERO_VALUE, ZERO_VALUE) == \
            0x256a6135777eee2fd26f54b8b7037a25439d5235caee224154186d2b8a52e31d
