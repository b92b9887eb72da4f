"""
Append-only Merkle accumulator over voter commitments.

Fixed depth, zero-padded with the verifier contract's empty-leaf value.
Layers are kept in memory so an insert only rehashes the nodes on the
new leaf's path; ``build_layers`` is the full rebuild used for bulk loads.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from errors import TreeCapacityError
from zk.hashing import ZERO_VALUE, hash_left_right, is_field_element

logger = logging.getLogger(__name__)

TREE_DEPTH = 20


@lru_cache(maxsize=8)
def zero_hashes(depth: int) -> Tuple[int, ...]:
    """Z[0] is the empty leaf, Z[i] = H(Z[i-1], Z[i-1])"""
    zeros = [ZERO_VALUE]
    for _ in range(depth):
        zeros.append(hash_left_right(zeros[-1], zeros[-1]))
    return tuple(zeros)


def build_layers(leaves: Sequence[int], depth: int = TREE_DEPTH) -> List[List[int]]:
    """Rebuild every layer from the ordered leaf list"""
    zeros = zero_hashes(depth)
    layers = [list(leaves)]
    for level in range(depth):
        below = layers[level]
        layer = []
        for i in range(0, len(below), 2):
            right = below[i + 1] if i + 1 < len(below) else zeros[level]
            layer.append(hash_left_right(below[i], right))
        layers.append(layer)
    return layers


@dataclass
class MerklePath:
    """Inclusion path, leaf to root"""
    leaf_index: int
    path_elements: List[int]
    path_indices: List[int]

    def to_dict(self) -> Dict[str, List[str]]:
        return {
            'pathElements': [str(e) for e in self.path_elements],
            'pathIndices': [str(i) for i in self.path_indices],
        }


@dataclass
class InsertResult:
    root: int
    path: MerklePath


@dataclass
class RootRecord:
    root: int
    created_at: float = field(default_factory=time.time)


class Accumulator:
    """Fixed-depth incremental Merkle tree (single writer)"""

    def __init__(self, depth: int = TREE_DEPTH, leaves: Optional[Iterable[int]] = None,
                 root_history: Optional[List[RootRecord]] = None):
        if depth < 1:
            raise ValueError("Tree depth must be positive")

        self.depth = depth
        self.capacity = 1 << depth
        self.zeros = zero_hashes(depth)
        self._lock = threading.RLock()

        leaves = list(leaves or [])
        if len(leaves) > self.capacity:
            raise TreeCapacityError(
                f"{len(leaves)} leaves exceed capacity {self.capacity}")
        for leaf in leaves:
            if not is_field_element(leaf):
                raise ValueError(f"Leaf {leaf} outside field bounds")

        self._layers = build_layers(leaves, depth)
        self._index: Dict[int, int] = {}
        for i, leaf in enumerate(leaves):
            if leaf in self._index:
                raise ValueError(f"Duplicate leaf {leaf} at index {i}")
            self._index[leaf] = i

        self._history: List[RootRecord] = list(root_history or [])
        if leaves and not self._history:
            self._history.append(RootRecord(self.root))

        if leaves:
            logger.info(f"Loaded accumulator with {len(leaves)} leaves, root {self.root}")

    @property
    def root(self) -> int:
        with self._lock:
            top = self._layers[self.depth]
            return top[0] if top else self.zeros[self.depth]

    @property
    def size(self) -> int:
        return len(self._layers[0])

    @property
    def leaves(self) -> List[int]:
        with self._lock:
            return list(self._layers[0])

    @property
    def root_history(self) -> List[RootRecord]:
        with self._lock:
            return list(self._history)

    def is_historic_root(self, root: int) -> bool:
        with self._lock:
            return any(record.root == root for record in self._history)

    def contains(self, commitment: int) -> bool:
        return commitment in self._index

    def index_of(self, commitment: int) -> Optional[int]:
        return self._index.get(commitment)

    def insert(self, commitment: int) -> InsertResult:
        """Append a leaf and rehash its path to the root"""
        if not is_field_element(commitment):
            raise ValueError(f"Commitment {commitment} outside field bounds")

        with self._lock:
            if commitment in self._index:
                raise ValueError(f"Commitment {commitment} already in tree")

            index = self.size
            if index >= self.capacity:
                raise TreeCapacityError(
                    f"Tree of depth {self.depth} is full ({self.capacity} leaves)")

            self._layers[0].append(commitment)
            node_index = index
            for level in range(self.depth):
                parent = node_index >> 1
                below = self._layers[level]
                left = below[parent * 2]
                right = below[parent * 2 + 1] if parent * 2 + 1 < len(below) else self.zeros[level]
                digest = hash_left_right(left, right)

                above = self._layers[level + 1]
                if parent == len(above):
                    above.append(digest)
                else:
                    above[parent] = digest
                node_index = parent

            self._index[commitment] = index
            root = self._layers[self.depth][0]
            self._history.append(RootRecord(root))
            path = self._path(index)

        logger.debug(f"Inserted leaf {index}, new root {root}")
        return InsertResult(root=root, path=path)

    def path(self, leaf_index: int) -> MerklePath:
        """Inclusion path of an existing leaf"""
        with self._lock:
            if leaf_index < 0 or leaf_index >= self.size:
                raise IndexError(
                    f"Leaf index {leaf_index} out of range (size {self.size})")
            return self._path(leaf_index)

    def _path(self, leaf_index: int) -> MerklePath:
        elements = []
        indices = []
        index = leaf_index
        for level in range(self.depth):
            sibling = index ^ 1
            layer = self._layers[level]
            elements.append(layer[sibling] if sibling < len(layer) else self.zeros[level])
            indices.append(index & 1)
            index >>= 1
        return MerklePath(leaf_index, elements, indices)

    def verify(self, root: int, leaf: int, path_elements: Sequence[int],
               path_indices: Sequence[int]) -> bool:
        return verify_path(root, leaf, path_elements, path_indices, self.depth)


def compute_path_root(leaf: int, path_elements: Sequence[int],
                      path_indices: Sequence[int]) -> int:
    """Replay the hash chain from leaf to root"""
    current = leaf
    for sibling, index in zip(path_elements, path_indices):
        if index == 0:
            current = hash_left_right(current, sibling)
        else:
            current = hash_left_right(sibling, current)
    return current


def verify_path(root: int, leaf: int, path_elements: Sequence[int],
                path_indices: Sequence[int], depth: int = TREE_DEPTH) -> bool:
    """Check an inclusion path against a root"""
    if len(path_elements) != depth or len(path_indices) != depth:
        return False

    if any(i not in (0, 1) for i in path_indices):
        return False

    if not is_field_element(leaf) or not all(is_field_element(e) for e in path_elements):
        return False

    return compute_path_root(leaf, path_elements, path_indices) == root
