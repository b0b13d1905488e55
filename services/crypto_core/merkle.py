# crypto_core/merkle.py
"""
Binary SHA-256 Merkle tree over hex commitments.

- Leaves are "0x"-prefixed hex strings, hashed with a leaf domain tag.
- Odd nodes are paired with themselves.
- A path is (siblings, path_indices) bottom-up; index 0 means the running
  node is the left child, 1 means it is the right child.
"""
from __future__ import annotations

from typing import List, Optional, Tuple

from services.crypto_core.commitments import from_hex_id, sha256, to_hex_id

EMPTY_ROOT = to_hex_id(sha256(b"cipherpay-merkle-empty"))


def _leaf_hash(leaf_hex: str) -> bytes:
    return sha256(b"\x00" + from_hex_id(leaf_hex))


def _node_hash(left: bytes, right: bytes) -> bytes:
    return sha256(b"\x01" + left + right)


class MerkleTree:
    def __init__(self, leaves: Optional[List[str]] = None):
        self.leaves: List[str] = list(leaves or [])
        self._index = {c: i for i, c in enumerate(self.leaves)}
        self.layers: List[List[bytes]] = []
        self.build_tree()

    def build_tree(self) -> None:
        layer = [_leaf_hash(x) for x in self.leaves]
        self.layers = [layer]
        while len(layer) > 1:
            nxt = []
            for i in range(0, len(layer), 2):
                left = layer[i]
                right = layer[i + 1] if i + 1 < len(layer) else left
                nxt.append(_node_hash(left, right))
            layer = nxt
            self.layers.append(layer)

    def append(self, leaf_hex: str) -> int:
        if leaf_hex in self._index:
            return self._index[leaf_hex]
        self.leaves.append(leaf_hex)
        index = len(self.leaves) - 1
        self._index[leaf_hex] = index
        self.layers[0].append(_leaf_hash(leaf_hex))
        self._rehash_from(index)
        return index

    def _rehash_from(self, index: int) -> None:
        """Recompute only the ancestors of leaf `index`."""
        level, idx = 0, index
        while len(self.layers[level]) > 1:
            layer = self.layers[level]
            p = idx // 2
            left = layer[2 * p]
            right = layer[2 * p + 1] if 2 * p + 1 < len(layer) else left
            if level + 1 == len(self.layers):
                self.layers.append([])
            parent = self.layers[level + 1]
            node = _node_hash(left, right)
            if p < len(parent):
                parent[p] = node
            else:
                parent.append(node)
            level, idx = level + 1, p

    def index_of(self, leaf_hex: str) -> Optional[int]:
        return self._index.get(leaf_hex)

    def __contains__(self, leaf_hex: str) -> bool:
        return leaf_hex in self._index

    def __len__(self) -> int:
        return len(self.leaves)

    def root(self) -> str:
        if not self.leaves:
            return EMPTY_ROOT
        return to_hex_id(self.layers[-1][0])

    def get_proof(self, index: int) -> Tuple[List[str], List[int]]:
        if index < 0 or index >= len(self.leaves):
            raise IndexError(f"leaf index out of range: {index}")
        siblings: List[str] = []
        bits: List[int] = []
        idx = index
        for layer in self.layers[:-1]:
            sib = idx ^ 1
            sibling = layer[sib] if sib < len(layer) else layer[idx]
            siblings.append(to_hex_id(sibling))
            bits.append(idx & 1)
            idx //= 2
        return siblings, bits


def verify_merkle(leaf_hex: str, siblings: List[str], path_indices: List[int], root_hex: str) -> bool:
    if len(siblings) != len(path_indices):
        return False
    node = _leaf_hash(leaf_hex)
    for sib_hex, bit in zip(siblings, path_indices):
        sib = from_hex_id(sib_hex)
        node = _node_hash(sib, node) if bit else _node_hash(node, sib)
    return to_hex_id(node) == root_hex
