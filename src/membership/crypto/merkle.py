"""Merkle allowlist — root storage, inclusion proofs and tree construction.

Uses keccak-256 with sorted-pair hashing, the scheme verified on-chain by
OpenZeppelin's MerkleProof library:

    parent = keccak256(min(a, b) ++ max(a, b))

Because pairs are sorted, a proof is just the list of sibling hashes; no
left/right positions are needed. Leaves are sorted before the tree is
built so the root does not depend on insertion order, and an odd node at
the end of a level is carried up unchanged.

An allowlist leaf is keccak256(abi.encodePacked(recipient, tier)).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from eth_abi.packed import encode_packed
from eth_utils import keccak

from membership import errors
from membership.access.ledger import AccessControlLedger
from membership.chain import ContractContext, require_uint, to_address
from membership.persistence.event_log import EventKind


EMPTY_ROOT = b"\x00" * 32


def allowlist_leaf(recipient: str, tier: int) -> bytes:
    return keccak(encode_packed(["address", "uint256"], [to_address(recipient), require_uint(tier, "tier")]))


def _hash_pair(a: bytes, b: bytes) -> bytes:
    return keccak(a + b) if a <= b else keccak(b + a)


def verify_proof(proof: Sequence[bytes], root: bytes, leaf: bytes) -> bool:
    """Pure inclusion check of leaf under root."""
    computed = bytes(leaf)
    for sibling in proof:
        computed = _hash_pair(computed, bytes(sibling))
    return computed == bytes(root)


@dataclass(frozen=True)
class MerkleProof:
    """An inclusion proof for a single leaf."""
    leaf: bytes
    siblings: tuple[bytes, ...]
    root: bytes

    def hex(self) -> list[str]:
        return ["0x" + s.hex() for s in self.siblings]


class MerkleTree:
    """A deterministic sorted-pair keccak Merkle tree.

    Usage:
        tree = MerkleTree()
        tree.add_leaf(allowlist_leaf(alice, 1))
        tree.add_leaf(allowlist_leaf(bob, 2))
        root = tree.compute_root()
        proof = tree.inclusion_proof(allowlist_leaf(alice, 1))
    """

    def __init__(self) -> None:
        self._leaves: list[bytes] = []
        self._tree: list[list[bytes]] = []
        self._computed = False

    def add_leaf(self, leaf: bytes) -> None:
        """Add a 32-byte leaf. Must be called before compute_root."""
        if self._computed:
            raise RuntimeError("Tree already computed. Create a new tree.")
        if len(leaf) != 32:
            raise ValueError(f"Leaf must be 32 bytes, got {len(leaf)}")
        self._leaves.append(bytes(leaf))

    @property
    def leaf_count(self) -> int:
        return len(self._leaves)

    def compute_root(self) -> bytes:
        """Compute the Merkle root.

        An empty tree has the all-zero root, which no proof can satisfy.
        """
        if not self._leaves:
            self._tree = [[]]
            self._computed = True
            return EMPTY_ROOT

        current_level = sorted(set(self._leaves))
        self._tree = [current_level]
        while len(current_level) > 1:
            next_level: list[bytes] = []
            for i in range(0, len(current_level), 2):
                if i + 1 < len(current_level):
                    next_level.append(_hash_pair(current_level[i], current_level[i + 1]))
                else:
                    next_level.append(current_level[i])
            self._tree.append(next_level)
            current_level = next_level

        self._computed = True
        return current_level[0]

    def inclusion_proof(self, leaf: bytes) -> MerkleProof | None:
        """Generate an inclusion proof for a leaf.

        Returns None if the leaf is not in the tree.
        Must call compute_root first.
        """
        if not self._computed:
            raise RuntimeError("Must call compute_root before generating proofs")

        sorted_leaves = self._tree[0]
        if leaf not in sorted_leaves:
            return None

        idx = sorted_leaves.index(leaf)
        siblings: list[bytes] = []
        for level in self._tree[:-1]:
            sibling_idx = idx ^ 1
            if sibling_idx < len(level):
                siblings.append(level[sibling_idx])
            idx //= 2

        return MerkleProof(leaf=leaf, siblings=tuple(siblings), root=self._tree[-1][0])


class AllowlistRoot:
    """Owner-settable merkle root with a side-effect-free verify."""

    def __init__(self, ledger: AccessControlLedger, context: ContractContext) -> None:
        self._ledger = ledger
        self._context = context
        self._root = EMPTY_ROOT

    @property
    def root(self) -> bytes:
        return self._root

    def set_root(self, root: bytes, caller: str, now: Optional[int] = None) -> None:
        """Replace the root wholesale."""
        self._ledger.require_owner(caller)
        root = bytes(root)
        if len(root) != 32:
            raise ValueError(f"Root must be 32 bytes, got {len(root)}")
        if root == self._root:
            raise errors.RedundantStateChange(errors.ALREADY_SET)

        with self._context.transaction(now):
            previous, self._root = self._root, root
            self._context.emit(
                EventKind.ALLOWLIST_ROOT_SET,
                previous="0x" + previous.hex(), root="0x" + root.hex(),
            )

    def verify(self, proof: Sequence[bytes], leaf: bytes) -> bool:
        if self._root == EMPTY_ROOT:
            return False
        return verify_proof(proof, self._root, leaf)
