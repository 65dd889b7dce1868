# merkle_tree.py
"""
Fixed-height binary Merkle tree of note commitments, and authentication paths.

This is the "off-circuit" part: the ledger maintainer builds the tree, the
holder extracts an opening for their leaf, both in plain Python. The circuit
in zk_merkle.py re-runs the path verification with constraints.
"""

from dataclasses import dataclass
from typing import List, Sequence, Tuple

from errors import ConstructionError
from hash_utils import HashParams, is_field_element, merkle_hash2

# Fixed public value filling the unused leaves of a tree
DEFAULT_LEAF = 0

# Every level is held in memory, so 2^20 leaves at most
MAX_TREE_HEIGHT = 20


@dataclass(frozen=True)
class AuthenticationPath:
    """
    Sibling hashes and direction bits, leaf level first.

    directions[h] is True when the node on the path is the RIGHT child at
    level h, i.e. the sibling sits on the left.
    """

    siblings: Tuple[int, ...]
    directions: Tuple[bool, ...]

    def __post_init__(self):
        if len(self.siblings) != len(self.directions):
            raise ConstructionError(
                f"Length mismatch: {len(self.siblings)} siblings but "
                f"{len(self.directions)} directions"
            )
        for s in self.siblings:
            if not is_field_element(s):
                raise ConstructionError(f"sibling {s!r} is not a field element")

    @property
    def height(self) -> int:
        return len(self.siblings)

    @property
    def index(self) -> int:
        """Leaf position encoded by the direction bits."""
        return sum(1 << h for h, is_right in enumerate(self.directions) if is_right)

    def compute_root(self, params: HashParams, leaf: int) -> int:
        needle = leaf
        for sibling, is_right in zip(self.siblings, self.directions):
            if is_right:
                needle = merkle_hash2(params, sibling, needle)
            else:
                needle = merkle_hash2(params, needle, sibling)
        return needle

    def verify(self, params: HashParams, leaf: int, root: int) -> bool:
        """
        Recompute the root from leaf and compare with the claimed root.

        There is no partial credit: a wrong sibling or direction at any level
        yields a different root.
        """
        return self.compute_root(params, leaf) == root


class MerkleTree:
    """
    Binary Merkle tree (arity = 2) of fixed height H.

    - leaves: 2^H field elements, the real ones followed by DEFAULT_LEAF padding
    - levels[0] = leaves
    - levels[1] = parents of leaves
    - ...
    - levels[H][0] = root
    """

    def __init__(self, params: HashParams, leaves: Sequence[int], height: int) -> None:
        if not 1 <= height <= MAX_TREE_HEIGHT:
            raise ConstructionError(f"Tree height must be between 1 and {MAX_TREE_HEIGHT}, got {height}")
        capacity = 1 << height
        if len(leaves) == 0:
            raise ConstructionError("Tree must have at least one leaf")
        if len(leaves) > capacity:
            raise ConstructionError(
                f"{len(leaves)} leaves do not fit in a tree of height {height}"
            )
        for leaf in leaves:
            if not is_field_element(leaf):
                raise ConstructionError(f"leaf {leaf!r} is not a field element")

        self.params = params
        self.height = height
        self.num_leaves = len(leaves)
        self.leaves: List[int] = list(leaves) + [DEFAULT_LEAF] * (capacity - len(leaves))
        self.levels: List[List[int]] = []
        self._build_tree()

    def _build_tree(self) -> None:
        """
        Build the full tree bottom-up. Every level has an even number of nodes.
        """
        level = self.leaves[:]
        self.levels.append(level)

        while len(level) > 1:
            next_level = [
                merkle_hash2(self.params, level[i], level[i + 1])
                for i in range(0, len(level), 2)
            ]
            self.levels.append(next_level)
            level = next_level

    def root(self) -> int:
        """
        Return the root hash of the tree (a field element).
        """
        return self.levels[-1][0]

    def opening(self, index: int) -> AuthenticationPath:
        """
        Compute the authentication path for a given leaf index.

        Example for a tree with leaves [A, B, C, D] and opening(1):
        Tree structure:
                    root
                   /    \\
                 N1       N2
                /  \\     /  \\
               A    B   C    D

        Opening for B (index=1):
        - directions[0] = True   (B is RIGHT child of N1)
        - siblings[0] = A
        - directions[1] = False  (N1 is LEFT child of root)
        - siblings[1] = N2

        Verification: H(H(A, B), N2) = H(N1, N2) = root

        Padding leaves have openings too; they commit to no note, so nothing
        can be proven about them.
        """
        if index < 0 or index >= len(self.leaves):
            raise IndexError("Leaf index out of range")

        siblings: List[int] = []
        directions: List[bool] = []

        idx = index
        # We go from leaf level up to just before the root
        for level in range(self.height):
            # Sibling index: flip the last bit
            siblings.append(self.levels[level][idx ^ 1])
            directions.append(idx % 2 == 1)
            idx //= 2

        return AuthenticationPath(tuple(siblings), tuple(directions))

    def __repr__(self) -> str:
        return (
            f"MerkleTree(height={self.height}, num_leaves={self.num_leaves}, "
            f"root={self.root():#066x})"
        )
