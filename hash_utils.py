# hash_utils.py
"""
Utilities for hashing.

One hash, two renditions:
1. NATIVE (this module): MiMC over the BN254 scalar field, used by the ledger
   maintainer to build the tree and by the holder to compute commitments.
2. IN-CIRCUIT (zk_merkle.py): the same MiMC rounds expressed as constraint gadgets.

Both renditions must agree bit for bit, otherwise the root computed inside the
circuit would never match the root of the published tree.

The two-to-one compression runs MiMC in Miyaguchi-Preneel mode:

    compress(left, right) = MiMC_left(right) + left + right

MiMC with key k and round constants c_0 = 0, c_1, ..., c_{n-1}:

    x_0 = x
    x_{i+1} = (x_i + k + c_i) ^ e
    MiMC_k(x) = x_n + k
"""

import hashlib
import math
import secrets
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

from zksnake.constant import BN254_SCALAR_FIELD

from errors import ConstructionError

# BN254 scalar field modulus (the field Groth16 over BN254 proves statements in)
FIELD_MODULUS = BN254_SCALAR_FIELD

DEFAULT_ROUNDS = 91
DEFAULT_EXPONENT = 7

# Starting state for note commitments. Keeps commitments apart from inner nodes.
COMMIT_DOMAIN = int.from_bytes(b"note-possession/commit", byteorder="big")


def sha256_to_field(*values: int) -> int:
    """
    Hash integers using SHA-256 and map into field.

    Used to expand a seed into MiMC round constants.
    Deterministic: same inputs always produce same output across runs.

    Args:
        *values: integers in [0, 2^256)

    Returns:
        integer in [0, FIELD_MODULUS)
    """
    h = hashlib.sha256()
    for v in values:
        # Fixed-width (32 bytes) encoding ensures deterministic hashing
        h.update(v.to_bytes(32, byteorder="big", signed=False))
    digest = h.digest()
    as_int = int.from_bytes(digest, byteorder="big")
    return as_int % FIELD_MODULUS


def is_field_element(value: int) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 0 <= value < FIELD_MODULUS


@dataclass(frozen=True)
class HashParams:
    """
    Public constants of the compression function.

    These are baked into the circuit, so two parameter sets give two different
    relations and two incompatible key pairs.
    """

    exponent: int
    round_constants: Tuple[int, ...]

    def __post_init__(self):
        if not self.round_constants:
            raise ConstructionError("MiMC needs at least one round")
        if math.gcd(self.exponent, FIELD_MODULUS - 1) != 1 or self.exponent < 3:
            raise ConstructionError(
                f"x^{self.exponent} is not a permutation of the scalar field"
            )
        if self.round_constants[0] != 0:
            raise ConstructionError("first MiMC round constant must be 0")
        for c in self.round_constants:
            if not is_field_element(c):
                raise ConstructionError(f"round constant {c} is not a field element")

    @property
    def rounds(self) -> int:
        return len(self.round_constants)

    @classmethod
    def generate(
        cls,
        rounds: int = DEFAULT_ROUNDS,
        exponent: int = DEFAULT_EXPONENT,
        seed: Optional[int] = None,
    ) -> "HashParams":
        """
        Expand a 256-bit seed into round constants.

        A fresh random seed is drawn when none is given.
        """
        if rounds < 1:
            raise ConstructionError("MiMC needs at least one round")
        if seed is None:
            seed = secrets.randbits(256)
        if not 0 <= seed < 2 ** 256:
            raise ConstructionError("hash parameter seed must fit in 256 bits")
        constants = [0] + [sha256_to_field(seed, i) for i in range(1, rounds)]
        return cls(exponent=exponent, round_constants=tuple(constants))


def mimc(params: HashParams, x: int, key: int) -> int:
    for c in params.round_constants:
        x = pow((x + key + c) % FIELD_MODULUS, params.exponent, FIELD_MODULUS)
    return (x + key) % FIELD_MODULUS


def compress(params: HashParams, left: int, right: int) -> int:
    """
    Two-to-one compression, used for Merkle nodes and inside commitments.

    Args:
        params: hash constants
        left: left child (also the MiMC key)
        right: right child

    Returns:
        parent hash
    """
    return (mimc(params, right, left) + left + right) % FIELD_MODULUS


def hash_many(params: HashParams, values: Iterable[int], domain: int) -> int:
    """
    Fixed-arity hash: fold compress over values, starting from a domain tag.
    """
    state = domain % FIELD_MODULUS
    for v in values:
        state = compress(params, state, v)
    return state


def merkle_hash2(params: HashParams, left: int, right: int) -> int:
    """
    Merkle parent hash for arity=2.
    """
    return compress(params, left, right)
