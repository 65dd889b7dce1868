# note.py
"""
Notes and note commitments.

A note is the holder's plaintext (amount, serial_number) plus the nonce that
hides it. Only the commitment ever leaves the holder, as a leaf of the ledger's
Merkle tree. The serial number is disclosed when possession is shown, so the
same note cannot be shown twice without the repetition being visible.
"""

import random
from dataclasses import dataclass
from typing import List, Optional

from errors import ConstructionError
from hash_utils import COMMIT_DOMAIN, FIELD_MODULUS, HashParams, hash_many, is_field_element

NOTE_FIELDS = ("serial_number", "amount", "nonce")


def commit(params: HashParams, amount: int, serial_number: int, nonce: int) -> int:
    """
    Commit to (amount, serial_number) under nonce.

    Concretely this computes Hash(nonce || amount || serial_number), the hash
    being compress folded from COMMIT_DOMAIN.

    Raises:
        ConstructionError: an argument is not a field element
    """
    for name, value in (("amount", amount), ("serial_number", serial_number), ("nonce", nonce)):
        if not is_field_element(value):
            raise ConstructionError(
                f"note {name} must be an integer in [0, {FIELD_MODULUS}), got {value!r}"
            )
    return hash_many(params, (nonce, amount, serial_number), COMMIT_DOMAIN)


@dataclass(frozen=True)
class Note:
    amount: int
    serial_number: int
    nonce: int

    def __post_init__(self):
        for name in NOTE_FIELDS:
            value = getattr(self, name)
            if not is_field_element(value):
                raise ConstructionError(
                    f"note {name} must be an integer in [0, {FIELD_MODULUS}), got {value!r}"
                )

    def commit(self, params: HashParams) -> int:
        return commit(params, self.amount, self.serial_number, self.nonce)

    @classmethod
    def random(cls, rng: random.Random, amount: Optional[int] = None) -> "Note":
        """
        Sample a note with a uniform serial number and nonce.

        Args:
            rng: randomness source; pass secrets.SystemRandom() for real notes
            amount: fixed amount, uniform field element when omitted
        """
        if amount is None:
            amount = rng.randrange(FIELD_MODULUS)
        return cls(
            amount=amount,
            serial_number=rng.randrange(FIELD_MODULUS),
            nonce=rng.randrange(FIELD_MODULUS),
        )


def demo_notes(count: int, seed: int = 0) -> List[Note]:
    """
    Deterministically create `count` notes.

    Stands in for a ledger's history in demos and tests. The seed makes the
    notes reproducible, so it must never be used for real notes.
    """
    rng = random.Random(seed)
    return [Note.random(rng, amount=rng.randrange(1, 10_000)) for _ in range(count)]
