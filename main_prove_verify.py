# main_prove_verify.py
"""
Example driver that ties everything together:

- Commit to four notes A, B, C, D and build a height-2 Merkle tree.
- Generate keys for the possession relation.
- Prove possession of B, disclosing only its serial number.
- Verify the proof with the verifying key, the root and the serial number.
- Tamper with one sibling hash of B's path and show that proving now fails.
"""

import dataclasses
import logging
import random
from typing import Optional

import possession
from errors import UnsatisfiedRelationError
from hash_utils import FIELD_MODULUS, HashParams
from merkle_tree import MerkleTree
from note import demo_notes
from zk_merkle import possession_shape

logger = logging.getLogger(__name__)


def merkle_membership_example(rounds: int = 8, seed: Optional[int] = None) -> bool:
    """
    Run the four-leaf scenario.

    Data Flow:
    ==========
    Ledger maintainer (offline):
    ├─ Sample hash parameters
    ├─ Commit to notes A, B, C, D
    ├─ Build Merkle tree (MiMC compression)
    └─ Generate proving / verifying key

    Holder of B:
    ├─ Extract authentication path for leaf 1
    ├─ Native pre-check of the relation
    └─ Groth16 proof (commitment + path recomputed in-circuit)

    Verifier:
    └─ verify(vk, (root, serial_number), proof)

    Args:
        rounds: MiMC rounds; small values keep the demo fast
        seed: makes notes and hash parameters reproducible

    Returns:
        True when the honest proof verifies and the tampered one is refused
    """
    rng = random.Random(seed)
    params = HashParams.generate(rounds=rounds, seed=rng.getrandbits(256))
    shape = possession_shape(height=2, hash_params=params)

    # ============================================================
    # LEDGER: commit to the notes and publish the tree
    # ============================================================
    notes = demo_notes(4, seed=rng.getrandbits(32))
    tree = MerkleTree(params, [n.commit(params) for n in notes], height=2)
    logger.info(f"Built {tree!r}")

    pk, vk = possession.setup(shape)

    # ============================================================
    # HOLDER: prove possession of B (index 1)
    # ============================================================
    index = 1
    proof, statement = possession.prove_possession(pk, shape, tree, index, notes[index])

    # ============================================================
    # VERIFIER: public data only
    # ============================================================
    honest_ok = possession.verify(vk, statement, proof)
    logger.info(f"Honest proof for serial {statement.serial_number:#x}: {'valid' if honest_ok else 'INVALID'}")

    # ============================================================
    # TAMPERED PATH: flip one sibling hash
    # ============================================================
    _, witness = possession.build_instance(shape, tree, index, notes[index])
    siblings = list(witness.path.siblings)
    siblings[0] = (siblings[0] + 1) % FIELD_MODULUS
    bad_witness = dataclasses.replace(
        witness, path=dataclasses.replace(witness.path, siblings=tuple(siblings))
    )
    try:
        possession.prove(pk, shape, statement, bad_witness)
    except UnsatisfiedRelationError as e:
        logger.info(f"Tampered path refused: {e}")
        tampered_refused = True
    else:
        logger.error("Tampered path produced a proof")
        tampered_refused = False

    return honest_ok and tampered_refused


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    raise SystemExit(0 if merkle_membership_example() else 1)
