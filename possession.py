# possession.py
"""
Setup / prove / verify for the note possession relation.

The three phases are strictly ordered:

    setup(shape)                          -> (ProvingKey, VerifyingKey)   once, by the ledger maintainer
    prove(pk, shape, statement, witness)  -> Proof                        once per claim, by a holder
    verify(vk, statement, proof)          -> bool                         by anyone, public data only

Groth16 itself is zksnake's. The keys here wrap zksnake's keys together with
the relation shape and relation id they were generated for. Keys, hash
parameters and trees are plain immutable objects handed in by the caller, so
the private-amount relation and the amount-revealing relation can live side by
side in one process.
"""

import logging
import time
from dataclasses import dataclass
from typing import Tuple

from zksnake.ecc import ispointG1, ispointG2
from zksnake.groth16 import Groth16, Proof
from zksnake.groth16 import ProvingKey as Groth16ProvingKey
from zksnake.groth16 import VerifyingKey as Groth16VerifyingKey

from errors import ConstructionError, KeyMismatchError, UnsatisfiedRelationError
from hash_utils import is_field_element
from merkle_tree import MerkleTree
from note import Note
from zk_merkle import (
    PossessionWitness,
    PublicInputs,
    RelationShape,
    check_relation,
    compile_relation,
    synthesize,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VerifyingKey:
    shape: RelationShape
    relation_id: bytes
    key: Groth16VerifyingKey

    @property
    def num_public(self) -> int:
        # ic holds one point for the constant wire plus one per public input
        return len(self.key.ic) - 1


@dataclass(frozen=True)
class ProvingKey:
    shape: RelationShape
    relation_id: bytes
    key: Groth16ProvingKey


def setup(shape: RelationShape) -> Tuple[ProvingKey, VerifyingKey]:
    """
    Generate the key pair for a relation shape.

    zksnake samples the toxic waste from the system RNG and drops it, so
    re-running setup yields keys that are incompatible with every key and
    proof issued before.
    """
    relation = compile_relation(shape)
    logger.info(
        f"Generating keys for height {shape.height}, public fields "
        f"{sorted(shape.public_fields)}, {shape.hash_params.rounds} MiMC rounds "
        f"({relation.num_constraints} constraints)"
    )
    started = time.time()
    snark = Groth16(relation.r1cs)
    snark.setup()
    vk = VerifyingKey(shape=shape, relation_id=relation.relation_id, key=snark.verifying_key)
    pk = ProvingKey(shape=shape, relation_id=relation.relation_id, key=snark.proving_key)
    logger.info(f"Keys generated in {time.time() - started:.2f}s")
    return pk, vk


def prove(pk: ProvingKey, shape: RelationShape, statement: PublicInputs, witness: PossessionWitness) -> Proof:
    """
    Prove possession of a note.

    The relation is evaluated natively before any curve arithmetic happens,
    so an unsatisfiable claim fails fast and never yields a proof.

    Raises:
        ConstructionError: statement/witness do not fit the shape
        UnsatisfiedRelationError: the witness does not satisfy the relation
        KeyMismatchError: pk belongs to another relation
    """
    check_relation(shape, statement, witness)
    relation = compile_relation(shape)
    if relation.relation_id != pk.relation_id:
        raise KeyMismatchError(
            "proving key does not match this relation (height, hash parameters or disclosed fields differ)"
        )
    circuit = synthesize(shape, statement, witness)
    unsatisfied = circuit.first_unsatisfied()
    if unsatisfied is not None:
        raise UnsatisfiedRelationError(f"constraint {unsatisfied} of the possession circuit is violated")

    public, private = circuit.witness(relation.r1cs)
    logger.info(f"Proving possession: {relation.num_constraints} constraints, {len(public) + len(private)} wires")
    started = time.time()
    snark = Groth16(relation.r1cs)
    snark.proving_key = pk.key
    proof = snark.prove(public, private)
    logger.info(f"Proof generated in {time.time() - started:.2f}s")
    return proof


def _well_formed(proof) -> bool:
    return (
        ispointG1(getattr(proof, "A", None))
        and ispointG2(getattr(proof, "B", None))
        and ispointG1(getattr(proof, "C", None))
    )


def verify(vk: VerifyingKey, statement: PublicInputs, proof: Proof) -> bool:
    """
    Check a possession proof. Uses public data only and never raises for a
    bad proof: forged, mismatched or malformed proofs give False.
    """
    vector = statement.to_field_vector()
    if len(vector) != vk.num_public:
        logger.warning(f"Verifying key expects {vk.num_public} public inputs, statement has {len(vector)}")
        return False
    if not all(is_field_element(v) for v in vector):
        logger.warning("Public inputs are not field elements")
        return False
    if not _well_formed(proof):
        logger.warning("Proof is not made of curve points")
        return False

    relation = compile_relation(vk.shape)
    if relation.relation_id != vk.relation_id:
        logger.warning("Verifying key does not belong to the relation it names")
        return False

    started = time.time()
    snark = Groth16(relation.r1cs)
    snark.verifying_key = vk.key
    valid = snark.verify(proof, [1] + vector)
    if valid:
        logger.info(f"Proof verified in {time.time() - started:.2f}s")
    else:
        logger.warning(f"Proof rejected for serial number {statement.serial_number:#x}")
    return valid


def build_instance(
    shape: RelationShape, tree: MerkleTree, index: int, note: Note
) -> Tuple[PublicInputs, PossessionWitness]:
    """
    Assemble statement and witness for the holder of `note` at leaf `index`.

    Raises:
        ConstructionError: index points at padding, or tree/shape disagree
        UnsatisfiedRelationError: note does not open the commitment at index
    """
    if tree.height != shape.height:
        raise ConstructionError(f"tree height {tree.height} differs from relation height {shape.height}")
    if tree.params != shape.hash_params:
        raise ConstructionError("tree was built with different hash parameters")
    if not 0 <= index < tree.num_leaves:
        raise ConstructionError(f"leaf {index} holds no note (tree has {tree.num_leaves} notes)")
    if note.commit(shape.hash_params) != tree.leaves[index]:
        raise UnsatisfiedRelationError(f"opening check failed: note does not open the commitment at leaf {index}")

    statement = PublicInputs(
        root=tree.root(),
        serial_number=note.serial_number,
        amount=note.amount if shape.reveals_amount else None,
    )
    witness = PossessionWitness(
        amount=note.amount, nonce=note.nonce, path=tree.opening(index), leaf=tree.leaves[index]
    )
    return statement, witness


def prove_possession(
    pk: ProvingKey, shape: RelationShape, tree: MerkleTree, index: int, note: Note
) -> Tuple[Proof, PublicInputs]:
    statement, witness = build_instance(shape, tree, index, note)
    return prove(pk, shape, statement, witness), statement
