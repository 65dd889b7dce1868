# zk_merkle.py
"""
The possession relation as a circuit.

Given a note opening and a Merkle authentication path, we recompute the note
commitment and then the Merkle root INSIDE THE CIRCUIT, and enforce that the
result equals the public root. The disclosed serial number is part of the
commitment preimage, so the proof binds it to a real leaf.

Key points:
- The commitment is derived from (amount, serial_number, nonce) in-circuit.
  No separate "claimed leaf" is accepted, so a prover cannot slip in a leaf
  they cannot open.
- Direction bits are private witnesses constrained to {0, 1}; the position of
  the leaf in the tree is never revealed.
- Which note fields are public is a configuration of the relation
  (RelationShape.public_fields). Disclosing the amount gives a different
  relation, hence a different key pair.

Gadgets are written as arithmetic on Signal objects. The finished Circuit is
handed to zksnake (ConstraintSystem -> R1CS), which Groth16 then runs on.

This mirrors the native code:
- mimc_gadget / compress_gadget  <->  hash_utils.mimc / compress
- commit_gadget                  <->  note.commit
- merkle_opening_circuit         <->  AuthenticationPath.verify
"""

import enum
import functools
import hashlib
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Mapping, Optional, Tuple, Union

from zksnake.arithmetization import R1CS, ConstraintSystem, Var

from errors import ConstructionError, UnsatisfiedRelationError
from hash_utils import COMMIT_DOMAIN, FIELD_MODULUS, HashParams, is_field_element
from merkle_tree import MAX_TREE_HEIGHT, AuthenticationPath
from note import NOTE_FIELDS, commit

CURVE = "BN254"


class Visibility(enum.Enum):
    PUBLIC = "public"
    PRIVATE = "private"


# serial_number is the disclosed deduplication key; nonce is what hides the note
DEFAULT_VISIBILITY = {
    "serial_number": Visibility.PUBLIC,
    "amount": Visibility.PRIVATE,
    "nonce": Visibility.PRIVATE,
}


@dataclass(frozen=True)
class RelationShape:
    """
    Everything that determines the circuit, and therefore the key pair.
    """

    height: int
    hash_params: HashParams
    public_fields: FrozenSet[str]

    def __post_init__(self):
        if not 1 <= self.height <= MAX_TREE_HEIGHT:
            raise ConstructionError(f"Tree height must be between 1 and {MAX_TREE_HEIGHT}, got {self.height}")
        if "serial_number" not in self.public_fields:
            raise ConstructionError("serial_number must be public")
        if "nonce" in self.public_fields:
            raise ConstructionError("nonce must stay private")
        unknown = self.public_fields - set(NOTE_FIELDS)
        if unknown:
            raise ConstructionError(f"unknown note fields: {sorted(unknown)}")

    @property
    def reveals_amount(self) -> bool:
        return "amount" in self.public_fields


def relation_shape(
    height: int,
    hash_params: HashParams,
    visibility: Optional[Mapping[str, Visibility]] = None,
) -> RelationShape:
    """
    Build a relation shape from a {field -> public|private} assignment.

    Fields missing from visibility keep their DEFAULT_VISIBILITY.
    """
    assignment = dict(DEFAULT_VISIBILITY)
    if visibility:
        unknown = set(visibility) - set(NOTE_FIELDS)
        if unknown:
            raise ConstructionError(f"unknown note fields: {sorted(unknown)}")
        assignment.update(visibility)
    public = frozenset(name for name, vis in assignment.items() if vis is Visibility.PUBLIC)
    return RelationShape(height=height, hash_params=hash_params, public_fields=public)


def possession_shape(height: int, hash_params: HashParams, reveal_amount: bool = False) -> RelationShape:
    if reveal_amount:
        return relation_shape(height, hash_params, {"amount": Visibility.PUBLIC})
    return relation_shape(height, hash_params)


@dataclass(frozen=True)
class PublicInputs:
    """
    What the verifier sees. amount is set only by the amount-revealing relation.
    """

    root: int
    serial_number: int
    amount: Optional[int] = None

    def to_field_vector(self) -> List[int]:
        """Public inputs in allocation order: root, then public note fields."""
        vector = [self.root, self.serial_number]
        if self.amount is not None:
            vector.append(self.amount)
        return vector


@dataclass(frozen=True)
class PossessionWitness:
    """
    What only the prover knows.

    leaf is the published commitment the note is supposed to open. The circuit
    never reads it; it only lets the native check say which half failed.
    """

    amount: int
    nonce: int
    path: AuthenticationPath
    leaf: Optional[int] = None


#
# CIRCUIT WIRING
#


class Signal:
    """
    sum(coeff * wire) + constant over the scalar field, with its current value.

    Additions and scaling by integers are free. Multiplying two non-constant
    signals allocates a wire and records one constraint A * B = C.
    """

    __slots__ = ("circuit", "terms", "constant")

    def __init__(self, circuit: "Circuit", terms: Dict[str, int], constant: int = 0) -> None:
        self.circuit = circuit
        self.terms = {w: c % FIELD_MODULUS for w, c in terms.items() if c % FIELD_MODULUS}
        self.constant = constant % FIELD_MODULUS

    @property
    def value(self) -> int:
        values = self.circuit.values
        return (sum(c * values[w] for w, c in self.terms.items()) + self.constant) % FIELD_MODULUS

    def is_constant(self) -> bool:
        return not self.terms

    def expression(self):
        """
        The signal as a zksnake expression.

        Only sums of `Var * coefficient` terms are emitted: zksnake compiles
        those into matrix rows, while nested subtraction is not linearized
        faithfully. A constant signal comes back as a plain int.
        """
        expr = None
        for wire, coeff in self.terms.items():
            term = Var(wire) if coeff == 1 else Var(wire) * coeff
            expr = term if expr is None else expr + term
        if expr is None:
            return self.constant
        if self.constant:
            expr = expr + self.constant
        return expr

    def _coerce(self, other: Union["Signal", int]) -> "Signal":
        if isinstance(other, Signal):
            if other.circuit is not self.circuit:
                raise ValueError("cannot mix signals of different circuits")
            return other
        if isinstance(other, int):
            return self.circuit.constant(other)
        return NotImplemented

    def __add__(self, other):
        other = self._coerce(other)
        if other is NotImplemented:
            return other
        terms = dict(self.terms)
        for w, c in other.terms.items():
            terms[w] = terms.get(w, 0) + c
        return Signal(self.circuit, terms, self.constant + other.constant)

    __radd__ = __add__

    def __neg__(self):
        return self * -1

    def __sub__(self, other):
        other = self._coerce(other)
        if other is NotImplemented:
            return other
        return self + (-other)

    def __rsub__(self, other):
        other = self._coerce(other)
        if other is NotImplemented:
            return other
        return other + (-self)

    def __mul__(self, other):
        if isinstance(other, int):
            return Signal(self.circuit, {w: c * other for w, c in self.terms.items()}, self.constant * other)
        other = self._coerce(other)
        if other is NotImplemented:
            return other
        return self.circuit.mul(self, other)

    __rmul__ = __mul__

    def assert_eq(self, other: Union["Signal", int]) -> None:
        """Record (self - other) * 1 = 0."""
        difference = self - other
        if difference.is_constant():
            raise ConstructionError("assert_eq needs at least one wire")
        self.circuit.enforce(difference, self.circuit.constant(1), self.circuit.constant(0))

    def assert_bool(self) -> None:
        """Record self * self = self, which only 0 and 1 satisfy."""
        self.circuit.enforce(self, self, self)

    def __repr__(self) -> str:
        return f"Signal({self.terms}, constant={self.constant})"


class Circuit:
    """
    Wires in allocation order, public inputs first.

    Every wire is declared to zksnake up front as an output, which pins the
    witness layout to [1, public inputs..., private wires...] regardless of
    how zksnake stores its variables internally.
    """

    def __init__(self) -> None:
        self.wires: List[str] = []
        self.values: Dict[str, int] = {}
        self.num_public = 0
        self.constraints: List[Tuple[Signal, Signal, Signal]] = []

    @property
    def num_constraints(self) -> int:
        return len(self.constraints)

    def _alloc(self, value: int) -> Signal:
        wire = f"w{len(self.wires) + 1}"
        self.wires.append(wire)
        self.values[wire] = value % FIELD_MODULUS
        return Signal(self, {wire: 1})

    def public_input(self, value: int) -> Signal:
        """Allocate a public input. All public inputs precede all private wires."""
        if len(self.wires) != self.num_public:
            raise RuntimeError("public inputs must be allocated before any private wire")
        self.num_public += 1
        return self._alloc(value)

    def private_input(self, value: int) -> Signal:
        return self._alloc(value)

    def constant(self, value: int) -> Signal:
        return Signal(self, {}, value)

    def enforce(self, a: Signal, b: Signal, c: Signal) -> None:
        self.constraints.append((a, b, c))

    def mul(self, a: Signal, b: Signal) -> Signal:
        if a.is_constant():
            return b * a.constant
        if b.is_constant():
            return a * b.constant
        product = self._alloc(a.value * b.value)
        self.enforce(a, b, product)
        return product

    def public_values(self) -> List[int]:
        return [self.values[w] for w in self.wires[:self.num_public]]

    def first_unsatisfied(self) -> Optional[int]:
        """Index of the first violated constraint, None when all hold."""
        for i, (a, b, c) in enumerate(self.constraints):
            if (a.value * b.value - c.value) % FIELD_MODULUS:
                return i
        return None

    def is_satisfied(self) -> bool:
        return self.first_unsatisfied() is None

    def to_r1cs(self) -> R1CS:
        """
        Emit the circuit into a zksnake ConstraintSystem and compile it.

        Each public input also gets a row `x == x * 1` of its own, so no
        public polynomial is a combination of the others.
        """
        cs = ConstraintSystem([], list(self.wires), FIELD_MODULUS)
        for wire in self.wires:
            cs.add_variable(Var(wire))
        for wire in self.wires[:self.num_public]:
            cs.set_public(Var(wire))
            cs.add_constraint(Var(wire) == Var(wire) * 1)
        for a, b, c in self.constraints:
            cs.add_constraint(c.expression() == a.expression() * b.expression())
        r1cs = R1CS(cs, CURVE)
        r1cs.compile()
        return r1cs

    def witness(self, r1cs: R1CS) -> Tuple[List[int], List[int]]:
        """(public, private) witness vectors in the column order of r1cs."""
        return r1cs.generate_witness(self.values)


#
# GADGETS
#


def _pow_gadget(base: Signal, exponent: int) -> Signal:
    # Left-to-right square and multiply; x^7 costs 4 constraints
    result = base
    for bit in bin(exponent)[3:]:
        result = result * result
        if bit == "1":
            result = result * base
    return result


def mimc_gadget(params: HashParams, x: Signal, key: Signal) -> Signal:
    for c in params.round_constants:
        x = _pow_gadget(x + key + c, params.exponent)
    return x + key


def compress_gadget(params: HashParams, left: Signal, right: Signal) -> Signal:
    return mimc_gadget(params, right, left) + left + right


def commit_gadget(params: HashParams, amount: Signal, serial_number: Signal, nonce: Signal) -> Signal:
    """
    Computes Hash(nonce || amount || serial_number) inside the circuit.
    Must match note.commit exactly.
    """
    state = nonce.circuit.constant(COMMIT_DOMAIN)
    for value in (nonce, amount, serial_number):
        state = compress_gadget(params, state, value)
    return state


def merkle_opening_circuit(
    params: HashParams,
    leaf: Signal,
    siblings: List[Signal],
    directions: List[Signal],
    public_root: Signal,
) -> None:
    """
    Merkle membership circuit.

    Inputs:
    - leaf: Signal                (derived commitment, private)
    - siblings: List[Signal]      (sibling hash per level, private)
    - directions: List[Signal]    (1 if our node is the RIGHT child, private)
    - public_root: Signal         (expected root, public input)

    Circuit Logic:
    ==============
    1. needle = leaf
    2. For each level h (bottom-up)
        a) Enforce directions[h] is a bit
        b) Route with one multiplication:
             m     = bit * (sibling - needle)
             left  = needle + m        (sibling when bit = 1)
             right = sibling - m       (needle when bit = 1)
        c) needle = compress(left, right)
    3. Enforce needle == public_root
    """
    if len(siblings) != len(directions):
        raise ConstructionError(
            f"Length mismatch: {len(siblings)} siblings but {len(directions)} directions"
        )

    needle = leaf
    for sibling, bit in zip(siblings, directions):
        bit.assert_bool()
        m = bit * (sibling - needle)
        left = needle + m
        right = sibling - m
        needle = compress_gadget(params, left, right)

    needle.assert_eq(public_root)


#
# RELATION
#


def _note_values(shape: RelationShape, statement: PublicInputs, witness: PossessionWitness) -> dict:
    if shape.reveals_amount and statement.amount is None:
        raise ConstructionError("this relation discloses the amount; public inputs lack it")
    if not shape.reveals_amount and statement.amount is not None:
        raise ConstructionError("this relation keeps the amount private; do not disclose it")
    if witness.path.height != shape.height:
        raise ConstructionError(
            f"authentication path has height {witness.path.height}, relation expects {shape.height}"
        )
    values = {
        "serial_number": statement.serial_number,
        "amount": statement.amount if shape.reveals_amount else witness.amount,
        "nonce": witness.nonce,
    }
    for name, value in list(values.items()) + [("root", statement.root)]:
        if not is_field_element(value):
            raise ConstructionError(f"{name} {value!r} is not a field element")
    return values


def synthesize(shape: RelationShape, statement: PublicInputs, witness: PossessionWitness) -> Circuit:
    """
    Build the circuit for one relation instance.

    Public inputs are allocated first (root, then the public note fields in
    NOTE_FIELDS order), matching PublicInputs.to_field_vector().
    """
    values = _note_values(shape, statement, witness)
    params = shape.hash_params

    circuit = Circuit()
    root = circuit.public_input(statement.root)
    note_signals = {}
    for name in NOTE_FIELDS:
        if name in shape.public_fields:
            note_signals[name] = circuit.public_input(values[name])
    for name in NOTE_FIELDS:
        if name not in shape.public_fields:
            note_signals[name] = circuit.private_input(values[name])

    siblings = [circuit.private_input(s) for s in witness.path.siblings]
    directions = [circuit.private_input(int(d)) for d in witness.path.directions]

    # CHECK #1: opening. Derive the commitment from the note fields.
    commitment = commit_gadget(
        params, note_signals["amount"], note_signals["serial_number"], note_signals["nonce"]
    )

    # CHECK #2: membership of the derived commitment under the public root.
    merkle_opening_circuit(params, commitment, siblings, directions, root)
    return circuit


def placeholder_instance(shape: RelationShape):
    """
    An all-zero statement and witness with the right shape, for key generation.
    """
    statement = PublicInputs(root=0, serial_number=0, amount=0 if shape.reveals_amount else None)
    path = AuthenticationPath((0,) * shape.height, (False,) * shape.height)
    return statement, PossessionWitness(amount=0, nonce=0, path=path)


@dataclass(frozen=True)
class CompiledRelation:
    """
    The R1CS of a relation shape, as compiled by zksnake. Constraints
    include the binding row of each public input.

    relation_id is the SHA-256 of the constraint matrices; keys carry it so a
    key can never be used with a circuit it was not generated for.
    """

    r1cs: R1CS
    relation_id: bytes
    num_public: int
    num_constraints: int


def relation_digest(r1cs: R1CS) -> bytes:
    h = hashlib.sha256()
    h.update(r1cs.n_public.to_bytes(4, "big"))
    h.update(r1cs.A.n_col.to_bytes(4, "big"))
    for matrix in (r1cs.A, r1cs.B, r1cs.C):
        h.update(len(matrix.triplets).to_bytes(4, "big"))
        for row, col, value in sorted(matrix.triplets):
            h.update(row.to_bytes(4, "big"))
            h.update(col.to_bytes(4, "big"))
            h.update(value.to_bytes(32, "big"))
    return h.digest()


@functools.lru_cache(maxsize=16)
def compile_relation(shape: RelationShape) -> CompiledRelation:
    """
    Compile the circuit of a shape once. The structure never depends on the
    values, so the placeholder instance stands in for every real one.
    """
    circuit = synthesize(shape, *placeholder_instance(shape))
    r1cs = circuit.to_r1cs()
    return CompiledRelation(
        r1cs=r1cs,
        relation_id=relation_digest(r1cs),
        num_public=circuit.num_public,
        num_constraints=r1cs.constraint_system.num_constraints(),
    )


def check_relation(shape: RelationShape, statement: PublicInputs, witness: PossessionWitness) -> None:
    """
    Evaluate the relation natively, without constraints.

    Raises:
        UnsatisfiedRelationError: the note does not open witness.leaf (when
            given), or its commitment does not hash up to the root
    """
    values = _note_values(shape, statement, witness)
    commitment = commit(shape.hash_params, values["amount"], values["serial_number"], values["nonce"])
    if witness.leaf is not None and commitment != witness.leaf:
        raise UnsatisfiedRelationError(
            "opening check failed: the note fields do not open the leaf commitment"
        )
    if not witness.path.verify(shape.hash_params, commitment, statement.root):
        if witness.leaf is None:
            raise UnsatisfiedRelationError(
                "opening or membership check failed: the note commitment does not lead to the public root"
            )
        raise UnsatisfiedRelationError(
            "membership check failed: the authentication path does not lead to the public root"
        )
