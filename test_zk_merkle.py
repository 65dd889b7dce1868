import dataclasses
from unittest import TestCase

from errors import ConstructionError, UnsatisfiedRelationError
from hash_utils import FIELD_MODULUS, HashParams, compress
from merkle_tree import AuthenticationPath, MerkleTree
from note import Note, demo_notes
from zk_merkle import (
    Circuit,
    PossessionWitness,
    PublicInputs,
    Visibility,
    check_relation,
    commit_gadget,
    compile_relation,
    compress_gadget,
    placeholder_instance,
    possession_shape,
    relation_digest,
    relation_shape,
    synthesize,
)


class TestCircuitWiring(TestCase):
    def cube(self, x_value=3):
        # x^3 + x + 5 = out
        circuit = Circuit()
        out = circuit.public_input(x_value ** 3 + x_value + 5)
        x = circuit.private_input(x_value)
        y = x * x * x + x + 5
        y.assert_eq(out)
        return circuit

    def test_cube_circuit(self):
        circuit = self.cube()
        self.assertEqual(circuit.num_public, 1)
        self.assertEqual(circuit.public_values(), [35])
        self.assertEqual(circuit.num_constraints, 3)
        self.assertTrue(circuit.is_satisfied())

        circuit.values[circuit.wires[1]] = 4
        self.assertEqual(circuit.first_unsatisfied(), 0)

    def test_zksnake_matrices_agree(self):
        circuit = self.cube()
        r1cs = circuit.to_r1cs()
        # one binding row for the public input on top of the circuit's rows
        self.assertEqual(r1cs.constraint_system.num_constraints(), 4)
        self.assertEqual(r1cs.n_public, 2)

        public, private = circuit.witness(r1cs)
        self.assertEqual(public, [1, 35])
        self.assertEqual(private, [3, 9, 27])
        self.assertTrue(r1cs.is_sat(public, private))

        circuit.values[circuit.wires[1]] = 4
        self.assertFalse(r1cs.is_sat(*circuit.witness(r1cs)))

    def test_constants_are_free(self):
        circuit = Circuit()
        x = circuit.private_input(6)
        y = (x + 1) * 3 - x * circuit.constant(2)
        self.assertEqual(circuit.num_constraints, 0)
        self.assertEqual(y.value, 9)
        self.assertEqual((2 - x).value, (2 - 6) % FIELD_MODULUS)
        self.assertTrue(circuit.constant(4).is_constant())
        self.assertFalse(x.is_constant())

    def test_assert_bool(self):
        for value, ok in ((0, True), (1, True), (2, False)):
            circuit = Circuit()
            bit = circuit.private_input(value)
            bit.assert_bool()
            self.assertEqual(circuit.is_satisfied(), ok)
            r1cs = circuit.to_r1cs()
            self.assertEqual(r1cs.is_sat(*circuit.witness(r1cs)), ok)

    def test_public_after_private_is_rejected(self):
        circuit = Circuit()
        circuit.private_input(1)
        with self.assertRaises(RuntimeError):
            circuit.public_input(2)

    def test_mixing_circuits_is_rejected(self):
        a = Circuit().private_input(1)
        b = Circuit().private_input(2)
        with self.assertRaises(ValueError):
            a + b

    def test_digest_ignores_values(self):
        self.assertEqual(relation_digest(self.cube(3).to_r1cs()), relation_digest(self.cube(5).to_r1cs()))

        other = Circuit()
        out = other.public_input(27)
        x = other.private_input(3)
        (x * x * x).assert_eq(out)
        self.assertNotEqual(relation_digest(self.cube().to_r1cs()), relation_digest(other.to_r1cs()))


class TestGadgets(TestCase):
    def setUp(self):
        self.params = HashParams.generate(rounds=4, seed=21)

    def test_compress_gadget_matches_native(self):
        circuit = Circuit()
        left, right = circuit.private_input(5), circuit.private_input(9)
        out = compress_gadget(self.params, left, right)
        self.assertEqual(out.value, compress(self.params, 5, 9))
        # four rounds of x^7, four constraints each
        self.assertEqual(circuit.num_constraints, 16)
        self.assertTrue(circuit.is_satisfied())

    def test_commit_gadget_matches_native(self):
        note = Note(amount=77, serial_number=88, nonce=99)
        circuit = Circuit()
        out = commit_gadget(
            self.params, circuit.private_input(77), circuit.private_input(88), circuit.private_input(99)
        )
        self.assertEqual(out.value, note.commit(self.params))


class TestPossessionCircuit(TestCase):
    def setUp(self):
        self.params = HashParams.generate(rounds=4, seed=22)
        self.notes = demo_notes(4, seed=5)
        self.tree = MerkleTree(self.params, [n.commit(self.params) for n in self.notes], height=2)
        self.shape = possession_shape(2, self.params)

    def instance(self, index, shape=None):
        shape = shape or self.shape
        note = self.notes[index]
        statement = PublicInputs(
            root=self.tree.root(),
            serial_number=note.serial_number,
            amount=note.amount if shape.reveals_amount else None,
        )
        witness = PossessionWitness(
            amount=note.amount, nonce=note.nonce, path=self.tree.opening(index), leaf=self.tree.leaves[index]
        )
        return statement, witness

    def test_honest_instances_satisfy(self):
        relation = compile_relation(self.shape)
        for index in range(4):
            statement, witness = self.instance(index)
            check_relation(self.shape, statement, witness)
            circuit = synthesize(self.shape, statement, witness)
            self.assertTrue(circuit.is_satisfied())
            self.assertEqual(circuit.public_values(), statement.to_field_vector())
            public, private = circuit.witness(relation.r1cs)
            self.assertEqual(public, [1] + statement.to_field_vector())
            self.assertTrue(relation.r1cs.is_sat(public, private))

    def test_wrong_root_unsatisfied(self):
        statement, witness = self.instance(1)
        bad = dataclasses.replace(statement, root=(statement.root + 1) % FIELD_MODULUS)
        with self.assertRaisesRegex(UnsatisfiedRelationError, "membership check failed"):
            check_relation(self.shape, bad, witness)
        self.assertFalse(synthesize(self.shape, bad, witness).is_satisfied())

    def test_serial_number_of_another_note_unsatisfied(self):
        statement, witness = self.instance(1)
        bad = dataclasses.replace(statement, serial_number=self.notes[2].serial_number)
        with self.assertRaisesRegex(UnsatisfiedRelationError, "opening check failed"):
            check_relation(self.shape, bad, witness)
        self.assertFalse(synthesize(self.shape, bad, witness).is_satisfied())

    def test_wrong_nonce_unsatisfied(self):
        statement, witness = self.instance(3)
        bad = dataclasses.replace(witness, nonce=witness.nonce + 1)
        with self.assertRaisesRegex(UnsatisfiedRelationError, "opening check failed"):
            check_relation(self.shape, statement, bad)
        self.assertFalse(synthesize(self.shape, statement, bad).is_satisfied())

    def test_failures_are_told_apart(self):
        statement, witness = self.instance(2)
        siblings = ((witness.path.siblings[0] + 1) % FIELD_MODULUS,) + witness.path.siblings[1:]
        tampered = dataclasses.replace(witness, path=dataclasses.replace(witness.path, siblings=siblings))
        with self.assertRaisesRegex(UnsatisfiedRelationError, "^membership check failed"):
            check_relation(self.shape, statement, tampered)

        wrong_amount = dataclasses.replace(witness, amount=witness.amount + 1)
        with self.assertRaisesRegex(UnsatisfiedRelationError, "^opening check failed"):
            check_relation(self.shape, statement, wrong_amount)

        # without the leaf there is no telling which half broke
        no_leaf = dataclasses.replace(wrong_amount, leaf=None)
        with self.assertRaisesRegex(UnsatisfiedRelationError, "^opening or membership check failed"):
            check_relation(self.shape, statement, no_leaf)

    def test_non_bit_direction_unsatisfied(self):
        statement, witness = self.instance(0)
        circuit = synthesize(self.shape, statement, witness)
        # wires: root, serial_number, amount, nonce, 2 siblings, 2 directions
        first_direction = circuit.wires[6]
        circuit.values[first_direction] = 2
        self.assertFalse(circuit.is_satisfied())

    def test_structure_independent_of_values(self):
        statement, witness = self.instance(0)
        honest = synthesize(self.shape, statement, witness)
        self.assertEqual(relation_digest(honest.to_r1cs()), compile_relation(self.shape).relation_id)

    def test_shapes_give_distinct_relations(self):
        reveal = possession_shape(2, self.params, reveal_amount=True)
        taller = possession_shape(3, self.params)
        other_params = possession_shape(2, HashParams.generate(rounds=4, seed=23))
        ids = {compile_relation(shape).relation_id for shape in (self.shape, reveal, taller, other_params)}
        self.assertEqual(len(ids), 4)

    def test_reveal_amount_relation(self):
        shape = relation_shape(2, self.params, {"amount": Visibility.PUBLIC})
        self.assertTrue(shape.reveals_amount)
        statement, witness = self.instance(2, shape)
        circuit = synthesize(shape, statement, witness)
        self.assertTrue(circuit.is_satisfied())
        self.assertEqual(circuit.public_values(), [statement.root, statement.serial_number, statement.amount])
        self.assertEqual(compile_relation(shape).num_public, 3)

        lie = dataclasses.replace(statement, amount=statement.amount + 1)
        with self.assertRaises(UnsatisfiedRelationError):
            check_relation(shape, lie, witness)

    def test_placeholder_fits_shape(self):
        statement, witness = placeholder_instance(self.shape)
        self.assertIsNone(statement.amount)
        self.assertEqual(witness.path.height, 2)
        self.assertEqual(synthesize(self.shape, statement, witness).num_public, 2)

    def test_amount_presence_must_match_shape(self):
        statement, witness = self.instance(0)
        with self.assertRaises(ConstructionError):
            synthesize(self.shape, dataclasses.replace(statement, amount=5), witness)
        reveal = possession_shape(2, self.params, reveal_amount=True)
        with self.assertRaises(ConstructionError):
            synthesize(reveal, statement, witness)

    def test_path_height_must_match_shape(self):
        statement, witness = self.instance(0)
        short = PossessionWitness(witness.amount, witness.nonce, AuthenticationPath((1,), (False,)))
        with self.assertRaises(ConstructionError):
            check_relation(self.shape, statement, short)

    def test_shape_validation(self):
        with self.assertRaises(ConstructionError):
            relation_shape(2, self.params, {"serial_number": Visibility.PRIVATE})
        with self.assertRaises(ConstructionError):
            relation_shape(2, self.params, {"nonce": Visibility.PUBLIC})
        with self.assertRaises(ConstructionError):
            relation_shape(2, self.params, {"owner": Visibility.PUBLIC})
        with self.assertRaises(ConstructionError):
            possession_shape(0, self.params)
        with self.assertRaises(ConstructionError):
            possession_shape(21, self.params)
