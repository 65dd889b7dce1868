import random
from unittest import TestCase

from errors import ConstructionError
from hash_utils import COMMIT_DOMAIN, FIELD_MODULUS, HashParams, compress
from note import Note, commit, demo_notes


class TestNote(TestCase):
    def setUp(self):
        self.params = HashParams.generate(rounds=6, seed=3)

    def test_commit_is_nonce_amount_serial(self):
        state = compress(self.params, COMMIT_DOMAIN, 30)
        state = compress(self.params, state, 10)
        state = compress(self.params, state, 20)
        self.assertEqual(commit(self.params, amount=10, serial_number=20, nonce=30), state)
        self.assertEqual(Note(amount=10, serial_number=20, nonce=30).commit(self.params), state)

    def test_commit_binds_every_field(self):
        base = Note(amount=10, serial_number=20, nonce=30).commit(self.params)
        self.assertNotEqual(base, Note(amount=11, serial_number=20, nonce=30).commit(self.params))
        self.assertNotEqual(base, Note(amount=10, serial_number=21, nonce=30).commit(self.params))
        self.assertNotEqual(base, Note(amount=10, serial_number=20, nonce=31).commit(self.params))

    def test_rejects_values_outside_field(self):
        with self.assertRaises(ConstructionError):
            Note(amount=-1, serial_number=0, nonce=0)
        with self.assertRaises(ConstructionError):
            Note(amount=0, serial_number=FIELD_MODULUS, nonce=0)
        with self.assertRaises(ConstructionError):
            Note(amount=0, serial_number=0, nonce="1")

    def test_commit_rejects_unreduced_values(self):
        # 5 + FIELD_MODULUS would hash like 5 if it were reduced
        with self.assertRaises(ConstructionError):
            commit(self.params, 5 + FIELD_MODULUS, 6, 7)
        with self.assertRaises(ConstructionError):
            commit(self.params, 5, 6 + FIELD_MODULUS, 7)
        with self.assertRaises(ConstructionError):
            commit(self.params, 5, 6, -7)
        with self.assertRaises(ConstructionError):
            commit(self.params, 5, True, 7)

    def test_random_note(self):
        note = Note.random(random.Random(1), amount=500)
        self.assertEqual(note.amount, 500)
        self.assertNotEqual(note.serial_number, note.nonce)

    def test_demo_notes_reproducible(self):
        self.assertEqual(demo_notes(4, seed=9), demo_notes(4, seed=9))
        self.assertNotEqual(demo_notes(4, seed=9), demo_notes(4, seed=10))
        notes = demo_notes(8)
        self.assertEqual(len(notes), 8)
        self.assertEqual(len({n.serial_number for n in notes}), 8)
        self.assertTrue(all(1 <= n.amount < 10_000 for n in notes))
