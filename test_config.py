import tempfile
from pathlib import Path
from unittest import TestCase

from config import ProtocolConfig, load_config, save_config
from errors import ConstructionError
from hash_utils import DEFAULT_ROUNDS


class TestConfig(TestCase):
    def test_defaults_when_file_missing(self):
        with tempfile.TemporaryDirectory() as tmp:
            config = load_config(Path(tmp) / "absent.yaml")
        self.assertEqual(config, ProtocolConfig())
        self.assertEqual(config.mimc_rounds, DEFAULT_ROUNDS)
        self.assertEqual(config.relation_name, "possession")

    def test_save_load_round_trip(self):
        config = ProtocolConfig(
            tree_height=3,
            mimc_rounds=10,
            reveal_amount=True,
            artifact_dir=Path("out"),
            log_level="DEBUG",
            log_file=Path("logs/run.log"),
        )
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "possession.yaml"
            save_config(config, path)
            self.assertEqual(load_config(path), config)

    def test_partial_file_keeps_defaults(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "possession.yaml"
            path.write_text("relation:\n  tree_height: 6\n")
            config = load_config(path)
        self.assertEqual(config.tree_height, 6)
        self.assertEqual(config.mimc_rounds, DEFAULT_ROUNDS)
        self.assertEqual(config.artifact_dir, Path("artifacts"))

    def test_artifact_paths_follow_relation(self):
        config = ProtocolConfig(artifact_dir=Path("a"))
        self.assertEqual(config.proof_path, Path("a/possession_proof.bin"))
        config.reveal_amount = True
        self.assertEqual(config.proof_path, Path("a/possession_showamount_proof.bin"))
        self.assertEqual(config.verifying_key_path, Path("a/possession_showamount_verifying_key.bin"))
        self.assertEqual(config.hash_params_path, Path("a/mimc_params.bin"))
        self.assertEqual(config.tree_path, Path("a/merkle_tree.bin"))

    def test_bad_files_raise_construction_error(self):
        bad_files = (
            "relation: [",
            "- just\n- a list\n",
            "relation: 5\n",
            "relation:\n  tree_height: four\n",
            "relation:\n  reveal_amount: maybe\n",
            "logging:\n  level: LOUD\n",
        )
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "possession.yaml"
            for text in bad_files:
                path.write_text(text)
                with self.subTest(text=text), self.assertRaises(ConstructionError):
                    load_config(path)

    def test_log_level_is_case_insensitive(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "possession.yaml"
            path.write_text("logging:\n  level: debug\n")
            self.assertEqual(load_config(path).log_level, "debug")
