# cli.py
"""
Command line surface.

    note-possession gen-params   ledger maintainer: hash parameters + key pair
    note-possession gen-tree     ledger maintainer: demo notes, wallet, tree snapshot
    note-possession prove        holder: proof + public inputs for one note
    note-possession verify       verifier: check a proof
    note-possession demo         the four-leaf walkthrough

Exit codes: 0 success, 1 proof rejected / demo failed, 2 error.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from zksnake.groth16 import Proof

import artifacts
import possession
from config import ProtocolConfig, load_config
from errors import ArtifactIOError, ConstructionError, PossessionError
from hash_utils import HashParams
from main_prove_verify import merkle_membership_example
from merkle_tree import MerkleTree
from note import demo_notes
from possession import ProvingKey, VerifyingKey
from zk_merkle import PublicInputs, possession_shape

logger = logging.getLogger(__name__)


def setup_logging(log_level: str = "INFO", log_file: Optional[Path] = None):
    """Route log records to stderr and, optionally, a file"""
    level = getattr(logging, str(log_level).upper(), None)
    if not isinstance(level, int):
        raise ConstructionError(f"unknown log level {log_level!r}")

    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file is not None:
        log_file = Path(log_file)
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(log_file))
        except OSError as e:
            raise ArtifactIOError(f"cannot open log file {log_file}: {e}") from e

    # Clear existing handlers to avoid duplicates
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
    )


def _parse_field(text: str) -> int:
    try:
        return int(text, 16)
    except ValueError:
        raise argparse.ArgumentTypeError(f"{text!r} is not a hex number") from None


def _resolve_config(args) -> ProtocolConfig:
    config = load_config(args.config)
    if args.artifact_dir is not None:
        config.artifact_dir = Path(args.artifact_dir)
    if getattr(args, "height", None) is not None:
        config.tree_height = args.height
    if getattr(args, "rounds", None) is not None:
        config.mimc_rounds = args.rounds
    if getattr(args, "reveal_amount", False):
        config.reveal_amount = True
    if args.log_level is not None:
        config.log_level = args.log_level
    return config


def cmd_gen_params(config: ProtocolConfig, args) -> int:
    if args.new_hash_params or not config.hash_params_path.exists():
        params = HashParams.generate(rounds=config.mimc_rounds, exponent=config.mimc_exponent)
        artifacts.save_artifact(config.hash_params_path, params)
        logger.info(f"Wrote {config.hash_params_path}")
    else:
        params = artifacts.load_artifact(config.hash_params_path, HashParams)
        logger.info(f"Reusing hash parameters from {config.hash_params_path}")

    shape = possession_shape(config.tree_height, params, config.reveal_amount)
    pk, vk = possession.setup(shape)
    artifacts.save_artifact(config.proving_key_path, pk)
    artifacts.save_artifact(config.verifying_key_path, vk)
    logger.info(f"Wrote {config.proving_key_path}")
    logger.info(f"Wrote {config.verifying_key_path}")
    return 0


def cmd_gen_tree(config: ProtocolConfig, args) -> int:
    params = artifacts.load_artifact(config.hash_params_path, HashParams)
    count = args.notes if args.notes is not None else 1 << config.tree_height
    notes = demo_notes(count, seed=args.seed)
    tree = MerkleTree(params, [n.commit(params) for n in notes], config.tree_height)

    artifacts.save_artifact(config.tree_path, tree)
    artifacts.save_wallet(config.wallet_path, dict(enumerate(notes)))
    logger.info(f"Wrote {config.tree_path} and {config.wallet_path}")
    print(f"{tree.root():064x}")
    return 0


def cmd_prove(config: ProtocolConfig, args) -> int:
    logger.info("Reading params, proving key, tree and wallet...")
    params = artifacts.load_artifact(config.hash_params_path, HashParams)
    pk = artifacts.load_artifact(config.proving_key_path, ProvingKey)
    tree = artifacts.load_artifact(config.tree_path, MerkleTree)
    wallet = artifacts.load_wallet(config.wallet_path)

    if args.root is not None and args.root != tree.root():
        raise ConstructionError(
            f"the tree I'm using has root {tree.root():064x}, different from the one given"
        )
    if args.index not in wallet:
        raise ConstructionError(f"wallet holds no note for leaf {args.index}")

    shape = possession_shape(config.tree_height, params, config.reveal_amount)
    proof, statement = possession.prove_possession(pk, shape, tree, args.index, wallet[args.index])

    artifacts.save_artifact(config.proof_path, proof)
    artifacts.save_artifact(config.public_inputs_path, statement)
    logger.info(f"Wrote {config.proof_path}")
    logger.info(f"Wrote {config.public_inputs_path}")
    print(f"serial_number {statement.serial_number:064x}")
    return 0


def cmd_verify(config: ProtocolConfig, args) -> int:
    logger.info("Reading verifying key, proof, and public inputs...")
    vk = artifacts.load_artifact(config.verifying_key_path, VerifyingKey)
    proof = artifacts.load_artifact(config.proof_path, Proof)
    statement = artifacts.load_artifact(config.public_inputs_path, PublicInputs)
    if args.root is not None:
        # The verifier's own copy of the root wins over the one shipped with the proof
        statement = PublicInputs(root=args.root, serial_number=statement.serial_number, amount=statement.amount)

    if possession.verify(vk, statement, proof):
        print(f"Proof verified successfully for serial_number {statement.serial_number:064x}")
        if statement.amount is not None:
            print(f"disclosed amount {statement.amount}")
        return 0
    print("Proof failed to verify")
    return 1


def cmd_demo(config: ProtocolConfig, args) -> int:
    ok = merkle_membership_example(rounds=args.rounds or 8, seed=args.seed)
    print("Demo passed" if ok else "Demo FAILED")
    return 0 if ok else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="note-possession",
        description="Zero-knowledge proofs of note possession over a Merkle tree of commitments",
    )
    parser.add_argument('--config', type=Path, default=None,
                        help='YAML configuration file (default: possession.yaml)')
    parser.add_argument('--artifact-dir', type=Path, default=None,
                        help='directory holding params, keys, tree and proofs')
    parser.add_argument('--log-level', default=None,
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'])
    sub = parser.add_subparsers(dest='command', required=True)

    p = sub.add_parser('gen-params', help='generate hash parameters and the key pair')
    p.add_argument('--height', type=int, default=None, help='Merkle tree height')
    p.add_argument('--rounds', type=int, default=None, help='MiMC rounds')
    p.add_argument('--reveal-amount', action='store_true',
                   help='keys for the relation that discloses the amount')
    p.add_argument('--new-hash-params', action='store_true',
                   help='replace existing hash parameters (invalidates existing trees)')
    p.set_defaults(func=cmd_gen_params)

    p = sub.add_parser('gen-tree', help='commit to demo notes and write the tree snapshot')
    p.add_argument('--height', type=int, default=None, help='Merkle tree height')
    p.add_argument('--notes', type=int, default=None, help='number of notes (default: fill the tree)')
    p.add_argument('--seed', type=int, default=0, help='seed for the demo notes')
    p.set_defaults(func=cmd_gen_tree)

    p = sub.add_parser('prove', help='prove possession of one note from the wallet')
    p.add_argument('--height', type=int, default=None, help='Merkle tree height')
    p.add_argument('--reveal-amount', action='store_true', help='disclose the amount as well')
    p.add_argument('--index', type=int, default=7, help='leaf index of the note')
    p.add_argument('--root', type=_parse_field, default=None,
                   help='expected Merkle root (hex), checked against the tree')
    p.set_defaults(func=cmd_prove)

    p = sub.add_parser('verify', help='verify a possession proof')
    p.add_argument('--reveal-amount', action='store_true', help='verify the amount-revealing relation')
    p.add_argument('--root', type=_parse_field, default=None,
                   help='Merkle root known out of band (hex)')
    p.set_defaults(func=cmd_verify)

    p = sub.add_parser('demo', help='run the four-leaf walkthrough')
    p.add_argument('--rounds', type=int, default=None, help='MiMC rounds (default 8)')
    p.add_argument('--seed', type=int, default=None)
    p.set_defaults(func=cmd_demo)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        config = _resolve_config(args)
        setup_logging(config.log_level, config.log_file)
        return args.func(config, args)
    except PossessionError as e:
        logger.error(f"{args.command} failed: {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
