# config.py
"""
Deployment configuration: relation parameters and where artifacts live.

Loaded from / saved to YAML. Command line flags override loaded values.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from errors import ConstructionError
from hash_utils import DEFAULT_EXPONENT, DEFAULT_ROUNDS

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("possession.yaml")

HASH_PARAMS_FILENAME = "mimc_params.bin"
TREE_FILENAME = "merkle_tree.bin"
WALLET_FILENAME = "wallet.json"

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class ProtocolConfig:
    tree_height: int = 4
    mimc_rounds: int = DEFAULT_ROUNDS
    mimc_exponent: int = DEFAULT_EXPONENT
    reveal_amount: bool = False
    artifact_dir: Path = field(default_factory=lambda: Path("artifacts"))
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    def __post_init__(self):
        self.artifact_dir = Path(self.artifact_dir)
        if self.log_file is not None:
            self.log_file = Path(self.log_file)

    @property
    def relation_name(self) -> str:
        return "possession_showamount" if self.reveal_amount else "possession"

    @property
    def hash_params_path(self) -> Path:
        return self.artifact_dir / HASH_PARAMS_FILENAME

    @property
    def tree_path(self) -> Path:
        return self.artifact_dir / TREE_FILENAME

    @property
    def wallet_path(self) -> Path:
        return self.artifact_dir / WALLET_FILENAME

    @property
    def proving_key_path(self) -> Path:
        return self.artifact_dir / f"{self.relation_name}_proving_key.bin"

    @property
    def verifying_key_path(self) -> Path:
        return self.artifact_dir / f"{self.relation_name}_verifying_key.bin"

    @property
    def proof_path(self) -> Path:
        return self.artifact_dir / f"{self.relation_name}_proof.bin"

    @property
    def public_inputs_path(self) -> Path:
        return self.artifact_dir / f"{self.relation_name}_public_inputs.bin"


def load_config(config_path: Optional[Path] = None) -> ProtocolConfig:
    """
    Load configuration from file or return default.

    Raises:
        ConstructionError: the file is not valid YAML, or holds values of the
            wrong type or an unknown logging level
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH
    config_path = Path(config_path)

    if not config_path.exists():
        logger.debug(f"No config file at {config_path}, using defaults")
        return ProtocolConfig()

    try:
        with open(config_path, 'r') as f:
            config_data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConstructionError(f"malformed config file {config_path}: {e}") from e
    except OSError as e:
        raise ConstructionError(f"cannot read config file {config_path}: {e}") from e

    if not isinstance(config_data, dict):
        raise ConstructionError(f"config file {config_path} must hold a mapping")
    relation = config_data.get('relation') or {}
    logging_data = config_data.get('logging') or {}
    if not isinstance(relation, dict) or not isinstance(logging_data, dict):
        raise ConstructionError(f"config file {config_path} must map 'relation' and 'logging' to sections")

    config = ProtocolConfig(
        tree_height=relation.get('tree_height', 4),
        mimc_rounds=relation.get('mimc_rounds', DEFAULT_ROUNDS),
        mimc_exponent=relation.get('mimc_exponent', DEFAULT_EXPONENT),
        reveal_amount=relation.get('reveal_amount', False),
        artifact_dir=Path(str(config_data.get('artifact_dir', 'artifacts'))),
        log_level=str(logging_data.get('level', 'INFO')),
        log_file=None if logging_data.get('file') is None else str(logging_data['file']),
    )
    for name in ('tree_height', 'mimc_rounds', 'mimc_exponent'):
        value = getattr(config, name)
        if not isinstance(value, int) or isinstance(value, bool):
            raise ConstructionError(f"{name} must be an integer, got {value!r}")
    if not isinstance(config.reveal_amount, bool):
        raise ConstructionError(f"reveal_amount must be true or false, got {config.reveal_amount!r}")
    if config.log_level.upper() not in LOG_LEVELS:
        raise ConstructionError(f"unknown logging level {config.log_level!r}, expected one of {LOG_LEVELS}")
    return config


def save_config(config: ProtocolConfig, config_path: Optional[Path] = None):
    """Save configuration to YAML file"""
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH

    config_data = {
        'relation': {
            'tree_height': config.tree_height,
            'mimc_rounds': config.mimc_rounds,
            'mimc_exponent': config.mimc_exponent,
            'reveal_amount': config.reveal_amount,
        },
        'artifact_dir': str(config.artifact_dir),
        'logging': {
            'level': config.log_level,
            'file': str(config.log_file) if config.log_file else None,
        },
    }

    with open(config_path, 'w') as f:
        yaml.dump(config_data, f, default_flow_style=False)
