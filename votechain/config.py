"""
Configuration loaded from a YAML file.

Example:

    ledger:
      accounts: 10
      block_gas_limit: 6721975
      block_time: 0.5
    deploy:
      contract: contracts/voting.tally
      candidates: [Rama, Nick, Claudius]
      gas: 4700000
      descriptor: contract.json
    client:
      poll_interval: 0.1
      call_gas: 200000
"""

from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import List, Optional

import yaml

from .chain.ledger import DEFAULT_ACCOUNTS, DEFAULT_BLOCK_GAS_LIMIT
from .contracts import VOTING_CONTRACT
from .deploy import DEFAULT_POLL_INTERVAL
from .errors import ConfigError
from .proxy import DEFAULT_CALL_GAS


@dataclass(frozen=True)
class LedgerConfig:
    accounts: int = DEFAULT_ACCOUNTS
    block_gas_limit: int = DEFAULT_BLOCK_GAS_LIMIT
    block_time: float = 0.05      # Seconds between blocks from the background producer


@dataclass(frozen=True)
class DeployConfig:
    contract: Path = VOTING_CONTRACT
    candidates: List[str] = field(default_factory=lambda: ["Rama", "Nick", "Claudius"])
    gas: int = 4_700_000
    descriptor: Path = Path("contract.json")


@dataclass(frozen=True)
class ClientConfig:
    poll_interval: float = DEFAULT_POLL_INTERVAL
    call_gas: int = DEFAULT_CALL_GAS


@dataclass(frozen=True)
class Config:
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    deploy: DeployConfig = field(default_factory=DeployConfig)
    client: ClientConfig = field(default_factory=ClientConfig)


SECTIONS = {
    "ledger": LedgerConfig,
    "deploy": DeployConfig,
    "client": ClientConfig,
}

PATH_KEYS = {"contract", "descriptor"}


def _coerce(section: str, key: str, expected, value, base_dir: Path):
    where = f"{section}.{key}"
    if key in PATH_KEYS:
        if not isinstance(value, str):
            raise ConfigError(f"{where}: expected a path, got {type(value).__name__}")
        path = Path(value)
        return path if path.is_absolute() else base_dir / path
    if expected is int:
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ConfigError(f"{where}: expected a non-negative integer, got {value!r}")
        return value
    if expected is float:
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
            raise ConfigError(f"{where}: expected a non-negative number, got {value!r}")
        return float(value)
    if key == "candidates":
        if not isinstance(value, list) or not all(isinstance(c, str) for c in value):
            raise ConfigError(f"{where}: expected a list of names")
        return list(value)
    return value


def parse_config(data: Optional[dict], base_dir: Path = Path(".")) -> Config:
    """Build a Config from already-loaded YAML data."""
    if data is None:
        return Config()
    if not isinstance(data, dict):
        raise ConfigError("Config must be a mapping of sections")

    config = Config()
    for section, values in data.items():
        cls = SECTIONS.get(section)
        if cls is None:
            raise ConfigError(f"Unknown config section: {section!r}")
        if values is None:
            continue
        if not isinstance(values, dict):
            raise ConfigError(f"Section {section!r} must be a mapping")

        types = {f.name: f.type for f in fields(cls)}
        updates = {}
        for key, value in values.items():
            if key not in types:
                raise ConfigError(f"Unknown key {section}.{key}")
            updates[key] = _coerce(section, key, types[key], value, base_dir)
        config = replace(config, **{section: replace(getattr(config, section), **updates)})

    return config


def load_config(path) -> Config:
    """Load a YAML config file; relative paths resolve against its directory."""
    path = Path(path)
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    return parse_config(data, base_dir=path.parent)
