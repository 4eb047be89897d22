"""
Descriptor: the durable (address, ABI) handle of a deployed contract, and
the file store that persists it.
"""

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Tuple

from tallyc import AbiEntry

from .errors import DescriptorNotFound, DescriptorParseError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Descriptor:
    """Everything a process needs to bind to a deployed contract."""
    address: str
    abi: Tuple[AbiEntry, ...]

    def to_dict(self) -> dict:
        """Serialize descriptor to dictionary."""
        return {
            "address": self.address,
            "abi": [entry.to_dict() for entry in self.abi],
        }

    @classmethod
    def from_dict(cls, data: Any) -> 'Descriptor':
        """
        Deserialize descriptor from dictionary.

        Only the exact shape written by to_dict() is accepted; nothing is
        defaulted.
        """
        if not isinstance(data, dict):
            raise DescriptorParseError(f"Descriptor must be an object, got {type(data).__name__}")
        keys = set(data)
        if keys != {"address", "abi"}:
            missing = {"address", "abi"} - keys
            extra = keys - {"address", "abi"}
            parts = []
            if missing:
                parts.append(f"missing {', '.join(sorted(missing))}")
            if extra:
                parts.append(f"unexpected {', '.join(sorted(extra))}")
            raise DescriptorParseError("Descriptor " + "; ".join(parts))

        address = data["address"]
        if not isinstance(address, str) or not address:
            raise DescriptorParseError("Descriptor address must be a non-empty string")

        abi = data["abi"]
        if not isinstance(abi, list):
            raise DescriptorParseError(f"Descriptor abi must be a list, got {type(abi).__name__}")
        entries = []
        for i, entry in enumerate(abi):
            try:
                entries.append(AbiEntry.from_dict(entry))
            except ValueError as e:
                raise DescriptorParseError(f"abi[{i}]: {e}") from e

        return cls(address=address, abi=tuple(entries))


class DescriptorStore:
    """
    One descriptor in one JSON file.

    save() replaces whatever was stored before; keeping several deployments
    alive means using several stores.
    """

    def __init__(self, path):
        self.path = Path(path)

    def save(self, descriptor: Descriptor):
        """Write atomically. OSError propagates."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        content = json.dumps(descriptor.to_dict(), indent=2) + "\n"
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
        logger.info("The file %s was saved (address %s)", self.path, descriptor.address)

    def load(self) -> Descriptor:
        """Read the descriptor; DescriptorNotFound or DescriptorParseError on failure."""
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise DescriptorNotFound(f"No descriptor at {self.path}") from e
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise DescriptorParseError(f"{self.path} is not valid JSON: {e}") from e
        return Descriptor.from_dict(data)

    def exists(self) -> bool:
        return self.path.exists()
