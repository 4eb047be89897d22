"""
Core ledger primitives: hashing, account and address derivation, Block and Chain.
"""

import hashlib
import json
from dataclasses import dataclass, field
from typing import List


# =============================================================================
# Hashing and derivation (simplified for simulation)
# =============================================================================

def hash_data(data: dict) -> str:
    """Compute deterministic hash of a dictionary."""
    canonical = json.dumps(data, sort_keys=True, separators=(',', ':'), default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def derive_account(seed: str, index: int) -> str:
    """Derive a deterministic account address from a seed."""
    digest = hashlib.sha256(f"{seed}:{index}".encode()).hexdigest()
    return "0x" + digest[:40]


def contract_address(sender: str, nonce: int) -> str:
    """
    Address of the contract created by sender's nonce-th transaction.

    Known as soon as the deployment is submitted, but nothing lives there
    until the deployment is confirmed.
    """
    digest = hashlib.sha256(f"{sender.lower()}:{nonce}".encode()).hexdigest()
    return "0x" + digest[-40:]


def transaction_id(sender: str, nonce: int, payload: dict) -> str:
    """Identifier of a submission: hash over sender, nonce and payload."""
    return "0x" + hash_data({"sender": sender, "nonce": nonce, "payload": payload})


# =============================================================================
# Block Structure
# =============================================================================

@dataclass
class Block:
    """
    A sealed block in the ledger's chain.

    Records the ordered transaction ids executed when the block was
    produced, whether they succeeded or not.
    """
    # Chain structure
    number: int                   # Position in chain
    previous_hash: str            # Hash of previous block

    # Content
    timestamp: float
    transactions: List[str] = field(default_factory=list)
    gas_used: int = 0

    block_hash: str = ""

    def __post_init__(self):
        if not self.block_hash:
            self.block_hash = self.compute_hash()

    def compute_hash(self) -> str:
        """Compute the hash of this block."""
        data = {
            "number": self.number,
            "previous_hash": self.previous_hash,
            "timestamp": self.timestamp,
            "transactions": self.transactions,
            "gas_used": self.gas_used,
        }
        return "0x" + hash_data(data)


GENESIS_PARENT = "0x" + "0" * 64


# =============================================================================
# Chain
# =============================================================================

class Chain:
    """
    The append-only sequence of sealed blocks.

    Block 0 is the genesis block; every later block links to its parent
    by hash.
    """

    def __init__(self, current_time: float):
        self.blocks: List[Block] = []
        self.blocks.append(Block(
            number=0,
            previous_hash=GENESIS_PARENT,
            timestamp=current_time,
        ))

    @property
    def head(self) -> Block:
        """Get the most recent block."""
        return self.blocks[-1]

    @property
    def height(self) -> int:
        return self.head.number

    def append(self, transactions: List[str], gas_used: int, timestamp: float) -> Block:
        """Seal a new block on top of the head."""
        block = Block(
            number=len(self.blocks),
            previous_hash=self.head.block_hash,
            timestamp=timestamp,
            transactions=list(transactions),
            gas_used=gas_used,
        )
        self.blocks.append(block)
        return block
