"""
Votechain Chain - the execution ledger the tally contract runs on.

This package provides:
- primitives: hashing, address derivation, Block and Chain
- machine: the metered stack machine that executes compiled programs
- ledger: submission pool, block production, receipts and read-only calls
"""

from .primitives import (
    hash_data,
    derive_account,
    contract_address,
    transaction_id,
    Block,
    Chain,
)

from .machine import (
    Machine,
    MachineError,
    Revert,
    OutOfGas,
)

from .ledger import (
    Ledger,
    Receipt,
    TxStatus,
    RejectReason,
    RESOURCE_LIMIT_REASONS,
    LedgerError,
    UnknownTransaction,
    NoContractError,
    CallFailed,
    DEFAULT_BLOCK_GAS_LIMIT,
)

__all__ = [
    # Primitives
    "hash_data",
    "derive_account",
    "contract_address",
    "transaction_id",
    "Block",
    "Chain",
    # Machine
    "Machine",
    "MachineError",
    "Revert",
    "OutOfGas",
    # Ledger
    "Ledger",
    "Receipt",
    "TxStatus",
    "RejectReason",
    "RESOURCE_LIMIT_REASONS",
    "LedgerError",
    "UnknownTransaction",
    "NoContractError",
    "CallFailed",
    "DEFAULT_BLOCK_GAS_LIMIT",
]
