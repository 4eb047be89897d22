"""
Single-endpoint execution ledger.

Accepts deployment and transaction submissions into a FIFO pool, executes
them serially when a block is produced, and answers status queries and
read-only calls against the latest confirmed state.

Blocks are produced either explicitly (mine()) or by a background producer
(start(block_time) / stop()). Listeners registered with subscribe() are
called after every sealed block with the receipts it resolved.
"""

import copy
import json
import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from tallyc.codegen import decode_program

from .machine import Machine, MachineError, OutOfGas, Revert
from .primitives import Block, Chain, contract_address, derive_account, transaction_id


logger = logging.getLogger(__name__)


# =============================================================================
# Parameters
# =============================================================================

DEFAULT_ACCOUNTS = 10
DEFAULT_BLOCK_GAS_LIMIT = 6_721_975
TX_BASE_GAS = 21_000         # Every transaction
CREATE_GAS = 32_000          # Extra for contract creation
PAYLOAD_BYTE_GAS = 16        # Per byte of bytecode and encoded arguments


# =============================================================================
# Status and receipts
# =============================================================================

class TxStatus(Enum):
    """Lifecycle of a submission."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"


class RejectReason(Enum):
    """Why a submission was rejected."""
    OUT_OF_GAS = "out_of_gas"
    INTRINSIC_GAS_TOO_LOW = "intrinsic_gas_too_low"
    EXCEEDS_BLOCK_GAS_LIMIT = "exceeds_block_gas_limit"
    UNKNOWN_SENDER = "unknown_sender"
    INVALID_BYTECODE = "invalid_bytecode"
    NO_CONTRACT = "no_contract"
    UNKNOWN_FUNCTION = "unknown_function"
    INVALID_ARGUMENTS = "invalid_arguments"
    REVERTED = "reverted"
    STATIC_WRITE = "static_write"
    FAULT = "fault"


# Rejections caused by the gas ceiling rather than by the transaction's content
RESOURCE_LIMIT_REASONS = {
    RejectReason.OUT_OF_GAS,
    RejectReason.INTRINSIC_GAS_TOO_LOW,
    RejectReason.EXCEEDS_BLOCK_GAS_LIMIT,
}


@dataclass
class Receipt:
    """Status report for one submission."""
    tx_id: str
    status: TxStatus
    block_number: Optional[int] = None
    gas_used: int = 0
    contract_address: Optional[str] = None
    return_value: Any = None
    reason: Optional[RejectReason] = None
    error: Optional[str] = None      # Contract error name when reason is REVERTED
    detail: str = ""

    @property
    def pending(self) -> bool:
        return self.status == TxStatus.PENDING


@dataclass
class Submission:
    """A transaction waiting in the pool."""
    tx_id: str
    sender: str
    nonce: int
    gas: int
    payload_size: int
    submitted_at: float
    # Creation
    bytecode: Optional[bytes] = None
    # Call
    to: Optional[str] = None
    function: Optional[str] = None
    args: List[Any] = field(default_factory=list)
    # Known at submission for creations
    contract_address: Optional[str] = None

    @property
    def is_creation(self) -> bool:
        return self.bytecode is not None


@dataclass
class DeployedContract:
    """Code and storage living at an address."""
    address: str
    program: Dict[str, Any]
    storage: Dict[str, Any]
    block_number: int


# =============================================================================
# Errors
# =============================================================================

class LedgerError(Exception):
    """Base class for errors reported by the ledger endpoint."""


class UnknownTransaction(LedgerError, KeyError):
    """No submission with that id."""


class NoContractError(LedgerError):
    """Nothing is deployed at the address (yet)."""

    def __init__(self, address: str):
        self.address = address
        super().__init__(f"no contract at {address}")


class CallFailed(LedgerError):
    """A read-only call or dry run did not complete."""

    def __init__(self, reason: RejectReason, detail: str, error: Optional[str] = None):
        self.reason = reason
        self.detail = detail
        self.error = error
        super().__init__(detail)


def _reason_for(exc: MachineError) -> RejectReason:
    return RejectReason(exc.reason)


# =============================================================================
# Ledger
# =============================================================================

class Ledger:
    """
    In-process execution ledger.

    All state is guarded by one re-entrant lock; transactions execute one at
    a time, in submission order, each against a private copy of the target
    contract's storage that is committed only on success.
    """

    def __init__(self, accounts: int = DEFAULT_ACCOUNTS,
                 block_gas_limit: int = DEFAULT_BLOCK_GAS_LIMIT,
                 clock: Callable[[], float] = time.time,
                 seed: str = "votechain"):
        self.block_gas_limit = block_gas_limit
        self.clock = clock
        self.chain = Chain(clock())
        self._accounts = [derive_account(seed, i) for i in range(accounts)]
        self._nonces: Dict[str, int] = {}
        self._contracts: Dict[str, DeployedContract] = {}
        self._pool: List[Submission] = []
        self._receipts: Dict[str, Receipt] = {}
        self._listeners: List[Callable[[Block, List[Receipt]], None]] = []
        self._lock = threading.RLock()
        self._producer: Optional[threading.Thread] = None
        self._stop = threading.Event()

    # =========================================================================
    # Accounts
    # =========================================================================

    @property
    def accounts(self) -> List[str]:
        return list(self._accounts)

    def _next_nonce(self, sender: str) -> int:
        nonce = self._nonces.get(sender, 0)
        self._nonces[sender] = nonce + 1
        return nonce

    # =========================================================================
    # Submission
    # =========================================================================

    def submit_deployment(self, bytecode: bytes, args: List[Any], sender: str, gas: int) -> str:
        """Queue a construction transaction. Returns its id."""
        args = list(args)
        with self._lock:
            nonce = self._next_nonce(sender)
            payload = {"create": bytecode.hex(), "args": args, "gas": gas}
            submission = Submission(
                tx_id=transaction_id(sender, nonce, payload),
                sender=sender,
                nonce=nonce,
                gas=gas,
                payload_size=len(bytecode) + encoded_size(args),
                submitted_at=self.clock(),
                bytecode=bytes(bytecode),
                args=copy.deepcopy(args),
                contract_address=contract_address(sender, nonce),
            )
            self._enqueue(submission)
        logger.debug("Deployment %s submitted by %s (gas %d)", submission.tx_id, sender, gas)
        return submission.tx_id

    def submit_transaction(self, address: str, function: str, args: List[Any],
                           sender: str, gas: int) -> str:
        """Queue a state-mutating call. Returns its id."""
        args = list(args)
        with self._lock:
            nonce = self._next_nonce(sender)
            payload = {"to": address, "function": function, "args": args, "gas": gas}
            submission = Submission(
                tx_id=transaction_id(sender, nonce, payload),
                sender=sender,
                nonce=nonce,
                gas=gas,
                payload_size=encoded_size([function] + args),
                submitted_at=self.clock(),
                to=address,
                function=function,
                args=copy.deepcopy(args),
            )
            self._enqueue(submission)
        logger.debug("Transaction %s: %s.%s%r by %s", submission.tx_id, address,
                     function, tuple(args), sender)
        return submission.tx_id

    def _enqueue(self, submission: Submission):
        self._pool.append(submission)
        self._receipts[submission.tx_id] = Receipt(tx_id=submission.tx_id, status=TxStatus.PENDING)

    # =========================================================================
    # Queries
    # =========================================================================

    def status(self, tx_id: str) -> Receipt:
        """Current receipt of a submission (PENDING until a block resolves it)."""
        with self._lock:
            receipt = self._receipts.get(tx_id)
            if receipt is None:
                raise UnknownTransaction(tx_id)
            return copy.copy(receipt)

    def has_code(self, address: str) -> bool:
        with self._lock:
            return address in self._contracts

    def call(self, address: str, function: str, args: List[Any]) -> Any:
        """Run a function read-only against the latest confirmed state."""
        with self._lock:
            deployed = self._contracts.get(address)
            if deployed is None:
                raise NoContractError(address)
            machine = Machine(deployed.program, copy.deepcopy(deployed.storage),
                              self.block_gas_limit, static=True)
            try:
                return machine.run_function(function, list(args))
            except Revert as e:
                raise CallFailed(RejectReason.REVERTED, str(e), error=e.error) from e
            except MachineError as e:
                raise CallFailed(_reason_for(e), str(e)) from e

    def estimate(self, address: str, function: str, args: List[Any], sender: str) -> int:
        """
        Dry-run a state-mutating call against confirmed state.

        Nothing is committed. Returns the gas the transaction would use.
        """
        with self._lock:
            if sender not in self._accounts:
                raise CallFailed(RejectReason.UNKNOWN_SENDER, f"unknown sender {sender}")
            deployed = self._contracts.get(address)
            if deployed is None:
                raise NoContractError(address)
            intrinsic = intrinsic_gas(encoded_size([function] + list(args)))
            machine = Machine(deployed.program, copy.deepcopy(deployed.storage),
                              self.block_gas_limit)
            try:
                machine.run_function(function, list(args))
            except Revert as e:
                raise CallFailed(RejectReason.REVERTED, str(e), error=e.error) from e
            except MachineError as e:
                raise CallFailed(_reason_for(e), str(e)) from e
            return intrinsic + machine.gas_used

    # =========================================================================
    # Block production
    # =========================================================================

    def subscribe(self, listener: Callable[[Block, List[Receipt]], None]):
        """Call listener(block, receipts) after every sealed block."""
        with self._lock:
            self._listeners.append(listener)

    def unsubscribe(self, listener):
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def pending_count(self) -> int:
        with self._lock:
            return len(self._pool)

    def mine(self) -> Block:
        """
        Seal one block from the pool.

        Submissions are taken in FIFO order while their gas ceilings fit in
        the block gas limit; the rest wait for the next block.
        """
        with self._lock:
            resolved: List[Receipt] = []
            included: List[str] = []
            block_gas = 0
            reserved = 0
            block_number = self.chain.height + 1
            remaining: List[Submission] = []

            for submission in self._pool:
                ceiling = min(submission.gas, self.block_gas_limit)
                if remaining or (resolved and reserved + ceiling > self.block_gas_limit):
                    remaining.append(submission)
                    continue
                reserved += ceiling
                receipt = self._apply(submission, block_number)
                self._receipts[submission.tx_id] = receipt
                resolved.append(receipt)
                if receipt.block_number is not None:
                    included.append(submission.tx_id)
                    block_gas += receipt.gas_used

            self._pool = remaining
            block = self.chain.append(included, block_gas, self.clock())
            listeners = list(self._listeners)

        if included:
            logger.info("Sealed block %d with %d transaction(s), gas used %d",
                        block.number, len(included), block.gas_used)
        for listener in listeners:
            listener(block, [copy.copy(r) for r in resolved])
        return block

    def _apply(self, submission: Submission, block_number: int) -> Receipt:
        """Execute one submission. Caller holds the lock."""
        tx_id = submission.tx_id
        intrinsic = intrinsic_gas(submission.payload_size, creation=submission.is_creation)

        # Rejected before inclusion
        if submission.sender not in self._accounts:
            return self._rejected(tx_id, RejectReason.UNKNOWN_SENDER,
                                  f"unknown sender {submission.sender}")
        if submission.gas > self.block_gas_limit:
            return self._rejected(
                tx_id, RejectReason.EXCEEDS_BLOCK_GAS_LIMIT,
                f"gas {submission.gas} exceeds block gas limit {self.block_gas_limit}")
        if submission.gas < intrinsic:
            return self._rejected(
                tx_id, RejectReason.INTRINSIC_GAS_TOO_LOW,
                f"gas {submission.gas} below intrinsic cost {intrinsic}")

        execution_gas = submission.gas - intrinsic

        if submission.is_creation:
            try:
                program = decode_program(submission.bytecode)
            except ValueError as e:
                return self._rejected(tx_id, RejectReason.INVALID_BYTECODE, str(e),
                                      block_number=block_number, gas_used=intrinsic)
            storage: Dict[str, Any] = {}
            machine = Machine(program, storage, execution_gas)
            try:
                machine.run_constructor(submission.args)
            except MachineError as e:
                return self._failed(tx_id, e, submission, machine, intrinsic, block_number)

            address = submission.contract_address
            self._contracts[address] = DeployedContract(
                address=address,
                program=program,
                storage=storage,
                block_number=block_number,
            )
            return Receipt(
                tx_id=tx_id,
                status=TxStatus.CONFIRMED,
                block_number=block_number,
                gas_used=intrinsic + machine.gas_used,
                contract_address=address,
            )

        deployed = self._contracts.get(submission.to)
        if deployed is None:
            return self._rejected(tx_id, RejectReason.NO_CONTRACT, f"no contract at {submission.to}",
                                  block_number=block_number, gas_used=intrinsic)

        storage = copy.deepcopy(deployed.storage)
        machine = Machine(deployed.program, storage, execution_gas)
        try:
            result = machine.run_function(submission.function, submission.args)
        except MachineError as e:
            return self._failed(tx_id, e, submission, machine, intrinsic, block_number)

        deployed.storage = storage
        return Receipt(
            tx_id=tx_id,
            status=TxStatus.CONFIRMED,
            block_number=block_number,
            gas_used=intrinsic + machine.gas_used,
            return_value=result,
        )

    def _failed(self, tx_id: str, exc: MachineError, submission: Submission,
                machine: Machine, intrinsic: int, block_number: int) -> Receipt:
        # Out of gas burns the whole allowance
        gas_used = submission.gas if isinstance(exc, OutOfGas) else intrinsic + machine.gas_used
        return self._rejected(
            tx_id,
            _reason_for(exc),
            str(exc),
            block_number=block_number,
            gas_used=gas_used,
            error=exc.error if isinstance(exc, Revert) else None,
        )

    def _rejected(self, tx_id: str, reason: RejectReason, detail: str,
                  block_number: Optional[int] = None, gas_used: int = 0,
                  error: Optional[str] = None) -> Receipt:
        logger.debug("Transaction %s rejected: %s (%s)", tx_id, reason.value, detail)
        return Receipt(
            tx_id=tx_id,
            status=TxStatus.REJECTED,
            block_number=block_number,
            gas_used=gas_used,
            reason=reason,
            error=error,
            detail=detail,
        )

    # =========================================================================
    # Background producer
    # =========================================================================

    def start(self, block_time: float):
        """Produce a block every block_time seconds on a daemon thread."""
        if self._producer is not None:
            return
        self._stop.clear()
        self._producer = threading.Thread(
            target=self._produce, args=(block_time,), name="ledger-producer", daemon=True
        )
        self._producer.start()
        logger.info("Block producer started (block time %.3fs)", block_time)

    def stop(self):
        """Stop the background producer, if running."""
        if self._producer is None:
            return
        self._stop.set()
        self._producer.join()
        self._producer = None
        logger.info("Block producer stopped at height %d", self.chain.height)

    def _produce(self, block_time: float):
        while not self._stop.wait(block_time):
            self.mine()


def encoded_size(values: List[Any]) -> int:
    """Size in bytes of the canonical argument encoding."""
    return len(json.dumps(values, separators=(',', ':'), default=str).encode("utf-8"))


def intrinsic_gas(payload_size: int, creation: bool = False) -> int:
    """Gas charged before any code runs."""
    gas = TX_BASE_GAS + PAYLOAD_BYTE_GAS * payload_size
    if creation:
        gas += CREATE_GAS
    return gas
