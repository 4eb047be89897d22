"""
Remote proxy: a typed binding to a deployed contract built from its descriptor.

bind() builds a dispatch table once, mapping every function in the ABI to
an Operation tagged READ_ONLY or MUTATING. Read-only operations go through
call() and return immediately from confirmed state. Mutating operations go
through invoke() and return a pending TransactionHandle whose completion
callbacks run exactly once.
"""

import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Callable, Dict, Mapping, Optional

from tallyc import AbiEntry, check_value, ValueTypeError

from .chain.ledger import CallFailed, Receipt, RejectReason
from .client import LedgerClient
from .descriptor import Descriptor
from .errors import InvocationError, UnknownCandidate, UnknownOperation
from .handle import TransactionHandle


logger = logging.getLogger(__name__)

DEFAULT_CALL_GAS = 200_000


class OperationKind(Enum):
    """How an operation reaches the ledger."""
    READ_ONLY = auto()    # Synchronous call, no transaction
    MUTATING = auto()     # Transaction, resolved asynchronously


@dataclass(frozen=True)
class Operation:
    """One entry of the dispatch table."""
    name: str
    kind: OperationKind
    entry: AbiEntry

    @property
    def read_only(self) -> bool:
        return self.kind == OperationKind.READ_ONLY


def map_failure(reason: Optional[RejectReason], detail: str, error: Optional[str],
                args: tuple = ()) -> InvocationError:
    """Translate a ledger failure into the binding's error types."""
    if reason == RejectReason.REVERTED and error == "UnknownCandidate":
        return UnknownCandidate(args[0] if args else None)
    reason_name = reason.value if reason is not None else None
    if error and error not in detail:
        detail = f"{detail} ({error})"
    return InvocationError(detail, reason=reason_name, error=error)


class Proxy:
    """Typed binding to the contract at descriptor.address."""

    def __init__(self, client: LedgerClient, descriptor: Descriptor,
                 default_gas: int = DEFAULT_CALL_GAS):
        self.client = client
        self.descriptor = descriptor
        self.default_gas = default_gas
        self._operations: Dict[str, Operation] = {}
        for entry in descriptor.abi:
            if entry.kind != "function":
                continue
            kind = OperationKind.READ_ONLY if entry.read_only else OperationKind.MUTATING
            self._operations[entry.name] = Operation(entry.name, kind, entry)

    def __repr__(self):
        return f"<Proxy {self.address} ({len(self._operations)} operations)>"

    @property
    def address(self) -> str:
        return self.descriptor.address

    @property
    def operations(self) -> Mapping[str, Operation]:
        return dict(self._operations)

    def operation(self, name: str) -> Operation:
        """Look up name in the dispatch table; UnknownOperation if absent."""
        try:
            return self._operations[name]
        except KeyError:
            raise UnknownOperation(f"No operation named {name!r} at {self.address}") from None

    def __getitem__(self, name: str) -> Callable[..., Any]:
        """Bound callable: proxy["totalVotesFor"]("Rama")."""
        op = self.operation(name)
        if op.read_only:
            return lambda *args: self.call(name, *args)
        return lambda *args, **kwargs: self.invoke(name, *args, **kwargs)

    def _check_args(self, op: Operation, args: tuple):
        inputs = op.entry.inputs
        if len(args) != len(inputs):
            raise InvocationError(
                f"{op.entry.signature} takes {len(inputs)} argument(s), got {len(args)}",
                reason=RejectReason.INVALID_ARGUMENTS.value,
            )
        for param, value in zip(inputs, args):
            try:
                check_value(param.type, value, param.name)
            except ValueTypeError as e:
                raise InvocationError(
                    f"{op.entry.signature}: {e}", reason=RejectReason.INVALID_ARGUMENTS.value
                ) from e

    # =========================================================================
    # Read-only
    # =========================================================================

    def call(self, name: str, *args) -> Any:
        """
        Run a read-only operation against the latest confirmed state.

        A transaction submitted moments earlier is not visible until it is
        confirmed.
        """
        op = self.operation(name)
        if not op.read_only:
            raise InvocationError(f"{name} is a mutating operation; use invoke()")
        self._check_args(op, args)
        try:
            return self.client.call(self.address, name, list(args))
        except CallFailed as e:
            raise map_failure(e.reason, e.detail, e.error, args) from e

    # =========================================================================
    # Mutating
    # =========================================================================

    def invoke(self, name: str, *args, sender: str, gas: Optional[int] = None,
               on_complete: Optional[Callable[[TransactionHandle], Any]] = None,
               preflight: bool = True) -> TransactionHandle:
        """
        Submit a mutating operation and return its pending handle.

        on_complete(handle) runs exactly once when the transaction is
        confirmed or rejected. With preflight, the call is first dry-run
        against confirmed state and a failure is raised here instead of
        spending a transaction; the ledger's verdict is still authoritative.
        """
        op = self.operation(name)
        if op.read_only:
            raise InvocationError(f"{name} is a read-only operation; use call()")
        self._check_args(op, args)

        if preflight:
            try:
                self.client.estimate(self.address, name, list(args), sender)
            except CallFailed as e:
                raise map_failure(e.reason, e.detail, e.error, args) from e

        tx_id = self.client.submit_transaction(
            self.address, name, list(args), sender, gas or self.default_gas
        )

        def to_error(receipt: Receipt) -> InvocationError:
            return map_failure(receipt.reason, receipt.detail, receipt.error, args)

        handle = TransactionHandle(tx_id, operation=name, args=args, map_error=to_error)
        if on_complete is not None:
            handle.add_done_callback(on_complete)
        logger.debug("Invoked %s%r as %s", name, args, tx_id)
        return self.client.watch(handle)


def bind(descriptor: Descriptor, client: LedgerClient, **kwargs) -> Proxy:
    """Build the proxy for descriptor. Does not contact the ledger."""
    return Proxy(client, descriptor, **kwargs)
