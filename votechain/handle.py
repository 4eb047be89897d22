"""
Transaction handles: the pending/confirmed/rejected lifecycle of a submission.
"""

import logging
import threading
from typing import Any, Callable, List, Optional

from .chain.ledger import Receipt, TxStatus
from .errors import OutcomeUnknown


logger = logging.getLogger(__name__)


class TransactionHandle:
    """
    Future-like handle returned for every submitted transaction.

    Starts PENDING and moves to CONFIRMED or REJECTED exactly once. Each
    callback registered with add_done_callback() runs exactly once with the
    handle as its only argument: on resolution, or immediately if the
    handle is already resolved.
    """

    def __init__(self, tx_id: str, operation: Optional[str] = None, args: tuple = (),
                 map_error: Optional[Callable[[Receipt], Exception]] = None):
        self.tx_id = tx_id
        self.operation = operation
        self.args = tuple(args)
        self._map_error = map_error
        self._status = TxStatus.PENDING
        self._receipt: Optional[Receipt] = None
        self._error: Optional[Exception] = None
        self._callbacks: List[Callable[['TransactionHandle'], Any]] = []
        self._lock = threading.Lock()
        self._resolver: Optional[threading.Thread] = None
        # Set once the receipt is recorded and every callback has returned
        self._settled = threading.Event()

    def __repr__(self):
        return f"<TransactionHandle {self.tx_id[:12]}… {self._status.value}>"

    # =========================================================================
    # State
    # =========================================================================

    @property
    def status(self) -> TxStatus:
        return self._status

    @property
    def receipt(self) -> Optional[Receipt]:
        return self._receipt

    @property
    def error(self) -> Optional[Exception]:
        """The mapped failure once REJECTED, else None."""
        return self._error

    def done(self) -> bool:
        return self._status != TxStatus.PENDING

    # =========================================================================
    # Completion
    # =========================================================================

    def add_done_callback(self, fn: Callable[['TransactionHandle'], Any]):
        with self._lock:
            if self._status == TxStatus.PENDING:
                self._callbacks.append(fn)
                return
        self._invoke(fn)

    def resolve(self, receipt: Receipt) -> bool:
        """
        Move to the receipt's terminal state.

        Returns False (and changes nothing) if the receipt is still pending
        or the handle was already resolved.
        """
        if receipt.status == TxStatus.PENDING:
            return False
        with self._lock:
            if self._status != TxStatus.PENDING:
                return False
            self._receipt = receipt
            if receipt.status == TxStatus.REJECTED and self._map_error is not None:
                self._error = self._map_error(receipt)
            self._status = receipt.status
            self._resolver = threading.current_thread()
            callbacks, self._callbacks = self._callbacks, []

        logger.debug("Transaction %s %s", self.tx_id, self._status.value)
        try:
            for fn in callbacks:
                self._invoke(fn)
        finally:
            self._settled.set()
        return True

    def _invoke(self, fn):
        try:
            fn(self)
        except Exception:
            logger.exception("Exception calling completion callback for %r", self)

    def wait(self, timeout: Optional[float] = None) -> Receipt:
        """
        Block until resolved and return the receipt.

        Completion callbacks registered before resolution have returned by
        the time this does, except when called from one of those callbacks.

        Raises OutcomeUnknown if timeout expires first; the transaction may
        still land afterwards.
        """
        if self._resolver is threading.current_thread():
            return self._receipt
        if not self._settled.wait(timeout):
            raise OutcomeUnknown(f"Transaction {self.tx_id} still pending after {timeout}s")
        return self._receipt

    def result(self, timeout: Optional[float] = None) -> Any:
        """Wait, then return the call's return value or raise its mapped error."""
        receipt = self.wait(timeout)
        if self._error is not None:
            raise self._error
        return receipt.return_value
