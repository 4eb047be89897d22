"""
Explicit client handle for the ledger endpoint.

Every component that talks to the ledger (deployment, proxies) receives a
LedgerClient. The client is opened once at process start and closed at
shutdown; calls on a closed client raise ClientClosed.
"""

import logging
from typing import Any, Dict, List

from .chain.ledger import Ledger, NoContractError, Receipt, TxStatus
from .chain.primitives import Block
from .errors import ClientClosed, NotYetAvailable
from .handle import TransactionHandle


logger = logging.getLogger(__name__)


class LedgerClient:
    """Connection to one ledger, resolving watched handles on every block."""

    def __init__(self, ledger: Ledger):
        self.ledger = ledger
        self._open = False
        self._watched: Dict[str, TransactionHandle] = {}

    def __enter__(self) -> 'LedgerClient':
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self) -> 'LedgerClient':
        if not self._open:
            self.ledger.subscribe(self._on_block)
            self._open = True
        return self

    def close(self):
        """Stop receiving blocks. Handles still pending stay pending."""
        if self._open:
            self.ledger.unsubscribe(self._on_block)
            self._open = False
            if self._watched:
                logger.info("Client closed with %d transaction(s) unresolved", len(self._watched))
            self._watched.clear()

    def _check_open(self):
        if not self._open:
            raise ClientClosed("Ledger client is closed")

    # =========================================================================
    # Endpoint
    # =========================================================================

    def accounts(self) -> List[str]:
        self._check_open()
        return self.ledger.accounts

    def submit_deployment(self, bytecode: bytes, args: List[Any], sender: str, gas: int) -> str:
        self._check_open()
        return self.ledger.submit_deployment(bytecode, args, sender, gas)

    def submit_transaction(self, address: str, function: str, args: List[Any],
                           sender: str, gas: int) -> str:
        self._check_open()
        return self.ledger.submit_transaction(address, function, args, sender, gas)

    def status(self, tx_id: str) -> Receipt:
        self._check_open()
        return self.ledger.status(tx_id)

    def call(self, address: str, function: str, args: List[Any]) -> Any:
        """Read-only call; NotYetAvailable while nothing is deployed at address."""
        self._check_open()
        try:
            return self.ledger.call(address, function, args)
        except NoContractError as e:
            raise NotYetAvailable(address) from e

    def estimate(self, address: str, function: str, args: List[Any], sender: str) -> int:
        self._check_open()
        try:
            return self.ledger.estimate(address, function, args, sender)
        except NoContractError as e:
            raise NotYetAvailable(address) from e

    # =========================================================================
    # Handles
    # =========================================================================

    def watch(self, handle: TransactionHandle) -> TransactionHandle:
        """Resolve handle when a block settles its transaction."""
        self._check_open()
        self._watched[handle.tx_id] = handle
        # The block may have been sealed before we started watching
        receipt = self.ledger.status(handle.tx_id)
        if receipt.status != TxStatus.PENDING:
            self._watched.pop(handle.tx_id, None)
            handle.resolve(receipt)
        return handle

    def _on_block(self, block: Block, receipts: List[Receipt]):
        for receipt in receipts:
            handle = self._watched.pop(receipt.tx_id, None)
            if handle is not None:
                handle.resolve(receipt)
