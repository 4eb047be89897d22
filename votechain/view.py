"""
View reconciler: keeps a rendered tally board in step with the contract.

The board is only ever written from values read back from the ledger. A
confirmed vote triggers a fresh read of that candidate's counter rather
than a local increment, since other voters may have landed in between.
"""

import logging
from typing import Dict, Optional

from .errors import VotechainError
from .handle import TransactionHandle
from .proxy import Proxy


logger = logging.getLogger(__name__)

PLACEHOLDER = "0"
FAILED = "ERR"

# Candidate name -> display slot id
DEFAULT_SLOTS = {
    "Rama": "candidate-1",
    "Nick": "candidate-2",
    "Claudius": "candidate-3",
}


class TallyBoard:
    """In-memory display surface: slot id -> rendered text."""

    def __init__(self):
        self.slots: Dict[str, str] = {}

    def render(self, slot: str, text: str):
        self.slots[slot] = text

    def get(self, slot: str) -> Optional[str]:
        return self.slots.get(slot)


class ConsoleBoard(TallyBoard):
    """Display surface that also prints each update."""

    def __init__(self, labels: Optional[Dict[str, str]] = None):
        super().__init__()
        self.labels = labels or {}

    def render(self, slot: str, text: str):
        super().render(slot, text)
        print(f"{self.labels.get(slot, slot):<12} {text}")


class ViewReconciler:
    """Render totalVotesFor for every candidate and re-read after each vote."""

    def __init__(self, proxy: Proxy, display, slots: Dict[str, str] = None,
                 sender: Optional[str] = None):
        self.proxy = proxy
        self.display = display
        self.slots = dict(slots or DEFAULT_SLOTS)
        self.sender = sender
        self.failures: Dict[str, Exception] = {}

    def load(self):
        """Render placeholders, then the confirmed count for every candidate."""
        for slot in self.slots.values():
            self.display.render(slot, PLACEHOLDER)
        for candidate in self.slots:
            self.refresh(candidate)

    def refresh(self, candidate: str) -> Optional[int]:
        """Read one counter and render it, or render the failure marker."""
        slot = self.slots[candidate]
        try:
            count = self.proxy.call("totalVotesFor", candidate)
        except VotechainError as e:
            logger.warning("Could not read votes for %s: %s", candidate, e)
            self.failures[candidate] = e
            self.display.render(slot, FAILED)
            return None
        self.failures.pop(candidate, None)
        self.display.render(slot, str(count))
        return count

    def cast_vote(self, candidate: str, sender: Optional[str] = None,
                  gas: Optional[int] = None) -> TransactionHandle:
        """
        Vote for candidate; the slot is re-read once the vote settles.

        Failures before submission (unknown candidate, bad arguments, a
        contract not yet deployed, a closed client) are raised here after
        rendering the failure marker on a known slot.
        """
        sender = sender or self.sender
        try:
            return self.proxy.invoke("vote", candidate, sender=sender, gas=gas,
                                     on_complete=self._settled)
        except VotechainError as e:
            self._mark_failed(candidate, e)
            raise

    def _settled(self, handle: TransactionHandle):
        candidate = handle.args[0]
        if handle.error is not None:
            self._mark_failed(candidate, handle.error)
            return
        if candidate in self.slots:
            self.refresh(candidate)

    def _mark_failed(self, candidate: str, error: Exception):
        logger.warning("Vote for %s failed: %s", candidate, error)
        self.failures[candidate] = error
        slot = self.slots.get(candidate)
        if slot is not None:
            self.display.render(slot, FAILED)
