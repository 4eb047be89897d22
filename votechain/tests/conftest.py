"""
Pytest configuration for votechain tests.

Most tests drive the ledger by hand with ledger.mine() so that ordering is
deterministic; the few that exercise the background producer say so.
"""

import subprocess
import sys
from pathlib import Path

import pytest

from tallyc import produce_file
from votechain.chain import Ledger
from votechain.client import LedgerClient
from votechain.contracts import VOTING_CONTRACT
from votechain.deploy import deploy
from votechain.proxy import bind


CANDIDATES = ["Rama", "Nick", "Claudius"]
DEPLOY_GAS = 4_700_000

PROJECT_ROOT = Path(__file__).parent.parent.parent


class FakeClock:
    """Deterministic clock for the ledger."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        self.now += 1.0
        return self.now


@pytest.fixture(scope="session")
def artifact():
    return produce_file(VOTING_CONTRACT)


@pytest.fixture
def ledger():
    ledger = Ledger(accounts=10, clock=FakeClock())
    yield ledger
    ledger.stop()


@pytest.fixture
def client(ledger):
    with LedgerClient(ledger) as client:
        yield client


@pytest.fixture
def accounts(ledger):
    return ledger.accounts


@pytest.fixture
def mine_on_poll(ledger):
    """Sleep replacement for deploy(): produce a block instead of waiting."""
    return lambda _seconds: ledger.mine()


@pytest.fixture
def descriptor(client, artifact, accounts, mine_on_poll):
    return deploy(client, artifact, [CANDIDATES], accounts[0], DEPLOY_GAS, sleep=mine_on_poll)


@pytest.fixture
def proxy(descriptor, client):
    return bind(descriptor, client)


def run_cli(*args, cwd=None):
    """Run `python -m votechain ...` in a fresh interpreter."""
    return subprocess.run(
        [sys.executable, "-m", "votechain", *args],
        capture_output=True,
        text=True,
        cwd=cwd or PROJECT_ROOT,
        timeout=60,
    )
