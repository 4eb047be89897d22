"""Tests for transaction handles and the ledger client."""

import threading
import time

import pytest

from votechain.chain import Receipt, RejectReason, TxStatus
from votechain.client import LedgerClient
from votechain.errors import ClientClosed, InvocationError, NotYetAvailable, OutcomeUnknown
from votechain.handle import TransactionHandle

from .conftest import CANDIDATES, DEPLOY_GAS


def confirmed(tx_id="0x1", value=None):
    return Receipt(tx_id=tx_id, status=TxStatus.CONFIRMED, block_number=1, return_value=value)


def rejected(tx_id="0x1"):
    return Receipt(tx_id=tx_id, status=TxStatus.REJECTED, block_number=1,
                   reason=RejectReason.OUT_OF_GAS, detail="out of gas")


class TestTransactionHandle:
    """Future-like lifecycle."""

    def test_starts_pending(self):
        handle = TransactionHandle("0x1")
        assert handle.status == TxStatus.PENDING
        assert not handle.done()
        assert handle.receipt is None

    def test_resolve_confirmed(self):
        handle = TransactionHandle("0x1")
        assert handle.resolve(confirmed(value=5))
        assert handle.status == TxStatus.CONFIRMED
        assert handle.done()
        assert handle.result() == 5

    def test_resolve_is_exactly_once(self):
        handle = TransactionHandle("0x1")
        assert handle.resolve(confirmed())
        assert not handle.resolve(rejected())
        assert handle.status == TxStatus.CONFIRMED

    def test_pending_receipt_ignored(self):
        handle = TransactionHandle("0x1")
        assert not handle.resolve(Receipt(tx_id="0x1", status=TxStatus.PENDING))
        assert not handle.done()

    def test_callback_runs_once(self):
        handle = TransactionHandle("0x1")
        calls = []
        handle.add_done_callback(calls.append)
        handle.resolve(confirmed())
        handle.resolve(confirmed())
        assert calls == [handle]

    def test_callback_after_resolution_runs_immediately(self):
        handle = TransactionHandle("0x1")
        handle.resolve(confirmed())
        calls = []
        handle.add_done_callback(calls.append)
        assert calls == [handle]

    def test_rejection_maps_error(self):
        handle = TransactionHandle(
            "0x1", map_error=lambda receipt: InvocationError(receipt.detail, reason=receipt.reason.value)
        )
        handle.resolve(rejected())
        assert handle.status == TxStatus.REJECTED
        assert isinstance(handle.error, InvocationError)
        with pytest.raises(InvocationError, match="out of gas"):
            handle.result()

    def test_failing_callback_does_not_block_others(self, caplog):
        handle = TransactionHandle("0x1")
        calls = []

        def boom(_handle):
            raise RuntimeError("callback failed")

        handle.add_done_callback(boom)
        handle.add_done_callback(calls.append)
        handle.resolve(confirmed())
        assert calls == [handle]
        assert "Exception calling completion callback" in caplog.text

    def test_wait_timeout_is_outcome_unknown(self):
        handle = TransactionHandle("0x1")
        with pytest.raises(OutcomeUnknown):
            handle.wait(timeout=0.01)
        assert handle.status == TxStatus.PENDING

    def test_outcome_unknown_is_timeout(self):
        assert issubclass(OutcomeUnknown, TimeoutError)

    def test_wait_across_threads(self):
        handle = TransactionHandle("0x1")
        timer = threading.Timer(0.02, handle.resolve, args=(confirmed(),))
        timer.start()
        try:
            assert handle.wait(timeout=5).status == TxStatus.CONFIRMED
        finally:
            timer.join()

    def test_concurrent_resolution_delivers_once(self):
        handle = TransactionHandle("0x1")
        calls = []
        lock = threading.Lock()

        def record(h):
            with lock:
                calls.append(h)

        handle.add_done_callback(record)
        threads = [threading.Thread(target=handle.resolve, args=(confirmed(),)) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert calls == [handle]


class TestLedgerClient:
    """Explicit client lifecycle."""

    def test_context_manager(self, ledger):
        with LedgerClient(ledger) as client:
            assert client.is_open
            assert client.accounts() == ledger.accounts
        assert not client.is_open

    def test_closed_client_refuses_calls(self, ledger, artifact):
        client = LedgerClient(ledger)
        with pytest.raises(ClientClosed):
            client.accounts()
        client.open()
        client.close()
        with pytest.raises(ClientClosed):
            client.submit_deployment(artifact.bytecode, [CANDIDATES], ledger.accounts[0], DEPLOY_GAS)
        with pytest.raises(ClientClosed):
            client.status("0x1")

    def test_open_is_idempotent(self, ledger):
        client = LedgerClient(ledger)
        assert client.open() is client.open()
        client.close()
        client.close()

    def test_call_before_deployment(self, client):
        with pytest.raises(NotYetAvailable) as exc_info:
            client.call("0x" + "5" * 40, "totalVotesFor", ["Rama"])
        assert exc_info.value.address == "0x" + "5" * 40

    def test_watch_resolves_on_block(self, client, ledger, artifact, accounts):
        tx_id = client.submit_deployment(artifact.bytecode, [CANDIDATES], accounts[0], DEPLOY_GAS)
        handle = client.watch(TransactionHandle(tx_id))
        assert not handle.done()
        ledger.mine()
        assert handle.status == TxStatus.CONFIRMED

    def test_watch_after_block_resolves_immediately(self, client, ledger, artifact, accounts):
        tx_id = client.submit_deployment(artifact.bytecode, [CANDIDATES], accounts[0], DEPLOY_GAS)
        ledger.mine()
        handle = client.watch(TransactionHandle(tx_id))
        assert handle.status == TxStatus.CONFIRMED

    def test_closed_client_stops_resolving(self, ledger, artifact):
        client = LedgerClient(ledger).open()
        tx_id = client.submit_deployment(artifact.bytecode, [CANDIDATES], ledger.accounts[0], DEPLOY_GAS)
        handle = client.watch(TransactionHandle(tx_id))
        client.close()
        ledger.mine()
        assert not handle.done()


class TestCompletionOrdering:
    """wait() returns only after the completion reactions have run."""

    def test_reactions_finished_when_wait_returns(self):
        handle = TransactionHandle("0x1")
        finished = []

        def slow(h):
            time.sleep(0.2)
            finished.append(h)

        handle.add_done_callback(slow)
        resolver = threading.Thread(target=handle.resolve, args=(confirmed(),))
        resolver.start()
        try:
            # Terminal as soon as the receipt is recorded
            deadline = time.monotonic() + 5
            while not handle.done() and time.monotonic() < deadline:
                time.sleep(0.001)
            handle.wait(timeout=5)
            assert finished == [handle]
        finally:
            resolver.join()

    def test_wait_inside_reaction_does_not_block(self):
        handle = TransactionHandle("0x1")
        seen = []
        handle.add_done_callback(lambda h: seen.append(h.wait(timeout=1).status))
        handle.resolve(confirmed())
        assert seen == [TxStatus.CONFIRMED]
