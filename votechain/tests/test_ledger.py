"""Tests for the in-process execution ledger and its chain."""

import threading
import time

import pytest

from tallyc import encode_program
from tallyc.codegen import MAGIC
from votechain.chain import (
    Chain, CallFailed, Ledger, NoContractError, RejectReason, TxStatus,
    UnknownTransaction, contract_address, derive_account, hash_data,
)
from votechain.chain.ledger import encoded_size, intrinsic_gas

from .conftest import CANDIDATES, DEPLOY_GAS, FakeClock


def deploy_now(ledger, artifact, sender, candidates=CANDIDATES, gas=DEPLOY_GAS):
    tx_id = ledger.submit_deployment(artifact.bytecode, [candidates], sender, gas)
    ledger.mine()
    return ledger.status(tx_id)


class TestPrimitives:
    """Hashing and derivation."""

    def test_hash_is_order_independent(self):
        assert hash_data({"a": 1, "b": 2}) == hash_data({"b": 2, "a": 1})

    def test_accounts_are_deterministic(self):
        assert derive_account("seed", 0) == derive_account("seed", 0)
        assert derive_account("seed", 0) != derive_account("seed", 1)
        assert derive_account("seed", 0).startswith("0x")
        assert len(derive_account("seed", 0)) == 42

    def test_contract_address_depends_on_nonce(self):
        sender = derive_account("seed", 0)
        assert contract_address(sender, 0) != contract_address(sender, 1)


class TestChain:
    """Block linkage."""

    def test_genesis(self):
        chain = Chain(100.0)
        assert chain.height == 0
        assert chain.head.previous_hash == "0x" + "0" * 64

    def test_append_links_blocks(self):
        chain = Chain(100.0)
        genesis = chain.head
        block = chain.append(["0xabc"], 21000, 101.0)
        assert block.number == 1
        assert block.previous_hash == genesis.block_hash
        assert chain.head is block
        assert block.block_hash == block.compute_hash()

    def test_hash_covers_transactions(self):
        chain = Chain(100.0)
        block = chain.append(["0xabc"], 21000, 101.0)
        block.transactions.append("0xforged")
        assert block.block_hash != block.compute_hash()


class TestDeployment:
    """Construction transactions."""

    def test_pending_until_mined(self, ledger, artifact, accounts):
        tx_id = ledger.submit_deployment(artifact.bytecode, [CANDIDATES], accounts[0], DEPLOY_GAS)
        receipt = ledger.status(tx_id)
        assert receipt.status == TxStatus.PENDING
        assert receipt.pending
        assert ledger.pending_count() == 1

    def test_confirmed(self, ledger, artifact, accounts):
        receipt = deploy_now(ledger, artifact, accounts[0])
        assert receipt.status == TxStatus.CONFIRMED
        assert receipt.block_number == 1
        assert receipt.contract_address == contract_address(accounts[0], 0)
        assert ledger.has_code(receipt.contract_address)
        assert receipt.tx_id in ledger.chain.head.transactions

    def test_constructor_revert(self, ledger, artifact, accounts):
        receipt = deploy_now(ledger, artifact, accounts[0], candidates=[])
        assert receipt.status == TxStatus.REJECTED
        assert receipt.reason == RejectReason.REVERTED
        assert receipt.error == "EmptyCandidateList"
        assert not ledger.has_code(contract_address(accounts[0], 0))

    def test_unknown_sender(self, ledger, artifact):
        receipt = deploy_now(ledger, artifact, "0x" + "1" * 40)
        assert receipt.reason == RejectReason.UNKNOWN_SENDER
        assert receipt.block_number is None

    def test_intrinsic_gas_too_low(self, ledger, artifact, accounts):
        receipt = deploy_now(ledger, artifact, accounts[0], gas=21_000)
        assert receipt.reason == RejectReason.INTRINSIC_GAS_TOO_LOW

    def test_exceeds_block_gas_limit(self, ledger, artifact, accounts):
        receipt = deploy_now(ledger, artifact, accounts[0], gas=ledger.block_gas_limit + 1)
        assert receipt.reason == RejectReason.EXCEEDS_BLOCK_GAS_LIMIT

    def test_out_of_gas_burns_allowance(self, ledger, artifact, accounts):
        size = len(artifact.bytecode) + encoded_size([CANDIDATES])
        gas = intrinsic_gas(size, creation=True) + 10
        receipt = deploy_now(ledger, artifact, accounts[0], gas=gas)
        assert receipt.reason == RejectReason.OUT_OF_GAS
        assert receipt.gas_used == gas
        assert receipt.block_number == 1

    def test_invalid_bytecode(self, ledger, accounts):
        tx_id = ledger.submit_deployment(b"\x60\x60\x60", [], accounts[0], DEPLOY_GAS)
        ledger.mine()
        assert ledger.status(tx_id).reason == RejectReason.INVALID_BYTECODE

    def test_header_without_program_does_not_wedge_pool(self, ledger, artifact, accounts):
        payload = MAGIC + b'{"format":1}'
        first = ledger.submit_deployment(payload, [], accounts[0], DEPLOY_GAS)
        second = ledger.submit_deployment(payload, [], accounts[1], DEPLOY_GAS)
        ledger.mine()
        for tx_id in (first, second):
            assert ledger.status(tx_id).status == TxStatus.REJECTED
            assert ledger.status(tx_id).reason == RejectReason.INVALID_BYTECODE
        assert ledger.pending_count() == 0

        assert deploy_now(ledger, artifact, accounts[2]).status == TxStatus.CONFIRMED

    @pytest.mark.parametrize("code", [
        [["POP", None]],
        [["SLOAD", "missing"], ["STOP", None]],
        [["PUSH", 1], ["INDEX", None]],
        [["JUMP", "start"]],
    ])
    def test_faulting_constructor_is_rejected(self, ledger, accounts, code):
        program = {
            "format": 1, "contract": "Broken", "storage": [], "errors": [],
            "constructor": {"params": [], "code": code},
            "functions": {},
        }
        tx_id = ledger.submit_deployment(encode_program(program), [], accounts[0], DEPLOY_GAS)
        ledger.mine()
        receipt = ledger.status(tx_id)
        assert receipt.status == TxStatus.REJECTED
        assert receipt.reason == RejectReason.FAULT
        assert ledger.pending_count() == 0

    def test_unknown_transaction(self, ledger):
        with pytest.raises(UnknownTransaction):
            ledger.status("0xdeadbeef")


@pytest.fixture
def address(ledger, artifact, accounts):
    return deploy_now(ledger, artifact, accounts[0]).contract_address


class TestCallsAndTransactions:
    """Read-only calls and state-mutating transactions."""

    def test_call_reads_confirmed_state(self, ledger, address):
        assert ledger.call(address, "totalVotesFor", ["Rama"]) == 0

    def test_call_without_contract(self, ledger):
        with pytest.raises(NoContractError):
            ledger.call("0x" + "2" * 40, "totalVotesFor", ["Rama"])

    def test_call_revert(self, ledger, address):
        with pytest.raises(CallFailed) as exc_info:
            ledger.call(address, "totalVotesFor", ["Zed"])
        assert exc_info.value.reason == RejectReason.REVERTED
        assert exc_info.value.error == "UnknownCandidate"

    def test_call_cannot_mutate(self, ledger, address):
        with pytest.raises(CallFailed) as exc_info:
            ledger.call(address, "vote", ["Rama"])
        assert exc_info.value.reason == RejectReason.STATIC_WRITE

    def test_transaction_applies_on_mine(self, ledger, address, accounts):
        tx_id = ledger.submit_transaction(address, "vote", ["Rama"], accounts[1], 200_000)
        assert ledger.call(address, "totalVotesFor", ["Rama"]) == 0
        ledger.mine()
        assert ledger.status(tx_id).status == TxStatus.CONFIRMED
        assert ledger.call(address, "totalVotesFor", ["Rama"]) == 1

    def test_failed_transaction_changes_nothing(self, ledger, address, accounts):
        tx_id = ledger.submit_transaction(address, "vote", ["Zed"], accounts[1], 200_000)
        ledger.mine()
        receipt = ledger.status(tx_id)
        assert receipt.status == TxStatus.REJECTED
        assert receipt.error == "UnknownCandidate"
        assert ledger.call(address, "candidateList", []) == CANDIDATES

    def test_transaction_to_missing_contract(self, ledger, accounts):
        tx_id = ledger.submit_transaction("0x" + "3" * 40, "vote", ["Rama"], accounts[0], 200_000)
        ledger.mine()
        assert ledger.status(tx_id).reason == RejectReason.NO_CONTRACT

    def test_estimate(self, ledger, address, accounts):
        gas = ledger.estimate(address, "vote", ["Rama"], accounts[0])
        assert 21_000 < gas < 200_000
        assert ledger.call(address, "totalVotesFor", ["Rama"]) == 0

    def test_estimate_revert(self, ledger, address, accounts):
        with pytest.raises(CallFailed) as exc_info:
            ledger.estimate(address, "vote", ["Zed"], accounts[0])
        assert exc_info.value.error == "UnknownCandidate"

    def test_estimate_unknown_sender(self, ledger, address):
        with pytest.raises(CallFailed) as exc_info:
            ledger.estimate(address, "vote", ["Rama"], "0x" + "4" * 40)
        assert exc_info.value.reason == RejectReason.UNKNOWN_SENDER

    def test_fifo_order(self, ledger, address, accounts):
        ids = [
            ledger.submit_transaction(address, "vote", ["Nick"], accounts[i], 200_000)
            for i in range(3)
        ]
        block = ledger.mine()
        assert block.transactions == ids


class TestBlockProduction:
    """Gas packing, listeners and the background producer."""

    def test_block_gas_limit_defers_transactions(self, artifact):
        ledger = Ledger(block_gas_limit=500_000, clock=FakeClock())
        deploy_now(ledger, artifact, ledger.accounts[0], gas=400_000)
        address = contract_address(ledger.accounts[0], 0)
        ids = [
            ledger.submit_transaction(address, "vote", ["Rama"], ledger.accounts[i], 200_000)
            for i in range(3)
        ]
        first = ledger.mine()
        assert first.transactions == ids[:2]
        assert ledger.status(ids[2]).pending
        second = ledger.mine()
        assert second.transactions == ids[2:]
        assert ledger.call(address, "totalVotesFor", ["Rama"]) == 3

    def test_empty_block(self, ledger):
        block = ledger.mine()
        assert block.transactions == []
        assert ledger.chain.height == 1

    def test_listener_receives_receipts(self, ledger, artifact, accounts):
        seen = []
        ledger.subscribe(lambda block, receipts: seen.append((block.number, receipts)))
        receipt = deploy_now(ledger, artifact, accounts[0])
        ((number, receipts),) = seen
        assert number == 1
        assert [r.tx_id for r in receipts] == [receipt.tx_id]

    def test_unsubscribe(self, ledger):
        seen = []
        listener = lambda block, receipts: seen.append(block)  # noqa: E731
        ledger.subscribe(listener)
        ledger.unsubscribe(listener)
        ledger.mine()
        assert seen == []

    def test_background_producer(self, artifact):
        ledger = Ledger(accounts=2)
        mined = threading.Event()
        ledger.subscribe(lambda block, receipts: receipts and mined.set())
        ledger.start(0.01)
        try:
            ledger.submit_deployment(artifact.bytecode, [CANDIDATES], ledger.accounts[0], DEPLOY_GAS)
            assert mined.wait(5)
        finally:
            ledger.stop()
        height = ledger.chain.height
        time.sleep(0.05)
        assert ledger.chain.height == height

    def test_hand_written_program(self, ledger, accounts):
        program = {
            "format": 1, "contract": "Empty", "storage": [], "errors": [],
            "constructor": {"params": [], "code": [["STOP", None]]},
            "functions": {},
        }
        tx_id = ledger.submit_deployment(encode_program(program), [], accounts[0], DEPLOY_GAS)
        ledger.mine()
        assert ledger.status(tx_id).status == TxStatus.CONFIRMED
