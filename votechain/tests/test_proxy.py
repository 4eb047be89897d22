"""Tests for the remote proxy and its dispatch table."""

import pytest

from votechain.chain import RejectReason, TxStatus, contract_address
from votechain.client import LedgerClient
from votechain.descriptor import Descriptor
from votechain.errors import (
    InvocationError, NotYetAvailable, UnknownCandidate, UnknownOperation,
)
from votechain.proxy import OperationKind, bind, map_failure

from .conftest import CANDIDATES


class TestDispatchTable:
    """Binding builds a typed table from the descriptor."""

    def test_operations(self, proxy):
        kinds = {name: op.kind for name, op in proxy.operations.items()}
        assert kinds == {
            "totalVotesFor": OperationKind.READ_ONLY,
            "vote": OperationKind.MUTATING,
            "validCandidate": OperationKind.READ_ONLY,
            "candidateList": OperationKind.READ_ONLY,
        }

    def test_constructor_not_exposed(self, proxy):
        with pytest.raises(UnknownOperation):
            proxy.operation("constructor")

    def test_unknown_operation(self, proxy):
        with pytest.raises(UnknownOperation, match="voteForCandidate"):
            proxy.operation("voteForCandidate")
        with pytest.raises(LookupError):
            proxy["voteForCandidate"]

    def test_bind_does_not_contact_ledger(self, descriptor, ledger):
        closed = LedgerClient(ledger)
        proxy = bind(descriptor, closed)
        assert proxy.address == descriptor.address
        assert set(proxy.operations) == {"totalVotesFor", "vote", "validCandidate", "candidateList"}

    def test_operations_is_a_copy(self, proxy):
        proxy.operations.clear()
        assert "vote" in proxy.operations


class TestReadOnly:
    """call() against confirmed state."""

    def test_initial_counts(self, proxy):
        assert [proxy.call("totalVotesFor", name) for name in CANDIDATES] == [0, 0, 0]

    def test_getters(self, proxy):
        assert proxy.call("candidateList") == CANDIDATES
        assert proxy.call("validCandidate", "Nick") is True
        assert proxy.call("validCandidate", "Zed") is False

    def test_bound_callable(self, proxy):
        assert proxy["totalVotesFor"]("Rama") == 0

    def test_unknown_candidate(self, proxy):
        with pytest.raises(UnknownCandidate) as exc_info:
            proxy.call("totalVotesFor", "Zed")
        assert exc_info.value.candidate == "Zed"
        assert isinstance(exc_info.value, InvocationError)

    def test_call_on_mutating_operation(self, proxy, ledger):
        with pytest.raises(InvocationError, match="use invoke"):
            proxy.call("vote", "Rama")
        assert ledger.pending_count() == 0

    @pytest.mark.parametrize("args", [(), ("Rama", "Nick"), (42,), ("x" * 40,)])
    def test_bad_arguments(self, proxy, args):
        with pytest.raises(InvocationError) as exc_info:
            proxy.call("totalVotesFor", *args)
        assert exc_info.value.reason == RejectReason.INVALID_ARGUMENTS.value

    def test_no_read_your_writes(self, proxy, ledger, accounts):
        handle = proxy.invoke("vote", "Rama", sender=accounts[1])
        assert handle.status == TxStatus.PENDING
        assert proxy.call("totalVotesFor", "Rama") == 0
        ledger.mine()
        assert proxy.call("totalVotesFor", "Rama") == 1


class TestMutating:
    """invoke() returns a pending handle resolved by the ledger."""

    def test_invoke_confirms(self, proxy, ledger, accounts):
        handle = proxy.invoke("vote", "Nick", sender=accounts[0])
        assert not handle.done()
        ledger.mine()
        assert handle.status == TxStatus.CONFIRMED
        assert handle.receipt.block_number == ledger.chain.height
        assert handle.error is None

    def test_on_complete_runs_exactly_once(self, proxy, ledger, accounts):
        calls = []
        handle = proxy.invoke("vote", "Nick", sender=accounts[0], on_complete=calls.append)
        ledger.mine()
        ledger.mine()
        assert calls == [handle]

    def test_bound_callable(self, proxy, ledger, accounts):
        handle = proxy["vote"]("Claudius", sender=accounts[2])
        ledger.mine()
        assert handle.status == TxStatus.CONFIRMED

    def test_invoke_on_read_only(self, proxy, ledger, accounts):
        with pytest.raises(InvocationError, match="use call"):
            proxy.invoke("totalVotesFor", "Rama", sender=accounts[0])
        assert ledger.pending_count() == 0

    def test_preflight_rejects_locally(self, proxy, ledger, accounts):
        with pytest.raises(UnknownCandidate):
            proxy.invoke("vote", "Zed", sender=accounts[0])
        assert ledger.pending_count() == 0

    def test_remote_rejection_mapped_on_handle(self, proxy, ledger, accounts):
        calls = []
        handle = proxy.invoke("vote", "Zed", sender=accounts[0], preflight=False,
                              on_complete=calls.append)
        assert handle.status == TxStatus.PENDING
        ledger.mine()
        assert handle.status == TxStatus.REJECTED
        assert isinstance(handle.error, UnknownCandidate)
        assert handle.error.candidate == "Zed"
        assert calls == [handle]
        with pytest.raises(UnknownCandidate):
            handle.result()
        assert proxy.call("totalVotesFor", "Rama") == 0

    def test_gas_too_low_rejected(self, proxy, ledger, accounts):
        handle = proxy.invoke("vote", "Rama", sender=accounts[0], gas=21_100)
        ledger.mine()
        assert handle.status == TxStatus.REJECTED
        assert type(handle.error) is InvocationError
        assert handle.error.reason in {
            RejectReason.OUT_OF_GAS.value, RejectReason.INTRINSIC_GAS_TOO_LOW.value,
        }

    def test_unknown_sender_preflight(self, proxy, ledger):
        with pytest.raises(InvocationError) as exc_info:
            proxy.invoke("vote", "Rama", sender="0x" + "6" * 40)
        assert exc_info.value.reason == RejectReason.UNKNOWN_SENDER.value
        assert ledger.pending_count() == 0

    def test_bad_arguments_not_submitted(self, proxy, ledger, accounts):
        with pytest.raises(InvocationError):
            proxy.invoke("vote", 1, sender=accounts[0])
        assert ledger.pending_count() == 0


class TestNotYetAvailable:
    """A descriptor for a contract that is not deployed yet."""

    def test_read_and_preflight(self, artifact, client, accounts):
        proxy = bind(Descriptor(contract_address(accounts[5], 0), artifact.abi), client)
        with pytest.raises(NotYetAvailable):
            proxy.call("totalVotesFor", "Rama")
        with pytest.raises(NotYetAvailable):
            proxy.invoke("vote", "Rama", sender=accounts[5])


class TestMapFailure:
    """Ledger failures to binding errors."""

    def test_unknown_candidate(self):
        error = map_failure(RejectReason.REVERTED, "reverted: UnknownCandidate",
                            "UnknownCandidate", ("Zed",))
        assert isinstance(error, UnknownCandidate)
        assert error.candidate == "Zed"

    def test_other_revert(self):
        error = map_failure(RejectReason.REVERTED, "reverted: DuplicateCandidate",
                            "DuplicateCandidate")
        assert type(error) is InvocationError
        assert error.error == "DuplicateCandidate"
        assert error.reason == "reverted"

    def test_non_revert(self):
        error = map_failure(RejectReason.OUT_OF_GAS, "out of gas (limit 10)", None)
        assert str(error) == "out of gas (limit 10)"
        assert error.reason == "out_of_gas"
