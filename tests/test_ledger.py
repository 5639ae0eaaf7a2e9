"""
Host ledger tests: serialization, rollback, logical clock, receipt chain.
"""

import threading

import pytest

from reliefchain.errors import ErrorCode, RegistryFault
from reliefchain.hardening import InvariantViolation
from reliefchain.ledger import Ledger, LogicalClock, Receipt
from reliefchain.registry import SupplyRegistry
from reliefchain.verification import OrganizationRegistry


class Counter:
    """Minimal snapshottable state."""

    def __init__(self):
        self.value = 0
        self.commits = 0

    def snapshot(self):
        return self.value

    def restore(self, saved):
        self.value = saved

    def commit(self, saved):
        self.commits += 1


class TestLogicalClock:
    """Tests for LogicalClock."""

    def test_tick(self):
        clock = LogicalClock(100)
        assert clock.now() == 100
        assert clock.tick() == 101
        assert clock.now() == 101

    def test_advance(self):
        clock = LogicalClock(0)
        assert clock.advance(25) == 25

    def test_cannot_go_backwards(self):
        clock = LogicalClock(10)
        with pytest.raises(InvariantViolation):
            clock.advance(-1)
        assert clock.now() == 10

    def test_negative_genesis_rejected(self):
        with pytest.raises(InvariantViolation):
            LogicalClock(-1)


class TestExecute:
    """Tests for Ledger.execute."""

    def test_commit_returns_value_and_ticks(self):
        ledger = Ledger(genesis_height=100)
        state = Counter()

        def body():
            state.value += 1
            return state.value

        response = ledger.execute("alice", "increment", state, body)
        assert response.ok and response.value == 1
        assert ledger.now() == 101
        assert state.commits == 1

    def test_fault_restores_state(self):
        ledger = Ledger(genesis_height=100)
        state = Counter()

        def body():
            state.value = 42
            raise RegistryFault(ErrorCode.NOT_OWNER, "nope")

        response = ledger.execute("alice", "set", state, body)
        assert not response.ok
        assert response.error == ErrorCode.NOT_OWNER
        assert state.value == 0
        assert ledger.now() == 100
        assert state.commits == 0

    def test_other_exceptions_propagate_after_rollback(self):
        ledger = Ledger(genesis_height=0)
        state = Counter()

        def body():
            state.value = 7
            raise KeyError("boom")

        with pytest.raises(KeyError):
            ledger.execute("alice", "explode", state, body)
        assert state.value == 0
        assert ledger.now() == 0
        assert ledger.receipts() == []

    def test_default_genesis_is_100(self):
        assert Ledger().now() == 100

    def test_calls_are_serialized(self):
        ledger = Ledger(genesis_height=0)
        state = Counter()

        def body():
            current = state.value
            # Yield to other threads between read and write.
            threading.Event().wait(0.001)
            state.value = current + 1
            return state.value

        threads = [
            threading.Thread(target=lambda: ledger.execute("t", "inc", state, body))
            for _ in range(20)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert state.value == 20
        assert ledger.now() == 20


class TestReceipts:
    """Tests for the hash-chained receipt log."""

    def _ledger_with_history(self):
        ledger = Ledger(genesis_height=100)
        state = Counter()
        ledger.execute("alice", "ok", state, lambda: 1)

        def fail():
            raise RegistryFault(ErrorCode.PAUSED)

        ledger.execute("bob", "fail", state, fail)
        ledger.execute("alice", "ok", state, lambda: 2)
        return ledger

    def test_every_call_leaves_a_receipt(self):
        ledger = self._ledger_with_history()
        receipts = ledger.receipts()
        assert [r.sequence for r in receipts] == [1, 2, 3]
        assert [r.ok for r in receipts] == [True, False, True]
        assert receipts[1].error == "PAUSED"
        assert [r.height for r in receipts] == [100, 101, 101]

    def test_receipts_chain(self):
        receipts = self._ledger_with_history().receipts()
        assert receipts[0].previous_digest is None
        assert receipts[1].previous_digest == receipts[0].digest
        assert receipts[2].previous_digest == receipts[1].digest

    def test_filters(self):
        ledger = self._ledger_with_history()
        assert len(ledger.receipts(caller="alice")) == 2
        assert len(ledger.receipts(operation="fail")) == 1
        assert ledger.receipts(limit=1)[0].sequence == 3
        assert ledger.last_receipt.sequence == 3

    def test_verify_chain(self):
        ledger = self._ledger_with_history()
        assert ledger.verify_chain() == (True, None)

    def test_tampering_detected(self):
        ledger = self._ledger_with_history()
        ledger._receipts[1].caller = "mallory"
        assert ledger.verify_chain() == (False, 1)

    def test_receipt_to_dict(self):
        receipt = Receipt(sequence=1, height=100, caller="a", operation="op", ok=True, value=3)
        d = receipt.to_dict()
        assert d["digest"] == receipt.compute_digest()
        assert d["value"] == 3

    def test_registry_calls_produce_receipts(self):
        ledger = Ledger(genesis_height=100)
        registry = SupplyRegistry("deployer", ledger=ledger, verifier=OrganizationRegistry("deployer", ["org"]))
        registry.mint("org", "org", "u", "food", 1)
        registry.pause("org")

        mint_receipt, pause_receipt = ledger.receipts()
        assert mint_receipt.operation == "mint"
        assert mint_receipt.value == 1
        assert pause_receipt.operation == "pause"
        assert pause_receipt.error == "NOT_ADMIN"
        assert ledger.verify_chain() == (True, None)
