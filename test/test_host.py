"""Unit tests for the execution host and event bus."""

from collections import OrderedDict
from dataclasses import replace
from unittest.mock import Mock

import pytest

from polymer_prover.config import HostConfig
from polymer_prover.errors import (
    DuplicateTransaction,
    InvalidInstruction,
    PayloadTooLarge,
    UnauthorizedCaller,
)
from polymer_prover.events import EventBus
from polymer_prover.host import ExecutionHost
from polymer_prover.transaction import Instruction, Transaction
from polymer_prover.utils.account_store import MemoryAccountStore, SqliteAccountStore

# order of the secp256k1 group
SECP256K1_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141


class RecordingProgram:
    """Writes one account and queues one event, optionally failing afterwards."""

    program_id = "recorder"

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.contexts = []

    def process(self, ctx, instruction):
        self.contexts.append(ctx)
        ctx.accounts.put(b"written", instruction.name.encode())
        ctx.emit(f"event:{instruction.name}")
        if self.fail:
            raise RuntimeError("program failed")
        return "ok"


def _signed(account, name="touch", args=(), program_id="recorder"):
    instruction = Instruction(program_id=program_id, name=name, owner=account.address, args=args)
    return Transaction.sign(instruction, account)


def _malleated(signature: bytes) -> bytes:
    """The other (r, s, v) that recovers the same signer."""
    r, s, v = signature[:32], int.from_bytes(signature[32:64], "big"), signature[64]
    return r + (SECP256K1_N - s).to_bytes(32, "big") + bytes([55 - v])


class TestExecutionHost:
    """Test suite for transaction routing and atomicity."""

    def test_signers_are_recovered(self, alice):
        """Test that the program sees the recovered signer."""
        host = ExecutionHost()
        program = RecordingProgram()
        host.register(program)

        assert host.send_transaction(_signed(alice)) == "ok"

        ctx = program.contexts[0]
        assert ctx.signers == frozenset({alice.address})
        assert ctx.is_signer(alice.address)
        assert ctx.issuer is host
        assert host.get_account(b"written") == b"touch"

    def test_failure_discards_writes_and_events(self, alice):
        """Test that a failing program leaves no writes and publishes nothing."""
        host = ExecutionHost()
        host.register(RecordingProgram(fail=True))
        received = []
        host.events.subscribe(received.append)

        with pytest.raises(RuntimeError):
            host.send_transaction(_signed(alice))

        assert host.get_account(b"written") is None
        assert received == []
        assert not host.processed_txs

    def test_events_published_after_commit(self, alice):
        """Test that queued events reach subscribers once committed."""
        host = ExecutionHost()
        host.register(RecordingProgram())
        received = []
        host.events.subscribe(received.append)

        host.send_transaction(_signed(alice, name="ping"))

        assert received == ["event:ping"]

    def test_duplicate_transaction(self, alice):
        """Test that a replayed transaction is rejected."""
        host = ExecutionHost()
        host.register(RecordingProgram())
        tx = _signed(alice)
        host.send_transaction(tx)

        with pytest.raises(DuplicateTransaction):
            host.send_transaction(tx)

    def test_malleated_signature_is_a_duplicate(self, alice):
        """Test that re-encoding the signature does not make a replay look new."""
        host = ExecutionHost()
        program = RecordingProgram()
        host.register(program)
        tx = _signed(alice)
        host.send_transaction(tx)
        malleated = replace(tx, signatures=(_malleated(tx.signatures[0]),))

        with pytest.raises(DuplicateTransaction):
            host.send_transaction(malleated)

        assert malleated.tx_id == tx.tx_id
        assert len(program.contexts) == 1

    def test_reordered_signatures_are_a_duplicate(self, alice, bob):
        """Test that the signature order does not change the transaction id."""
        host = ExecutionHost()
        program = RecordingProgram()
        host.register(program)
        instruction = Instruction(program_id="recorder", name="touch", owner=alice.address)
        tx = Transaction.sign(instruction, alice, bob)
        host.send_transaction(tx)

        with pytest.raises(DuplicateTransaction):
            host.send_transaction(replace(tx, signatures=tx.signatures[::-1]))

        assert len(program.contexts) == 1

    def test_replay_rejected_after_restart(self, alice, tmp_path):
        """Test that processed transactions survive reopening the SQLite store."""
        path = tmp_path / "accounts.db"
        tx = _signed(alice)
        first = ExecutionHost(store=SqliteAccountStore(path))
        first.register(RecordingProgram())
        first.send_transaction(tx)
        first.store.close()

        second = ExecutionHost(store=SqliteAccountStore(path))
        program = RecordingProgram()
        second.register(program)
        try:
            with pytest.raises(DuplicateTransaction):
                second.send_transaction(tx)
            assert program.contexts == []
        finally:
            second.store.close()

    def test_replay_rejected_by_new_host_on_shared_store(self, alice):
        """Test that the replay check reads the store, not only the in-memory window."""
        store = MemoryAccountStore()
        tx = _signed(alice)
        first = ExecutionHost(store=store)
        first.register(RecordingProgram())
        first.send_transaction(tx)

        second = ExecutionHost(store=store)
        second.register(RecordingProgram())

        assert not second.processed_txs
        with pytest.raises(DuplicateTransaction):
            second.send_transaction(tx)

    def test_payload_too_large(self, alice):
        """Test that oversized transactions are rejected before execution."""
        host = ExecutionHost(config=HostConfig(max_transaction_size=200))
        program = RecordingProgram()
        host.register(program)

        with pytest.raises(PayloadTooLarge):
            host.send_transaction(_signed(alice, args=(b"\x00" * 300,)))

        assert program.contexts == []

    def test_unsigned_transaction(self, alice):
        """Test that a transaction without signatures is rejected."""
        host = ExecutionHost()
        host.register(RecordingProgram())
        tx = replace(_signed(alice), signatures=())

        with pytest.raises(UnauthorizedCaller):
            host.send_transaction(tx)

    def test_corrupt_signature(self, alice):
        """Test that an unrecoverable signature is rejected."""
        host = ExecutionHost()
        host.register(RecordingProgram())
        tx = replace(_signed(alice), signatures=(b"\x00" * 65,))

        with pytest.raises(UnauthorizedCaller):
            host.send_transaction(tx)

    def test_tampered_instruction_changes_signer(self, alice):
        """Test that a signature does not authorize a modified instruction."""
        host = ExecutionHost()
        program = RecordingProgram()
        host.register(program)
        tx = _signed(alice)
        tampered = replace(tx, instruction=replace(tx.instruction, name="other"))

        host.send_transaction(tampered)

        assert alice.address not in program.contexts[0].signers

    def test_unknown_program(self, alice):
        """Test that instructions for unregistered programs are rejected."""
        host = ExecutionHost()

        with pytest.raises(InvalidInstruction):
            host.send_transaction(_signed(alice, program_id="missing"))

    def test_register_twice(self):
        """Test that program ids are unique."""
        host = ExecutionHost()
        host.register(RecordingProgram())

        with pytest.raises(ValueError, match="already registered"):
            host.register(RecordingProgram())

    def test_processed_tracking_with_lru(self):
        """Test that processed transaction tracking evicts the oldest entry."""
        host = ExecutionHost(config=HostConfig(max_processed_txs=3))

        for i in range(4):
            host._track_processed(f"0xtx{i}")

        assert isinstance(host.processed_txs, OrderedDict)
        assert list(host.processed_txs) == ["0xtx1", "0xtx2", "0xtx3"]

    def test_uses_sqlite_when_configured(self, tmp_path):
        """Test that a db path selects the SQLite store."""
        host = ExecutionHost(config=HostConfig(db_path=str(tmp_path / "accounts.db")))
        try:
            assert type(host.store).__name__ == "SqliteAccountStore"
        finally:
            host.store.close()


class TestEventBus:
    """Test suite for typed event fan-out."""

    def test_typed_subscription(self):
        """Test that subscribers only receive their event type."""
        bus = EventBus()
        strings, everything = [], []
        bus.subscribe(strings.append, str)
        bus.subscribe(everything.append)

        bus.publish("a")
        bus.publish(1)

        assert strings == ["a"]
        assert everything == ["a", 1]
        assert bus.events_of(int) == [1]

    def test_unsubscribe(self):
        """Test that unsubscribed callbacks stop receiving events."""
        bus = EventBus()
        callback = Mock()
        unsubscribe = bus.subscribe(callback)

        unsubscribe()
        bus.publish("a")

        callback.assert_not_called()

    def test_failing_subscriber_does_not_block_others(self, caplog):
        """Test that one subscriber error is logged and others still run."""
        bus = EventBus()
        bus.subscribe(Mock(side_effect=RuntimeError("boom")))
        received = []
        bus.subscribe(received.append)

        bus.publish("a")

        assert received == ["a"]
        assert "Event subscriber failed" in caplog.text

    def test_bounded_history(self):
        """Test that history keeps only the newest events."""
        bus = EventBus(max_history=2)
        for i in range(5):
            bus.publish(i)

        assert list(bus.history) == [3, 4]
