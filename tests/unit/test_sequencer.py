"""
Unit tests for the rollup sequencer
"""

import threading

import pytest

from conftest import GENESIS_ROOT, make_tx
from zerosync.anchor import MainChainAnchor
from zerosync.consensus.sequencer import SequencerStatus
from zerosync.core.events import EventType
from zerosync.core.exceptions import (
    ValidationError,
    ProofGenerationError,
    ChainContinuityError,
    CircuitNotReady,
    AnchorError,
    AnchorGapError,
    InvalidTransition,
    NotFoundError,
    SequencerShutdownError,
)
from zerosync.core.utils import compute_state_root, compute_tx_hash
from zerosync.zk import CircuitProofEngine, MockProofEngine


class FailingProofEngine(MockProofEngine):
    """Mock engine whose prover always fails"""

    def _prove(self, inputs):
        raise ProofGenerationError(f"prover crashed on batch {inputs.batch_id}")


class FlakyRelay(MainChainAnchor):
    """Main chain that refuses submissions until told otherwise"""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.available = False

    def submit(self, batch, proof):
        if not self.available:
            raise AnchorError("relay unavailable")
        return super().submit(batch, proof)


class FailOnceProofEngine(MockProofEngine):
    """Mock engine whose prover fails on the first batch only"""

    def __init__(self):
        super().__init__()
        self.failures_left = 1

    def _prove(self, inputs):
        if self.failures_left:
            self.failures_left -= 1
            raise ProofGenerationError(f"prover crashed on batch {inputs.batch_id}")
        return super()._prove(inputs)


# ========== Submission ==========

def test_add_transaction_returns_pending_record(sequencer):
    tx = sequencer.add_transaction(make_tx(1))

    assert tx["duplicate"] is False
    assert tx["status"] == "pending"
    assert tx["tx_hash"] == compute_tx_hash(make_tx(1)["from"], make_tx(1)["to"], 101, "", 1)
    assert tx["value"] == "101"


def test_add_transaction_defaults(sequencer):
    tx = sequencer.add_transaction({"from": "0xa", "to": "0xb", "value": "5"})

    assert tx["data"] == ""
    assert tx["nonce"] == 0


@pytest.mark.parametrize("bad", [
    {"to": "0xb", "value": 1},
    {"from": "0xa", "value": 1},
    {"from": "0xa", "to": "0xb"},
    {"from": "", "to": "0xb", "value": 1},
    {"from": "0xa", "to": "0xb", "value": -1},
    {"from": "0xa", "to": "0xb", "value": "ten"},
    {"from": "0xa", "to": "0xb", "value": 1, "nonce": -1},
    {"from": "0xa", "to": "0xb", "value": 1, "data": 5},
])
def test_invalid_transactions_never_enter_pool(sequencer, bad):
    with pytest.raises(ValidationError):
        sequencer.add_transaction(bad)

    assert sequencer.get_pending_transactions() == []


def test_duplicate_submission_is_idempotent(sequencer):
    first = sequencer.add_transaction(make_tx(1))
    second = sequencer.add_transaction(make_tx(1))

    assert second["tx_hash"] == first["tx_hash"]
    assert second["duplicate"] is True
    assert len(sequencer.get_pending_transactions()) == 1


def test_duplicate_after_batching_returns_batched_record(sequencer):
    for i in range(3):
        sequencer.add_transaction(make_tx(i))
    batch = sequencer.process_pending_batch()

    again = sequencer.add_transaction(make_tx(0))

    assert again["duplicate"] is True
    assert again["status"] == "batched"
    assert again["batch_id"] == batch["batch_id"]
    assert sequencer.get_pending_transactions() == []


# ========== Batch cycle ==========

def test_process_without_pending_returns_none(sequencer):
    assert sequencer.process_pending_batch() is None
    assert sequencer.get_batches() == []


def test_batch_cycle_produces_proven_batch(sequencer):
    hashes = [sequencer.add_transaction(make_tx(i))["tx_hash"] for i in range(4)]

    batch = sequencer.process_pending_batch()

    assert batch["status"] == "proven"
    assert batch["tx_count"] == 3
    assert batch["old_state_root"] == GENESIS_ROOT
    assert batch["proof_hash"] is not None

    included = sequencer.get_batch_transactions(batch["batch_id"])
    assert [tx["tx_hash"] for tx in included] == hashes[:3]
    assert batch["new_state_root"] == compute_state_root(GENESIS_ROOT, included)

    proof = sequencer.get_proof(batch["batch_id"])
    assert proof["verified"] is True
    assert proof["proof_type"] == "mock"
    assert proof["public_signals"] == [GENESIS_ROOT, batch["new_state_root"], "3"]

    pending = sequencer.get_pending_transactions()
    assert [tx["tx_hash"] for tx in pending] == hashes[3:]


def test_batches_chain_state_roots(sequencer):
    for i in range(7):
        sequencer.add_transaction(make_tx(i))

    batches = []
    while (batch := sequencer.process_pending_batch()) is not None:
        batches.append(batch)

    assert [b["tx_count"] for b in batches] == [3, 3, 1]
    assert batches[0]["old_state_root"] == GENESIS_ROOT
    for previous, current in zip(batches, batches[1:]):
        assert current["old_state_root"] == previous["new_state_root"]

    state = sequencer.get_current_state()
    assert state == {"state_root": batches[-1]["new_state_root"], "height": 3}


def test_every_transaction_included_exactly_once(sequencer):
    hashes = {sequencer.add_transaction(make_tx(i))["tx_hash"] for i in range(8)}
    while sequencer.process_pending_batch() is not None:
        pass

    included = []
    for batch in sequencer.get_batches(limit=100):
        included += [tx["tx_hash"] for tx in sequencer.get_batch_transactions(batch["batch_id"])]

    assert sorted(included) == sorted(hashes)


def test_proof_failure_marks_batch_failed(make_sequencer):
    sequencer = make_sequencer(proof_engine=FailingProofEngine())
    failures = []
    sequencer.subscribe(EventType.BATCH_FAILED, failures.append)
    hashes = [sequencer.add_transaction(make_tx(i))["tx_hash"] for i in range(3)]

    with pytest.raises(ProofGenerationError):
        sequencer.process_pending_batch()

    batch = sequencer.get_batches()[0]
    assert batch["status"] == "failed"
    assert "prover crashed" in batch["error"]
    assert sequencer.get_proof(batch["batch_id"]) is None
    assert len(failures) == 1 and failures[0].payload["batch_id"] == batch["batch_id"]

    # Not returned to the pool
    assert sequencer.get_pending_transactions() == []
    assert all(sequencer.get_transaction(h)["status"] == "batched" for h in hashes)


def test_missing_circuit_fails_batch(make_sequencer, tmp_path):
    engine = CircuitProofEngine(circuit_dir=str(tmp_path / "missing"), snarkjs_bin="snarkjs")
    sequencer = make_sequencer(proof_engine=engine)
    for i in range(3):
        sequencer.add_transaction(make_tx(i))

    with pytest.raises(CircuitNotReady):
        sequencer.process_pending_batch()

    assert sequencer.get_batches()[0]["status"] == "failed"
    assert sequencer.get_proof(1) is None
    assert sequencer.get_pending_transactions() == []


def test_start_refuses_unready_engine(make_sequencer, tmp_path):
    engine = CircuitProofEngine(circuit_dir=str(tmp_path / "missing"))
    sequencer = make_sequencer(proof_engine=engine)

    with pytest.raises(CircuitNotReady):
        sequencer.start()
    assert sequencer.status == SequencerStatus.STOPPED


def test_engine_bug_becomes_proof_generation_error(make_sequencer):
    class BuggyEngine(MockProofEngine):
        def _prove(self, inputs):
            raise KeyError("payload")

    sequencer = make_sequencer(proof_engine=BuggyEngine())
    sequencer.add_transaction(make_tx(1))

    with pytest.raises(ProofGenerationError):
        sequencer.process_pending_batch()
    assert sequencer.get_batches()[0]["status"] == "failed"


def test_continuity_conflict_aborts_cycle_and_recovers(sequencer):
    for i in range(4):
        sequencer.add_transaction(make_tx(i))

    # Another writer advances the chain behind the sequencer's cache
    store = sequencer.store
    outsider = store.get_pending_transactions(limit=1)
    store.commit_batch(
        GENESIS_ROOT, compute_state_root(GENESIS_ROOT, outsider), [outsider[0]["tx_hash"]]
    )

    with pytest.raises(ChainContinuityError):
        sequencer.process_pending_batch()

    # Pool untouched, cache re-derived from the ledger
    assert len(sequencer.get_pending_transactions()) == 3
    assert sequencer.current_height == 1

    batch = sequencer.process_pending_batch()
    assert batch["old_state_root"] == store.get_state_roots()[1]["state_root"]
    assert sequencer.get_current_state()["height"] == 2


def test_events_published_for_cycle(sequencer):
    seen = []
    sequencer.subscribe("*", lambda event: seen.append(event.event_type))

    for i in range(3):
        sequencer.add_transaction(make_tx(i))
    sequencer.process_pending_batch()

    assert seen.count(EventType.TRANSACTION_ADDED) == 3
    assert seen[-2:] == [EventType.BATCH_CREATED, EventType.BATCH_PROVEN]


def test_accounts_follow_batches(sequencer):
    sequencer.add_transaction({"from": "0xalice", "to": "0xbob", "value": 40, "nonce": 0})
    sequencer.process_pending_batch()

    assert sequencer.get_account("0xbob")["balance"] == "40"
    assert sequencer.get_account("0xalice")["nonce"] == 1


# ========== Anchoring ==========

def test_proven_batch_is_anchored(make_sequencer):
    anchor = MainChainAnchor(verifier=MockProofEngine(), genesis_state_root=GENESIS_ROOT)
    sequencer = make_sequencer(anchor=anchor)
    anchored = []
    sequencer.subscribe(EventType.BATCH_ANCHORED, anchored.append)

    for i in range(3):
        sequencer.add_transaction(make_tx(i))
    batch = sequencer.process_pending_batch()

    assert batch["status"] == "confirmed"
    assert batch["l1_tx_hash"].startswith("0x")
    assert batch["l1_block_number"] == 1
    assert anchor.get_current_root() == batch["new_state_root"]
    assert len(anchored) == 1

    txs = sequencer.get_batch_transactions(batch["batch_id"])
    assert all(tx["status"] == "confirmed" for tx in txs)


def test_anchor_failure_keeps_batch_proven_and_retries(make_sequencer):
    relay = FlakyRelay(verifier=MockProofEngine(), genesis_state_root=GENESIS_ROOT)
    sequencer = make_sequencer(anchor=relay)
    failures = []
    sequencer.subscribe(EventType.ANCHOR_FAILED, failures.append)

    for i in range(6):
        sequencer.add_transaction(make_tx(i))
    first = sequencer.process_pending_batch()
    second = sequencer.process_pending_batch()

    assert first["status"] == "proven"
    assert second["status"] == "proven"
    assert len(failures) == 2

    relay.available = True
    anchored = sequencer.anchor_pending_batches()

    assert [b["batch_id"] for b in anchored] == [first["batch_id"], second["batch_id"]]
    assert all(b["status"] == "confirmed" for b in anchored)
    assert relay.get_current_root() == second["new_state_root"]


def test_failed_batch_halts_anchoring_of_later_batches(make_sequencer):
    anchor = MainChainAnchor(verifier=MockProofEngine(), genesis_state_root=GENESIS_ROOT)
    sequencer = make_sequencer(proof_engine=FailOnceProofEngine(), anchor=anchor)
    failures = []
    sequencer.subscribe(EventType.ANCHOR_FAILED, failures.append)

    for i in range(6):
        sequencer.add_transaction(make_tx(i))
    with pytest.raises(ProofGenerationError):
        sequencer.process_pending_batch()
    second = sequencer.process_pending_batch()

    # Proven, but never sent to the chain
    assert second["status"] == "proven"
    assert anchor.get_batch_count() == 0
    assert anchor.get_current_root() == GENESIS_ROOT

    assert sequencer.anchor_pending_batches() == []
    assert sequencer.anchor_pending_batches() == []
    with pytest.raises(AnchorGapError) as excinfo:
        sequencer.anchor_batch(second["batch_id"])
    assert excinfo.value.details["blocked_by"] == 1
    assert excinfo.value.status_code == 409

    # Reported once, not on every retry
    assert len(failures) == 1
    assert failures[0].payload == {"batch_id": second["batch_id"], "blocked_by": 1, "retryable": False}

    stats = sequencer.get_stats()
    assert stats["anchor_blocked_by"] == 1
    assert stats["statistics"]["anchor_gaps"] == 1
    assert stats["statistics"]["anchor_failures"] == 0
    assert sequencer.get_batch(second["batch_id"])["status"] == "proven"


def test_batches_before_a_failure_are_still_anchored(make_sequencer):
    relay = FlakyRelay(verifier=MockProofEngine(), genesis_state_root=GENESIS_ROOT)
    engine = FailOnceProofEngine()
    engine.failures_left = 0
    sequencer = make_sequencer(proof_engine=engine, anchor=relay)

    for i in range(6):
        sequencer.add_transaction(make_tx(i))
    first = sequencer.process_pending_batch()
    engine.failures_left = 1
    with pytest.raises(ProofGenerationError):
        sequencer.process_pending_batch()

    relay.available = True
    anchored = sequencer.anchor_pending_batches()

    assert [b["batch_id"] for b in anchored] == [first["batch_id"]]
    assert relay.get_current_root() == first["new_state_root"]


def test_anchor_batch_requires_proven_status(make_sequencer):
    sequencer = make_sequencer(
        proof_engine=FailingProofEngine(),
        anchor=MainChainAnchor(genesis_state_root=GENESIS_ROOT),
    )
    sequencer.add_transaction(make_tx(1))
    with pytest.raises(ProofGenerationError):
        sequencer.process_pending_batch()

    with pytest.raises(InvalidTransition):
        sequencer.anchor_batch(1)
    with pytest.raises(NotFoundError):
        sequencer.anchor_batch(99)


def test_anchoring_disabled(sequencer):
    assert sequencer.anchor_pending_batches() == []
    with pytest.raises(AnchorError):
        sequencer.anchor_batch(1)


# ========== Lifecycle ==========

def test_start_stop_is_idempotent(sequencer):
    sequencer.start()
    thread = sequencer.worker_thread
    sequencer.start()

    assert sequencer.running
    assert sequencer.worker_thread is thread

    sequencer.stop()
    sequencer.stop()
    assert sequencer.status == SequencerStatus.STOPPED
    assert not thread.is_alive()


def test_shutdown_is_terminal(sequencer):
    sequencer.shutdown()
    sequencer.shutdown()

    assert sequencer.status == SequencerStatus.SHUTDOWN
    with pytest.raises(SequencerShutdownError):
        sequencer.add_transaction(make_tx(1))
    with pytest.raises(SequencerShutdownError):
        sequencer.process_pending_batch()
    with pytest.raises(SequencerShutdownError):
        sequencer.start()


def test_stats(sequencer):
    for i in range(4):
        sequencer.add_transaction(make_tx(i))
    sequencer.add_transaction(make_tx(0))
    sequencer.process_pending_batch()

    stats = sequencer.get_stats()

    assert stats["total_transactions"] == 4
    assert stats["pending_transactions"] == 1
    assert stats["total_batches"] == 1
    assert stats["total_proofs"] == 1
    assert stats["current_height"] == 1
    assert stats["proof_mode"] == "mock"
    assert stats["statistics"]["duplicate_submissions"] == 1
    assert stats["batches_by_status"]["proven"] == 1


def test_counters_are_exact_under_concurrent_submissions(sequencer):
    def submit():
        for i in range(25):
            sequencer.add_transaction(make_tx(i))

    threads = [threading.Thread(target=submit) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    counters = sequencer.get_statistics()
    assert counters["transactions_received"] == 25
    assert counters["duplicate_submissions"] == 7 * 25
    assert sequencer.get_stats()["statistics"] == counters


def test_invalid_batch_size_rejected(make_sequencer):
    with pytest.raises(ValueError):
        make_sequencer(batch_size=0)
