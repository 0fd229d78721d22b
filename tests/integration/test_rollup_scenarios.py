"""
End-to-end rollup scenarios: submission, background batching, proving,
anchoring and restart on the same ledger.
"""

import threading
import time

import pytest

from conftest import GENESIS_ROOT, make_tx
from zerosync.anchor import MainChainAnchor
from zerosync.core.events import EventType
from zerosync.core.exceptions import CircuitNotReady
from zerosync.core.utils import compute_state_root
from zerosync.storage.models import BatchStatus
from zerosync.zk import MockProofEngine


def wait_for(condition, timeout=5.0, interval=0.02):
    """Poll until condition() is truthy or the timeout expires"""
    deadline = time.time() + timeout
    while time.time() < deadline:
        if condition():
            return True
        time.sleep(interval)
    return False


def test_first_cycle_takes_one_full_batch(sequencer):
    """Four submissions with batch_size=3: one batch of three, one left pending"""
    for i in range(4):
        sequencer.add_transaction(make_tx(i))

    batch = sequencer.process_pending_batch()

    assert batch["tx_count"] == 3
    assert len(sequencer.get_batches()) == 1
    assert len(sequencer.get_pending_transactions()) == 1


def test_timer_forms_batch_without_trigger(make_sequencer):
    """A single transaction is batched once the timeout elapses"""
    sequencer = make_sequencer(batch_size=10, batch_timeout=200)
    sequencer.start()

    sequencer.add_transaction(make_tx(1))

    assert wait_for(lambda: len(sequencer.get_batches()) == 1, timeout=5.0)
    batch = sequencer.get_batches()[0]
    assert batch["tx_count"] == 1
    assert wait_for(lambda: sequencer.get_batch(batch["batch_id"])["status"] == "proven")
    assert sequencer.get_pending_transactions() == []


def test_size_threshold_wakes_worker(make_sequencer):
    """With the timer disabled a full pool still triggers a batch immediately"""
    sequencer = make_sequencer(batch_size=3, batch_timeout=0)
    sequencer.start()

    for i in range(2):
        sequencer.add_transaction(make_tx(i))
    time.sleep(0.2)
    assert sequencer.get_batches() == []

    sequencer.add_transaction(make_tx(2))

    assert wait_for(lambda: len(sequencer.get_batches()) == 1)
    assert sequencer.get_batches()[0]["tx_count"] == 3


def test_missing_circuit_artifacts_fail_the_batch(make_sequencer, tmp_path):
    sequencer = make_sequencer(proof_mode="real", circuit_dir=str(tmp_path / "no-build"))
    for i in range(3):
        sequencer.add_transaction(make_tx(i))

    with pytest.raises(CircuitNotReady):
        sequencer.process_pending_batch()

    batch = sequencer.get_batches()[0]
    assert batch["status"] == "failed"
    assert "rollup" in batch["error"]
    assert sequencer.get_proof(batch["batch_id"]) is None
    assert sequencer.get_pending_transactions() == []
    assert len(sequencer.get_batch_transactions(batch["batch_id"])) == 3


def test_resubmission_keeps_pool_size(sequencer):
    first = sequencer.add_transaction(make_tx(5))
    second = sequencer.add_transaction(make_tx(5))

    assert first["tx_hash"] == second["tx_hash"]
    assert len(sequencer.get_pending_transactions()) == 1


def test_genesis_state_before_any_batch(sequencer):
    assert sequencer.get_current_state() == {"state_root": GENESIS_ROOT, "height": 0}


def test_concurrent_submissions_are_each_batched_once(make_sequencer):
    sequencer = make_sequencer(batch_size=5, batch_timeout=50)
    sequencer.start()

    def submit(offset):
        for i in range(10):
            sequencer.add_transaction(make_tx(offset + i))

    threads = [threading.Thread(target=submit, args=(n * 100,)) for n in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    def settled():
        batches = sequencer.get_batches(limit=100)
        return (
            not sequencer.get_pending_transactions()
            and batches
            and all(b["status"] == "proven" for b in batches)
        )

    assert wait_for(settled, timeout=10.0)

    batches = sorted(sequencer.get_batches(limit=100), key=lambda b: b["batch_id"])
    included = []
    for batch in batches:
        txs = sequencer.get_batch_transactions(batch["batch_id"])
        assert len(txs) == batch["tx_count"] <= 5
        included += [tx["tx_hash"] for tx in txs]

    assert len(included) == len(set(included)) == 40
    for previous, current in zip(batches, batches[1:]):
        assert current["old_state_root"] == previous["new_state_root"]


def test_restart_continues_the_chain(make_sequencer):
    first = make_sequencer()
    for i in range(3):
        first.add_transaction(make_tx(i))
    batch = first.process_pending_batch()
    first.add_transaction(make_tx(10))
    first.shutdown()

    second = make_sequencer()
    assert second.get_current_state() == {"state_root": batch["new_state_root"], "height": 1}
    assert len(second.get_pending_transactions()) == 1

    next_batch = second.process_pending_batch()
    assert next_batch["old_state_root"] == batch["new_state_root"]
    assert second.get_current_state()["height"] == 2


def _commit_without_proving(store):
    """Commit the next batch the way a cycle does before it starts proving"""
    root, _ = store.get_current_state_root()
    txs = store.get_pending_transactions(limit=3)
    return store.commit_batch(root, compute_state_root(root, txs), [tx["tx_hash"] for tx in txs])


def test_restart_fails_interrupted_batches(make_sequencer):
    first = make_sequencer()
    for i in range(9):
        first.add_transaction(make_tx(i))
    proven = first.process_pending_batch()

    # Cycles cut short after the commit
    pending = _commit_without_proving(first.store)
    proving = _commit_without_proving(first.store)
    first.store.update_batch_status(proving["batch_id"], BatchStatus.PROVING)
    first.shutdown()

    second = make_sequencer()
    failed = []
    second.subscribe(EventType.BATCH_FAILED, failed.append)
    second.start()

    assert second.get_batch(proven["batch_id"])["status"] == "proven"
    for batch, status in ((pending, "pending"), (proving, "proving")):
        reconciled = second.get_batch(batch["batch_id"])
        assert reconciled["status"] == "failed"
        assert reconciled["error"].startswith(f"Interrupted while {status}")

    assert sorted(event.payload["batch_id"] for event in failed) == [pending["batch_id"], proving["batch_id"]]
    assert second.get_statistics()["batches_interrupted"] == 2
    by_status = second.get_stats()["batches_by_status"]
    assert by_status.get("pending", 0) == 0 and by_status.get("proving", 0) == 0

    # The committed roots stay; the chain continues from the head
    assert second.get_current_state()["height"] == 3
    assert second.reconcile_interrupted_batches() == []


def test_worker_anchors_proven_batches(make_sequencer):
    anchor = MainChainAnchor(verifier=MockProofEngine(), genesis_state_root=GENESIS_ROOT)
    anchor.pause()
    sequencer = make_sequencer(batch_size=3, batch_timeout=100, anchor=anchor)
    sequencer.start()

    for i in range(3):
        sequencer.add_transaction(make_tx(i))

    assert wait_for(lambda: [b["status"] for b in sequencer.get_batches()] == ["proven"])

    # Retried on a later worker tick once the chain accepts submissions
    anchor.resume()
    assert wait_for(lambda: [b["status"] for b in sequencer.get_batches()] == ["confirmed"])
    assert anchor.get_batch_count() == 1
