"""
Rollup Sequencer for ZeroSync.

This module implements the component that orders submitted transactions into
batches. Each batch commits a state-root transition to the ledger, is proven by
the configured proof engine and, when anchoring is enabled, is published to the
main chain. A background worker thread cuts batches on the size/time policy;
batches can also be triggered on demand.
"""

import logging
import threading
import time
from enum import Enum
from typing import Any, Callable

from zerosync.anchor import AnchorAdapter, create_anchor_adapter
from zerosync.config.settings import settings
from zerosync.consensus.batch_policy import BatchPolicy
from zerosync.core.events import EventBus, EventType, Subscriber
from zerosync.core.exceptions import (
    RollupError,
    ValidationError,
    DuplicateTransaction,
    ChainContinuityError,
    ProofGenerationError,
    CircuitNotReady,
    AnchorError,
    AnchorGapError,
    NotFoundError,
    InvalidTransition,
    SequencerShutdownError,
)
from zerosync.core.utils import compute_tx_hash, compute_state_root, parse_amount, MAX_NONCE
from zerosync.security.secure_logging import sanitize_for_log, short_hash
from zerosync.storage.models import BatchStatus
from zerosync.storage.sql_backend import LedgerStore
from zerosync.zk import ProofEngine, BatchInputs, Proof, create_proof_engine

logger = logging.getLogger(__name__)


class SequencerStatus(Enum):
    """Sequencer lifecycle"""
    STOPPED = "stopped"
    RUNNING = "running"
    SHUTDOWN = "shutdown"


class Sequencer:
    """
    Orders transactions into proven batches.

    Batch formation and commit (select, compute root, persist, advance cache) are
    serialized by one lock. Proof generation runs after the lock is released so
    submissions and the next formation are never blocked by the prover.

    Usage:
        sequencer = Sequencer({"batch_size": 3, "batch_timeout": 0})
        sequencer.add_transaction({"from": "0xa", "to": "0xb", "value": 10})
        batch = sequencer.process_pending_batch()
    """

    def __init__(
        self,
        config: dict[str, Any] | None = None,
        store: LedgerStore | None = None,
        proof_engine: ProofEngine | None = None,
        anchor: AnchorAdapter | None = None,
        events: EventBus | None = None
    ):
        """
        Initialize sequencer.

        Args:
            config: Overrides for Settings.get_sequencer_config() (batch_size,
                    batch_timeout in ms, database_url or db_path, proof_mode,
                    circuit_dir, genesis_state_root, anchor_enabled, auto_start)
            store: Ledger store; created from the config when omitted
            proof_engine: Proof engine; created from proof_mode when omitted
            anchor: Anchor adapter; created from settings when anchoring is enabled
            events: Event bus shared with observers
        """
        self.config = {**settings.get_sequencer_config(), **(config or {})}
        if self.config.get("db_path"):
            self.config["database_url"] = f"sqlite:///{self.config['db_path']}"

        self.policy = BatchPolicy(self.config)

        self.store = store or LedgerStore(
            connection_string=self.config["database_url"],
            genesis_state_root=self.config["genesis_state_root"],
        )
        self.proof_engine = proof_engine or create_proof_engine(
            self.config["proof_mode"],
            circuit_dir=self.config.get("circuit_dir"),
            snarkjs_bin=self.config.get("snarkjs_bin"),
            timeout=self.config.get("proof_timeout"),
        )
        if anchor is None and self.config.get("anchor_enabled"):
            anchor = create_anchor_adapter(
                {**settings.get_anchor_config(), "enabled": True},
                verifier=self.proof_engine,
                genesis_state_root=self.store.genesis_state_root,
            )
        self.anchor = anchor
        self.events = events or EventBus()

        self.status = SequencerStatus.STOPPED
        self.last_error: str | None = None
        # Oldest failed batch that halts anchoring, once detected
        self.anchor_blocked_by: int | None = None

        # Cached chain head, advanced only after a successful commit
        self.current_state_root, self.current_height = self.store.get_current_state_root()

        self._batch_lock = threading.Lock()
        self._anchor_lock = threading.Lock()
        self._lifecycle_lock = threading.Lock()
        self._in_flight = 0
        self._in_flight_cond = threading.Condition()
        self._closing = False

        # Worker thread
        self.worker_thread: threading.Thread | None = None
        self.should_stop = threading.Event()
        self._wake = threading.Event()

        self.statistics = {
            "transactions_received": 0,
            "duplicate_submissions": 0,
            "batches_created": 0,
            "batches_proven": 0,
            "batches_failed": 0,
            "batches_anchored": 0,
            "anchor_failures": 0,
            "anchor_gaps": 0,
            "batches_interrupted": 0,
            "continuity_conflicts": 0,
        }
        self._stats_lock = threading.Lock()

        logger.info(
            f"Sequencer initialized (batch_size={self.policy.batch_size}, "
            f"batch_timeout={self.policy.batch_timeout}ms, proof={self.proof_engine.proof_type}, "
            f"height={self.current_height})"
        )

        if self.config.get("auto_start", False):
            self.start()

    # ========== Lifecycle ==========

    def start(self) -> None:
        """
        Start the background batch worker.

        Idempotent. Fails batches an earlier run left pending or proving, checks the
        proof engine and reloads the chain head from the ledger.

        Raises:
            CircuitNotReady: If the proof engine cannot prove
            SequencerShutdownError: After shutdown()
        """
        with self._lifecycle_lock:
            self._ensure_open()
            if self.status == SequencerStatus.RUNNING:
                return

            self.reconcile_interrupted_batches()
            self.proof_engine.ensure_ready()
            self._reload_chain_head()

            self.should_stop.clear()
            self._wake.clear()
            self.policy.mark_checked()
            self.last_error = None

            self.worker_thread = threading.Thread(target=self._run_loop, name="zerosync-sequencer")
            self.worker_thread.daemon = True
            self.status = SequencerStatus.RUNNING
            self.worker_thread.start()

        logger.info("Sequencer started")

    def stop(self) -> None:
        """Stop the worker after its in-flight cycle; no new timer cycles run."""
        with self._lifecycle_lock:
            thread = self.worker_thread
            self.should_stop.set()
            self._wake.set()
            if self.status == SequencerStatus.RUNNING:
                self.status = SequencerStatus.STOPPED

        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.config.get("proof_timeout", 120) + 5.0)
            if thread.is_alive():
                logger.warning("Sequencer worker did not finish its cycle before the stop timeout")

        self.worker_thread = None
        logger.info("Sequencer stopped")

    def shutdown(self) -> None:
        """
        Stop, wait for every in-flight cycle and close the ledger.

        Terminal: any later call raises SequencerShutdownError.
        """
        if self.status == SequencerStatus.SHUTDOWN:
            return

        self.stop()

        with self._in_flight_cond:
            self._closing = True
            self._in_flight_cond.wait_for(
                lambda: self._in_flight == 0,
                timeout=self.config.get("proof_timeout", 120) + 5.0,
            )

        self.store.close()
        if self.anchor is not None:
            self.anchor.close()

        self.status = SequencerStatus.SHUTDOWN
        logger.info("Sequencer shut down")

    @property
    def running(self) -> bool:
        return self.status == SequencerStatus.RUNNING

    def _ensure_open(self) -> None:
        if self.status == SequencerStatus.SHUTDOWN or self._closing:
            raise SequencerShutdownError("Sequencer has been shut down")

    def _enter_cycle(self) -> None:
        with self._in_flight_cond:
            self._ensure_open()
            self._in_flight += 1

    def _exit_cycle(self) -> None:
        with self._in_flight_cond:
            self._in_flight -= 1
            self._in_flight_cond.notify_all()

    def reconcile_interrupted_batches(self) -> list[int]:
        """
        Mark batches stuck in pending or proving as failed.

        Such batches were committed by a cycle that never finished, usually because
        the process stopped mid-proof. Skipped while a cycle of this sequencer is in
        flight, since its batch is legitimately pending or proving.

        Returns:
            Ids of the batches marked failed
        """
        with self._in_flight_cond:
            if self._in_flight:
                return []

            reconciled = []
            for status in (BatchStatus.PENDING, BatchStatus.PROVING):
                while True:
                    stuck = self.store.get_batches_by_status(status)
                    if not stuck:
                        break
                    for batch in stuck:
                        error = f"Interrupted while {status.value}; proving never completed"
                        self.store.update_batch_status(batch["batch_id"], BatchStatus.FAILED, error=error)
                        reconciled.append(batch["batch_id"])
                        self._count("batches_interrupted")
                        logger.warning(f"Batch #{batch['batch_id']} was left {status.value}, marked failed")
                        self.events.emit(EventType.BATCH_FAILED, batch_id=batch["batch_id"], error=error)

        return reconciled

    def _count(self, name: str) -> None:
        with self._stats_lock:
            self.statistics[name] += 1

    def get_statistics(self) -> dict[str, int]:
        """Snapshot of the sequencer counters"""
        with self._stats_lock:
            return dict(self.statistics)

    def _reload_chain_head(self) -> None:
        self.current_state_root, self.current_height = self.store.get_current_state_root()

    # ========== Worker ==========

    def _run_loop(self) -> None:
        """Background loop: wait for the timeout or a size wake-up, then check the policy."""
        logger.debug("Sequencer worker running")

        while not self.should_stop.is_set():
            woken = self._wake.wait(timeout=self.policy.wait_interval())
            self._wake.clear()
            if self.should_stop.is_set():
                break

            try:
                self._tick(timer_expired=not woken or self.policy.is_timer_expired())
            except CircuitNotReady as e:
                self.last_error = str(e)
                logger.error(f"Proof engine not ready, stopping sequencer worker: {e}")
                self.should_stop.set()
                self.status = SequencerStatus.STOPPED
                break
            except SequencerShutdownError:
                break
            except RollupError as e:
                self.last_error = str(e)
                logger.error(f"Batch cycle failed: {e}")
            except Exception as e:
                self.last_error = str(e)
                logger.error(f"Unexpected error in sequencer worker: {e}")

        logger.debug("Sequencer worker exited")

    def _tick(self, timer_expired: bool) -> None:
        pending = self.store.count_pending_transactions()

        if self.policy.should_fire(pending, timer_expired=timer_expired):
            self.process_pending_batch()

            # Drain full batches that piled up while proving
            while not self.should_stop.is_set() and \
                    self.policy.is_size_reached(self.store.count_pending_transactions()):
                if self.process_pending_batch() is None:
                    break

        self.policy.mark_checked()

        if self.anchor is not None and not self.should_stop.is_set():
            self.anchor_pending_batches()

    # ========== Transactions ==========

    def add_transaction(self, tx: dict[str, Any]) -> dict[str, Any]:
        """
        Validate, hash and store a transaction as pending.

        Args:
            tx: Dict with from, to, value and optional data, nonce

        Returns:
            Stored transaction with a "duplicate" flag; a resubmission returns the
            existing record and leaves the pool unchanged

        Raises:
            ValidationError: Missing or malformed fields
            SequencerShutdownError: After shutdown()
        """
        self._ensure_open()
        fields = self._validate_transaction(tx)
        tx_hash = compute_tx_hash(
            fields["from_address"], fields["to_address"], fields["value"], fields["data"], fields["nonce"]
        )

        try:
            stored = self.store.add_transaction({"tx_hash": tx_hash, **fields})
        except DuplicateTransaction:
            self._count("duplicate_submissions")
            existing = self.store.get_transaction(tx_hash)
            logger.debug(f"Duplicate submission of {short_hash(tx_hash)}")
            return {**existing, "duplicate": True}

        self._count("transactions_received")
        logger.info(
            f"Accepted transaction {short_hash(tx_hash)} from {sanitize_for_log(fields['from_address'])}"
        )
        self.events.emit(EventType.TRANSACTION_ADDED, tx_hash=tx_hash, from_address=fields["from_address"])

        if self.running and self.policy.is_size_reached(self.store.count_pending_transactions()):
            self._wake.set()

        return {**stored, "duplicate": False}

    @staticmethod
    def _validate_transaction(tx: dict[str, Any]) -> dict[str, Any]:
        if not isinstance(tx, dict):
            raise ValidationError("Transaction must be an object")

        sender = tx.get("from", tx.get("from_address"))
        recipient = tx.get("to", tx.get("to_address"))
        value = tx.get("value")
        data = tx.get("data")
        nonce = tx.get("nonce")

        errors = []
        if not isinstance(sender, str) or not sender.strip():
            errors.append("from is required")
        if not isinstance(recipient, str) or not recipient.strip():
            errors.append("to is required")

        amount = None
        if value is None:
            errors.append("value is required")
        else:
            try:
                amount = parse_amount(value)
            except ValueError as e:
                errors.append(str(e))

        if data is None:
            data = ""
        elif not isinstance(data, str):
            errors.append("data must be a string")

        if nonce is None:
            nonce = 0
        elif isinstance(nonce, bool) or not isinstance(nonce, int) or nonce < 0:
            errors.append("nonce must be a non-negative integer")
        elif nonce > MAX_NONCE:
            errors.append(f"nonce must not exceed {MAX_NONCE}")

        if errors:
            raise ValidationError("Invalid transaction: " + "; ".join(errors), {"errors": errors})

        return {
            "from_address": sender.strip(),
            "to_address": recipient.strip(),
            "value": amount,
            "data": data,
            "nonce": nonce,
        }

    # ========== Batch cycle ==========

    def process_pending_batch(self) -> dict[str, Any] | None:
        """
        Run one batch cycle.

        Returns:
            The batch in its final status for this cycle (proven, or confirmed when
            anchored), or None when no transaction is pending

        Raises:
            ChainContinuityError: The chain head moved under the cycle; nothing was written
            ProofGenerationError: Proving failed; the batch is marked failed
            SequencerShutdownError: After shutdown()
        """
        self._enter_cycle()
        try:
            with self._batch_lock:
                batch, transactions = self._form_batch()
            if batch is None:
                return None
            return self._prove_batch(batch, transactions)
        finally:
            self._exit_cycle()

    def _form_batch(self) -> tuple[dict[str, Any] | None, list[dict[str, Any]]]:
        """Select, compute the new root and commit atomically. Caller holds the batch lock."""
        transactions = self.store.get_pending_transactions(limit=self.policy.batch_size)
        if not transactions:
            return None, []

        old_root = self.current_state_root
        new_root = compute_state_root(old_root, transactions)

        try:
            batch = self.store.commit_batch(old_root, new_root, [tx["tx_hash"] for tx in transactions])
        except ChainContinuityError:
            self._count("continuity_conflicts")
            self._reload_chain_head()
            logger.warning(
                f"Chain head moved, cycle aborted; reloaded head at height {self.current_height}"
            )
            raise

        self.current_state_root = new_root
        self.current_height += 1
        self._count("batches_created")

        logger.info(
            f"Created batch #{batch['batch_id']} with {batch['tx_count']} txs, "
            f"root {short_hash(new_root)} at height {self.current_height}"
        )
        self.events.emit(
            EventType.BATCH_CREATED,
            batch_id=batch["batch_id"],
            tx_count=batch["tx_count"],
            new_state_root=new_root,
            height=self.current_height,
        )
        return batch, transactions

    def _prove_batch(self, batch: dict[str, Any], transactions: list[dict[str, Any]]) -> dict[str, Any]:
        batch_id = batch["batch_id"]
        self.store.update_batch_status(batch_id, BatchStatus.PROVING)
        inputs = BatchInputs.from_batch(batch, transactions)

        try:
            proof = self.proof_engine.generate_proof(inputs)
            if not self.proof_engine.verify_proof(proof):
                raise ProofGenerationError(f"Proof for batch {batch_id} failed verification")
            proof.verified = True
        except ProofGenerationError as e:
            self._fail_batch(batch_id, e)
            raise
        except Exception as e:
            error = ProofGenerationError(f"Proof engine error for batch {batch_id}: {e}")
            self._fail_batch(batch_id, error)
            raise error from e

        batch = self.store.record_proof(proof.to_record())
        self._count("batches_proven")
        logger.info(f"Batch #{batch_id} proven ({proof.proof_type}, {proof.generation_time_ms:.2f}ms)")
        self.events.emit(EventType.BATCH_PROVEN, batch_id=batch_id, proof_hash=proof.proof_hash)

        if self.anchor is not None:
            try:
                batch = self._anchor(batch, proof)
            except AnchorError:
                batch = self.store.get_batch(batch_id)

        return batch

    def _fail_batch(self, batch_id: int, error: Exception) -> None:
        self.store.update_batch_status(batch_id, BatchStatus.FAILED, error=str(error))
        self._count("batches_failed")
        self.last_error = str(error)
        logger.error(f"Batch #{batch_id} failed: {error}")
        self.events.emit(EventType.BATCH_FAILED, batch_id=batch_id, error=str(error))

    # ========== Anchoring ==========

    def anchor_batch(self, batch_id: int) -> dict[str, Any]:
        """
        Publish a proven batch through the anchor adapter.

        Returns:
            The confirmed batch

        Raises:
            AnchorError: Anchoring disabled, or the external chain refused
            NotFoundError: Unknown batch
            InvalidTransition: Batch is not proven
        """
        self._ensure_open()
        if self.anchor is None:
            raise AnchorError("Anchoring is not enabled")

        batch = self.store.get_batch(batch_id)
        if batch is None:
            raise NotFoundError(f"Batch {batch_id} not found", {"batch_id": batch_id})
        if batch["status"] != BatchStatus.PROVEN.value:
            raise InvalidTransition(batch_id, batch["status"], BatchStatus.SUBMITTED.value)

        record = self.store.get_proof_by_batch(batch_id)
        if record is None:
            raise NotFoundError(f"Proof for batch {batch_id} not found", {"batch_id": batch_id})

        inputs = BatchInputs.from_batch(batch, self.store.get_batch_transactions(batch_id))
        return self._anchor(batch, Proof.from_record(record, inputs))

    def _anchor(self, batch: dict[str, Any], proof: Proof) -> dict[str, Any]:
        batch_id = batch["batch_id"]
        with self._anchor_lock:
            current = self.store.get_batch(batch_id)
            if current["status"] != BatchStatus.PROVEN.value:
                return current

            self._check_anchor_gap(batch_id)

            try:
                receipt = self.anchor.submit(batch, proof)
            except AnchorError as e:
                self._count("anchor_failures")
                logger.warning(f"Anchoring batch #{batch_id} failed, will retry: {e}")
                self.events.emit(EventType.ANCHOR_FAILED, batch_id=batch_id, error=str(e))
                raise

            self.store.update_batch_status(batch_id, BatchStatus.SUBMITTED, l1_tx_hash=receipt.tx_reference)
            batch = self.store.update_batch_status(
                batch_id, BatchStatus.CONFIRMED, l1_block_number=receipt.confirmed_height
            )

        self._count("batches_anchored")
        logger.info(f"Batch #{batch_id} anchored in {short_hash(receipt.tx_reference)}")
        self.events.emit(
            EventType.BATCH_ANCHORED,
            batch_id=batch_id,
            tx_reference=receipt.tx_reference,
            confirmed_height=receipt.confirmed_height,
        )
        return batch

    def _check_anchor_gap(self, batch_id: int) -> None:
        """
        Refuse batches that extend the root of a failed batch.

        The external chain only accepts proven transitions, so anchoring halts at
        the oldest failed batch. Batches after it stay proven and are never sent.
        """
        failed = self.store.get_batches_by_status(BatchStatus.FAILED, limit=1)
        if not failed or failed[0]["batch_id"] > batch_id:
            return

        blocked_by = failed[0]["batch_id"]
        if self.anchor_blocked_by != blocked_by:
            self.anchor_blocked_by = blocked_by
            self._count("anchor_gaps")
            logger.error(
                f"Anchoring halted at batch #{batch_id}: batch #{blocked_by} failed and its "
                f"transition was never proven"
            )
            self.events.emit(
                EventType.ANCHOR_FAILED, batch_id=batch_id, blocked_by=blocked_by, retryable=False
            )
        raise AnchorGapError(batch_id, blocked_by)

    def anchor_pending_batches(self) -> list[dict[str, Any]]:
        """
        Retry anchoring of proven batches, oldest first.

        Stops at the first failure so batches reach the external chain in order.
        Batches behind a failed batch are left proven without contacting the chain.

        Returns:
            Batches anchored by this call
        """
        self._ensure_open()
        if self.anchor is None:
            return []

        anchored = []
        for batch in self.store.get_batches_by_status(BatchStatus.PROVEN):
            try:
                anchored.append(self.anchor_batch(batch["batch_id"]))
            except InvalidTransition:
                # Anchored concurrently by its own cycle
                continue
            except AnchorError:
                break
        return anchored

    # ========== Queries ==========

    def subscribe(self, event_type: EventType | str, callback: Subscriber) -> Callable[[], None]:
        """Register an observer; returns the unsubscribe function."""
        return self.events.subscribe(event_type, callback)

    def get_transaction(self, tx_hash: str) -> dict[str, Any] | None:
        self._ensure_open()
        return self.store.get_transaction(tx_hash)

    def get_pending_transactions(self, limit: int | None = None) -> list[dict[str, Any]]:
        self._ensure_open()
        return self.store.get_pending_transactions(limit or settings.TXPOOL_QUERY_LIMIT)

    def get_batches(self, limit: int = 10) -> list[dict[str, Any]]:
        self._ensure_open()
        return self.store.get_batches(limit)

    def get_batch(self, batch_id: int) -> dict[str, Any] | None:
        self._ensure_open()
        return self.store.get_batch(batch_id)

    def get_batch_transactions(self, batch_id: int) -> list[dict[str, Any]]:
        self._ensure_open()
        return self.store.get_batch_transactions(batch_id)

    def get_proof(self, batch_id: int) -> dict[str, Any] | None:
        self._ensure_open()
        return self.store.get_proof_by_batch(batch_id)

    def get_account(self, address: str) -> dict[str, Any] | None:
        self._ensure_open()
        return self.store.get_account(address)

    def get_current_state(self) -> dict[str, Any]:
        """Latest committed root and height, read from the ledger."""
        self._ensure_open()
        state_root, height = self.store.get_current_state_root()
        return {"state_root": state_root, "height": height}

    def get_stats(self) -> dict[str, Any]:
        """Get comprehensive sequencer status"""
        self._ensure_open()
        state_root, height = self.store.get_current_state_root()

        stats = self.store.get_stats()
        stats.update({
            "current_height": height,
            "current_state_root": state_root,
            "proof_mode": self.proof_engine.proof_type,
            "status": self.status.value,
            "running": self.running,
            "last_error": self.last_error,
            "anchor_enabled": self.anchor is not None,
            "anchor_blocked_by": self.anchor_blocked_by,
            "configuration": self.policy.to_dict(),
            "statistics": self.get_statistics(),
            "proof_engine": self.proof_engine.get_stats(),
            "timestamp": time.time(),
        })
        return stats
