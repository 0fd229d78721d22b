"""
In-process Main Chain used as the anchoring target.

Acts as the root authority above the rollup: it stores only proof evidence and
summary data for each batch (never the transactions), enforces that anchored
roots form one chain, and re-verifies every proof before accepting it.
"""

import logging
import threading
import time
from typing import Any

from zerosync.anchor.adapter import AnchorAdapter, AnchorReceipt
from zerosync.config.settings import settings
from zerosync.core.exceptions import AnchorError
from zerosync.core.utils import generate_hash
from zerosync.zk.engine import ProofEngine, Proof

logger = logging.getLogger(__name__)


class MainChainAnchor(AnchorAdapter):
    """
    Simulated L1 anchoring contract.

    Usage:
        main_chain = MainChainAnchor(verifier=MockProofEngine())
        receipt = main_chain.submit(batch, proof)
    """

    name = "main_chain"

    def __init__(self, verifier: ProofEngine | None = None, genesis_state_root: str | None = None):
        """
        Initialize the Main Chain.

        Args:
            verifier: Engine used to re-verify submitted proofs; None accepts any proof
                      whose public signals restate the batch
            genesis_state_root: Root the first anchored batch must start from
        """
        self.verifier = verifier
        self.genesis_state_root = genesis_state_root or settings.GENESIS_STATE_ROOT
        self.current_root = self.genesis_state_root
        self.anchored_batches: list[dict[str, Any]] = []
        self.anchored_ids: set[int] = set()
        self.block_height = 0
        self.paused = False
        self._lock = threading.Lock()

        logger.info("MainChainAnchor initialized")

    def submit(self, batch: dict[str, Any], proof: Proof) -> AnchorReceipt:
        with self._lock:
            if self.paused:
                raise AnchorError("Main chain is paused")

            batch_id = batch["batch_id"]
            if batch_id in self.anchored_ids:
                raise AnchorError(f"Batch {batch_id} already anchored", {"batch_id": batch_id})

            if batch["old_state_root"] != self.current_root:
                raise AnchorError(
                    "Batch does not extend the anchored root",
                    {"batch_id": batch_id, "expected": self.current_root, "received": batch["old_state_root"]},
                )

            if proof.batch_id != batch_id or proof.inputs.new_state_root != batch["new_state_root"]:
                raise AnchorError(f"Proof does not belong to batch {batch_id}", {"batch_id": batch_id})

            if self.verifier is not None and not self.verifier.verify_proof(proof):
                raise AnchorError(f"Proof for batch {batch_id} failed verification", {"batch_id": batch_id})

            self.block_height += 1
            tx_reference = "0x" + generate_hash({
                "batch_id": batch_id,
                "new_state_root": batch["new_state_root"],
                "proof_hash": proof.proof_hash,
                "block_number": self.block_height,
            })

            # Summary data only
            self.anchored_batches.append({
                "batch_index": len(self.anchored_batches),
                "batch_id": batch_id,
                "old_state_root": batch["old_state_root"],
                "new_state_root": batch["new_state_root"],
                "tx_count": batch["tx_count"],
                "proof_hash": proof.proof_hash,
                "tx_reference": tx_reference,
                "block_number": self.block_height,
                "timestamp": time.time(),
            })
            self.anchored_ids.add(batch_id)
            self.current_root = batch["new_state_root"]

        logger.info(f"Anchored batch {batch_id} at main chain height {self.block_height}")
        return AnchorReceipt(tx_reference=tx_reference, confirmed_height=self.block_height)

    def get_latest(self, n: int = 10) -> list[dict[str, Any]]:
        with self._lock:
            return [dict(entry) for entry in reversed(self.anchored_batches[-n:])] if n > 0 else []

    def get_current_root(self) -> str:
        return self.current_root

    def is_paused(self) -> bool:
        return self.paused

    def pause(self) -> None:
        """Refuse further submissions"""
        self.paused = True
        logger.warning("Main chain paused")

    def resume(self) -> None:
        """Accept submissions again"""
        self.paused = False
        logger.info("Main chain resumed")

    def get_batch_count(self) -> int:
        return len(self.anchored_batches)

    def get_stats(self) -> dict[str, Any]:
        """Get main chain statistics"""
        return {
            "backend": self.name,
            "anchored_batches": len(self.anchored_batches),
            "block_height": self.block_height,
            "current_root": self.current_root,
            "paused": self.paused,
        }
