"""
Proof Engine interface for the ZeroSync rollup.

A proof engine turns one batch's state transition (old root, new root, transaction
count and transaction digests) into a proof, and checks proofs it produced. The
sequencer only talks to this interface; strategies live in mock_engine and
circuit_engine.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from zerosync.core.utils import generate_hash

logger = logging.getLogger(__name__)


@dataclass
class BatchInputs:
    """
    Public inputs and witness digests of one batch transition.
    """
    batch_id: int
    old_state_root: str
    new_state_root: str
    tx_count: int
    tx_digests: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "batch_id": self.batch_id,
            "old_state_root": self.old_state_root,
            "new_state_root": self.new_state_root,
            "tx_count": self.tx_count,
            "tx_digests": list(self.tx_digests),
        }

    @classmethod
    def from_batch(cls, batch: dict[str, Any], transactions: list[dict[str, Any]]) -> "BatchInputs":
        """Build inputs from a stored batch and its ordered transactions."""
        return cls(
            batch_id=batch["batch_id"],
            old_state_root=batch["old_state_root"],
            new_state_root=batch["new_state_root"],
            tx_count=batch["tx_count"],
            tx_digests=[tx["tx_hash"] for tx in transactions],
        )


def compute_proof_hash(payload: dict[str, Any]) -> str:
    """Content digest of a proof payload."""
    return "0x" + generate_hash(payload)


@dataclass
class Proof:
    """
    Proof of one batch transition.

    Contains the engine payload and the public signals the verifier checks it against.
    """
    batch_id: int
    proof_type: str
    payload: dict[str, Any]
    public_signals: list[str]
    proof_hash: str
    generation_time_ms: float
    inputs: BatchInputs
    verified: bool = False

    def to_record(self) -> dict[str, Any]:
        """Shape accepted by LedgerStore.save_proof / record_proof."""
        return {
            "batch_id": self.batch_id,
            "proof_type": self.proof_type,
            "proof_data": self.payload,
            "public_signals": self.public_signals,
            "proof_hash": self.proof_hash,
            "generation_time_ms": self.generation_time_ms,
            "verified": self.verified,
        }

    @classmethod
    def from_record(cls, record: dict[str, Any], inputs: BatchInputs) -> "Proof":
        """Rebuild a proof from its stored form."""
        return cls(
            batch_id=record["batch_id"],
            proof_type=record["proof_type"],
            payload=record["proof_data"],
            public_signals=list(record["public_signals"]),
            proof_hash=record["proof_hash"],
            generation_time_ms=record.get("generation_time_ms", 0.0),
            inputs=inputs,
            verified=bool(record.get("verified", False)),
        )


class ProofEngine(ABC):
    """
    Base class of proof strategies.

    Subclasses implement _prove and _verify; this class keeps the statistics and
    the timing the way every strategy reports them.
    """

    proof_type = "abstract"

    def __init__(self):
        self.stats = {
            "total_proofs_generated": 0,
            "successful_generations": 0,
            "failed_generations": 0,
            "total_generation_time_ms": 0.0,
            "total_verifications": 0,
            "failed_verifications": 0,
        }

    def ensure_ready(self) -> None:
        """
        Check that the engine can prove.

        Raises:
            CircuitNotReady: If required artifacts are missing
        """

    @abstractmethod
    def public_signals(self, inputs: BatchInputs) -> list[str]:
        """How this engine restates (old root, new root, tx count)."""

    @abstractmethod
    def _prove(self, inputs: BatchInputs) -> tuple[dict[str, Any], list[str]]:
        """Produce (payload, public_signals) or raise ProofGenerationError."""

    @abstractmethod
    def _verify(self, proof: Proof) -> bool:
        """Check a proof produced by this engine."""

    def generate_proof(self, inputs: BatchInputs) -> Proof:
        """
        Generate a proof for a batch transition.

        Args:
            inputs: Batch transition inputs

        Returns:
            Proof with payload, public signals and content hash

        Raises:
            ProofGenerationError: If the proving backend fails
        """
        self.stats["total_proofs_generated"] += 1
        start_time = time.time()

        try:
            payload, signals = self._prove(inputs)
        except Exception:
            self.stats["failed_generations"] += 1
            raise

        generation_time = (time.time() - start_time) * 1000
        self.stats["successful_generations"] += 1
        self.stats["total_generation_time_ms"] += generation_time

        logger.debug(
            f"Generated {self.proof_type} proof for batch {inputs.batch_id} in {generation_time:.2f}ms"
        )

        return Proof(
            batch_id=inputs.batch_id,
            proof_type=self.proof_type,
            payload=payload,
            public_signals=signals,
            proof_hash=compute_proof_hash(payload),
            generation_time_ms=generation_time,
            inputs=inputs,
        )

    def verify_proof(self, proof: Proof) -> bool:
        """
        Verify a proof.

        Returns:
            True if the proof is valid for its declared inputs, False otherwise
        """
        self.stats["total_verifications"] += 1

        if proof.proof_type != self.proof_type:
            logger.warning(f"Cannot verify {proof.proof_type} proof with {self.proof_type} engine")
            self.stats["failed_verifications"] += 1
            return False

        if proof.proof_hash != compute_proof_hash(proof.payload):
            logger.warning(f"Proof hash mismatch for batch {proof.batch_id}")
            self.stats["failed_verifications"] += 1
            return False

        if proof.public_signals != self.public_signals(proof.inputs):
            logger.warning(f"Public signals do not restate the inputs of batch {proof.batch_id}")
            self.stats["failed_verifications"] += 1
            return False

        result = self._verify(proof)
        if not result:
            self.stats["failed_verifications"] += 1
            logger.warning(f"Proof verification FAILED for batch {proof.batch_id}")
        return result

    def get_stats(self) -> dict[str, Any]:
        """
        Get proof statistics.

        Returns:
            Dictionary containing generation counts and timing.
        """
        stats = self.stats.copy()
        stats["proof_type"] = self.proof_type

        if stats["successful_generations"] > 0:
            stats["avg_generation_time_ms"] = (
                stats["total_generation_time_ms"] / stats["successful_generations"]
            )
        else:
            stats["avg_generation_time_ms"] = 0.0

        return stats
