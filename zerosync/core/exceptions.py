"""
Error taxonomy for the ZeroSync rollup.

Every error raised by the ledger, the proof engines, the sequencer or the anchor
adapters derives from RollupError. Each class carries the HTTP status the API
layer answers with, so handlers never need to inspect messages.
"""

from typing import Any


class RollupError(Exception):
    """Base class for all rollup errors."""

    status_code = 500
    error_type = "rollup_error"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Structured representation used by the API error handlers."""
        body = {
            "error": self.error_type,
            "message": self.message,
            "status_code": self.status_code,
        }
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(RollupError):
    """Malformed or missing transaction fields. Never enters the pool."""
    status_code = 400
    error_type = "validation_error"


class NotFoundError(RollupError):
    """Requested record does not exist."""
    status_code = 404
    error_type = "not_found"


class DuplicateError(RollupError):
    """A record with the same identity already exists."""
    status_code = 409
    error_type = "duplicate"


class DuplicateTransaction(DuplicateError):
    """Transaction hash already present in the ledger."""

    def __init__(self, tx_hash: str):
        super().__init__(f"Transaction {tx_hash} already exists", {"tx_hash": tx_hash})
        self.tx_hash = tx_hash


class DuplicateProof(DuplicateError):
    """A proof already exists for the batch."""

    def __init__(self, batch_id: int):
        super().__init__(f"Proof for batch {batch_id} already exists", {"batch_id": batch_id})
        self.batch_id = batch_id


class InvalidTransition(RollupError):
    """Batch status change not allowed by the batch state machine."""
    status_code = 409
    error_type = "invalid_transition"

    def __init__(self, batch_id: int, current: str, requested: str):
        super().__init__(
            f"Batch {batch_id} cannot move from '{current}' to '{requested}'",
            {"batch_id": batch_id, "current": current, "requested": requested},
        )


class ChainContinuityError(RollupError):
    """The old state root of a new batch is not the latest committed root."""
    status_code = 500
    error_type = "chain_continuity_error"


class ProofGenerationError(RollupError):
    """The proof engine failed to produce or verify a proof."""
    status_code = 500
    error_type = "proof_generation_error"


class CircuitNotReady(ProofGenerationError):
    """Circuit artifacts or the prover binary are missing. Not retryable."""
    error_type = "circuit_not_ready"


class StorageError(RollupError):
    """I/O or database transaction failure. No partial writes are left behind."""
    status_code = 500
    error_type = "storage_error"


class PartialUpdateError(StorageError):
    """A multi-row update could not be applied to every row and was rolled back."""
    error_type = "partial_update_error"


class AnchorError(RollupError):
    """External chain submission failed. The batch stays proven."""
    status_code = 502
    error_type = "anchor_error"


class AnchorGapError(AnchorError):
    """
    An earlier batch failed, so its root transition was never proven.

    Every later batch extends that unproven root and cannot be anchored. Not retryable.
    """
    status_code = 409
    error_type = "anchor_gap"

    def __init__(self, batch_id: int, blocked_by: int):
        super().__init__(
            f"Batch {batch_id} cannot be anchored: batch {blocked_by} failed and its transition was never proven",
            {"batch_id": batch_id, "blocked_by": blocked_by},
        )
        self.batch_id = batch_id
        self.blocked_by = blocked_by


class SequencerShutdownError(RollupError):
    """Operation attempted after the sequencer was shut down."""
    status_code = 503
    error_type = "sequencer_shutdown"
