"""
API v1 endpoints for ZeroSync

This module exposes the sequencer over REST: transaction submission, the
transaction pool, batches, proofs, state roots and accounts, plus manual batch
and anchoring triggers.
"""

import time
import logging
from fastapi import APIRouter, Depends, Query, Request

from zerosync.api.v1.schemas import (
    TransactionRequest, TransactionSubmitResponse,
    StateResponse, TriggerResponse, HealthResponse
)
from zerosync.consensus.sequencer import Sequencer
from zerosync.core.exceptions import NotFoundError, SequencerShutdownError
from zerosync.security.secure_logging import get_audit_logger

logger = logging.getLogger(__name__)
audit_logger = get_audit_logger()

router = APIRouter(tags=["ZeroSync-v1"])


def get_sequencer(request: Request) -> Sequencer:
    """Sequencer bound to the application"""
    sequencer = getattr(request.app.state, "sequencer", None)
    if sequencer is None:
        raise SequencerShutdownError("Sequencer is not available")
    return sequencer


@router.get("/health", response_model=HealthResponse)
def health_check(sequencer: Sequencer = Depends(get_sequencer)):
    """Health check endpoint"""
    return HealthResponse(
        status="healthy",
        sequencer=sequencer.status.value,
        timestamp=time.time()
    )


@router.post("/transactions", response_model=TransactionSubmitResponse)
def submit_transaction(request: TransactionRequest, sequencer: Sequencer = Depends(get_sequencer)):
    """Submit a transaction to the pool"""
    tx = sequencer.add_transaction(request.to_transaction())

    audit_logger.audit(
        "submit", "transaction",
        tx_hash=tx["tx_hash"], duplicate=tx["duplicate"], sender=tx["from_address"]
    )

    return TransactionSubmitResponse(hash=tx["tx_hash"], status=tx["status"], duplicate=tx["duplicate"])


@router.get("/transactions/{tx_hash}")
def get_transaction(tx_hash: str, sequencer: Sequencer = Depends(get_sequencer)):
    """Get a transaction by hash"""
    tx = sequencer.get_transaction(tx_hash)
    if tx is None:
        raise NotFoundError(f"Transaction {tx_hash} not found", {"tx_hash": tx_hash})
    return tx


@router.get("/txpool")
def get_txpool(
    limit: int = Query(100, ge=1, le=1000),
    sequencer: Sequencer = Depends(get_sequencer)
):
    """Pending transactions, oldest first"""
    transactions = sequencer.get_pending_transactions(limit)
    return {"count": len(transactions), "transactions": transactions}


@router.get("/batches")
def list_batches(
    limit: int = Query(10, ge=1, le=1000),
    sequencer: Sequencer = Depends(get_sequencer)
):
    """Most recent batches first"""
    batches = sequencer.get_batches(limit)
    return {"count": len(batches), "batches": batches}


@router.get("/batches/{batch_id}")
def get_batch(batch_id: int, sequencer: Sequencer = Depends(get_sequencer)):
    """Get a batch by id"""
    batch = sequencer.get_batch(batch_id)
    if batch is None:
        raise NotFoundError(f"Batch {batch_id} not found", {"batch_id": batch_id})
    return batch


@router.get("/batches/{batch_id}/transactions")
def get_batch_transactions(batch_id: int, sequencer: Sequencer = Depends(get_sequencer)):
    """Transactions included in a batch"""
    if sequencer.get_batch(batch_id) is None:
        raise NotFoundError(f"Batch {batch_id} not found", {"batch_id": batch_id})
    transactions = sequencer.get_batch_transactions(batch_id)
    return {"count": len(transactions), "transactions": transactions}


@router.get("/proofs/{batch_id}")
def get_proof(batch_id: int, sequencer: Sequencer = Depends(get_sequencer)):
    """Proof of a batch"""
    proof = sequencer.get_proof(batch_id)
    if proof is None:
        raise NotFoundError(f"Proof for batch {batch_id} not found", {"batch_id": batch_id})
    return proof


@router.post("/batch/trigger", response_model=TriggerResponse)
def trigger_batch(sequencer: Sequencer = Depends(get_sequencer)):
    """Run a batch cycle now"""
    batch = sequencer.process_pending_batch()
    if batch is None:
        return TriggerResponse(success=False, message="No pending transactions")

    audit_logger.audit("trigger", "batch", batch_id=batch["batch_id"], status=batch["status"])
    return TriggerResponse(success=True, batch=batch)


@router.post("/anchor/retry")
def retry_anchoring(sequencer: Sequencer = Depends(get_sequencer)):
    """Anchor every proven batch that is still waiting"""
    anchored = sequencer.anchor_pending_batches()
    return {
        "anchor_enabled": sequencer.anchor is not None,
        "count": len(anchored),
        "anchored": anchored,
    }


@router.get("/stats")
def get_stats(sequencer: Sequencer = Depends(get_sequencer)):
    """Sequencer and ledger statistics"""
    return sequencer.get_stats()


@router.get("/state", response_model=StateResponse)
def get_state(sequencer: Sequencer = Depends(get_sequencer)):
    """Latest committed state root"""
    return StateResponse(**sequencer.get_current_state())


@router.get("/accounts/{address}")
def get_account(address: str, sequencer: Sequencer = Depends(get_sequencer)):
    """Account balance and nonce"""
    account = sequencer.get_account(address)
    if account is None:
        raise NotFoundError(f"Account {address} not found", {"address": address})
    return account
