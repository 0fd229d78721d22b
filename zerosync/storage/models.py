"""
SQLAlchemy Models for the ZeroSync ledger.

This module defines the database schema of the rollup: the transaction pool,
batches, proofs, the append-only state-root chain and the illustrative L2 accounts.
"""

import time
from enum import Enum

from sqlalchemy import Column, Integer, String, Float, Text, Boolean, ForeignKey, JSON, Index
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class TransactionStatus(Enum):
    """Transaction lifecycle"""
    PENDING = "pending"
    BATCHED = "batched"
    CONFIRMED = "confirmed"


class BatchStatus(Enum):
    """Batch lifecycle"""
    PENDING = "pending"
    PROVING = "proving"
    PROVEN = "proven"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    FAILED = "failed"


# Allowed batch status transitions. Statuses missing as keys are terminal.
BATCH_TRANSITIONS: dict[BatchStatus, set[BatchStatus]] = {
    BatchStatus.PENDING: {BatchStatus.PROVING, BatchStatus.FAILED},
    BatchStatus.PROVING: {BatchStatus.PROVEN, BatchStatus.FAILED},
    BatchStatus.PROVEN: {BatchStatus.SUBMITTED},
    BatchStatus.SUBMITTED: {BatchStatus.CONFIRMED},
}


class BatchModel(Base):
    """
    A group of transactions committed with one state-root transition.
    """
    __tablename__ = 'batches'

    batch_id = Column(Integer, primary_key=True, autoincrement=True)
    old_state_root = Column(String(66), nullable=False)
    new_state_root = Column(String(66), nullable=False)
    tx_count = Column(Integer, nullable=False)
    status = Column(String(16), nullable=False, default=BatchStatus.PENDING.value)

    proof_hash = Column(String(66), nullable=True)
    l1_tx_hash = Column(String(130), nullable=True)
    l1_block_number = Column(Integer, nullable=True)
    error = Column(Text, nullable=True)

    created_at = Column(Float, nullable=False, default=time.time)
    updated_at = Column(Float, nullable=False, default=time.time, onupdate=time.time)

    transactions = relationship("TransactionModel", back_populates="batch")
    proof = relationship("ProofModel", back_populates="batch", uselist=False)

    __table_args__ = (
        Index('idx_batch_status', 'status'),
    )

    def __repr__(self):
        return f"<Batch(id={self.batch_id}, status='{self.status}', txs={self.tx_count})>"


class TransactionModel(Base):
    """
    A submitted L2 transaction. Never deleted.
    """
    __tablename__ = 'transactions'

    # Insertion order breaks ties between equal timestamps
    id = Column(Integer, primary_key=True, autoincrement=True)
    tx_hash = Column(String(66), unique=True, nullable=False)

    from_address = Column(String(128), nullable=False)
    to_address = Column(String(128), nullable=False)
    value = Column(Text, nullable=False)  # arbitrary precision integer
    data = Column(Text, nullable=False, default="")
    nonce = Column(Integer, nullable=False, default=0)

    status = Column(String(16), nullable=False, default=TransactionStatus.PENDING.value)
    batch_id = Column(Integer, ForeignKey('batches.batch_id'), nullable=True)
    created_at = Column(Float, nullable=False, default=time.time)

    batch = relationship("BatchModel", back_populates="transactions")

    __table_args__ = (
        Index('idx_tx_status', 'status'),
        Index('idx_tx_batch', 'batch_id'),
    )

    def __repr__(self):
        return f"<Transaction(hash='{self.tx_hash[:10]}...', status='{self.status}')>"


class ProofModel(Base):
    """
    Proof of one batch's state transition (1:1 with batches).
    """
    __tablename__ = 'proofs'

    proof_id = Column(Integer, primary_key=True, autoincrement=True)
    batch_id = Column(Integer, ForeignKey('batches.batch_id'), unique=True, nullable=False)

    proof_type = Column(String(16), nullable=False)  # mock, groth16
    proof_data = Column(JSON, nullable=False)
    public_signals = Column(JSON, nullable=False)
    proof_hash = Column(String(66), nullable=False)
    generation_time_ms = Column(Float, nullable=False, default=0.0)
    verified = Column(Boolean, nullable=False, default=False)
    created_at = Column(Float, nullable=False, default=time.time)

    batch = relationship("BatchModel", back_populates="proof")

    __table_args__ = (
        Index('idx_proof_batch', 'batch_id'),
    )

    def __repr__(self):
        return f"<Proof(batch={self.batch_id}, type='{self.proof_type}')>"


class StateRootModel(Base):
    """
    Append-only chain of state roots. The current root has the maximum height.
    """
    __tablename__ = 'state_roots'

    state_root = Column(String(66), primary_key=True)
    batch_id = Column(Integer, ForeignKey('batches.batch_id'), nullable=False)
    height = Column(Integer, unique=True, nullable=False)
    created_at = Column(Float, nullable=False, default=time.time)

    def __repr__(self):
        return f"<StateRoot(height={self.height}, root='{self.state_root[:10]}...')>"


class AccountModel(Base):
    """
    Simplified L2 account state, updated when batches commit.
    """
    __tablename__ = 'accounts'

    address = Column(String(128), primary_key=True)
    balance = Column(Text, nullable=False, default="0")  # signed, arbitrary precision
    nonce = Column(Integer, nullable=False, default=0)
    last_updated = Column(Float, nullable=False, default=time.time, onupdate=time.time)

    def __repr__(self):
        return f"<Account(address='{self.address}', balance={self.balance})>"
