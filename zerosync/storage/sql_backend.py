"""
SQL Storage Backend for the ZeroSync ledger.

This module implements the persistent ledger using SQLAlchemy. It owns every
persisted record of the rollup (transactions, batches, proofs, state roots and
accounts) and is the only place where they are written. Multi-row changes such as
committing a batch run in a single database transaction, so a crash leaves either
no trace of the batch or the whole batch.
"""

import logging
import os
import threading
import time
from contextlib import contextmanager
from typing import Any, Generator, Iterable

from sqlalchemy import create_engine, event, func
from sqlalchemy.engine import make_url
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker, scoped_session
from sqlalchemy.pool import StaticPool

from zerosync.config.settings import settings
from zerosync.core.exceptions import (
    RollupError,
    StorageError,
    PartialUpdateError,
    DuplicateTransaction,
    DuplicateProof,
    InvalidTransition,
    ChainContinuityError,
    NotFoundError,
)
from zerosync.storage.models import (
    Base,
    BatchModel,
    TransactionModel,
    ProofModel,
    StateRootModel,
    AccountModel,
    BatchStatus,
    TransactionStatus,
    BATCH_TRANSITIONS,
)

logger = logging.getLogger(__name__)

_BATCH_UPDATE_FIELDS = {"proof_hash", "l1_tx_hash", "l1_block_number", "error"}


class LedgerStore:
    """
    Durable, crash-consistent storage of the rollup ledger.

    All sessions are serialized through one in-process lock: SQLite allows a single
    writer anyway, and the in-memory database shares one connection between threads.
    """

    def __init__(self, connection_string: str | None = None, genesis_state_root: str | None = None):
        """
        Initialize the ledger store.

        Args:
            connection_string: SQLAlchemy URL (e.g., sqlite:///data/rollup.db).
                               Defaults to settings.DATABASE_URL
            genesis_state_root: Root reported at height 0 while no batch exists.
                                Defaults to settings.GENESIS_STATE_ROOT
        """
        self.db_url = connection_string or settings.DATABASE_URL
        self.genesis_state_root = genesis_state_root or settings.GENESIS_STATE_ROOT
        self.engine = self._create_engine(self.db_url)

        # Create all tables (if they don't exist)
        Base.metadata.create_all(self.engine)

        self.Session = scoped_session(sessionmaker(bind=self.engine, expire_on_commit=False))
        self._lock = threading.RLock()
        self._closed = False

        logger.info(f"LedgerStore initialized with {self.db_url}")

    @staticmethod
    def _create_engine(db_url: str):
        """Create the engine; SQLite gets its directory, FK enforcement and thread sharing."""
        url = make_url(db_url)
        if url.get_backend_name() != "sqlite":
            return create_engine(db_url, echo=settings.SQL_ECHO, pool_pre_ping=True)

        database = url.database
        in_memory = not database or database == ":memory:"
        if in_memory:
            engine = create_engine(
                db_url,
                echo=settings.SQL_ECHO,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            directory = os.path.dirname(os.path.abspath(database))
            os.makedirs(directory, exist_ok=True)
            engine = create_engine(
                db_url,
                echo=settings.SQL_ECHO,
                connect_args={"check_same_thread": False, "timeout": 30},
            )

        @event.listens_for(engine, "connect")
        def _sqlite_pragmas(dbapi_connection, _connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            if not in_memory:
                cursor.execute("PRAGMA journal_mode=WAL")
                cursor.execute("PRAGMA synchronous=FULL")
            cursor.close()

        return engine

    @contextmanager
    def _session_scope(self) -> Generator[Session, None, None]:
        """
        Transactional scope around a series of operations.

        Commits on success. Any failure rolls back; raw SQLAlchemy errors surface as
        StorageError so callers never see driver exceptions. Integers the
        driver cannot bind (OverflowError) are reported the same way.
        """
        with self._lock:
            if self._closed:
                raise StorageError("Ledger store is closed")

            session = self.Session()
            try:
                yield session
                session.commit()
            except RollupError:
                session.rollback()
                raise
            except SQLAlchemyError as e:
                session.rollback()
                logger.error(f"Ledger transaction rolled back: {e}")
                raise StorageError(f"Ledger transaction failed: {e}") from e
            except OverflowError as e:
                session.rollback()
                logger.error(f"Ledger rejected an out-of-range value: {e}")
                raise StorageError(f"Value out of range for the ledger: {e}") from e
            finally:
                session.close()

    # ========== Transaction Pool ==========

    def add_transaction(self, tx: dict[str, Any]) -> dict[str, Any]:
        """
        Insert a pending transaction.

        Args:
            tx: Dict with tx_hash, from_address, to_address, value, data, nonce

        Returns:
            Stored transaction as a dictionary

        Raises:
            DuplicateTransaction: If the hash already exists
        """
        with self._session_scope() as session:
            exists = session.query(TransactionModel.id).filter_by(tx_hash=tx["tx_hash"]).first()
            if exists:
                raise DuplicateTransaction(tx["tx_hash"])

            model = TransactionModel(
                tx_hash=tx["tx_hash"],
                from_address=tx["from_address"],
                to_address=tx["to_address"],
                value=str(tx["value"]),
                data=tx.get("data") or "",
                nonce=tx.get("nonce") or 0,
                status=TransactionStatus.PENDING.value,
                created_at=tx.get("created_at") or time.time(),
            )
            session.add(model)
            try:
                session.flush()
            except IntegrityError as e:
                raise DuplicateTransaction(tx["tx_hash"]) from e

            logger.debug(f"Stored pending transaction {model.tx_hash}")
            return self._tx_to_dict(model)

    def get_transaction(self, tx_hash: str) -> dict[str, Any] | None:
        """Retrieve a transaction by hash."""
        with self._session_scope() as session:
            model = session.query(TransactionModel).filter_by(tx_hash=tx_hash).first()
            return self._tx_to_dict(model) if model else None

    def get_pending_transactions(self, limit: int | None = 100) -> list[dict[str, Any]]:
        """
        Pending transactions, oldest first.

        Args:
            limit: Maximum number of transactions, None for all
        """
        with self._session_scope() as session:
            query = (
                session.query(TransactionModel)
                .filter_by(status=TransactionStatus.PENDING.value)
                .order_by(TransactionModel.created_at.asc(), TransactionModel.id.asc())
            )
            if limit is not None:
                query = query.limit(limit)
            return [self._tx_to_dict(m) for m in query.all()]

    def count_pending_transactions(self) -> int:
        """Number of transactions waiting in the pool."""
        with self._session_scope() as session:
            return (
                session.query(func.count(TransactionModel.id))
                .filter_by(status=TransactionStatus.PENDING.value)
                .scalar()
            )

    def mark_batched(self, tx_hashes: list[str], batch_id: int) -> int:
        """
        Move transactions from pending to batched under one batch id.

        Either every listed hash transitions or none does.

        Returns:
            Number of transactions updated

        Raises:
            PartialUpdateError: If any hash is unknown or no longer pending
        """
        with self._session_scope() as session:
            return self._mark_batched(session, tx_hashes, batch_id)

    @staticmethod
    def _mark_batched(session: Session, tx_hashes: list[str], batch_id: int) -> int:
        unique_hashes = set(tx_hashes)
        if len(unique_hashes) != len(tx_hashes):
            raise PartialUpdateError("Duplicate transaction hashes in batch")

        updated = (
            session.query(TransactionModel)
            .filter(
                TransactionModel.tx_hash.in_(list(unique_hashes)),
                TransactionModel.status == TransactionStatus.PENDING.value,
            )
            .update(
                {"status": TransactionStatus.BATCHED.value, "batch_id": batch_id},
                synchronize_session=False,
            )
        )
        if updated != len(unique_hashes):
            raise PartialUpdateError(
                f"Only {updated} of {len(unique_hashes)} transactions were pending",
                {"batch_id": batch_id},
            )
        return updated

    def get_batch_transactions(self, batch_id: int) -> list[dict[str, Any]]:
        """Transactions committed in a batch, in pool order."""
        with self._session_scope() as session:
            models = (
                session.query(TransactionModel)
                .filter_by(batch_id=batch_id)
                .order_by(TransactionModel.created_at.asc(), TransactionModel.id.asc())
                .all()
            )
            return [self._tx_to_dict(m) for m in models]

    # ========== Batches ==========

    def create_batch(self, old_state_root: str, new_state_root: str, tx_count: int) -> int:
        """
        Create a batch in pending status.

        Returns:
            Newly allocated batch id
        """
        with self._session_scope() as session:
            return self._create_batch(session, old_state_root, new_state_root, tx_count).batch_id

    @staticmethod
    def _create_batch(session: Session, old_state_root: str, new_state_root: str, tx_count: int) -> BatchModel:
        now = time.time()
        batch = BatchModel(
            old_state_root=old_state_root,
            new_state_root=new_state_root,
            tx_count=tx_count,
            status=BatchStatus.PENDING.value,
            created_at=now,
            updated_at=now,
        )
        session.add(batch)
        session.flush()
        return batch

    def commit_batch(self, old_state_root: str, new_state_root: str, tx_hashes: list[str]) -> dict[str, Any]:
        """
        Atomically create a batch, mark its transactions and append the new root.

        Args:
            old_state_root: Root the transition starts from; must be the latest committed root
            new_state_root: Root produced by the transition
            tx_hashes: Pending transactions included in the batch, in order

        Returns:
            The created batch

        Raises:
            ChainContinuityError: If old_state_root is no longer the latest root
            PartialUpdateError: If any transaction is not pending anymore
        """
        if not tx_hashes:
            raise PartialUpdateError("Cannot commit an empty batch")

        with self._session_scope() as session:
            current_root, height = self._current_state_root(session)
            if current_root != old_state_root:
                raise ChainContinuityError(
                    "Batch old state root does not match the latest committed root",
                    {"expected": current_root, "received": old_state_root},
                )

            batch = self._create_batch(session, old_state_root, new_state_root, len(tx_hashes))
            self._mark_batched(session, tx_hashes, batch.batch_id)
            self._append_state_root(session, new_state_root, batch.batch_id, height + 1)
            self._apply_account_updates(session, tx_hashes)

            logger.debug(
                f"Committed batch #{batch.batch_id} ({len(tx_hashes)} txs) at height {height + 1}"
            )
            return self._batch_to_dict(batch)

    def update_batch_status(self, batch_id: int, status: BatchStatus | str, **fields: Any) -> dict[str, Any]:
        """
        Move a batch forward in its lifecycle.

        Args:
            batch_id: Batch to update
            status: Target status
            **fields: Optional proof_hash, l1_tx_hash, l1_block_number, error

        Returns:
            Updated batch

        Raises:
            NotFoundError: Unknown batch
            InvalidTransition: Target status not reachable from the current one
        """
        with self._session_scope() as session:
            return self._batch_to_dict(self._update_batch_status(session, batch_id, status, **fields))

    @staticmethod
    def _update_batch_status(session: Session, batch_id: int, status: BatchStatus | str, **fields: Any) -> BatchModel:
        target = BatchStatus(status)

        unknown = set(fields) - _BATCH_UPDATE_FIELDS
        if unknown:
            raise ValueError(f"Unsupported batch fields: {sorted(unknown)}")

        batch = session.get(BatchModel, batch_id)
        if batch is None:
            raise NotFoundError(f"Batch {batch_id} not found", {"batch_id": batch_id})

        current = BatchStatus(batch.status)
        if target not in BATCH_TRANSITIONS.get(current, set()):
            raise InvalidTransition(batch_id, current.value, target.value)

        batch.status = target.value
        for name, value in fields.items():
            if value is not None:
                setattr(batch, name, value)
        batch.updated_at = time.time()

        if target == BatchStatus.CONFIRMED:
            session.query(TransactionModel).filter_by(batch_id=batch_id).update(
                {"status": TransactionStatus.CONFIRMED.value}, synchronize_session=False
            )

        session.flush()
        return batch

    def get_batch(self, batch_id: int) -> dict[str, Any] | None:
        """Retrieve batch by id."""
        with self._session_scope() as session:
            batch = session.get(BatchModel, batch_id)
            return self._batch_to_dict(batch) if batch else None

    def get_batches(self, limit: int = 100) -> list[dict[str, Any]]:
        """Most recent batches first."""
        with self._session_scope() as session:
            batches = session.query(BatchModel).order_by(BatchModel.batch_id.desc()).limit(limit).all()
            return [self._batch_to_dict(b) for b in batches]

    def get_batches_by_status(self, status: BatchStatus | str, limit: int = 100) -> list[dict[str, Any]]:
        """Batches in one status, oldest first (reconciliation order)."""
        with self._session_scope() as session:
            batches = (
                session.query(BatchModel)
                .filter_by(status=BatchStatus(status).value)
                .order_by(BatchModel.batch_id.asc())
                .limit(limit)
                .all()
            )
            return [self._batch_to_dict(b) for b in batches]

    def get_latest_batch(self) -> dict[str, Any] | None:
        """Retrieve the latest batch."""
        batches = self.get_batches(limit=1)
        return batches[0] if batches else None

    # ========== Proofs ==========

    def save_proof(self, proof: dict[str, Any]) -> dict[str, Any]:
        """
        Persist a batch proof.

        Raises:
            DuplicateProof: If the batch already has a proof
        """
        with self._session_scope() as session:
            return self._proof_to_dict(self._save_proof(session, proof))

    @staticmethod
    def _save_proof(session: Session, proof: dict[str, Any]) -> ProofModel:
        batch_id = proof["batch_id"]
        if session.query(ProofModel.proof_id).filter_by(batch_id=batch_id).first():
            raise DuplicateProof(batch_id)

        model = ProofModel(
            batch_id=batch_id,
            proof_type=proof["proof_type"],
            proof_data=proof["proof_data"],
            public_signals=proof["public_signals"],
            proof_hash=proof["proof_hash"],
            generation_time_ms=proof.get("generation_time_ms", 0.0),
            verified=bool(proof.get("verified", False)),
            created_at=time.time(),
        )
        session.add(model)
        try:
            session.flush()
        except IntegrityError as e:
            raise DuplicateProof(batch_id) from e
        return model

    def record_proof(self, proof: dict[str, Any]) -> dict[str, Any]:
        """
        Save a proof and mark its batch proven in one transaction.

        Returns:
            The proven batch
        """
        with self._session_scope() as session:
            saved = self._save_proof(session, proof)
            batch = self._update_batch_status(
                session, saved.batch_id, BatchStatus.PROVEN, proof_hash=saved.proof_hash
            )
            return self._batch_to_dict(batch)

    def get_proof_by_batch(self, batch_id: int) -> dict[str, Any] | None:
        """Retrieve the proof of a batch."""
        with self._session_scope() as session:
            model = session.query(ProofModel).filter_by(batch_id=batch_id).first()
            return self._proof_to_dict(model) if model else None

    # ========== State Roots ==========

    def get_current_state_root(self) -> tuple[str, int]:
        """
        Latest committed state root and its height.

        Returns:
            (root, height); the genesis root at height 0 when no batch exists
        """
        with self._session_scope() as session:
            return self._current_state_root(session)

    def _current_state_root(self, session: Session) -> tuple[str, int]:
        latest = session.query(StateRootModel).order_by(StateRootModel.height.desc()).first()
        if latest is None:
            return self.genesis_state_root, 0
        return latest.state_root, latest.height

    def save_state_root(self, state_root: str, batch_id: int, height: int) -> None:
        """Append a state root to the chain."""
        with self._session_scope() as session:
            self._append_state_root(session, state_root, batch_id, height)

    @staticmethod
    def _append_state_root(session: Session, state_root: str, batch_id: int, height: int) -> None:
        session.add(StateRootModel(
            state_root=state_root,
            batch_id=batch_id,
            height=height,
            created_at=time.time(),
        ))
        session.flush()

    def get_state_roots(self, limit: int = 100) -> list[dict[str, Any]]:
        """Root chain, highest first."""
        with self._session_scope() as session:
            roots = session.query(StateRootModel).order_by(StateRootModel.height.desc()).limit(limit).all()
            return [
                {
                    "state_root": r.state_root,
                    "batch_id": r.batch_id,
                    "height": r.height,
                    "created_at": r.created_at,
                }
                for r in roots
            ]

    # ========== Accounts ==========

    @staticmethod
    def _apply_account_updates(session: Session, tx_hashes: Iterable[str]) -> None:
        """
        Debit senders, credit recipients and advance sender nonces.

        Balances are illustrative: no sufficiency check, so they may go negative.
        """
        transactions = (
            session.query(TransactionModel)
            .filter(TransactionModel.tx_hash.in_(list(tx_hashes)))
            .order_by(TransactionModel.created_at.asc(), TransactionModel.id.asc())
            .all()
        )
        accounts: dict[str, AccountModel] = {}

        def load(address: str) -> AccountModel:
            if address not in accounts:
                account = session.get(AccountModel, address)
                if account is None:
                    account = AccountModel(address=address, balance="0", nonce=0)
                    session.add(account)
                accounts[address] = account
            return accounts[address]

        now = time.time()
        for tx in transactions:
            amount = int(tx.value)
            sender = load(tx.from_address)
            recipient = load(tx.to_address)
            sender.balance = str(int(sender.balance) - amount)
            sender.nonce = max(sender.nonce or 0, tx.nonce + 1)
            sender.last_updated = now
            recipient.balance = str(int(recipient.balance) + amount)
            recipient.last_updated = now

        session.flush()

    def get_account(self, address: str) -> dict[str, Any] | None:
        """Retrieve an account by address."""
        with self._session_scope() as session:
            account = session.get(AccountModel, address)
            if account is None:
                return None
            return {
                "address": account.address,
                "balance": account.balance,
                "nonce": account.nonce,
                "last_updated": account.last_updated,
            }

    # ========== Stats ==========

    def get_stats(self) -> dict[str, Any]:
        """Aggregate counts over the ledger. Read-only."""
        with self._session_scope() as session:
            total_txs = session.query(func.count(TransactionModel.id)).scalar()
            pending_txs = (
                session.query(func.count(TransactionModel.id))
                .filter_by(status=TransactionStatus.PENDING.value)
                .scalar()
            )
            total_batches = session.query(func.count(BatchModel.batch_id)).scalar()
            total_proofs = session.query(func.count(ProofModel.proof_id)).scalar()
            by_status = dict(
                session.query(BatchModel.status, func.count(BatchModel.batch_id))
                .group_by(BatchModel.status)
                .all()
            )

            return {
                "total_transactions": total_txs,
                "pending_transactions": pending_txs,
                "total_batches": total_batches,
                "total_proofs": total_proofs,
                "batches_by_status": {s.value: by_status.get(s.value, 0) for s in BatchStatus},
            }

    # ========== Conversion ==========

    @staticmethod
    def _tx_to_dict(model: TransactionModel) -> dict[str, Any]:
        return {
            "tx_hash": model.tx_hash,
            "from_address": model.from_address,
            "to_address": model.to_address,
            "value": model.value,
            "data": model.data,
            "nonce": model.nonce,
            "status": model.status,
            "batch_id": model.batch_id,
            "created_at": model.created_at,
        }

    @staticmethod
    def _batch_to_dict(model: BatchModel) -> dict[str, Any]:
        return {
            "batch_id": model.batch_id,
            "old_state_root": model.old_state_root,
            "new_state_root": model.new_state_root,
            "tx_count": model.tx_count,
            "status": model.status,
            "proof_hash": model.proof_hash,
            "l1_tx_hash": model.l1_tx_hash,
            "l1_block_number": model.l1_block_number,
            "error": model.error,
            "created_at": model.created_at,
            "updated_at": model.updated_at,
        }

    @staticmethod
    def _proof_to_dict(model: ProofModel) -> dict[str, Any]:
        return {
            "proof_id": model.proof_id,
            "batch_id": model.batch_id,
            "proof_type": model.proof_type,
            "proof_data": model.proof_data,
            "public_signals": model.public_signals,
            "proof_hash": model.proof_hash,
            "generation_time_ms": model.generation_time_ms,
            "verified": model.verified,
            "created_at": model.created_at,
        }

    def close(self):
        """Close connection pool. Further operations raise StorageError."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self.Session.remove()
            self.engine.dispose()
            logger.info("LedgerStore closed")

    @property
    def closed(self) -> bool:
        return self._closed
