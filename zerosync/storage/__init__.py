"""
Persistent ledger storage for ZeroSync.
"""

from zerosync.storage.models import BatchStatus, TransactionStatus, BATCH_TRANSITIONS
from zerosync.storage.sql_backend import LedgerStore

__all__ = [
    "LedgerStore",
    "BatchStatus",
    "TransactionStatus",
    "BATCH_TRANSITIONS",
]
