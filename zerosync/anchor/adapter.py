"""
Anchoring interface for publishing proven batches to an external chain.

The sequencer hands a proven batch and its proof to an adapter and records the
receipt it gets back. Adapters never touch the ledger themselves.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from zerosync.zk.engine import Proof


@dataclass
class AnchorReceipt:
    """Acknowledgement of an anchored batch"""
    tx_reference: str
    confirmed_height: int
    submitted_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tx_reference": self.tx_reference,
            "confirmed_height": self.confirmed_height,
            "submitted_at": self.submitted_at,
        }


class AnchorAdapter(ABC):
    """
    Base class for L1 anchoring backends.

    Every failure (rejection, transport, pause) surfaces as AnchorError so the
    sequencer can keep the batch proven and retry later.
    """

    name = "abstract"

    @abstractmethod
    def submit(self, batch: dict[str, Any], proof: Proof) -> AnchorReceipt:
        """
        Publish a proven batch.

        Raises:
            AnchorError: If the external chain rejects or cannot be reached
        """

    @abstractmethod
    def get_latest(self, n: int = 10) -> list[dict[str, Any]]:
        """Most recently anchored batches, newest first."""

    @abstractmethod
    def get_current_root(self) -> str:
        """Latest state root accepted by the external chain."""

    @abstractmethod
    def is_paused(self) -> bool:
        """Whether the external chain currently refuses submissions."""

    def close(self) -> None:
        """Release transport resources."""
