"""
Sequencing module for the ZeroSync rollup.
"""

from zerosync.consensus.batch_policy import BatchPolicy
from zerosync.consensus.sequencer import Sequencer, SequencerStatus

__all__ = [
    "BatchPolicy",
    "Sequencer",
    "SequencerStatus",
]
