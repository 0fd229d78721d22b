"""
Pytest configuration for the ZeroSync project.

Ensures the project root is on sys.path and provides ledger and sequencer
fixtures backed by temporary SQLite files.
"""

import os
import sys
import pytest

# Compute project root (parent of this tests directory)
_PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
if _PROJECT_ROOT not in sys.path:
    sys.path.insert(0, _PROJECT_ROOT)

from zerosync.consensus.sequencer import Sequencer  # noqa: E402
from zerosync.storage.sql_backend import LedgerStore  # noqa: E402

GENESIS_ROOT = "0x" + "0" * 64


def make_tx(i: int, **overrides) -> dict:
    """Distinct, valid transaction payload"""
    tx = {
        "from": f"0x{i:040x}",
        "to": f"0x{i + 1000:040x}",
        "value": 100 + i,
        "data": "",
        "nonce": i,
    }
    tx.update(overrides)
    return tx


@pytest.fixture
def db_url(tmp_path):
    """URL of a fresh SQLite ledger file"""
    return f"sqlite:///{tmp_path / 'rollup.db'}"


@pytest.fixture
def store(db_url):
    """Ledger store over a temporary database"""
    ledger = LedgerStore(db_url, genesis_state_root=GENESIS_ROOT)
    yield ledger
    ledger.close()


@pytest.fixture
def make_sequencer(db_url):
    """Factory for sequencers on the temporary database; all are shut down afterwards"""
    created = []

    def _make(**overrides):
        config = {
            "database_url": db_url,
            "batch_size": 3,
            "batch_timeout": 0,
            "proof_mode": "mock",
            "genesis_state_root": GENESIS_ROOT,
            "anchor_enabled": False,
            "auto_start": False,
        }
        components = {k: overrides.pop(k) for k in ("store", "proof_engine", "anchor", "events") if k in overrides}
        config.update(overrides)
        sequencer = Sequencer(config, **components)
        created.append(sequencer)
        return sequencer

    yield _make

    for sequencer in created:
        sequencer.shutdown()


@pytest.fixture
def sequencer(make_sequencer):
    """Stopped sequencer with batch_size=3 and the timer disabled"""
    return make_sequencer()
