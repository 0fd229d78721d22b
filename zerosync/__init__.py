"""
ZeroSync Rollup
===============

A rollup sequencer that batches submitted transactions, proves every batch's
state-root transition and optionally anchors proven batches to an external chain.
"""

from zerosync.units.version import get_version

VERSION = (0, 1, 0, "alpha", 0)

__version__ = get_version(VERSION)

__all__ = ["VERSION", "__version__"]
