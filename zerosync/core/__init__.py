"""
Core primitives of the ZeroSync rollup: hashing, errors and events.
"""
