"""
Utility functions for the ZeroSync rollup.

This module provides the hashing and canonical serialization helpers that the
ledger, the sequencer and the proof engines share. Everything that ends up in a
hash goes through canonical_json so the same content always yields the same digest.
"""

import hashlib
import json
from typing import Any

# Scalar field of the BN254 curve used by the Groth16 circuit
BN254_FIELD_PRIME = 21888242871839275222246405745257275088548364400416034343698204186575808495617

# Largest accepted nonce; the sender account advances to nonce + 1 in a signed 64-bit column
MAX_NONCE = 2 ** 63 - 2


def canonical_json(data: Any) -> str:
    """Serialize data to JSON with sorted keys and no whitespace."""
    return json.dumps(data, sort_keys=True, separators=(',', ':'))


def compute_hash_standalone(data_string: str) -> str:
    """SHA-256 hex digest of a string."""
    return hashlib.sha256(data_string.encode()).hexdigest()


def generate_hash(data: str | dict[str, Any] | list[Any]) -> str:
    """
    Generate SHA-256 hash for given data.

    Args:
        data: Data to hash (string, dictionary or list)

    Returns:
        SHA-256 hash as hexadecimal string
    """
    if isinstance(data, (dict, list)):
        data_string = canonical_json(data)
    else:
        data_string = str(data)

    return compute_hash_standalone(data_string)


def transaction_fields(sender: str, recipient: str, value: int, data: str, nonce: int) -> dict[str, Any]:
    """Fields that identify a transaction. Value is a decimal string to keep precision."""
    return {
        "from": sender,
        "to": recipient,
        "value": str(value),
        "data": data,
        "nonce": nonce,
    }


def compute_tx_hash(sender: str, recipient: str, value: int, data: str, nonce: int) -> str:
    """
    Deterministic transaction hash.

    Identical (from, to, value, data, nonce) always produce the same hash, which is
    what makes resubmission idempotent.
    """
    return "0x" + generate_hash(transaction_fields(sender, recipient, value, data, nonce))


def serialize_transactions(transactions: list[dict[str, Any]]) -> str:
    """Canonical, order-preserving serialization of a batch's transactions."""
    return canonical_json([
        {
            "hash": tx["tx_hash"],
            "from": tx["from_address"],
            "to": tx["to_address"],
            "value": str(tx["value"]),
            "data": tx.get("data") or "",
            "nonce": tx.get("nonce") or 0,
        }
        for tx in transactions
    ])


def compute_state_root(current_root: str, transactions: list[dict[str, Any]]) -> str:
    """
    State transition function: H(current_root || serialize(transactions)).

    Args:
        current_root: Latest committed state root
        transactions: Ordered transactions of the batch

    Returns:
        New state root, "0x" prefixed
    """
    return "0x" + compute_hash_standalone(current_root + serialize_transactions(transactions))


def to_field_element(value: str | int) -> int:
    """
    Reduce a hex digest or integer into the BN254 scalar field.

    Args:
        value: "0x" prefixed hex string, decimal string or int

    Returns:
        Integer in [0, BN254_FIELD_PRIME)
    """
    if isinstance(value, int):
        return value % BN254_FIELD_PRIME

    text = value.strip()
    if text.lower().startswith("0x"):
        return int(text, 16) % BN254_FIELD_PRIME
    return int(text) % BN254_FIELD_PRIME


def parse_amount(value: Any) -> int:
    """
    Parse a non-negative integer amount of arbitrary size.

    Accepts ints and decimal strings. Booleans, floats and negative numbers are rejected.

    Raises:
        ValueError: If value is not a non-negative integer
    """
    if isinstance(value, bool):
        raise ValueError("value must be an integer, not a boolean")

    if isinstance(value, int):
        amount = value
    elif isinstance(value, str) and value.strip().isdigit():
        amount = int(value.strip())
    else:
        raise ValueError(f"value must be a non-negative integer, got {value!r}")

    if amount < 0:
        raise ValueError("value must be non-negative")

    return amount
