"""
Proof engines for ZeroSync batches.
"""

from typing import Any

from zerosync.zk.engine import ProofEngine, BatchInputs, Proof, compute_proof_hash
from zerosync.zk.mock_engine import MockProofEngine
from zerosync.zk.circuit_engine import CircuitProofEngine

PROOF_MODES = ("mock", "real", "groth16")


def create_proof_engine(mode: str = "mock", **options: Any) -> ProofEngine:
    """
    Create a proof engine for the configured mode.

    Args:
        mode: "mock", or "real"/"groth16" for the snarkjs circuit
        **options: circuit_dir, snarkjs_bin, timeout (circuit engine only)

    Raises:
        ValueError: Unknown mode
    """
    if mode == "mock":
        return MockProofEngine()
    if mode in ("real", "groth16"):
        return CircuitProofEngine(
            circuit_dir=options.get("circuit_dir"),
            snarkjs_bin=options.get("snarkjs_bin"),
            timeout=options.get("timeout"),
        )
    raise ValueError(f"Unknown proof mode: {mode}")


__all__ = [
    "ProofEngine",
    "BatchInputs",
    "Proof",
    "compute_proof_hash",
    "MockProofEngine",
    "CircuitProofEngine",
    "PROOF_MODES",
    "create_proof_engine",
]
