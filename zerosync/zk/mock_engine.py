"""
Mock proof strategy.

Deterministic stand-in for a real prover, used for development and tests. The
payload is a magic prefix plus the SHA-256 of the canonical public inputs and
transaction digests, so it is reproducible and any tampering is detectable.
"""

import hashlib
from typing import Any

from zerosync.core.utils import canonical_json
from zerosync.zk.engine import ProofEngine, BatchInputs, Proof

MOCK_MAGIC = "mock_proof"


class MockProofEngine(ProofEngine):
    """
    Mock proof engine.

    Usage:
        engine = MockProofEngine()
        proof = engine.generate_proof(inputs)
        assert engine.verify_proof(proof)
    """

    proof_type = "mock"

    def public_signals(self, inputs: BatchInputs) -> list[str]:
        return [inputs.old_state_root, inputs.new_state_root, str(inputs.tx_count)]

    @staticmethod
    def _digest(inputs: BatchInputs) -> str:
        material = {
            "old_state_root": inputs.old_state_root,
            "new_state_root": inputs.new_state_root,
            "tx_count": inputs.tx_count,
            "tx_digests": list(inputs.tx_digests),
        }
        return hashlib.sha256(canonical_json(material).encode("utf-8")).hexdigest()

    def _prove(self, inputs: BatchInputs) -> tuple[dict[str, Any], list[str]]:
        payload = {
            "protocol": "mock",
            "proof": MOCK_MAGIC.encode("utf-8").hex() + self._digest(inputs),
        }
        return payload, self.public_signals(inputs)

    def _verify(self, proof: Proof) -> bool:
        prefix = MOCK_MAGIC.encode("utf-8").hex()
        encoded = proof.payload.get("proof", "")

        # Check magic prefix
        if not isinstance(encoded, str) or not encoded.startswith(prefix):
            return False

        return encoded[len(prefix):] == self._digest(proof.inputs)
