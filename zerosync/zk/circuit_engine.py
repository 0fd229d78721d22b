"""
Groth16 proof strategy backed by the snarkjs command line.

The circuit itself is a black box: this module writes the circuit input, runs
`snarkjs groth16 fullprove` to obtain proof.json/public.json and
`snarkjs groth16 verify` to check them. State roots are SHA-256 digests and do not
fit the BN254 scalar field, so they are reduced before entering the circuit.
"""

import json
import logging
import os
import shutil
import subprocess
import tempfile
from typing import Any

from zerosync.config.settings import settings
from zerosync.core.exceptions import ProofGenerationError, CircuitNotReady
from zerosync.core.utils import to_field_element
from zerosync.zk.engine import ProofEngine, BatchInputs, Proof

logger = logging.getLogger(__name__)

WASM_FILE = "rollup.wasm"
ZKEY_FILE = "rollup_final.zkey"
VKEY_FILE = "verification_key.json"


class CircuitProofEngine(ProofEngine):
    """
    Real proof engine (Groth16 over BN254).

    Usage:
        engine = CircuitProofEngine(circuit_dir="./circuits/build")
        engine.ensure_ready()
        proof = engine.generate_proof(inputs)
    """

    proof_type = "groth16"

    def __init__(
        self,
        circuit_dir: str | None = None,
        snarkjs_bin: str | None = None,
        timeout: float | None = None
    ):
        """
        Initialize the circuit engine.

        Args:
            circuit_dir: Directory holding rollup.wasm, rollup_final.zkey and
                         verification_key.json. Defaults to settings.CIRCUIT_DIR
            snarkjs_bin: snarkjs executable. Defaults to settings.SNARKJS_BIN
            timeout: Seconds allowed per snarkjs invocation. Defaults to settings.PROOF_TIMEOUT
        """
        super().__init__()
        self.circuit_dir = circuit_dir or settings.CIRCUIT_DIR
        self.snarkjs_bin = snarkjs_bin or settings.SNARKJS_BIN
        self.timeout = timeout or settings.PROOF_TIMEOUT

        logger.info(f"CircuitProofEngine initialized with circuit dir {self.circuit_dir}")

    def _artifact(self, name: str) -> str | None:
        """Locate an artifact in the circuit dir or its rollup_js/ subfolder."""
        for candidate in (
            os.path.join(self.circuit_dir, name),
            os.path.join(self.circuit_dir, "rollup_js", name),
        ):
            if os.path.isfile(candidate):
                return candidate
        return None

    def _binary(self) -> str | None:
        if os.path.isfile(self.snarkjs_bin) and os.access(self.snarkjs_bin, os.X_OK):
            return self.snarkjs_bin
        return shutil.which(self.snarkjs_bin)

    def ensure_ready(self) -> None:
        missing = [name for name in (WASM_FILE, ZKEY_FILE, VKEY_FILE) if self._artifact(name) is None]
        if missing:
            raise CircuitNotReady(
                f"Circuit artifacts missing in {self.circuit_dir}: {', '.join(missing)}",
                {"circuit_dir": self.circuit_dir, "missing": missing},
            )

        if self._binary() is None:
            raise CircuitNotReady(
                f"Prover binary '{self.snarkjs_bin}' not found",
                {"snarkjs_bin": self.snarkjs_bin},
            )

    def circuit_input(self, inputs: BatchInputs) -> dict[str, str]:
        """Witness input file contents, as decimal field elements."""
        return {
            "oldStateRoot": str(to_field_element(inputs.old_state_root)),
            "newStateRoot": str(to_field_element(inputs.new_state_root)),
            "txCount": str(inputs.tx_count),
        }

    def public_signals(self, inputs: BatchInputs) -> list[str]:
        circuit_input = self.circuit_input(inputs)
        return [circuit_input["oldStateRoot"], circuit_input["newStateRoot"], circuit_input["txCount"]]

    def _run(self, *args: str) -> subprocess.CompletedProcess:
        binary = self._binary()
        if binary is None:
            raise CircuitNotReady(f"Prover binary '{self.snarkjs_bin}' not found")

        command = [binary, *args]
        logger.debug(f"Running {' '.join(command)}")
        try:
            return subprocess.run(command, capture_output=True, text=True, timeout=self.timeout, check=False)
        except subprocess.TimeoutExpired as e:
            raise ProofGenerationError(
                f"snarkjs {args[0]} {args[1]} timed out after {self.timeout}s"
            ) from e
        except OSError as e:
            raise ProofGenerationError(f"Failed to run snarkjs: {e}") from e

    def _prove(self, inputs: BatchInputs) -> tuple[dict[str, Any], list[str]]:
        self.ensure_ready()
        expected = self.public_signals(inputs)

        with tempfile.TemporaryDirectory(prefix="zerosync-proof-") as workdir:
            input_path = os.path.join(workdir, "input.json")
            proof_path = os.path.join(workdir, "proof.json")
            public_path = os.path.join(workdir, "public.json")

            with open(input_path, "w") as f:
                json.dump(self.circuit_input(inputs), f)

            result = self._run(
                "groth16", "fullprove",
                input_path, self._artifact(WASM_FILE), self._artifact(ZKEY_FILE),
                proof_path, public_path,
            )
            if result.returncode != 0:
                raise ProofGenerationError(
                    f"snarkjs fullprove failed for batch {inputs.batch_id}",
                    {"stderr": (result.stderr or result.stdout).strip()[-2000:]},
                )

            try:
                with open(proof_path) as f:
                    payload = json.load(f)
                with open(public_path) as f:
                    signals = [str(s) for s in json.load(f)]
            except (OSError, ValueError) as e:
                raise ProofGenerationError(f"snarkjs produced unreadable output: {e}") from e

        if signals != expected:
            raise ProofGenerationError(
                f"Circuit public signals do not restate batch {inputs.batch_id}",
                {"expected": expected, "received": signals},
            )

        return payload, signals

    def _verify(self, proof: Proof) -> bool:
        self.ensure_ready()

        with tempfile.TemporaryDirectory(prefix="zerosync-verify-") as workdir:
            proof_path = os.path.join(workdir, "proof.json")
            public_path = os.path.join(workdir, "public.json")

            with open(proof_path, "w") as f:
                json.dump(proof.payload, f)
            with open(public_path, "w") as f:
                json.dump(proof.public_signals, f)

            result = self._run("groth16", "verify", self._artifact(VKEY_FILE), public_path, proof_path)

        return result.returncode == 0 and "OK" in result.stdout
