"""
L1 anchoring adapters for ZeroSync.
"""

from typing import Any

from zerosync.anchor.adapter import AnchorAdapter, AnchorReceipt
from zerosync.anchor.main_chain import MainChainAnchor
from zerosync.anchor.http_adapter import HttpAnchorAdapter
from zerosync.zk.engine import ProofEngine


def create_anchor_adapter(config: dict[str, Any], verifier: ProofEngine | None = None,
                          genesis_state_root: str | None = None) -> AnchorAdapter | None:
    """
    Build the configured anchor adapter.

    Args:
        config: Anchoring configuration (see Settings.get_anchor_config)
        verifier: Proof engine the in-process main chain re-verifies with
        genesis_state_root: Root the main chain starts from

    Returns:
        Adapter, or None when anchoring is disabled
    """
    if not config.get("enabled"):
        return None

    backend = config.get("backend", "main_chain")
    if backend == "main_chain":
        return MainChainAnchor(verifier=verifier, genesis_state_root=genesis_state_root)
    if backend == "http":
        return HttpAnchorAdapter(base_url=config.get("url"), timeout=config.get("timeout"))
    raise ValueError(f"Unknown anchor backend: {backend}")


__all__ = [
    "AnchorAdapter",
    "AnchorReceipt",
    "MainChainAnchor",
    "HttpAnchorAdapter",
    "create_anchor_adapter",
]
