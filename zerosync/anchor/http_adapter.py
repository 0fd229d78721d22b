"""
HTTP client for an external anchoring relay.

The relay fronts the on-chain contract; this adapter only speaks JSON to it:
POST /submit, GET /batches/latest, GET /root and GET /paused.
"""

import logging
from typing import Any

import httpx

from zerosync.anchor.adapter import AnchorAdapter, AnchorReceipt
from zerosync.config.settings import settings
from zerosync.core.exceptions import AnchorError
from zerosync.zk.engine import Proof

logger = logging.getLogger(__name__)


class HttpAnchorAdapter(AnchorAdapter):
    """Anchoring relay client over httpx"""

    name = "http"

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None
    ):
        """
        Initialize the relay client.

        Args:
            base_url: Relay root URL. Defaults to settings.ANCHOR_URL
            timeout: Request timeout in seconds. Defaults to settings.ANCHOR_TIMEOUT
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.base_url = base_url or settings.ANCHOR_URL
        if not self.base_url:
            raise ValueError("Anchor relay URL is required")

        self.client = httpx.Client(
            base_url=self.base_url,
            timeout=timeout or settings.ANCHOR_TIMEOUT,
            transport=transport,
        )

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = self.client.request(method, path, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise AnchorError(
                f"Anchor relay returned {e.response.status_code} for {method} {path}",
                {"status_code": e.response.status_code, "body": e.response.text[:500]},
            ) from e
        except httpx.HTTPError as e:
            raise AnchorError(f"Anchor relay unreachable: {e}") from e
        except ValueError as e:
            raise AnchorError(f"Anchor relay sent invalid JSON for {method} {path}") from e

    def submit(self, batch: dict[str, Any], proof: Proof) -> AnchorReceipt:
        body = {
            "batch_id": batch["batch_id"],
            "old_state_root": batch["old_state_root"],
            "new_state_root": batch["new_state_root"],
            "tx_count": batch["tx_count"],
            "proof_type": proof.proof_type,
            "proof": proof.payload,
            "public_signals": proof.public_signals,
            "proof_hash": proof.proof_hash,
        }
        data = self._request("POST", "/submit", json=body)

        tx_reference = data.get("tx_hash") or data.get("txHash")
        block_number = data.get("block_number", data.get("blockNumber"))
        if not tx_reference or block_number is None:
            raise AnchorError("Anchor relay response is missing tx_hash or block_number", {"response": data})

        logger.info(f"Relay anchored batch {batch['batch_id']} in block {block_number}")
        return AnchorReceipt(tx_reference=str(tx_reference), confirmed_height=int(block_number))

    def get_latest(self, n: int = 10) -> list[dict[str, Any]]:
        data = self._request("GET", "/batches/latest", params={"count": n})
        if isinstance(data, dict):
            return list(data.get("batches", []))
        return list(data)

    def get_current_root(self) -> str:
        return self._request("GET", "/root")["root"]

    def is_paused(self) -> bool:
        return bool(self._request("GET", "/paused")["paused"])

    def close(self) -> None:
        self.client.close()
