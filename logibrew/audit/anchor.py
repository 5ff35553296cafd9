"""
Anchor sinks.

After each append the decision logger mirrors the chain's new root hash to
an external document (a content property on a wiki page by default). The
mirror lets operators detect a wholesale rewrite of the chain store.

Anchoring is best-effort: a sink reports failure through its ack and the
logger only logs it.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
import structlog

from logibrew.audit.schemas import AnchorAck, HashRoot

logger = structlog.get_logger(__name__)

ANCHOR_PROPERTY_KEY = "logibrew-hash-root"


class AnchorSink(ABC):
    """Out-of-band store for chain root hashes."""

    name: str = "abstract"

    @abstractmethod
    async def store(
        self,
        anchor_id: str,
        hash_root: HashRoot,
        metadata: Optional[dict[str, Any]] = None,
    ) -> AnchorAck:
        """Persist hash_root under anchor_id."""

    async def close(self) -> None:
        """Release network resources."""


class InMemoryAnchorSink(AnchorSink):
    """
    In-memory anchor sink for development and testing.

    NOT FOR PRODUCTION USE - roots are lost on restart.
    """

    name = "memory"

    def __init__(self):
        self._latest: dict[str, HashRoot] = {}
        self.history: list[tuple[str, HashRoot, dict[str, Any]]] = []

    async def store(
        self,
        anchor_id: str,
        hash_root: HashRoot,
        metadata: Optional[dict[str, Any]] = None,
    ) -> AnchorAck:
        current = self._latest.get(anchor_id)
        # Out-of-order completions never move a root backwards
        if current is None or hash_root.sequence >= current.sequence:
            self._latest[anchor_id] = hash_root
        self.history.append((anchor_id, hash_root, dict(metadata or {})))
        return AnchorAck(anchor_id=anchor_id, accepted=True, location=f"memory://{anchor_id}")

    def latest(self, anchor_id: str) -> Optional[HashRoot]:
        return self._latest.get(anchor_id)


class HttpAnchorSink(AnchorSink):
    """
    Writes roots as a JSON content property over HTTP.

    POST {base_url}/content/{anchor_id}/property/logibrew-hash-root
    """

    name = "http"

    def __init__(
        self,
        base_url: str,
        api_token: Optional[str] = None,
        timeout_seconds: float = 2.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._api_token = api_token
        self._timeout_seconds = timeout_seconds
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout_seconds))
        return self._client

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._api_token:
            headers["Authorization"] = f"Bearer {self._api_token}"
        return headers

    def property_url(self, anchor_id: str) -> str:
        return f"{self._base_url}/content/{anchor_id}/property/{ANCHOR_PROPERTY_KEY}"

    async def store(
        self,
        anchor_id: str,
        hash_root: HashRoot,
        metadata: Optional[dict[str, Any]] = None,
    ) -> AnchorAck:
        url = self.property_url(anchor_id)
        body = {
            "key": ANCHOR_PROPERTY_KEY,
            "value": {
                "root": hash_root.root_hash,
                "timestamp": hash_root.anchored_at.isoformat(),
                "version": hash_root.version,
                "shipmentId": hash_root.shipment_id,
                "sequence": hash_root.sequence,
                "chainLength": hash_root.chain_length,
                "verifiedAt": datetime.now(timezone.utc).isoformat(),
                **(metadata or {}),
            },
        }

        try:
            response = await self._get_client().post(url, json=body, headers=self._headers())
        except httpx.HTTPError as e:
            logger.error("anchor_http_error", anchor_id=anchor_id, error=str(e))
            return AnchorAck(anchor_id=anchor_id, accepted=False, error=str(e))

        if response.is_success:
            logger.info(
                "anchor_stored",
                anchor_id=anchor_id,
                shipment_id=hash_root.shipment_id,
                sequence=hash_root.sequence,
            )
            return AnchorAck(anchor_id=anchor_id, accepted=True, location=url)

        logger.error(
            "anchor_rejected",
            anchor_id=anchor_id,
            status=response.status_code,
            body=response.text[:200],
        )
        return AnchorAck(
            anchor_id=anchor_id,
            accepted=False,
            error=f"HTTP {response.status_code}",
        )

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
