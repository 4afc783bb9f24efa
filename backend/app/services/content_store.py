"""
Content-addressed store for premium-tier agent mail (IPFS HTTP API).

Adds the envelope JSON through ``POST {IPFS_API_URL}/api/v0/add`` and returns
the CID reported by the node.
"""

import logging
import os
from typing import Optional

import httpx

from app.models.mail import MessageEnvelope
from app.services.errors import RelayTransportError, UnconfiguredError

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 15.0


class IpfsContentStore:
    def __init__(self, api_url: str, http_client: Optional[httpx.AsyncClient] = None):
        if not api_url:
            raise UnconfiguredError("IPFS_API_URL is not configured")
        self.api_url = api_url.rstrip("/")
        self._http_client = http_client

    @classmethod
    def from_env(cls) -> Optional["IpfsContentStore"]:
        api_url = os.getenv("IPFS_API_URL")
        return cls(api_url) if api_url else None

    async def add(self, identity: str, envelope: MessageEnvelope) -> str:
        """Pin ``envelope`` and return its CID."""
        files = {
            "file": (
                f"{identity}-{envelope.id}.json",
                envelope.model_dump_json().encode("utf-8"),
                "application/json",
            )
        }
        url = f"{self.api_url}/api/v0/add"
        try:
            if self._http_client is not None:
                response = await self._http_client.post(
                    url, files=files, timeout=REQUEST_TIMEOUT_SECONDS
                )
            else:
                async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT_SECONDS) as client:
                    response = await client.post(url, files=files)
        except httpx.HTTPError as exc:
            raise RelayTransportError(f"IPFS add failed: {exc}") from exc

        if response.status_code != 200:
            raise RelayTransportError(f"IPFS add error: {response.status_code}")

        try:
            cid = response.json().get("Hash")
        except (ValueError, AttributeError):
            cid = None
        if not cid:
            raise RelayTransportError("IPFS add response has no Hash")

        logger.info(f"Pinned message {envelope.id} for {identity!r} as {cid}")
        return cid
