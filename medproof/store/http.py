"""
IPFS-backed content store speaking the Kubo HTTP RPC API.

Addresses are issued by the node itself (CIDv1, raw leaves), so they are
always content-derived.
"""

from typing import Optional

import httpx
import structlog

from .base import ContentStore
from ..exceptions import NotFoundError, StorageError

logger = structlog.get_logger(__name__)


class IpfsHttpContentStore(ContentStore):
    """Synchronous HTTP client for an IPFS node's ``/api/v0`` endpoints."""

    def __init__(
        self,
        api_url: str = "http://127.0.0.1:5001",
        timeout: float = 30.0,
        client: Optional[httpx.Client] = None,
    ):
        super().__init__()
        self.api_url = api_url.rstrip("/")
        self._http = client or httpx.Client(base_url=self.api_url, timeout=timeout)

    def _post(self, path: str, **kwargs) -> httpx.Response:
        try:
            resp = self._http.post(path, **kwargs)
        except httpx.TimeoutException:
            raise StorageError("IPFS request timed out", transient=True, reason="timeout")
        except httpx.HTTPError as e:
            raise StorageError("IPFS node unreachable", transient=True, reason=str(e))

        if resp.status_code >= 500 or resp.status_code == 429:
            # Kubo reports unknown blocks as 500 with a "not found" message
            if "not found" in resp.text.lower():
                return resp
            raise StorageError(f"IPFS server error: {resp.status_code}", transient=True)
        return resp

    def put(self, data: bytes) -> str:
        resp = self._post(
            "/api/v0/add",
            params={"cid-version": "1", "raw-leaves": "true", "pin": "true"},
            files={"file": ("record.bin", bytes(data), "application/octet-stream")},
        )
        if resp.status_code >= 400:
            raise StorageError(f"IPFS add failed: {resp.status_code}", reason=resp.text)

        try:
            address = resp.json()["Hash"]
        except (ValueError, KeyError):
            raise StorageError("IPFS add returned an invalid response", reason=resp.text)

        logger.info("Uploaded content to IPFS", address=address, size=len(data))
        return address

    def get(self, address: str) -> bytes:
        resp = self._post("/api/v0/cat", params={"arg": address})
        if resp.status_code == 404 or (resp.status_code >= 400 and "not found" in resp.text.lower()):
            raise NotFoundError("content", address)
        if resp.status_code >= 400:
            raise StorageError(f"IPFS cat failed: {resp.status_code}", reason=resp.text)

        logger.debug("Downloaded content from IPFS", address=address)
        return resp.content

    def exists(self, address: str) -> bool:
        resp = self._post("/api/v0/block/stat", params={"arg": address})
        return resp.status_code < 400

    def close(self) -> None:
        self._http.close()
