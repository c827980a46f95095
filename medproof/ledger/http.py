"""
JSON-RPC ledger adapter.

Talks to a registry node exposing ``registry_anchor`` and ``registry_get``
over JSON-RPC 2.0. The node owns ordering and immutability; this client
maps its responses and failures onto the ledger contract.
"""

import itertools
from datetime import datetime
from typing import Any, Dict, Optional

import httpx
import structlog

from .base import Ledger
from .models import AnchorEntry, ChainRef
from ..exceptions import AlreadyAnchoredError, LedgerError, NotFoundError

logger = structlog.get_logger(__name__)

# Application error codes returned by the registry node
RPC_NOT_FOUND = -32004
RPC_ALREADY_ANCHORED = -32009


class JsonRpcLedger(Ledger):
    """Synchronous JSON-RPC client for a remote anchor registry."""

    def __init__(
        self,
        rpc_url: str = "http://127.0.0.1:8545",
        timeout: float = 30.0,
        client: Optional[httpx.Client] = None,
    ):
        self.rpc_url = rpc_url.rstrip("/")
        self._http = client or httpx.Client(base_url=self.rpc_url, timeout=timeout)
        self._ids = itertools.count(1)

    def _call(self, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}

        try:
            resp = self._http.post("/", json=payload)
        except httpx.TimeoutException:
            raise LedgerError("Ledger request timed out", transient=True, reason="timeout")
        except httpx.HTTPError as e:
            raise LedgerError("Ledger node unreachable", transient=True, reason=str(e))

        if resp.status_code >= 500 or resp.status_code == 429:
            raise LedgerError(f"Ledger server error: {resp.status_code}", transient=True)
        if resp.status_code >= 400:
            raise LedgerError(f"Ledger client error: {resp.status_code}", reason=resp.text)

        try:
            body = resp.json()
        except ValueError:
            raise LedgerError("Ledger returned invalid JSON", reason=resp.text)

        if body.get("error"):
            error = body["error"]
            code = error.get("code")
            if code == RPC_NOT_FOUND:
                raise NotFoundError("anchor", str(params.get("record_id")))
            if code == RPC_ALREADY_ANCHORED:
                raise AlreadyAnchoredError(str(params.get("record_id")))
            raise LedgerError(f"Ledger RPC error: {error.get('message', code)}",
                              details={"rpc_code": code})

        result = body.get("result")
        if not isinstance(result, dict):
            raise LedgerError("Ledger returned an empty result")
        return result

    def _to_entry(self, result: Dict[str, Any]) -> AnchorEntry:
        try:
            return AnchorEntry(
                record_id=result["record_id"],
                address=result["address"],
                content_hash=result["content_hash"],
                subject_id=result.get("subject_id"),
                anchored_at=datetime.fromisoformat(result["anchored_at"]),
                chain_ref=ChainRef(tx_ref=result["tx_ref"], block_ref=int(result["block_ref"])),
            )
        except (KeyError, ValueError, TypeError) as e:
            raise LedgerError("Ledger returned a malformed anchor", reason=str(e))

    def anchor(self, record_id: str, address: str, content_hash: str,
               subject_id: Optional[str] = None) -> AnchorEntry:
        result = self._call("registry_anchor", {
            "record_id": record_id,
            "address": address,
            "content_hash": content_hash,
            "subject_id": subject_id,
        })
        entry = self._to_entry(result)
        logger.info("Anchored record on remote ledger", record_id=record_id,
                    tx_ref=entry.chain_ref.tx_ref, block_ref=entry.chain_ref.block_ref)
        return entry

    def get(self, record_id: str) -> AnchorEntry:
        return self._to_entry(self._call("registry_get", {"record_id": record_id}))

    def close(self) -> None:
        self._http.close()
