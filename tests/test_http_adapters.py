"""
Tests for the IPFS and JSON-RPC ledger adapters against mocked transports
"""

import json
from typing import Any, Dict

import httpx
import pytest

from medproof.consent import ConsentDecision
from medproof.crypto import content_hash
from medproof.exceptions import AlreadyAnchoredError, LedgerError, NotFoundError, StorageError
from medproof.ledger import JsonRpcLedger
from medproof.service import MedProofService
from medproof.store import ContentAddressing, IpfsHttpContentStore


class FakeIpfsNode:
    """Minimal Kubo RPC behaviour over a dict of blocks"""

    def __init__(self):
        self.blocks: Dict[str, bytes] = {}
        self.fail_with: int | None = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if self.fail_with:
            return httpx.Response(self.fail_with, text="node overloaded")

        path = request.url.path
        if path == "/api/v0/add":
            assert request.url.params["cid-version"] == "1"
            body = request.read()
            # Recover the single multipart file payload
            boundary = request.headers["content-type"].split("boundary=")[1].encode()
            part = body.split(b"--" + boundary)[1]
            data = part.split(b"\r\n\r\n", 1)[1].rsplit(b"\r\n", 1)[0]
            cid = ContentAddressing().address_for(data)
            self.blocks[cid] = data
            return httpx.Response(200, json={"Name": cid, "Hash": cid, "Size": str(len(data))})

        cid = request.url.params["arg"]
        if cid not in self.blocks:
            return httpx.Response(500, json={"Message": "block was not found locally (offline)",
                                             "Code": 0, "Type": "error"})
        if path == "/api/v0/cat":
            return httpx.Response(200, content=self.blocks[cid])
        if path == "/api/v0/block/stat":
            return httpx.Response(200, json={"Key": cid, "Size": len(self.blocks[cid])})
        return httpx.Response(404)


class FakeRegistryNode:
    """JSON-RPC registry holding one anchor per record"""

    def __init__(self):
        self.anchors: Dict[str, Dict[str, Any]] = {}
        self.fail_with: int | None = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if self.fail_with:
            return httpx.Response(self.fail_with)

        call = json.loads(request.read())
        params = call["params"]
        record_id = params["record_id"]

        if call["method"] == "registry_anchor":
            if record_id in self.anchors:
                return self._error(call, -32009, "already anchored")
            anchor = dict(params)
            anchor.update({
                "anchored_at": "2026-01-15T09:00:00+00:00",
                "tx_ref": "0x" + content_hash(record_id.encode()),
                "block_ref": len(self.anchors) + 1,
            })
            self.anchors[record_id] = anchor
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": call["id"], "result": anchor})

        if call["method"] == "registry_get":
            if record_id not in self.anchors:
                return self._error(call, -32004, "not found")
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": call["id"],
                                             "result": self.anchors[record_id]})

        return self._error(call, -32601, "method not found")

    @staticmethod
    def _error(call, code, message):
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": call["id"],
                                         "error": {"code": code, "message": message}})


def _ipfs_store(node):
    client = httpx.Client(base_url="http://ipfs.test", transport=httpx.MockTransport(node))
    return IpfsHttpContentStore("http://ipfs.test", client=client)


def _ledger(node):
    client = httpx.Client(base_url="http://ledger.test", transport=httpx.MockTransport(node))
    return JsonRpcLedger("http://ledger.test", client=client)


class TestIpfsHttpContentStore:
    """Test the IPFS adapter"""

    def setup_method(self):
        self.node = FakeIpfsNode()
        self.store = _ipfs_store(self.node)

    def teardown_method(self):
        self.store.close()

    def test_put_get(self):
        address = self.store.put(b"encrypted bytes")

        assert address == ContentAddressing().address_for(b"encrypted bytes")
        assert self.store.get(address) == b"encrypted bytes"
        assert self.store.exists(address)

    def test_unknown_block(self):
        with pytest.raises(NotFoundError):
            self.store.get("bafkreimissing")
        assert not self.store.exists("bafkreimissing")

    def test_server_error_is_transient(self):
        self.node.fail_with = 503

        with pytest.raises(StorageError) as exc_info:
            self.store.put(b"data")
        assert exc_info.value.transient

    def test_timeout_is_transient(self):
        def timeout(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        store = _ipfs_store(timeout)

        with pytest.raises(StorageError) as exc_info:
            store.get("bafkreiany")
        assert exc_info.value.transient


class TestJsonRpcLedger:
    """Test the JSON-RPC ledger adapter"""

    def setup_method(self):
        self.node = FakeRegistryNode()
        self.ledger = _ledger(self.node)

    def teardown_method(self):
        self.ledger.close()

    def test_anchor_and_get(self):
        entry = self.ledger.anchor("REC1", "bafkreiaaaa", content_hash(b"x"), subject_id="P001")

        assert entry.chain_ref.block_ref == 1
        assert entry.anchored_at.tzinfo is not None
        assert self.ledger.get("REC1") == entry

    def test_duplicate_anchor(self):
        self.ledger.anchor("REC1", "bafkreiaaaa", content_hash(b"x"))

        with pytest.raises(AlreadyAnchoredError):
            self.ledger.anchor("REC1", "bafkreiaaaa", content_hash(b"x"))

    def test_unknown_record(self):
        with pytest.raises(NotFoundError):
            self.ledger.get("REC404")

    def test_server_error_is_transient(self):
        self.node.fail_with = 502

        with pytest.raises(LedgerError) as exc_info:
            self.ledger.get("REC1")
        assert exc_info.value.transient

    def test_client_error_is_permanent(self):
        self.node.fail_with = 400

        with pytest.raises(LedgerError) as exc_info:
            self.ledger.get("REC1")
        assert not exc_info.value.transient


class TestRemoteService:
    """Test the service over remote adapters"""

    def test_upload_and_verify(self, config, fast_retry, clock):
        ipfs = FakeIpfsNode()
        registry = FakeRegistryNode()
        service = MedProofService(store=_ipfs_store(ipfs), ledger=_ledger(registry),
                                  config=config, retry_policy=fast_retry, clock=clock)

        record = service.upload_record("P001", "MRI Scan", "Knee", "HOSP001", b"meniscus tear")
        request = service.pending_consents("P001")[0]
        service.resolve_consent(request.id, ConsentDecision.APPROVE)

        result = service.verify_record(record.id, "INS001")
        assert result.is_valid
        assert result.consent_granted

        ipfs.blocks[record.address] = b"swapped"
        assert not service.verify_record(record.id, "INS001").is_valid

        ipfs.fail_with = 503
        degraded = service.verify_record(record.id, "INS001")
        assert degraded.error == "storage_unavailable"

        service.close()
