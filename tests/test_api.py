"""Tests for the MedProof HTTP endpoints."""

from __future__ import annotations

import base64
from typing import Any, Dict

import httpx
import pytest
from fastapi.testclient import TestClient

from medproof.config import ConsentMode, MedProofConfig
from medproof.main import app
import medproof.main as main_mod
from medproof.service import MedProofService

from conftest import TEST_KEY_HEX


client = TestClient(app)

CONTENT = base64.b64encode(b"HbA1c 5.4%").decode("ascii")


@pytest.fixture(autouse=True)
def fresh_service(monkeypatch, service):
    """Each test talks to its own in-memory service."""
    monkeypatch.setattr(main_mod, "medproof_service", service)
    return service


def _upload(**overrides: Any) -> Dict[str, Any]:
    payload = {
        "subject_id": "P001",
        "record_type": "Blood Test",
        "title": "HbA1c",
        "custodian_id": "HOSP001",
        "content_base64": CONTENT,
        "mime_type": "text/plain",
    }
    payload.update(overrides)
    response = client.post("/records", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def test_health() -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["components"]["service"] is True


def test_config_hides_key() -> None:
    response = client.get("/config")

    assert response.status_code == 200
    data = response.json()
    assert data["consent_mode"] in ("advisory", "enforcing")
    assert "encryption_key" not in data


def test_config_and_defaults_follow_served_instance(monkeypatch, fast_retry, clock) -> None:
    """Settings reported and applied come from the service handling requests"""
    config = MedProofConfig(encryption_key=TEST_KEY_HEX, consent_mode=ConsentMode.ENFORCING,
                            default_expiry_hours=12)
    monkeypatch.setattr(main_mod, "medproof_service",
                        MedProofService(config=config, retry_policy=fast_retry, clock=clock))

    data = client.get("/config").json()
    assert data["consent_mode"] == "enforcing"
    assert data["default_expiry_hours"] == 12
    assert data["encryption_key_configured"] is True

    record = _upload()
    response = client.post("/consent/requests", json={
        "subject_id": "P001",
        "requester_id": "INS001",
        "requester_type": "insurer",
        "record_id": record["id"],
    })
    assert response.status_code == 201
    assert response.json()["expiry_hours"] == 12


def test_upload_and_fetch_record() -> None:
    record = _upload()

    assert record["status"] == "verified"
    assert record["address"].startswith("bafkrei")

    response = client.get(f"/records/{record['id']}")
    assert response.status_code == 200
    assert response.json()["content_hash"] == record["content_hash"]

    listing = client.get("/subjects/P001/records").json()
    assert [r["id"] for r in listing["records"]] == [record["id"]]


def test_upload_rejects_bad_input() -> None:
    response = client.post("/records", json={
        "subject_id": "P001",
        "record_type": "Blood Test",
        "title": "HbA1c",
        "custodian_id": "HOSP001",
        "content_base64": "***not base64***",
    })
    assert response.status_code == 400

    response = client.post("/records", json={
        "subject_id": "P 001",
        "record_type": "Blood Test",
        "title": "HbA1c",
        "custodian_id": "HOSP001",
        "content_base64": CONTENT,
    })
    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "VALIDATION_ERROR"


def test_unknown_record_is_404() -> None:
    assert client.get("/records/REC404").status_code == 404
    assert client.post("/records/REC404/verify", json={"requester_id": "INS001"}).status_code == 404


def test_consent_flow_and_verification() -> None:
    record = _upload()

    consent = client.get("/subjects/P001/consent").json()["requests"]
    assert len(consent) == 1
    assert consent[0]["effective_status"] == "pending"

    response = client.post("/consent/requests", json={
        "subject_id": "P001",
        "requester_id": "INS001",
        "requester_type": "insurer",
        "record_id": record["id"],
        "expiry_hours": 24,
        "purpose": "Claim review",
    }, headers={"X-Accessor-Id": "INS001", "X-Accessor-Type": "insurer"})
    assert response.status_code == 201
    request_id = response.json()["id"]

    response = client.post(f"/consent/requests/{request_id}/resolve", json={"decision": "approve"},
                           headers={"X-Accessor-Id": "P001", "X-Accessor-Type": "patient"})
    assert response.status_code == 200
    assert response.json()["status"] == "approved"
    assert response.json()["resolved_by"] == "P001"

    response = client.post(f"/consent/requests/{request_id}/resolve", json={"decision": "deny"})
    assert response.status_code == 409

    response = client.post(f"/records/{record['id']}/verify", json={"requester_id": "INS001"},
                           headers={"X-Accessor-Id": "INS001", "X-Accessor-Type": "insurer"})
    assert response.status_code == 200
    result = response.json()
    assert result["is_valid"] is True
    assert result["consent_granted"] is True

    approved = client.get("/subjects/P001/consent", params={"status": "approved"}).json()
    assert [r["id"] for r in approved["requests"]] == [request_id]


def test_download_requires_consent() -> None:
    record = _upload()

    response = client.get(f"/records/{record['id']}/content", params={"requester_id": "INS001"})
    assert response.status_code == 403
    assert response.json()["detail"]["error"] == "CONSENT_REQUIRED"

    response = client.get(f"/records/{record['id']}/content", params={"requester_id": "P001"})
    assert response.status_code == 200
    assert base64.b64decode(response.json()["content_base64"]) == b"HbA1c 5.4%"


def test_audit_queries() -> None:
    record = _upload()
    client.post(f"/records/{record['id']}/verify", json={"requester_id": "INS001"},
                headers={"X-Accessor-Id": "INS001", "X-Accessor-Type": "insurer"})

    response = client.get("/audit", params={"subject_id": "P001"})
    assert response.status_code == 200
    entries = response.json()["entries"]
    assert [e["action"] for e in entries] == ["VIEW", "UPLOAD"]
    assert entries[0]["ip_address"] == "testclient"

    response = client.get("/audit", params={"action": "UPLOAD", "limit": 1})
    assert response.json()["count"] == 1

    stats = client.get("/audit/stats/P001").json()
    assert stats["total"] == 2
    assert stats["by_accessor_type"] == {"hospital": 1, "insurer": 1}


def test_returns_503_when_service_missing(monkeypatch) -> None:
    """If the service is not initialised, endpoints return 503."""
    monkeypatch.setattr(main_mod, "medproof_service", None)

    response = client.get("/records/REC1")

    assert response.status_code == 503
    assert "MedProof service not available" in response.json().get("detail", "")


@pytest.mark.asyncio
async def test_async_client_upload_and_verify() -> None:
    """The app serves concurrent async clients over ASGI."""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://medproof.test") as ac:
        response = await ac.post("/records", json={
            "subject_id": "P009",
            "record_type": "Lab Report",
            "title": "TSH",
            "custodian_id": "HOSP003",
            "content_base64": CONTENT,
        })
        assert response.status_code == 201
        record_id = response.json()["id"]

        response = await ac.post(f"/records/{record_id}/verify", json={"requester_id": "RES001"})
        assert response.status_code == 200
        assert response.json()["is_valid"] is True
