import hashlib
import hmac
import json
import uuid

import httpx
import pytest

import main


def _signed(**overrides):
    body = {
        "merchant_id": "M-001",
        "amount": 10150,
        "currency": "XOF",
        "phone_number": "+22890112233",
        "description": "Order MKT-20261018-000001",
        "transaction_id": f"TMO-{uuid.uuid4().hex[:12].upper()}",
        "callback_url": "http://web:8000/api/payments/webhook/tmoney/",
        "timestamp": "2026-10-18T10:00:00Z",
    }
    body.update(overrides)
    canonical = f"{body['merchant_id']}{body['amount']}{body['phone_number']}{body['transaction_id']}{body['timestamp']}"
    body["signature"] = hmac.new(b"test-secret-key", canonical.encode(), hashlib.sha256).hexdigest()
    return body


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"ok": True}


def test_request_requires_bearer_token(client):
    r = client.post("/payment/request", json=_signed())
    assert r.status_code == 401


def test_request_rejects_bad_signature(client, auth):
    body = _signed()
    body["amount"] = 1
    r = client.post("/payment/request", json=body, headers=auth)
    assert r.status_code == 400
    assert r.json()["detail"] == "INVALID_SIGNATURE"


def test_request_creates_pending_transaction(client, auth):
    r = client.post("/payment/request", json=_signed(), headers=auth)
    assert r.status_code == 200
    data = r.json()
    assert data["transaction_id"].startswith("TMS-")
    assert data["status"] == "PENDING"
    assert data["payment_url"].endswith(data["transaction_id"])
    assert r.headers.get("X-Request-ID")


def test_retry_with_new_timestamp_returns_same_transaction(client, auth):
    ref = "TMO-RETRY-1"
    r1 = client.post("/payment/request", json=_signed(transaction_id=ref), headers=auth)
    r2 = client.post(
        "/payment/request",
        json=_signed(transaction_id=ref, timestamp="2026-10-18T10:00:05Z"),
        headers=auth,
    )
    assert r1.status_code == r2.status_code == 200
    assert r1.json()["transaction_id"] == r2.json()["transaction_id"]


def test_reused_reference_with_other_amount_conflicts(client, auth):
    ref = "TMO-REUSE-1"
    assert client.post("/payment/request", json=_signed(transaction_id=ref), headers=auth).status_code == 200
    r = client.post("/payment/request", json=_signed(transaction_id=ref, amount=999), headers=auth)
    assert r.status_code == 409
    assert r.json()["detail"] == "TRANSACTION_ID_REUSED"


def test_status_lookup(client, auth):
    tx_id = client.post("/payment/request", json=_signed(), headers=auth).json()["transaction_id"]
    r = client.get(f"/payment/status/{tx_id}", headers=auth)
    assert r.status_code == 200
    assert r.json()["status"] == "PENDING"
    assert r.json()["amount"] == 10150

    assert client.get("/payment/status/TMS-missing", headers=auth).status_code == 404


def test_settle_delivers_signed_webhook(client, auth, monkeypatch):
    sent = {}

    def fake_post(url, content, headers, timeout):
        sent.update(url=url, content=content, headers=headers)
        return httpx.Response(200, json={"received": True})

    monkeypatch.setattr(main.httpx, "post", fake_post)
    tx_id = client.post("/payment/request", json=_signed(), headers=auth).json()["transaction_id"]

    r = client.post(f"/sandbox/transactions/{tx_id}/settle", json={"outcome": "SUCCESS"})
    assert r.status_code == 200
    assert r.json()["status"] == "SUCCESS"
    assert r.json()["webhook"] == {"delivered": True, "status_code": 200}

    assert sent["url"].endswith("/api/payments/webhook/tmoney/")
    expected = hmac.new(b"test-webhook-secret", sent["content"], hashlib.sha256).hexdigest()
    assert sent["headers"]["X-TMoney-Signature"] == expected
    payload = json.loads(sent["content"])
    assert payload["transaction_id"] == tx_id
    assert payload["status"] == "SUCCESS"

    assert client.get(f"/payment/status/{tx_id}", headers=auth).json()["status"] == "SUCCESS"


def test_settle_twice_conflicts(client, auth, monkeypatch):
    monkeypatch.setattr(main.httpx, "post", lambda *a, **kw: httpx.Response(200))
    tx_id = client.post("/payment/request", json=_signed(), headers=auth).json()["transaction_id"]
    assert client.post(f"/sandbox/transactions/{tx_id}/settle", json={"outcome": "FAILED"}).status_code == 200
    r = client.post(f"/sandbox/transactions/{tx_id}/settle", json={"outcome": "SUCCESS"})
    assert r.status_code == 409
    assert r.json()["detail"] == "ALREADY_SETTLED"


def test_settle_keeps_outcome_when_callback_unreachable(client, auth, monkeypatch):
    def boom(*a, **kw):
        raise httpx.ConnectError("refused")

    monkeypatch.setattr(main.httpx, "post", boom)
    tx_id = client.post("/payment/request", json=_signed(), headers=auth).json()["transaction_id"]
    r = client.post(f"/sandbox/transactions/{tx_id}/settle", json={"outcome": "SUCCESS"})
    assert r.status_code == 200
    assert r.json()["webhook"]["delivered"] is False
    assert client.get(f"/payment/status/{tx_id}", headers=auth).json()["status"] == "SUCCESS"


@pytest.mark.parametrize("outcome", ["PAID", ""])
def test_settle_rejects_unknown_outcome(client, outcome):
    r = client.post("/sandbox/transactions/TMS-x/settle", json={"outcome": outcome})
    assert r.status_code == 422
