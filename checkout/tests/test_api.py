"""API tests for the checkout endpoints.

These tests exercise the HTTP surface for the main scenarios: starting a
checkout, validation and gateway failures, resolving from the client, and
dismissal. The service used by the views is replaced with one wired to
in-process stubs.
"""
import dataclasses

import pytest
from fastapi.testclient import TestClient

from checkout import main
from checkout.domain import ORDERS
from checkout.service import CheckoutService

PAYLOAD = {
    "userId": "u1",
    "orderId": "ORD1",
    "paymentMethod": "Online Banking",
    "items": [
        {"id": "p1", "name": "Batik Shirt", "quantity": 2, "price": "45.50"},
        {"id": "p2_red_M_", "name": "Sarong", "quantity": 1, "price": "30.00"},
    ],
    "customer": {"name": "Aisyah", "email": "aisyah@example.com", "number": "0123456789", "address": "1 Jalan Ampang"},
}


@pytest.fixture
def service(store, gateway, settings):
    return CheckoutService(store, gateway, dataclasses.replace(settings, poll_initial_delay_secs=3600))


@pytest.fixture
def client(service, monkeypatch):
    # IMPORTANT: patch the symbol used by the views
    monkeypatch.setattr("checkout.main.get_checkout_service", lambda: service, raising=True)
    with TestClient(main.app) as c:
        yield c


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"ok": True}


def test_create_checkout(client, store):
    r = client.post("/checkouts", json=PAYLOAD, headers={"X-Request-ID": "rid-1"})
    assert r.status_code == 201
    body = r.json()
    assert body["orderId"] == "ORD1"
    assert body["checkoutUrl"].endswith(body["txId"])
    assert r.headers["X-Request-ID"] == "rid-1"
    assert store.get(ORDERS, "ORD1")["status"] == "pending"


def test_create_checkout_generates_order_id(client):
    payload = {k: v for k, v in PAYLOAD.items() if k != "orderId"}
    r = client.post("/checkouts", json=payload)
    assert r.status_code == 201
    assert r.json()["orderId"].startswith("ORD")


def test_create_checkout_blank_address(client, store):
    payload = {**PAYLOAD, "customer": {**PAYLOAD["customer"], "address": " "}}
    r = client.post("/checkouts", json=payload)
    assert r.status_code == 400
    assert r.json()["detail"]["fields"] == ["address"]
    assert store.list(ORDERS) == []


def test_create_checkout_gateway_rejects(client, gateway):
    gateway.configure(False, "Invalid signature")
    r = client.post("/checkouts", json=PAYLOAD)
    assert r.status_code == 502
    assert r.json()["detail"] == {"detail": "INITIATION_FAILED", "reason": "Invalid signature"}


def test_create_checkout_malformed(client):
    r = client.post("/checkouts", json={"userId": "u1"})
    assert r.status_code == 422


def test_navigation_success(client):
    client.post("/checkouts", json=PAYLOAD)
    r = client.post("/checkouts/ORD1/navigation", json={"url": "https://gateway.test/payment/success"})
    assert r.status_code == 200
    body = r.json()
    assert body["state"] == "RESOLVED_SUCCESS"
    assert body["finished"] is True
    assert body["source"] == "redirect"
    assert body["order"]["status"] == "paid"


def test_navigation_ambiguous(client):
    client.post("/checkouts", json=PAYLOAD)
    r = client.post("/checkouts/ORD1/navigation", json={"url": "https://gateway.test/3ds"})
    assert r.status_code == 200
    assert r.json()["state"] == "AWAITING_RESULT"


def test_cancel_then_dismiss(client, store):
    client.post("/checkouts", json=PAYLOAD)
    r = client.post("/checkouts/ORD1/cancel")
    assert r.status_code == 200
    assert r.json()["source"] == "user_cancel"
    assert client.get("/checkouts/ORD1").json()["order"]["status"] == "failed"

    r = client.post("/checkouts/ORD1/dismiss")
    assert r.status_code == 204
    assert store.get(ORDERS, "ORD1") is None
    assert client.get("/checkouts/ORD1").status_code == 404


def test_unknown_checkout(client):
    assert client.get("/checkouts/nope").status_code == 404
    assert client.post("/checkouts/nope/cancel").status_code == 404
    assert client.post("/checkouts/nope/dismiss").status_code == 404


def test_reconcile_conflict_and_missing(client):
    client.post("/checkouts", json=PAYLOAD)
    assert client.post("/orders/ORD1/reconcile").status_code == 409
    assert client.post("/orders/nope/reconcile").status_code == 404


def test_create_checkout_reused_order_id(client, store, gateway):
    client.post("/checkouts", json=PAYLOAD)
    client.post("/checkouts/ORD1/navigation", json={"url": "https://gateway.test/payment/success"})
    r = client.post("/checkouts", json=PAYLOAD)
    assert r.status_code == 409
    assert r.json()["detail"] == "ORDER_EXISTS"
    assert store.get(ORDERS, "ORD1")["status"] == "paid"
    assert len(gateway.calls) == 1
