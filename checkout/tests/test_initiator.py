"""Unit tests for the CheckoutInitiator.

Validation must fail before anything is written or sent; a gateway answer
with a checkout URL records the transaction id on the persisted order; a
refused or unreachable gateway surfaces as ``InitiationFailed``.
"""
import asyncio
import dataclasses

import pytest

from checkout.domain import ORDERS, CustomerDetails, InitiationFailed, OrderAlreadyExists, ValidationError
from checkout.initiator import CheckoutInitiator


def _initiate(initiator, items, customer, payment_method="Online Banking", order_id="ORD1"):
    return asyncio.run(
        initiator.initiate(user_id="u1", order_id=order_id, items=items, customer=customer, payment_method=payment_method)
    )


def _assert_nothing_happened(store, gateway):
    assert store.list(ORDERS) == []
    assert gateway.calls == []


def test_initiate_ok(store, gateway, settings, items, customer):
    started = _initiate(CheckoutInitiator(store, gateway, settings), items, customer)
    assert started.order_id == "ORD1"
    assert started.checkout_url.endswith(started.tx_id)

    doc = store.get(ORDERS, "ORD1")
    assert doc["status"] == "pending"
    assert doc["txId"] == started.tx_id
    assert doc["txAmount"] == "121.00"
    assert doc["txChannel"] == "DD"
    assert doc["merchantId"] == settings.merchant_id
    assert doc["txCurrency"] == "MYR"
    assert len(doc["productList"]) == 2

    payload = gateway.calls[0]["payload"]
    assert payload["orderId"] == payload["orderRef"] == "ORD1"
    assert payload["txAmount"] == "121.00"


def test_validation_empty_cart(store, gateway, settings, customer):
    with pytest.raises(ValidationError) as e:
        _initiate(CheckoutInitiator(store, gateway, settings), [], customer)
    assert e.value.fields == ["items"]
    _assert_nothing_happened(store, gateway)


def test_validation_blank_delivery_fields(store, gateway, settings, items):
    customer = CustomerDetails(name="Aisyah", email="aisyah@example.com", contact="  ", address="")
    with pytest.raises(ValidationError) as e:
        _initiate(CheckoutInitiator(store, gateway, settings), items, customer)
    assert e.value.fields == ["contact", "address"]
    _assert_nothing_happened(store, gateway)


def test_validation_missing_payment_method(store, gateway, settings, items, customer):
    with pytest.raises(ValidationError) as e:
        _initiate(CheckoutInitiator(store, gateway, settings), items, customer, payment_method=None)
    assert str(e.value) == "Please select a payment method."
    _assert_nothing_happened(store, gateway)


def test_validation_unsupported_payment_method(store, gateway, settings, items, customer):
    with pytest.raises(ValidationError):
        _initiate(CheckoutInitiator(store, gateway, settings), items, customer, payment_method="Cheque")
    _assert_nothing_happened(store, gateway)


def test_gateway_rejection_keeps_pending_order(store, gateway, settings, items, customer):
    """By default the order written before the gateway call is left behind."""
    gateway.configure(False, "Invalid signature")
    with pytest.raises(InitiationFailed) as e:
        _initiate(CheckoutInitiator(store, gateway, settings), items, customer)
    assert e.value.reason == "Invalid signature"
    doc = store.get(ORDERS, "ORD1")
    assert doc["status"] == "pending_payment"
    assert "txId" not in doc


def test_gateway_rejection_deletes_order_when_configured(store, gateway, settings, items, customer):
    settings = dataclasses.replace(settings, delete_order_on_initiation_failure=True)
    gateway.configure(False)
    with pytest.raises(InitiationFailed):
        _initiate(CheckoutInitiator(store, gateway, settings), items, customer)
    assert store.get(ORDERS, "ORD1") is None


def test_gateway_unavailable(store, gateway, settings, items, customer):
    gateway.unavailable = True
    with pytest.raises(InitiationFailed) as e:
        _initiate(CheckoutInitiator(store, gateway, settings), items, customer)
    assert "ConnectError" in e.value.reason


class GatewayWithoutUrl:
    """Gateway answering success without a checkout URL."""
    async def request_transaction(self, payload): return {"ret": 0, "txId": "T1"}
    async def query_transaction(self, tx_id, timeout=None): return {}


def test_success_code_without_url_is_a_failure(store, settings, items, customer):
    with pytest.raises(InitiationFailed) as e:
        _initiate(CheckoutInitiator(store, GatewayWithoutUrl(), settings), items, customer)
    assert e.value.reason == "Unknown API response"


def test_existing_order_id_is_refused(store, gateway, settings, items, customer):
    """A paid order is never reopened by a checkout reusing its id."""
    initiator = CheckoutInitiator(store, gateway, settings)
    _initiate(initiator, items, customer)
    store.update(ORDERS, "ORD1", {"status": "paid"})
    before = store.get(ORDERS, "ORD1")

    with pytest.raises(OrderAlreadyExists):
        _initiate(initiator, items, customer)
    assert store.get(ORDERS, "ORD1") == before
    assert len(gateway.calls) == 1
