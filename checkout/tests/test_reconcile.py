"""Tests for headless reconciliation of pending orders."""
import asyncio

from checkout.adapters import GatewayStub
from checkout.domain import ORDERS, PollStatus
from checkout.poller import TransactionPoller
from checkout.reconcile import Reconciler


def _seed(store):
    store.set(ORDERS, "ORD1", {"status": "pending", "txId": "T1", "userId": "u1"})
    store.set(ORDERS, "ORD2", {"status": "pending", "userId": "u1"})
    store.set(ORDERS, "ORD3", {"status": "paid", "txId": "T3", "userId": "u1"})


def test_reconcile_pending_orders(store):
    _seed(store)
    gateway = GatewayStub([{"ret": 1201}, {"ret": 0, "txStatus": "SUCCESS"}])
    results = asyncio.run(Reconciler(store, TransactionPoller(gateway, 0, 0, 5)).reconcile_pending_orders())

    assert results == {"ORD1": PollStatus.PAID}
    assert store.get(ORDERS, "ORD1")["status"] == "paid"
    assert store.get(ORDERS, "ORD2")["status"] == "pending"
    assert [c["tx_id"] for c in gateway.calls] == ["T1", "T1"]


def test_timed_out_order_left_pending(store):
    _seed(store)
    gateway = GatewayStub()
    update = asyncio.run(Reconciler(store, TransactionPoller(gateway, 0, 0, 2)).reconcile_order("ORD1", "T1"))
    assert update.status is PollStatus.TIMED_OUT
    assert store.get(ORDERS, "ORD1")["status"] == "pending"


def test_nothing_to_reconcile(store):
    gateway = GatewayStub()
    assert asyncio.run(Reconciler(store, TransactionPoller(gateway, 0, 0, 2)).reconcile_pending_orders()) == {}
    assert gateway.calls == []
