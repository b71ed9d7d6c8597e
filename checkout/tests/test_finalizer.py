"""Unit tests for the OrderFinalizer side effects.

Success writes one ledger entry per line item and removes exactly the
purchased cart entries; failure deletes the order; a failing write for
one item does not stop the others.
"""
from checkout.adapters import InMemoryDocumentStore
from checkout.domain import ORDERS, PAID_PRODUCTS, Order, TxChannel, VariantKey, cart_collection
from checkout.finalizer import OrderFinalizer
from checkout.repository import CartRepository, OrderRepository, PaidProductLedger


def _persisted_order(store, items, customer):
    order = Order(order_id="ORD1", user_id="u1", items=items, tx_amount="121.00", tx_channel=TxChannel.DD, customer=customer)
    OrderRepository(store).create(order)
    return order


def test_finalize_success_records_ledger_and_cleans_cart(store, cart, items, customer):
    order = _persisted_order(store, items, customer)
    report = OrderFinalizer(store).finalize(order, "T1", True)

    entries = PaidProductLedger(store).for_order("ORD1")
    assert len(entries) == len(items) == len(report.records_created)
    for entry in entries:
        assert entry["txId"] == "T1"
        assert entry["userId"] == "u1"
        assert entry["paymentMethod"] == "Online Banking"
        assert entry["deliveryStatus"] == "not_started"
        assert entry["custName"] == "Aisyah"
    assert {e["product"]["id"] for e in entries} == {i.product_ref for i in items}

    remaining = [item_id for item_id, _ in cart.items("u1")]
    assert remaining == ["p3"]
    assert sorted(report.cart_items_removed) == sorted(i.product_ref for i in items)
    assert report.errors == []
    assert store.get(ORDERS, "ORD1") is not None


def test_finalize_reports_missing_cart_items(store, items, customer):
    order = _persisted_order(store, items, customer)
    CartRepository(store).add("u1", VariantKey("p1"), 2)
    report = OrderFinalizer(store).finalize(order, "T1", True)
    assert report.cart_items_removed == ["p1"]
    assert report.missing_cart_items == [items[1].product_ref]


def test_finalize_failure_deletes_order_only(store, cart, items, customer):
    order = _persisted_order(store, items, customer)
    report = OrderFinalizer(store).finalize(order, "T1", False)
    assert report.order_deleted is True
    assert store.get(ORDERS, "ORD1") is None
    assert store.list(PAID_PRODUCTS) == []
    assert len(cart.items("u1")) == 3


class FlakyLedgerStore(InMemoryDocumentStore):
    """Store whose first ledger append fails."""
    def __init__(self):
        super().__init__()
        self.failed = False
    def add(self, collection, data):
        if collection == PAID_PRODUCTS and not self.failed:
            self.failed = True
            raise RuntimeError("quota exceeded")
        return super().add(collection, data)


def test_finalize_continues_after_item_error(items, customer):
    store = FlakyLedgerStore()
    for item in items:
        store.set(cart_collection("u1"), item.product_ref, {"productId": item.product_ref, "quantity": item.qty})
    order = _persisted_order(store, items, customer)

    report = OrderFinalizer(store).finalize(order, "T1", True)
    assert report.errors == [f"ledger:{items[0].product_ref}"]
    assert len(report.records_created) == 1
    assert store.list(cart_collection("u1")) == []
