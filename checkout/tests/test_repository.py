"""Tests for the typed repositories and cart keys.

Status writes must be skipped when nothing changes, cart additions of the
same variant merge, and distinct variants never collide on their key.
"""
from checkout.domain import ORDERS, Order, OrderStatus, TxChannel, VariantKey
from checkout.repository import CartRepository, OrderRepository


def _order(items, customer, order_id="ORD1"):
    return Order(order_id=order_id, user_id="u1", items=items, tx_amount="121.00", tx_channel=TxChannel.DD, customer=customer)


def test_variant_key_plain_product():
    assert VariantKey("p1").to_key() == "p1"


def test_variant_key_with_variants():
    assert VariantKey("p1", "red", "M").to_key() == "p1_red_M_"


def test_variant_key_escapes_delimiter():
    assert VariantKey("a_b").to_key() == "a%5Fb"
    assert VariantKey("a", "b_c").to_key() != VariantKey("a_b", "c").to_key()


def test_cart_add_merges_quantity(store):
    repo = CartRepository(store)
    first = repo.add("u1", VariantKey("p1", "red"), 1, name="Shirt")
    second = repo.add("u1", VariantKey("p1", "red"), 2)
    assert first == second
    entries = repo.items("u1")
    assert len(entries) == 1
    _, data = entries[0]
    assert data["quantity"] == 3
    assert data["productId"] == first
    assert data["baseProductId"] == "p1"
    assert data["name"] == "Shirt"


def test_cart_distinct_variants_are_separate(store):
    repo = CartRepository(store)
    repo.add("u1", VariantKey("p1", "red"), 1)
    repo.add("u1", VariantKey("p1", "blue"), 1)
    assert len(repo.items("u1")) == 2
    assert repo.items("u2") == []


def test_create_then_record_transaction_merges(store, items, customer):
    repo = OrderRepository(store)
    repo.create(_order(items, customer), {"merchantId": "91012387"})
    repo.record_transaction("ORD1", "T1", "u1")
    doc = store.get(ORDERS, "ORD1")
    assert doc["status"] == "pending"
    assert doc["txId"] == "T1"
    assert doc["merchantId"] == "91012387"
    assert len(doc["productList"]) == 2
    assert doc["createdAt"] and doc["updatedAt"]


def test_set_status_skips_same_status(store, items, customer):
    """Writing the current status again is a no-op (updatedAt untouched)."""
    repo = OrderRepository(store)
    repo.create(_order(items, customer))
    assert repo.set_status("ORD1", OrderStatus.PAID) is True
    stamped = store.get(ORDERS, "ORD1")["updatedAt"]
    assert repo.set_status("ORD1", OrderStatus.PAID) is False
    assert store.get(ORDERS, "ORD1")["updatedAt"] == stamped


def test_set_status_missing_order(store):
    assert OrderRepository(store).set_status("missing", OrderStatus.FAILED) is False
    assert store.get(ORDERS, "missing") is None


def test_list_by_status(store, items, customer):
    repo = OrderRepository(store)
    repo.create(_order(items, customer, "ORD1"))
    repo.create(_order(items, customer, "ORD2"))
    repo.record_transaction("ORD2", "T2", "u1")
    pending = repo.list_by_status(OrderStatus.PENDING)
    assert [o.order_id for o in pending] == ["ORD2"]
    assert pending[0].tx_id == "T2"
