"""Repository layer over the document store.

Thin typed wrappers around ``DocumentStore`` so the checkout components do
not deal with collection paths and field names directly. The repositories
return domain objects or plain values and never leak store types.
"""

import logging
from typing import List, Optional, Tuple

from .domain import (
    ORDERS,
    PAID_PRODUCTS,
    DocumentNotFound,
    DocumentStore,
    Order,
    OrderStatus,
    PaidProductRecord,
    VariantKey,
    cart_collection,
    now_iso,
)

logger = logging.getLogger(__name__)


class OrderRepository:
    """Persists ``Order`` documents under ``orders/{orderId}``."""

    def __init__(self, store: DocumentStore):
        self.store = store

    def create(self, order: Order, extra: Optional[dict] = None) -> None:
        """Persist a new order with a merge-safe write.

        Args:
            order: Domain order to persist; ``created_at`` is stamped when unset.
            extra: Additional top-level fields stored alongside the order
                (gateway constants such as ``merchantId``).
        """
        if order.created_at is None:
            order.created_at = now_iso()
        self.store.set(ORDERS, order.order_id, {**order.to_document(), **(extra or {})}, merge=True)

    def get(self, order_id: str) -> Optional[Order]:
        doc = self.store.get(ORDERS, order_id)
        return Order.from_document(order_id, doc) if doc is not None else None

    def get_document(self, order_id: str) -> Optional[dict]:
        return self.store.get(ORDERS, order_id)

    def record_transaction(self, order_id: str, tx_id: str, user_id: str) -> None:
        """Store the gateway transaction id, moving the order to ``pending``.

        Merge write: fields written at creation time are kept.
        """
        self.store.set(
            ORDERS,
            order_id,
            {"txId": tx_id, "status": OrderStatus.PENDING.value, "userId": user_id, "updatedAt": now_iso()},
            merge=True,
        )

    def set_status(self, order_id: str, status: OrderStatus) -> bool:
        """Write ``status`` and a fresh ``updatedAt`` unless already in that status.

        Returns:
            bool: True when a write happened, False when the order was
            already in ``status`` or does not exist.
        """
        doc = self.store.get(ORDERS, order_id)
        if doc is None:
            logger.warning("order not found for status update", extra={"order_id": order_id, "status": status.value})
            return False
        if doc.get("status") == status.value:
            return False
        try:
            self.store.update(ORDERS, order_id, {"status": status.value, "updatedAt": now_iso()})
        except DocumentNotFound:
            logger.warning("order vanished during status update", extra={"order_id": order_id})
            return False
        return True

    def delete(self, order_id: str) -> None:
        self.store.delete(ORDERS, order_id)

    def list_by_status(self, *statuses: OrderStatus) -> List[Order]:
        wanted = {s.value for s in statuses}
        return [Order.from_document(oid, doc) for oid, doc in self.store.list(ORDERS) if doc.get("status") in wanted]


class CartRepository:
    """Per-user cart entries under ``users/{userId}/cart/{cartItemId}``.

    The cart item id is ``VariantKey.to_key()``; each entry also stores the
    same value as ``productId`` so paid line items can be matched back to it.
    """

    def __init__(self, store: DocumentStore):
        self.store = store

    def add(self, user_id: str, key: VariantKey, quantity: int, **fields) -> str:
        """Add a product variant to the cart, merging quantity with an equal entry.

        Returns:
            str: The cart item id.
        """
        collection = cart_collection(user_id)
        item_id = key.to_key()
        existing = self.store.get(collection, item_id)
        if existing is not None:
            self.store.update(collection, item_id, {"quantity": int(existing.get("quantity") or 0) + quantity})
            return item_id
        self.store.set(
            collection,
            item_id,
            {
                **fields,
                "productId": item_id,
                "baseProductId": key.product_id,
                "color": key.color,
                "size": key.size,
                "measurement": key.measurement,
                "quantity": quantity,
            },
        )
        return item_id

    def items(self, user_id: str) -> List[Tuple[str, dict]]:
        return self.store.list(cart_collection(user_id))

    def remove(self, user_id: str, cart_item_id: str) -> None:
        self.store.delete(cart_collection(user_id), cart_item_id)


class PaidProductLedger:
    """Append-only ``paidProducts`` collection."""

    def __init__(self, store: DocumentStore):
        self.store = store

    def record(self, entry: PaidProductRecord) -> str:
        return self.store.add(PAID_PRODUCTS, entry.to_document())

    def for_order(self, order_id: str) -> List[dict]:
        return [doc for _, doc in self.store.list(PAID_PRODUCTS) if doc.get("orderId") == order_id]

    def for_user(self, user_id: str) -> List[dict]:
        return [doc for _, doc in self.store.list(PAID_PRODUCTS) if doc.get("userId") == user_id]
