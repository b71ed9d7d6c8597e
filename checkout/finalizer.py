"""Terminal side effects of a checkout session.

On success every line item of the order is copied into the paid-product
ledger and the matching cart entries are removed. On failure the order
document is deleted. Each write is attempted independently: one failing
ledger write or cart delete is logged and the remaining items are still
processed.

The finalizer has no idempotence guard of its own; the arbitrator's
single-resolution latch guarantees it runs once per session.
"""

import logging
from dataclasses import dataclass, field
from typing import List

from . import codec
from .domain import DeliveryStatus, DocumentStore, Order, PaidProductRecord
from .repository import CartRepository, OrderRepository, PaidProductLedger

logger = logging.getLogger(__name__)


@dataclass
class FinalizationReport:
    """What a ``finalize`` call actually did."""

    order_id: str
    success: bool
    records_created: List[str] = field(default_factory=list)
    cart_items_removed: List[str] = field(default_factory=list)
    missing_cart_items: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    order_deleted: bool = False


class OrderFinalizer:
    def __init__(self, store: DocumentStore):
        self.orders = OrderRepository(store)
        self.cart = CartRepository(store)
        self.ledger = PaidProductLedger(store)

    def finalize(self, order: Order, tx_id: str, success: bool) -> FinalizationReport:
        """Run the terminal side effects for one order.

        Args:
            order: The order as persisted at resolution time.
            tx_id: Gateway transaction id recorded on each ledger entry.
            success: Outcome decided by the arbitrator.

        Returns:
            FinalizationReport: Created ledger ids, removed cart ids and the
            per-item errors that were logged and skipped.
        """
        report = FinalizationReport(order_id=order.order_id, success=success)
        if not success:
            self.orders.delete(order.order_id)
            report.order_deleted = True
            logger.info("deleted failed order", extra={"order_id": order.order_id, "tx_id": tx_id})
            return report

        self._record_paid_products(order, tx_id, report)
        self._clear_purchased_items(order, report)
        logger.info(
            "order finalized",
            extra={
                "order_id": order.order_id,
                "tx_id": tx_id,
                "records": len(report.records_created),
                "cart_removed": len(report.cart_items_removed),
                "errors": len(report.errors),
            },
        )
        return report

    def _record_paid_products(self, order: Order, tx_id: str, report: FinalizationReport) -> None:
        method = codec.payment_method_label(order.tx_channel.value)
        for item in order.items:
            entry = PaidProductRecord(
                user_id=order.user_id,
                order_id=order.order_id,
                tx_id=tx_id,
                product=item.to_document(),
                customer=order.customer,
                payment_method=method,
                delivery_status=DeliveryStatus.NOT_STARTED,
            )
            try:
                report.records_created.append(self.ledger.record(entry))
            except Exception as e:
                logger.error(
                    "paid product record failed",
                    extra={"order_id": order.order_id, "product": item.product_ref, "error": str(e)},
                )
                report.errors.append(f"ledger:{item.product_ref}")

    def _clear_purchased_items(self, order: Order, report: FinalizationReport) -> None:
        wanted = {item.product_ref for item in order.items if item.product_ref}
        if not wanted:
            return
        try:
            cart_items = self.cart.items(order.user_id)
        except Exception as e:
            logger.error("cart read failed", extra={"order_id": order.order_id, "error": str(e)})
            report.errors.append("cart:read")
            return

        found = set()
        for item_id, data in cart_items:
            ref = item_id if item_id in wanted else str(data.get("productId") or data.get("id") or "")
            if ref not in wanted:
                continue
            found.add(ref)
            try:
                self.cart.remove(order.user_id, item_id)
                report.cart_items_removed.append(item_id)
            except Exception as e:
                logger.error(
                    "cart item removal failed",
                    extra={"order_id": order.order_id, "cart_item": item_id, "error": str(e)},
                )
                report.errors.append(f"cart:{item_id}")

        for ref in sorted(wanted - found):
            logger.info("cart item not found for product", extra={"order_id": order.order_id, "product": ref})
            report.missing_cart_items.append(ref)
