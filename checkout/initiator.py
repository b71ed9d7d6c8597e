"""Checkout initiation: persist the pending order, then open a gateway transaction.

The order document is written in ``pending_payment`` before the gateway is
called so a crash between the two steps still leaves a record behind. A
gateway answer carrying a checkout URL moves the order to ``pending`` and
records the transaction id with a merge write.
"""

import asyncio
import logging
from typing import List, Optional

from . import codec
from .domain import (
    PAYMENT_METHODS,
    CheckoutStarted,
    CustomerDetails,
    DocumentStore,
    GatewayUnavailable,
    InitiationFailed,
    LineItem,
    Order,
    OrderAlreadyExists,
    OrderStatus,
    PaymentGatewayPort,
    ValidationError,
    format_amount,
)
from .repository import OrderRepository
from .settings import Settings

logger = logging.getLogger(__name__)


class CheckoutInitiator:
    """Starts a checkout session for a cart.

    Args:
        store: Document store receiving the order.
        gateway: Payment gateway port.
        settings: Merchant constants and the initiation-failure policy.
    """

    def __init__(self, store: DocumentStore, gateway: PaymentGatewayPort, settings: Settings):
        self.orders = OrderRepository(store)
        self.gateway = gateway
        self.settings = settings

    @staticmethod
    def validate(items: List[LineItem], customer: CustomerDetails, payment_method: Optional[str]) -> None:
        """Check the checkout form locally.

        Raises:
            ValidationError: When the cart is empty, a quantity is not
                positive, a delivery field is blank, or no known payment
                method is selected.
        """
        if not items:
            raise ValidationError("Cart is empty.", ["items"])
        bad_qty = [i.product_ref for i in items if i.qty <= 0]
        if bad_qty:
            raise ValidationError("Quantities must be positive.", bad_qty)
        missing = customer.missing_fields()
        if missing:
            raise ValidationError(f"Please enter {', '.join(missing)}.", missing)
        if not payment_method:
            raise ValidationError("Please select a payment method.", ["payment_method"])
        if payment_method not in PAYMENT_METHODS:
            raise ValidationError(f"Unsupported payment method: {payment_method}", ["payment_method"])

    async def initiate(
        self,
        *,
        user_id: str,
        order_id: str,
        items: List[LineItem],
        customer: CustomerDetails,
        payment_method: Optional[str],
    ) -> CheckoutStarted:
        """Persist the order and obtain a checkout URL from the gateway.

        Args:
            user_id: Owner of the cart.
            order_id: Caller-generated unique order id. A retry after a
                failed payment must use a new id.
            items: Line items with server-trusted prices and quantities.
            customer: Delivery and contact details, all required.
            payment_method: Human-facing label ("Online Banking",
                "Credit Card", "E-Wallet").

        Returns:
            CheckoutStarted: Order id, transaction id and checkout URL.

        Raises:
            ValidationError: Before any write, see ``validate``.
            OrderAlreadyExists: ``order_id`` names an existing order; the
                stored order is left untouched.
            InitiationFailed: The gateway was unreachable, answered non-200
                or rejected the transaction.
        """
        self.validate(items, customer, payment_method)
        if await asyncio.to_thread(self.orders.get_document, order_id) is not None:
            logger.warning("order id already used", extra={"order_id": order_id})
            raise OrderAlreadyExists(order_id)
        channel = codec.channel_code_for(payment_method)
        order = Order(
            order_id=order_id,
            user_id=user_id,
            items=list(items),
            tx_amount=format_amount(sum((i.total for i in items), 0)),
            tx_channel=channel,
            customer=customer,
            status=OrderStatus.PENDING_PAYMENT,
        )
        extra = {
            "merchantId": self.settings.merchant_id,
            "txType": codec.TX_TYPE_SALE,
            "txCurrency": self.settings.currency,
        }
        await asyncio.to_thread(self.orders.create, order, extra)
        logger.info("order saved", extra={"order_id": order_id, "tx_amount": order.tx_amount, "channel": channel.value})

        payload = codec.build_request_payload(order, channel, self.settings.merchant_id, self.settings.currency)
        try:
            data = await self.gateway.request_transaction(payload)
        except GatewayUnavailable as e:
            raise await self._failed(order_id, str(e)) from e
        result = codec.decode_response(data)
        if not result.success:
            raise await self._failed(order_id, result.error_message or "Unknown API response")

        await asyncio.to_thread(self.orders.record_transaction, order_id, result.tx_id, user_id)
        logger.info("transaction opened", extra={"order_id": order_id, "tx_id": result.tx_id})
        return CheckoutStarted(order_id=order_id, tx_id=result.tx_id, checkout_url=result.checkout_url)

    async def _failed(self, order_id: str, reason: str) -> InitiationFailed:
        logger.warning("initiation failed", extra={"order_id": order_id, "reason": reason})
        if self.settings.delete_order_on_initiation_failure:
            await asyncio.to_thread(self.orders.delete, order_id)
            logger.info("deleted order after initiation failure", extra={"order_id": order_id})
        return InitiationFailed(reason)
