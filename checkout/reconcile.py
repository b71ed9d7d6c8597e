"""Headless reconciliation of pending orders.

Used when no interactive checkout session is watching a transaction (the
client went away, the service restarted). The poller runs the same cadence
as in the interactive flow and, with no arbitrator present, this module
writes the order status itself: ``paid`` on a terminal success status.
A timed-out transaction is left untouched for a later run.
"""

import asyncio
import logging
from typing import Dict

from .domain import DocumentStore, OrderStatus, PollStatus, PollUpdate
from .poller import TransactionPoller
from .repository import OrderRepository

logger = logging.getLogger(__name__)


class Reconciler:
    def __init__(self, store: DocumentStore, poller: TransactionPoller):
        self.orders = OrderRepository(store)
        self.poller = poller

    async def reconcile_order(self, order_id: str, tx_id: str) -> PollUpdate:
        """Poll one transaction to a terminal update and record a payment.

        Returns:
            PollUpdate: The terminal update (``PAID`` or ``TIMED_OUT``).
        """
        last = PollUpdate(0, PollStatus.PENDING)
        async for update in self.poller.poll(tx_id):
            last = update
            if update.status is PollStatus.PAID:
                await asyncio.to_thread(self.orders.set_status, order_id, OrderStatus.PAID)
                logger.info("order marked as paid", extra={"order_id": order_id, "tx_id": tx_id})
        if last.status is PollStatus.TIMED_OUT:
            logger.warning("reconciliation timed out", extra={"order_id": order_id, "tx_id": tx_id})
        return last

    async def reconcile_pending_orders(self) -> Dict[str, PollStatus]:
        """Reconcile every order still waiting for payment, one at a time.

        Orders without a transaction id never reached the gateway and are
        skipped.

        Returns:
            dict: Terminal poll status per reconciled order id.
        """
        pending = await asyncio.to_thread(self.orders.list_by_status, OrderStatus.PENDING)
        if not pending:
            logger.info("no pending orders to reconcile")
            return {}

        results: Dict[str, PollStatus] = {}
        for order in pending:
            if not order.tx_id:
                logger.info("skipping order without transaction", extra={"order_id": order.order_id})
                continue
            update = await self.reconcile_order(order.order_id, order.tx_id)
            results[order.order_id] = update.status
        return results
