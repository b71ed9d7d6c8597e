"""Checkout service: wiring and session registry for the interactive flow.

``CheckoutService`` owns one ``ResultArbitrator`` per active checkout
session, keyed by order id. The HTTP layer forwards the client's signals
(page loads in the embedded browser, back-navigation, dismissal of the
result screen) to the matching session.
"""

import asyncio
import logging
import time
from typing import Dict, List, Optional

from . import codec
from .arbitrator import ResultArbitrator
from .domain import (
    ArbitrationState,
    CheckoutStarted,
    CustomerDetails,
    DocumentStore,
    LineItem,
    OrderAlreadyExists,
    OrderStatus,
    PaymentGatewayPort,
    ReconciliationConflict,
    SessionNotFound,
)
from .finalizer import OrderFinalizer
from .initiator import CheckoutInitiator
from .poller import TransactionPoller
from .reconcile import Reconciler
from .repository import OrderRepository
from .settings import Settings

logger = logging.getLogger(__name__)


class CheckoutService:
    """Application service for checkout sessions.

    Resolved sessions stay registered for ``session_ttl_secs`` so the client
    can read the receipt with the winning signal; after that they are
    dropped and the receipt is rebuilt from the order document.

    Args:
        store: Document store for orders, carts and the ledger.
        gateway: Payment gateway port.
        settings: Merchant constants and polling parameters.
    """

    def __init__(self, store: DocumentStore, gateway: PaymentGatewayPort, settings: Settings):
        self.store = store
        self.gateway = gateway
        self.settings = settings
        self.orders = OrderRepository(store)
        self.initiator = CheckoutInitiator(store, gateway, settings)
        self.finalizer = OrderFinalizer(store)
        self._sessions: Dict[str, ResultArbitrator] = {}
        self._starting: set = set()
        self._background: set = set()

    def make_poller(self) -> TransactionPoller:
        return TransactionPoller.from_settings(self.gateway, self.settings)

    def evict_expired(self, now: Optional[float] = None) -> List[str]:
        """Drop sessions resolved more than ``session_ttl_secs`` ago.

        Returns:
            list: Order ids of the evicted sessions.
        """
        now = time.monotonic() if now is None else now
        expired = [
            order_id
            for order_id, arbitrator in self._sessions.items()
            if arbitrator.finished and now - arbitrator.finished_at >= self.settings.session_ttl_secs
        ]
        for order_id in expired:
            del self._sessions[order_id]
        if expired:
            logger.info("evicted resolved sessions", extra={"count": len(expired)})
        return expired

    async def start_checkout(
        self,
        *,
        user_id: str,
        order_id: str,
        items: List[LineItem],
        customer: CustomerDetails,
        payment_method: Optional[str],
    ) -> CheckoutStarted:
        """Initiate payment and open an interactive session with polling.

        Raises:
            ValidationError: See ``CheckoutInitiator.validate``.
            OrderAlreadyExists: A session or an order already uses ``order_id``.
            InitiationFailed: The gateway did not open a transaction.
        """
        self.evict_expired()
        if order_id in self._sessions or order_id in self._starting:
            raise OrderAlreadyExists(order_id)

        self._starting.add(order_id)
        try:
            started = await self.initiator.initiate(
                user_id=user_id,
                order_id=order_id,
                items=items,
                customer=customer,
                payment_method=payment_method,
            )
            arbitrator = ResultArbitrator(started.order_id, started.tx_id, self.store, self.finalizer, self.make_poller())
            self._sessions[started.order_id] = arbitrator
        finally:
            self._starting.discard(order_id)
        arbitrator.start()
        return started

    def session(self, order_id: str) -> ResultArbitrator:
        self.evict_expired()
        try:
            return self._sessions[order_id]
        except KeyError:
            raise SessionNotFound(order_id) from None

    async def page_loaded(self, order_id: str, url: str) -> ResultArbitrator:
        arbitrator = self.session(order_id)
        if await arbitrator.on_page_loaded(url):
            await arbitrator.wait()
        return arbitrator

    async def cancel(self, order_id: str) -> ResultArbitrator:
        """Back-navigation out of the embedded browser."""
        arbitrator = self.session(order_id)
        await arbitrator.on_user_cancel()
        await arbitrator.wait()
        return arbitrator

    async def receipt(self, order_id: str) -> dict:
        """Data for the result screen.

        Reads the order document, which still exists for a failed payment
        until the user dismisses the screen.

        Raises:
            SessionNotFound: When neither a session nor an order exists.
        """
        self.evict_expired()
        arbitrator = self._sessions.get(order_id)
        doc = await asyncio.to_thread(self.orders.get_document, order_id)
        if arbitrator is None and doc is None:
            raise SessionNotFound(order_id)

        if arbitrator is not None:
            state = arbitrator.state if arbitrator.finished else ArbitrationState.AWAITING_RESULT
            tx_id = arbitrator.tx_id
            source = arbitrator.resolution.source.value if arbitrator.resolution else None
        else:
            state = _STATE_BY_STATUS.get((doc or {}).get("status"), ArbitrationState.AWAITING_RESULT)
            tx_id = (doc or {}).get("txId")
            source = None

        return {
            "order_id": order_id,
            "tx_id": tx_id,
            "state": state.value,
            "finished": state is not ArbitrationState.AWAITING_RESULT,
            "success": {ArbitrationState.RESOLVED_SUCCESS: True, ArbitrationState.RESOLVED_FAILURE: False}.get(state),
            "source": source,
            "payment_method": codec.payment_method_label((doc or {}).get("txChannel")),
            "order": doc,
        }

    async def dismiss(self, order_id: str) -> None:
        """The user closed the result screen.

        A failed order is deleted now, not at resolution time, so the
        failure receipt stays readable until this point. Dismissing a
        session that has not resolved yet counts as a cancellation. Once the
        session has been evicted the order document decides.

        Raises:
            SessionNotFound: When neither a session nor an order exists.
        """
        self.evict_expired()
        arbitrator = self._sessions.get(order_id)
        if arbitrator is not None:
            if not arbitrator.finished:
                await arbitrator.on_user_cancel()
                await arbitrator.wait()
            state = arbitrator.state
            tx_id = arbitrator.tx_id
        else:
            doc = await asyncio.to_thread(self.orders.get_document, order_id)
            if doc is None:
                raise SessionNotFound(order_id)
            state = _STATE_BY_STATUS.get(doc.get("status"), ArbitrationState.AWAITING_RESULT)
            tx_id = doc.get("txId")

        if state is ArbitrationState.RESOLVED_FAILURE:
            order = await asyncio.to_thread(self.orders.get, order_id)
            if order is not None:
                await asyncio.to_thread(self.finalizer.finalize, order, tx_id, False)
        self._sessions.pop(order_id, None)
        logger.info("session dismissed", extra={"order_id": order_id, "state": state.value})

    async def schedule_reconciliation(self, order_id: str) -> asyncio.Task:
        """Start headless polling for an order nobody is watching.

        A resolved session no longer watches its order and does not block
        reconciliation.

        Raises:
            SessionNotFound: Unknown order or order without transaction id.
            ReconciliationConflict: An unresolved interactive session owns
                the order.
        """
        self.evict_expired()
        arbitrator = self._sessions.get(order_id)
        if (arbitrator is not None and not arbitrator.finished) or order_id in self._starting:
            raise ReconciliationConflict(order_id)
        order = await asyncio.to_thread(self.orders.get, order_id)
        if order is None or not order.tx_id:
            raise SessionNotFound(order_id)

        task = asyncio.create_task(
            Reconciler(self.store, self.make_poller()).reconcile_order(order_id, order.tx_id),
            name=f"reconcile-{order_id}",
        )
        self._background.add(task)
        task.add_done_callback(self._reconciliation_done)
        return task

    def _reconciliation_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("reconciliation failed", extra={"task": task.get_name(), "error": repr(exc)})

    async def shutdown(self) -> None:
        """Stop every poller; unresolved sessions stay pending in the store."""
        for arbitrator in list(self._sessions.values()):
            await arbitrator.close()
        for task in list(self._background):
            task.cancel()
        self._sessions.clear()


_STATE_BY_STATUS = {
    OrderStatus.PAID.value: ArbitrationState.RESOLVED_SUCCESS,
    OrderStatus.FAILED.value: ArbitrationState.RESOLVED_FAILURE,
}
