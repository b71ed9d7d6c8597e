"""Result arbitration for one checkout session.

Three independent signals race to decide whether a payment went through:

- the embedded browser finishing a page load on a success or failure URL,
- the background poller seeing a terminal status (or running out of
  attempts),
- the user backing out of the embedded browser.

``ResultArbitrator`` accepts the first of them and ignores the rest. The
acceptance is a compare-and-set on ``ResolutionLatch``; only the caller that
wins the latch runs the side effects: stop the poller, write the order
status, and on success run the finalizer before the outcome is published.
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Optional

from .domain import (
    ArbitrationState,
    DocumentStore,
    OrderStatus,
    PollStatus,
    PollUpdate,
    ResolutionSource,
    now_iso,
)
from .finalizer import FinalizationReport, OrderFinalizer
from .poller import TransactionPoller
from .repository import OrderRepository

logger = logging.getLogger(__name__)

SUCCESS_MARKERS = ("success", "completed")
FAILURE_MARKERS = ("failed", "cancel", "error")


def classify_redirect(url: Optional[str]) -> Optional[bool]:
    """Read a payment outcome from a browser URL.

    Matching is case-insensitive on substrings. A URL matching markers of
    both kinds is ambiguous and, like a URL matching none, yields None.

    Returns:
        Optional[bool]: True for success, False for failure, None otherwise.
    """
    if not url:
        return None
    lowered = url.lower()
    success = any(m in lowered for m in SUCCESS_MARKERS)
    failure = any(m in lowered for m in FAILURE_MARKERS)
    if success == failure:
        return None
    return success


class ResolutionLatch:
    """Single-assignment guard.

    ``try_set`` is an atomic check-and-set: exactly one caller ever gets
    True, whatever thread or task it runs on.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._value: Optional[bool] = None

    def try_set(self, value: bool) -> bool:
        with self._lock:
            if self._value is not None:
                return False
            self._value = value
            return True

    @property
    def value(self) -> Optional[bool]:
        with self._lock:
            return self._value


@dataclass(frozen=True)
class Resolution:
    success: bool
    source: ResolutionSource
    resolved_at: str
    finalization: Optional[FinalizationReport] = None


class ResultArbitrator:
    """State machine ``AWAITING_RESULT`` -> ``RESOLVED_SUCCESS`` | ``RESOLVED_FAILURE``.

    Args:
        order_id: Order under payment.
        tx_id: Gateway transaction id.
        store: Document store owning the order.
        finalizer: Runs the success side effects.
        poller: Optional poller started by ``start()``.
    """

    def __init__(
        self,
        order_id: str,
        tx_id: str,
        store: DocumentStore,
        finalizer: OrderFinalizer,
        poller: Optional[TransactionPoller] = None,
    ):
        self.order_id = order_id
        self.tx_id = tx_id
        self.orders = OrderRepository(store)
        self.finalizer = finalizer
        self.poller = poller
        self._latch = ResolutionLatch()
        self._done = asyncio.Event()
        self._resolution: Optional[Resolution] = None
        self._poll_task: Optional[asyncio.Task] = None
        self.finished_at: Optional[float] = None

    @property
    def state(self) -> ArbitrationState:
        value = self._latch.value
        if value is None:
            return ArbitrationState.AWAITING_RESULT
        return ArbitrationState.RESOLVED_SUCCESS if value else ArbitrationState.RESOLVED_FAILURE

    @property
    def finished(self) -> bool:
        """True once the winning path completed its side effects."""
        return self._done.is_set()

    @property
    def resolution(self) -> Optional[Resolution]:
        return self._resolution

    @property
    def polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    def start(self) -> None:
        """Schedule the poller on the running event loop."""
        if self.poller is None or self._poll_task is not None:
            return
        self._poll_task = asyncio.create_task(self._watch(), name=f"poll-{self.tx_id}")

    async def _watch(self) -> None:
        try:
            async for update in self.poller.poll(self.tx_id):
                if await self.on_poll_update(update) or self._latch.value is not None:
                    return
        except Exception:
            # the browser and cancel signals can still resolve the session
            logger.exception("poller stopped unexpectedly", extra={"order_id": self.order_id, "tx_id": self.tx_id})

    async def on_poll_update(self, update: PollUpdate) -> bool:
        """Feed one poll observation; only terminal ones resolve."""
        if update.status is PollStatus.PAID:
            return await self.resolve(True, ResolutionSource.POLL)
        if update.status is PollStatus.TIMED_OUT:
            return await self.resolve(False, ResolutionSource.TIMEOUT)
        return False

    async def on_page_loaded(self, url: Optional[str]) -> bool:
        """Feed the browser URL observed after a page load completed."""
        outcome = classify_redirect(url)
        logger.info("redirected", extra={"order_id": self.order_id, "url": url, "outcome": outcome})
        if outcome is None:
            return False
        return await self.resolve(outcome, ResolutionSource.REDIRECT)

    async def on_user_cancel(self) -> bool:
        return await self.resolve(False, ResolutionSource.USER_CANCEL)

    async def resolve(self, success: bool, source: ResolutionSource) -> bool:
        """Accept an outcome if none was accepted before.

        Returns:
            bool: True for the single caller that won the latch, False for
            every later (ignored) signal.
        """
        if not self._latch.try_set(success):
            logger.info(
                "late signal ignored",
                extra={"order_id": self.order_id, "source": source.value, "state": self.state.value},
            )
            return False

        self._stop_polling()
        logger.info("payment resolved", extra={"order_id": self.order_id, "tx_id": self.tx_id, "success": success, "source": source.value})

        status = OrderStatus.PAID if success else OrderStatus.FAILED
        report = None
        try:
            try:
                await asyncio.to_thread(self.orders.set_status, self.order_id, status)
            except Exception as e:
                logger.error("order status update failed", extra={"order_id": self.order_id, "error": str(e)})
            if success:
                report = await self._finalize()
        finally:
            # waiters are released even when the resolving task is cancelled
            self._resolution = Resolution(success=success, source=source, resolved_at=now_iso(), finalization=report)
            self.finished_at = time.monotonic()
            self._done.set()
        return True

    async def _finalize(self) -> Optional[FinalizationReport]:
        try:
            order = await asyncio.to_thread(self.orders.get, self.order_id)
            if order is None:
                logger.warning("paid order not found", extra={"order_id": self.order_id})
                return None
            return await asyncio.to_thread(self.finalizer.finalize, order, self.tx_id, True)
        except Exception as e:
            logger.error("finalization failed", extra={"order_id": self.order_id, "error": str(e)})
            return None

    def _stop_polling(self) -> None:
        task = self._poll_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def wait(self, timeout: Optional[float] = None) -> Resolution:
        """Wait until the outcome and its side effects are complete.

        Raises:
            asyncio.TimeoutError: If ``timeout`` elapses first.
        """
        await asyncio.wait_for(self._done.wait(), timeout)
        return self._resolution

    async def close(self) -> None:
        """Cancel the poller without resolving (service shutdown)."""
        task = self._poll_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
