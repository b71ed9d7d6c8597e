"""Transaction status polling against the gateway's query endpoint.

``TransactionPoller.poll`` is an async generator: after an initial delay it
queries the gateway once per interval and yields one ``PollUpdate`` per
attempt until the transaction reports a terminal success status or the
attempt budget runs out. Transport errors and the "not yet recorded"
sentinel are soft failures; they are logged and polling goes on at the same
cadence.

The poller never writes to the store. In the interactive flow the
``ResultArbitrator`` consumes the updates; in headless reconciliation
``checkout.reconcile`` does.
"""

import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable

from . import codec
from .domain import GatewayUnavailable, PaymentGatewayPort, PollStatus, PollUpdate
from .settings import Settings

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class TransactionPoller:
    """Cooperative periodic status query for one transaction at a time.

    Args:
        gateway: Port used for ``query_transaction``.
        initial_delay: Seconds to wait before the first query, giving the
            gateway time to record the transaction.
        interval: Seconds between queries; also the per-query timeout.
        max_attempts: Query budget before ``TIMED_OUT`` is emitted.
        sleep: Awaitable sleep, injectable for tests.
    """

    def __init__(
        self,
        gateway: PaymentGatewayPort,
        initial_delay: float = 60.0,
        interval: float = 2.0,
        max_attempts: int = 60,
        sleep: Sleep = asyncio.sleep,
    ):
        self.gateway = gateway
        self.initial_delay = initial_delay
        self.interval = interval
        self.max_attempts = max_attempts
        self._sleep = sleep

    @classmethod
    def from_settings(cls, gateway: PaymentGatewayPort, settings: Settings) -> "TransactionPoller":
        return cls(
            gateway,
            initial_delay=settings.poll_initial_delay_secs,
            interval=settings.poll_interval_secs,
            max_attempts=settings.poll_max_attempts,
        )

    async def poll(self, tx_id: str) -> AsyncIterator[PollUpdate]:
        """Yield status updates until terminal.

        The last update is always terminal: ``PAID`` when the gateway
        reported ``SUCCESS``/``PAID``, ``TIMED_OUT`` after ``max_attempts``
        non-terminal answers. Cancelling the consuming task stops polling
        immediately, including an in-flight query.
        """
        await self._sleep(self.initial_delay)
        for attempt in range(1, self.max_attempts + 1):
            await self._sleep(self.interval)
            update = await self.query_once(tx_id, attempt)
            yield update
            if update.terminal:
                return
        logger.warning("max polling attempts reached", extra={"tx_id": tx_id, "attempts": self.max_attempts})
        yield PollUpdate(self.max_attempts, PollStatus.TIMED_OUT)

    async def query_once(self, tx_id: str, attempt: int = 1) -> PollUpdate:
        """Run one status query and classify it; never raises gateway errors."""
        try:
            data = await self.gateway.query_transaction(tx_id, timeout=self.interval or None)
        except GatewayUnavailable as e:
            logger.warning("polling error", extra={"tx_id": tx_id, "attempt": attempt, "error": str(e)})
            return PollUpdate(attempt, PollStatus.UNAVAILABLE)

        status = codec.classify_query_response(data)
        tx_status = data.get("txStatus") if isinstance(data, dict) else None
        if status is PollStatus.NOT_RECORDED:
            logger.info("transaction not yet recorded", extra={"tx_id": tx_id, "attempt": attempt})
        elif status is PollStatus.UNAVAILABLE:
            logger.warning("unparseable query response", extra={"tx_id": tx_id, "attempt": attempt})
        else:
            logger.info("transaction status", extra={"tx_id": tx_id, "attempt": attempt, "tx_status": tx_status})
        return PollUpdate(attempt, status, tx_status)
