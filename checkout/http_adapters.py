"""HTTP adapter for the hosted payment gateway.

This module implements the concrete ``PaymentGatewayPort`` on top of
``httpx``. It adds:

- Request signing: each body is serialized once by the codec, signed with
  the merchant integration key and sent as the exact signed bytes.
- Request correlation: propagates ``X-Request-ID`` from the ContextVar set by
  the request-id middleware.
- Error mapping: transport errors, timeouts, non-200 answers and
  unparseable bodies are all raised as ``GatewayUnavailable``.

Transaction requests are never retried here: a ``SALE`` is not idempotent on
the gateway side and a blind retry could open a second transaction. Status
queries are retried by the poller's own cadence.
"""

import logging
from typing import Optional

import httpx

from . import codec
from .domain import GatewayUnavailable, PaymentGatewayPort
from .middleware import REQUEST_ID_CTX
from .settings import Settings, get_settings

logger = logging.getLogger(__name__)

REQUEST_PATH = "/tx/request"
QUERY_PATH = "/tx/query"


def _request_headers(signature: str, extra: Optional[dict] = None) -> dict:
    """Build the signed headers, adding X-Request-ID when a request is in flight.

    Args:
        signature: Hex SHA-512 signature of the body.
        extra: Optional dict of additional headers to include.

    Returns:
        dict: Final headers dictionary for the outgoing request.
    """
    headers = {"Content-Type": "application/json", "signature": signature}
    rid = REQUEST_ID_CTX.get()
    if rid and rid != "-":
        headers["X-Request-ID"] = rid
    if extra:
        headers.update(extra)
    return headers


class HttpGatewayClient(PaymentGatewayPort):
    """Async HTTP client for the gateway's request and query endpoints."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self.base_url = self.settings.gateway_base_url

    async def _post(self, path: str, payload: dict, timeout: float, extra_headers: Optional[dict] = None) -> dict:
        body = codec.encode(payload)
        signature = codec.sign(body, self.settings.integration_key)
        logger.debug("gateway payload", extra={"path": path, "payload": body.decode("utf-8"), "signature": signature})

        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                resp = await client.post(
                    f"{self.base_url}{path}",
                    content=body,
                    headers=_request_headers(signature, extra_headers),
                )
        except httpx.RequestError as e:
            logger.warning("gateway unreachable", extra={"path": path, "error": str(e)})
            raise GatewayUnavailable(f"{type(e).__name__}: {e}") from e

        logger.debug("gateway response", extra={"path": path, "status_code": resp.status_code, "body": resp.text})
        if resp.status_code != 200:
            raise GatewayUnavailable(f"HTTP {resp.status_code}: {resp.text}")
        try:
            data = resp.json()
        except ValueError as e:
            raise GatewayUnavailable("Unparseable gateway response") from e
        if not isinstance(data, dict):
            raise GatewayUnavailable("Unexpected gateway response")
        return data

    async def request_transaction(self, payload: dict) -> dict:
        """Open a SALE transaction on the gateway.

        Args:
            payload: Body built by ``codec.build_request_payload``.

        Returns:
            dict: Decoded JSON answer (``ret``, ``checkoutUrl``, ``txId``, ``msg``).

        Raises:
            GatewayUnavailable: For transport errors, non-200 statuses and
                unparseable bodies.
        """
        return await self._post(REQUEST_PATH, payload, self.settings.http_timeout_secs)

    async def query_transaction(self, tx_id: str, timeout: Optional[float] = None) -> dict:
        """Query the status of one transaction.

        The default timeout equals the poll interval so a hung query cannot
        pile up behind the next tick.

        Raises:
            GatewayUnavailable: For transport errors, non-200 statuses and
                unparseable bodies.
        """
        payload = codec.build_query_payload(tx_id, self.settings.merchant_id)
        return await self._post(
            QUERY_PATH,
            payload,
            timeout or self.settings.poll_interval_secs,
            extra_headers={"charset": "UTF-8"},
        )
