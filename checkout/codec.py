"""Payload codec and request signing for the hosted payment gateway.

The gateway authenticates every call with a ``signature`` header holding
``hex(SHA-512(body || integration_key))``. The body is serialized once with
sorted keys and compact separators and the exact same bytes are signed and
transmitted; re-serializing a payload after signing invalidates it.
"""

import hashlib
import json
import time
from typing import Any, Optional, Union

from .domain import (
    CHANNEL_LABELS,
    PAYMENT_METHODS,
    InitiationResult,
    Order,
    PollStatus,
    TxChannel,
    format_amount,
)


TX_TYPE_SALE = "SALE"
RET_SUCCESS = 0
RET_NOT_RECORDED = 1201
TERMINAL_SUCCESS_STATUSES = frozenset({"SUCCESS", "PAID"})
UNKNOWN_PAYMENT_METHOD = "Unknown"


def channel_code_for(payment_method: str) -> TxChannel:
    """Map a payment-method label to its gateway channel code.

    Unknown labels fall back to credit card, the gateway's default channel.
    """
    return PAYMENT_METHODS.get(payment_method, TxChannel.CC)


def payment_method_label(code: Optional[str]) -> str:
    """Map a channel code back to its readable label ("Unknown" otherwise)."""
    try:
        return CHANNEL_LABELS[TxChannel(code)]
    except ValueError:
        return UNKNOWN_PAYMENT_METHOD


def build_request_payload(order: Order, channel: TxChannel, merchant_id: str, currency: str) -> dict:
    """Assemble the body of a ``/tx/request`` call.

    The order id is used both as ``orderId`` and ``orderRef``; every amount
    is a fixed two-decimal string.

    Args:
        order: The pending order being paid.
        channel: Gateway channel code selected by the customer.
        merchant_id: Merchant identifier.
        currency: Currency code.

    Returns:
        dict: JSON-serializable payload.
    """
    return {
        "merchantId": merchant_id,
        "txType": TX_TYPE_SALE,
        "txChannel": channel.value,
        "orderId": order.order_id,
        "orderRef": order.order_id,
        "txCurrency": currency,
        "txAmount": format_amount(order.tx_amount),
        "custName": order.customer.name,
        "custEmail": order.customer.email,
        "custContact": order.customer.contact,
        "productList": [
            {"name": item.name, "qty": item.qty, "amount": format_amount(item.unit_amount)}
            for item in order.items
        ],
    }


def build_query_payload(tx_id: str, merchant_id: str) -> dict:
    return {"merchantId": merchant_id, "txId": tx_id}


def encode(payload: dict) -> bytes:
    """Serialize a payload deterministically to the bytes that get signed."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def sign(payload_bytes: bytes, integration_key: str) -> str:
    """Compute the request signature.

    Args:
        payload_bytes: Exact body bytes that will be transmitted.
        integration_key: Merchant secret, appended to the body before hashing.

    Returns:
        str: Lowercase hex SHA-512 digest.
    """
    return hashlib.sha512(payload_bytes + integration_key.encode("utf-8")).hexdigest()


def _as_dict(body: Union[bytes, str, dict, None]) -> dict:
    if isinstance(body, dict):
        return body
    if not body:
        return {}
    try:
        data = json.loads(body)
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def decode_response(body: Union[bytes, str, dict, None]) -> InitiationResult:
    """Decode the answer to a transaction request.

    The initiation succeeded only when ``ret`` equals the success code AND a
    checkout URL is present. A missing transaction id is synthesized from the
    current time so the session can still be tracked.

    Args:
        body: Raw response body or an already decoded JSON object.

    Returns:
        InitiationResult: Success with checkout URL and tx id, or failure
        carrying the gateway's ``msg`` (generic text when absent).
    """
    data = _as_dict(body)
    checkout_url = data.get("checkoutUrl")
    if data.get("ret") == RET_SUCCESS and checkout_url:
        tx_id = data.get("txId") or f"TXN-{int(time.time() * 1000)}"
        return InitiationResult(success=True, checkout_url=checkout_url, tx_id=str(tx_id))
    return InitiationResult(success=False, error_message=data.get("msg") or "Unknown API response")


def classify_query_response(data: Any) -> PollStatus:
    """Classify a ``/tx/query`` answer for the poller.

    Returns:
        PollStatus: ``NOT_RECORDED`` for the 1201 sentinel, ``PAID`` for a
        terminal success status (case-insensitive), ``UNAVAILABLE`` for an
        unparseable body, ``PENDING`` otherwise.
    """
    data = _as_dict(data)
    if not data:
        return PollStatus.UNAVAILABLE
    if data.get("ret") == RET_NOT_RECORDED:
        return PollStatus.NOT_RECORDED
    status = str(data.get("txStatus") or "").upper()
    if status in TERMINAL_SUCCESS_STATUSES:
        return PollStatus.PAID
    return PollStatus.PENDING
