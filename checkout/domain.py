"""Domain models, ports and errors for the checkout payment flow.

This module contains the dataclasses used as DTOs for orders, cart keys and
ledger entries, the enumerations describing order and arbitration states,
protocol definitions (ports) for the document store and the payment gateway,
and the error taxonomy shared by every component.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, List, Optional, Protocol
from urllib.parse import quote


# ---- Collections ----
ORDERS = "orders"
PAID_PRODUCTS = "paidProducts"


def cart_collection(user_id: str) -> str:
    """Return the per-user cart collection path."""
    return f"users/{user_id}/cart"


def now_iso() -> str:
    """Current UTC time as an ISO-8601 string (documents store JSON only)."""
    return datetime.now(timezone.utc).isoformat()


# ---- Enums ----
class OrderStatus(str, Enum):
    """Lifecycle of an order document.

    ``PENDING_PAYMENT`` is written by the initiator before the gateway call,
    ``PENDING`` once the gateway returned a transaction id. ``PAID`` and
    ``FAILED`` are terminal and written once by the arbitrator.
    """

    PENDING_PAYMENT = "pending_payment"
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class DeliveryStatus(str, Enum):
    NOT_STARTED = "not_started"
    DELIVERING = "delivering"
    COMPLETED = "Completed"


class TxChannel(str, Enum):
    """Gateway channel codes and their human-facing labels."""

    DD = "DD"
    CC = "CC"
    EW = "EW"

    @property
    def label(self) -> str:
        return CHANNEL_LABELS[self]


CHANNEL_LABELS = {
    TxChannel.DD: "Online Banking",
    TxChannel.CC: "Credit Card",
    TxChannel.EW: "E-Wallet",
}
PAYMENT_METHODS = {label: channel for channel, label in CHANNEL_LABELS.items()}


class ArbitrationState(str, Enum):
    AWAITING_RESULT = "AWAITING_RESULT"
    RESOLVED_SUCCESS = "RESOLVED_SUCCESS"
    RESOLVED_FAILURE = "RESOLVED_FAILURE"


class ResolutionSource(str, Enum):
    """Which signal won the race to resolve a checkout session."""

    POLL = "poll"
    REDIRECT = "redirect"
    USER_CANCEL = "user_cancel"
    TIMEOUT = "timeout"


class PollStatus(str, Enum):
    NOT_RECORDED = "NOT_RECORDED"
    UNAVAILABLE = "UNAVAILABLE"
    PENDING = "PENDING"
    PAID = "PAID"
    TIMED_OUT = "TIMED_OUT"


# ---- Value objects / DTOs ----
@dataclass(frozen=True)
class VariantKey:
    """Identity of a cart entry: a product plus its selected variant.

    Two cart additions with the same key merge their quantities. The
    serialized form escapes each part so that values containing the
    delimiter cannot collide with a different combination.
    """

    product_id: str
    color: Optional[str] = None
    size: Optional[str] = None
    measurement: Optional[str] = None

    def to_key(self) -> str:
        """Serialize to a deterministic document id.

        Returns:
            str: The escaped product id when no variant attribute is set,
            otherwise the four escaped parts joined by ``_``.
        """
        variant = (self.color, self.size, self.measurement)
        parts = [self.product_id] if all(v is None for v in variant) else [self.product_id, *variant]
        return "_".join(quote(p or "", safe="").replace("_", "%5F") for p in parts)


@dataclass(frozen=True)
class LineItem:
    """A single line of an order.

    Attributes:
        product_ref: Cart key of the purchased product (see ``VariantKey``).
        name: Display name captured at checkout time.
        qty: Number of units.
        unit_amount: Server-trusted unit price.
        image_ref: Optional image reference for receipts.
    """

    product_ref: str
    name: str
    qty: int
    unit_amount: Decimal
    image_ref: Optional[str] = None

    @property
    def total(self) -> Decimal:
        return self.unit_amount * self.qty

    def to_document(self) -> dict:
        return {
            "id": self.product_ref,
            "name": self.name,
            "qty": self.qty,
            "amount": format_amount(self.unit_amount),
            "image": self.image_ref,
        }

    @classmethod
    def from_document(cls, doc: dict) -> "LineItem":
        return cls(
            product_ref=str(doc.get("id") or ""),
            name=doc.get("name") or "",
            qty=int(doc.get("qty") or 0),
            unit_amount=Decimal(str(doc.get("amount") or "0")),
            image_ref=doc.get("image"),
        )


@dataclass(frozen=True)
class CustomerDetails:
    name: str
    email: str
    contact: str
    address: str

    def missing_fields(self) -> List[str]:
        """Names of the delivery fields that are empty or blank."""
        return [k for k in ("name", "email", "contact", "address") if not (getattr(self, k) or "").strip()]


@dataclass
class Order:
    """Container for one checkout attempt.

    Attributes:
        order_id: Caller-generated unique id, also used as the gateway
            ``orderId``/``orderRef``.
        user_id: Owner of the order and of the cart to clean up.
        items: Ordered line items.
        tx_amount: Total as a two-decimal string.
        tx_channel: Gateway channel code.
        customer: Delivery and contact details.
        status: Current ``OrderStatus``.
        delivery_status: Independent delivery progress.
        tx_id: Gateway transaction id once known.
    """

    order_id: str
    user_id: str
    items: List[LineItem]
    tx_amount: str
    tx_channel: TxChannel
    customer: CustomerDetails
    status: OrderStatus = OrderStatus.PENDING_PAYMENT
    delivery_status: DeliveryStatus = DeliveryStatus.NOT_STARTED
    tx_id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def to_document(self) -> dict:
        doc = {
            "orderId": self.order_id,
            "orderRef": self.order_id,
            "userId": self.user_id,
            "productList": [i.to_document() for i in self.items],
            "txAmount": self.tx_amount,
            "txChannel": self.tx_channel.value,
            "custName": self.customer.name,
            "custEmail": self.customer.email,
            "custContact": self.customer.contact,
            "address": self.customer.address,
            "status": self.status.value,
            "deliveryStatus": self.delivery_status.value,
            "createdAt": self.created_at,
        }
        if self.tx_id:
            doc["txId"] = self.tx_id
        if self.updated_at:
            doc["updatedAt"] = self.updated_at
        return doc

    @classmethod
    def from_document(cls, order_id: str, doc: dict) -> "Order":
        channel = doc.get("txChannel")
        return cls(
            order_id=order_id,
            user_id=doc.get("userId") or "",
            items=[LineItem.from_document(p) for p in doc.get("productList") or []],
            tx_amount=doc.get("txAmount") or "0.00",
            tx_channel=TxChannel(channel) if channel in {c.value for c in TxChannel} else TxChannel.CC,
            customer=CustomerDetails(
                name=doc.get("custName") or "",
                email=doc.get("custEmail") or "",
                contact=doc.get("custContact") or "",
                address=doc.get("address") or "",
            ),
            status=OrderStatus(doc.get("status") or OrderStatus.PENDING_PAYMENT.value),
            delivery_status=DeliveryStatus(doc.get("deliveryStatus") or DeliveryStatus.NOT_STARTED.value),
            tx_id=doc.get("txId"),
            created_at=doc.get("createdAt"),
            updated_at=doc.get("updatedAt"),
        )


@dataclass(frozen=True)
class PaidProductRecord:
    """Immutable ledger entry, one per line item of a paid order."""

    user_id: str
    order_id: str
    tx_id: str
    product: dict
    customer: CustomerDetails
    payment_method: str
    delivery_status: DeliveryStatus = DeliveryStatus.NOT_STARTED
    paid_at: str = field(default_factory=now_iso)

    def to_document(self) -> dict:
        return {
            "userId": self.user_id,
            "orderId": self.order_id,
            "txId": self.tx_id,
            "product": self.product,
            "custName": self.customer.name or "-",
            "custEmail": self.customer.email or "-",
            "custContact": self.customer.contact or "-",
            "address": self.customer.address or "-",
            "paymentMethod": self.payment_method,
            "deliveryStatus": self.delivery_status.value,
            "paidAt": self.paid_at,
        }


@dataclass(frozen=True)
class InitiationResult:
    """Decoded answer of the gateway to a transaction request."""

    success: bool
    checkout_url: Optional[str] = None
    tx_id: Optional[str] = None
    error_message: Optional[str] = None


@dataclass(frozen=True)
class CheckoutStarted:
    order_id: str
    tx_id: str
    checkout_url: str


@dataclass(frozen=True)
class PollUpdate:
    """One observation emitted by the transaction poller.

    Attributes:
        attempt: 1-based attempt counter (0 for nothing queried yet).
        status: Classification of the gateway answer.
        tx_status: Raw ``txStatus`` string when the gateway returned one.
    """

    attempt: int
    status: PollStatus
    tx_status: Optional[str] = None

    @property
    def terminal(self) -> bool:
        return self.status in (PollStatus.PAID, PollStatus.TIMED_OUT)


def format_amount(value: Any) -> str:
    """Format a money value as a fixed two-decimal string."""
    return str(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


# ---- Errors ----
class CheckoutError(Exception):
    """Base class for every error raised by the checkout core."""


class ValidationError(CheckoutError):
    """Local validation failed before any state mutation.

    Attributes:
        fields: Names of the offending fields.
    """

    def __init__(self, message: str, fields: Optional[List[str]] = None):
        super().__init__(message)
        self.fields = fields or []


class InitiationFailed(CheckoutError):
    """The gateway could not be reached or rejected the transaction."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class GatewayUnavailable(CheckoutError):
    """Transport error, timeout or non-200 answer from the gateway."""


class SessionNotFound(CheckoutError):
    pass


class DocumentNotFound(CheckoutError):
    pass


class OrderAlreadyExists(CheckoutError):
    """An order document with this id exists already; retries need a new id."""


class ReconciliationConflict(CheckoutError):
    """An interactive session already watches the order."""


# ---- Ports (DIP) ----
class DocumentStore(Protocol):
    """Port describing the document store the core persists into.

    Collections are slash-separated paths (``orders``,
    ``users/{userId}/cart``, ``paidProducts``); documents are JSON objects.
    Single-document writes are expected to be atomic.
    """

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        """Return a copy of the document, or None when it does not exist."""
        raise NotImplementedError()

    def set(self, collection: str, doc_id: str, data: dict, merge: bool = False) -> None:
        """Create or replace a document; with ``merge`` only the given fields change."""
        raise NotImplementedError()

    def update(self, collection: str, doc_id: str, fields: dict) -> None:
        """Update fields of an existing document.

        Raises:
            DocumentNotFound: If the document does not exist.
        """
        raise NotImplementedError()

    def delete(self, collection: str, doc_id: str) -> None:
        """Delete a document; deleting a missing document is a no-op."""
        raise NotImplementedError()

    def list(self, collection: str) -> List[tuple]:
        """Return ``(doc_id, data)`` pairs for every document in a collection."""
        raise NotImplementedError()

    def add(self, collection: str, data: dict) -> str:
        """Append a document under a generated id and return that id."""
        raise NotImplementedError()


class PaymentGatewayPort(Protocol):
    """Port describing the hosted payment gateway.

    Both calls return the decoded JSON body of a 200 answer and raise
    ``GatewayUnavailable`` for transport errors and non-200 answers.
    """

    async def request_transaction(self, payload: dict) -> dict:
        raise NotImplementedError()

    async def query_transaction(self, tx_id: str, timeout: Optional[float] = None) -> dict:
        raise NotImplementedError()
