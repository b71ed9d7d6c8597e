"""Pydantic schemas for the checkout API.

Request models only check shape and types. Business validation (blank
delivery fields, missing payment method) is done by the initiator so that
it is reported the same way whatever the entry point.
"""

import time
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .domain import CustomerDetails, LineItem


def generate_order_id() -> str:
    return f"ORD{int(time.time() * 1000)}"


class LineItemIn(BaseModel):
    """Input schema for a single cart line.

    Attributes:
        id: Cart key of the product (product id or variant key).
        name: Display name.
        quantity: Units purchased.
        price: Server-trusted unit price.
        image: Optional image reference.
    """

    id: str = Field(min_length=1, max_length=255)
    name: str
    quantity: int
    price: Decimal = Field(ge=0)
    image: Optional[str] = None

    def to_domain(self) -> LineItem:
        return LineItem(product_ref=self.id, name=self.name, qty=self.quantity, unit_amount=self.price, image_ref=self.image)


class CustomerIn(BaseModel):
    name: str = ""
    email: str = ""
    number: str = ""
    address: str = ""

    def to_domain(self) -> CustomerDetails:
        return CustomerDetails(name=self.name, email=self.email, contact=self.number, address=self.address)


class CreateCheckoutDTO(BaseModel):
    """Schema for starting a checkout.

    Attributes:
        user_id: Owner of the cart.
        order_id: Optional caller-generated order id; a timestamp-derived
            id is generated when omitted.
        items: Cart lines to pay for.
        customer: Delivery and contact details.
        payment_method: "Online Banking", "Credit Card" or "E-Wallet".
    """

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(min_length=1, alias="userId")
    order_id: Optional[str] = Field(default=None, alias="orderId")
    items: list[LineItemIn]
    customer: CustomerIn
    payment_method: Optional[str] = Field(default=None, alias="paymentMethod")


class CheckoutStartedOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_id: str = Field(serialization_alias="orderId")
    tx_id: str = Field(serialization_alias="txId")
    checkout_url: str = Field(serialization_alias="checkoutUrl")


class NavigationIn(BaseModel):
    url: str


class CheckoutStateOut(BaseModel):
    """Session state as seen by the client.

    ``finished`` turns true only after the terminal side effects ran, so a
    client that sees a successful outcome also sees an already cleaned cart.
    """

    order_id: str
    tx_id: Optional[str] = None
    state: str
    finished: bool
    success: Optional[bool] = None
    source: Optional[str] = None
    payment_method: Optional[str] = None
    order: Optional[dict] = None
