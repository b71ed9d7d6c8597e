# Shared fixtures: fast settings, in-memory store and a stub gateway
from decimal import Decimal

import pytest

from checkout.adapters import GatewayStub, InMemoryDocumentStore
from checkout.domain import CustomerDetails, LineItem, VariantKey
from checkout.repository import CartRepository
from checkout.settings import Settings


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite://",
        gateway_base_url="https://gateway.test",
        integration_key="secret-key",
        poll_initial_delay_secs=0,
        poll_interval_secs=0,
        poll_max_attempts=3,
        use_http_adapters=False,
    )


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def gateway():
    return GatewayStub()


@pytest.fixture
def customer():
    return CustomerDetails(name="Aisyah", email="aisyah@example.com", contact="0123456789", address="1 Jalan Ampang")


@pytest.fixture
def items():
    """Two lines totalling 121.00: a plain product and a variant."""
    return [
        LineItem(product_ref="p1", name="Batik Shirt", qty=2, unit_amount=Decimal("45.50")),
        LineItem(product_ref=VariantKey("p2", "red", "M").to_key(), name="Sarong", qty=1, unit_amount=Decimal("30")),
    ]


@pytest.fixture
def cart(store):
    """Cart of user ``u1`` holding both purchased lines and one unrelated item."""
    repo = CartRepository(store)
    repo.add("u1", VariantKey("p1"), 2, name="Batik Shirt")
    repo.add("u1", VariantKey("p2", "red", "M"), 1, name="Sarong")
    repo.add("u1", VariantKey("p3"), 1, name="Songket")
    return repo
