"""Service provider helpers for wiring CheckoutService with its ports.

This module exposes a small factory function ``get_checkout_service`` that
returns the process-wide ``CheckoutService``. By default it uses the HTTP
gateway client and the SQLAlchemy document store. With
``USE_HTTP_ADAPTERS=false`` the gateway is replaced by the in-process stub,
which is suitable for local development without merchant credentials.
"""

from functools import lru_cache

from .adapters import GatewayStub
from .http_adapters import HttpGatewayClient
from .repo import SqlDocumentStore
from .service import CheckoutService
from .settings import Settings, get_settings


def build_checkout_service(settings: Settings) -> CheckoutService:
    """Return a CheckoutService wired for ``settings``.

    Args:
        settings: Configuration selecting the database and gateway adapter.

    Returns:
        CheckoutService: A service instance with the appropriate ports.
    """
    gateway = HttpGatewayClient(settings) if settings.use_http_adapters else GatewayStub()
    return CheckoutService(SqlDocumentStore(settings.database_url), gateway, settings)


@lru_cache(maxsize=1)
def get_checkout_service() -> CheckoutService:
    return build_checkout_service(get_settings())
