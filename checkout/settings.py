"""Runtime configuration read from environment variables.

Every value has a default suitable for local development against the
gateway's staging host. Tests build ``Settings`` directly with shrunk
timing parameters instead of touching the environment.
"""

import os
from dataclasses import dataclass
from functools import lru_cache


def _bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    """Checkout service configuration.

    Attributes:
        database_url: SQLAlchemy URL backing the document store.
        gateway_base_url: Root URL of the hosted payment gateway.
        merchant_id: Merchant identifier sent in every gateway payload.
        integration_key: Secret appended to payload bytes before hashing.
            It is never transmitted nor logged.
        currency: Currency code for every transaction.
        http_timeout_secs: Timeout of the transaction request call.
        poll_initial_delay_secs: Wait before the first status query.
        poll_interval_secs: Status query cadence, also used as the
            per-query timeout.
        poll_max_attempts: Query budget before a session times out.
        delete_order_on_initiation_failure: Delete the pending order when
            the gateway refuses or cannot be reached at initiation.
        session_ttl_secs: How long a resolved session is kept in memory
            for receipts before it is dropped.
        use_http_adapters: Use the real gateway client instead of the stub.
        log_level: Root log level name.
    """

    database_url: str = "sqlite:///./checkout.db"
    gateway_base_url: str = "https://stg-ipg.ampersandpay.com"
    merchant_id: str = "91012387"
    integration_key: str = ""
    currency: str = "MYR"
    http_timeout_secs: float = 10.0
    poll_initial_delay_secs: float = 60.0
    poll_interval_secs: float = 2.0
    poll_max_attempts: int = 60
    delete_order_on_initiation_failure: bool = False
    session_ttl_secs: float = 300.0
    use_http_adapters: bool = True
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            gateway_base_url=os.getenv("GATEWAY_BASE_URL", cls.gateway_base_url).rstrip("/"),
            merchant_id=os.getenv("GATEWAY_MERCHANT_ID", cls.merchant_id),
            integration_key=os.getenv("GATEWAY_INTEGRATION_KEY", cls.integration_key),
            currency=os.getenv("GATEWAY_CURRENCY", cls.currency),
            http_timeout_secs=float(os.getenv("HTTP_TIMEOUT_SECS", str(cls.http_timeout_secs))),
            poll_initial_delay_secs=float(os.getenv("POLL_INITIAL_DELAY_SECS", str(cls.poll_initial_delay_secs))),
            poll_interval_secs=float(os.getenv("POLL_INTERVAL_SECS", str(cls.poll_interval_secs))),
            poll_max_attempts=int(os.getenv("POLL_MAX_ATTEMPTS", str(cls.poll_max_attempts))),
            delete_order_on_initiation_failure=_bool("DELETE_ORDER_ON_INITIATION_FAILURE", "false"),
            session_ttl_secs=float(os.getenv("SESSION_TTL_SECS", str(cls.session_ttl_secs))),
            use_http_adapters=_bool("USE_HTTP_ADAPTERS", "true"),
            log_level=os.getenv("LOG_LEVEL", cls.log_level).upper(),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings, read once from the environment."""
    return Settings.from_env()
