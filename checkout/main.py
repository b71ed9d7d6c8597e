"""Checkout service API built with FastAPI.

This module exposes the payment confirmation flow to the mobile client:
starting a checkout, reporting what the embedded browser loaded, backing
out, reading the result and dismissing it. Validation is performed with
Pydantic models; the flow itself is delegated to ``CheckoutService``.

Error mapping:
    - 400 ``{detail, fields}`` for local validation failures.
    - 404 ``{detail: "NOT_FOUND"}`` for unknown sessions or orders.
    - 409 ``{detail: "ORDER_EXISTS"}`` when starting a checkout for an order
      id already in use.
    - 409 ``{detail: "SESSION_ACTIVE"}`` when reconciling a watched order.
    - 502 ``{detail: "INITIATION_FAILED", reason}`` when the gateway did
      not open a transaction.
"""

import logging

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Response
from pythonjsonlogger import jsonlogger

from .domain import InitiationFailed, OrderAlreadyExists, ReconciliationConflict, SessionNotFound, ValidationError
from .logging_filters import RequestIdFilter
from .middleware import add_request_id
from .providers import get_checkout_service
from .schemas import (
    CheckoutStartedOut,
    CheckoutStateOut,
    CreateCheckoutDTO,
    NavigationIn,
    generate_order_id,
)
from .service import CheckoutService
from .settings import get_settings

logger = logging.getLogger("checkout")


def configure_logging(level: str = "INFO") -> None:
    """Attach a JSON handler to the ``checkout`` logger once."""
    if not logger.handlers:
        h = logging.StreamHandler()
        h.setFormatter(jsonlogger.JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s"))
        h.addFilter(RequestIdFilter())
        logger.addHandler(h)
    logger.setLevel(level)


configure_logging(get_settings().log_level)

app = FastAPI(title="Checkout Service")
app.middleware("http")(add_request_id)


def get_service() -> CheckoutService:
    return get_checkout_service()


@app.on_event("shutdown")
async def _shutdown():
    await get_service().shutdown()


@app.get("/health")
def health():
    """Liveness/health probe endpoint.

    Returns:
        dict: A small JSON payload indicating service health.
    """
    return {"ok": True}


@app.post("/checkouts", response_model=CheckoutStartedOut, status_code=201)
async def create_checkout(req: CreateCheckoutDTO, service: CheckoutService = Depends(get_service)):
    """Persist the order, open a gateway transaction and start watching it.

    Args:
        req: Validated checkout form.

    Returns:
        CheckoutStartedOut: ``orderId``, ``txId`` and the ``checkoutUrl``
        to load in the embedded browser.

    Raises:
        HTTPException: 400 on validation failure, 409 for a reused order
            id, 502 when the gateway did not open a transaction.
    """
    order_id = req.order_id or generate_order_id()
    try:
        started = await service.start_checkout(
            user_id=req.user_id,
            order_id=order_id,
            items=[i.to_domain() for i in req.items],
            customer=req.customer.to_domain(),
            payment_method=req.payment_method,
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail={"detail": str(e), "fields": e.fields})
    except OrderAlreadyExists:
        raise HTTPException(status_code=409, detail="ORDER_EXISTS")
    except InitiationFailed as e:
        raise HTTPException(status_code=502, detail={"detail": "INITIATION_FAILED", "reason": e.reason})
    return CheckoutStartedOut(order_id=started.order_id, tx_id=started.tx_id, checkout_url=started.checkout_url)


async def _state(service: CheckoutService, order_id: str) -> CheckoutStateOut:
    try:
        return CheckoutStateOut(**await service.receipt(order_id))
    except SessionNotFound:
        raise HTTPException(status_code=404, detail="NOT_FOUND")


@app.post("/checkouts/{order_id}/navigation", response_model=CheckoutStateOut)
async def report_navigation(order_id: str, req: NavigationIn, service: CheckoutService = Depends(get_service)):
    """Report the URL the embedded browser finished loading."""
    try:
        await service.page_loaded(order_id, req.url)
    except SessionNotFound:
        raise HTTPException(status_code=404, detail="NOT_FOUND")
    return await _state(service, order_id)


@app.post("/checkouts/{order_id}/cancel", response_model=CheckoutStateOut)
async def cancel_checkout(order_id: str, service: CheckoutService = Depends(get_service)):
    try:
        await service.cancel(order_id)
    except SessionNotFound:
        raise HTTPException(status_code=404, detail="NOT_FOUND")
    return await _state(service, order_id)


@app.get("/checkouts/{order_id}", response_model=CheckoutStateOut)
async def read_checkout(order_id: str, service: CheckoutService = Depends(get_service)):
    return await _state(service, order_id)


@app.post("/checkouts/{order_id}/dismiss", status_code=204)
async def dismiss_checkout(order_id: str, service: CheckoutService = Depends(get_service)):
    """Close the result screen; deletes the order of a failed payment."""
    try:
        await service.dismiss(order_id)
    except SessionNotFound:
        raise HTTPException(status_code=404, detail="NOT_FOUND")
    return Response(status_code=204)


@app.post("/orders/{order_id}/reconcile", status_code=202)
async def reconcile_order(order_id: str, service: CheckoutService = Depends(get_service)):
    """Start headless status polling for an order no session is watching."""
    try:
        await service.schedule_reconciliation(order_id)
    except SessionNotFound:
        raise HTTPException(status_code=404, detail="NOT_FOUND")
    except ReconciliationConflict:
        raise HTTPException(status_code=409, detail="SESSION_ACTIVE")
    return {"orderId": order_id, "status": "reconciling"}


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
