"""Middleware that assigns and propagates a request identifier.

Every incoming HTTP request receives a request identifier (UUID). The
identifier is read from the incoming ``X-Request-ID`` header when provided
by the client, or generated server-side otherwise. The id is stored on
``request.state`` and in a context variable so code running downstream (the
gateway client, log filters) can access it without passing it explicitly.
The response carries the same id in its ``X-Request-ID`` header.
"""

import contextvars
import logging
import uuid

from fastapi import Request

REQUEST_ID_CTX = contextvars.ContextVar("request_id", default="-")
HEADER = "X-Request-ID"

logger = logging.getLogger("checkout.access")


async def add_request_id(request: Request, call_next):
    rid = request.headers.get(HEADER) or str(uuid.uuid4())
    request.state.request_id = rid
    token = REQUEST_ID_CTX.set(rid)
    try:
        response = await call_next(request)
    finally:
        logger.info("request handled", extra={"path": request.url.path, "method": request.method})
        REQUEST_ID_CTX.reset(token)
    response.headers[HEADER] = rid
    return response
