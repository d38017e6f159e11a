"""Request-scoped middleware for API requests."""

import logging
import time
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

logger = logging.getLogger(__name__)

_MAX_REQUEST_ID_LENGTH = 100


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Assigns a request ID to every request and logs its outcome.

    An X-Request-ID supplied by an upstream proxy is kept so traces line up.
    """

    async def dispatch(self, request: Request, call_next):
        incoming = request.headers.get("x-request-id", "")
        if incoming and len(incoming) <= _MAX_REQUEST_ID_LENGTH:
            request_id = incoming
        else:
            request_id = str(uuid4())
        request.state.request_id = request_id

        started = time.monotonic()
        response = await call_next(request)
        elapsed_ms = (time.monotonic() - started) * 1000

        response.headers["X-Request-ID"] = request_id
        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code} "
            f"({elapsed_ms:.0f} ms, request_id={request_id})"
        )
        return response
