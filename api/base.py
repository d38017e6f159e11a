"""Unified API response format and error codes."""

from typing import Any
from datetime import datetime
from uuid import uuid4

from pydantic import BaseModel, Field

from utils.timezone import now_utc


class APIError(BaseModel):
    """Error details in API response."""

    code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")


class APIMeta(BaseModel):
    """Metadata included in every API response."""

    timestamp: datetime = Field(..., description="Response timestamp (UTC)")
    request_id: str = Field(..., description="Unique request identifier for tracing")


class APIResponse(BaseModel):
    """
    Unified response format for all API endpoints.

    Every endpoint returns this structure, making client parsing predictable.
    """

    success: bool
    data: Any | None = None
    error: APIError | None = None
    meta: APIMeta


def _meta(request_id: str | None) -> APIMeta:
    return APIMeta(timestamp=now_utc(), request_id=request_id or str(uuid4()))


def success_response(data: Any, request_id: str | None = None) -> APIResponse:
    """Create a success response."""
    return APIResponse(success=True, data=data, error=None, meta=_meta(request_id))


def error_response(code: str, message: str, request_id: str | None = None) -> APIResponse:
    """Create an error response."""
    return APIResponse(
        success=False,
        data=None,
        error=APIError(code=code, message=message),
        meta=_meta(request_id),
    )


class ErrorCodes:
    """
    Standard error codes for consistent error handling.

    Domain failures carry their own code on the raised BillingError
    (see core/exceptions.py); the codes here cover the HTTP layer.
    """

    # Authentication
    NOT_AUTHENTICATED = "NOT_AUTHENTICATED"
    SESSION_EXPIRED = "SESSION_EXPIRED"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"

    # Resource Errors
    NOT_FOUND = "NOT_FOUND"

    # Validation Errors
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_REQUEST = "INVALID_REQUEST"

    # Lifecycle and money guards
    INVALID_STATE = "INVALID_STATE"
    EXCEEDS_BALANCE = "EXCEEDS_BALANCE"
    EXCEEDS_PAYMENT_AMOUNT = "EXCEEDS_PAYMENT_AMOUNT"
    ALREADY_APPLIED = "ALREADY_APPLIED"
    ALREADY_REFUNDED = "ALREADY_REFUNDED"
    DUPLICATE_PERIOD = "DUPLICATE_PERIOD"
    NO_COMPLETED_VISITS = "NO_COMPLETED_VISITS"

    # Infrastructure
    INTERNAL_ERROR = "INTERNAL_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"


def request_id_of(request) -> str | None:
    """Request ID assigned by RequestIDMiddleware, if it ran."""
    return getattr(request.state, "request_id", None)


def envelope(request, data: Any) -> dict:
    """JSON-ready success envelope tagged with the request's ID."""
    return success_response(data, request_id_of(request)).model_dump(mode="json")
