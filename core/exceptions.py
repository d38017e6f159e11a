"""Typed exceptions for billing failures.

Each error carries a machine-readable code and the HTTP status the API
layer answers with. Services raise these; api/errors.py renders them.
"""


class BillingError(Exception):
    """Base class for all billing errors."""

    code = "BILLING_ERROR"
    status_code = 400

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ValidationFailedError(BillingError):
    """Malformed input: empty items, non-positive qty or amount."""

    code = "VALIDATION_ERROR"


class NotFoundError(BillingError):
    """Org-scoped entity does not exist (or belongs to another org)."""

    code = "NOT_FOUND"
    status_code = 404


class InvalidStateError(BillingError):
    """Operation not legal in the entity's current lifecycle state."""

    code = "INVALID_STATE"


class ExceedsBalanceError(BillingError):
    """Payment would take the invoice balance below zero."""

    code = "EXCEEDS_BALANCE"


class ExceedsPaymentAmountError(BillingError):
    """Refund is larger than the payment it refunds."""

    code = "EXCEEDS_PAYMENT_AMOUNT"


class AlreadyAppliedError(BillingError):
    """Credit note was already applied to an invoice."""

    code = "ALREADY_APPLIED"


class AlreadyRefundedError(BillingError):
    """Payment already has a refund."""

    code = "ALREADY_REFUNDED"


class DuplicatePeriodError(BillingError):
    """Service plan already has an invoice for the billing period."""

    code = "DUPLICATE_PERIOD"


class NoCompletedVisitsError(BillingError):
    """Service plan has no completed visits in the billing period."""

    code = "NO_COMPLETED_VISITS"


class InvalidSignatureError(BillingError):
    """Gateway webhook signature did not verify."""

    code = "INVALID_SIGNATURE"
    status_code = 401


class StorageError(BillingError):
    """
    Infrastructure failure talking to the database.

    Reads may be retried by the caller. Writes must not be retried blindly:
    a payment insert that failed after commit would be applied twice.
    """

    code = "STORAGE_ERROR"
    status_code = 503
