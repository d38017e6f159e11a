"""
Domain events for billing.

Immutable event objects published after the transaction that caused them
has committed. Handlers do best-effort follow-up work (receipts, emails)
and can never roll back the money movement they describe.

Event Categories:
- QuoteEvent: Quote lifecycle (create, approve)
- InvoiceEvent: Invoice lifecycle (send, paid, reopened by refund)
- PaymentEvent: Money received (manual or gateway)

Events carry the full domain object so handlers don't need to re-fetch state.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import uuid4

from utils.timezone import now_utc


@dataclass(frozen=True, kw_only=True)
class BillingEvent:
    """Base class for all billing domain events."""
    event_id: str = field(default_factory=lambda: str(uuid4()))
    occurred_at: datetime = field(default_factory=now_utc)


# =============================================================================
# QUOTE EVENTS
# =============================================================================


@dataclass(frozen=True)
class QuoteEvent(BillingEvent):
    """Events related to quote lifecycle."""
    pass


@dataclass(frozen=True)
class QuoteCreated(QuoteEvent):
    """A priced quote is ready for the client."""
    quote: Any = None  # Quote — using Any to avoid circular import

    @classmethod
    def create(cls, quote: Any) -> "QuoteCreated":
        return cls(quote=quote)


@dataclass(frozen=True)
class QuoteApproved(QuoteEvent):
    """Client accepted a quote."""
    quote: Any = None

    @classmethod
    def create(cls, quote: Any) -> "QuoteApproved":
        return cls(quote=quote)


# =============================================================================
# INVOICE EVENTS
# =============================================================================


@dataclass(frozen=True)
class InvoiceEvent(BillingEvent):
    """Events related to invoice lifecycle."""
    pass


@dataclass(frozen=True)
class InvoiceSent(InvoiceEvent):
    """Invoice was issued to the client (manually or by auto-billing)."""
    invoice: Any = None

    @classmethod
    def create(cls, invoice: Any) -> "InvoiceSent":
        return cls(invoice=invoice)


@dataclass(frozen=True)
class InvoicePaid(InvoiceEvent):
    """Invoice balance reached zero."""
    invoice: Any = None

    @classmethod
    def create(cls, invoice: Any) -> "InvoicePaid":
        return cls(invoice=invoice)


@dataclass(frozen=True)
class InvoiceReopened(InvoiceEvent):
    """A refund put a balance back on a paid invoice."""
    invoice: Any = None

    @classmethod
    def create(cls, invoice: Any) -> "InvoiceReopened":
        return cls(invoice=invoice)


# =============================================================================
# PAYMENT EVENTS
# =============================================================================


@dataclass(frozen=True)
class PaymentEvent(BillingEvent):
    """Events related to money movement."""
    pass


@dataclass(frozen=True)
class PaymentRecorded(PaymentEvent):
    """A completed payment was committed against an invoice."""
    payment: Any = None
    invoice: Any = None

    @classmethod
    def create(cls, payment: Any, invoice: Any) -> "PaymentRecorded":
        return cls(payment=payment, invoice=invoice)
