"""Invoice domain models.

All amounts are stored in cents (integer) to avoid floating point issues.
paid_cents and credited_cents are written only by reconciliation.
"""

from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from core.money import LineItem
from core.models.credit_note import CreditNote
from core.models.payment import Payment, Refund
from core.models.receipt import Receipt


class InvoiceStatus(str, Enum):
    """Invoice lifecycle status."""

    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    CANCELLED = "cancelled"


OVERPAID_AFTER_EDIT = "OVERPAID_AFTER_EDIT"


class InvoiceCreate(BaseModel):
    """Data required to create an ad hoc invoice."""

    client_id: UUID
    pool_id: UUID | None = None
    visit_id: UUID | None = None
    currency: str | None = Field(None, min_length=3, max_length=3)
    items: list[LineItem]
    due_date: date | None = None
    notes: str | None = Field(None, max_length=2000)


class InvoiceUpdate(BaseModel):
    """Editable fields of a draft or sent invoice. All optional."""

    items: list[LineItem] | None = None
    due_date: date | None = None
    notes: str | None = Field(None, max_length=2000)


class Invoice(BaseModel):
    """Full invoice entity as stored."""

    id: UUID
    org_id: UUID
    client_id: UUID
    pool_id: UUID | None
    visit_id: UUID | None
    quote_id: UUID | None
    invoice_number: str
    currency: str
    items: list[LineItem]
    subtotal_cents: int
    tax_cents: int
    total_cents: int
    paid_cents: int
    credited_cents: int
    status: InvoiceStatus
    due_date: date | None
    issued_at: datetime | None
    paid_at: datetime | None
    cancelled_at: datetime | None
    notes: str | None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @property
    def balance_cents(self) -> int:
        """Amount still owed. Never negative."""
        return max(0, self.total_cents - self.paid_cents - self.credited_cents)

    @property
    def is_paid(self) -> bool:
        return self.status == InvoiceStatus.PAID

    @property
    def is_editable(self) -> bool:
        return self.status in (InvoiceStatus.DRAFT, InvoiceStatus.SENT)


class InvoiceUpdateResult(BaseModel):
    """Updated invoice plus non-fatal warnings raised by the edit."""

    invoice: Invoice
    warnings: list[str] = Field(default_factory=list)


class InvoiceDetail(BaseModel):
    """Invoice with every child record that moves its balance."""

    invoice: Invoice
    balance_cents: int
    payments: list[Payment]
    refunds: list[Refund]
    credit_notes: list[CreditNote]
    receipts: list[Receipt]
