"""Credit note domain models.

A credit note reduces what a client owes. It may be applied to an invoice
at creation or stored and applied later, exactly once.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from core.money import LineItem


class CreditNoteCreate(BaseModel):
    """Data required to create a credit note."""

    client_id: UUID | None = None
    invoice_id: UUID | None = None
    reason: str | None = Field(None, max_length=500)
    items: list[LineItem]
    apply_now: bool = False

    @model_validator(mode="after")
    def require_target(self) -> "CreditNoteCreate":
        """A note needs a client (directly or via its invoice); apply_now needs an invoice."""
        if self.client_id is None and self.invoice_id is None:
            raise ValueError("Either client_id or invoice_id is required")
        if self.apply_now and self.invoice_id is None:
            raise ValueError("apply_now requires invoice_id")
        return self


class CreditNote(BaseModel):
    """Full credit note entity as stored."""

    id: UUID
    org_id: UUID
    client_id: UUID
    invoice_id: UUID | None
    reason: str | None
    items: list[LineItem]
    amount_cents: int
    currency: str
    applied_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}

    @property
    def is_applied(self) -> bool:
        return self.applied_at is not None


class CreditNoteApplication(BaseModel):
    """Result of applying a credit note to an invoice."""

    success: bool
    credit_note: CreditNote
    new_balance_cents: int
