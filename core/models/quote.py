"""Quote domain models.

A quote prices the repair of an inspected issue. Totals are always the
recomputation of the stored items at the last write.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field

from core.money import LineItem


class QuoteStatus(str, Enum):
    """Quote lifecycle status. Approved and rejected are terminal."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class QuoteCreate(BaseModel):
    """Data required to create a quote."""

    pool_id: UUID
    issue_id: UUID | None = None
    currency: str | None = Field(None, min_length=3, max_length=3)
    items: list[LineItem]
    notes: str | None = Field(None, max_length=2000)


class QuoteUpdate(BaseModel):
    """Editable fields of a pending quote. All optional."""

    items: list[LineItem] | None = None
    notes: str | None = Field(None, max_length=2000)


class Quote(BaseModel):
    """Full quote entity as stored."""

    id: UUID
    org_id: UUID
    pool_id: UUID
    client_id: UUID
    issue_id: UUID | None
    currency: str
    items: list[LineItem]
    subtotal_cents: int
    tax_cents: int
    total_cents: int
    status: QuoteStatus
    approved_at: datetime | None
    approved_by: UUID | None
    rejected_at: datetime | None
    rejected_by: UUID | None
    rejection_reason: str | None
    notes: str | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @property
    def is_pending(self) -> bool:
        return self.status == QuoteStatus.PENDING
