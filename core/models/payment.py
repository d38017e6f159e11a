"""Payment and refund domain models."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class PaymentStatus(str, Enum):
    """Payments are created completed; only refunds move them on."""

    COMPLETED = "completed"
    PARTIALLY_REFUNDED = "partially_refunded"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"
    MOBILE_MONEY = "mobile_money"
    BANK_TRANSFER = "bank_transfer"
    CHEQUE = "cheque"


class ManualPaymentCreate(BaseModel):
    """Money received outside the gateway and entered by staff."""

    invoice_id: UUID
    method: PaymentMethod
    amount_cents: int = Field(..., gt=0)
    reference: str | None = Field(None, max_length=200)


class Payment(BaseModel):
    """Full payment entity as stored."""

    id: UUID
    org_id: UUID
    invoice_id: UUID
    method: PaymentMethod
    provider: str | None
    provider_ref: str | None
    reference: str | None
    amount_cents: int
    currency: str
    status: PaymentStatus
    processed_at: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime

    model_config = {"from_attributes": True}


class GatewayEventMetadata(BaseModel):
    """Metadata we attach when initialising a checkout, echoed back by the gateway."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    invoice_id: UUID = Field(..., alias="invoiceId")
    org_id: UUID = Field(..., alias="orgId")


class GatewayEventData(BaseModel):
    """The `data` object of a gateway webhook. Unknown fields are kept for the payment record."""

    model_config = ConfigDict(extra="allow")

    reference: str = Field(..., min_length=1, max_length=200)
    amount: int = Field(..., gt=0)
    currency: str | None = None
    channel: str | None = None
    metadata: GatewayEventMetadata


class GatewayEvent(BaseModel):
    """Webhook body: {event, data: {reference, amount, metadata: {invoiceId, orgId}}}."""

    model_config = ConfigDict(extra="allow")

    event: str
    data: GatewayEventData


class GatewayEventResult(BaseModel):
    """Outcome of a webhook delivery. Every outcome is acknowledged to the gateway."""

    processed: bool
    duplicate: bool = False
    payment: Payment | None = None
    message: str


class RefundCreate(BaseModel):
    """Refund request. Amount defaults to the full payment."""

    amount_cents: int | None = Field(None, gt=0)
    reason: str | None = Field(None, max_length=500)
    provider_ref: str | None = Field(None, max_length=200)


class Refund(BaseModel):
    """Full refund entity as stored. At most one per payment."""

    id: UUID
    org_id: UUID
    payment_id: UUID
    invoice_id: UUID
    amount_cents: int
    reason: str | None
    provider_ref: str | None
    refunded_at: datetime
    meta: dict[str, Any] = Field(default_factory=dict)

    model_config = {"from_attributes": True}
