"""Receipt domain model. One receipt per completed payment."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel


class Receipt(BaseModel):
    id: UUID
    org_id: UUID
    invoice_id: UUID
    payment_id: UUID
    receipt_number: str
    issued_at: datetime

    model_config = {"from_attributes": True}
