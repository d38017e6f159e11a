"""Billing view of the scheduling subsystem's service plans and visits.

These rows are owned by scheduling. Billing reads them and never writes.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel


class ServicePlanStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"


class ServicePlan(BaseModel):
    id: UUID
    org_id: UUID
    pool_id: UUID
    client_id: UUID
    name: str | None = None
    price_cents: int
    tax_pct: Decimal
    currency: str
    status: ServicePlanStatus

    model_config = {"from_attributes": True}

    @property
    def is_active(self) -> bool:
        return self.status == ServicePlanStatus.ACTIVE


class Visit(BaseModel):
    """A completed field visit for one of the plan's jobs."""

    id: UUID
    job_id: UUID
    status: str
    completed_at: datetime

    model_config = {"from_attributes": True}
