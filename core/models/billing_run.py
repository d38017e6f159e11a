"""Results of monthly auto-billing runs."""

from datetime import date
from uuid import UUID

from pydantic import BaseModel, Field


class GeneratedInvoice(BaseModel):
    service_plan_id: UUID
    invoice_id: UUID
    invoice_number: str
    total_cents: int
    visit_count: int


class SkippedPlan(BaseModel):
    service_plan_id: UUID
    reason: str


class PlanError(BaseModel):
    service_plan_id: UUID
    error: str


class BatchResult(BaseModel):
    """
    Per-plan outcome of one batch. A plan appears in exactly one list.

    stopped is set when the run was asked to stop before every plan was seen.
    """

    generated: list[GeneratedInvoice] = Field(default_factory=list)
    skipped: list[SkippedPlan] = Field(default_factory=list)
    errors: list[PlanError] = Field(default_factory=list)
    stopped: bool = False


class MonthlyGenerateRequest(BaseModel):
    """Manual or backfill run for one plan and period."""

    service_plan_id: UUID
    period_start: date
    period_end: date
    billing_date: date | None = None
