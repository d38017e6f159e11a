"""Invoice routes, including monthly auto-billing triggers."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel, Field

from api.base import envelope
from core.billing_period import BillingPeriod
from core.exceptions import NotFoundError, ValidationFailedError
from core.models import (
    InvoiceCreate,
    InvoiceStatus,
    InvoiceUpdate,
    MonthlyGenerateRequest,
)
from core.money import LineItem


class InvoiceCreateRequest(BaseModel):
    """Either quote_id, or client_id with items."""

    quote_id: UUID | None = None
    client_id: UUID | None = None
    pool_id: UUID | None = None
    visit_id: UUID | None = None
    currency: str | None = Field(None, min_length=3, max_length=3)
    items: list[LineItem] | None = None
    due_date: date | None = None
    notes: str | None = Field(None, max_length=2000)


class SendRequest(BaseModel):
    due_date: date | None = None


class AutoGenerateRequest(BaseModel):
    """Optional override of the period; defaults to the previous month."""

    period_start: date | None = None
    period_end: date | None = None
    billing_date: date | None = None


def create_invoices_router(services: dict) -> APIRouter:
    router = APIRouter()

    invoice_svc = services["invoice"]
    payment_svc = services["payment"]
    monthly_svc = services["monthly_billing"]

    # -------------------------------------------------------------------------
    # Monthly billing (registered before /invoices/{invoice_id})
    # -------------------------------------------------------------------------

    # Plain def: these run many queries, so FastAPI moves them to its threadpool
    @router.post("/invoices/generate-monthly", status_code=201)
    def generate_monthly(request: Request, body: MonthlyGenerateRequest):
        period = BillingPeriod(start=body.period_start, end=body.period_end)
        invoice = monthly_svc.generate_for_plan(
            body.service_plan_id, period, billing_date=body.billing_date
        )
        return envelope(request, invoice.model_dump(mode="json"))

    @router.post("/invoices/auto-generate-monthly")
    def auto_generate_monthly(request: Request, body: AutoGenerateRequest | None = None):
        body = body or AutoGenerateRequest()
        if (body.period_start is None) != (body.period_end is None):
            raise ValidationFailedError("period_start and period_end must be given together")

        period = None
        if body.period_start is not None:
            period = BillingPeriod(start=body.period_start, end=body.period_end)

        result = monthly_svc.run_batch(period=period, billing_date=body.billing_date)
        return envelope(request, result.model_dump(mode="json"))

    # -------------------------------------------------------------------------
    # Invoice CRUD and lifecycle
    # -------------------------------------------------------------------------

    @router.post("/invoices", status_code=201)
    async def create_invoice(request: Request, body: InvoiceCreateRequest):
        if body.quote_id is not None:
            if body.items is not None:
                raise ValidationFailedError("items cannot be given with quote_id; quote items are copied as-is")
            invoice = invoice_svc.create_from_quote(body.quote_id, due_date=body.due_date, notes=body.notes)
        else:
            if body.client_id is None:
                raise ValidationFailedError("client_id is required when quote_id is not given")
            invoice = invoice_svc.create_from_items(InvoiceCreate(
                client_id=body.client_id,
                pool_id=body.pool_id,
                visit_id=body.visit_id,
                currency=body.currency,
                items=body.items or [],
                due_date=body.due_date,
                notes=body.notes,
            ))
        return envelope(request, invoice.model_dump(mode="json"))

    @router.get("/invoices")
    async def list_invoices(
        request: Request,
        client_id: UUID | None = Query(None),
        pool_id: UUID | None = Query(None),
        status: InvoiceStatus | None = Query(None),
        limit: int = Query(50, ge=1, le=500),
        offset: int = Query(0, ge=0),
    ):
        invoices = invoice_svc.list_invoices(
            client_id=client_id, pool_id=pool_id, status=status, limit=limit, offset=offset
        )
        return envelope(request, [i.model_dump(mode="json") for i in invoices])

    @router.get("/invoices/{invoice_id}")
    async def get_invoice(request: Request, invoice_id: UUID, include: str | None = Query(None)):
        if include == "detail":
            detail = invoice_svc.get_detail(invoice_id)
            return envelope(request, detail.model_dump(mode="json"))

        invoice = invoice_svc.get_by_id(invoice_id)
        if invoice is None:
            raise NotFoundError(f"Invoice {invoice_id} not found", code="INVOICE_NOT_FOUND")
        data = invoice.model_dump(mode="json")
        data["balance_cents"] = invoice.balance_cents
        return envelope(request, data)

    @router.patch("/invoices/{invoice_id}")
    async def update_invoice(request: Request, invoice_id: UUID, body: InvoiceUpdate):
        result = invoice_svc.update(invoice_id, body)
        return envelope(request, result.model_dump(mode="json"))

    @router.delete("/invoices/{invoice_id}")
    async def delete_invoice(request: Request, invoice_id: UUID):
        invoice_svc.delete(invoice_id)
        return envelope(request, {"deleted": True, "id": str(invoice_id)})

    @router.post("/invoices/{invoice_id}/send")
    async def send_invoice(request: Request, invoice_id: UUID, body: SendRequest | None = None):
        invoice = invoice_svc.send(invoice_id, due_date=body.due_date if body else None)
        return envelope(request, invoice.model_dump(mode="json"))

    @router.post("/invoices/{invoice_id}/cancel")
    async def cancel_invoice(request: Request, invoice_id: UUID):
        invoice = invoice_svc.cancel(invoice_id)
        return envelope(request, invoice.model_dump(mode="json"))

    @router.post("/invoices/{invoice_id}/reconcile")
    async def reconcile_invoice(request: Request, invoice_id: UUID):
        invoice = payment_svc.reconcile(invoice_id)
        data = invoice.model_dump(mode="json")
        data["balance_cents"] = invoice.balance_cents
        return envelope(request, data)

    return router
