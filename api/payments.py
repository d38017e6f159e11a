"""Payment and refund routes."""

from uuid import UUID

from fastapi import APIRouter, Query, Request

from api.base import envelope
from core.models import ManualPaymentCreate, RefundCreate


def create_payments_router(services: dict) -> APIRouter:
    router = APIRouter()

    payment_svc = services["payment"]
    refund_svc = services["refund"]

    @router.post("/payments", status_code=201)
    async def record_payment(request: Request, body: ManualPaymentCreate):
        payment = payment_svc.record_manual_payment(body)
        return envelope(request, payment.model_dump(mode="json"))

    @router.get("/payments")
    async def list_payments(
        request: Request,
        invoice_id: UUID | None = Query(None),
        limit: int = Query(50, ge=1, le=500),
        offset: int = Query(0, ge=0),
    ):
        payments = payment_svc.list_payments(invoice_id=invoice_id, limit=limit, offset=offset)
        return envelope(request, [p.model_dump(mode="json") for p in payments])

    @router.post("/payments/{payment_id}/refund", status_code=201)
    async def refund_payment(request: Request, payment_id: UUID, body: RefundCreate | None = None):
        refund = refund_svc.refund_payment(payment_id, body or RefundCreate())
        return envelope(request, refund.model_dump(mode="json"))

    @router.get("/refunds")
    async def list_refunds(
        request: Request,
        payment_id: UUID | None = Query(None),
        invoice_id: UUID | None = Query(None),
        limit: int = Query(50, ge=1, le=500),
        offset: int = Query(0, ge=0),
    ):
        refunds = refund_svc.list_refunds(
            payment_id=payment_id, invoice_id=invoice_id, limit=limit, offset=offset
        )
        return envelope(request, [r.model_dump(mode="json") for r in refunds])

    return router
