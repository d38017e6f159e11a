"""Receipt follow-up routes: find and backfill payments without receipts."""

from fastapi import APIRouter, Query, Request

from api.base import envelope


def create_receipts_router(services: dict) -> APIRouter:
    router = APIRouter()

    receipt_svc = services["receipt"]

    @router.get("/receipts/missing")
    async def missing_receipts(request: Request, limit: int = Query(100, ge=1, le=1000)):
        payments = receipt_svc.list_payments_missing_receipt(limit=limit)
        return envelope(request, [p.model_dump(mode="json") for p in payments])

    @router.post("/receipts/backfill")
    async def backfill_receipts(request: Request, limit: int = Query(100, ge=1, le=1000)):
        receipts = receipt_svc.issue_missing(limit=limit)
        return envelope(request, [r.model_dump(mode="json") for r in receipts])

    return router
