"""Quote routes."""

from uuid import UUID

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel, Field

from api.base import envelope
from core.exceptions import NotFoundError
from core.models import QuoteCreate, QuoteStatus, QuoteUpdate


class RejectRequest(BaseModel):
    reason: str | None = Field(None, max_length=1000)


def create_quotes_router(services: dict) -> APIRouter:
    router = APIRouter()

    quote_svc = services["quote"]

    @router.post("/quotes", status_code=201)
    async def create_quote(request: Request, body: QuoteCreate):
        quote = quote_svc.create(body)
        return envelope(request, quote.model_dump(mode="json"))

    @router.get("/quotes")
    async def list_quotes(
        request: Request,
        pool_id: UUID | None = Query(None),
        client_id: UUID | None = Query(None),
        status: QuoteStatus | None = Query(None),
        limit: int = Query(50, ge=1, le=500),
        offset: int = Query(0, ge=0),
    ):
        quotes = quote_svc.list_quotes(
            pool_id=pool_id, client_id=client_id, status=status, limit=limit, offset=offset
        )
        return envelope(request, [q.model_dump(mode="json") for q in quotes])

    @router.get("/quotes/{quote_id}")
    async def get_quote(request: Request, quote_id: UUID):
        quote = quote_svc.get_by_id(quote_id)
        if quote is None:
            raise NotFoundError(f"Quote {quote_id} not found", code="QUOTE_NOT_FOUND")
        return envelope(request, quote.model_dump(mode="json"))

    @router.patch("/quotes/{quote_id}")
    async def update_quote(request: Request, quote_id: UUID, body: QuoteUpdate):
        quote = quote_svc.update(quote_id, body)
        return envelope(request, quote.model_dump(mode="json"))

    @router.post("/quotes/{quote_id}/approve")
    async def approve_quote(request: Request, quote_id: UUID):
        quote = quote_svc.approve(quote_id)
        return envelope(request, quote.model_dump(mode="json"))

    @router.post("/quotes/{quote_id}/reject")
    async def reject_quote(request: Request, quote_id: UUID, body: RejectRequest | None = None):
        quote = quote_svc.reject(quote_id, reason=body.reason if body else None)
        return envelope(request, quote.model_dump(mode="json"))

    return router
