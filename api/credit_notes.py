"""Credit note routes."""

from uuid import UUID

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel, Field

from api.base import envelope
from core.models import CreditNoteCreate
from core.money import LineItem


class InvoiceCreditNoteRequest(BaseModel):
    """Credit note against a specific invoice (invoice taken from the path)."""

    items: list[LineItem]
    reason: str | None = Field(None, max_length=500)
    apply_now: bool = False


class ApplyRequest(BaseModel):
    invoice_id: UUID | None = None


def create_credit_notes_router(services: dict) -> APIRouter:
    router = APIRouter()

    credit_svc = services["credit_note"]

    @router.post("/credit-notes", status_code=201)
    async def create_credit_note(request: Request, body: CreditNoteCreate):
        note = credit_svc.create(body)
        return envelope(request, note.model_dump(mode="json"))

    @router.post("/invoices/{invoice_id}/credit-notes", status_code=201)
    async def create_invoice_credit_note(request: Request, invoice_id: UUID, body: InvoiceCreditNoteRequest):
        note = credit_svc.create(CreditNoteCreate(
            invoice_id=invoice_id,
            items=body.items,
            reason=body.reason,
            apply_now=body.apply_now,
        ))
        return envelope(request, note.model_dump(mode="json"))

    @router.get("/credit-notes")
    async def list_credit_notes(
        request: Request,
        client_id: UUID | None = Query(None),
        invoice_id: UUID | None = Query(None),
        unapplied: bool = Query(False),
        limit: int = Query(50, ge=1, le=500),
        offset: int = Query(0, ge=0),
    ):
        notes = credit_svc.list_credit_notes(
            client_id=client_id,
            invoice_id=invoice_id,
            unapplied_only=unapplied,
            limit=limit,
            offset=offset,
        )
        return envelope(request, [n.model_dump(mode="json") for n in notes])

    @router.post("/credit-notes/{credit_note_id}/apply")
    async def apply_credit_note(request: Request, credit_note_id: UUID, body: ApplyRequest | None = None):
        result = credit_svc.apply(credit_note_id, invoice_id=body.invoice_id if body else None)
        return envelope(request, result.model_dump(mode="json"))

    return router
