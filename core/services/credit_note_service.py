"""
Credit note service.

A credit note reduces what a client owes. Applying one is a money event on
the target invoice: it runs under the invoice row lock and reconciles in
the same transaction. A note is applied at most once.
"""

import logging
from uuid import UUID, uuid4

from psycopg2.extras import Json

from clients.postgres_client import PostgresClient, Transaction
from core.audit import AuditLogger, AuditAction
from core.config import BillingConfig
from core.event_bus import EventBus
from core.events import InvoicePaid
from core.exceptions import (
    AlreadyAppliedError,
    InvalidStateError,
    NotFoundError,
    ValidationFailedError,
)
from core.models import (
    CreditNote,
    CreditNoteApplication,
    CreditNoteCreate,
    Invoice,
    InvoiceStatus,
)
from core.money import compute_totals, dump_line_items, parse_line_items
from core.services.reconciliation import Reconciler, ReconcileOutcome
from utils.org_context import get_current_org_id
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


class CreditNoteService:
    """Service for credit note operations."""

    def __init__(
        self,
        postgres: PostgresClient,
        audit: AuditLogger,
        event_bus: EventBus,
        reconciler: Reconciler,
        config: BillingConfig | None = None,
    ):
        self.postgres = postgres
        self.audit = audit
        self.event_bus = event_bus
        self.reconciler = reconciler
        self.config = config or BillingConfig()

    def create(self, data: CreditNoteCreate) -> CreditNote:
        """
        Create a credit note, optionally applying it at once.

        The amount is the absolute total of the items. With an invoice the
        client and currency come from the invoice.

        Raises:
            ValidationFailedError: If items are invalid or total to zero
            NotFoundError: If the invoice or client does not exist
            InvalidStateError: If apply_now targets a cancelled invoice
        """
        org_id = get_current_org_id()
        items = parse_line_items(data.items)
        amount_cents = abs(compute_totals(items).total_cents)
        if amount_cents <= 0:
            raise ValidationFailedError("Credit note amount must be greater than zero")

        outcome = None
        with self.postgres.transaction() as tx:
            invoice = None
            if data.invoice_id is not None:
                invoice = self.reconciler.lock_invoice(tx, data.invoice_id)
                if data.client_id is not None and data.client_id != invoice.client_id:
                    raise ValidationFailedError("client_id does not match the invoice's client")
                client_id = invoice.client_id
                currency = invoice.currency
            else:
                client = tx.execute_single(
                    "SELECT id FROM clients WHERE id = %s AND org_id = %s",
                    (data.client_id, org_id)
                )
                if client is None:
                    raise NotFoundError(f"Client {data.client_id} not found", code="CLIENT_NOT_FOUND")
                client_id = data.client_id
                currency = self.config.default_currency

            row = tx.execute_single(
                """
                INSERT INTO credit_notes (
                    id, org_id, client_id, invoice_id, reason, items,
                    amount_cents, currency, applied_at, created_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, NULL, %s)
                RETURNING *
                """,
                (
                    uuid4(), org_id, client_id, data.invoice_id, data.reason,
                    Json(dump_line_items(items)), amount_cents, currency, now_utc()
                )
            )
            note = CreditNote.model_validate(row)

            self.audit.log_change(
                entity_type="credit_note",
                entity_id=note.id,
                action=AuditAction.CREATE,
                changes={"created": note.model_dump(mode="json")},
                tx=tx,
            )

            if data.apply_now:
                note, outcome = self._apply(tx, note, invoice)

        logger.info(f"Credit note {note.id} of {note.amount_cents} created for client {client_id}")
        if outcome is not None:
            self._publish(outcome)

        return note

    def apply(self, credit_note_id: UUID, invoice_id: UUID | None = None) -> CreditNoteApplication:
        """
        Apply a stored credit note to an invoice.

        The target defaults to the invoice the note was created against.

        Raises:
            NotFoundError: If the note or the invoice does not exist
            AlreadyAppliedError: If the note was already applied
            ValidationFailedError: If no target invoice is known, or it belongs to another client
            InvalidStateError: If the invoice is cancelled
        """
        org_id = get_current_org_id()

        # Peek without a lock to learn the target; invoice is always locked first
        peek = self.get_by_id(credit_note_id)
        if peek is None:
            raise NotFoundError(f"Credit note {credit_note_id} not found", code="CREDIT_NOTE_NOT_FOUND")
        if peek.is_applied:
            raise AlreadyAppliedError(f"Credit note {credit_note_id} was already applied")

        target_id = invoice_id or peek.invoice_id
        if target_id is None:
            raise ValidationFailedError("invoice_id is required for a credit note not tied to an invoice")

        with self.postgres.transaction() as tx:
            invoice = self.reconciler.lock_invoice(tx, target_id)
            row = tx.execute_single(
                "SELECT * FROM credit_notes WHERE id = %s AND org_id = %s FOR UPDATE",
                (credit_note_id, org_id)
            )
            if row is None:
                raise NotFoundError(f"Credit note {credit_note_id} not found", code="CREDIT_NOTE_NOT_FOUND")
            note, outcome = self._apply(tx, CreditNote.model_validate(row), invoice)

        self._publish(outcome)

        return CreditNoteApplication(
            success=True,
            credit_note=note,
            new_balance_cents=outcome.invoice.balance_cents,
        )

    def _apply(
        self,
        tx: Transaction,
        note: CreditNote,
        invoice: Invoice,
    ) -> tuple[CreditNote, ReconcileOutcome]:
        """Mark the note applied to a locked invoice and reconcile."""
        if note.is_applied:
            raise AlreadyAppliedError(f"Credit note {note.id} was already applied")
        if note.client_id != invoice.client_id:
            raise ValidationFailedError(
                f"Credit note {note.id} belongs to a different client than invoice {invoice.invoice_number}"
            )
        if invoice.status == InvoiceStatus.CANCELLED:
            raise InvalidStateError(f"Cannot apply credit to cancelled invoice {invoice.invoice_number}")

        now = now_utc()
        row = tx.execute_single(
            """
            UPDATE credit_notes
            SET applied_at = %s, invoice_id = %s
            WHERE id = %s AND org_id = %s
            RETURNING *
            """,
            (now, invoice.id, note.id, note.org_id)
        )
        applied = CreditNote.model_validate(row)

        self.audit.log_change(
            entity_type="credit_note",
            entity_id=note.id,
            action=AuditAction.UPDATE,
            changes={
                "applied_at": {"old": None, "new": now.isoformat()},
                "invoice_id": {
                    "old": str(note.invoice_id) if note.invoice_id else None,
                    "new": str(invoice.id),
                },
            },
            tx=tx,
        )

        outcome = self.reconciler.reconcile(tx, invoice.id)
        logger.info(
            f"Credit note {note.id} applied to invoice {invoice.invoice_number}; "
            f"balance now {outcome.invoice.balance_cents}"
        )
        return applied, outcome

    def get_by_id(self, credit_note_id: UUID) -> CreditNote | None:
        row = self.postgres.execute_single(
            "SELECT * FROM credit_notes WHERE id = %s AND org_id = %s",
            (credit_note_id, get_current_org_id())
        )
        if row is None:
            return None
        return CreditNote.model_validate(row)

    def list_credit_notes(
        self,
        client_id: UUID | None = None,
        invoice_id: UUID | None = None,
        unapplied_only: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> list[CreditNote]:
        """List credit notes, newest first. unapplied_only surfaces deferred credits."""
        conditions = ["org_id = %s"]
        params: list = [get_current_org_id()]

        if client_id is not None:
            conditions.append("client_id = %s")
            params.append(client_id)
        if invoice_id is not None:
            conditions.append("invoice_id = %s")
            params.append(invoice_id)
        if unapplied_only:
            conditions.append("applied_at IS NULL")

        params.extend([limit, offset])
        rows = self.postgres.execute(
            f"""
            SELECT * FROM credit_notes
            WHERE {" AND ".join(conditions)}
            ORDER BY created_at DESC
            LIMIT %s OFFSET %s
            """,
            tuple(params)
        )
        return [CreditNote.model_validate(row) for row in rows]

    def _publish(self, outcome: ReconcileOutcome) -> None:
        if outcome.became_paid:
            self.event_bus.publish(InvoicePaid.create(invoice=outcome.invoice))
