"""
Invoice service for the invoice lifecycle.

Invoices are created ad hoc from items, from an approved quote, or by the
monthly scheduler for a service plan's billing period. State machine:

    draft --send--> sent --balance cleared--> paid
    draft --cancel--> cancelled

paid returns to sent only through reconciliation, when a refund reopens a
balance. Numbers are allocated per org and year inside the insert
transaction.
"""

import logging
from datetime import date, timedelta
from typing import Any
from uuid import UUID, uuid4

import psycopg2.errors
from psycopg2.extras import Json

from clients.postgres_client import PostgresClient, Transaction
from core.audit import AuditLogger, AuditAction, compute_changes
from core.config import BillingConfig
from core.event_bus import EventBus
from core.events import InvoicePaid, InvoiceSent
from core.exceptions import (
    DuplicatePeriodError,
    InvalidStateError,
    NotFoundError,
    ValidationFailedError,
)
from core.models import (
    CreditNote,
    Invoice,
    InvoiceCreate,
    InvoiceDetail,
    InvoiceStatus,
    InvoiceUpdate,
    InvoiceUpdateResult,
    OVERPAID_AFTER_EDIT,
    Payment,
    QuoteStatus,
    Receipt,
    Refund,
)
from core.money import LineItem, Totals, compute_totals, dump_line_items, parse_line_items
from core.services.reconciliation import Reconciler
from core.services.sequence_service import SequenceKind, SequenceService
from utils.org_context import get_current_org_id
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


class InvoiceService:
    """Service for invoice operations."""

    def __init__(
        self,
        postgres: PostgresClient,
        audit: AuditLogger,
        event_bus: EventBus,
        sequences: SequenceService,
        reconciler: Reconciler,
        config: BillingConfig | None = None,
    ):
        self.postgres = postgres
        self.audit = audit
        self.event_bus = event_bus
        self.sequences = sequences
        self.reconciler = reconciler
        self.config = config or BillingConfig()

    # =========================================================================
    # CREATE
    # =========================================================================

    def _insert(
        self,
        tx: Transaction,
        *,
        client_id: UUID,
        items: list[LineItem],
        totals: Totals,
        currency: str,
        status: InvoiceStatus = InvoiceStatus.DRAFT,
        pool_id: UUID | None = None,
        visit_id: UUID | None = None,
        quote_id: UUID | None = None,
        due_date: date | None = None,
        issued: bool = False,
        notes: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Invoice:
        """Number and insert an invoice, auditing the creation in the same transaction."""
        now = now_utc()
        invoice_number = self.sequences.next_number(tx, SequenceKind.INVOICE, now.year)

        row = tx.execute_single(
            """
            INSERT INTO invoices (
                id, org_id, client_id, pool_id, visit_id, quote_id,
                invoice_number, currency, items,
                subtotal_cents, tax_cents, total_cents, paid_cents, credited_cents,
                status, due_date, issued_at, notes, metadata,
                created_at, updated_at
            ) VALUES (
                %s, %s, %s, %s, %s, %s,
                %s, %s, %s,
                %s, %s, %s, 0, 0,
                %s, %s, %s, %s, %s,
                %s, %s
            )
            RETURNING *
            """,
            (
                uuid4(), get_current_org_id(), client_id, pool_id, visit_id, quote_id,
                invoice_number, currency, Json(dump_line_items(items)),
                totals.subtotal_cents, totals.tax_cents, totals.total_cents,
                status.value, due_date, now if issued else None, notes, Json(metadata or {}),
                now, now
            )
        )
        invoice = Invoice.model_validate(row)

        self.audit.log_change(
            entity_type="invoice",
            entity_id=invoice.id,
            action=AuditAction.CREATE,
            changes={"created": invoice.model_dump(mode="json")},
            tx=tx,
        )
        return invoice

    def create_from_items(self, data: InvoiceCreate) -> Invoice:
        """
        Create a draft invoice from line items.

        Raises:
            NotFoundError: CLIENT_NOT_FOUND, or POOL_NOT_FOUND if the pool
                is not the client's
            ValidationFailedError: If items are empty or invalid
        """
        org_id = get_current_org_id()
        items = parse_line_items(data.items)
        totals = compute_totals(items)

        client = self.postgres.execute_single(
            "SELECT id FROM clients WHERE id = %s AND org_id = %s",
            (data.client_id, org_id)
        )
        if client is None:
            raise NotFoundError(f"Client {data.client_id} not found", code="CLIENT_NOT_FOUND")

        if data.pool_id is not None:
            pool = self.postgres.execute_single(
                "SELECT id FROM pools WHERE id = %s AND org_id = %s AND client_id = %s",
                (data.pool_id, org_id, data.client_id)
            )
            if pool is None:
                raise NotFoundError(f"Pool {data.pool_id} not found for client", code="POOL_NOT_FOUND")

        with self.postgres.transaction() as tx:
            invoice = self._insert(
                tx,
                client_id=data.client_id,
                items=items,
                totals=totals,
                currency=data.currency or self.config.default_currency,
                pool_id=data.pool_id,
                visit_id=data.visit_id,
                due_date=data.due_date,
                notes=data.notes,
            )

        logger.info(f"Invoice {invoice.invoice_number} created: {invoice.total_cents} cents")
        return invoice

    def create_from_quote(
        self,
        quote_id: UUID,
        due_date: date | None = None,
        notes: str | None = None,
    ) -> Invoice:
        """
        Create a draft invoice from an approved quote.

        Items and totals are copied as the client agreed to them, not
        recomputed. A quote seeds at most one invoice.

        Raises:
            NotFoundError: If quote not found
            InvalidStateError: If the quote is not approved or already invoiced
        """
        org_id = get_current_org_id()

        with self.postgres.transaction() as tx:
            quote = tx.execute_single(
                "SELECT * FROM quotes WHERE id = %s AND org_id = %s FOR SHARE",
                (quote_id, org_id)
            )
            if quote is None:
                raise NotFoundError(f"Quote {quote_id} not found", code="QUOTE_NOT_FOUND")
            if quote["status"] != QuoteStatus.APPROVED.value:
                raise InvalidStateError(
                    f"Quote {quote_id} is {quote['status']}; only approved quotes can be invoiced"
                )

            existing = tx.execute_single(
                "SELECT invoice_number FROM invoices WHERE quote_id = %s AND org_id = %s",
                (quote_id, org_id)
            )
            if existing is not None:
                raise InvalidStateError(
                    f"Quote {quote_id} already invoiced as {existing['invoice_number']}"
                )

            try:
                invoice = self._insert(
                    tx,
                    client_id=quote["client_id"],
                    items=parse_line_items(quote["items"]),
                    totals=Totals(
                        subtotal_cents=quote["subtotal_cents"],
                        tax_cents=quote["tax_cents"],
                        total_cents=quote["total_cents"],
                    ),
                    currency=quote["currency"],
                    pool_id=quote["pool_id"],
                    quote_id=quote_id,
                    due_date=due_date,
                    notes=notes if notes is not None else quote["notes"],
                )
            except psycopg2.errors.UniqueViolation as e:
                raise InvalidStateError(f"Quote {quote_id} already invoiced") from e

        logger.info(f"Invoice {invoice.invoice_number} created from quote {quote_id}")
        return invoice

    def create_for_billing_period(
        self,
        *,
        client_id: UUID,
        pool_id: UUID,
        items: list[LineItem],
        currency: str,
        billing_date: date,
        metadata: dict[str, Any],
    ) -> Invoice:
        """
        Create an auto-generated invoice, issued immediately as sent.

        metadata must carry servicePlanId and periodStart; a second invoice
        for the same pair is rejected by a unique index.

        Raises:
            DuplicatePeriodError: If the plan already has an invoice for the period
        """
        totals = compute_totals(items)
        due_date = billing_date + timedelta(days=self.config.auto_invoice_due_days)

        try:
            with self.postgres.transaction() as tx:
                invoice = self._insert(
                    tx,
                    client_id=client_id,
                    items=items,
                    totals=totals,
                    currency=currency,
                    status=InvoiceStatus.SENT,
                    pool_id=pool_id,
                    due_date=due_date,
                    issued=True,
                    metadata=metadata,
                )
        except psycopg2.errors.UniqueViolation as e:
            raise DuplicatePeriodError(
                f"Service plan {metadata.get('servicePlanId')} already invoiced for period "
                f"starting {metadata.get('periodStart')}"
            ) from e

        logger.info(
            f"Invoice {invoice.invoice_number} auto-generated for plan {metadata.get('servicePlanId')}: "
            f"{invoice.total_cents} cents"
        )
        self.event_bus.publish(InvoiceSent.create(invoice=invoice))

        return invoice

    # =========================================================================
    # READ
    # =========================================================================

    def get_by_id(self, invoice_id: UUID) -> Invoice | None:
        row = self.postgres.execute_single(
            "SELECT * FROM invoices WHERE id = %s AND org_id = %s",
            (invoice_id, get_current_org_id())
        )
        if row is None:
            return None
        return Invoice.model_validate(row)

    def get_detail(self, invoice_id: UUID) -> InvoiceDetail:
        """
        Invoice with its payments, refunds, credit notes and receipts.

        Raises:
            NotFoundError: If invoice not found
        """
        invoice = self.get_by_id(invoice_id)
        if invoice is None:
            raise NotFoundError(f"Invoice {invoice_id} not found", code="INVOICE_NOT_FOUND")

        params = (invoice_id, invoice.org_id)
        payments = self.postgres.execute(
            "SELECT * FROM payments WHERE invoice_id = %s AND org_id = %s ORDER BY processed_at",
            params
        )
        refunds = self.postgres.execute(
            "SELECT * FROM refunds WHERE invoice_id = %s AND org_id = %s ORDER BY refunded_at",
            params
        )
        credit_notes = self.postgres.execute(
            "SELECT * FROM credit_notes WHERE invoice_id = %s AND org_id = %s ORDER BY created_at",
            params
        )
        receipts = self.postgres.execute(
            "SELECT * FROM receipts WHERE invoice_id = %s AND org_id = %s ORDER BY issued_at",
            params
        )

        return InvoiceDetail(
            invoice=invoice,
            balance_cents=invoice.balance_cents,
            payments=[Payment.model_validate(row) for row in payments],
            refunds=[Refund.model_validate(row) for row in refunds],
            credit_notes=[CreditNote.model_validate(row) for row in credit_notes],
            receipts=[Receipt.model_validate(row) for row in receipts],
        )

    def list_invoices(
        self,
        client_id: UUID | None = None,
        pool_id: UUID | None = None,
        status: InvoiceStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Invoice]:
        """List invoices, newest first, with optional filters."""
        conditions = ["org_id = %s"]
        params: list = [get_current_org_id()]

        if client_id is not None:
            conditions.append("client_id = %s")
            params.append(client_id)
        if pool_id is not None:
            conditions.append("pool_id = %s")
            params.append(pool_id)
        if status is not None:
            conditions.append("status = %s")
            params.append(status.value)

        params.extend([limit, offset])
        rows = self.postgres.execute(
            f"""
            SELECT * FROM invoices
            WHERE {" AND ".join(conditions)}
            ORDER BY created_at DESC
            LIMIT %s OFFSET %s
            """,
            tuple(params)
        )
        return [Invoice.model_validate(row) for row in rows]

    def list_unpaid(self, limit: int = 50) -> list[Invoice]:
        """Sent invoices with a balance, oldest due first."""
        rows = self.postgres.execute(
            """
            SELECT * FROM invoices
            WHERE org_id = %s AND status = %s
            ORDER BY due_date ASC NULLS LAST, created_at ASC
            LIMIT %s
            """,
            (get_current_org_id(), InvoiceStatus.SENT.value, limit)
        )
        return [Invoice.model_validate(row) for row in rows]

    # =========================================================================
    # MUTATE
    # =========================================================================

    def update(self, invoice_id: UUID, data: InvoiceUpdate) -> InvoiceUpdateResult:
        """
        Edit a draft or sent invoice.

        Changing items recomputes totals and reconciles in the same
        transaction. If money already collected exceeds the new total the
        edit still succeeds and the result carries OVERPAID_AFTER_EDIT.

        Raises:
            NotFoundError: If invoice not found
            InvalidStateError: If the invoice is paid or cancelled
        """
        update_data = data.model_dump(exclude_unset=True)
        if not update_data:
            raise ValidationFailedError("No fields to update")

        warnings: list[str] = []
        outcome = None

        with self.postgres.transaction() as tx:
            current = self.reconciler.lock_invoice(tx, invoice_id)
            if not current.is_editable:
                raise InvalidStateError(
                    f"Cannot edit invoice {current.invoice_number}: status is {current.status.value}"
                )

            sets = ["updated_at = %s"]
            params: list = [now_utc()]

            totals = None
            if data.items is not None:
                items = parse_line_items(data.items)
                totals = compute_totals(items)
                # Money columns are left to reconcile, which writes them with the new totals
                sets.append("items = %s")
                params.append(Json(dump_line_items(items)))
            if "due_date" in update_data:
                sets.append("due_date = %s")
                params.append(data.due_date)
            if "notes" in update_data:
                sets.append("notes = %s")
                params.append(data.notes)

            params += [invoice_id, current.org_id]
            row = tx.execute_single(
                f"UPDATE invoices SET {', '.join(sets)} WHERE id = %s AND org_id = %s RETURNING *",
                tuple(params)
            )
            updated = Invoice.model_validate(row)

            if totals is not None:
                outcome = self.reconciler.reconcile(tx, invoice_id, totals=totals)
                updated = outcome.invoice
                if outcome.settlement.overpaid_cents:
                    warnings.append(OVERPAID_AFTER_EDIT)
                    logger.warning(
                        f"Invoice {updated.invoice_number} overpaid by "
                        f"{outcome.settlement.overpaid_cents} cents after edit"
                    )

            changes = compute_changes(
                current.model_dump(mode="json"),
                updated.model_dump(mode="json"),
            )
            if changes:
                self.audit.log_change(
                    entity_type="invoice",
                    entity_id=invoice_id,
                    action=AuditAction.UPDATE,
                    changes=changes,
                    tx=tx,
                )

        if outcome is not None and outcome.became_paid:
            self.event_bus.publish(InvoicePaid.create(invoice=updated))

        return InvoiceUpdateResult(invoice=updated, warnings=warnings)

    def send(self, invoice_id: UUID, due_date: date | None = None) -> Invoice:
        """
        Issue a draft invoice to the client.

        Due date is, in order: the argument, the date already on the
        invoice, or issue date plus the configured payment terms.

        Raises:
            NotFoundError: If invoice not found
            InvalidStateError: If the invoice is not a draft
        """
        now = now_utc()

        with self.postgres.transaction() as tx:
            current = self.reconciler.lock_invoice(tx, invoice_id)
            if current.status != InvoiceStatus.DRAFT:
                raise InvalidStateError(
                    f"Cannot send invoice {current.invoice_number}: status is {current.status.value}"
                )

            due = due_date or current.due_date or (now.date() + timedelta(days=self.config.invoice_due_days))
            row = tx.execute_single(
                """
                UPDATE invoices
                SET status = %s, issued_at = %s, due_date = %s, updated_at = %s
                WHERE id = %s AND org_id = %s
                RETURNING *
                """,
                (InvoiceStatus.SENT.value, now, due, now, invoice_id, current.org_id)
            )
            updated = Invoice.model_validate(row)

            self.audit.log_change(
                entity_type="invoice",
                entity_id=invoice_id,
                action=AuditAction.UPDATE,
                changes={
                    "status": {"old": current.status.value, "new": InvoiceStatus.SENT.value},
                    "issued_at": {"old": None, "new": now.isoformat()},
                    "due_date": {
                        "old": current.due_date.isoformat() if current.due_date else None,
                        "new": due.isoformat(),
                    },
                },
                tx=tx,
            )

        logger.info(f"Invoice {updated.invoice_number} sent, due {due}")
        self.event_bus.publish(InvoiceSent.create(invoice=updated))

        return updated

    def cancel(self, invoice_id: UUID) -> Invoice:
        """
        Cancel a draft invoice. The number stays allocated.

        Raises:
            NotFoundError: If invoice not found
            InvalidStateError: If the invoice is not a draft
        """
        now = now_utc()

        with self.postgres.transaction() as tx:
            current = self.reconciler.lock_invoice(tx, invoice_id)
            if current.status != InvoiceStatus.DRAFT:
                raise InvalidStateError(
                    f"Cannot cancel invoice {current.invoice_number}: status is {current.status.value}"
                )

            row = tx.execute_single(
                """
                UPDATE invoices
                SET status = %s, cancelled_at = %s, updated_at = %s
                WHERE id = %s AND org_id = %s
                RETURNING *
                """,
                (InvoiceStatus.CANCELLED.value, now, now, invoice_id, current.org_id)
            )
            updated = Invoice.model_validate(row)

            self.audit.log_change(
                entity_type="invoice",
                entity_id=invoice_id,
                action=AuditAction.UPDATE,
                changes={"status": {"old": current.status.value, "new": InvoiceStatus.CANCELLED.value}},
                tx=tx,
            )

        logger.info(f"Invoice {updated.invoice_number} cancelled")
        return updated

    def delete(self, invoice_id: UUID) -> None:
        """
        Delete a draft invoice.

        Raises:
            NotFoundError: If invoice not found
            InvalidStateError: If the invoice is not a draft or has money attached
        """
        with self.postgres.transaction() as tx:
            current = self.reconciler.lock_invoice(tx, invoice_id)
            if current.status != InvoiceStatus.DRAFT:
                raise InvalidStateError(
                    f"Cannot delete invoice {current.invoice_number}: status is {current.status.value}"
                )

            attached = tx.execute_scalar(
                """
                SELECT (SELECT COUNT(*) FROM payments WHERE invoice_id = %s AND org_id = %s)
                     + (SELECT COUNT(*) FROM credit_notes WHERE invoice_id = %s AND org_id = %s)
                """,
                (invoice_id, current.org_id, invoice_id, current.org_id)
            )
            if attached:
                raise InvalidStateError(
                    f"Cannot delete invoice {current.invoice_number}: payments or credit notes reference it"
                )

            tx.execute(
                "DELETE FROM invoices WHERE id = %s AND org_id = %s",
                (invoice_id, current.org_id)
            )

            self.audit.log_change(
                entity_type="invoice",
                entity_id=invoice_id,
                action=AuditAction.DELETE,
                changes={"deleted": current.model_dump(mode="json")},
                tx=tx,
            )

        logger.info(f"Invoice {current.invoice_number} deleted")
