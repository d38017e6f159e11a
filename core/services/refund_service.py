"""
Refund service.

A refund returns money from one payment, at most once per payment. It
reconciles the owning invoice, which may move a paid invoice back to sent.
Locks are taken invoice first, then payment.
"""

import logging
from uuid import UUID, uuid4

from psycopg2.extras import Json

from clients.postgres_client import PostgresClient
from core.audit import AuditLogger, AuditAction
from core.event_bus import EventBus
from core.events import InvoiceReopened
from core.exceptions import AlreadyRefundedError, ExceedsPaymentAmountError, NotFoundError
from core.models import Payment, PaymentStatus, Refund, RefundCreate
from core.services.reconciliation import Reconciler
from utils.org_context import get_current_org_id
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


class RefundService:
    """Service for refunding payments."""

    def __init__(
        self,
        postgres: PostgresClient,
        audit: AuditLogger,
        event_bus: EventBus,
        reconciler: Reconciler,
    ):
        self.postgres = postgres
        self.audit = audit
        self.event_bus = event_bus
        self.reconciler = reconciler

    def refund_payment(self, payment_id: UUID, data: RefundCreate | None = None) -> Refund:
        """
        Refund a completed payment, in full by default.

        Raises:
            NotFoundError: If payment not found
            AlreadyRefundedError: If the payment is not completed or already has a refund
            ExceedsPaymentAmountError: If the amount is more than the payment
        """
        data = data or RefundCreate()
        org_id = get_current_org_id()

        # Invoice id is immutable on a payment, so an unlocked read is enough to find it
        peek = self.postgres.execute_single(
            "SELECT invoice_id FROM payments WHERE id = %s AND org_id = %s",
            (payment_id, org_id)
        )
        if peek is None:
            raise NotFoundError(f"Payment {payment_id} not found", code="PAYMENT_NOT_FOUND")

        with self.postgres.transaction() as tx:
            invoice = self.reconciler.lock_invoice(tx, peek["invoice_id"])
            payment = Payment.model_validate(tx.execute_single(
                "SELECT * FROM payments WHERE id = %s AND org_id = %s FOR UPDATE",
                (payment_id, org_id)
            ))

            existing = tx.execute_single(
                "SELECT id FROM refunds WHERE payment_id = %s AND org_id = %s",
                (payment_id, org_id)
            )
            if payment.status != PaymentStatus.COMPLETED or existing is not None:
                raise AlreadyRefundedError(f"Payment {payment_id} has already been refunded")

            amount_cents = data.amount_cents if data.amount_cents is not None else payment.amount_cents
            if amount_cents > payment.amount_cents:
                raise ExceedsPaymentAmountError(
                    f"Refund of {amount_cents} exceeds payment amount {payment.amount_cents}"
                )

            now = now_utc()
            row = tx.execute_single(
                """
                INSERT INTO refunds (
                    id, org_id, payment_id, invoice_id, amount_cents, reason, provider_ref, refunded_at, meta
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    uuid4(), org_id, payment_id, invoice.id, amount_cents, data.reason,
                    data.provider_ref, now, Json({"invoiceNumber": invoice.invoice_number})
                )
            )
            refund = Refund.model_validate(row)

            new_status = (
                PaymentStatus.REFUNDED if amount_cents == payment.amount_cents
                else PaymentStatus.PARTIALLY_REFUNDED
            )
            tx.execute(
                "UPDATE payments SET status = %s WHERE id = %s AND org_id = %s",
                (new_status.value, payment_id, org_id)
            )

            self.audit.log_change(
                entity_type="refund",
                entity_id=refund.id,
                action=AuditAction.CREATE,
                changes={"created": refund.model_dump(mode="json")},
                tx=tx,
            )
            self.audit.log_change(
                entity_type="payment",
                entity_id=payment_id,
                action=AuditAction.UPDATE,
                changes={"status": {"old": payment.status.value, "new": new_status.value}},
                tx=tx,
            )

            outcome = self.reconciler.reconcile(tx, invoice.id)

        logger.info(
            f"Refund {refund.id} of {amount_cents} on payment {payment_id}; "
            f"invoice {invoice.invoice_number} balance now {outcome.invoice.balance_cents}"
        )
        if outcome.reopened:
            self.event_bus.publish(InvoiceReopened.create(invoice=outcome.invoice))

        return refund

    def list_refunds(
        self,
        payment_id: UUID | None = None,
        invoice_id: UUID | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Refund]:
        """List refunds, newest first."""
        conditions = ["org_id = %s"]
        params: list = [get_current_org_id()]

        if payment_id is not None:
            conditions.append("payment_id = %s")
            params.append(payment_id)
        if invoice_id is not None:
            conditions.append("invoice_id = %s")
            params.append(invoice_id)

        params.extend([limit, offset])
        rows = self.postgres.execute(
            f"""
            SELECT * FROM refunds
            WHERE {" AND ".join(conditions)}
            ORDER BY refunded_at DESC
            LIMIT %s OFFSET %s
            """,
            tuple(params)
        )
        return [Refund.model_validate(row) for row in rows]
