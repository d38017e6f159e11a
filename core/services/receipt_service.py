"""
Receipt service.

One numbered receipt per completed payment, issued after the payment has
committed. Issuing is idempotent on payment_id, so the backfill path can
safely retry anything the post-commit handler missed.
"""

import logging
from uuid import uuid4

from clients.postgres_client import PostgresClient
from core.audit import AuditLogger, AuditAction
from core.models import Payment, Receipt
from core.services.sequence_service import SequenceKind, SequenceService
from utils.org_context import get_current_org_id
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


class ReceiptService:
    """Service for issuing payment receipts."""

    def __init__(self, postgres: PostgresClient, audit: AuditLogger, sequences: SequenceService):
        self.postgres = postgres
        self.audit = audit
        self.sequences = sequences

    def issue_for_payment(self, payment: Payment) -> Receipt | None:
        """
        Issue the receipt for a payment.

        Returns the new receipt, or None if the payment already has one.
        The payment row is locked before the number is allocated, so
        concurrent issuers queue and a repeat call never burns a number.
        """
        now = now_utc()

        with self.postgres.transaction() as tx:
            tx.execute(
                "SELECT id FROM payments WHERE id = %s AND org_id = %s FOR UPDATE",
                (payment.id, payment.org_id)
            )
            existing = tx.execute_single(
                "SELECT id FROM receipts WHERE payment_id = %s AND org_id = %s",
                (payment.id, payment.org_id)
            )
            if existing is not None:
                return None

            receipt_number = self.sequences.next_number(tx, SequenceKind.RECEIPT, now.year)
            row = tx.execute_single(
                """
                INSERT INTO receipts (id, org_id, invoice_id, payment_id, receipt_number, issued_at)
                VALUES (%s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (uuid4(), payment.org_id, payment.invoice_id, payment.id, receipt_number, now)
            )
            receipt = Receipt.model_validate(row)

            self.audit.log_change(
                entity_type="receipt",
                entity_id=receipt.id,
                action=AuditAction.CREATE,
                changes={"created": receipt.model_dump(mode="json")},
                tx=tx,
            )

        logger.info(f"Receipt {receipt.receipt_number} issued for payment {payment.id}")
        return receipt

    def list_payments_missing_receipt(self, limit: int = 100) -> list[Payment]:
        """Payments with no receipt, oldest first. Follow-up for failed post-commit issuing."""
        rows = self.postgres.execute(
            """
            SELECT p.* FROM payments p
            LEFT JOIN receipts r ON r.payment_id = p.id
            WHERE p.org_id = %s AND r.id IS NULL
            ORDER BY p.processed_at ASC
            LIMIT %s
            """,
            (get_current_org_id(), limit)
        )
        return [Payment.model_validate(row) for row in rows]

    def issue_missing(self, limit: int = 100) -> list[Receipt]:
        """Issue receipts for payments that lack one. Failures are logged and skipped."""
        issued = []
        for payment in self.list_payments_missing_receipt(limit=limit):
            try:
                receipt = self.issue_for_payment(payment)
            except Exception:
                logger.exception(f"Receipt backfill failed for payment {payment.id}")
                continue
            if receipt is not None:
                issued.append(receipt)

        logger.info(f"Receipt backfill issued {len(issued)} receipts")
        return issued
