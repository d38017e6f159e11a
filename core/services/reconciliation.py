"""
Invoice reconciliation: the only writer of paid_cents, credited_cents,
status transitions into and out of paid, and paid_at.

paid and credited amounts are recomputed from scratch from the invoice's
payments, refunds and applied credit notes every time, inside the
transaction that wrote the child row and with the invoice row locked.
"""

import logging
from dataclasses import dataclass
from uuid import UUID

from clients.postgres_client import Transaction
from core.exceptions import NotFoundError
from core.models import Invoice, InvoiceStatus
from core.money import Totals
from utils.org_context import get_current_org_id
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Settlement:
    """Derived money state of one invoice."""

    collected_cents: int
    paid_cents: int
    credited_cents: int
    balance_cents: int

    @property
    def overpaid_cents(self) -> int:
        """Money collected beyond the invoice total."""
        return max(0, self.collected_cents - self.paid_cents)


def settle(total_cents: int, payment_nets: list[int], credit_amounts: list[int]) -> Settlement:
    """
    Compute paid, credited and balance from child records.

    Args:
        total_cents: Invoice total
        payment_nets: Per payment, amount minus its refund (if any)
        credit_amounts: Amounts of credit notes applied to the invoice

    Payments count before credits. Both are clamped so that
    paid + credited never exceeds the total.
    """
    collected = sum(payment_nets)
    paid = min(max(collected, 0), total_cents)
    credited = min(max(sum(credit_amounts), 0), total_cents - paid)
    balance = max(0, total_cents - paid - credited)
    return Settlement(
        collected_cents=collected,
        paid_cents=paid,
        credited_cents=credited,
        balance_cents=balance,
    )


def next_status(current: InvoiceStatus, balance_cents: int) -> InvoiceStatus:
    """
    Status after reconciliation.

    Zero balance pays an open invoice. A paid invoice with a reopened
    balance goes back to sent. Cancelled invoices never move.
    """
    if current == InvoiceStatus.CANCELLED:
        return current
    if balance_cents == 0:
        return InvoiceStatus.PAID
    if current == InvoiceStatus.PAID:
        return InvoiceStatus.SENT
    return current


@dataclass(frozen=True)
class ReconcileOutcome:
    invoice: Invoice
    settlement: Settlement
    previous_status: InvoiceStatus

    @property
    def became_paid(self) -> bool:
        return self.previous_status != InvoiceStatus.PAID and self.invoice.is_paid

    @property
    def reopened(self) -> bool:
        return self.previous_status == InvoiceStatus.PAID and not self.invoice.is_paid


class Reconciler:
    """
    Recomputes invoice money state inside an open transaction.

    Usage:
        with postgres.transaction() as tx:
            invoice = reconciler.lock_invoice(tx, invoice_id)
            ...insert payment...
            outcome = reconciler.reconcile(tx, invoice_id)
        if outcome.became_paid:
            event_bus.publish(InvoicePaid.create(outcome.invoice))
    """

    def lock_invoice(self, tx: Transaction, invoice_id: UUID) -> Invoice:
        """
        Lock the invoice row for the rest of the transaction.

        Every money-moving operation takes this lock first, before touching
        payment or refund rows, so lock order is always invoice then children.

        Raises:
            NotFoundError: If the invoice does not exist in the current org
        """
        row = tx.execute_single(
            "SELECT * FROM invoices WHERE id = %s AND org_id = %s FOR UPDATE",
            (invoice_id, get_current_org_id())
        )
        if row is None:
            raise NotFoundError(f"Invoice {invoice_id} not found", code="INVOICE_NOT_FOUND")
        return Invoice.model_validate(row)

    def reconcile(
        self,
        tx: Transaction,
        invoice_id: UUID,
        totals: Totals | None = None,
    ) -> ReconcileOutcome:
        """
        Recompute and persist the invoice's paid state.

        Caller must already hold the invoice row lock (lock_invoice) in tx.
        With totals (an item edit), the new subtotal, tax and total are
        written in the same UPDATE as the settlement against them.
        """
        org_id = get_current_org_id()
        current = self.lock_invoice(tx, invoice_id)

        payment_rows = tx.execute(
            """
            SELECT p.amount_cents - COALESCE(r.amount_cents, 0) AS net_cents
            FROM payments p
            LEFT JOIN refunds r ON r.payment_id = p.id AND r.org_id = p.org_id
            WHERE p.invoice_id = %s AND p.org_id = %s
            """,
            (invoice_id, org_id)
        )
        credit_rows = tx.execute(
            """
            SELECT amount_cents FROM credit_notes
            WHERE invoice_id = %s AND org_id = %s AND applied_at IS NOT NULL
            """,
            (invoice_id, org_id)
        )

        total_cents = totals.total_cents if totals is not None else current.total_cents
        settlement = settle(
            total_cents,
            [row["net_cents"] for row in payment_rows],
            [row["amount_cents"] for row in credit_rows],
        )
        status = next_status(current.status, settlement.balance_cents)

        if status == InvoiceStatus.PAID:
            paid_at = current.paid_at or now_utc()
        else:
            paid_at = None

        sets = ["paid_cents = %s", "credited_cents = %s", "status = %s", "paid_at = %s", "updated_at = %s"]
        params: list = [settlement.paid_cents, settlement.credited_cents, status.value, paid_at, now_utc()]
        if totals is not None:
            sets += ["subtotal_cents = %s", "tax_cents = %s", "total_cents = %s"]
            params += [totals.subtotal_cents, totals.tax_cents, totals.total_cents]

        params += [invoice_id, org_id]
        row = tx.execute_single(
            f"UPDATE invoices SET {', '.join(sets)} WHERE id = %s AND org_id = %s RETURNING *",
            tuple(params)
        )
        invoice = Invoice.model_validate(row)

        if status != current.status:
            logger.info(
                f"Invoice {invoice.invoice_number} {current.status.value} -> {status.value} "
                f"(paid={settlement.paid_cents}, credited={settlement.credited_cents}, "
                f"balance={settlement.balance_cents})"
            )
        if settlement.overpaid_cents:
            logger.warning(
                f"Invoice {invoice.invoice_number} collected {settlement.overpaid_cents} "
                f"cents more than its total"
            )

        return ReconcileOutcome(invoice=invoice, settlement=settlement, previous_status=current.status)
