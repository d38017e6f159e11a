"""
Client notifications for billing documents.

Best-effort: callers are event handlers running after commit, and the
event bus logs any exception raised here. A client without an email
address is skipped, not an error.
"""

import logging
from uuid import UUID

from clients.email_client import EmailGatewayClient
from clients.postgres_client import PostgresClient
from core.models import Invoice, Payment, Quote
from core.money import format_cents
from utils.org_context import get_current_org_id

logger = logging.getLogger(__name__)


class NotificationService:
    """Builds and sends billing emails to clients."""

    def __init__(self, postgres: PostgresClient, email: EmailGatewayClient):
        self.postgres = postgres
        self.email = email

    def client_contact(self, client_id: UUID) -> dict | None:
        """Name and email of a client, or None if the client has no email."""
        row = self.postgres.execute_single(
            "SELECT name, email FROM clients WHERE id = %s AND org_id = %s",
            (client_id, get_current_org_id())
        )
        if row is None or not row.get("email"):
            logger.info(f"Client {client_id} has no email address; notification skipped")
            return None
        return row

    def send_invoice(self, invoice: Invoice) -> bool:
        contact = self.client_contact(invoice.client_id)
        if contact is None:
            return False

        lines = [f"Hello {contact['name'] or 'there'},", ""]
        lines.append(
            f"Invoice {invoice.invoice_number} for "
            f"{format_cents(invoice.total_cents, invoice.currency)} has been issued."
        )
        period_start = invoice.metadata.get("periodStart")
        if period_start:
            lines.append(
                f"It covers {invoice.metadata.get('visitCount')} service visits from "
                f"{period_start} to {invoice.metadata.get('periodEnd')}."
            )
        if invoice.due_date:
            lines.append(f"Payment is due by {invoice.due_date:%d %b %Y}.")

        self.email.send_email(
            to=contact["email"],
            subject=f"Invoice {invoice.invoice_number}",
            body="\n".join(lines),
            template="invoice_sent",
        )
        return True

    def send_quote(self, quote: Quote) -> bool:
        contact = self.client_contact(quote.client_id)
        if contact is None:
            return False

        body = (
            f"Hello {contact['name'] or 'there'},\n\n"
            f"Your quote for {format_cents(quote.total_cents, quote.currency)} is ready for review."
        )
        self.email.send_email(
            to=contact["email"],
            subject="Your pool service quote",
            body=body,
            template="quote_created",
        )
        return True

    def send_payment_received(self, invoice: Invoice, payment: Payment | None = None) -> bool:
        contact = self.client_contact(invoice.client_id)
        if contact is None:
            return False

        if payment is not None:
            amount = format_cents(payment.amount_cents, payment.currency)
            body = f"Thank you! We received {amount} for invoice {invoice.invoice_number}."
        else:
            body = f"Thank you! Invoice {invoice.invoice_number} is now paid in full."

        self.email.send_email(
            to=contact["email"],
            subject="Payment received",
            body=body,
            template="payment_received",
        )
        return True
