"""
Handlers for InvoiceSent and InvoicePaid events.

Email the client when an invoice is issued and when it is paid in full.
"""

import logging
from typing import Callable

from core.events import InvoicePaid, InvoiceSent

logger = logging.getLogger(__name__)


def handle_invoice_sent(notification_service) -> Callable:
    """
    Factory that returns an InvoiceSent handler.

    Args:
        notification_service: NotificationService instance
    """

    def handler(event: InvoiceSent):
        notification_service.send_invoice(event.invoice)

    return handler


def handle_invoice_paid(notification_service) -> Callable:
    """Factory that returns an InvoicePaid handler sending a thank-you."""

    def handler(event: InvoicePaid):
        notification_service.send_payment_received(event.invoice)

    return handler
