"""
Handler for PaymentRecorded events.

Issues the payment's receipt after the payment has committed. A failure
here is logged by the event bus and the payment stands; the receipt
backfill picks it up later.
"""

import logging
from typing import Callable

from core.events import PaymentRecorded

logger = logging.getLogger(__name__)


def handle_payment_recorded(receipt_service) -> Callable:
    """
    Factory that returns a PaymentRecorded handler.

    Args:
        receipt_service: ReceiptService instance

    Returns:
        Handler callable that issues a receipt
    """

    def handler(event: PaymentRecorded):
        receipt_service.issue_for_payment(event.payment)

    return handler
