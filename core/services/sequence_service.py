"""
Per-org, per-year document numbering.

Numbers come from a counter row in document_sequences, incremented with a
single upsert inside the caller's transaction. The upsert takes a row lock
that is held until the caller commits, so concurrent creators queue behind
each other and a rolled-back insert also rolls back its number.
"""

import logging
from enum import Enum

from clients.postgres_client import Transaction
from utils.org_context import get_current_org_id

logger = logging.getLogger(__name__)


class SequenceKind(str, Enum):
    INVOICE = "invoice"
    RECEIPT = "receipt"


_PREFIXES = {
    SequenceKind.INVOICE: "INV",
    SequenceKind.RECEIPT: "REC",
}


def format_document_number(kind: SequenceKind, year: int, value: int) -> str:
    """e.g. INV-2026-0007."""
    return f"{_PREFIXES[kind]}-{year}-{value:04d}"


class SequenceService:
    """Allocates gapless document numbers."""

    def next_value(self, tx: Transaction, kind: SequenceKind, year: int) -> int:
        """
        Increment and return the counter for (org, kind, year).

        Must be called inside the transaction that inserts the numbered
        document.
        """
        value = tx.execute_scalar(
            """
            INSERT INTO document_sequences (org_id, kind, year, last_value)
            VALUES (%s, %s, %s, 1)
            ON CONFLICT (org_id, kind, year)
            DO UPDATE SET last_value = document_sequences.last_value + 1
            RETURNING last_value
            """,
            (get_current_org_id(), kind.value, year)
        )
        return int(value)

    def next_number(self, tx: Transaction, kind: SequenceKind, year: int) -> str:
        """Allocate the next formatted number, e.g. REC-2026-0042."""
        number = format_document_number(kind, year, self.next_value(tx, kind, year))
        logger.debug(f"Allocated {number}")
        return number
