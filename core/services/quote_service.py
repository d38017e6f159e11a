"""
Quote service.

A quote prices the fix for an inspected issue on a pool. The linked issue
(owned by the field subsystem) follows the quote: quoted on create,
scheduled on approval, back to open on rejection.
"""

import logging
from uuid import UUID, uuid4

from psycopg2.extras import Json

from clients.postgres_client import PostgresClient, Transaction
from core.audit import AuditLogger, AuditAction, compute_changes
from core.config import BillingConfig
from core.event_bus import EventBus
from core.events import QuoteCreated, QuoteApproved
from core.exceptions import InvalidStateError, NotFoundError, ValidationFailedError
from core.models import Quote, QuoteCreate, QuoteUpdate, QuoteStatus
from core.money import compute_totals, dump_line_items, parse_line_items
from utils.org_context import get_current_actor_id, get_current_org_id
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


class IssueStatus:
    """Issue states this service moves a linked issue between."""

    OPEN = "open"
    QUOTED = "quoted"
    SCHEDULED = "scheduled"


class QuoteService:
    """Service for quote operations."""

    def __init__(
        self,
        postgres: PostgresClient,
        audit: AuditLogger,
        event_bus: EventBus,
        config: BillingConfig | None = None,
    ):
        self.postgres = postgres
        self.audit = audit
        self.event_bus = event_bus
        self.config = config or BillingConfig()

    def create(self, data: QuoteCreate) -> Quote:
        """
        Create a pending quote for a pool.

        The client is taken from the pool. If an issue is linked it must be
        on the same pool, and it is flipped to quoted.

        Raises:
            NotFoundError: POOL_NOT_FOUND, or ISSUE_NOT_FOUND for a foreign issue
            ValidationFailedError: If items are empty or invalid
        """
        org_id = get_current_org_id()
        items = parse_line_items(data.items)
        totals = compute_totals(items)

        pool = self.postgres.execute_single(
            "SELECT id, client_id FROM pools WHERE id = %s AND org_id = %s",
            (data.pool_id, org_id)
        )
        if pool is None:
            raise NotFoundError(f"Pool {data.pool_id} not found", code="POOL_NOT_FOUND")

        now = now_utc()
        with self.postgres.transaction() as tx:
            if data.issue_id is not None:
                self._set_issue_status(tx, data.issue_id, IssueStatus.QUOTED, pool_id=data.pool_id)

            row = tx.execute_single(
                """
                INSERT INTO quotes (
                    id, org_id, pool_id, client_id, issue_id, currency, items,
                    subtotal_cents, tax_cents, total_cents, status, notes,
                    created_at, updated_at
                ) VALUES (
                    %s, %s, %s, %s, %s, %s, %s,
                    %s, %s, %s, %s, %s,
                    %s, %s
                )
                RETURNING *
                """,
                (
                    uuid4(), org_id, data.pool_id, pool["client_id"], data.issue_id,
                    data.currency or self.config.default_currency, Json(dump_line_items(items)),
                    totals.subtotal_cents, totals.tax_cents, totals.total_cents,
                    QuoteStatus.PENDING.value, data.notes,
                    now, now
                )
            )
            quote = Quote.model_validate(row)

            self.audit.log_change(
                entity_type="quote",
                entity_id=quote.id,
                action=AuditAction.CREATE,
                changes={"created": quote.model_dump(mode="json")},
                tx=tx,
            )

        logger.info(f"Quote {quote.id} created for pool {quote.pool_id}: {quote.total_cents} cents")
        self.event_bus.publish(QuoteCreated.create(quote=quote))

        return quote

    def get_by_id(self, quote_id: UUID) -> Quote | None:
        row = self.postgres.execute_single(
            "SELECT * FROM quotes WHERE id = %s AND org_id = %s",
            (quote_id, get_current_org_id())
        )
        if row is None:
            return None
        return Quote.model_validate(row)

    def list_quotes(
        self,
        pool_id: UUID | None = None,
        client_id: UUID | None = None,
        status: QuoteStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Quote]:
        """List quotes, newest first, with optional filters."""
        conditions = ["org_id = %s"]
        params: list = [get_current_org_id()]

        if pool_id is not None:
            conditions.append("pool_id = %s")
            params.append(pool_id)
        if client_id is not None:
            conditions.append("client_id = %s")
            params.append(client_id)
        if status is not None:
            conditions.append("status = %s")
            params.append(status.value)

        params.extend([limit, offset])
        rows = self.postgres.execute(
            f"""
            SELECT * FROM quotes
            WHERE {" AND ".join(conditions)}
            ORDER BY created_at DESC
            LIMIT %s OFFSET %s
            """,
            tuple(params)
        )
        return [Quote.model_validate(row) for row in rows]

    def update(self, quote_id: UUID, data: QuoteUpdate) -> Quote:
        """
        Edit a pending quote. Changing items recomputes totals.

        Raises:
            NotFoundError: If quote not found
            InvalidStateError: If the quote is approved or rejected
        """
        update_data = data.model_dump(exclude_unset=True)
        if not update_data:
            raise ValidationFailedError("No fields to update")

        with self.postgres.transaction() as tx:
            current = self._lock(tx, quote_id)
            self._require_pending(current, "edit")

            sets = ["updated_at = %s"]
            params: list = [now_utc()]

            if data.items is not None:
                items = parse_line_items(data.items)
                totals = compute_totals(items)
                sets += ["items = %s", "subtotal_cents = %s", "tax_cents = %s", "total_cents = %s"]
                params += [
                    Json(dump_line_items(items)),
                    totals.subtotal_cents, totals.tax_cents, totals.total_cents,
                ]
            if "notes" in update_data:
                sets.append("notes = %s")
                params.append(data.notes)

            params += [quote_id, current.org_id]
            row = tx.execute_single(
                f"UPDATE quotes SET {', '.join(sets)} WHERE id = %s AND org_id = %s RETURNING *",
                tuple(params)
            )
            updated = Quote.model_validate(row)

            changes = compute_changes(
                current.model_dump(mode="json"),
                updated.model_dump(mode="json"),
            )
            if changes:
                self.audit.log_change(
                    entity_type="quote",
                    entity_id=quote_id,
                    action=AuditAction.UPDATE,
                    changes=changes,
                    tx=tx,
                )

        return updated

    def approve(self, quote_id: UUID, approved_by: UUID | None = None) -> Quote:
        """
        Approve a pending quote. A linked issue moves to scheduled.

        Raises:
            NotFoundError: If quote not found
            InvalidStateError: If the quote is not pending
        """
        approved_by = approved_by or get_current_actor_id()
        now = now_utc()

        with self.postgres.transaction() as tx:
            current = self._lock(tx, quote_id)
            self._require_pending(current, "approve")

            row = tx.execute_single(
                """
                UPDATE quotes
                SET status = %s, approved_at = %s, approved_by = %s, updated_at = %s
                WHERE id = %s AND org_id = %s
                RETURNING *
                """,
                (QuoteStatus.APPROVED.value, now, approved_by, now, quote_id, current.org_id)
            )
            quote = Quote.model_validate(row)

            if quote.issue_id is not None:
                self._set_issue_status(tx, quote.issue_id, IssueStatus.SCHEDULED)

            self.audit.log_change(
                entity_type="quote",
                entity_id=quote_id,
                action=AuditAction.UPDATE,
                changes={
                    "status": {"old": current.status.value, "new": quote.status.value},
                    "approved_at": {"old": None, "new": now.isoformat()},
                },
                tx=tx,
            )

        logger.info(f"Quote {quote_id} approved")
        self.event_bus.publish(QuoteApproved.create(quote=quote))

        return quote

    def reject(self, quote_id: UUID, reason: str | None = None, rejected_by: UUID | None = None) -> Quote:
        """
        Reject a pending quote. A linked issue goes back to open.

        Raises:
            NotFoundError: If quote not found
            InvalidStateError: If the quote is not pending
        """
        rejected_by = rejected_by or get_current_actor_id()
        now = now_utc()

        with self.postgres.transaction() as tx:
            current = self._lock(tx, quote_id)
            self._require_pending(current, "reject")

            row = tx.execute_single(
                """
                UPDATE quotes
                SET status = %s, rejected_at = %s, rejected_by = %s, rejection_reason = %s, updated_at = %s
                WHERE id = %s AND org_id = %s
                RETURNING *
                """,
                (QuoteStatus.REJECTED.value, now, rejected_by, reason, now, quote_id, current.org_id)
            )
            quote = Quote.model_validate(row)

            if quote.issue_id is not None:
                self._set_issue_status(tx, quote.issue_id, IssueStatus.OPEN)

            self.audit.log_change(
                entity_type="quote",
                entity_id=quote_id,
                action=AuditAction.UPDATE,
                changes={
                    "status": {"old": current.status.value, "new": quote.status.value},
                    "rejection_reason": {"old": None, "new": reason},
                },
                tx=tx,
            )

        logger.info(f"Quote {quote_id} rejected")
        return quote

    def _lock(self, tx: Transaction, quote_id: UUID) -> Quote:
        row = tx.execute_single(
            "SELECT * FROM quotes WHERE id = %s AND org_id = %s FOR UPDATE",
            (quote_id, get_current_org_id())
        )
        if row is None:
            raise NotFoundError(f"Quote {quote_id} not found", code="QUOTE_NOT_FOUND")
        return Quote.model_validate(row)

    @staticmethod
    def _require_pending(quote: Quote, action: str) -> None:
        if not quote.is_pending:
            raise InvalidStateError(f"Cannot {action} quote {quote.id}: status is {quote.status.value}")

    def _set_issue_status(
        self,
        tx: Transaction,
        issue_id: UUID,
        status: str,
        pool_id: UUID | None = None,
    ) -> None:
        """Move a linked issue. When pool_id is given the issue must be on that pool."""
        conditions = "id = %s AND org_id = %s"
        params: list = [status, now_utc(), issue_id, get_current_org_id()]
        if pool_id is not None:
            conditions += " AND pool_id = %s"
            params.append(pool_id)

        updated = tx.execute(
            f"UPDATE issues SET status = %s, updated_at = %s WHERE {conditions} RETURNING id",
            tuple(params)
        )
        if not updated:
            raise NotFoundError(f"Issue {issue_id} not found", code="ISSUE_NOT_FOUND")
