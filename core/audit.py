"""
Audit trail for every billing mutation.

Every change to a quote, invoice, payment, refund, credit note or receipt
is logged here. The audit log is:
- Append-only (entries never modified or deleted)
- Actor-attributed (the staff user, or NULL for webhooks and jobs)
- Org-scoped (entries carry org_id and are filtered by it)

Money-moving writes pass their open Transaction so the audit entry commits
or rolls back together with the change it describes.
"""

from enum import Enum
from uuid import UUID, uuid4
from typing import Any

from psycopg2.extras import Json

from clients.postgres_client import PostgresClient, Transaction
from utils.org_context import get_current_actor_id, get_current_org_id
from utils.timezone import now_utc


class AuditAction(Enum):
    """Type of change made to an entity."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


def compute_changes(
    old: dict[str, Any],
    new: dict[str, Any],
    exclude_fields: set[str] | None = None
) -> dict[str, dict[str, Any]]:
    """
    Compute changes between two entity states.

    Args:
        old: Previous state of entity
        new: New state of entity
        exclude_fields: Fields to ignore (defaults to {"updated_at"})

    Returns:
        Dict of {field: {"old": old_val, "new": new_val}} for changed fields.
        Empty dict if no changes.
    """
    exclude = exclude_fields or {"updated_at"}
    changes = {}

    all_keys = set(old.keys()) | set(new.keys())
    for key in all_keys:
        if key in exclude:
            continue

        old_val = old.get(key)
        new_val = new.get(key)

        if old_val != new_val:
            changes[key] = {"old": old_val, "new": new_val}

    return changes


class AuditLogger:
    """
    Audit trail writer and reader.

    IMPORTANT: Always use model_dump(mode="json") when passing Pydantic models
    to ensure UUIDs, dates and Decimals are serialized to JSON-compatible values.

    Usage:
        audit = AuditLogger(postgres)

        with postgres.transaction() as tx:
            ...insert payment...
            audit.log_change(
                entity_type="payment",
                entity_id=payment.id,
                action=AuditAction.CREATE,
                changes={"created": payment.model_dump(mode="json")},
                tx=tx,
            )

        history = audit.get_entity_history("invoice", invoice.id)
    """

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    def log_change(
        self,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        changes: dict[str, Any],
        actor_id: UUID | None = None,
        tx: Transaction | None = None,
    ) -> None:
        """
        Log an entity change.

        Args:
            entity_type: Type of entity ("invoice", "payment", etc.)
            entity_id: ID of the entity
            action: The action performed (CREATE, UPDATE, DELETE)
            changes: The changes made (format depends on action)
            actor_id: User who made change (defaults to current context)
            tx: Open transaction to write through (defaults to autocommit)

        Changes format by action:
        - CREATE: {"created": {full entity data}}
        - UPDATE: {"field": {"old": old_val, "new": new_val}, ...}
        - DELETE: {"deleted": {full entity data at deletion}}
        """
        if actor_id is None:
            actor_id = get_current_actor_id()

        executor = tx if tx is not None else self.postgres
        executor.execute(
            """
            INSERT INTO audit_log (id, org_id, actor_id, entity_type, entity_id, action, changes, created_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            """,
            (
                uuid4(),
                get_current_org_id(),
                actor_id,
                entity_type,
                entity_id,
                action.value,
                Json(changes),
                now_utc()
            )
        )

    def get_entity_history(
        self,
        entity_type: str,
        entity_id: UUID
    ) -> list[dict[str, Any]]:
        """
        Get full audit history for an entity, newest first.

        Args:
            entity_type: Type of entity ("invoice", "payment", etc.)
            entity_id: ID of the entity
        """
        return self.postgres.execute(
            """
            SELECT id, org_id, actor_id, entity_type, entity_id, action, changes, created_at
            FROM audit_log
            WHERE org_id = %s AND entity_type = %s AND entity_id = %s
            ORDER BY created_at DESC
            """,
            (get_current_org_id(), entity_type, entity_id)
        )
