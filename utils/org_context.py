"""Propagate tenant (org) and actor identity through the call stack using contextvars."""

from contextvars import ContextVar
from uuid import UUID
from contextlib import contextmanager

_current_org_id: ContextVar[UUID | None] = ContextVar("current_org_id", default=None)
_current_actor_id: ContextVar[UUID | None] = ContextVar("current_actor_id", default=None)


def get_current_org_id() -> UUID:
    """
    Get current org ID from context.

    Raises RuntimeError if no org context is set. Every billing query is
    org-scoped, so reaching this without a context is a bug.
    """
    org_id = _current_org_id.get()
    if org_id is None:
        raise RuntimeError(
            "No org context set. This usually means you're calling "
            "org-scoped code outside of an authenticated request or job."
        )
    return org_id


def set_current_org_id(org_id: UUID) -> None:
    """Set current org ID in context. Called by auth middleware."""
    _current_org_id.set(org_id)


def clear_current_org_id() -> None:
    """
    Clear org and actor context.

    Must be called in a finally block to prevent context leakage.
    """
    _current_org_id.set(None)
    _current_actor_id.set(None)


def get_current_actor_id() -> UUID | None:
    """User acting in this request, or None for system jobs and webhooks."""
    return _current_actor_id.get()


def set_current_actor_id(user_id: UUID | None) -> None:
    _current_actor_id.set(user_id)


@contextmanager
def org_context(org_id: UUID, actor_id: UUID | None = None):
    """
    Context manager for temporarily setting org context.

    Used by:
    - Tests
    - The monthly billing job iterating over orgs
    - Gateway webhooks, whose org comes from the event payload

    Example:
        with org_context(org_id):
            invoices = invoice_service.list_unpaid()
    """
    previous_org = _current_org_id.get()
    previous_actor = _current_actor_id.get()
    _current_org_id.set(org_id)
    _current_actor_id.set(actor_id)
    try:
        yield
    finally:
        _current_org_id.set(previous_org)
        _current_actor_id.set(previous_actor)
