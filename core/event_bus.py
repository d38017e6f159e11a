"""
Event bus for billing domain events.

Synchronous in-process pub/sub. Handlers execute immediately in the same
thread as the publisher, after the publisher's transaction has committed.
Handler errors are logged but never propagate: receipts and notifications
are best-effort and must not fail the payment they describe.
"""

import logging
from typing import Callable, Dict, List

from core.events import BillingEvent

logger = logging.getLogger(__name__)

# Payload attributes that identify what an event is about, most specific first
_SUBJECT_FIELDS = ("payment", "invoice", "quote")


def describe_subject(event: BillingEvent) -> str:
    """Short "kind=id" label for log lines, e.g. "invoice=INV-2026-0007"."""
    for name in _SUBJECT_FIELDS:
        subject = getattr(event, name, None)
        if subject is None:
            continue
        label = getattr(subject, "invoice_number", None) or getattr(subject, "id", None)
        return f"{name}={label}"
    return "-"


class EventBus:
    """
    In-process event bus for billing domain events.

    Subscribe by event class name (string), publish by event instance.
    Handlers are called synchronously in subscription order.
    """

    def __init__(self):
        self._subscribers: Dict[str, List[Callable]] = {}

    def subscribe(self, event_type: str, callback: Callable):
        """
        Subscribe to events of a specific type.

        Args:
            event_type: Name of event class to subscribe to (e.g. 'PaymentRecorded')
            callback: Function to call when event is published
        """
        if event_type not in self._subscribers:
            self._subscribers[event_type] = []
        self._subscribers[event_type].append(callback)

    def publish(self, event: BillingEvent):
        """
        Publish an event to all subscribers of that type.

        Handler errors are logged but do not propagate. The primary
        operation has already committed.

        Args:
            event: BillingEvent instance to publish
        """
        event_type = event.__class__.__name__

        if event_type not in self._subscribers:
            return

        for callback in self._subscribers[event_type]:
            try:
                callback(event)
            except Exception:
                logger.exception(
                    "Handler %s failed for %s on %s (event_id=%s)",
                    getattr(callback, "__name__", repr(callback)),
                    event_type,
                    describe_subject(event),
                    event.event_id,
                )
