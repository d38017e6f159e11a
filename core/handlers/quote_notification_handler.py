"""Handler for QuoteCreated events: tell the client a quote is waiting."""

from typing import Callable

from core.events import QuoteCreated


def handle_quote_created(notification_service) -> Callable:
    def handler(event: QuoteCreated):
        notification_service.send_quote(event.quote)

    return handler
