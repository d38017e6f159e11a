"""
PoolCare billing API.

Builds the FastAPI application: secrets from Vault, PostgreSQL and Valkey
clients, the billing services and their event handlers, then the routers
under /api behind session auth.

    uvicorn main:create_app --factory
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from api.credit_notes import create_credit_notes_router
from api.errors import register_error_handlers
from api.health import create_health_router
from api.invoices import create_invoices_router
from api.middleware import RequestIDMiddleware
from api.payments import create_payments_router
from api.quotes import create_quotes_router
from api.receipts import create_receipts_router
from api.webhooks import create_webhooks_router
from auth.security_middleware import AuthMiddleware
from auth.session import SessionManager
from clients.email_client import EmailGatewayClient
from clients.postgres_client import PostgresClient
from clients.valkey_client import ValkeyClient
from clients.vault_client import (
    get_database_url,
    get_email_config,
    get_gateway_webhook_secret,
    get_valkey_url,
)
from core.audit import AuditLogger
from core.config import BillingConfig
from core.event_bus import EventBus
from core.handlers.invoice_notification_handler import handle_invoice_paid, handle_invoice_sent
from core.handlers.quote_notification_handler import handle_quote_created
from core.handlers.receipt_handler import handle_payment_recorded
from core.services.credit_note_service import CreditNoteService
from core.services.invoice_service import InvoiceService
from core.services.monthly_billing_service import MonthlyBillingService
from core.services.notification_service import NotificationService
from core.services.payment_service import PaymentService
from core.services.quote_service import QuoteService
from core.services.receipt_service import ReceiptService
from core.services.reconciliation import Reconciler
from core.services.refund_service import RefundService
from core.services.sequence_service import SequenceService

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


def build_services(
    postgres: PostgresClient,
    webhook_secret: str,
    config: BillingConfig | None = None,
    valkey: ValkeyClient | None = None,
    email: EmailGatewayClient | None = None,
) -> dict:
    """
    Wire services and event handlers around shared clients.

    Receipts are always issued after payments commit. Email notifications
    are subscribed only when an email client is given.
    """
    config = config or BillingConfig()
    audit = AuditLogger(postgres)
    event_bus = EventBus()
    sequences = SequenceService()
    reconciler = Reconciler()

    invoice_svc = InvoiceService(postgres, audit, event_bus, sequences, reconciler, config)
    receipt_svc = ReceiptService(postgres, audit, sequences)

    services = {
        "audit": audit,
        "event_bus": event_bus,
        "quote": QuoteService(postgres, audit, event_bus, config),
        "invoice": invoice_svc,
        "payment": PaymentService(postgres, audit, event_bus, reconciler, webhook_secret, config),
        "refund": RefundService(postgres, audit, event_bus, reconciler),
        "credit_note": CreditNoteService(postgres, audit, event_bus, reconciler, config),
        "receipt": receipt_svc,
        "monthly_billing": MonthlyBillingService(postgres, invoice_svc, config, valkey),
    }

    event_bus.subscribe("PaymentRecorded", handle_payment_recorded(receipt_svc))

    if email is not None:
        notifications = NotificationService(postgres, email)
        services["notification"] = notifications
        event_bus.subscribe("InvoiceSent", handle_invoice_sent(notifications))
        event_bus.subscribe("InvoicePaid", handle_invoice_paid(notifications))
        event_bus.subscribe("QuoteCreated", handle_quote_created(notifications))

    return services


def create_app(config: BillingConfig | None = None) -> FastAPI:
    """Application factory. Fails fast if Vault or a backing store is unreachable."""
    config = config or BillingConfig()

    postgres = PostgresClient(get_database_url(), statement_timeout_ms=config.statement_timeout_ms)
    valkey = ValkeyClient(get_valkey_url())
    email = EmailGatewayClient(**get_email_config())

    services = build_services(
        postgres,
        webhook_secret=get_gateway_webhook_secret(),
        config=config,
        valkey=valkey,
        email=email,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("PoolCare billing API started")
        yield
        valkey.close()
        postgres.close()
        logger.info("PoolCare billing API stopped")

    app = FastAPI(title="PoolCare Billing", version="1.0.0", lifespan=lifespan)
    app.add_middleware(AuthMiddleware, session_manager=SessionManager(valkey))
    # Added last so it wraps auth and tags 401s too
    app.add_middleware(RequestIDMiddleware)
    register_error_handlers(app)

    app.include_router(create_health_router(postgres, valkey))
    app.include_router(create_quotes_router(services), prefix="/api")
    app.include_router(create_invoices_router(services), prefix="/api")
    app.include_router(create_payments_router(services), prefix="/api")
    app.include_router(create_credit_notes_router(services), prefix="/api")
    app.include_router(create_receipts_router(services), prefix="/api")
    app.include_router(create_webhooks_router(services), prefix="/api")

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:create_app", factory=True, host="0.0.0.0", port=8000)
