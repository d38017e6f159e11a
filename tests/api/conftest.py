"""API test fixtures: authenticated TestClient over mocked billing services."""

from datetime import timedelta
from unittest.mock import Mock

import pytest
from fastapi import FastAPI
from starlette.testclient import TestClient

from api.credit_notes import create_credit_notes_router
from api.errors import register_error_handlers
from api.invoices import create_invoices_router
from api.middleware import RequestIDMiddleware
from api.payments import create_payments_router
from api.quotes import create_quotes_router
from api.receipts import create_receipts_router
from api.webhooks import create_webhooks_router
from auth.security_middleware import AuthMiddleware
from auth.session import SessionManager
from auth.types import Session
from core.services.credit_note_service import CreditNoteService
from core.services.invoice_service import InvoiceService
from core.services.monthly_billing_service import MonthlyBillingService
from core.services.payment_service import PaymentService, verify_signature
from core.services.quote_service import QuoteService
from core.services.receipt_service import ReceiptService
from core.services.refund_service import RefundService
from utils.timezone import now_utc

API_WEBHOOK_SECRET = "api-test-webhook-secret"


# =============================================================================
# SERVICE FIXTURES
# =============================================================================


@pytest.fixture
def payment_service():
    """Mocked PaymentService that still checks signatures for real."""
    mock = Mock(spec=PaymentService)
    mock.verify_signature.side_effect = (
        lambda raw_body, signature: verify_signature(API_WEBHOOK_SECRET, raw_body, signature)
    )
    return mock


@pytest.fixture
def services(payment_service):
    return {
        "quote": Mock(spec=QuoteService),
        "invoice": Mock(spec=InvoiceService),
        "payment": payment_service,
        "refund": Mock(spec=RefundService),
        "credit_note": Mock(spec=CreditNoteService),
        "receipt": Mock(spec=ReceiptService),
        "monthly_billing": Mock(spec=MonthlyBillingService),
    }


@pytest.fixture
def webhook_secret() -> str:
    return API_WEBHOOK_SECRET


# =============================================================================
# AUTH FIXTURES
# =============================================================================


@pytest.fixture
def mock_session_manager(test_org_id, test_actor_id):
    mock = Mock(spec=SessionManager)
    mock.validate_session.return_value = Session(
        token="test-token",
        org_id=test_org_id,
        user_id=test_actor_id,
        role="admin",
        expires_at=now_utc() + timedelta(hours=24),
    )
    return mock


# =============================================================================
# APP & CLIENT FIXTURES
# =============================================================================


@pytest.fixture
def app(mock_session_manager, services):
    """FastAPI app with auth middleware, error handlers, and every billing router."""
    app = FastAPI()
    app.add_middleware(AuthMiddleware, session_manager=mock_session_manager)
    app.add_middleware(RequestIDMiddleware)
    register_error_handlers(app)

    app.include_router(create_quotes_router(services), prefix="/api")
    app.include_router(create_invoices_router(services), prefix="/api")
    app.include_router(create_payments_router(services), prefix="/api")
    app.include_router(create_credit_notes_router(services), prefix="/api")
    app.include_router(create_receipts_router(services), prefix="/api")
    app.include_router(create_webhooks_router(services), prefix="/api")

    return app


@pytest.fixture
def client(app):
    """Authenticated test client."""
    c = TestClient(app, raise_server_exceptions=False)
    c.cookies.set("session_token", "test-token")
    return c


@pytest.fixture
def unauthed_client(app):
    """Unauthenticated test client (no session cookie)."""
    return TestClient(app, raise_server_exceptions=False)
