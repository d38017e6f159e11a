"""Shared test fixtures for the billing test suite."""

import os
import pytest
from uuid import UUID, uuid4
from pathlib import Path

from dotenv import load_dotenv

# Load .env file BEFORE any other imports that might use env vars
# override=True ensures .env takes precedence over shell env vars
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

# Reset vault client singleton to pick up env vars
import clients.vault_client as vault_module
vault_module._vault_client_instance = None
vault_module._secret_cache.clear()

from utils.org_context import org_context, clear_current_org_id


SCHEMA_PATH = Path(__file__).parent.parent / "db" / "schema.sql"

WEBHOOK_SECRET = "test-webhook-secret"


# =============================================================================
# TEST ORG CONSTANTS
# =============================================================================

# Primary test org - use for single-tenant tests
TEST_ORG_ID = UUID("00000000-0000-0000-0000-0000000000a1")

# Secondary test org - use for isolation tests
TEST_ORG_B_ID = UUID("00000000-0000-0000-0000-0000000000b2")

# Staff user acting in the primary org
TEST_ACTOR_ID = UUID("00000000-0000-0000-0000-000000000001")


# =============================================================================
# ORG CONTEXT FIXTURES
# =============================================================================


@pytest.fixture(autouse=True)
def reset_org_context():
    """Ensure clean org context before and after each test."""
    clear_current_org_id()
    yield
    clear_current_org_id()


@pytest.fixture
def test_org_id() -> UUID:
    return TEST_ORG_ID


@pytest.fixture
def test_org_b_id() -> UUID:
    return TEST_ORG_B_ID


@pytest.fixture
def test_actor_id() -> UUID:
    return TEST_ACTOR_ID


@pytest.fixture
def as_test_org():
    """Org context for the primary test org with a staff actor."""
    with org_context(TEST_ORG_ID, TEST_ACTOR_ID):
        yield TEST_ORG_ID


# =============================================================================
# DATABASE FIXTURES
# =============================================================================

BILLING_TABLES = (
    "audit_log, receipts, refunds, payments, credit_notes, invoices, quotes, "
    "document_sequences, visits, jobs, service_plans, issues, pools, clients, organizations"
)


@pytest.fixture(scope="session")
def db_session():
    """
    Session-scoped PostgresClient against TEST_DATABASE_URL with the schema applied.

    Skips every test that needs it when no test database is configured.
    """
    database_url = os.getenv("TEST_DATABASE_URL")
    if not database_url:
        pytest.skip("TEST_DATABASE_URL not set")

    from clients.postgres_client import PostgresClient

    client = PostgresClient(database_url)
    client.execute(SCHEMA_PATH.read_text())
    yield client
    client.close()


@pytest.fixture
def db(db_session):
    """PostgresClient with all billing and collaborator tables emptied."""
    db_session.execute(f"TRUNCATE {BILLING_TABLES} CASCADE")
    db_session.execute(
        "INSERT INTO organizations (id, name) VALUES (%s, %s), (%s, %s)",
        (TEST_ORG_ID, "Blue Lagoon Pools", TEST_ORG_B_ID, "Other Org")
    )
    return db_session


@pytest.fixture
def services(db):
    """All billing services wired as in production, without email."""
    from main import build_services

    return build_services(db, webhook_secret=WEBHOOK_SECRET)


# =============================================================================
# COLLABORATOR ROWS
# =============================================================================


@pytest.fixture
def make_client(db):
    """Factory inserting a client (and one pool) in the current org context."""

    def _make(name: str = "Ama Mensah", email: str | None = "ama@example.com") -> dict:
        from utils.org_context import get_current_org_id

        org_id = get_current_org_id()
        client_id = uuid4()
        pool_id = uuid4()
        db.execute(
            "INSERT INTO clients (id, org_id, name, email) VALUES (%s, %s, %s, %s)",
            (client_id, org_id, name, email)
        )
        db.execute(
            "INSERT INTO pools (id, org_id, client_id, name) VALUES (%s, %s, %s, %s)",
            (pool_id, org_id, client_id, "Backyard pool")
        )
        return {"client_id": client_id, "pool_id": pool_id}

    return _make


@pytest.fixture
def make_issue(db):
    def _make(pool_id: UUID, status: str = "open") -> UUID:
        from utils.org_context import get_current_org_id

        issue_id = uuid4()
        db.execute(
            "INSERT INTO issues (id, org_id, pool_id, description, status) VALUES (%s, %s, %s, %s, %s)",
            (issue_id, get_current_org_id(), pool_id, "Green water", status)
        )
        return issue_id

    return _make


@pytest.fixture
def issue_status(db):
    def _get(issue_id: UUID) -> str:
        return db.execute_scalar("SELECT status FROM issues WHERE id = %s", (issue_id,))

    return _get


@pytest.fixture
def make_plan(db):
    """Factory inserting a service plan on a pool."""

    def _make(
        pool_id: UUID,
        price_cents: int = 15000,
        tax_pct: str = "0",
        currency: str = "GHS",
        status: str = "active",
        name: str = "Weekly pool service",
    ) -> UUID:
        from utils.org_context import get_current_org_id

        plan_id = uuid4()
        db.execute(
            """
            INSERT INTO service_plans (id, org_id, pool_id, name, price_cents, tax_pct, currency, status)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            """,
            (plan_id, get_current_org_id(), pool_id, name, price_cents, tax_pct, currency, status)
        )
        return plan_id

    return _make


@pytest.fixture
def add_visit(db):
    """Factory inserting a job for the plan and one visit on it."""

    def _add(plan_id: UUID, pool_id: UUID, completed_at, status: str = "completed") -> UUID:
        from utils.org_context import get_current_org_id

        org_id = get_current_org_id()
        job_id = uuid4()
        visit_id = uuid4()
        db.execute(
            "INSERT INTO jobs (id, org_id, plan_id, pool_id, scheduled_for) VALUES (%s, %s, %s, %s, %s)",
            (job_id, org_id, plan_id, pool_id, completed_at)
        )
        db.execute(
            "INSERT INTO visits (id, org_id, job_id, status, completed_at) VALUES (%s, %s, %s, %s, %s)",
            (visit_id, org_id, job_id, status, completed_at if status == "completed" else None)
        )
        return visit_id

    return _add


@pytest.fixture
def make_sent_invoice(services, make_client):
    """Factory creating and sending a single-line invoice for a fresh client."""

    def _make(total_cents: int = 30000, client: dict | None = None):
        from core.models import InvoiceCreate

        client = client or make_client()
        draft = services["invoice"].create_from_items(InvoiceCreate(
            client_id=client["client_id"],
            pool_id=client["pool_id"],
            items=[{"label": "Pool service", "qty": 1, "unit_price_cents": total_cents}],
        ))
        return services["invoice"].send(draft.id)

    return _make


# =============================================================================
# VALKEY
# =============================================================================


@pytest.fixture(scope="session")
def valkey():
    """Session-scoped ValkeyClient against TEST_VALKEY_URL."""
    valkey_url = os.getenv("TEST_VALKEY_URL")
    if not valkey_url:
        pytest.skip("TEST_VALKEY_URL not set")

    from clients.valkey_client import ValkeyClient

    client = ValkeyClient(valkey_url)
    yield client
    client.close()


# =============================================================================
# IN-MEMORY MODELS - lightweight stand-ins, no DB needed
# =============================================================================


@pytest.fixture
def invoice_factory():
    """Build Invoice models; keyword overrides replace any field."""
    from core.models import Invoice, InvoiceStatus
    from core.money import LineItem
    from utils.timezone import now_utc

    def _make(**overrides):
        now = now_utc()
        fields = dict(
            id=uuid4(), org_id=TEST_ORG_ID, client_id=uuid4(), pool_id=None,
            visit_id=None, quote_id=None, invoice_number="INV-2026-0001",
            currency="GHS",
            items=[LineItem(label="Filter clean", qty=1, unit_price_cents=30000)],
            subtotal_cents=30000, tax_cents=0, total_cents=30000,
            paid_cents=0, credited_cents=0, status=InvoiceStatus.SENT,
            due_date=None, issued_at=now, paid_at=None, cancelled_at=None,
            notes=None, metadata={}, created_at=now, updated_at=now,
        )
        fields.update(overrides)
        return Invoice(**fields)

    return _make


@pytest.fixture
def payment_factory():
    from core.models import Payment, PaymentMethod, PaymentStatus
    from utils.timezone import now_utc

    def _make(**overrides):
        now = now_utc()
        fields = dict(
            id=uuid4(), org_id=TEST_ORG_ID, invoice_id=uuid4(),
            method=PaymentMethod.MOBILE_MONEY, provider=None, provider_ref=None,
            reference=None, amount_cents=10000, currency="GHS",
            status=PaymentStatus.COMPLETED, processed_at=now, metadata={},
            created_at=now,
        )
        fields.update(overrides)
        return Payment(**fields)

    return _make


@pytest.fixture
def quote_factory():
    from core.models import Quote, QuoteStatus
    from core.money import LineItem
    from utils.timezone import now_utc

    def _make(**overrides):
        now = now_utc()
        fields = dict(
            id=uuid4(), org_id=TEST_ORG_ID, pool_id=uuid4(), client_id=uuid4(),
            issue_id=None, currency="GHS",
            items=[LineItem(label="Pump seal", qty=1, unit_price_cents=45000)],
            subtotal_cents=45000, tax_cents=0, total_cents=45000,
            status=QuoteStatus.PENDING, approved_at=None, approved_by=None,
            rejected_at=None, rejected_by=None, rejection_reason=None,
            notes=None, created_at=now, updated_at=now,
        )
        fields.update(overrides)
        return Quote(**fields)

    return _make
