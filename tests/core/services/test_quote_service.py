"""Tests for QuoteService."""

import pytest
from uuid import uuid4

from core.exceptions import InvalidStateError, NotFoundError, ValidationFailedError
from core.models import QuoteCreate, QuoteStatus, QuoteUpdate

pytestmark = pytest.mark.db

ITEMS = [
    {"label": "Pump seal", "qty": 1, "unit_price_cents": 45000, "tax_pct": "15"},
    {"label": "Labour", "qty": 2, "unit_price_cents": 8000},
]


@pytest.fixture
def quote_service(services):
    return services["quote"]


@pytest.fixture
def pool(as_test_org, make_client):
    return make_client()


class TestCreateQuote:

    def test_prices_items_and_takes_client_from_pool(self, quote_service, pool):
        quote = quote_service.create(QuoteCreate(pool_id=pool["pool_id"], items=ITEMS))

        assert quote.status == QuoteStatus.PENDING
        assert quote.client_id == pool["client_id"]
        assert quote.subtotal_cents == 61000
        assert quote.tax_cents == 6750
        assert quote.total_cents == 67750
        assert quote.currency == "GHS"

    def test_linked_issue_becomes_quoted(self, quote_service, pool, make_issue, issue_status):
        issue_id = make_issue(pool["pool_id"])

        quote_service.create(QuoteCreate(pool_id=pool["pool_id"], issue_id=issue_id, items=ITEMS))

        assert issue_status(issue_id) == "quoted"

    def test_issue_on_other_pool_rejected(self, quote_service, pool, make_client, make_issue):
        other = make_client(name="Kwame Boateng")
        issue_id = make_issue(other["pool_id"])

        with pytest.raises(NotFoundError) as exc:
            quote_service.create(QuoteCreate(pool_id=pool["pool_id"], issue_id=issue_id, items=ITEMS))

        assert exc.value.code == "ISSUE_NOT_FOUND"
        assert quote_service.list_quotes() == []

    def test_unknown_pool(self, quote_service, as_test_org):
        with pytest.raises(NotFoundError) as exc:
            quote_service.create(QuoteCreate(pool_id=uuid4(), items=ITEMS))

        assert exc.value.code == "POOL_NOT_FOUND"

    def test_empty_items(self, quote_service, pool):
        with pytest.raises(ValidationFailedError):
            quote_service.create(QuoteCreate(pool_id=pool["pool_id"], items=[]))

    def test_audited(self, quote_service, services, pool, test_actor_id):
        quote = quote_service.create(QuoteCreate(pool_id=pool["pool_id"], items=ITEMS))

        history = services["audit"].get_entity_history("quote", quote.id)
        assert history[0]["action"] == "create"
        assert history[0]["actor_id"] == test_actor_id


class TestQuoteLifecycle:

    @pytest.fixture
    def quote(self, quote_service, pool, make_issue):
        issue_id = make_issue(pool["pool_id"])
        return quote_service.create(QuoteCreate(pool_id=pool["pool_id"], issue_id=issue_id, items=ITEMS))

    def test_update_recomputes_totals(self, quote_service, quote):
        updated = quote_service.update(quote.id, QuoteUpdate(
            items=[{"label": "Pump seal", "qty": 1, "unit_price_cents": 40000}]
        ))

        assert updated.total_cents == 40000
        assert updated.tax_cents == 0

    def test_update_with_nothing(self, quote_service, quote):
        with pytest.raises(ValidationFailedError):
            quote_service.update(quote.id, QuoteUpdate())

    def test_approve_schedules_issue(self, quote_service, quote, issue_status, test_actor_id):
        approved = quote_service.approve(quote.id)

        assert approved.status == QuoteStatus.APPROVED
        assert approved.approved_by == test_actor_id
        assert approved.approved_at is not None
        assert issue_status(quote.issue_id) == "scheduled"

    def test_reject_reopens_issue(self, quote_service, quote, issue_status):
        rejected = quote_service.reject(quote.id, reason="Client will do it themselves")

        assert rejected.status == QuoteStatus.REJECTED
        assert rejected.rejection_reason == "Client will do it themselves"
        assert issue_status(quote.issue_id) == "open"

    def test_terminal_states_are_final(self, quote_service, quote):
        quote_service.approve(quote.id)

        with pytest.raises(InvalidStateError):
            quote_service.approve(quote.id)
        with pytest.raises(InvalidStateError):
            quote_service.reject(quote.id)
        with pytest.raises(InvalidStateError):
            quote_service.update(quote.id, QuoteUpdate(notes="too late"))

    def test_unknown_quote(self, quote_service, as_test_org):
        with pytest.raises(NotFoundError):
            quote_service.approve(uuid4())


class TestQuoteIsolation:

    def test_other_org_cannot_see_quote(self, quote_service, pool, test_org_b_id):
        from utils.org_context import org_context

        quote = quote_service.create(QuoteCreate(pool_id=pool["pool_id"], items=ITEMS))

        with org_context(test_org_b_id):
            assert quote_service.get_by_id(quote.id) is None
            assert quote_service.list_quotes() == []
            with pytest.raises(NotFoundError):
                quote_service.approve(quote.id)
