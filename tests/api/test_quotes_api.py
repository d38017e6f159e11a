"""Tests for quote routes."""

from uuid import uuid4

from core.exceptions import InvalidStateError
from core.models import QuoteStatus


ITEMS = [{"label": "Pump seal", "qty": 1, "unit_price_cents": 45000}]


class TestCreateQuote:

    def test_created(self, client, services, quote_factory):
        quote = quote_factory()
        services["quote"].create.return_value = quote

        response = client.post("/api/quotes", json={"pool_id": str(quote.pool_id), "items": ITEMS})

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["data"]["total_cents"] == 45000
        assert body["data"]["status"] == "pending"
        sent = services["quote"].create.call_args[0][0]
        assert sent.items[0].unit_price_cents == 45000

    def test_missing_pool_is_422(self, client, services):
        response = client.post("/api/quotes", json={"items": ITEMS})

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"
        services["quote"].create.assert_not_called()

    def test_requires_session(self, unauthed_client, services):
        response = unauthed_client.post("/api/quotes", json={"pool_id": str(uuid4()), "items": ITEMS})

        assert response.status_code == 401
        services["quote"].create.assert_not_called()


class TestReadQuotes:

    def test_get(self, client, services, quote_factory):
        quote = quote_factory()
        services["quote"].get_by_id.return_value = quote

        response = client.get(f"/api/quotes/{quote.id}")

        assert response.status_code == 200
        assert response.json()["data"]["id"] == str(quote.id)

    def test_get_missing(self, client, services):
        services["quote"].get_by_id.return_value = None

        response = client.get(f"/api/quotes/{uuid4()}")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "QUOTE_NOT_FOUND"

    def test_list_passes_filters(self, client, services, quote_factory):
        services["quote"].list_quotes.return_value = [quote_factory(), quote_factory()]
        pool_id = uuid4()

        response = client.get(f"/api/quotes?pool_id={pool_id}&status=pending&limit=10")

        assert len(response.json()["data"]) == 2
        kwargs = services["quote"].list_quotes.call_args.kwargs
        assert kwargs["pool_id"] == pool_id
        assert kwargs["status"] == QuoteStatus.PENDING
        assert kwargs["limit"] == 10


class TestQuoteLifecycle:

    def test_update(self, client, services, quote_factory):
        services["quote"].update.return_value = quote_factory(notes="Seal and gasket")
        quote_id = uuid4()

        response = client.patch(f"/api/quotes/{quote_id}", json={"notes": "Seal and gasket"})

        assert response.status_code == 200
        assert services["quote"].update.call_args[0][0] == quote_id

    def test_approve(self, client, services, quote_factory):
        services["quote"].approve.return_value = quote_factory(status=QuoteStatus.APPROVED)

        response = client.post(f"/api/quotes/{uuid4()}/approve")

        assert response.json()["data"]["status"] == "approved"

    def test_approve_twice_rejected(self, client, services):
        services["quote"].approve.side_effect = InvalidStateError("Quote is approved")

        response = client.post(f"/api/quotes/{uuid4()}/approve")

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_STATE"

    def test_reject_with_reason(self, client, services, quote_factory):
        services["quote"].reject.return_value = quote_factory(
            status=QuoteStatus.REJECTED, rejection_reason="Too expensive"
        )

        response = client.post(f"/api/quotes/{uuid4()}/reject", json={"reason": "Too expensive"})

        assert response.status_code == 200
        assert services["quote"].reject.call_args.kwargs["reason"] == "Too expensive"

    def test_reject_without_body(self, client, services, quote_factory):
        services["quote"].reject.return_value = quote_factory(status=QuoteStatus.REJECTED)

        response = client.post(f"/api/quotes/{uuid4()}/reject")

        assert response.status_code == 200
        assert services["quote"].reject.call_args.kwargs["reason"] is None
