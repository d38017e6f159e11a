"""Tests for the payment gateway webhook route."""

import hashlib
import hmac
import json
from uuid import uuid4

import pytest

from core.exceptions import NotFoundError
from core.models import GatewayEventResult

URL = "/api/webhooks/payment-gateway"


@pytest.fixture
def post_signed(unauthed_client, webhook_secret):
    """POST a raw body with a valid signature; no session cookie."""

    def _post(payload, secret: str | None = None):
        raw = payload if isinstance(payload, bytes) else json.dumps(payload).encode("utf-8")
        signature = hmac.new((secret or webhook_secret).encode("utf-8"), raw, hashlib.sha512).hexdigest()
        return unauthed_client.post(
            URL, content=raw,
            headers={"x-paystack-signature": signature, "content-type": "application/json"},
        )

    return _post


def _charge(reference="T_583920", amount=30000, event="charge.success"):
    return {
        "event": event,
        "data": {
            "reference": reference,
            "amount": amount,
            "currency": "GHS",
            "channel": "mobile_money",
            "metadata": {"invoiceId": str(uuid4()), "orgId": str(uuid4())},
        },
    }


class TestSignature:

    def test_missing_signature(self, unauthed_client, services):
        response = unauthed_client.post(URL, json=_charge())

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "INVALID_SIGNATURE"
        services["payment"].apply_gateway_event.assert_not_called()

    def test_wrong_secret(self, post_signed, services):
        response = post_signed(_charge(), secret="not-the-secret")

        assert response.status_code == 401
        services["payment"].apply_gateway_event.assert_not_called()

    def test_no_session_needed(self, post_signed, services, mock_session_manager):
        services["payment"].apply_gateway_event.return_value = GatewayEventResult(
            processed=True, message="Payment recorded"
        )

        response = post_signed(_charge())

        assert response.status_code == 200
        mock_session_manager.validate_session.assert_not_called()


class TestCharge:

    def test_recorded(self, post_signed, services):
        services["payment"].apply_gateway_event.return_value = GatewayEventResult(
            processed=True, message="Payment recorded"
        )
        payload = _charge(reference="T_1", amount=20000)

        response = post_signed(payload)

        assert response.json()["data"] == {
            "ok": True, "processed": True, "duplicate": False, "message": "Payment recorded",
        }
        event = services["payment"].apply_gateway_event.call_args[0][0]
        assert event.data.reference == "T_1"
        assert event.data.amount == 20000
        assert str(event.data.metadata.invoice_id) == payload["data"]["metadata"]["invoiceId"]

    def test_duplicate_delivery_acknowledged(self, post_signed, services):
        services["payment"].apply_gateway_event.return_value = GatewayEventResult(
            processed=True, duplicate=True, message="Reference T_1 already processed"
        )

        response = post_signed(_charge(reference="T_1"))

        assert response.status_code == 200
        assert response.json()["data"]["duplicate"] is True

    def test_malformed_charge(self, post_signed, services):
        payload = _charge()
        del payload["data"]["metadata"]

        response = post_signed(payload)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"
        services["payment"].apply_gateway_event.assert_not_called()

    def test_unknown_invoice(self, post_signed, services):
        services["payment"].apply_gateway_event.side_effect = NotFoundError(
            "Invoice not found", code="INVOICE_NOT_FOUND"
        )

        response = post_signed(_charge())

        assert response.status_code == 404


class TestOtherEvents:

    def test_non_charge_event_acknowledged(self, post_signed, services):
        response = post_signed({"event": "transfer.success", "data": {"reference": "TRF_9"}})

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["ok"] is True
        assert data["processed"] is False
        services["payment"].apply_gateway_event.assert_not_called()

    def test_body_not_json(self, post_signed):
        response = post_signed(b"not json at all")

        assert response.status_code == 400
