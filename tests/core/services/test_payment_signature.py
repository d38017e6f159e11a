"""Tests for gateway webhook signature verification."""

import hashlib
import hmac
from unittest.mock import Mock

import pytest

from core.exceptions import InvalidSignatureError
from core.services.payment_service import PaymentService, verify_signature

SECRET = "sk_test_secret"
BODY = b'{"event":"charge.success","data":{"reference":"T_1","amount":30000}}'


def _sign(body: bytes, secret: str = SECRET) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha512).hexdigest()


class TestVerifySignature:

    def test_valid(self):
        verify_signature(SECRET, BODY, _sign(BODY))

    def test_uppercase_hex_accepted(self):
        verify_signature(SECRET, BODY, _sign(BODY).upper())

    def test_missing(self):
        with pytest.raises(InvalidSignatureError, match="Missing"):
            verify_signature(SECRET, BODY, None)

    def test_wrong_secret(self):
        with pytest.raises(InvalidSignatureError):
            verify_signature(SECRET, BODY, _sign(BODY, "other"))

    def test_tampered_body(self):
        """Signature is over the raw bytes; re-serialised JSON does not verify."""
        with pytest.raises(InvalidSignatureError):
            verify_signature(SECRET, BODY.replace(b"30000", b"30001"), _sign(BODY))


class TestPaymentServiceSecret:

    def test_requires_secret(self):
        with pytest.raises(ValueError, match="webhook_secret"):
            PaymentService(Mock(), Mock(), Mock(), Mock(), webhook_secret="")

    def test_verifies_with_configured_secret(self):
        service = PaymentService(Mock(), Mock(), Mock(), Mock(), webhook_secret=SECRET)

        service.verify_signature(BODY, _sign(BODY))
        with pytest.raises(InvalidSignatureError):
            service.verify_signature(BODY, "00")

    @pytest.mark.parametrize("channel, method", [
        ("mobile_money", "mobile_money"),
        ("bank_transfer", "bank_transfer"),
        ("bank", "bank_transfer"),
        ("card", "card"),
        (None, "card"),
    ])
    def test_channel_to_method(self, channel, method):
        assert PaymentService._method_for(channel) == method


class TestIgnoredEvents:

    def test_non_charge_event_acknowledged_without_db(self):
        from core.models import GatewayEvent

        postgres = Mock()
        service = PaymentService(postgres, Mock(), Mock(), Mock(), webhook_secret=SECRET)
        event = GatewayEvent.model_validate({
            "event": "transfer.success",
            "data": {
                "reference": "TRF_1",
                "amount": 500,
                "metadata": {
                    "invoiceId": "00000000-0000-0000-0000-000000000010",
                    "orgId": "00000000-0000-0000-0000-0000000000a1",
                },
            },
        })

        result = service.apply_gateway_event(event)

        assert result.processed is False
        assert result.duplicate is False
        postgres.transaction.assert_not_called()
