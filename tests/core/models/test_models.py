"""Tests for core domain models - custom validators and derived properties."""

import pytest
from pydantic import ValidationError
from uuid import uuid4


class TestCreditNoteCreate:
    """Tests for CreditNoteCreate custom validators."""

    ITEMS = [{"label": "Goodwill", "qty": 1, "unit_price_cents": 5000}]

    def test_requires_client_or_invoice(self):
        """Rejects when neither target is given."""
        from core.models import CreditNoteCreate

        with pytest.raises(ValidationError, match="client_id or invoice_id"):
            CreditNoteCreate(items=self.ITEMS)

    def test_accepts_client_only(self):
        from core.models import CreditNoteCreate

        note = CreditNoteCreate(client_id=uuid4(), items=self.ITEMS)
        assert note.apply_now is False

    def test_apply_now_requires_invoice(self):
        """A client-only note cannot be applied at creation."""
        from core.models import CreditNoteCreate

        with pytest.raises(ValidationError, match="apply_now requires invoice_id"):
            CreditNoteCreate(client_id=uuid4(), items=self.ITEMS, apply_now=True)

    def test_apply_now_with_invoice(self):
        from core.models import CreditNoteCreate

        note = CreditNoteCreate(invoice_id=uuid4(), items=self.ITEMS, apply_now=True)
        assert note.apply_now is True


class TestGatewayEvent:
    """Tests for the webhook body model."""

    def _body(self, **data_overrides):
        data = {
            "reference": "T_1029384",
            "amount": 30000,
            "currency": "GHS",
            "channel": "mobile_money",
            "metadata": {"invoiceId": str(uuid4()), "orgId": str(uuid4())},
        }
        data.update(data_overrides)
        return {"event": "charge.success", "data": data}

    def test_parses_camel_case_metadata(self):
        from core.models import GatewayEvent

        body = self._body()
        event = GatewayEvent.model_validate(body)

        assert str(event.data.metadata.invoice_id) == body["data"]["metadata"]["invoiceId"]
        assert str(event.data.metadata.org_id) == body["data"]["metadata"]["orgId"]

    def test_keeps_unknown_fields(self):
        from core.models import GatewayEvent

        event = GatewayEvent.model_validate(self._body(fees=150))
        assert event.data.model_extra["fees"] == 150

    def test_rejects_non_positive_amount(self):
        from core.models import GatewayEvent

        with pytest.raises(ValidationError):
            GatewayEvent.model_validate(self._body(amount=0))

    def test_rejects_missing_metadata(self):
        from core.models import GatewayEvent

        body = self._body()
        del body["data"]["metadata"]
        with pytest.raises(ValidationError):
            GatewayEvent.model_validate(body)


class TestPaymentInputs:

    def test_manual_payment_amount_must_be_positive(self):
        from core.models import ManualPaymentCreate, PaymentMethod

        with pytest.raises(ValidationError):
            ManualPaymentCreate(invoice_id=uuid4(), method=PaymentMethod.CASH, amount_cents=0)

    def test_manual_payment_unknown_method(self):
        from core.models import ManualPaymentCreate

        with pytest.raises(ValidationError):
            ManualPaymentCreate(invoice_id=uuid4(), method="barter", amount_cents=100)

    def test_refund_defaults_to_full(self):
        from core.models import RefundCreate

        assert RefundCreate().amount_cents is None

    def test_refund_amount_must_be_positive(self):
        from core.models import RefundCreate

        with pytest.raises(ValidationError):
            RefundCreate(amount_cents=-5)


class TestInvoice:
    """Tests for Invoice derived properties."""

    def test_balance(self, invoice_factory):
        invoice = invoice_factory(paid_cents=20000, credited_cents=3000)
        assert invoice.balance_cents == 7000

    def test_balance_never_negative(self, invoice_factory):
        """An edit below the paid amount leaves zero, not a negative balance."""
        invoice = invoice_factory(total_cents=10000, paid_cents=30000)
        assert invoice.balance_cents == 0

    def test_editable_states(self, invoice_factory):
        from core.models import InvoiceStatus

        assert invoice_factory(status=InvoiceStatus.DRAFT).is_editable
        assert invoice_factory(status=InvoiceStatus.SENT).is_editable
        assert not invoice_factory(status=InvoiceStatus.PAID).is_editable
        assert not invoice_factory(status=InvoiceStatus.CANCELLED).is_editable

    def test_is_paid(self, invoice_factory):
        from core.models import InvoiceStatus

        assert invoice_factory(status=InvoiceStatus.PAID).is_paid
        assert not invoice_factory().is_paid

    def test_items_validated_from_stored_json(self, invoice_factory):
        invoice = invoice_factory(items=[{"label": "Visit", "qty": 2, "unit_price_cents": 15000}])
        assert invoice.items[0].line_total_cents == 30000


class TestQuoteAndPlan:

    def test_quote_is_pending(self, quote_factory):
        from core.models import QuoteStatus

        assert quote_factory().is_pending
        assert not quote_factory(status=QuoteStatus.APPROVED).is_pending

    def test_quote_create_rejects_bad_currency(self):
        from core.models import QuoteCreate

        with pytest.raises(ValidationError):
            QuoteCreate(pool_id=uuid4(), currency="CEDI", items=[])

    def test_service_plan_is_active(self):
        from core.models import ServicePlan, ServicePlanStatus

        plan = ServicePlan(
            id=uuid4(), org_id=uuid4(), pool_id=uuid4(), client_id=uuid4(),
            price_cents=15000, tax_pct="0", currency="GHS", status=ServicePlanStatus.PAUSED,
        )
        assert not plan.is_active


class TestBatchResult:

    def test_defaults_empty(self):
        from core.models import BatchResult

        result = BatchResult()
        assert result.generated == [] and result.skipped == [] and result.errors == []
        assert result.stopped is False
