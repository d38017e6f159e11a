"""
Payment ledger.

Two entry points record money against an invoice: manual entry by staff
and gateway webhooks. Both insert a completed payment and reconcile the
invoice in one transaction, holding the invoice row lock throughout.

Gateway deliveries are at-least-once. The (org_id, provider_ref) unique
index makes the insert itself the duplicate check, so two concurrent
deliveries of the same event produce exactly one payment.
"""

import hashlib
import hmac
import logging
from uuid import UUID, uuid4

from psycopg2.extras import Json

from clients.postgres_client import PostgresClient
from core.audit import AuditLogger, AuditAction
from core.config import BillingConfig
from core.event_bus import EventBus
from core.events import InvoicePaid, PaymentRecorded
from core.exceptions import (
    ExceedsBalanceError,
    InvalidSignatureError,
    InvalidStateError,
)
from core.models import (
    GatewayEvent,
    GatewayEventResult,
    Invoice,
    InvoiceStatus,
    ManualPaymentCreate,
    Payment,
    PaymentMethod,
    PaymentStatus,
)
from core.services.reconciliation import Reconciler, ReconcileOutcome
from utils.org_context import get_current_org_id, org_context
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

CHARGE_SUCCESS = "charge.success"

_PAYABLE_STATUSES = (InvoiceStatus.DRAFT, InvoiceStatus.SENT)


def verify_signature(secret: str, raw_body: bytes, signature: str | None) -> None:
    """
    Check a gateway webhook signature: hex HMAC-SHA512 of the raw body.

    Raises:
        InvalidSignatureError: If the signature is missing or does not match
    """
    if not signature:
        raise InvalidSignatureError("Missing webhook signature")

    expected = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()
    if not hmac.compare_digest(expected, signature.strip().lower()):
        raise InvalidSignatureError("Webhook signature does not match")


class PaymentService:
    """Service for recording payments and reconciling invoices."""

    def __init__(
        self,
        postgres: PostgresClient,
        audit: AuditLogger,
        event_bus: EventBus,
        reconciler: Reconciler,
        webhook_secret: str,
        config: BillingConfig | None = None,
    ):
        if not webhook_secret:
            raise ValueError("webhook_secret is required")

        self.postgres = postgres
        self.audit = audit
        self.event_bus = event_bus
        self.reconciler = reconciler
        self.webhook_secret = webhook_secret
        self.config = config or BillingConfig()

    def verify_signature(self, raw_body: bytes, signature: str | None) -> None:
        """Verify a webhook delivery against the configured gateway secret."""
        verify_signature(self.webhook_secret, raw_body, signature)

    def record_manual_payment(self, data: ManualPaymentCreate) -> Payment:
        """
        Record money received outside the gateway.

        Raises:
            NotFoundError: If invoice not found
            InvalidStateError: If the invoice is paid or cancelled
            ExceedsBalanceError: If the amount is more than the outstanding balance
        """
        with self.postgres.transaction() as tx:
            invoice = self.reconciler.lock_invoice(tx, data.invoice_id)
            self._require_payable(invoice)

            if data.amount_cents > invoice.balance_cents:
                raise ExceedsBalanceError(
                    f"Payment of {data.amount_cents} exceeds balance {invoice.balance_cents} "
                    f"on invoice {invoice.invoice_number}"
                )

            row = tx.execute_single(
                """
                INSERT INTO payments (
                    id, org_id, invoice_id, method, provider, provider_ref, reference,
                    amount_cents, currency, status, processed_at, metadata, created_at
                ) VALUES (
                    %s, %s, %s, %s, NULL, NULL, %s,
                    %s, %s, %s, %s, %s, %s
                )
                RETURNING *
                """,
                (
                    uuid4(), invoice.org_id, invoice.id, data.method.value, data.reference,
                    data.amount_cents, invoice.currency, PaymentStatus.COMPLETED.value,
                    now_utc(), Json({}), now_utc()
                )
            )
            payment = Payment.model_validate(row)

            self.audit.log_change(
                entity_type="payment",
                entity_id=payment.id,
                action=AuditAction.CREATE,
                changes={"created": payment.model_dump(mode="json")},
                tx=tx,
            )

            outcome = self.reconciler.reconcile(tx, invoice.id)

        logger.info(
            f"Manual {payment.method.value} payment {payment.id} of {payment.amount_cents} "
            f"recorded on invoice {invoice.invoice_number}"
        )
        self._publish(payment, outcome)

        return payment

    def apply_gateway_event(self, event: GatewayEvent) -> GatewayEventResult:
        """
        Apply a verified gateway webhook.

        Runs under the org named in the event metadata. Only charge.success
        moves money; other events are acknowledged and ignored. A repeat
        delivery of the same reference is a successful no-op.

        Raises:
            NotFoundError: If the invoice named in the metadata does not exist
        """
        if event.event != CHARGE_SUCCESS:
            logger.info(f"Ignoring gateway event {event.event} ({event.data.reference})")
            return GatewayEventResult(processed=False, message=f"Event {event.event} ignored")

        with org_context(event.data.metadata.org_id):
            return self._apply_charge(event)

    def _apply_charge(self, event: GatewayEvent) -> GatewayEventResult:
        data = event.data
        provider = self.config.gateway_provider

        with self.postgres.transaction() as tx:
            invoice = self.reconciler.lock_invoice(tx, data.metadata.invoice_id)

            row = tx.execute_single(
                """
                INSERT INTO payments (
                    id, org_id, invoice_id, method, provider, provider_ref, reference,
                    amount_cents, currency, status, processed_at, metadata, created_at
                ) VALUES (
                    %s, %s, %s, %s, %s, %s, NULL,
                    %s, %s, %s, %s, %s, %s
                )
                ON CONFLICT (org_id, provider_ref) WHERE provider_ref IS NOT NULL DO NOTHING
                RETURNING *
                """,
                (
                    uuid4(), invoice.org_id, invoice.id, self._method_for(data.channel),
                    provider, data.reference,
                    data.amount, data.currency or invoice.currency, PaymentStatus.COMPLETED.value,
                    now_utc(), Json(data.model_dump(mode="json", by_alias=True)), now_utc()
                )
            )

            if row is None:
                logger.info(f"Duplicate gateway delivery for {data.reference}; already recorded")
                return GatewayEventResult(
                    processed=True,
                    duplicate=True,
                    message=f"Reference {data.reference} already processed",
                )

            payment = Payment.model_validate(row)

            if invoice.status == InvoiceStatus.CANCELLED:
                logger.warning(
                    f"Gateway charge {data.reference} received for cancelled invoice "
                    f"{invoice.invoice_number}; recording anyway"
                )
            elif data.amount > invoice.balance_cents:
                # Money already moved at the gateway; record it and let reconcile clamp
                logger.warning(
                    f"Gateway charge {data.reference} of {data.amount} exceeds balance "
                    f"{invoice.balance_cents} on invoice {invoice.invoice_number}"
                )

            self.audit.log_change(
                entity_type="payment",
                entity_id=payment.id,
                action=AuditAction.CREATE,
                changes={"created": payment.model_dump(mode="json")},
                tx=tx,
            )

            outcome = self.reconciler.reconcile(tx, invoice.id)

        logger.info(
            f"Gateway payment {data.reference} of {payment.amount_cents} "
            f"recorded on invoice {invoice.invoice_number}"
        )
        self._publish(payment, outcome)

        return GatewayEventResult(processed=True, payment=payment, message="Payment recorded")

    def reconcile(self, invoice_id: UUID) -> Invoice:
        """
        Recompute an invoice's paid state on demand.

        Raises:
            NotFoundError: If invoice not found
        """
        with self.postgres.transaction() as tx:
            self.reconciler.lock_invoice(tx, invoice_id)
            outcome = self.reconciler.reconcile(tx, invoice_id)

        if outcome.became_paid:
            self.event_bus.publish(InvoicePaid.create(invoice=outcome.invoice))

        return outcome.invoice

    def get_by_id(self, payment_id: UUID) -> Payment | None:
        row = self.postgres.execute_single(
            "SELECT * FROM payments WHERE id = %s AND org_id = %s",
            (payment_id, get_current_org_id())
        )
        if row is None:
            return None
        return Payment.model_validate(row)

    def list_payments(
        self,
        invoice_id: UUID | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Payment]:
        """List payments, newest first."""
        conditions = ["org_id = %s"]
        params: list = [get_current_org_id()]

        if invoice_id is not None:
            conditions.append("invoice_id = %s")
            params.append(invoice_id)

        params.extend([limit, offset])
        rows = self.postgres.execute(
            f"""
            SELECT * FROM payments
            WHERE {" AND ".join(conditions)}
            ORDER BY processed_at DESC
            LIMIT %s OFFSET %s
            """,
            tuple(params)
        )
        return [Payment.model_validate(row) for row in rows]

    @staticmethod
    def _require_payable(invoice: Invoice) -> None:
        if invoice.status not in _PAYABLE_STATUSES:
            raise InvalidStateError(
                f"Cannot record payment on invoice {invoice.invoice_number}: status is {invoice.status.value}"
            )

    @staticmethod
    def _method_for(channel: str | None) -> str:
        """Map a gateway channel name onto a payment method."""
        if channel == "mobile_money":
            return PaymentMethod.MOBILE_MONEY.value
        if channel == "bank_transfer" or channel == "bank":
            return PaymentMethod.BANK_TRANSFER.value
        return PaymentMethod.CARD.value

    def _publish(self, payment: Payment, outcome: ReconcileOutcome) -> None:
        self.event_bus.publish(PaymentRecorded.create(payment=payment, invoice=outcome.invoice))
        if outcome.became_paid:
            self.event_bus.publish(InvoicePaid.create(invoice=outcome.invoice))
