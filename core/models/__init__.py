"""Billing domain models."""

from core.models.quote import Quote, QuoteCreate, QuoteUpdate, QuoteStatus
from core.models.payment import (
    Payment, PaymentStatus, PaymentMethod, ManualPaymentCreate,
    GatewayEvent, GatewayEventData, GatewayEventMetadata, GatewayEventResult,
    Refund, RefundCreate,
)
from core.models.credit_note import CreditNote, CreditNoteCreate, CreditNoteApplication
from core.models.receipt import Receipt
from core.models.invoice import (
    Invoice, InvoiceCreate, InvoiceUpdate, InvoiceStatus,
    InvoiceUpdateResult, InvoiceDetail, OVERPAID_AFTER_EDIT,
)
from core.models.service_plan import ServicePlan, ServicePlanStatus, Visit
from core.models.billing_run import (
    BatchResult, GeneratedInvoice, SkippedPlan, PlanError, MonthlyGenerateRequest,
)

__all__ = [
    # Quote
    "Quote", "QuoteCreate", "QuoteUpdate", "QuoteStatus",
    # Payment
    "Payment", "PaymentStatus", "PaymentMethod", "ManualPaymentCreate",
    "GatewayEvent", "GatewayEventData", "GatewayEventMetadata", "GatewayEventResult",
    # Refund
    "Refund", "RefundCreate",
    # CreditNote
    "CreditNote", "CreditNoteCreate", "CreditNoteApplication",
    # Receipt
    "Receipt",
    # Invoice
    "Invoice", "InvoiceCreate", "InvoiceUpdate", "InvoiceStatus",
    "InvoiceUpdateResult", "InvoiceDetail", "OVERPAID_AFTER_EDIT",
    # ServicePlan
    "ServicePlan", "ServicePlanStatus", "Visit",
    # Billing runs
    "BatchResult", "GeneratedInvoice", "SkippedPlan", "PlanError", "MonthlyGenerateRequest",
]
