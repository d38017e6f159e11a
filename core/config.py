"""Billing configuration."""

from pydantic import BaseModel, Field


class BillingConfig(BaseModel):
    """
    Billing configuration.

    Durations are in their natural units (days for due dates, seconds for
    locks, milliseconds for statement timeouts).
    """

    default_currency: str = Field(
        default="GHS",
        description="ISO 4217 code used when a request does not name one",
        min_length=3,
        max_length=3,
    )

    # Due dates
    invoice_due_days: int = Field(
        default=30,
        description="Days after sending before a manual invoice falls due",
        ge=0,
        le=365,
    )
    auto_invoice_due_days: int = Field(
        default=7,
        description="Days after the billing date before an auto-generated invoice falls due",
        ge=0,
        le=365,
    )

    # Infrastructure
    statement_timeout_ms: int = Field(
        default=5000,
        description="PostgreSQL statement_timeout applied to every connection",
        ge=100,
        le=60000,
    )
    batch_lock_ttl_seconds: int = Field(
        default=3600,
        description="Lifetime of the monthly billing job lock",
        ge=60,
    )

    # Payment gateway
    gateway_provider: str = Field(
        default="paystack",
        description="Provider name recorded on gateway-originated payments",
    )
