"""Line items and totals in integer minor currency units.

All money is integer cents (or pesewas, kobo, ...). Tax percentages are
Decimal so 12.5% stays exact. No float ever touches an amount.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterable

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from core.exceptions import ValidationFailedError

_HUNDRED = Decimal(100)


class LineItem(BaseModel):
    """One priced line on a quote, invoice or credit note."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    label: str = Field(..., min_length=1, max_length=500)
    qty: int = Field(..., gt=0)
    unit_price_cents: int = Field(..., ge=0)
    tax_pct: Decimal = Field(Decimal(0), ge=0, le=100)
    sku: str | None = Field(None, max_length=100)

    @property
    def line_total_cents(self) -> int:
        return self.qty * self.unit_price_cents

    @property
    def line_tax_cents(self) -> int:
        """Tax on the whole line, rounded half-up once."""
        raw = Decimal(self.line_total_cents) * self.tax_pct / _HUNDRED
        return int(raw.quantize(Decimal(1), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class Totals:
    subtotal_cents: int
    tax_cents: int
    total_cents: int


def parse_line_items(raw: Iterable[Any]) -> list[LineItem]:
    """
    Validate line items from request bodies or stored JSONB.

    Raises:
        ValidationFailedError: If the list is empty or any item is malformed
    """
    items = []
    for index, value in enumerate(raw or []):
        if isinstance(value, LineItem):
            items.append(value)
            continue
        try:
            items.append(LineItem.model_validate(value))
        except ValidationError as e:
            raise ValidationFailedError(f"Line item {index} is invalid: {e.errors()}") from e

    if not items:
        raise ValidationFailedError("At least one line item is required")

    return items


def compute_totals(items: Iterable[Any]) -> Totals:
    """
    Compute subtotal, tax and total for a list of line items.

    Each line is taxed independently and rounded before summing, so the
    result does not depend on item order.
    """
    parsed = parse_line_items(items)

    subtotal_cents = sum(item.line_total_cents for item in parsed)
    tax_cents = sum(item.line_tax_cents for item in parsed)

    return Totals(
        subtotal_cents=subtotal_cents,
        tax_cents=tax_cents,
        total_cents=subtotal_cents + tax_cents,
    )


def dump_line_items(items: Iterable[LineItem]) -> list[dict]:
    """JSON-ready form for JSONB columns and event payloads."""
    return [item.model_dump(mode="json", exclude_none=True) for item in items]


def format_cents(amount_cents: int, currency: str) -> str:
    """Human-readable amount for notifications, e.g. 'GHS 1,250.00'."""
    sign = "-" if amount_cents < 0 else ""
    whole, minor = divmod(abs(amount_cents), 100)
    return f"{currency} {sign}{whole:,}.{minor:02d}"
