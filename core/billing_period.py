"""Billing periods for recurring service plans."""

from dataclasses import dataclass
from datetime import date, datetime, timedelta

from core.exceptions import ValidationFailedError
from utils.timezone import start_of_day_utc, to_utc


@dataclass(frozen=True)
class BillingPeriod:
    """
    Inclusive calendar-date range [start, end].

    Timestamps match if they fall on or after midnight UTC of `start` and
    before midnight UTC of the day after `end`.
    """

    start: date
    end: date

    def __post_init__(self):
        if self.end < self.start:
            raise ValidationFailedError(
                f"Billing period end {self.end} is before start {self.start}"
            )

    @property
    def starts_at(self) -> datetime:
        return start_of_day_utc(self.start)

    @property
    def ends_before(self) -> datetime:
        """Exclusive upper bound for timestamp comparisons."""
        return start_of_day_utc(self.end + timedelta(days=1))

    def contains(self, moment: datetime) -> bool:
        moment = to_utc(moment)
        return self.starts_at <= moment < self.ends_before

    def label(self) -> str:
        return f"{self.start:%d %b %Y} to {self.end:%d %b %Y}"

    @classmethod
    def previous_month(cls, today: date) -> "BillingPeriod":
        """The full calendar month before the one containing `today`."""
        last_day = today.replace(day=1) - timedelta(days=1)
        return cls(start=last_day.replace(day=1), end=last_day)
