"""Type definitions for the proration pipeline."""

from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

CENT = Decimal("0.01")


def to_cents(amount: Decimal) -> Decimal:
    """Round a currency amount to cents, half away from zero."""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PayPeriod:
    """Calendar month boundaries."""

    start: date
    end: date

    @classmethod
    def for_month(cls, month: date) -> PayPeriod:
        days = calendar.monthrange(month.year, month.month)[1]
        return cls(
            start=month.replace(day=1),
            end=month.replace(day=days),
        )

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1


@dataclass
class ProrationSegment:
    """Contribution of one compensation interval to a month."""

    comp_id: int
    covered_from: date
    covered_to: date  # inclusive
    days: int
    base_salary: Decimal
    perf_salary: Decimal
    base_portion: Decimal  # unrounded
    perf_portion: Decimal  # unrounded

    def to_dict(self) -> dict[str, Any]:
        return {
            "comp_id": self.comp_id,
            "covered_from": self.covered_from.isoformat(),
            "covered_to": self.covered_to.isoformat(),
            "days": self.days,
            "base_salary": str(self.base_salary),
            "perf_salary": str(self.perf_salary),
            "base_portion": str(self.base_portion),
            "perf_portion": str(self.perf_portion),
        }


@dataclass
class ProrationResult:
    """Day-weighted pay for one employee and one month."""

    employee_id: int
    month: date
    days_in_month: int
    days_covered: int
    base_amount: Decimal
    perf_amount: Decimal
    segments: list[ProrationSegment] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe representation (money as strings)."""
        return {
            "employee_id": self.employee_id,
            "month": self.month.isoformat(),
            "days_in_month": self.days_in_month,
            "days_covered": self.days_covered,
            "base_amount": str(self.base_amount),
            "perf_amount": str(self.perf_amount),
            "segments": [s.to_dict() for s in self.segments],
        }
