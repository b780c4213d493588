"""Payroll proration calculators."""

from payroll_service.calculators.proration import MonthlyProrationCalculator, prorate
from payroll_service.calculators.types import PayPeriod, ProrationResult, ProrationSegment

__all__ = [
    "MonthlyProrationCalculator",
    "PayPeriod",
    "ProrationResult",
    "ProrationSegment",
    "prorate",
]
