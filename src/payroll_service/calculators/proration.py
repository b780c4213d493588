"""Monthly proration across compensation interval boundaries."""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from payroll_service.calculators.types import (
    PayPeriod,
    ProrationResult,
    ProrationSegment,
    to_cents,
)
from payroll_service.errors import NoApplicableCompensationError
from payroll_service.models import CompensationInterval
from payroll_service.services.compensation_store import CompensationStore
from payroll_service.validation import parse_month


class MonthlyProrationCalculator:
    """Computes a month's pay as a day-weighted blend of interval rates.

    Each interval contributes ``salary / days_in_month`` per day it covers
    within the month, so a mid-month change pays both rates in proportion.
    Totals are rounded to cents once, with ROUND_HALF_UP.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.store = CompensationStore(session)

    async def calculate(
        self, employee_id: int, month: date | str, org_id: int | None = None
    ) -> ProrationResult:
        """Prorate one employee's compensation for the month containing ``month``.

        With ``org_id``, only intervals recorded under that org count.

        Raises:
            NoApplicableCompensationError: if no interval overlaps the month
        """
        month_start = parse_month(month)
        period = PayPeriod.for_month(month_start)

        intervals = await self.store.find_overlapping(
            employee_id, period.start, period.end, org_id=org_id
        )
        if not intervals:
            raise NoApplicableCompensationError(employee_id, month_start)

        return prorate(employee_id, period, intervals)


def prorate(
    employee_id: int,
    period: PayPeriod,
    intervals: list[CompensationInterval],
) -> ProrationResult:
    """Blend interval rates over a pay period (pure function)."""
    days_in_month = period.days
    total_base = Decimal("0")
    total_perf = Decimal("0")
    days_covered = 0
    segments: list[ProrationSegment] = []

    for interval in intervals:
        days = interval.days_in_range(period.start, period.end)
        if days <= 0:
            continue

        base_salary = Decimal(interval.base_salary)
        perf_salary = Decimal(interval.perf_salary)
        base_portion = base_salary / days_in_month * days
        perf_portion = perf_salary / days_in_month * days

        total_base += base_portion
        total_perf += perf_portion
        days_covered += days

        covered_from = max(period.start, interval.valid_from)
        segments.append(
            ProrationSegment(
                comp_id=interval.comp_id,
                covered_from=covered_from,
                covered_to=covered_from + timedelta(days=days - 1),
                days=days,
                base_salary=base_salary,
                perf_salary=perf_salary,
                base_portion=base_portion,
                perf_portion=perf_portion,
            )
        )

    return ProrationResult(
        employee_id=employee_id,
        month=period.start,
        days_in_month=days_in_month,
        days_covered=days_covered,
        base_amount=to_cents(total_base),
        perf_amount=to_cents(total_perf),
        segments=segments,
    )
