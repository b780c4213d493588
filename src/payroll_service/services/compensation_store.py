"""Queries over the compensation interval table."""

from __future__ import annotations

from datetime import date

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_service.models import CompensationInterval


class CompensationStore:
    """Range and point queries over employee compensation timelines.

    All list results are ordered by ``valid_from``.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_touching(
        self, employee_id: int, day: date, for_update: bool = False
    ) -> list[CompensationInterval]:
        """Intervals starting on or before ``day`` that reach ``day``.

        Bounded intervals ending exactly on ``day`` are included so the
        closure algorithm can reject writes that would land on a boundary.
        """
        query = (
            select(CompensationInterval)
            .where(
                CompensationInterval.employee_id == employee_id,
                CompensationInterval.valid_from <= day,
                (
                    CompensationInterval.valid_to.is_(None)
                    | (CompensationInterval.valid_to >= day)
                ),
            )
            .order_by(CompensationInterval.valid_from.desc())
        )
        if for_update:
            query = query.with_for_update()

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def find_covering(
        self, employee_id: int, day: date
    ) -> CompensationInterval | None:
        """The interval in effect on ``day``, if any."""
        result = await self.session.execute(
            select(CompensationInterval)
            .where(
                CompensationInterval.employee_id == employee_id,
                CompensationInterval.valid_from <= day,
                (
                    CompensationInterval.valid_to.is_(None)
                    | (CompensationInterval.valid_to > day)
                ),
            )
            .order_by(CompensationInterval.valid_from.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def find_next_after(
        self, employee_id: int, day: date
    ) -> CompensationInterval | None:
        """The earliest interval starting strictly after ``day``."""
        result = await self.session.execute(
            select(CompensationInterval)
            .where(
                CompensationInterval.employee_id == employee_id,
                CompensationInterval.valid_from > day,
            )
            .order_by(CompensationInterval.valid_from.asc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def find_overlapping(
        self,
        employee_id: int,
        period_start: date,
        period_end: date,
        org_id: int | None = None,
    ) -> list[CompensationInterval]:
        """Intervals intersecting the inclusive range ``[period_start, period_end]``.

        With ``org_id``, intervals recorded under other orgs are left out.
        """
        query = select(CompensationInterval).where(
            CompensationInterval.employee_id == employee_id,
            CompensationInterval.valid_from <= period_end,
            (
                CompensationInterval.valid_to.is_(None)
                | (CompensationInterval.valid_to > period_start)
            ),
        )
        if org_id is not None:
            query = query.where(CompensationInterval.org_id == org_id)

        result = await self.session.execute(
            query.order_by(CompensationInterval.valid_from.asc())
        )
        return list(result.scalars().all())

    async def history(
        self,
        employee_id: int,
        from_date: date | None = None,
        to_date: date | None = None,
        descending: bool = True,
    ) -> list[CompensationInterval]:
        """All intervals of an employee, optionally filtered on ``valid_from``."""
        query = select(CompensationInterval).where(
            CompensationInterval.employee_id == employee_id
        )
        if from_date is not None:
            query = query.where(CompensationInterval.valid_from >= from_date)
        if to_date is not None:
            query = query.where(CompensationInterval.valid_from <= to_date)

        order = (
            CompensationInterval.valid_from.desc()
            if descending
            else CompensationInterval.valid_from.asc()
        )
        result = await self.session.execute(query.order_by(order))
        return list(result.scalars().all())

    async def employees_with_coverage(
        self, org_id: int, period_start: date, period_end: date
    ) -> list[int]:
        """Employees of an org with any compensation in the period."""
        result = await self.session.execute(
            select(CompensationInterval.employee_id)
            .distinct()
            .where(
                CompensationInterval.org_id == org_id,
                CompensationInterval.valid_from <= period_end,
                (
                    CompensationInterval.valid_to.is_(None)
                    | (CompensationInterval.valid_to > period_start)
                ),
            )
            .order_by(CompensationInterval.employee_id)
        )
        return list(result.scalars().all())
