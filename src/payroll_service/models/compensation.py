"""Employee compensation interval model."""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy import BigInteger, CheckConstraint, Date, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from payroll_service.models.base import Base, BigIntId, TimestampMixin


class CompensationInterval(Base, TimestampMixin):
    """Time-bounded salary record for one employee.

    The interval covers ``[valid_from, valid_to)``. ``valid_to`` of ``None``
    marks the interval currently in effect; an employee has at most one.
    """

    __tablename__ = "user_compensation"

    comp_id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    org_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    employee_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    base_salary: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    perf_salary: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    valid_from: Mapped[date] = mapped_column(Date, nullable=False)
    valid_to: Mapped[date | None] = mapped_column(Date, nullable=True)
    reason: Mapped[str | None] = mapped_column(String(200), nullable=True)
    created_by: Mapped[int] = mapped_column(BigInteger, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "valid_to IS NULL OR valid_from < valid_to",
            name="user_compensation_dates_check",
        ),
        CheckConstraint(
            "base_salary >= 0 AND perf_salary >= 0",
            name="user_compensation_non_negative",
        ),
        Index("ix_user_compensation_employee_from", "employee_id", "valid_from"),
        Index(
            "ix_user_compensation_employee_range",
            "employee_id",
            "valid_from",
            "valid_to",
        ),
    )

    def days_in_range(self, start: date, end: date) -> int:
        """Count days of ``[start, end]`` (inclusive) covered by this interval."""
        range_start = max(start, self.valid_from)
        range_end = end + timedelta(days=1)
        if self.valid_to is not None:
            range_end = min(range_end, self.valid_to)

        if range_start >= range_end:
            return 0
        return (range_end - range_start).days

    def to_snapshot(self) -> dict[str, Any]:
        """JSON-safe representation for payroll run snapshots."""
        return {
            "comp_id": self.comp_id,
            "org_id": self.org_id,
            "employee_id": self.employee_id,
            "base_salary": str(self.base_salary),
            "perf_salary": str(self.perf_salary),
            "valid_from": self.valid_from.isoformat(),
            "valid_to": self.valid_to.isoformat() if self.valid_to else None,
            "reason": self.reason,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
