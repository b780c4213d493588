"""Payroll run model."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Date,
    DateTime,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from payroll_service.models.base import Base, BigIntId, JSONDocument, TimestampMixin, utcnow


class PayrollRun(Base, TimestampMixin):
    """One employee's computed pay for one month.

    Amounts are frozen at generation time; ``snapshot_json`` carries every
    input needed to reconstruct the computation.
    """

    __tablename__ = "payroll_run"

    run_id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    org_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    employee_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    payroll_month: Mapped[date] = mapped_column(Date, nullable=False)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    days_in_month: Mapped[int] = mapped_column(Integer, nullable=False)
    days_covered: Mapped[int] = mapped_column(Integer, nullable=False)
    base_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    perf_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    allowances: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    deductions: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    gross_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    net_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="draft")
    snapshot_json: Mapped[dict[str, Any] | None] = mapped_column(JSONDocument, nullable=True)
    created_by: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint(
            "employee_id", "payroll_month", name="payroll_run_employee_month_unique"
        ),
        CheckConstraint(
            "status IN ('draft', 'confirmed', 'paid')",
            name="payroll_run_status_check",
        ),
        CheckConstraint("period_end >= period_start", name="payroll_run_period_check"),
    )

    def calculate_gross_amount(self) -> Decimal:
        return (
            Decimal(self.base_amount)
            + Decimal(self.perf_amount)
            + Decimal(self.allowances)
            - Decimal(self.deductions)
        )

    def calculate_net_amount(self) -> Decimal:
        return self.calculate_gross_amount() - Decimal(self.tax_amount)

    def update_amounts(self) -> None:
        """Recompute gross and net from components."""
        self.gross_amount = self.calculate_gross_amount()
        self.net_amount = self.calculate_net_amount()
