"""Payroll run service - generation, batches and status lifecycle."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_service.calculators.proration import MonthlyProrationCalculator
from payroll_service.calculators.types import PayPeriod, ProrationResult
from payroll_service.config import Settings, get_settings
from payroll_service.database import store_errors
from payroll_service.errors import ConflictError, NotFoundError, PayrollServiceError
from payroll_service.models import ChangeAction, CompensationInterval, EntityType, PayrollRun
from payroll_service.services.audit_service import AuditService
from payroll_service.services.compensation_store import CompensationStore
from payroll_service.services.locking_service import (
    DistributedLockService,
    payroll_batch_lock_key,
    payroll_run_lock_key,
)
from payroll_service.services.state_machine import (
    InvalidTransitionError,
    PayrollRunAction,
    PayrollRunStateMachine,
    PayrollRunStatus,
)
from payroll_service.validation import parse_money, parse_month

if TYPE_CHECKING:
    from payroll_service.services.user_lookup import UserLookup

logger = logging.getLogger(__name__)


@dataclass
class BatchFilter:
    """Restricts which employees a batch covers."""

    employee_ids: list[int] | None = None


@dataclass
class BatchResult:
    """Outcome of one batch generation for an (org, month)."""

    batch_id: str
    org_id: int
    month: date
    generated: list[int] = field(default_factory=list)  # run ids
    skipped: list[int] = field(default_factory=list)  # employee ids with a run already
    failed: dict[int, str] = field(default_factory=dict)  # employee id -> reason

    @property
    def estimated(self) -> int:
        return len(self.generated) + len(self.skipped) + len(self.failed)


class PayRunService:
    """Service for managing payroll run lifecycle.

    Operations:
    - preview: prorate a month without persisting anything
    - generate: create a draft run for one employee and month
    - generate_batch: generate runs for an org's month under an (org, month) lock
    - update_status: confirm or pay a run
    - get_run / list_runs: read access
    """

    def __init__(
        self,
        session: AsyncSession,
        lock_service: DistributedLockService,
        settings: Settings | None = None,
        user_lookup: UserLookup | None = None,
        request_id: str | None = None,
    ):
        self.session = session
        self.lock_service = lock_service
        self.settings = settings or get_settings()
        self.user_lookup = user_lookup
        self.calculator = MonthlyProrationCalculator(session)
        self.store = CompensationStore(session)
        self.audit = AuditService(session, request_id=request_id)

    async def preview(
        self, employee_id: int, month: date | str, org_id: int | None = None
    ) -> ProrationResult:
        """Prorated amounts for a month. Read-only."""
        with store_errors():
            return await self.calculator.calculate(employee_id, month, org_id=org_id)

    async def get_run(self, run_id: int) -> PayrollRun:
        """Load a run by id.

        Raises NotFoundError if it does not exist.
        """
        with store_errors():
            run = await self.session.get(PayrollRun, run_id)
        if run is None:
            raise NotFoundError(f"Payroll run {run_id} not found", {"run_id": run_id})
        return run

    async def list_runs(
        self,
        org_id: int,
        employee_id: int | None = None,
        month: date | str | None = None,
    ) -> list[PayrollRun]:
        """Runs of an org, latest month first."""
        query = select(PayrollRun).where(PayrollRun.org_id == org_id)
        if employee_id is not None:
            query = query.where(PayrollRun.employee_id == employee_id)
        if month is not None:
            query = query.where(PayrollRun.payroll_month == parse_month(month))

        query = query.order_by(PayrollRun.payroll_month.desc(), PayrollRun.created_at.desc())
        with store_errors():
            result = await self.session.execute(query)
        return list(result.scalars().all())

    async def generate(
        self,
        org_id: int,
        employee_id: int,
        month: date | str,
        actor_id: int | None,
        allowances: Decimal | int | str = 0,
        deductions: Decimal | int | str = 0,
    ) -> PayrollRun:
        """Generate a draft payroll run for one employee and month.

        Raises:
            ValidationError: negative allowances/deductions, malformed month
            ConflictError: a run already exists, or another generation holds the lock
            NoApplicableCompensationError: no compensation overlaps the month
        """
        payroll_month = parse_month(month)
        allowance_amount = parse_money(allowances, "allowances")
        deduction_amount = parse_money(deductions, "deductions")

        if self.user_lookup is not None:
            await self.user_lookup.validate(employee_id, org_id)

        async def create() -> PayrollRun:
            return await self._generate_locked(
                org_id=org_id,
                employee_id=employee_id,
                payroll_month=payroll_month,
                allowances=allowance_amount,
                deductions=deduction_amount,
                actor_id=actor_id,
            )

        run = await self.lock_service.with_lock(
            payroll_run_lock_key(employee_id, payroll_month),
            create,
            ttl=self.settings.payroll_run_lock_ttl,
            max_retries=self.settings.payroll_run_lock_retries,
            retry_delay=self.settings.lock_retry_delay,
        )
        if run is None:
            raise ConflictError(
                "A payroll run for this employee and month is being generated.",
                {"employee_id": employee_id, "month": payroll_month.isoformat()},
            )
        return run

    async def _generate_locked(
        self,
        org_id: int,
        employee_id: int,
        payroll_month: date,
        allowances: Decimal,
        deductions: Decimal,
        actor_id: int | None,
    ) -> PayrollRun:
        try:
            with store_errors():
                await self._reject_existing(employee_id, payroll_month)

                calculation = await self.calculator.calculate(
                    employee_id, payroll_month, org_id=org_id
                )
                history = await self.store.history(employee_id)
                period = PayPeriod.for_month(payroll_month)
                tax_amount = Decimal("0")

                run = PayrollRun(
                    org_id=org_id,
                    employee_id=employee_id,
                    payroll_month=payroll_month,
                    period_start=period.start,
                    period_end=period.end,
                    days_in_month=calculation.days_in_month,
                    days_covered=calculation.days_covered,
                    base_amount=calculation.base_amount,
                    perf_amount=calculation.perf_amount,
                    allowances=allowances,
                    deductions=deductions,
                    tax_amount=tax_amount,
                    status=PayrollRunStatus.DRAFT.value,
                    created_by=actor_id,
                    snapshot_json=_build_snapshot(
                        calculation, history, allowances, deductions, tax_amount
                    ),
                )
                run.update_amounts()

                self.session.add(run)
                try:
                    await self.session.flush()
                except IntegrityError as e:
                    raise ConflictError(
                        "Payroll run already exists for this month",
                        {"employee_id": employee_id, "month": payroll_month.isoformat()},
                    ) from e

                await self.audit.record(
                    org_id=org_id,
                    actor_user_id=actor_id,
                    entity_type=EntityType.PAYROLL_RUN,
                    entity_id=run.run_id,
                    action=ChangeAction.CREATE,
                    diff={
                        "created": {
                            "org_id": org_id,
                            "employee_id": employee_id,
                            "month": payroll_month,
                            "allowances": allowances,
                            "deductions": deductions,
                        }
                    },
                )
                await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info(
            "Generated payroll run %s for employee %s month %s (gross %s)",
            run.run_id,
            employee_id,
            f"{payroll_month:%Y-%m}",
            run.gross_amount,
        )
        return run

    async def _reject_existing(self, employee_id: int, payroll_month: date) -> None:
        result = await self.session.execute(
            select(PayrollRun.run_id).where(
                PayrollRun.employee_id == employee_id,
                PayrollRun.payroll_month == payroll_month,
            )
        )
        existing = result.scalar_one_or_none()
        if existing is not None:
            raise ConflictError(
                "Payroll run already exists for this month",
                {
                    "employee_id": employee_id,
                    "month": payroll_month.isoformat(),
                    "run_id": existing,
                },
            )

    async def generate_batch(
        self,
        org_id: int,
        month: date | str,
        actor_id: int | None,
        batch_filter: BatchFilter | None = None,
    ) -> BatchResult:
        """Generate runs for every covered employee of an org for one month.

        Only one batch per (org, month) runs at a time. The batch lease is
        renewed after each employee so long batches keep their lock.

        Raises:
            ConflictError: another batch for this org and month is in flight
        """
        payroll_month = parse_month(month)
        batch_filter = batch_filter or BatchFilter()
        key = payroll_batch_lock_key(org_id, payroll_month)

        async with self.lock_service.hold(
            key,
            ttl=self.settings.batch_lock_ttl,
            max_retries=self.settings.batch_lock_retries,
            retry_delay=self.settings.lock_retry_delay,
        ) as token:
            if token is None:
                raise ConflictError(
                    "A batch payroll operation is already in progress for this "
                    "organization and month.",
                    {"org_id": org_id, "month": payroll_month.isoformat()},
                )
            return await self._process_batch(
                org_id, payroll_month, actor_id, batch_filter, key, token
            )

    async def _process_batch(
        self,
        org_id: int,
        payroll_month: date,
        actor_id: int | None,
        batch_filter: BatchFilter,
        key: str,
        token: str,
    ) -> BatchResult:
        result = BatchResult(
            batch_id=f"run-{payroll_month:%Y-%m}-org{org_id}",
            org_id=org_id,
            month=payroll_month,
        )
        period = PayPeriod.for_month(payroll_month)

        with store_errors():
            employee_ids = await self.store.employees_with_coverage(
                org_id, period.start, period.end
            )
        # Close the read transaction so each generation sees committed state
        await self.session.commit()

        if batch_filter.employee_ids is not None:
            wanted = set(batch_filter.employee_ids)
            employee_ids = [e for e in employee_ids if e in wanted]

        logger.info(
            "Batch %s: %d employee(s) to process", result.batch_id, len(employee_ids)
        )

        for employee_id in employee_ids:
            try:
                run = await self.generate(org_id, employee_id, payroll_month, actor_id)
            except ConflictError as e:
                if "run_id" in e.details:
                    result.skipped.append(employee_id)
                else:
                    result.failed[employee_id] = e.message
            except PayrollServiceError as e:
                result.failed[employee_id] = e.message
            else:
                result.generated.append(run.run_id)

            if not await self.lock_service.extend(key, token, self.settings.batch_lock_ttl):
                logger.error("Batch %s lost its lock; stopping", result.batch_id)
                raise ConflictError(
                    "Batch lock was lost before completion",
                    {"org_id": org_id, "month": payroll_month.isoformat()},
                )

        logger.info(
            "Batch %s done: %d generated, %d skipped, %d failed",
            result.batch_id,
            len(result.generated),
            len(result.skipped),
            len(result.failed),
        )
        return result

    async def update_status(
        self,
        run_id: int,
        action: PayrollRunAction | str,
        actor_id: int | None,
    ) -> PayrollRun:
        """Apply ``confirm`` or ``pay`` to a run.

        Raises:
            NotFoundError: no such run
            InvalidTransitionError: the action is not a legal edge from the run's status
        """
        try:
            with store_errors():
                run = await self.get_run(run_id)
                previous_status = run.status
                target = PayrollRunStateMachine.target_for_action(previous_status, action)

                # Compare-and-set: a concurrent caller may already have moved the run
                result = await self.session.execute(
                    update(PayrollRun)
                    .where(PayrollRun.run_id == run_id, PayrollRun.status == previous_status)
                    .values(status=target)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    raise InvalidTransitionError(
                        previous_status, target, "Run status changed concurrently"
                    )
                await self.session.refresh(run)

                await self.audit.record(
                    org_id=run.org_id,
                    actor_user_id=actor_id,
                    entity_type=EntityType.PAYROLL_RUN,
                    entity_id=run.run_id,
                    action=ChangeAction.UPDATE,
                    diff={"previous_status": previous_status, "updated_status": run.status},
                )
                await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info("Payroll run %s: %s -> %s", run_id, previous_status, run.status)
        return run


def _build_snapshot(
    calculation: ProrationResult,
    history: list[CompensationInterval],
    allowances: Decimal,
    deductions: Decimal,
    tax_amount: Decimal,
) -> dict[str, Any]:
    """Everything needed to reconstruct the computation later."""
    return {
        "calculation_date": datetime.now(timezone.utc).isoformat(),
        "compensations_used": [c.to_snapshot() for c in history],
        "calculation_details": calculation.to_dict(),
        "inputs": {
            "allowances": str(allowances),
            "deductions": str(deductions),
            "tax_amount": str(tax_amount),
        },
    }
