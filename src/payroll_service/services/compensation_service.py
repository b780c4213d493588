"""Compensation timeline service: interval creation with automatic closure."""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy.ext.asyncio import AsyncSession

from payroll_service.config import Settings, get_settings
from payroll_service.database import store_errors
from payroll_service.errors import ConflictError, ValidationError
from payroll_service.models import ChangeAction, CompensationInterval, EntityType
from payroll_service.services.audit_service import AuditService
from payroll_service.services.compensation_store import CompensationStore
from payroll_service.services.locking_service import (
    DistributedLockService,
    compensation_lock_key,
)
from payroll_service.validation import parse_date, parse_money

if TYPE_CHECKING:
    from payroll_service.services.user_lookup import UserLookup

logger = logging.getLogger(__name__)

MAX_REASON_LENGTH = 200


class CompensationService:
    """Service for maintaining employee compensation timelines.

    Operations:
    - create_compensation: insert an interval, closing the open one it supersedes
    - get_effective_compensation: interval in effect on a date
    - get_compensation_history: all intervals of an employee

    Writes for one employee are serialized by a distributed lock on
    ``lock:compensation:user:{employee_id}`` combined with a database
    transaction, so the find-close-insert sequence is atomic with respect
    to other writers.
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
        self.store = CompensationStore(session)
        self.audit = AuditService(session, request_id=request_id)

    async def create_compensation(
        self,
        org_id: int,
        employee_id: int,
        base_salary: Decimal | int | str,
        perf_salary: Decimal | int | str,
        valid_from: date | str,
        operator_id: int,
        reason: str | None = None,
    ) -> CompensationInterval:
        """Create a compensation interval effective from ``valid_from``.

        Raises:
            ValidationError: negative salaries, malformed date, reason too long
            NotFoundError: employee unknown in the org (when a lookup is configured)
            ConflictError: a bounded interval already covers ``valid_from``,
                an interval starts on the same day, or the lock is held
            LockBackendError: the lock backend is unavailable
        """
        base = parse_money(base_salary, "base_salary")
        perf = parse_money(perf_salary, "perf_salary")
        start = parse_date(valid_from, "valid_from")
        if reason is not None and len(reason) > MAX_REASON_LENGTH:
            raise ValidationError(
                f"reason must be at most {MAX_REASON_LENGTH} characters",
                {"field": "reason"},
            )

        if self.user_lookup is not None:
            await self.user_lookup.validate(employee_id, org_id)

        async def create() -> CompensationInterval:
            return await self._create_locked(
                org_id=org_id,
                employee_id=employee_id,
                base_salary=base,
                perf_salary=perf,
                valid_from=start,
                operator_id=operator_id,
                reason=reason,
            )

        result = await self.lock_service.with_lock(
            compensation_lock_key(employee_id),
            create,
            ttl=self.settings.compensation_lock_ttl,
            max_retries=self.settings.compensation_lock_retries,
            retry_delay=self.settings.lock_retry_delay,
        )
        if result is None:
            raise ConflictError(
                "Another compensation operation is in progress for this employee. "
                "Please try again later.",
                {"employee_id": employee_id},
            )
        return result

    async def _create_locked(
        self,
        org_id: int,
        employee_id: int,
        base_salary: Decimal,
        perf_salary: Decimal,
        valid_from: date,
        operator_id: int,
        reason: str | None,
    ) -> CompensationInterval:
        """Find-close-insert inside one transaction. Caller holds the lock."""
        try:
            with store_errors():
                touching = await self.store.find_touching(
                    employee_id, valid_from, for_update=True
                )
                self._reject_conflicts(employee_id, valid_from, touching)

                closed: CompensationInterval | None = None
                for interval in touching:
                    if interval.valid_to is None:
                        interval.valid_to = valid_from
                        closed = interval

                # Backdated before existing records: end where the next one starts
                valid_to: date | None = None
                if closed is None:
                    following = await self.store.find_next_after(employee_id, valid_from)
                    if following is not None:
                        valid_to = following.valid_from

                compensation = CompensationInterval(
                    org_id=org_id,
                    employee_id=employee_id,
                    base_salary=base_salary,
                    perf_salary=perf_salary,
                    valid_from=valid_from,
                    valid_to=valid_to,
                    reason=reason,
                    created_by=operator_id,
                )
                self.session.add(compensation)
                await self.session.flush()

                await self.audit.record(
                    org_id=org_id,
                    actor_user_id=operator_id,
                    entity_type=EntityType.USER_COMPENSATION,
                    entity_id=compensation.comp_id,
                    action=ChangeAction.CREATE,
                    diff={
                        "created": {
                            "employee_id": employee_id,
                            "base_salary": base_salary,
                            "perf_salary": perf_salary,
                            "valid_from": valid_from,
                            "valid_to": valid_to,
                            "reason": reason,
                        },
                        "closed": (
                            {"comp_id": closed.comp_id, "valid_to": valid_from}
                            if closed is not None
                            else None
                        ),
                    },
                )
                await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        if closed is not None:
            logger.info(
                "Closed compensation %s at %s for employee %s",
                closed.comp_id,
                valid_from,
                employee_id,
            )
        logger.info(
            "Created compensation %s for employee %s from %s",
            compensation.comp_id,
            employee_id,
            valid_from,
        )
        return compensation

    def _reject_conflicts(
        self,
        employee_id: int,
        valid_from: date,
        touching: list[CompensationInterval],
    ) -> None:
        for interval in touching:
            if interval.valid_from == valid_from:
                logger.warning(
                    "Compensation %s already starts on %s for employee %s",
                    interval.comp_id,
                    valid_from,
                    employee_id,
                )
                raise ConflictError(
                    "A compensation interval already starts on this date",
                    {"employee_id": employee_id, "comp_id": interval.comp_id},
                )
            if interval.valid_to is not None:
                logger.warning(
                    "Overlapping bounded compensation %s for employee %s at %s",
                    interval.comp_id,
                    employee_id,
                    valid_from,
                )
                raise ConflictError(
                    "Overlapping compensation period found",
                    {
                        "employee_id": employee_id,
                        "comp_id": interval.comp_id,
                        "valid_from": interval.valid_from.isoformat(),
                        "valid_to": interval.valid_to.isoformat(),
                    },
                )

    async def get_effective_compensation(
        self, employee_id: int, day: date | str
    ) -> CompensationInterval | None:
        """Interval in effect on ``day``, or None."""
        effective_date = parse_date(day)
        with store_errors():
            return await self.store.find_covering(employee_id, effective_date)

    async def get_compensation_history(
        self,
        employee_id: int,
        from_date: date | str | None = None,
        to_date: date | str | None = None,
    ) -> list[CompensationInterval]:
        """All intervals of an employee, latest first."""
        start = parse_date(from_date, "from") if from_date is not None else None
        end = parse_date(to_date, "to") if to_date is not None else None
        with store_errors():
            return await self.store.history(employee_id, start, end)
