"""Tests for payroll run generation and lifecycle."""

import asyncio
from datetime import date
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import func, select

from payroll_service.errors import (
    ConflictError,
    NoApplicableCompensationError,
    NotFoundError,
    ValidationError,
)
from payroll_service.models import AuditLog, PayrollRun
from payroll_service.services.locking_service import (
    payroll_batch_lock_key,
    payroll_run_lock_key,
)
from payroll_service.services.pay_run_service import BatchFilter, PayRunService
from payroll_service.services.state_machine import InvalidTransitionError

from .conftest import ALICE_ID, BOB_ID, CAROL_ID, OPERATOR_ID, ORG_ID, OTHER_ORG_ID

pytestmark = pytest.mark.asyncio

JANUARY = date(2024, 1, 1)


async def count_runs(session_factory, employee_id=None):
    async with session_factory() as session:
        query = select(func.count()).select_from(PayrollRun)
        if employee_id is not None:
            query = query.where(PayrollRun.employee_id == employee_id)
        return await session.scalar(query)


class TestPreview:
    async def test_preview_does_not_persist(
        self, pay_run_service, seed_compensation, session_factory
    ):
        await seed_compensation(ALICE_ID, date(2024, 1, 1), "3000")
        await seed_compensation(ALICE_ID, date(2024, 1, 16), "6000")

        result = await pay_run_service.preview(ALICE_ID, "2024-01")

        assert result.base_amount == Decimal("4548.39")
        assert len(result.segments) == 2
        assert await count_runs(session_factory) == 0

    async def test_preview_ignores_other_org(self, pay_run_service, seed_compensation):
        await seed_compensation(ALICE_ID, date(2024, 1, 1), "3000")

        with pytest.raises(NoApplicableCompensationError):
            await pay_run_service.preview(ALICE_ID, "2024-01", org_id=OTHER_ORG_ID)

        result = await pay_run_service.preview(ALICE_ID, "2024-01", org_id=ORG_ID)
        assert result.base_amount == Decimal("3000.00")

    async def test_generate_ignores_other_org(
        self, pay_run_service, seed_compensation, session_factory
    ):
        await seed_compensation(ALICE_ID, date(2023, 6, 1), "5000")

        with pytest.raises(NoApplicableCompensationError):
            await pay_run_service.generate(OTHER_ORG_ID, ALICE_ID, "2024-01", OPERATOR_ID)

        assert await count_runs(session_factory) == 0


class TestGenerate:
    """Test single run generation."""

    async def test_generates_draft_with_amounts(self, pay_run_service, seed_compensation):
        await seed_compensation(ALICE_ID, date(2023, 6, 1), "5000", "1000")

        run = await pay_run_service.generate(
            ORG_ID,
            ALICE_ID,
            "2024-01",
            actor_id=OPERATOR_ID,
            allowances="200",
            deductions="50.25",
        )

        assert run.run_id is not None
        assert run.status == "draft"
        assert run.payroll_month == JANUARY
        assert run.period_start == date(2024, 1, 1)
        assert run.period_end == date(2024, 1, 31)
        assert run.days_in_month == 31
        assert run.days_covered == 31
        assert run.base_amount == Decimal("5000.00")
        assert run.perf_amount == Decimal("1000.00")
        assert run.gross_amount == Decimal("6149.75")
        assert run.tax_amount == Decimal("0")
        assert run.net_amount == Decimal("6149.75")
        assert run.created_by == OPERATOR_ID

    async def test_snapshot_records_inputs(self, pay_run_service, seed_compensation):
        first = await seed_compensation(ALICE_ID, date(2024, 1, 1), "3000")
        second = await seed_compensation(ALICE_ID, date(2024, 1, 16), "6000")

        run = await pay_run_service.generate(ORG_ID, ALICE_ID, JANUARY, OPERATOR_ID)

        snapshot = run.snapshot_json
        assert "calculation_date" in snapshot
        assert {c["comp_id"] for c in snapshot["compensations_used"]} == {
            first.comp_id,
            second.comp_id,
        }
        details = snapshot["calculation_details"]
        assert details["base_amount"] == "4548.39"
        assert [s["days"] for s in details["segments"]] == [15, 16]
        assert snapshot["inputs"] == {
            "allowances": "0",
            "deductions": "0",
            "tax_amount": "0",
        }

    async def test_duplicate_run_conflicts(self, pay_run_service, seed_compensation):
        await seed_compensation(ALICE_ID, date(2023, 6, 1), "5000")
        first = await pay_run_service.generate(ORG_ID, ALICE_ID, "2024-01", OPERATOR_ID)
        first_id = first.run_id

        with pytest.raises(ConflictError) as exc_info:
            await pay_run_service.generate(ORG_ID, ALICE_ID, "2024-01-20", OPERATOR_ID)

        assert exc_info.value.details["run_id"] == first_id

    async def test_no_compensation(self, pay_run_service, session_factory):
        with pytest.raises(NoApplicableCompensationError):
            await pay_run_service.generate(ORG_ID, ALICE_ID, "2024-01", OPERATOR_ID)

        assert await count_runs(session_factory) == 0

    @pytest.mark.parametrize(
        "field,value",
        [
            ("allowances", "-1"),
            ("allowances", "0.005"),
            ("deductions", "12.345"),
        ],
    )
    async def test_bad_adjustment_rejected(
        self, pay_run_service, seed_compensation, redis, session_factory, field, value
    ):
        await seed_compensation(ALICE_ID, date(2023, 6, 1), "5000")

        with pytest.raises(ValidationError) as exc_info:
            await pay_run_service.generate(
                ORG_ID, ALICE_ID, "2024-01", OPERATOR_ID, **{field: value}
            )

        assert exc_info.value.details["field"] == field
        assert await redis.get(payroll_run_lock_key(ALICE_ID, JANUARY)) is None
        assert await count_runs(session_factory) == 0

    @pytest.mark.parametrize("month", ["2024-03-01garbage", "2024-1", "2024/01", "Jan 2024"])
    async def test_malformed_month_rejected(self, pay_run_service, seed_compensation, month):
        await seed_compensation(ALICE_ID, date(2023, 6, 1), "5000")

        with pytest.raises(ValidationError):
            await pay_run_service.generate(ORG_ID, ALICE_ID, month, OPERATOR_ID)

    async def test_held_lock_conflicts(
        self, pay_run_service, seed_compensation, lock_service, session_factory
    ):
        await seed_compensation(ALICE_ID, date(2023, 6, 1), "5000")
        await lock_service.acquire(payroll_run_lock_key(ALICE_ID, JANUARY), ttl=5)

        with pytest.raises(ConflictError):
            await pay_run_service.generate(ORG_ID, ALICE_ID, "2024-01", OPERATOR_ID)

        assert await count_runs(session_factory) == 0

    async def test_concurrent_generation_creates_one_run(
        self, seed_compensation, session_factory, make_pay_run_service
    ):
        """Two racing generations yield one draft and one conflict."""
        await seed_compensation(ALICE_ID, date(2023, 6, 1), "5000")

        async def generate():
            async with session_factory() as session:
                service = make_pay_run_service(session)
                return await service.generate(ORG_ID, ALICE_ID, "2024-01", OPERATOR_ID)

        results = await asyncio.gather(generate(), generate(), return_exceptions=True)

        runs = [r for r in results if isinstance(r, PayrollRun)]
        conflicts = [r for r in results if isinstance(r, ConflictError)]
        assert len(runs) == 1
        assert len(conflicts) == 1
        assert runs[0].status == "draft"
        assert await count_runs(session_factory, ALICE_ID) == 1

    async def test_unknown_employee_rejected(
        self, session, lock_service, settings, user_lookup, seed_compensation
    ):
        await seed_compensation(777, date(2023, 6, 1), "5000")
        service = PayRunService(
            session, lock_service, settings=settings, user_lookup=user_lookup
        )

        with pytest.raises(NotFoundError):
            await service.generate(ORG_ID, 777, "2024-01", OPERATOR_ID)

    async def test_audit_entry_written(
        self, session_factory, lock_service, settings, seed_compensation
    ):
        await seed_compensation(ALICE_ID, date(2023, 6, 1), "5000")

        async with session_factory() as session:
            service = PayRunService(
                session, lock_service, settings=settings, request_id="r-1"
            )
            run = await service.generate(ORG_ID, ALICE_ID, "2024-01", OPERATOR_ID)

        async with session_factory() as session:
            entry = await session.scalar(
                select(AuditLog).where(AuditLog.entity_type == "payroll_run")
            )

        assert entry.entity_id == run.run_id
        assert entry.action == "create"
        assert entry.request_id == "r-1"
        assert entry.diff_json["created"]["month"] == "2024-01-01"


class TestUpdateStatus:
    """Test the run lifecycle."""

    @pytest_asyncio.fixture
    async def draft_run(self, pay_run_service, seed_compensation):
        await seed_compensation(ALICE_ID, date(2023, 6, 1), "5000")
        return await pay_run_service.generate(ORG_ID, ALICE_ID, "2024-01", OPERATOR_ID)

    async def test_confirm_then_pay(self, pay_run_service, draft_run):
        confirmed = await pay_run_service.update_status(
            draft_run.run_id, "confirm", OPERATOR_ID
        )
        assert confirmed.status == "confirmed"

        paid = await pay_run_service.update_status(draft_run.run_id, "pay", OPERATOR_ID)
        assert paid.status == "paid"

    async def test_pay_draft_is_invalid(self, pay_run_service, draft_run, session_factory):
        run_id = draft_run.run_id

        with pytest.raises(InvalidTransitionError):
            await pay_run_service.update_status(run_id, "pay", OPERATOR_ID)

        async with session_factory() as session:
            stored = await session.get(PayrollRun, run_id)
        assert stored.status == "draft"

    async def test_paid_is_terminal(self, pay_run_service, draft_run):
        await pay_run_service.update_status(draft_run.run_id, "confirm", OPERATOR_ID)
        await pay_run_service.update_status(draft_run.run_id, "pay", OPERATOR_ID)

        with pytest.raises(InvalidTransitionError):
            await pay_run_service.update_status(draft_run.run_id, "confirm", OPERATOR_ID)

    async def test_missing_run(self, pay_run_service):
        with pytest.raises(NotFoundError):
            await pay_run_service.update_status(12345, "confirm", OPERATOR_ID)

    async def test_concurrent_confirm_applies_once(
        self, draft_run, session_factory, make_pay_run_service
    ):
        """Two racing confirms yield one transition and one rejection."""
        run_id = draft_run.run_id

        async def confirm():
            async with session_factory() as session:
                service = make_pay_run_service(session)
                return await service.update_status(run_id, "confirm", OPERATOR_ID)

        results = await asyncio.gather(confirm(), confirm(), return_exceptions=True)

        confirmed = [r for r in results if isinstance(r, PayrollRun)]
        rejected = [r for r in results if isinstance(r, InvalidTransitionError)]
        assert len(confirmed) == 1
        assert len(rejected) == 1
        assert confirmed[0].status == "confirmed"

        async with session_factory() as session:
            updates = await session.scalar(
                select(func.count())
                .select_from(AuditLog)
                .where(AuditLog.entity_type == "payroll_run", AuditLog.action == "update")
            )
        assert updates == 1

    async def test_stale_status_is_rejected(
        self, draft_run, session_factory, make_pay_run_service
    ):
        run_id = draft_run.run_id

        async with session_factory() as stale_session:
            stale = make_pay_run_service(stale_session)
            await stale.get_run(run_id)

            async with session_factory() as session:
                await make_pay_run_service(session).update_status(
                    run_id, "confirm", OPERATOR_ID
                )

            # stale_session still holds the draft copy in its identity map
            with pytest.raises(InvalidTransitionError):
                await stale.update_status(run_id, "confirm", OPERATOR_ID)

        async with session_factory() as session:
            stored = await session.get(PayrollRun, run_id)
        assert stored.status == "confirmed"

    async def test_transition_is_audited(self, pay_run_service, draft_run, session_factory):
        await pay_run_service.update_status(draft_run.run_id, "confirm", OPERATOR_ID)

        async with session_factory() as session:
            entry = await session.scalar(
                select(AuditLog).where(
                    AuditLog.entity_type == "payroll_run", AuditLog.action == "update"
                )
            )

        assert entry.diff_json == {"previous_status": "draft", "updated_status": "confirmed"}


class TestReadAccess:
    async def test_get_run(self, pay_run_service, seed_compensation):
        await seed_compensation(ALICE_ID, date(2023, 6, 1), "5000")
        run = await pay_run_service.generate(ORG_ID, ALICE_ID, "2024-01", OPERATOR_ID)

        found = await pay_run_service.get_run(run.run_id)
        assert found.run_id == run.run_id

    async def test_get_missing_run(self, pay_run_service):
        with pytest.raises(NotFoundError):
            await pay_run_service.get_run(999)

    async def test_list_runs_latest_month_first(self, pay_run_service, seed_compensation):
        await seed_compensation(ALICE_ID, date(2023, 6, 1), "5000")
        await seed_compensation(BOB_ID, date(2023, 6, 1), "4000")
        for month in ("2024-01", "2024-02"):
            await pay_run_service.generate(ORG_ID, ALICE_ID, month, OPERATOR_ID)
        await pay_run_service.generate(ORG_ID, BOB_ID, "2024-01", OPERATOR_ID)

        runs = await pay_run_service.list_runs(ORG_ID)
        assert [r.payroll_month for r in runs][0] == date(2024, 2, 1)
        assert len(runs) == 3

        alice_runs = await pay_run_service.list_runs(ORG_ID, employee_id=ALICE_ID)
        assert len(alice_runs) == 2

        january = await pay_run_service.list_runs(ORG_ID, month="2024-01")
        assert {r.employee_id for r in january} == {ALICE_ID, BOB_ID}

        assert await pay_run_service.list_runs(OTHER_ORG_ID) == []


class TestGenerateBatch:
    """Test batch generation for an organization."""

    @pytest.mark.filterwarnings("error::sqlalchemy.exc.SAWarning")
    async def test_generates_for_covered_employees(self, pay_run_service, seed_compensation):
        await seed_compensation(ALICE_ID, date(2023, 6, 1), "5000")
        await seed_compensation(BOB_ID, date(2024, 1, 10), "4000")
        # Starts after the month: not part of the batch
        await seed_compensation(CAROL_ID, date(2024, 2, 1), "4500")
        # Other organization
        await seed_compensation(555, date(2023, 1, 1), "1000", org_id=OTHER_ORG_ID)

        result = await pay_run_service.generate_batch(ORG_ID, "2024-01", OPERATOR_ID)

        assert result.batch_id == "run-2024-01-org1"
        assert result.month == JANUARY
        assert len(result.generated) == 2
        assert result.skipped == []
        assert result.failed == {}
        assert result.estimated == 2

        runs = await pay_run_service.list_runs(ORG_ID, month="2024-01")
        assert {r.employee_id for r in runs} == {ALICE_ID, BOB_ID}

    async def test_existing_runs_are_skipped(self, pay_run_service, seed_compensation):
        await seed_compensation(ALICE_ID, date(2023, 6, 1), "5000")
        await seed_compensation(BOB_ID, date(2023, 6, 1), "4000")
        await pay_run_service.generate(ORG_ID, ALICE_ID, "2024-01", OPERATOR_ID)

        result = await pay_run_service.generate_batch(ORG_ID, "2024-01", OPERATOR_ID)

        assert result.skipped == [ALICE_ID]
        assert len(result.generated) == 1

    async def test_filter_restricts_employees(self, pay_run_service, seed_compensation):
        await seed_compensation(ALICE_ID, date(2023, 6, 1), "5000")
        await seed_compensation(BOB_ID, date(2023, 6, 1), "4000")

        result = await pay_run_service.generate_batch(
            ORG_ID, "2024-01", OPERATOR_ID, BatchFilter(employee_ids=[BOB_ID])
        )

        runs = await pay_run_service.list_runs(ORG_ID)
        assert [r.employee_id for r in runs] == [BOB_ID]
        assert result.generated == [runs[0].run_id]

    async def test_failures_are_collected(
        self, session, lock_service, settings, user_lookup, seed_compensation
    ):
        await seed_compensation(ALICE_ID, date(2023, 6, 1), "5000")
        # Known to the payroll store but not to the user service
        await seed_compensation(777, date(2023, 6, 1), "4000")
        service = PayRunService(
            session, lock_service, settings=settings, user_lookup=user_lookup
        )

        result = await service.generate_batch(ORG_ID, "2024-01", OPERATOR_ID)

        assert len(result.generated) == 1
        assert list(result.failed) == [777]

    async def test_concurrent_batch_conflicts(
        self, pay_run_service, seed_compensation, lock_service, redis
    ):
        await seed_compensation(ALICE_ID, date(2023, 6, 1), "5000")
        key = payroll_batch_lock_key(ORG_ID, JANUARY)
        await lock_service.acquire(key, ttl=5)

        with pytest.raises(ConflictError):
            await pay_run_service.generate_batch(ORG_ID, "2024-01", OPERATOR_ID)

    async def test_batch_lock_released(self, pay_run_service, seed_compensation, redis):
        await seed_compensation(ALICE_ID, date(2023, 6, 1), "5000")

        await pay_run_service.generate_batch(ORG_ID, "2024-01", OPERATOR_ID)

        assert await redis.get(payroll_batch_lock_key(ORG_ID, JANUARY)) is None
