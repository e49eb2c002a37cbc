"""
PayCycle - Payroll Sync Tests

Integration tests for the sync orchestrator against an in-memory database.
"""

import asyncio
import pytest
from datetime import date
from decimal import Decimal
from unittest.mock import patch
from uuid import uuid4

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, OperationalError

from paycycle.config import settings
from paycycle.models import (
    EmployeeStatus,
    PayrollLineItem,
    PayrollRun,
    PayrollRunStatus,
    ReviewStatus,
    ReviewTask,
    TargetKind,
)
from paycycle.services.payroll_service import (
    PayrollService,
    SyncOutcome,
    _sync_lock_users,
    _sync_locks,
    advisory_lock_key,
    format_payroll_number,
)
from paycycle.utils.error_handling import (
    AuthorizationException,
    DatabaseException,
    DataIntegrityException,
    InvalidPeriodException,
    PayrollRunFrozenException,
)
from paycycle.utils.period import PayrollPeriod


async def count(session, model, *conditions) -> int:
    return (await session.execute(select(func.count(model.id)).where(*conditions))).scalar_one()


async def line_items(session, run_id):
    result = await session.execute(
        select(PayrollLineItem)
        .where(PayrollLineItem.payroll_run_id == run_id)
        .order_by(PayrollLineItem.employee_number)
    )
    return list(result.scalars().all())


class TestHelpers:

    def test_payroll_number_format(self):
        assert format_payroll_number(PayrollPeriod(2025, 6), 1) == "PR-202506-001"
        assert format_payroll_number(PayrollPeriod(2025, 12), 12, prefix="PAY") == "PAY-202512-012"

    def test_advisory_lock_key_is_stable_and_signed_64_bit(self, tenant_id):
        key = advisory_lock_key(tenant_id, PayrollPeriod(2025, 6))
        assert key == advisory_lock_key(tenant_id, PayrollPeriod(2025, 6))
        assert key != advisory_lock_key(tenant_id, PayrollPeriod(2025, 7))
        assert -(2 ** 63) <= key < 2 ** 63


class TestPayrollSync:

    @pytest.mark.asyncio
    async def test_creates_draft_run_with_lines(self, db_session, factory, tenant_id, user_id, admin_authorizer):
        await factory.employee()
        await factory.employee()

        service = PayrollService(db_session, admin_authorizer)
        result = await service.sync(tenant_id, 6, 2025, user_id)

        assert result.outcome == SyncOutcome.SYNCED
        assert result.is_new_run is True
        assert result.payroll_number == "PR-202506-001"
        assert result.status == PayrollRunStatus.DRAFT
        assert result.line_count == 2
        assert result.totals.employee_count == 2
        assert result.totals.total_gross_pay == Decimal("100000")
        assert result.totals.total_net_pay == Decimal("78058")
        assert result.totals.total_paye == Decimal("11692")

        run = await db_session.get(PayrollRun, result.run_id)
        assert run.employee_count == 2
        assert run.total_net_pay == Decimal("78058")
        assert run.created_by_id == user_id
        assert run.last_synced_at is not None

    @pytest.mark.asyncio
    async def test_month_names_accepted(self, db_session, factory, tenant_id, user_id, admin_authorizer):
        await factory.employee()
        result = await PayrollService(db_session, admin_authorizer).sync(tenant_id, "June", "2025", user_id)
        assert (result.month, result.year) == (6, 2025)

    @pytest.mark.asyncio
    async def test_resync_is_idempotent(self, db_session, factory, tenant_id, user_id, admin_authorizer):
        await factory.employee(salary="50000")
        await factory.employee(salary="85000")
        await factory.reviewers(2)
        service = PayrollService(db_session, admin_authorizer)

        first = await service.sync(tenant_id, 6, 2025, user_id)
        second = await service.sync(tenant_id, 6, 2025, user_id)

        assert second.is_new_run is False
        assert second.run_id == first.run_id
        assert second.payroll_number == first.payroll_number
        assert second.totals == first.totals
        assert await count(db_session, PayrollRun, PayrollRun.tenant_id == tenant_id) == 1
        assert await count(db_session, PayrollLineItem, PayrollLineItem.payroll_run_id == first.run_id) == 2
        assert await count(db_session, ReviewTask) == 4

    @pytest.mark.asyncio
    async def test_resync_picks_up_changed_inputs(self, db_session, factory, tenant_id, user_id, admin_authorizer):
        await factory.employee()
        service = PayrollService(db_session, admin_authorizer)
        first = await service.sync(tenant_id, 6, 2025, user_id)

        transport = await factory.allowance_type("Transport", "TRANSPORT")
        await factory.allowance(transport, "5000")
        second = await service.sync(tenant_id, 6, 2025, user_id)

        assert second.totals.total_gross_pay == first.totals.total_gross_pay + Decimal("5000")
        items = await line_items(db_session, second.run_id)
        assert len(items) == 1
        assert items[0].cash_allowances == Decimal("5000")

    @pytest.mark.asyncio
    async def test_run_totals_match_line_items(self, db_session, factory, tenant_id, user_id, admin_authorizer):
        for salary in ("30000", "64000", "250000"):
            await factory.employee(salary=salary)

        result = await PayrollService(db_session, admin_authorizer).sync(tenant_id, 6, 2025, user_id)
        items = await line_items(db_session, result.run_id)

        assert result.totals.total_gross_pay == sum(item.gross_pay for item in items)
        assert result.totals.total_net_pay == sum(item.net_pay for item in items)
        assert result.totals.total_deductions == sum(item.total_deductions for item in items)
        for item in items:
            assert item.net_pay == item.gross_pay - item.total_deductions

    @pytest.mark.asyncio
    async def test_ineligible_employees_excluded(self, db_session, factory, tenant_id, user_id, admin_authorizer):
        await factory.employee(employee_number="EMP100")
        await factory.employee(employee_number="EMP200", hire_date=date(2025, 7, 1))
        await factory.employee(
            employee_number="EMP300",
            status=EmployeeStatus.TERMINATED,
            status_effective_date=date(2025, 6, 15),
        )
        await factory.employee(employee_number="EMP400", contract_end=date(2025, 5, 31))

        result = await PayrollService(db_session, admin_authorizer).sync(tenant_id, 6, 2025, user_id)
        items = await line_items(db_session, result.run_id)
        assert [item.employee_number for item in items] == ["EMP100"]

    @pytest.mark.asyncio
    async def test_line_snapshots_inputs(self, db_session, factory, tenant_id, user_id, admin_authorizer):
        employee = await factory.employee(pays_helb=True)
        await factory.payment_detail(employee)
        await factory.absence(employee, 2025, 6, "5000")
        await factory.loan_account(employee, monthly="2000", balance="1500")

        result = await PayrollService(db_session, admin_authorizer).sync(tenant_id, 6, 2025, user_id)
        item = (await line_items(db_session, result.run_id))[0]

        assert item.base_pay == Decimal("45000")
        assert item.helb == Decimal("1500")
        assert item.bank_name == "KCB"
        assert item.account_number == "1234567890"
        assert result.totals.total_helb == Decimal("1500")

    @pytest.mark.asyncio
    async def test_unknown_individual_target_reported(self, db_session, factory, tenant_id, user_id, admin_authorizer):
        await factory.employee()
        bonus = await factory.allowance_type("Bonus", "BONUS")
        orphan = await factory.allowance(bonus, "1000", target_kind=TargetKind.INDIVIDUAL, target_id=uuid4())
        orphan_id = orphan.id

        result = await PayrollService(db_session, admin_authorizer).sync(tenant_id, 6, 2025, user_id)

        assert result.outcome == SyncOutcome.SYNCED
        assert [w.record_id for w in result.warnings] == [orphan_id]
        assert result.totals.total_gross_pay == Decimal("50000")

    @pytest.mark.asyncio
    async def test_review_tasks_cover_every_line_and_reviewer(
        self, db_session, factory, tenant_id, user_id, admin_authorizer,
    ):
        for _ in range(3):
            await factory.employee()
        await factory.reviewers(2)

        result = await PayrollService(db_session, admin_authorizer).sync(tenant_id, 6, 2025, user_id)

        assert result.review_task_count == 6
        tasks = (await db_session.execute(select(ReviewTask))).scalars().all()
        assert len(tasks) == 6
        assert {task.status for task in tasks} == {ReviewStatus.PENDING}
        assert len({(task.line_item_id, task.reviewer_id) for task in tasks}) == 6

    @pytest.mark.asyncio
    async def test_second_month_gets_own_run(self, db_session, factory, tenant_id, user_id, admin_authorizer):
        await factory.employee()
        service = PayrollService(db_session, admin_authorizer)

        june = await service.sync(tenant_id, 6, 2025, user_id)
        july = await service.sync(tenant_id, 7, 2025, user_id)

        assert june.run_id != july.run_id
        assert july.payroll_number == "PR-202507-001"

        runs, total = await service.list_runs(tenant_id, user_id)
        assert total == 2
        assert [run.month for run in runs] == [7, 6]


class TestSyncRejections:

    @pytest.mark.asyncio
    async def test_no_eligible_employees_writes_nothing(
        self, db_session, factory, tenant_id, user_id, admin_authorizer,
    ):
        await factory.employee(hire_date=date(2026, 1, 1))

        result = await PayrollService(db_session, admin_authorizer).sync(tenant_id, 6, 2025, user_id)

        assert result.outcome == SyncOutcome.NO_ELIGIBLE_EMPLOYEES
        assert result.run_id is None
        assert await count(db_session, PayrollRun, PayrollRun.tenant_id == tenant_id) == 0

    @pytest.mark.asyncio
    async def test_viewer_cannot_sync(self, db_session, factory, tenant_id, user_id, viewer_authorizer):
        await factory.employee()

        with pytest.raises(AuthorizationException):
            await PayrollService(db_session, viewer_authorizer).sync(tenant_id, 6, 2025, user_id)

        assert await count(db_session, PayrollRun) == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("month,year", [(13, 2025), ("Smarch", 2025), (6, "20x5")])
    async def test_invalid_period(self, db_session, tenant_id, user_id, admin_authorizer, month, year):
        with pytest.raises(InvalidPeriodException):
            await PayrollService(db_session, admin_authorizer).sync(tenant_id, month, year, user_id)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("frozen", [PayrollRunStatus.LOCKED, PayrollRunStatus.PAID, PayrollRunStatus.COMPLETED])
    async def test_frozen_run_not_recomputed(
        self, db_session, factory, tenant_id, user_id, admin_authorizer, frozen,
    ):
        await factory.employee()
        service = PayrollService(db_session, admin_authorizer)
        result = await service.sync(tenant_id, 6, 2025, user_id)
        run_id = result.run_id

        run = await db_session.get(PayrollRun, run_id)
        run.status = frozen
        await db_session.commit()

        await factory.employee(salary="90000")
        with pytest.raises(PayrollRunFrozenException):
            await service.sync(tenant_id, 6, 2025, user_id)

        assert await count(db_session, PayrollLineItem, PayrollLineItem.payroll_run_id == run_id) == 1
        status = (await db_session.execute(
            select(PayrollRun.status).where(PayrollRun.id == run_id)
        )).scalar_one()
        assert status == frozen

    @pytest.mark.asyncio
    async def test_tenants_isolated(self, db_session, factory, tenant_id, user_id, admin_authorizer):
        await factory.employee()
        other_tenant = uuid4()

        result = await PayrollService(db_session, admin_authorizer).sync(other_tenant, 6, 2025, user_id)
        assert result.outcome == SyncOutcome.NO_ELIGIBLE_EMPLOYEES


class TestConcurrentSync:

    @pytest.mark.asyncio
    async def test_concurrent_syncs_converge_on_one_run(
        self, session_factory, factory, tenant_id, user_id, admin_authorizer,
    ):
        await factory.employee()
        await factory.employee()

        async def run_sync():
            async with session_factory() as session:
                return await PayrollService(session, admin_authorizer).sync(tenant_id, 6, 2025, user_id)

        first, second = await asyncio.gather(run_sync(), run_sync())

        assert first.run_id == second.run_id
        assert sorted([first.is_new_run, second.is_new_run]) == [False, True]
        assert first.totals == second.totals

        async with session_factory() as session:
            assert await count(session, PayrollRun, PayrollRun.tenant_id == tenant_id) == 1
            assert await count(session, PayrollLineItem, PayrollLineItem.payroll_run_id == first.run_id) == 2

    @pytest.mark.asyncio
    async def test_period_locks_released_after_sync(
        self, session_factory, factory, tenant_id, user_id, admin_authorizer,
    ):
        await factory.employee()

        async def run_sync(month):
            async with session_factory() as session:
                return await PayrollService(session, admin_authorizer).sync(tenant_id, month, 2025, user_id)

        await asyncio.gather(run_sync(6), run_sync(6), run_sync(7))

        assert not [key for key in _sync_locks if key[0] == tenant_id]
        assert not [key for key in _sync_lock_users if key[0] == tenant_id]


class ClashingPayrollService(PayrollService):
    """Raises a unique-key clash after the first `clashes` computation passes."""

    def __init__(self, db, authorizer, clashes: int = 1):
        super().__init__(db, authorizer)
        self.clashes = clashes
        self.passes = 0

    async def _sync_once(self, tenant_id, period, user_id):
        result = await super()._sync_once(tenant_id, period, user_id)
        self.passes += 1
        if self.clashes:
            self.clashes -= 1
            raise IntegrityError("INSERT INTO payroll_runs", {}, Exception("UNIQUE constraint failed"))
        return result


class TestSyncFailures:

    @pytest.mark.asyncio
    async def test_store_failure_keeps_previous_result(
        self, db_session, factory, tenant_id, user_id, admin_authorizer,
    ):
        await factory.employee()
        service = PayrollService(db_session, admin_authorizer)
        first = await service.sync(tenant_id, 6, 2025, user_id)
        run_id = first.run_id
        first_gross = first.totals.total_gross_pay

        await factory.employee(salary="90000")
        failure = OperationalError("INSERT INTO review_tasks", {}, Exception("disk I/O error"))
        with patch("paycycle.services.payroll_service.expand_review_tasks", side_effect=failure):
            with pytest.raises(DatabaseException) as exc_info:
                await service.sync(tenant_id, 6, 2025, user_id)

        assert exc_info.value.status_code == 503
        assert exc_info.value.details["retryable"] is True
        assert await count(db_session, PayrollLineItem, PayrollLineItem.payroll_run_id == run_id) == 1
        gross = (await db_session.execute(
            select(PayrollRun.total_gross_pay).where(PayrollRun.id == run_id)
        )).scalar_one()
        assert gross == first_gross

    @pytest.mark.asyncio
    async def test_unique_key_clash_is_recomputed(
        self, db_session, factory, tenant_id, user_id, admin_authorizer,
    ):
        await factory.employee()
        service = ClashingPayrollService(db_session, admin_authorizer, clashes=1)

        result = await service.sync(tenant_id, 6, 2025, user_id)

        assert service.passes == 2
        assert result.outcome == SyncOutcome.SYNCED
        assert result.payroll_number == "PR-202506-001"
        assert await count(db_session, PayrollRun, PayrollRun.tenant_id == tenant_id) == 1
        assert await count(db_session, PayrollLineItem, PayrollLineItem.payroll_run_id == result.run_id) == 1

    @pytest.mark.asyncio
    async def test_clash_on_every_attempt_surfaces_integrity_error(
        self, db_session, factory, tenant_id, user_id, admin_authorizer,
    ):
        await factory.employee()
        service = ClashingPayrollService(db_session, admin_authorizer, clashes=10)

        with pytest.raises(DataIntegrityException) as exc_info:
            await service.sync(tenant_id, 6, 2025, user_id)

        assert exc_info.value.status_code == 409
        assert service.passes == settings.payroll_sync_retry_attempts + 1
        assert await count(db_session, PayrollRun, PayrollRun.tenant_id == tenant_id) == 0
        assert await count(db_session, PayrollLineItem) == 0
