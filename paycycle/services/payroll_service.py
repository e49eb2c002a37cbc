"""
PayCycle - Payroll Service

Drives one full computation pass ("sync") for a tenant and month:

1. Authorize, validate the period
2. Serialize concurrent syncs of the same (tenant, month, year)
3. Load employees with active contracts; keep the eligible ones
4. Get or create the run (PR-YYYYMM-NNN, DRAFT)
5. Delete the run's review tasks, then its line items
6. Resolve adjustments, compute every line, insert them in one batch,
   set run totals from what was written
7. Create a PENDING review task per (line item, reviewer)
8. Commit once

A sync either commits everything or nothing. A unique-key clash means a
concurrent pass got there first; the pass is rolled back and recomputed.
"""

import asyncio
import hashlib
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import delete, exists, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from paycycle.config import settings
from paycycle.models.adjustment import AdjustmentKind, Allowance, Deduction
from paycycle.models.employee import (
    AbsenceRecord,
    ContractStatus,
    Employee,
    EmploymentContract,
    LoanAccountStatus,
    PaymentDetail,
    StatutoryLoanAccount,
)
from paycycle.models.payroll import (
    PayrollLineItem,
    PayrollReviewer,
    PayrollRun,
    PayrollRunStatus,
    ReviewTask,
)
from paycycle.services.adjustment_resolver import (
    ResolutionWarning,
    snapshot_rules,
    unknown_individual_targets,
)
from paycycle.services.authorization import (
    Authorizer,
    PayrollModule,
    PermissionAction,
    ensure_allowed,
)
from paycycle.services.eligibility import filter_eligible
from paycycle.services.payroll_calculator import LineComputation, calculate_line
from paycycle.services.review_workflow import expand_review_tasks
from paycycle.utils.error_handling import (
    AppException,
    DatabaseException,
    DataIntegrityException,
    PayrollRunFrozenException,
    PayrollRunNotFoundException,
)
from paycycle.utils.money import ZERO
from paycycle.utils.period import PayrollPeriod


logger = logging.getLogger(__name__)


# One in-flight sync per (tenant, year, month) within this process.
# Entries live only while some sync holds or waits on them.
_sync_locks: Dict[Tuple[uuid.UUID, int, int], asyncio.Lock] = {}
_sync_lock_users: Dict[Tuple[uuid.UUID, int, int], int] = {}


@asynccontextmanager
async def _period_lock(key: Tuple[uuid.UUID, int, int]):
    lock = _sync_locks.setdefault(key, asyncio.Lock())
    _sync_lock_users[key] = _sync_lock_users.get(key, 0) + 1
    try:
        async with lock:
            yield
    finally:
        _sync_lock_users[key] -= 1
        if not _sync_lock_users[key]:
            del _sync_lock_users[key]
            del _sync_locks[key]


class SyncOutcome(str, Enum):
    SYNCED = "SYNCED"
    NO_ELIGIBLE_EMPLOYEES = "NO_ELIGIBLE_EMPLOYEES"


@dataclass
class RunTotals:
    employee_count: int = 0
    total_gross_pay: Decimal = ZERO
    total_net_pay: Decimal = ZERO
    total_statutory_deductions: Decimal = ZERO
    total_deductions: Decimal = ZERO
    total_paye: Decimal = ZERO
    total_nssf: Decimal = ZERO
    total_shif: Decimal = ZERO
    total_housing_levy: Decimal = ZERO
    total_helb: Decimal = ZERO

    @classmethod
    def from_line_items(cls, line_items: Sequence[PayrollLineItem]) -> "RunTotals":
        totals = cls(employee_count=len(line_items))
        for item in line_items:
            totals.total_gross_pay += item.gross_pay
            totals.total_net_pay += item.net_pay
            totals.total_statutory_deductions += item.statutory_deductions
            totals.total_deductions += item.total_deductions
            totals.total_paye += item.paye
            totals.total_nssf += item.nssf
            totals.total_shif += item.shif
            totals.total_housing_levy += item.housing_levy
            totals.total_helb += item.helb
        return totals

    def apply_to(self, run: PayrollRun) -> None:
        for name, value in self.__dict__.items():
            setattr(run, name, value)


@dataclass
class SyncResult:
    outcome: SyncOutcome
    month: int
    year: int
    run_id: Optional[uuid.UUID] = None
    payroll_number: Optional[str] = None
    status: Optional[PayrollRunStatus] = None
    is_new_run: bool = False
    totals: RunTotals = field(default_factory=RunTotals)
    line_count: int = 0
    review_task_count: int = 0
    warnings: List[ResolutionWarning] = field(default_factory=list)


def advisory_lock_key(tenant_id: uuid.UUID, period: PayrollPeriod) -> int:
    """Signed 64-bit key for pg_advisory_xact_lock."""
    digest = hashlib.sha256(f"payroll-sync:{tenant_id}:{period}".encode()).digest()
    return int.from_bytes(digest[:8], "big", signed=True)


def format_payroll_number(period: PayrollPeriod, sequence: int, prefix: Optional[str] = None) -> str:
    return f"{prefix or settings.payroll_run_number_prefix}-{period.compact}-{sequence:03d}"


class PayrollService:
    """
    Payroll orchestrator: idempotent sync and run queries.
    """

    def __init__(self, db: AsyncSession, authorizer: Authorizer):
        self.db = db
        self.authorizer = authorizer

    # ===========================================
    # SYNC
    # ===========================================

    async def sync(
        self,
        tenant_id: uuid.UUID,
        month: Any,
        year: Any,
        user_id: uuid.UUID,
    ) -> SyncResult:
        """
        Recompute the tenant's payroll for a month.

        Returns a SyncResult with outcome NO_ELIGIBLE_EMPLOYEES (nothing
        written) when nobody qualifies.

        Raises:
            AuthorizationException: caller may not write payroll
            InvalidPeriodException: malformed month or year
            PayrollRunFrozenException: run is locked, paid or completed
            DatabaseException: store failure, nothing committed (retryable)
            DataIntegrityException: unique-key clash on every attempt
        """
        await ensure_allowed(self.authorizer, user_id, tenant_id, PayrollModule.PAYROLL, PermissionAction.CAN_WRITE)
        period = PayrollPeriod.parse(month, year)

        attempts = max(1, settings.payroll_sync_retry_attempts + 1)
        last_error: Optional[IntegrityError] = None

        async with _period_lock((tenant_id, period.year, period.month)):
            for attempt in range(1, attempts + 1):
                logger.info(f"Payroll sync started: tenant={tenant_id} period={period} attempt={attempt}")
                try:
                    result = await self._sync_once(tenant_id, period, user_id)
                    if result.outcome == SyncOutcome.NO_ELIGIBLE_EMPLOYEES:
                        await self.db.rollback()
                        logger.info(f"Payroll sync skipped: no eligible employees for tenant={tenant_id} period={period}")
                        return result
                    await self.db.commit()
                except IntegrityError as exc:
                    await self.db.rollback()
                    last_error = exc
                    logger.warning(
                        f"Payroll sync clashed with a concurrent write "
                        f"(tenant={tenant_id} period={period} attempt={attempt}); recomputing"
                    )
                    continue
                except AppException:
                    await self.db.rollback()
                    raise
                except SQLAlchemyError as exc:
                    await self.db.rollback()
                    logger.error(f"Payroll sync failed: tenant={tenant_id} period={period}: {exc}", exc_info=True)
                    raise DatabaseException(
                        "Payroll sync failed; no changes were saved",
                        original_error=exc,
                    )

                logger.info(
                    f"Payroll sync completed: {result.payroll_number} "
                    f"lines={result.line_count} gross={result.totals.total_gross_pay} "
                    f"net={result.totals.total_net_pay} warnings={len(result.warnings)}"
                )
                return result

        logger.error(f"Payroll sync gave up after {attempts} attempt(s): tenant={tenant_id} period={period}")
        raise DataIntegrityException(
            f"Payroll for {period.label} kept clashing with concurrent updates",
            original_error=last_error,
        )

    async def _sync_once(
        self,
        tenant_id: uuid.UUID,
        period: PayrollPeriod,
        user_id: uuid.UUID,
    ) -> SyncResult:
        await self._acquire_advisory_lock(tenant_id, period)

        employees = await self._load_employees(tenant_id)
        eligible = filter_eligible(employees, period)
        logger.info(f"Eligible employees for {period}: {len(eligible)} of {len(employees)}")
        if not eligible:
            return SyncResult(
                outcome=SyncOutcome.NO_ELIGIBLE_EMPLOYEES,
                month=period.month,
                year=period.year,
            )

        run, is_new = await self._get_or_create_run(tenant_id, period, user_id)
        if run.status.value in settings.payroll_sync_blocked_statuses_list:
            raise PayrollRunFrozenException(run.payroll_number, run.status.value)

        if not is_new:
            await self._clear_run(run.id)

        allowance_rules, warnings = snapshot_rules(await self._load_allowances(tenant_id), AdjustmentKind.ALLOWANCE)
        deduction_rules, deduction_warnings = snapshot_rules(await self._load_deductions(tenant_id), AdjustmentKind.DEDUCTION)
        warnings.extend(deduction_warnings)
        employee_ids = [employee.id for employee in employees]
        warnings.extend(unknown_individual_targets(allowance_rules + deduction_rules, employee_ids))

        eligible_ids = [employee.id for employee in eligible]
        absences = await self._load_absences(tenant_id, period, eligible_ids)
        loans = await self._load_loan_accounts(eligible_ids)
        payments = await self._load_payment_details(eligible_ids)

        line_items: List[PayrollLineItem] = []
        for employee in eligible:
            try:
                computation = calculate_line(
                    employee,
                    allowance_rules,
                    deduction_rules,
                    period,
                    absence_deduction=absences.get(employee.id, ZERO),
                    loan_account=loans.get(employee.id),
                )
            except (ValueError, ArithmeticError) as exc:
                warning = ResolutionWarning("employee", employee.id, f"Line not computed: {exc}", employee.id)
                logger.warning(f"Skipping employee {employee.employee_number}: {exc}")
                warnings.append(warning)
                continue
            line_items.append(self._build_line_item(run, employee, computation, payments.get(employee.id)))

        self.db.add_all(line_items)
        await self.db.flush()

        totals = RunTotals.from_line_items(line_items)
        totals.apply_to(run)
        run.last_synced_at = datetime.now(timezone.utc)
        run.updated_by_id = user_id

        reviewers = await self._load_reviewers(tenant_id)
        specs = expand_review_tasks(reviewers, [item.id for item in line_items])
        self.db.add_all([
            ReviewTask(line_item_id=spec.line_item_id, reviewer_id=spec.reviewer_id, status=spec.status)
            for spec in specs
        ])
        await self.db.flush()

        return SyncResult(
            outcome=SyncOutcome.SYNCED,
            month=period.month,
            year=period.year,
            run_id=run.id,
            payroll_number=run.payroll_number,
            status=run.status,
            is_new_run=is_new,
            totals=totals,
            line_count=len(line_items),
            review_task_count=len(specs),
            warnings=warnings,
        )

    async def _acquire_advisory_lock(self, tenant_id: uuid.UUID, period: PayrollPeriod) -> None:
        """Cross-process serialization; released when the transaction ends."""
        if self.db.get_bind().dialect.name != "postgresql":
            return
        await self.db.execute(select(func.pg_advisory_xact_lock(advisory_lock_key(tenant_id, period))))

    async def _get_or_create_run(
        self,
        tenant_id: uuid.UUID,
        period: PayrollPeriod,
        user_id: uuid.UUID,
    ) -> Tuple[PayrollRun, bool]:
        run = (await self.db.execute(
            select(PayrollRun).where(
                PayrollRun.tenant_id == tenant_id,
                PayrollRun.year == period.year,
                PayrollRun.month == period.month,
            )
        )).scalar_one_or_none()
        if run is not None:
            return run, False

        existing = (await self.db.execute(
            select(func.count(PayrollRun.id)).where(
                PayrollRun.tenant_id == tenant_id,
                PayrollRun.year == period.year,
                PayrollRun.month == period.month,
            )
        )).scalar_one()
        run = PayrollRun(
            id=uuid.uuid4(),
            tenant_id=tenant_id,
            month=period.month,
            year=period.year,
            payroll_number=format_payroll_number(period, existing + 1),
            status=PayrollRunStatus.DRAFT,
            created_by_id=user_id,
        )
        self.db.add(run)
        await self.db.flush()
        logger.info(f"Created payroll run {run.payroll_number}")
        return run, True

    async def _clear_run(self, run_id: uuid.UUID) -> None:
        """Review tasks first, then line items."""
        line_ids = select(PayrollLineItem.id).where(PayrollLineItem.payroll_run_id == run_id)
        await self.db.execute(
            delete(ReviewTask).where(ReviewTask.line_item_id.in_(line_ids)).execution_options(synchronize_session=False)
        )
        await self.db.execute(
            delete(PayrollLineItem).where(PayrollLineItem.payroll_run_id == run_id).execution_options(synchronize_session=False)
        )

    # ===========================================
    # LOADERS
    # ===========================================

    async def _load_employees(self, tenant_id: uuid.UUID) -> List[Employee]:
        has_active_contract = exists().where(
            EmploymentContract.employee_id == Employee.id,
            EmploymentContract.status == ContractStatus.ACTIVE,
        )
        result = await self.db.execute(
            select(Employee)
            .where(Employee.tenant_id == tenant_id, has_active_contract)
            .options(selectinload(Employee.contracts))
            .order_by(Employee.employee_number)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def _load_allowances(self, tenant_id: uuid.UUID) -> List[Allowance]:
        result = await self.db.execute(
            select(Allowance)
            .where(Allowance.tenant_id == tenant_id)
            .options(selectinload(Allowance.adjustment_type))
            .order_by(Allowance.created_at, Allowance.id)
        )
        return list(result.scalars().all())

    async def _load_deductions(self, tenant_id: uuid.UUID) -> List[Deduction]:
        result = await self.db.execute(
            select(Deduction)
            .where(Deduction.tenant_id == tenant_id)
            .options(selectinload(Deduction.adjustment_type))
            .order_by(Deduction.created_at, Deduction.id)
        )
        return list(result.scalars().all())

    async def _load_absences(
        self,
        tenant_id: uuid.UUID,
        period: PayrollPeriod,
        employee_ids: Sequence[uuid.UUID],
    ) -> Dict[uuid.UUID, Decimal]:
        result = await self.db.execute(
            select(AbsenceRecord).where(
                AbsenceRecord.tenant_id == tenant_id,
                AbsenceRecord.year == period.year,
                AbsenceRecord.month == period.month,
                AbsenceRecord.employee_id.in_(employee_ids),
            )
        )
        return {record.employee_id: record.deduction_amount for record in result.scalars().all()}

    async def _load_loan_accounts(self, employee_ids: Sequence[uuid.UUID]) -> Dict[uuid.UUID, StatutoryLoanAccount]:
        result = await self.db.execute(
            select(StatutoryLoanAccount)
            .where(
                StatutoryLoanAccount.employee_id.in_(employee_ids),
                StatutoryLoanAccount.status == LoanAccountStatus.ACTIVE,
            )
            .order_by(StatutoryLoanAccount.created_at)
        )
        accounts: Dict[uuid.UUID, StatutoryLoanAccount] = {}
        for account in result.scalars().all():
            accounts.setdefault(account.employee_id, account)
        return accounts

    async def _load_payment_details(self, employee_ids: Sequence[uuid.UUID]) -> Dict[uuid.UUID, PaymentDetail]:
        result = await self.db.execute(
            select(PaymentDetail).where(PaymentDetail.employee_id.in_(employee_ids))
        )
        return {detail.employee_id: detail for detail in result.scalars().all()}

    async def _load_reviewers(self, tenant_id: uuid.UUID) -> List[PayrollReviewer]:
        result = await self.db.execute(
            select(PayrollReviewer)
            .where(PayrollReviewer.tenant_id == tenant_id)
            .order_by(PayrollReviewer.reviewer_level)
        )
        return list(result.scalars().all())

    @staticmethod
    def _build_line_item(
        run: PayrollRun,
        employee: Employee,
        line: LineComputation,
        payment: Optional[PaymentDetail],
    ) -> PayrollLineItem:
        item = PayrollLineItem(
            id=uuid.uuid4(),
            payroll_run_id=run.id,
            employee_id=employee.id,
            employee_number=employee.employee_number,
            employee_name=employee.full_name,
            basic_salary=line.basic_salary,
            absence_deduction=line.absence_deduction,
            base_pay=line.base_pay,
            cash_allowances=line.cash_allowances,
            non_taxable_cash_allowances=line.non_taxable_cash_allowances,
            non_cash_benefits=line.non_cash_benefits,
            statutory_gross=line.statutory_gross,
            gross_pay=line.gross_pay,
            taxable_income=line.taxable_income,
            paye=line.paye,
            nssf_tier1=line.nssf.tier1,
            nssf_tier2=line.nssf.tier2,
            nssf=line.nssf.total,
            shif=line.shif,
            housing_levy=line.housing_levy,
            helb=line.helb,
            insurance_relief=line.insurance_relief,
            statutory_deductions=line.statutory_deductions,
            pre_tax_deductions=line.pre_tax_deductions,
            post_tax_deductions=line.post_tax_deductions,
            total_deductions=line.total_deductions,
            net_pay=line.net_pay,
            allowances_details=line.allowances_details,
            deductions_details=line.deductions_details,
        )
        if payment is not None:
            item.payment_method = payment.payment_method
            item.bank_name = payment.bank_name
            item.bank_code = payment.bank_code
            item.account_number = payment.account_number
            item.account_name = payment.account_name
            item.phone_number = payment.phone_number
        return item

    # ===========================================
    # QUERIES
    # ===========================================

    async def get_run(self, tenant_id: uuid.UUID, run_id: uuid.UUID, user_id: uuid.UUID) -> PayrollRun:
        await ensure_allowed(self.authorizer, user_id, tenant_id, PayrollModule.PAYROLL, PermissionAction.CAN_READ)
        run = (await self.db.execute(
            select(PayrollRun).where(PayrollRun.id == run_id, PayrollRun.tenant_id == tenant_id)
        )).scalar_one_or_none()
        if run is None:
            raise PayrollRunNotFoundException(run_id)
        return run

    async def list_runs(
        self,
        tenant_id: uuid.UUID,
        user_id: uuid.UUID,
        year: Optional[int] = None,
        status: Optional[PayrollRunStatus] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[PayrollRun], int]:
        """Runs newest period first, with the unpaged total."""
        await ensure_allowed(self.authorizer, user_id, tenant_id, PayrollModule.PAYROLL, PermissionAction.CAN_READ)
        conditions = [PayrollRun.tenant_id == tenant_id]
        if year is not None:
            conditions.append(PayrollRun.year == year)
        if status is not None:
            conditions.append(PayrollRun.status == status)

        total = (await self.db.execute(
            select(func.count(PayrollRun.id)).where(*conditions)
        )).scalar_one()
        result = await self.db.execute(
            select(PayrollRun)
            .where(*conditions)
            .order_by(PayrollRun.year.desc(), PayrollRun.month.desc())
            .offset(skip)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    async def list_line_items(
        self,
        tenant_id: uuid.UUID,
        run_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> List[PayrollLineItem]:
        run = await self.get_run(tenant_id, run_id, user_id)
        result = await self.db.execute(
            select(PayrollLineItem)
            .where(PayrollLineItem.payroll_run_id == run.id)
            .order_by(PayrollLineItem.employee_number)
        )
        return list(result.scalars().all())
