"""
PayCycle - Payroll Run Status

Run lifecycle:

    DRAFT        -> PREPARED, UNDER_REVIEW, CANCELLED
    PREPARED     -> UNDER_REVIEW, DRAFT, CANCELLED
    UNDER_REVIEW -> APPROVED, REJECTED, DRAFT
    APPROVED     -> LOCKED, PAID, DRAFT
    LOCKED       -> PAID, UNLOCKED
    UNLOCKED     -> DRAFT, LOCKED
    PAID         -> COMPLETED
    COMPLETED    (terminal)
    CANCELLED    -> DRAFT
    REJECTED     -> DRAFT

Runs may only be deleted while DRAFT or CANCELLED.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, List

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from paycycle.models.employee import LoanAccountStatus, StatutoryLoanAccount
from paycycle.models.payroll import (
    PayrollLineItem,
    PayrollRun,
    PayrollRunStatus,
    PayrollRunStatusChange,
    ReviewTask,
)
from paycycle.services.authorization import (
    Authorizer,
    PayrollModule,
    PermissionAction,
    ensure_allowed,
)
from paycycle.utils.error_handling import (
    AppException,
    DatabaseException,
    InvalidStatusTransitionException,
    PayrollRunNotFoundException,
    RunDeletionNotAllowedException,
    ValidationException,
)
from paycycle.utils.money import ZERO, round_money, to_decimal


logger = logging.getLogger(__name__)


S = PayrollRunStatus

ALLOWED_TRANSITIONS: Dict[PayrollRunStatus, FrozenSet[PayrollRunStatus]] = {
    S.DRAFT: frozenset({S.PREPARED, S.UNDER_REVIEW, S.CANCELLED}),
    S.PREPARED: frozenset({S.UNDER_REVIEW, S.DRAFT, S.CANCELLED}),
    S.UNDER_REVIEW: frozenset({S.APPROVED, S.REJECTED, S.DRAFT}),
    S.APPROVED: frozenset({S.LOCKED, S.PAID, S.DRAFT}),
    S.LOCKED: frozenset({S.PAID, S.UNLOCKED}),
    S.UNLOCKED: frozenset({S.DRAFT, S.LOCKED}),
    S.PAID: frozenset({S.COMPLETED}),
    S.COMPLETED: frozenset(),
    S.CANCELLED: frozenset({S.DRAFT}),
    S.REJECTED: frozenset({S.DRAFT}),
}

DELETABLE_STATUSES = frozenset({S.DRAFT, S.CANCELLED})


def parse_status(value: Any) -> PayrollRunStatus:
    try:
        return PayrollRunStatus(value.upper() if isinstance(value, str) else value)
    except ValueError:
        raise ValidationException(
            message=f"Unknown payroll run status: {value!r}",
            field="status",
            details={"allowed": [s.value for s in PayrollRunStatus]},
        )


def allowed_targets(current: PayrollRunStatus) -> List[PayrollRunStatus]:
    return sorted(ALLOWED_TRANSITIONS[current], key=lambda s: s.value)


def validate_transition(current: Any, target: Any) -> PayrollRunStatus:
    """
    Return the target status if the move is allowed.

    Raises:
        InvalidStatusTransitionException: naming both states
    """
    current_status = parse_status(current)
    target_status = parse_status(target)
    if target_status not in ALLOWED_TRANSITIONS[current_status]:
        raise InvalidStatusTransitionException(
            current_status.value,
            target_status.value,
            allowed=[s.value for s in allowed_targets(current_status)],
        )
    return target_status


class RunStatusService:
    """Status transitions and deletion of payroll runs."""

    def __init__(self, db: AsyncSession, authorizer: Authorizer):
        self.db = db
        self.authorizer = authorizer

    async def _get_run(self, tenant_id: uuid.UUID, run_id: uuid.UUID) -> PayrollRun:
        run = (await self.db.execute(
            select(PayrollRun).where(PayrollRun.id == run_id, PayrollRun.tenant_id == tenant_id)
        )).scalar_one_or_none()
        if run is None:
            raise PayrollRunNotFoundException(run_id)
        return run

    async def transition(
        self,
        tenant_id: uuid.UUID,
        run_id: uuid.UUID,
        target_status: Any,
        user_id: uuid.UUID,
    ) -> PayrollRun:
        await ensure_allowed(self.authorizer, user_id, tenant_id, PayrollModule.PAYROLL, PermissionAction.CAN_WRITE)
        run = await self._get_run(tenant_id, run_id)
        previous = run.status
        target = validate_transition(previous, target_status)
        now = datetime.now(timezone.utc)

        try:
            if target == S.LOCKED:
                run.locked_at = now
                run.locked_by_id = user_id
            elif target == S.UNLOCKED:
                run.locked_at = None
                run.locked_by_id = None
            elif target == S.PAID:
                run.paid_at = now
                run.paid_by_id = user_id
            elif target == S.COMPLETED:
                await self._apply_helb_repayments(run)

            run.status = target
            run.updated_by_id = user_id
            self.db.add(PayrollRunStatusChange(
                payroll_run_id=run.id,
                from_status=previous,
                to_status=target,
                actor_id=user_id,
            ))
            await self.db.commit()
        except AppException:
            await self.db.rollback()
            raise
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error(f"Status change of {run_id} failed: {exc}", exc_info=True)
            raise DatabaseException("Status change failed; no changes were saved", original_error=exc)

        await self.db.refresh(run)
        logger.info(f"Payroll run {run.payroll_number}: {previous.value} -> {target.value} by {user_id}")
        return run

    async def _apply_helb_repayments(self, run: PayrollRun) -> None:
        """Reduce each active HELB balance by the run's repayment, never below zero."""
        result = await self.db.execute(
            select(PayrollLineItem.employee_id, PayrollLineItem.helb).where(
                PayrollLineItem.payroll_run_id == run.id,
                PayrollLineItem.helb > 0,
            )
        )
        repayments = {employee_id: to_decimal(helb) for employee_id, helb in result.all()}
        if not repayments:
            return

        accounts = (await self.db.execute(
            select(StatutoryLoanAccount).where(
                StatutoryLoanAccount.employee_id.in_(list(repayments)),
                StatutoryLoanAccount.status == LoanAccountStatus.ACTIVE,
            ).order_by(StatutoryLoanAccount.created_at)
        )).scalars().all()

        seen = set()
        for account in accounts:
            # One account per employee is charged
            if account.employee_id in seen:
                continue
            seen.add(account.employee_id)
            balance = to_decimal(account.current_balance)
            account.current_balance = round_money(max(ZERO, balance - repayments[account.employee_id]))
        logger.info(f"Applied HELB repayments for {len(seen)} account(s) on {run.payroll_number}")

    async def delete_run(self, tenant_id: uuid.UUID, run_id: uuid.UUID, user_id: uuid.UUID) -> None:
        """Delete a DRAFT or CANCELLED run with its line items and review tasks."""
        await ensure_allowed(self.authorizer, user_id, tenant_id, PayrollModule.PAYROLL, PermissionAction.CAN_DELETE)
        run = await self._get_run(tenant_id, run_id)
        if run.status not in DELETABLE_STATUSES:
            raise RunDeletionNotAllowedException(run.payroll_number, run.status.value)

        payroll_number = run.payroll_number
        line_ids = select(PayrollLineItem.id).where(PayrollLineItem.payroll_run_id == run.id)
        try:
            await self.db.execute(
                delete(PayrollRunStatusChange)
                .where(PayrollRunStatusChange.payroll_run_id == run.id)
                .execution_options(synchronize_session=False)
            )
            await self.db.execute(
                delete(ReviewTask)
                .where(ReviewTask.line_item_id.in_(line_ids))
                .execution_options(synchronize_session=False)
            )
            await self.db.execute(
                delete(PayrollLineItem)
                .where(PayrollLineItem.payroll_run_id == run.id)
                .execution_options(synchronize_session=False)
            )
            await self.db.delete(run)
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error(f"Deleting payroll run {run_id} failed: {exc}", exc_info=True)
            raise DatabaseException("Payroll run deletion failed; no changes were saved", original_error=exc)

        logger.info(f"Deleted payroll run {payroll_number} by {user_id}")
