"""
PayCycle - Payroll Review Workflow

Every line item of a run is reviewed by every configured reviewer. Tasks are
the cross product (line item x reviewer), created PENDING whenever a run is
recomputed.

Line item aggregate status:
- REJECTED if any reviewer rejected
- APPROVED if every configured reviewer approved
- PENDING otherwise

Reviewers may set a task to any status at any time; there is no enforced
ordering between reviewer levels.
"""

import logging
import uuid
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Collection, Dict, Iterable, List, Mapping, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError

from paycycle.models.payroll import (
    PayrollLineItem,
    PayrollReviewer,
    PayrollRun,
    ReviewStatus,
    ReviewTask,
)
from paycycle.services.authorization import (
    Authorizer,
    PayrollModule,
    PermissionAction,
    ensure_allowed,
)
from paycycle.utils.error_handling import (
    DatabaseException,
    PayrollRunNotFoundException,
    ReviewTaskNotFoundException,
    ValidationException,
)


logger = logging.getLogger(__name__)


# ===========================================
# PURE HELPERS
# ===========================================

@dataclass(frozen=True)
class ReviewTaskSpec:
    line_item_id: uuid.UUID
    reviewer_id: uuid.UUID
    status: ReviewStatus = ReviewStatus.PENDING


@dataclass(frozen=True)
class ReviewerProgress:
    reviewer_id: uuid.UUID
    reviewer_level: int
    name: Optional[str]
    email: Optional[str]
    total: int
    approved: int
    rejected: int
    pending: int

    @property
    def completion_percentage(self) -> int:
        if self.total == 0:
            return 0
        return round(self.approved / self.total * 100)

    @property
    def status(self) -> ReviewStatus:
        if self.rejected > 0:
            return ReviewStatus.REJECTED
        if self.total > 0 and self.approved == self.total:
            return ReviewStatus.APPROVED
        return ReviewStatus.PENDING


def order_reviewers(reviewers: Iterable[PayrollReviewer]) -> List[PayrollReviewer]:
    return sorted(reviewers, key=lambda r: r.reviewer_level)


def expand_review_tasks(
    reviewers: Sequence[PayrollReviewer],
    line_item_ids: Sequence[uuid.UUID],
) -> List[ReviewTaskSpec]:
    """One PENDING task per (line item, reviewer), line-major, reviewers by level."""
    ordered = order_reviewers(reviewers)
    return [
        ReviewTaskSpec(line_item_id=line_item_id, reviewer_id=reviewer.id)
        for line_item_id in line_item_ids
        for reviewer in ordered
    ]


def aggregate_line_status(
    task_statuses: Mapping[uuid.UUID, Any],
    reviewer_ids: Collection[uuid.UUID],
) -> ReviewStatus:
    """
    Aggregate one line item's tasks, keyed by reviewer id.

    Only tasks of configured reviewers count; a task left behind by a
    removed reviewer neither approves nor rejects the line.
    """
    statuses = {
        reviewer_id: ReviewStatus(task_statuses[reviewer_id])
        for reviewer_id in reviewer_ids
        if reviewer_id in task_statuses
    }
    if ReviewStatus.REJECTED in statuses.values():
        return ReviewStatus.REJECTED
    if reviewer_ids and all(statuses.get(r) == ReviewStatus.APPROVED for r in reviewer_ids):
        return ReviewStatus.APPROVED
    return ReviewStatus.PENDING


def summarize_reviewer_progress(
    reviewers: Sequence[PayrollReviewer],
    tasks: Iterable[ReviewTask],
) -> List[ReviewerProgress]:
    counts: Dict[uuid.UUID, Counter] = {reviewer.id: Counter() for reviewer in reviewers}
    for task in tasks:
        if task.reviewer_id in counts:
            counts[task.reviewer_id][ReviewStatus(task.status)] += 1

    progress = []
    for reviewer in order_reviewers(reviewers):
        counter = counts[reviewer.id]
        progress.append(ReviewerProgress(
            reviewer_id=reviewer.id,
            reviewer_level=reviewer.reviewer_level,
            name=reviewer.name,
            email=reviewer.email,
            total=sum(counter.values()),
            approved=counter[ReviewStatus.APPROVED],
            rejected=counter[ReviewStatus.REJECTED],
            pending=counter[ReviewStatus.PENDING],
        ))
    return progress


def _parse_status(status: Any) -> ReviewStatus:
    try:
        return ReviewStatus(status.upper() if isinstance(status, str) else status)
    except ValueError:
        raise ValidationException(
            message=f"Invalid review status: {status!r}",
            field="status",
            details={"allowed": [s.value for s in ReviewStatus]},
        )


# ===========================================
# SERVICE
# ===========================================

class ReviewWorkflowService:
    """Review progress queries and task updates."""

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

    async def _reviewers(self, tenant_id: uuid.UUID) -> List[PayrollReviewer]:
        result = await self.db.execute(
            select(PayrollReviewer)
            .where(PayrollReviewer.tenant_id == tenant_id)
            .order_by(PayrollReviewer.reviewer_level)
        )
        return list(result.scalars().all())

    async def _run_tasks(self, run_id: uuid.UUID) -> List[ReviewTask]:
        result = await self.db.execute(
            select(ReviewTask)
            .join(PayrollLineItem, ReviewTask.line_item_id == PayrollLineItem.id)
            .where(PayrollLineItem.payroll_run_id == run_id)
        )
        return list(result.scalars().all())

    async def get_review_status(
        self,
        tenant_id: uuid.UUID,
        run_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> Dict[str, Any]:
        """Per-reviewer completion plus line item aggregate counts for a run."""
        await ensure_allowed(self.authorizer, user_id, tenant_id, PayrollModule.PAYROLL_REVIEW, PermissionAction.CAN_READ)
        run = await self._get_run(tenant_id, run_id)
        reviewers = await self._reviewers(tenant_id)
        tasks = await self._run_tasks(run.id)

        line_statuses = self._line_statuses(tasks, [reviewer.id for reviewer in reviewers])
        line_counts = Counter(line_statuses.values())
        line_item_ids = (await self.db.execute(
            select(PayrollLineItem.id).where(PayrollLineItem.payroll_run_id == run.id)
        )).scalars().all()

        # Line items without any task (no reviewers configured) stay pending
        pending_lines = len(line_item_ids) - line_counts[ReviewStatus.APPROVED] - line_counts[ReviewStatus.REJECTED]

        return {
            "run_id": run.id,
            "payroll_number": run.payroll_number,
            "run_status": run.status,
            "reviewer_count": len(reviewers),
            "reviewers": summarize_reviewer_progress(reviewers, tasks),
            "line_items": {
                "total": len(line_item_ids),
                "approved": line_counts[ReviewStatus.APPROVED],
                "rejected": line_counts[ReviewStatus.REJECTED],
                "pending": pending_lines,
            },
        }

    async def list_line_review_statuses(
        self,
        tenant_id: uuid.UUID,
        run_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> Dict[uuid.UUID, ReviewStatus]:
        """Aggregate review status of every line item in a run."""
        await ensure_allowed(self.authorizer, user_id, tenant_id, PayrollModule.PAYROLL_REVIEW, PermissionAction.CAN_READ)
        run = await self._get_run(tenant_id, run_id)
        reviewers = await self._reviewers(tenant_id)
        tasks = await self._run_tasks(run.id)
        statuses = self._line_statuses(tasks, [reviewer.id for reviewer in reviewers])

        line_ids = (await self.db.execute(
            select(PayrollLineItem.id).where(PayrollLineItem.payroll_run_id == run.id)
        )).scalars().all()
        return {line_id: statuses.get(line_id, ReviewStatus.PENDING) for line_id in line_ids}

    @staticmethod
    def _line_statuses(
        tasks: Iterable[ReviewTask],
        reviewer_ids: Collection[uuid.UUID],
    ) -> Dict[uuid.UUID, ReviewStatus]:
        by_line: Dict[uuid.UUID, Dict[uuid.UUID, ReviewStatus]] = {}
        for task in tasks:
            by_line.setdefault(task.line_item_id, {})[task.reviewer_id] = task.status
        return {
            line_id: aggregate_line_status(statuses, reviewer_ids)
            for line_id, statuses in by_line.items()
        }

    async def _tenant_tasks(self, tenant_id: uuid.UUID, task_ids: Sequence[uuid.UUID]) -> List[ReviewTask]:
        result = await self.db.execute(
            select(ReviewTask)
            .join(PayrollLineItem, ReviewTask.line_item_id == PayrollLineItem.id)
            .join(PayrollRun, PayrollLineItem.payroll_run_id == PayrollRun.id)
            .where(ReviewTask.id.in_(task_ids), PayrollRun.tenant_id == tenant_id)
        )
        return list(result.scalars().all())

    @staticmethod
    def _apply_status(task: ReviewTask, status: ReviewStatus, now: datetime) -> None:
        task.status = status
        task.reviewed_at = None if status == ReviewStatus.PENDING else now

    async def update_review_task(
        self,
        tenant_id: uuid.UUID,
        task_id: uuid.UUID,
        status: Any,
        user_id: uuid.UUID,
    ) -> ReviewTask:
        """Set one task's status; reviewed_at is cleared when reset to PENDING."""
        await ensure_allowed(self.authorizer, user_id, tenant_id, PayrollModule.PAYROLL_REVIEW, PermissionAction.CAN_WRITE)
        new_status = _parse_status(status)

        tasks = await self._tenant_tasks(tenant_id, [task_id])
        if not tasks:
            raise ReviewTaskNotFoundException([task_id])
        task = tasks[0]
        self._apply_status(task, new_status, datetime.now(timezone.utc))
        await self._commit()
        logger.info(f"Review task {task_id} set to {new_status.value} by {user_id}")
        return task

    async def bulk_update_review_tasks(
        self,
        tenant_id: uuid.UUID,
        task_ids: Sequence[uuid.UUID],
        status: Any,
        user_id: uuid.UUID,
    ) -> List[ReviewTask]:
        """
        Set many tasks to one status.

        Every task must belong to the tenant; if any does not, nothing is
        written.
        """
        await ensure_allowed(self.authorizer, user_id, tenant_id, PayrollModule.PAYROLL_REVIEW, PermissionAction.CAN_WRITE)
        new_status = _parse_status(status)
        unique_ids = list(dict.fromkeys(task_ids))
        if not unique_ids:
            raise ValidationException(message="No review tasks given", field="task_ids")

        tasks = await self._tenant_tasks(tenant_id, unique_ids)
        found = {task.id for task in tasks}
        missing = [task_id for task_id in unique_ids if task_id not in found]
        if missing:
            raise ReviewTaskNotFoundException(missing)

        now = datetime.now(timezone.utc)
        for task in tasks:
            self._apply_status(task, new_status, now)
        await self._commit()
        logger.info(f"Bulk review update: {len(tasks)} task(s) set to {new_status.value} by {user_id}")
        return tasks

    async def _commit(self) -> None:
        try:
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error(f"Review task update failed: {exc}", exc_info=True)
            raise DatabaseException("Review update failed; no changes were saved", original_error=exc)
