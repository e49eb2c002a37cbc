"""
PayCycle - Review Workflow Tests
"""

import pytest
import pytest_asyncio
from types import SimpleNamespace
from uuid import uuid4

from sqlalchemy import select

from paycycle.models import ReviewStatus, ReviewTask
from paycycle.services.payroll_service import PayrollService
from paycycle.services.review_workflow import (
    ReviewWorkflowService,
    aggregate_line_status,
    expand_review_tasks,
)
from paycycle.utils.error_handling import (
    AuthorizationException,
    PayrollRunNotFoundException,
    ReviewTaskNotFoundException,
    ValidationException,
)


APPROVED = ReviewStatus.APPROVED
REJECTED = ReviewStatus.REJECTED
PENDING = ReviewStatus.PENDING


class TestPureHelpers:

    def test_expand_is_line_major_by_reviewer_level(self):
        senior = SimpleNamespace(id=uuid4(), reviewer_level=2)
        junior = SimpleNamespace(id=uuid4(), reviewer_level=1)
        lines = [uuid4(), uuid4()]

        specs = expand_review_tasks([senior, junior], lines)

        assert [(s.line_item_id, s.reviewer_id) for s in specs] == [
            (lines[0], junior.id), (lines[0], senior.id),
            (lines[1], junior.id), (lines[1], senior.id),
        ]
        assert all(s.status == PENDING for s in specs)

    def test_expand_without_reviewers(self):
        assert expand_review_tasks([], [uuid4()]) == []

    @pytest.mark.parametrize("statuses,expected", [
        ([APPROVED, APPROVED], APPROVED),
        ([APPROVED, PENDING], PENDING),
        ([APPROVED, REJECTED], REJECTED),
        ([PENDING, REJECTED], REJECTED),
        ([APPROVED], PENDING),
        ([], PENDING),
    ])
    def test_aggregate_line_status(self, statuses, expected):
        reviewers = [uuid4(), uuid4()]
        assert aggregate_line_status(dict(zip(reviewers, statuses)), reviewers) == expected

    def test_aggregate_with_no_reviewers_stays_pending(self):
        assert aggregate_line_status({}, []) == PENDING

    def test_removed_reviewer_task_does_not_count(self):
        configured, removed = uuid4(), uuid4()
        assert aggregate_line_status({removed: APPROVED, configured: PENDING}, [configured]) == PENDING
        assert aggregate_line_status({removed: REJECTED, configured: APPROVED}, [configured]) == APPROVED


@pytest_asyncio.fixture
async def reviewed_run(db_session, factory, tenant_id, user_id, admin_authorizer):
    await factory.employee()
    await factory.employee()
    await factory.reviewers(2)
    result = await PayrollService(db_session, admin_authorizer).sync(tenant_id, 6, 2025, user_id)
    tasks = (await db_session.execute(select(ReviewTask))).scalars().all()
    return SimpleNamespace(run_id=result.run_id, tasks=list(tasks))


class TestReviewWorkflowService:

    @pytest.mark.asyncio
    async def test_fresh_run_is_all_pending(self, db_session, tenant_id, user_id, admin_authorizer, reviewed_run):
        status = await ReviewWorkflowService(db_session, admin_authorizer).get_review_status(
            tenant_id, reviewed_run.run_id, user_id,
        )

        assert status["reviewer_count"] == 2
        assert status["line_items"] == {"total": 2, "approved": 0, "rejected": 0, "pending": 2}
        assert [r.completion_percentage for r in status["reviewers"]] == [0, 0]
        assert [r.reviewer_level for r in status["reviewers"]] == [1, 2]

    @pytest.mark.asyncio
    async def test_line_approved_only_when_every_reviewer_approves(
        self, db_session, tenant_id, user_id, admin_authorizer, reviewed_run,
    ):
        service = ReviewWorkflowService(db_session, admin_authorizer)
        line_id = reviewed_run.tasks[0].line_item_id
        line_tasks = [t.id for t in reviewed_run.tasks if t.line_item_id == line_id]

        await service.update_review_task(tenant_id, line_tasks[0], "APPROVED", user_id)
        statuses = await service.list_line_review_statuses(tenant_id, reviewed_run.run_id, user_id)
        assert statuses[line_id] == PENDING

        await service.update_review_task(tenant_id, line_tasks[1], "approved", user_id)
        statuses = await service.list_line_review_statuses(tenant_id, reviewed_run.run_id, user_id)
        assert statuses[line_id] == APPROVED

        summary = await service.get_review_status(tenant_id, reviewed_run.run_id, user_id)
        assert summary["line_items"]["approved"] == 1
        assert [r.completion_percentage for r in summary["reviewers"]] == [50, 50]

    @pytest.mark.asyncio
    async def test_single_rejection_rejects_line(self, db_session, tenant_id, user_id, admin_authorizer, reviewed_run):
        service = ReviewWorkflowService(db_session, admin_authorizer)
        task = reviewed_run.tasks[0]
        line_id = task.line_item_id

        await service.bulk_update_review_tasks(
            tenant_id, [t.id for t in reviewed_run.tasks if t.line_item_id == line_id], APPROVED, user_id,
        )
        await service.update_review_task(tenant_id, task.id, REJECTED, user_id)

        statuses = await service.list_line_review_statuses(tenant_id, reviewed_run.run_id, user_id)
        assert statuses[line_id] == REJECTED

    @pytest.mark.asyncio
    async def test_reviewed_at_set_and_cleared(self, db_session, tenant_id, user_id, admin_authorizer, reviewed_run):
        service = ReviewWorkflowService(db_session, admin_authorizer)
        task_id = reviewed_run.tasks[0].id

        task = await service.update_review_task(tenant_id, task_id, APPROVED, user_id)
        assert task.status == APPROVED
        assert task.reviewed_at is not None

        task = await service.update_review_task(tenant_id, task_id, PENDING, user_id)
        assert task.status == PENDING
        assert task.reviewed_at is None

    @pytest.mark.asyncio
    async def test_bulk_update_with_unknown_id_writes_nothing(
        self, db_session, tenant_id, user_id, admin_authorizer, reviewed_run,
    ):
        service = ReviewWorkflowService(db_session, admin_authorizer)
        known = [t.id for t in reviewed_run.tasks[:2]]
        missing = uuid4()

        with pytest.raises(ReviewTaskNotFoundException) as exc_info:
            await service.bulk_update_review_tasks(tenant_id, known + [missing], APPROVED, user_id)
        assert str(missing) in str(exc_info.value.details)

        statuses = (await db_session.execute(
            select(ReviewTask.status).where(ReviewTask.id.in_(known))
        )).scalars().all()
        assert set(statuses) == {PENDING}

    @pytest.mark.asyncio
    async def test_other_tenant_cannot_touch_tasks(self, db_session, user_id, admin_authorizer, reviewed_run):
        service = ReviewWorkflowService(db_session, admin_authorizer)
        with pytest.raises(ReviewTaskNotFoundException):
            await service.update_review_task(uuid4(), reviewed_run.tasks[0].id, APPROVED, user_id)
        with pytest.raises(PayrollRunNotFoundException):
            await service.get_review_status(uuid4(), reviewed_run.run_id, user_id)

    @pytest.mark.asyncio
    async def test_invalid_status_rejected(self, db_session, tenant_id, user_id, admin_authorizer, reviewed_run):
        service = ReviewWorkflowService(db_session, admin_authorizer)
        with pytest.raises(ValidationException):
            await service.update_review_task(tenant_id, reviewed_run.tasks[0].id, "MAYBE", user_id)

    @pytest.mark.asyncio
    async def test_viewer_cannot_review(self, db_session, tenant_id, user_id, viewer_authorizer, reviewed_run):
        service = ReviewWorkflowService(db_session, viewer_authorizer)
        with pytest.raises(AuthorizationException):
            await service.update_review_task(tenant_id, reviewed_run.tasks[0].id, APPROVED, user_id)
        # Reading progress is allowed
        status = await service.get_review_status(tenant_id, reviewed_run.run_id, user_id)
        assert status["reviewer_count"] == 2
