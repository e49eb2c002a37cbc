"""
PayCycle - Payroll Router

API endpoints for payroll sync, runs, review and adjustment import.
Mounted under /api/v1/tenants/{tenant_id}/payroll.
"""

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query, status

from paycycle.dependencies import (
    get_adjustment_service,
    get_current_user_id,
    get_payroll_service,
    get_review_service,
    get_run_status_service,
)
from paycycle.models.payroll import PayrollRunStatus
from paycycle.services.adjustment_service import AdjustmentService
from paycycle.services.payroll_service import PayrollService, SyncOutcome
from paycycle.services.review_workflow import ReviewWorkflowService
from paycycle.services.run_status import RunStatusService
from paycycle.schemas.payroll import (
    # Sync
    PayrollSyncRequest,
    PayrollSyncResponse,
    RunTotalsResponse,
    SyncWarningResponse,
    # Runs
    PayrollRunResponse,
    PayrollRunSummary,
    PayrollRunListResponse,
    PayrollLineItemResponse,
    RunStatusUpdate,
    # Review
    ReviewStatusResponse,
    ReviewerProgressResponse,
    ReviewTaskUpdate,
    ReviewTaskBulkUpdate,
    ReviewTaskResponse,
    LineReviewStatusResponse,
    # Adjustments
    AdjustmentAssignRequest,
    AdjustmentAssignmentResponse,
    AdjustmentImportRequest,
    AdjustmentImportResponse,
)
from paycycle.utils.error_handling import NoEligibleEmployeesException


router = APIRouter()


# ===========================================
# SYNC
# ===========================================

@router.post(
    "/sync",
    response_model=PayrollSyncResponse,
    summary="Compute payroll for a month",
    description="Recompute every eligible employee's line for the month. Safe to repeat.",
)
async def sync_payroll(
    data: PayrollSyncRequest,
    tenant_id: uuid.UUID = Path(...),
    user_id: uuid.UUID = Depends(get_current_user_id),
    service: PayrollService = Depends(get_payroll_service),
):
    """Run an idempotent payroll sync."""
    result = await service.sync(tenant_id, data.month, data.year, user_id)
    if result.outcome == SyncOutcome.NO_ELIGIBLE_EMPLOYEES:
        raise NoEligibleEmployeesException(result.month, result.year)

    return PayrollSyncResponse(
        outcome=result.outcome.value,
        run_id=result.run_id,
        payroll_number=result.payroll_number,
        status=result.status,
        month=result.month,
        year=result.year,
        is_new_run=result.is_new_run,
        line_count=result.line_count,
        review_task_count=result.review_task_count,
        totals=RunTotalsResponse.model_validate(result.totals),
        warnings=[SyncWarningResponse.model_validate(w) for w in result.warnings],
    )


# ===========================================
# RUNS
# ===========================================

@router.get(
    "/runs",
    response_model=PayrollRunListResponse,
    summary="List payroll runs",
)
async def list_runs(
    tenant_id: uuid.UUID = Path(...),
    year: Optional[int] = Query(None, ge=1900, le=2100),
    run_status: Optional[PayrollRunStatus] = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    user_id: uuid.UUID = Depends(get_current_user_id),
    service: PayrollService = Depends(get_payroll_service),
):
    runs, total = await service.list_runs(tenant_id, user_id, year=year, status=run_status, skip=skip, limit=limit)
    return PayrollRunListResponse(
        items=[PayrollRunSummary.model_validate(run) for run in runs],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get(
    "/runs/{run_id}",
    response_model=PayrollRunResponse,
    summary="Get a payroll run",
)
async def get_run(
    tenant_id: uuid.UUID = Path(...),
    run_id: uuid.UUID = Path(...),
    user_id: uuid.UUID = Depends(get_current_user_id),
    service: PayrollService = Depends(get_payroll_service),
):
    run = await service.get_run(tenant_id, run_id, user_id)
    return PayrollRunResponse.model_validate(run)


@router.get(
    "/runs/{run_id}/line-items",
    response_model=List[PayrollLineItemResponse],
    summary="List a run's line items",
)
async def list_line_items(
    tenant_id: uuid.UUID = Path(...),
    run_id: uuid.UUID = Path(...),
    user_id: uuid.UUID = Depends(get_current_user_id),
    service: PayrollService = Depends(get_payroll_service),
):
    items = await service.list_line_items(tenant_id, run_id, user_id)
    return [PayrollLineItemResponse.model_validate(item) for item in items]


@router.post(
    "/runs/{run_id}/status",
    response_model=PayrollRunResponse,
    summary="Move a payroll run to a new status",
)
async def transition_run(
    data: RunStatusUpdate,
    tenant_id: uuid.UUID = Path(...),
    run_id: uuid.UUID = Path(...),
    user_id: uuid.UUID = Depends(get_current_user_id),
    service: RunStatusService = Depends(get_run_status_service),
):
    run = await service.transition(tenant_id, run_id, data.status, user_id)
    return PayrollRunResponse.model_validate(run)


@router.delete(
    "/runs/{run_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a draft or cancelled payroll run",
)
async def delete_run(
    tenant_id: uuid.UUID = Path(...),
    run_id: uuid.UUID = Path(...),
    user_id: uuid.UUID = Depends(get_current_user_id),
    service: RunStatusService = Depends(get_run_status_service),
):
    await service.delete_run(tenant_id, run_id, user_id)


# ===========================================
# REVIEW
# ===========================================

@router.get(
    "/runs/{run_id}/review-status",
    response_model=ReviewStatusResponse,
    summary="Review progress of a run",
)
async def get_review_status(
    tenant_id: uuid.UUID = Path(...),
    run_id: uuid.UUID = Path(...),
    user_id: uuid.UUID = Depends(get_current_user_id),
    service: ReviewWorkflowService = Depends(get_review_service),
):
    summary = await service.get_review_status(tenant_id, run_id, user_id)
    return ReviewStatusResponse(
        run_id=summary["run_id"],
        payroll_number=summary["payroll_number"],
        run_status=summary["run_status"],
        reviewer_count=summary["reviewer_count"],
        reviewers=[ReviewerProgressResponse.model_validate(r) for r in summary["reviewers"]],
        line_items=summary["line_items"],
    )


@router.get(
    "/runs/{run_id}/line-review-statuses",
    response_model=List[LineReviewStatusResponse],
    summary="Aggregate review status of every line item",
)
async def list_line_review_statuses(
    tenant_id: uuid.UUID = Path(...),
    run_id: uuid.UUID = Path(...),
    user_id: uuid.UUID = Depends(get_current_user_id),
    service: ReviewWorkflowService = Depends(get_review_service),
):
    statuses = await service.list_line_review_statuses(tenant_id, run_id, user_id)
    return [
        LineReviewStatusResponse(line_item_id=line_item_id, status=line_status)
        for line_item_id, line_status in statuses.items()
    ]


@router.patch(
    "/review-tasks/{task_id}",
    response_model=ReviewTaskResponse,
    summary="Approve, reject or reset one review task",
)
async def update_review_task(
    data: ReviewTaskUpdate,
    tenant_id: uuid.UUID = Path(...),
    task_id: uuid.UUID = Path(...),
    user_id: uuid.UUID = Depends(get_current_user_id),
    service: ReviewWorkflowService = Depends(get_review_service),
):
    task = await service.update_review_task(tenant_id, task_id, data.status, user_id)
    return ReviewTaskResponse.model_validate(task)


@router.patch(
    "/review-tasks",
    response_model=List[ReviewTaskResponse],
    summary="Set many review tasks to one status",
)
async def bulk_update_review_tasks(
    data: ReviewTaskBulkUpdate,
    tenant_id: uuid.UUID = Path(...),
    user_id: uuid.UUID = Depends(get_current_user_id),
    service: ReviewWorkflowService = Depends(get_review_service),
):
    tasks = await service.bulk_update_review_tasks(tenant_id, data.task_ids, data.status, user_id)
    return [ReviewTaskResponse.model_validate(task) for task in tasks]


# ===========================================
# ADJUSTMENTS
# ===========================================

@router.post(
    "/adjustments/{kind}",
    response_model=AdjustmentAssignmentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Assign an allowance or deduction type to a target",
)
async def assign_adjustment(
    data: AdjustmentAssignRequest,
    tenant_id: uuid.UUID = Path(...),
    kind: str = Path(..., description="allowance or deduction"),
    user_id: uuid.UUID = Depends(get_current_user_id),
    service: AdjustmentService = Depends(get_adjustment_service),
):
    assignment = await service.assign(tenant_id, kind, user_id, **data.model_dump())
    return AdjustmentAssignmentResponse.model_validate(assignment)


@router.post(
    "/adjustments/{kind}/import",
    response_model=AdjustmentImportResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Bulk import allowance or deduction assignments",
    description="All rows are validated first; nothing is saved unless every row is valid.",
)
async def import_adjustments(
    data: AdjustmentImportRequest,
    tenant_id: uuid.UUID = Path(...),
    kind: str = Path(..., description="allowance or deduction"),
    user_id: uuid.UUID = Depends(get_current_user_id),
    service: AdjustmentService = Depends(get_adjustment_service),
):
    rows = [row.model_dump() for row in data.rows]
    assignments = await service.import_assignments(tenant_id, kind, rows, user_id)
    return AdjustmentImportResponse(
        kind=service.parse_kind(kind).value,
        imported=len(assignments),
        ids=[assignment.id for assignment in assignments],
    )
