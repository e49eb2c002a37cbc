"""
PayCycle - Schemas Package

Pydantic schemas for request/response validation.
"""

from paycycle.schemas.payroll import (
    # Sync
    PayrollSyncRequest,
    PayrollSyncResponse,
    RunTotalsResponse,
    SyncWarningResponse,
    # Runs
    PayrollRunSummary,
    PayrollRunResponse,
    PayrollRunListResponse,
    PayrollLineItemResponse,
    RunStatusUpdate,
    # Review
    ReviewerProgressResponse,
    ReviewStatusResponse,
    ReviewTaskUpdate,
    ReviewTaskBulkUpdate,
    ReviewTaskResponse,
    LineReviewStatusResponse,
    # Adjustments
    AdjustmentAssignRequest,
    AdjustmentAssignmentResponse,
    AdjustmentImportRow,
    AdjustmentImportRequest,
    AdjustmentImportResponse,
)
