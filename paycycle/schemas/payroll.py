"""
PayCycle - Payroll Schemas

Pydantic schemas for payroll requests and responses.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Dict, Any, Union
from uuid import UUID

from pydantic import BaseModel, Field

from paycycle.models.adjustment import CalculationMode, TargetKind
from paycycle.models.employee import PaymentMethod
from paycycle.models.payroll import PayrollRunStatus, ReviewStatus


# ===========================================
# SYNC SCHEMAS
# ===========================================

class PayrollSyncRequest(BaseModel):
    """Recompute request; month accepts 1-12 or a month name."""
    month: Union[int, str]
    year: Union[int, str]


class RunTotalsResponse(BaseModel):
    employee_count: int
    total_gross_pay: Decimal
    total_net_pay: Decimal
    total_statutory_deductions: Decimal
    total_deductions: Decimal
    total_paye: Decimal
    total_nssf: Decimal
    total_shif: Decimal
    total_housing_levy: Decimal
    total_helb: Decimal

    class Config:
        from_attributes = True


class SyncWarningResponse(BaseModel):
    record_type: str
    record_id: Optional[UUID] = None
    employee_id: Optional[UUID] = None
    message: str

    class Config:
        from_attributes = True


class PayrollSyncResponse(BaseModel):
    """Result of a successful sync."""
    outcome: str
    run_id: UUID
    payroll_number: str
    status: PayrollRunStatus
    month: int
    year: int
    is_new_run: bool
    line_count: int
    review_task_count: int
    totals: RunTotalsResponse
    warnings: List[SyncWarningResponse] = []


# ===========================================
# RUN SCHEMAS
# ===========================================

class PayrollRunSummary(BaseModel):
    """Payroll run summary for lists."""
    id: UUID
    payroll_number: str
    month: int
    year: int
    status: PayrollRunStatus
    employee_count: int
    total_gross_pay: Decimal
    total_net_pay: Decimal
    total_deductions: Decimal
    last_synced_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class PayrollRunResponse(PayrollRunSummary):
    """Full payroll run response."""
    tenant_id: UUID
    total_statutory_deductions: Decimal
    total_paye: Decimal
    total_nssf: Decimal
    total_shif: Decimal
    total_housing_levy: Decimal
    total_helb: Decimal
    locked_at: Optional[datetime] = None
    locked_by_id: Optional[UUID] = None
    paid_at: Optional[datetime] = None
    paid_by_id: Optional[UUID] = None
    updated_at: datetime

    class Config:
        from_attributes = True


class PayrollRunListResponse(BaseModel):
    items: List[PayrollRunSummary]
    total: int
    skip: int
    limit: int


class PayrollLineItemResponse(BaseModel):
    """One employee's computed payroll line."""
    id: UUID
    payroll_run_id: UUID
    employee_id: UUID
    employee_number: str
    employee_name: str

    basic_salary: Decimal
    absence_deduction: Decimal
    base_pay: Decimal
    cash_allowances: Decimal
    non_taxable_cash_allowances: Decimal
    non_cash_benefits: Decimal
    statutory_gross: Decimal
    gross_pay: Decimal
    taxable_income: Decimal

    paye: Decimal
    nssf_tier1: Decimal
    nssf_tier2: Decimal
    nssf: Decimal
    shif: Decimal
    housing_levy: Decimal
    helb: Decimal
    insurance_relief: Decimal

    statutory_deductions: Decimal
    pre_tax_deductions: Decimal
    post_tax_deductions: Decimal
    total_deductions: Decimal
    net_pay: Decimal

    payment_method: Optional[PaymentMethod] = None
    bank_name: Optional[str] = None
    account_number: Optional[str] = None
    phone_number: Optional[str] = None

    allowances_details: List[Dict[str, Any]] = []
    deductions_details: List[Dict[str, Any]] = []

    class Config:
        from_attributes = True


class RunStatusUpdate(BaseModel):
    status: PayrollRunStatus


# ===========================================
# REVIEW SCHEMAS
# ===========================================

class ReviewerProgressResponse(BaseModel):
    reviewer_id: UUID
    reviewer_level: int
    name: Optional[str] = None
    email: Optional[str] = None
    total: int
    approved: int
    rejected: int
    pending: int
    completion_percentage: int
    status: ReviewStatus

    class Config:
        from_attributes = True


class LineReviewCounts(BaseModel):
    total: int
    approved: int
    rejected: int
    pending: int


class ReviewStatusResponse(BaseModel):
    run_id: UUID
    payroll_number: str
    run_status: PayrollRunStatus
    reviewer_count: int
    reviewers: List[ReviewerProgressResponse]
    line_items: LineReviewCounts


class ReviewTaskUpdate(BaseModel):
    status: ReviewStatus


class ReviewTaskBulkUpdate(BaseModel):
    task_ids: List[UUID] = Field(..., min_length=1)
    status: ReviewStatus


class ReviewTaskResponse(BaseModel):
    id: UUID
    line_item_id: UUID
    reviewer_id: UUID
    status: ReviewStatus
    reviewed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class LineReviewStatusResponse(BaseModel):
    line_item_id: UUID
    status: ReviewStatus


# ===========================================
# ADJUSTMENT SCHEMAS
# ===========================================

class AdjustmentAssignRequest(BaseModel):
    """Assign one allowance or deduction type to a target by id."""
    type_id: UUID
    target_kind: str
    target_id: Optional[UUID] = None
    value: Union[Decimal, str]
    calculation_mode: str = "FIXED"
    is_recurring: Union[bool, str] = True
    start_month: Union[int, str]
    start_year: Union[int, str]
    number_of_months: Optional[Union[int, str]] = None
    end_month: Optional[Union[int, str]] = None
    end_year: Optional[Union[int, str]] = None
    metadata: Optional[Union[Dict[str, Any], str]] = None


class AdjustmentAssignmentResponse(BaseModel):
    id: UUID
    target_kind: TargetKind
    target_id: Optional[UUID] = None
    value: Decimal
    calculation_mode: CalculationMode
    is_recurring: bool
    start_month: int
    start_year: int
    end_month: Optional[int] = None
    end_year: Optional[int] = None
    number_of_months: Optional[int] = None

    class Config:
        from_attributes = True


class AdjustmentImportRow(BaseModel):
    """
    One import row. Fields stay loosely typed; the service validates every
    row and reports all problems together.
    """
    type_name: Optional[str] = None
    target_kind: Optional[str] = None
    target: Optional[Union[str, int]] = None
    value: Optional[Union[Decimal, str]] = None
    calculation_mode: Optional[str] = None
    is_recurring: Optional[Union[bool, str]] = None
    start_month: Optional[Union[int, str]] = None
    start_year: Optional[Union[int, str]] = None
    number_of_months: Optional[Union[int, str]] = None
    end_month: Optional[Union[int, str]] = None
    end_year: Optional[Union[int, str]] = None
    metadata: Optional[Union[Dict[str, Any], str]] = None


class AdjustmentImportRequest(BaseModel):
    rows: List[AdjustmentImportRow] = Field(..., min_length=1)


class AdjustmentImportResponse(BaseModel):
    kind: str
    imported: int
    ids: List[UUID]
