"""
PayCycle - Payroll Models

Kenyan statutory payroll:
- PAYE (progressive income tax with personal and insurance relief)
- NSSF (two-tier pension contribution)
- SHIF (Social Health Insurance Fund levy)
- AHL (Affordable Housing Levy)
- HELB (student loan repayment)

A PayrollRun holds one line item per eligible employee; each line item is
reviewed by every configured reviewer before the run moves on.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import (
    DateTime, ForeignKey, Integer, Numeric, String, JSON,
    Enum as SQLEnum, UniqueConstraint, CheckConstraint, Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from paycycle.models.base import BaseModel, AuditMixin
from paycycle.models.employee import PaymentMethod
from paycycle.utils.period import PayrollPeriod


# ===========================================
# ENUMS
# ===========================================

class PayrollRunStatus(str, Enum):
    """Payroll run lifecycle status."""
    DRAFT = "DRAFT"
    PREPARED = "PREPARED"
    UNDER_REVIEW = "UNDER_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    LOCKED = "LOCKED"
    UNLOCKED = "UNLOCKED"
    PAID = "PAID"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class ReviewStatus(str, Enum):
    """Review task / line item review status."""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


def _money(precision: int = 15):
    return mapped_column(
        Numeric(precision=precision, scale=2),
        default=Decimal("0.00"),
        nullable=False,
    )


# ===========================================
# PAYROLL RUN
# ===========================================

class PayrollRun(BaseModel, AuditMixin):
    """
    Payroll run for one tenant and one calendar month.

    Totals always equal the sum of the run's current line items.
    """

    __tablename__ = "payroll_runs"

    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)

    payroll_number: Mapped[str] = mapped_column(
        String(50), nullable=False,
        comment="Human readable run number e.g. PR-202506-001",
    )
    status: Mapped[PayrollRunStatus] = mapped_column(
        SQLEnum(PayrollRunStatus),
        default=PayrollRunStatus.DRAFT,
        nullable=False,
    )

    # Totals
    employee_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_gross_pay: Mapped[Decimal] = _money(18)
    total_net_pay: Mapped[Decimal] = _money(18)
    total_statutory_deductions: Mapped[Decimal] = _money(18)
    total_deductions: Mapped[Decimal] = _money(18)
    total_paye: Mapped[Decimal] = _money(18)
    total_nssf: Mapped[Decimal] = _money(18)
    total_shif: Mapped[Decimal] = _money(18)
    total_housing_levy: Mapped[Decimal] = _money(18)
    total_helb: Mapped[Decimal] = _money(18)

    # Workflow stamps
    locked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    locked_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    last_synced_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    line_items: Mapped[List["PayrollLineItem"]] = relationship(
        "PayrollLineItem",
        back_populates="payroll_run",
        passive_deletes=True,
    )

    __table_args__ = (
        UniqueConstraint('tenant_id', 'year', 'month', name='uq_payroll_run_tenant_period'),
        UniqueConstraint('tenant_id', 'payroll_number', name='uq_payroll_run_tenant_number'),
        CheckConstraint('month BETWEEN 1 AND 12', name='payroll_run_month_range'),
    )

    @property
    def period(self) -> PayrollPeriod:
        return PayrollPeriod(year=self.year, month=self.month)

    def __repr__(self) -> str:
        return f"<PayrollRun(id={self.id}, number={self.payroll_number}, status={self.status})>"


# ===========================================
# LINE ITEM
# ===========================================

class PayrollLineItem(BaseModel):
    """
    Per-employee computed payroll record.

    Replaced as a whole on every recompute of its run, never patched.
    """

    __tablename__ = "payroll_line_items"

    payroll_run_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("payroll_runs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Snapshot of who was paid
    employee_number: Mapped[str] = mapped_column(String(50), nullable=False)
    employee_name: Mapped[str] = mapped_column(String(300), nullable=False)

    # Earnings
    basic_salary: Mapped[Decimal] = _money()
    absence_deduction: Mapped[Decimal] = _money()
    base_pay: Mapped[Decimal] = _money()
    cash_allowances: Mapped[Decimal] = _money()
    non_taxable_cash_allowances: Mapped[Decimal] = _money()
    non_cash_benefits: Mapped[Decimal] = _money()
    statutory_gross: Mapped[Decimal] = _money()
    gross_pay: Mapped[Decimal] = _money()
    taxable_income: Mapped[Decimal] = _money()

    # Statutory
    paye: Mapped[Decimal] = _money()
    nssf_tier1: Mapped[Decimal] = _money()
    nssf_tier2: Mapped[Decimal] = _money()
    nssf: Mapped[Decimal] = _money()
    shif: Mapped[Decimal] = _money()
    housing_levy: Mapped[Decimal] = _money()
    helb: Mapped[Decimal] = _money()
    insurance_relief: Mapped[Decimal] = _money()

    # Totals
    statutory_deductions: Mapped[Decimal] = _money()
    pre_tax_deductions: Mapped[Decimal] = _money()
    post_tax_deductions: Mapped[Decimal] = _money()
    total_deductions: Mapped[Decimal] = _money()
    net_pay: Mapped[Decimal] = _money()

    # Payment routing snapshot
    payment_method: Mapped[Optional[PaymentMethod]] = mapped_column(SQLEnum(PaymentMethod), nullable=True)
    bank_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    bank_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    account_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    account_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    phone_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    # Itemised breakdown for reporting
    allowances_details: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    deductions_details: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)

    payroll_run: Mapped["PayrollRun"] = relationship("PayrollRun", back_populates="line_items")

    __table_args__ = (
        UniqueConstraint('payroll_run_id', 'employee_id', name='uq_line_item_run_employee'),
    )


# ===========================================
# REVIEW
# ===========================================

class PayrollReviewer(BaseModel):
    """Tenant reviewer; every line item gets one task per reviewer."""

    __tablename__ = "payroll_reviewers"

    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    reviewer_level: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    __table_args__ = (
        UniqueConstraint('tenant_id', 'user_id', name='uq_payroll_reviewer_tenant_user'),
    )


class ReviewTask(BaseModel):
    """One reviewer's decision on one line item."""

    __tablename__ = "review_tasks"

    line_item_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("payroll_line_items.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    reviewer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("payroll_reviewers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    status: Mapped[ReviewStatus] = mapped_column(
        SQLEnum(ReviewStatus),
        default=ReviewStatus.PENDING,
        nullable=False,
    )
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint('line_item_id', 'reviewer_id', name='uq_review_task_line_reviewer'),
    )


class PayrollRunStatusChange(BaseModel):
    """Audit trail of accepted run status transitions."""

    __tablename__ = "payroll_run_status_changes"

    payroll_run_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("payroll_runs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    from_status: Mapped[PayrollRunStatus] = mapped_column(SQLEnum(PayrollRunStatus), nullable=False)
    to_status: Mapped[PayrollRunStatus] = mapped_column(SQLEnum(PayrollRunStatus), nullable=False)
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
