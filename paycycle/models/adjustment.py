"""
PayCycle - Adjustment Models

Tenant catalogs of allowance and deduction types, and the assignments that
attach a type to a target (one employee, a department, a sub-department, a
job title, or the whole company) for a month window.

Semantic type codes drive specialized handling:
- Allowances: CAR / VEHICLE, MEAL, HOUSING (non-cash benefit valuation)
- Deductions: MORTGAGE_INTEREST, PENSION, PRMF (capped pre-tax),
  INSURANCE, LIFE_INSURANCE, EDUCATION_POLICY (insurance relief)
"""

import uuid
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean, ForeignKey, Integer, Numeric, String, JSON,
    Enum as SQLEnum, UniqueConstraint, CheckConstraint, Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from paycycle.models.base import BaseModel, AuditMixin
from paycycle.utils.period import PayrollPeriod, optional_period


# ===========================================
# ENUMS
# ===========================================

class TargetKind(str, Enum):
    """Who an assignment applies to."""
    INDIVIDUAL = "INDIVIDUAL"
    DEPARTMENT = "DEPARTMENT"
    SUB_DEPARTMENT = "SUB_DEPARTMENT"
    JOB_TITLE = "JOB_TITLE"
    COMPANY = "COMPANY"


class CalculationMode(str, Enum):
    """How an assignment's value is turned into an amount."""
    FIXED = "FIXED"
    PERCENTAGE = "PERCENTAGE"


class AdjustmentKind(str, Enum):
    ALLOWANCE = "allowance"
    DEDUCTION = "deduction"


# ===========================================
# CATALOG
# ===========================================

class AllowanceType(BaseModel):
    """Allowance catalog entry."""

    __tablename__ = "allowance_types"

    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    name: Mapped[str] = mapped_column(String(150), nullable=False)
    is_cash: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_taxable: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    has_maximum_value: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    maximum_value: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(precision=15, scale=2), nullable=True,
    )

    __table_args__ = (
        UniqueConstraint('tenant_id', 'name', name='uq_allowance_type_tenant_name'),
    )


class DeductionType(BaseModel):
    """Deduction catalog entry."""

    __tablename__ = "deduction_types"

    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    name: Mapped[str] = mapped_column(String(150), nullable=False)
    is_pre_tax: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    has_maximum_value: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    maximum_value: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(precision=15, scale=2), nullable=True,
    )

    __table_args__ = (
        UniqueConstraint('tenant_id', 'name', name='uq_deduction_type_tenant_name'),
    )


# ===========================================
# ASSIGNMENTS
# ===========================================

def _assignment_constraints(prefix: str) -> tuple:
    return (
        CheckConstraint(
            "(target_kind = 'COMPANY' AND target_id IS NULL) OR "
            "(target_kind != 'COMPANY' AND target_id IS NOT NULL)",
            name=f"{prefix}_target_matches_kind",
        ),
        CheckConstraint(
            "end_year IS NULL OR end_month IS NULL OR "
            "(end_year * 12 + end_month) >= (start_year * 12 + start_month)",
            name=f"{prefix}_end_after_start",
        ),
        CheckConstraint("start_month BETWEEN 1 AND 12", name=f"{prefix}_start_month_range"),
    )


class AdjustmentAssignmentMixin:
    """Columns shared by allowance and deduction assignments."""

    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)

    target_kind: Mapped[TargetKind] = mapped_column(
        SQLEnum(TargetKind),
        nullable=False,
    )
    target_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, nullable=True,
        comment="Employee, department, sub-department or job title id; NULL for COMPANY",
    )

    value: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        nullable=False,
    )
    calculation_mode: Mapped[CalculationMode] = mapped_column(
        SQLEnum(CalculationMode),
        default=CalculationMode.FIXED,
        nullable=False,
    )
    is_recurring: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    start_month: Mapped[int] = mapped_column(Integer, nullable=False)
    start_year: Mapped[int] = mapped_column(Integer, nullable=False)
    end_month: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    end_year: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    number_of_months: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    extra_data: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)

    @property
    def start_period(self) -> PayrollPeriod:
        return PayrollPeriod(year=self.start_year, month=self.start_month)

    @property
    def end_period(self) -> Optional[PayrollPeriod]:
        return optional_period(self.end_month, self.end_year)


class Allowance(BaseModel, AdjustmentAssignmentMixin, AuditMixin):
    """Allowance assignment."""

    __tablename__ = "allowances"

    allowance_type_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("allowance_types.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    adjustment_type: Mapped["AllowanceType"] = relationship("AllowanceType")

    __table_args__ = _assignment_constraints("allowance")


class Deduction(BaseModel, AdjustmentAssignmentMixin, AuditMixin):
    """Deduction assignment."""

    __tablename__ = "deductions"

    deduction_type_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("deduction_types.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    adjustment_type: Mapped["DeductionType"] = relationship("DeductionType")

    __table_args__ = _assignment_constraints("deduction")
