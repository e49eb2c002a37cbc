"""
PayCycle - Employee Models

Employee records are owned by the employee-management side of the platform;
the payroll engine only reads them:
- Employee (salary, statutory opt-in flags, classification, status)
- EmploymentContract (an ACTIVE contract is required to be paid)
- PaymentDetail (bank / mobile money / cash routing, copied onto line items)
- AbsenceRecord (per-period pay deduction)
- StatutoryLoanAccount (HELB student loan repayments)
"""

import uuid
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import (
    Boolean, Date, ForeignKey, Integer, Numeric, String,
    Enum as SQLEnum, UniqueConstraint, CheckConstraint, Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from paycycle.models.base import BaseModel


# ===========================================
# ENUMS
# ===========================================

class EmployeeClassification(str, Enum):
    """Employment classification used by NSSF tiering."""
    PRIMARY = "PRIMARY"
    SECONDARY = "SECONDARY"
    CONSULTANT = "CONSULTANT"


class EmployeeStatus(str, Enum):
    """Employment status."""
    ACTIVE = "ACTIVE"
    ON_LEAVE = "ON_LEAVE"
    TERMINATED = "TERMINATED"
    SUSPENDED = "SUSPENDED"
    RETIRED = "RETIRED"


class ContractStatus(str, Enum):
    """Employment contract status."""
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    TERMINATED = "TERMINATED"


class PaymentMethod(str, Enum):
    """How net pay is routed."""
    BANK = "BANK"
    MOBILE_MONEY = "MOBILE_MONEY"
    CASH = "CASH"


class LoanAccountStatus(str, Enum):
    """Statutory loan account status."""
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


# ===========================================
# EMPLOYEE MODEL
# ===========================================

class Employee(BaseModel):
    """
    Employee as seen by the payroll engine.

    Statutory opt-in flags decide which contributions are computed:
    - pays_paye, pays_nssf, pays_shif, pays_housing_levy, pays_helb
    """

    __tablename__ = "employees"

    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)

    employee_number: Mapped[str] = mapped_column(String(50), nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    middle_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    salary: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        nullable=False,
        default=Decimal("0.00"),
        comment="Monthly base salary",
    )

    # Statutory opt-in flags
    pays_paye: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    pays_nssf: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    pays_shif: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    pays_housing_levy: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    pays_helb: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    has_disability: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    classification: Mapped[EmployeeClassification] = mapped_column(
        SQLEnum(EmployeeClassification),
        default=EmployeeClassification.PRIMARY,
        nullable=False,
    )

    hire_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    status: Mapped[EmployeeStatus] = mapped_column(
        SQLEnum(EmployeeStatus),
        default=EmployeeStatus.ACTIVE,
        nullable=False,
    )
    status_effective_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    # Organisation structure (owned by other services)
    department_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True, index=True)
    sub_department_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    job_title_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    # Relationships
    contracts: Mapped[List["EmploymentContract"]] = relationship(
        "EmploymentContract",
        back_populates="employee",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        UniqueConstraint('tenant_id', 'employee_number', name='uq_employee_tenant_number'),
    )

    @property
    def full_name(self) -> str:
        """Get employee's full name."""
        parts = [self.first_name]
        if self.middle_name:
            parts.append(self.middle_name)
        parts.append(self.last_name)
        return " ".join(parts)

    @property
    def active_contracts(self) -> List["EmploymentContract"]:
        return [c for c in self.contracts if c.status == ContractStatus.ACTIVE]

    def __repr__(self) -> str:
        return f"<Employee(id={self.id}, number={self.employee_number})>"


class EmploymentContract(BaseModel):
    """Employment contract; only ACTIVE contracts qualify for payroll."""

    __tablename__ = "employment_contracts"

    employee_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    contract_type: Mapped[str] = mapped_column(String(50), nullable=False, default="PERMANENT")
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    status: Mapped[ContractStatus] = mapped_column(
        SQLEnum(ContractStatus),
        default=ContractStatus.ACTIVE,
        nullable=False,
    )

    employee: Mapped["Employee"] = relationship("Employee", back_populates="contracts")


class PaymentDetail(BaseModel):
    """Net pay routing; copied verbatim onto each line item."""

    __tablename__ = "payment_details"

    employee_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    payment_method: Mapped[PaymentMethod] = mapped_column(
        SQLEnum(PaymentMethod),
        default=PaymentMethod.BANK,
        nullable=False,
    )
    bank_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    bank_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    account_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    account_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    phone_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)


class AbsenceRecord(BaseModel):
    """Absence for one employee in one month; reduces that month's base pay only."""

    __tablename__ = "absence_records"

    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    employee_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    days: Mapped[Decimal] = mapped_column(
        Numeric(precision=5, scale=2),
        default=Decimal("0.00"),
        nullable=False,
    )
    deduction_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        default=Decimal("0.00"),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint('employee_id', 'year', 'month', name='uq_absence_employee_period'),
        CheckConstraint('month BETWEEN 1 AND 12', name='absence_month_range'),
    )


class StatutoryLoanAccount(BaseModel):
    """HELB loan account with a fixed monthly repayment and running balance."""

    __tablename__ = "statutory_loan_accounts"

    employee_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    account_number: Mapped[str] = mapped_column(String(50), nullable=False)
    monthly_deduction: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        default=Decimal("0.00"),
        nullable=False,
    )
    current_balance: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        default=Decimal("0.00"),
        nullable=False,
    )
    status: Mapped[LoanAccountStatus] = mapped_column(
        SQLEnum(LoanAccountStatus),
        default=LoanAccountStatus.ACTIVE,
        nullable=False,
    )

    @property
    def is_active(self) -> bool:
        return self.status == LoanAccountStatus.ACTIVE
