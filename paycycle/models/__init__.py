"""
PayCycle - SQLAlchemy Models Package

This package contains all database models for the application.
"""

from paycycle.models.base import BaseModel, TimestampMixin, AuditMixin
from paycycle.models.employee import (
    Employee,
    EmployeeClassification,
    EmployeeStatus,
    EmploymentContract,
    ContractStatus,
    PaymentDetail,
    PaymentMethod,
    AbsenceRecord,
    StatutoryLoanAccount,
    LoanAccountStatus,
)
from paycycle.models.organization import Department, SubDepartment, JobTitle
from paycycle.models.adjustment import (
    AdjustmentKind,
    AllowanceType,
    DeductionType,
    Allowance,
    Deduction,
    TargetKind,
    CalculationMode,
)
from paycycle.models.payroll import (
    PayrollRun,
    PayrollRunStatus,
    PayrollLineItem,
    PayrollReviewer,
    ReviewTask,
    ReviewStatus,
    PayrollRunStatusChange,
)

__all__ = [
    "BaseModel",
    "TimestampMixin",
    "AuditMixin",
    # Employee
    "Employee",
    "EmployeeClassification",
    "EmployeeStatus",
    "EmploymentContract",
    "ContractStatus",
    "PaymentDetail",
    "PaymentMethod",
    "AbsenceRecord",
    "StatutoryLoanAccount",
    "LoanAccountStatus",
    # Organisation
    "Department",
    "SubDepartment",
    "JobTitle",
    # Adjustments
    "AdjustmentKind",
    "AllowanceType",
    "DeductionType",
    "Allowance",
    "Deduction",
    "TargetKind",
    "CalculationMode",
    # Payroll
    "PayrollRun",
    "PayrollRunStatus",
    "PayrollLineItem",
    "PayrollReviewer",
    "ReviewTask",
    "ReviewStatus",
    "PayrollRunStatusChange",
]
