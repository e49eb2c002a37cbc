"""
PayCycle - Adjustment Resolver

Decides which allowance / deduction assignments are in force for an
employee in a payroll month, and what amount each contributes.

Assignments are first converted to immutable `AdjustmentRule` snapshots.
The rule's target is a closed set of variants (individual, department,
sub-department, job title, company) so matching never inspects nullable
id columns. Stored rows that cannot be converted become
`ResolutionWarning`s for the sync result instead of failing the pass.
"""

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, List, Optional, Sequence, Tuple, Union

from paycycle.models.adjustment import (
    AdjustmentKind,
    Allowance,
    CalculationMode,
    Deduction,
    TargetKind,
)
from paycycle.models.employee import Employee
from paycycle.utils.error_handling import (
    InvalidPeriodException,
    InvalidTargetScopeException,
)
from paycycle.utils.money import ZERO, round_money, to_decimal
from paycycle.utils.period import PayrollPeriod


logger = logging.getLogger(__name__)


# ===========================================
# TARGETS
# ===========================================

@dataclass(frozen=True)
class IndividualTarget:
    employee_id: uuid.UUID
    kind = TargetKind.INDIVIDUAL

    @property
    def target_id(self) -> uuid.UUID:
        return self.employee_id

    def matches(self, employee: Employee) -> bool:
        return employee.id == self.employee_id


@dataclass(frozen=True)
class DepartmentTarget:
    department_id: uuid.UUID
    kind = TargetKind.DEPARTMENT

    @property
    def target_id(self) -> uuid.UUID:
        return self.department_id

    def matches(self, employee: Employee) -> bool:
        return employee.department_id == self.department_id


@dataclass(frozen=True)
class SubDepartmentTarget:
    sub_department_id: uuid.UUID
    kind = TargetKind.SUB_DEPARTMENT

    @property
    def target_id(self) -> uuid.UUID:
        return self.sub_department_id

    def matches(self, employee: Employee) -> bool:
        return employee.sub_department_id == self.sub_department_id


@dataclass(frozen=True)
class JobTitleTarget:
    job_title_id: uuid.UUID
    kind = TargetKind.JOB_TITLE

    @property
    def target_id(self) -> uuid.UUID:
        return self.job_title_id

    def matches(self, employee: Employee) -> bool:
        return employee.job_title_id == self.job_title_id


@dataclass(frozen=True)
class CompanyTarget:
    kind = TargetKind.COMPANY
    target_id = None

    def matches(self, employee: Employee) -> bool:
        return True


AdjustmentTarget = Union[
    IndividualTarget, DepartmentTarget, SubDepartmentTarget, JobTitleTarget, CompanyTarget,
]

_TARGET_CLASSES = {
    TargetKind.INDIVIDUAL: IndividualTarget,
    TargetKind.DEPARTMENT: DepartmentTarget,
    TargetKind.SUB_DEPARTMENT: SubDepartmentTarget,
    TargetKind.JOB_TITLE: JobTitleTarget,
}


def build_target(kind: Any, target_id: Optional[Any] = None) -> AdjustmentTarget:
    """
    Build the target variant for a stored (kind, id) pair.

    Raises:
        InvalidTargetScopeException: unknown kind, a scoped kind without an
            id, or a company-wide kind with one
    """
    try:
        target_kind = TargetKind(kind.upper() if isinstance(kind, str) else kind)
    except ValueError:
        raise InvalidTargetScopeException(kind, target_id)

    if target_kind == TargetKind.COMPANY:
        if target_id is not None:
            raise InvalidTargetScopeException(
                kind, target_id, message="Company-wide assignments cannot name a target",
            )
        return CompanyTarget()

    if target_id is None:
        raise InvalidTargetScopeException(
            kind, target_id, message=f"{target_kind.value} assignments need a target id",
        )
    try:
        identifier = target_id if isinstance(target_id, uuid.UUID) else uuid.UUID(str(target_id))
    except ValueError:
        raise InvalidTargetScopeException(
            kind, target_id, message=f"Invalid target id: {target_id!r}",
        )
    return _TARGET_CLASSES[target_kind](identifier)


# ===========================================
# RULE SNAPSHOTS
# ===========================================

@dataclass(frozen=True)
class AdjustmentRule:
    """Immutable view of one assignment joined with its type."""

    id: uuid.UUID
    kind: AdjustmentKind
    type_id: uuid.UUID
    type_name: str
    code: Optional[str]
    target: AdjustmentTarget
    value: Decimal
    calculation_mode: CalculationMode
    is_recurring: bool
    start: PayrollPeriod
    end: Optional[PayrollPeriod] = None
    is_cash: bool = True
    is_taxable: bool = True
    is_pre_tax: bool = False
    maximum_value: Optional[Decimal] = None

    @property
    def normalized_code(self) -> str:
        return (self.code or "").strip().upper()


@dataclass(frozen=True)
class ResolvedAdjustment:
    rule: AdjustmentRule
    amount: Decimal
    capped: bool = False

    def to_detail(self) -> dict:
        return {
            "id": str(self.rule.id),
            "type_id": str(self.rule.type_id),
            "name": self.rule.type_name,
            "code": self.rule.code,
            "calculation_mode": self.rule.calculation_mode.value,
            "value": str(self.rule.value),
            "amount": str(self.amount),
            "capped": self.capped,
        }


@dataclass(frozen=True)
class ResolutionWarning:
    """A stored record that could not be applied; the pass continues."""

    record_type: str
    record_id: Optional[uuid.UUID]
    message: str
    employee_id: Optional[uuid.UUID] = None

    def to_dict(self) -> dict:
        return {
            "record_type": self.record_type,
            "record_id": str(self.record_id) if self.record_id else None,
            "employee_id": str(self.employee_id) if self.employee_id else None,
            "message": self.message,
        }


def _rule_from_assignment(assignment: Union[Allowance, Deduction], kind: AdjustmentKind) -> AdjustmentRule:
    adjustment_type = assignment.adjustment_type
    if adjustment_type is None:
        raise LookupError(f"{kind.value} type not found")

    start = PayrollPeriod(year=assignment.start_year, month=assignment.start_month)
    end = None
    if assignment.end_month is not None and assignment.end_year is not None:
        end = PayrollPeriod(year=assignment.end_year, month=assignment.end_month)
        if end < start:
            raise InvalidPeriodException("end_month", str(end), message="End window precedes start window")

    maximum = None
    if adjustment_type.has_maximum_value and adjustment_type.maximum_value is not None:
        maximum = to_decimal(adjustment_type.maximum_value)

    is_allowance = kind == AdjustmentKind.ALLOWANCE
    return AdjustmentRule(
        id=assignment.id,
        kind=kind,
        type_id=adjustment_type.id,
        type_name=adjustment_type.name,
        code=adjustment_type.code,
        target=build_target(assignment.target_kind, assignment.target_id),
        value=to_decimal(assignment.value),
        calculation_mode=CalculationMode(assignment.calculation_mode),
        is_recurring=bool(assignment.is_recurring),
        start=start,
        end=end,
        is_cash=adjustment_type.is_cash if is_allowance else True,
        is_taxable=adjustment_type.is_taxable if is_allowance else True,
        is_pre_tax=False if is_allowance else adjustment_type.is_pre_tax,
        maximum_value=maximum,
    )


def snapshot_rules(
    assignments: Iterable[Union[Allowance, Deduction]],
    kind: AdjustmentKind,
) -> Tuple[List[AdjustmentRule], List[ResolutionWarning]]:
    """Convert stored assignments to rules, collecting unusable rows as warnings."""
    rules: List[AdjustmentRule] = []
    warnings: List[ResolutionWarning] = []
    for assignment in assignments:
        try:
            rules.append(_rule_from_assignment(assignment, kind))
        except (InvalidTargetScopeException, InvalidPeriodException) as exc:
            warnings.append(ResolutionWarning(kind.value, assignment.id, exc.message))
        except (LookupError, ValueError) as exc:
            warnings.append(ResolutionWarning(kind.value, assignment.id, str(exc)))
    for warning in warnings:
        logger.warning(f"Skipping {warning.record_type} {warning.record_id}: {warning.message}")
    return rules, warnings


# ===========================================
# RESOLUTION
# ===========================================

def in_window(rule: AdjustmentRule, period: PayrollPeriod) -> bool:
    """
    start <= period and (no end or period <= end).

    Recurring and one-off assignments use the same test; a one-off
    assignment is bounded by its end window.
    """
    if period < rule.start:
        return False
    return rule.end is None or period <= rule.end


def resolve_value(rule: AdjustmentRule, base_pay: Any) -> Tuple[Decimal, bool]:
    """
    Amount an applicable rule contributes, and whether the type cap clipped it.

    PERCENTAGE rules are a percentage of base pay after absence deduction.
    """
    if rule.calculation_mode == CalculationMode.PERCENTAGE:
        amount = to_decimal(base_pay) * rule.value / 100
    else:
        amount = rule.value
    amount = round_money(max(ZERO, amount))

    if rule.maximum_value is not None and amount > rule.maximum_value:
        return round_money(rule.maximum_value), True
    return amount, False


def applies_to(rule: AdjustmentRule, employee: Employee, period: PayrollPeriod) -> bool:
    return rule.target.matches(employee) and in_window(rule, period)


def resolve_for_employee(
    rules: Sequence[AdjustmentRule],
    employee: Employee,
    period: PayrollPeriod,
    base_pay: Any,
) -> List[ResolvedAdjustment]:
    """Applicable rules with their amounts, in input order."""
    resolved = []
    for rule in rules:
        if not applies_to(rule, employee, period):
            continue
        amount, capped = resolve_value(rule, base_pay)
        resolved.append(ResolvedAdjustment(rule=rule, amount=amount, capped=capped))
    return resolved


def unknown_individual_targets(
    rules: Sequence[AdjustmentRule],
    employee_ids: Iterable[uuid.UUID],
) -> List[ResolutionWarning]:
    """Warnings for individual assignments naming an employee the tenant does not have."""
    known = set(employee_ids)
    return [
        ResolutionWarning(
            rule.kind.value,
            rule.id,
            f"Target employee {rule.target.employee_id} not found",
        )
        for rule in rules
        if isinstance(rule.target, IndividualTarget) and rule.target.employee_id not in known
    ]
