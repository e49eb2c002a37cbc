"""
PayCycle - Payroll Eligibility

An employee is paid for a month when, measured against the last day of
that month:
- they were hired on or before it
- they hold an ACTIVE contract that has not ended before it
- they are not TERMINATED / SUSPENDED / RETIRED with the status already
  in effect on or before it
"""

from typing import Iterable, List

from paycycle.models.employee import Employee, EmployeeStatus
from paycycle.utils.period import PayrollPeriod


EXCLUDED_STATUSES = frozenset({
    EmployeeStatus.TERMINATED,
    EmployeeStatus.SUSPENDED,
    EmployeeStatus.RETIRED,
})


def is_eligible(employee: Employee, period: PayrollPeriod) -> bool:
    period_end = period.last_day

    if employee.hire_date is None or employee.hire_date > period_end:
        return False

    contracts = employee.active_contracts
    if not contracts:
        return False
    for contract in contracts:
        if contract.end_date is not None and contract.end_date < period_end:
            return False

    # Without an effective date the status change is not applied
    if (
        employee.status in EXCLUDED_STATUSES
        and employee.status_effective_date is not None
        and employee.status_effective_date <= period_end
    ):
        return False

    return True


def filter_eligible(employees: Iterable[Employee], period: PayrollPeriod) -> List[Employee]:
    """Eligible employees, in input order."""
    return [employee for employee in employees if is_eligible(employee, period)]
