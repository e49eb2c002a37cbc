"""
PayCycle - Payroll Line Calculator

Pure computation of one employee's line for one month. No database access;
the orchestrator passes everything in.

Order of work:
1. Base pay = salary less the month's absence deduction (floored at zero)
2. Allowances: cash totals, non-cash benefits valued (housing deferred)
3. Statutory-base gross = base pay + cash allowances
4. Housing benefit valued against statutory-base gross; total gross
5. NSSF / SHIF / AHL on statutory-base gross per opt-in flags
6. Deductions split pre-tax / post-tax; insurance premiums collected
7. HELB repayment, never more than the outstanding balance
8. Taxable income, PAYE, insurance relief
9. Statutory, total deductions and net pay
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from paycycle.models.employee import Employee, StatutoryLoanAccount
from paycycle.services.adjustment_resolver import (
    AdjustmentRule,
    resolve_for_employee,
)
from paycycle.services.benefit_valuator import (
    is_housing_benefit,
    value_housing_benefit,
    value_non_cash_benefit,
)
from paycycle.services.statutory import (
    NSSFContribution,
    apply_insurance_relief,
    calculate_housing_levy,
    calculate_insurance_relief,
    calculate_nssf,
    calculate_paye,
    calculate_shif,
    deductible_pre_tax_amount,
    is_insurance_deduction,
    statutory_contributions_deductible,
)
from paycycle.utils.money import ZERO, round_money, to_decimal
from paycycle.utils.period import PayrollPeriod


@dataclass
class LineComputation:
    """Every figure of one employee's payroll line."""

    basic_salary: Decimal = ZERO
    absence_deduction: Decimal = ZERO
    base_pay: Decimal = ZERO
    cash_allowances: Decimal = ZERO
    non_taxable_cash_allowances: Decimal = ZERO
    non_cash_benefits: Decimal = ZERO
    statutory_gross: Decimal = ZERO
    gross_pay: Decimal = ZERO
    taxable_income: Decimal = ZERO

    paye: Decimal = ZERO
    nssf: NSSFContribution = field(default_factory=NSSFContribution)
    shif: Decimal = ZERO
    housing_levy: Decimal = ZERO
    helb: Decimal = ZERO
    insurance_relief: Decimal = ZERO

    statutory_deductions: Decimal = ZERO
    pre_tax_deductions: Decimal = ZERO
    post_tax_deductions: Decimal = ZERO
    total_deductions: Decimal = ZERO
    net_pay: Decimal = ZERO

    allowances_details: List[Dict[str, Any]] = field(default_factory=list)
    deductions_details: List[Dict[str, Any]] = field(default_factory=list)


def calculate_line(
    employee: Employee,
    allowance_rules: Sequence[AdjustmentRule],
    deduction_rules: Sequence[AdjustmentRule],
    period: PayrollPeriod,
    absence_deduction: Any = ZERO,
    loan_account: Optional[StatutoryLoanAccount] = None,
) -> LineComputation:
    line = LineComputation()

    # 1. Base pay
    line.basic_salary = round_money(to_decimal(employee.salary))
    line.absence_deduction = round_money(max(ZERO, to_decimal(absence_deduction)))
    line.base_pay = max(ZERO, line.basic_salary - line.absence_deduction)

    # 2. Allowances
    allowances = resolve_for_employee(allowance_rules, employee, period, line.base_pay)
    deferred_housing: List[Dict[str, Any]] = []
    non_cash_total = ZERO
    for resolved in allowances:
        detail = resolved.to_detail()
        rule = resolved.rule
        if rule.is_cash:
            line.cash_allowances += resolved.amount
            if not rule.is_taxable:
                line.non_taxable_cash_allowances += resolved.amount
            detail.update({"type": "CASH", "is_taxable": rule.is_taxable})
        elif not rule.is_taxable:
            detail.update({"type": "NON_CASH", "is_taxable": False, "taxable_value": str(ZERO)})
        elif is_housing_benefit(rule.code):
            detail.update({"type": "NON_CASH_HOUSING", "is_taxable": True})
            deferred_housing.append(detail)
        else:
            taxable_value = value_non_cash_benefit(rule.code, resolved.amount, period)
            non_cash_total += taxable_value
            detail.update({"type": "NON_CASH", "is_taxable": True, "taxable_value": str(taxable_value)})
        line.allowances_details.append(detail)

    # 3. Statutory-base gross
    line.statutory_gross = line.base_pay + line.cash_allowances

    # 4. Housing second pass
    for detail in deferred_housing:
        taxable_value = value_housing_benefit(Decimal(detail["amount"]), line.statutory_gross)
        non_cash_total += taxable_value
        detail["taxable_value"] = str(taxable_value)
    line.non_cash_benefits = non_cash_total
    line.gross_pay = line.statutory_gross + line.non_cash_benefits

    # 5. Contributions and levies
    if employee.pays_nssf:
        line.nssf = calculate_nssf(line.statutory_gross, period, employee.classification)
    if employee.pays_shif:
        line.shif = calculate_shif(line.statutory_gross, period)
    if employee.pays_housing_levy:
        line.housing_levy = calculate_housing_levy(line.statutory_gross, period)

    # 6. Deductions
    deductions = resolve_for_employee(deduction_rules, employee, period, line.base_pay)
    pre_tax_relief = ZERO
    insurance_premiums: List[Decimal] = []
    for resolved in deductions:
        rule = resolved.rule
        detail = resolved.to_detail()
        detail["is_pre_tax"] = rule.is_pre_tax
        if rule.is_pre_tax:
            deductible = deductible_pre_tax_amount(rule.code, resolved.amount, period)
            line.pre_tax_deductions += resolved.amount
            pre_tax_relief += deductible
            detail["deductible_amount"] = str(deductible)
        else:
            line.post_tax_deductions += resolved.amount
        if is_insurance_deduction(rule.code, rule.type_name):
            insurance_premiums.append(resolved.amount)
        line.deductions_details.append(detail)

    # 7. HELB
    line.helb = _helb_repayment(employee, loan_account)
    if line.helb > 0:
        line.post_tax_deductions += line.helb
        line.deductions_details.append({
            "code": "HELB",
            "name": "HELB Loan Repayment",
            "amount": str(line.helb),
            "is_pre_tax": False,
            "account_number": loan_account.account_number,
        })

    # 8. Taxable income and PAYE
    taxable = (
        line.gross_pay
        - line.non_taxable_cash_allowances
        - line.nssf.total
        - pre_tax_relief
    )
    if statutory_contributions_deductible(period):
        taxable -= line.shif + line.housing_levy
    line.taxable_income = round_money(max(ZERO, taxable))

    if employee.pays_paye:
        gross_paye = calculate_paye(line.taxable_income, employee.has_disability)
        line.insurance_relief = calculate_insurance_relief(insurance_premiums)
        line.paye = apply_insurance_relief(gross_paye, line.insurance_relief)

    # 9. Totals
    line.statutory_deductions = line.nssf.total + line.shif + line.housing_levy + line.paye
    line.total_deductions = line.statutory_deductions + line.pre_tax_deductions + line.post_tax_deductions
    line.net_pay = line.gross_pay - line.total_deductions
    return line


def _helb_repayment(employee: Employee, loan_account: Optional[StatutoryLoanAccount]) -> Decimal:
    if not employee.pays_helb or loan_account is None or not loan_account.is_active:
        return ZERO
    monthly = to_decimal(loan_account.monthly_deduction)
    balance = to_decimal(loan_account.current_balance)
    return round_money(max(ZERO, min(monthly, balance)))
