"""
PayCycle - Reliefs and Pre-tax Caps

- Insurance relief: 15% of qualifying premiums, capped at KES 5,000 a month
- Pre-tax deductions (mortgage interest, pension, post-retirement medical
  fund) only reduce taxable income up to the monthly cap in force
"""

from decimal import Decimal
from typing import Any, Iterable, Optional

from paycycle.services.statutory.rule_tables import (
    CAPPED_PRE_TAX_CODES,
    INSURANCE_DEDUCTION_CODES,
    INSURANCE_RELIEF_CAP_MONTHLY,
    INSURANCE_RELIEF_RATE,
    PRE_TAX_CAP_RULES,
    rule_for_period,
)
from paycycle.utils.money import ZERO, round_money, to_decimal
from paycycle.utils.period import PayrollPeriod


def calculate_insurance_relief(premiums: Iterable[Any]) -> Decimal:
    total = sum((to_decimal(p) for p in premiums), ZERO)
    if total <= 0:
        return ZERO
    return round_money(min(total * INSURANCE_RELIEF_RATE, INSURANCE_RELIEF_CAP_MONTHLY))


def apply_insurance_relief(tax: Decimal, relief: Decimal) -> Decimal:
    """Tax after relief, never below zero."""
    return max(ZERO, tax - relief)


def is_insurance_deduction(code: Optional[str], name: Optional[str] = None) -> bool:
    if code and code.upper() in INSURANCE_DEDUCTION_CODES:
        return True
    return bool(name) and "insurance" in name.lower()


def deductible_pre_tax_amount(code: Optional[str], amount: Any, period: PayrollPeriod) -> Decimal:
    """
    Portion of a pre-tax deduction that reduces taxable income.

    Codes without a statutory cap are deductible in full; a capped code that
    has no cap in the period's table (PRMF before Dec 2024) is not deductible.
    """
    value = max(ZERO, to_decimal(amount))
    normalized = (code or "").upper()
    if normalized not in CAPPED_PRE_TAX_CODES:
        return value

    rule = rule_for_period(PRE_TAX_CAP_RULES, period)
    cap = rule.caps.get(normalized) if rule else None
    if cap is None:
        return ZERO
    return min(value, cap)
