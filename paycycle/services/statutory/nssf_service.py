"""
PayCycle - NSSF Calculator

Two-tier NSSF contribution (employee share):
- Tier I:  min(pensionable pay, LEL) x rate
- Tier II: min(max(0, pay - LEL), UEL - LEL) x rate

Tier limits follow the phase in force for the payroll month. Secondary
employment is capped at reduced limits and consultants are exempt.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Tuple, Union

from paycycle.models.employee import EmployeeClassification
from paycycle.services.statutory.rule_tables import (
    NSSF_RULES,
    SECONDARY_TIER1_CAP,
    SECONDARY_TIER2_CAP,
    NSSFRule,
    rule_for_period,
)
from paycycle.utils.money import ZERO, round_money, to_decimal
from paycycle.utils.period import PayrollPeriod


@dataclass(frozen=True)
class NSSFContribution:
    tier1: Decimal = ZERO
    tier2: Decimal = ZERO

    @property
    def total(self) -> Decimal:
        return self.tier1 + self.tier2

    def to_dict(self) -> Dict[str, str]:
        return {"tier1": str(self.tier1), "tier2": str(self.tier2), "total": str(self.total)}


def tier_limits(
    rule: NSSFRule,
    classification: Union[EmployeeClassification, str],
) -> Tuple[Decimal, Decimal]:
    """(tier1 cap, tier2 cap) for a classification under a rule version."""
    tier1_cap, tier2_cap = rule.tier1_cap, rule.tier2_cap
    if EmployeeClassification(classification) == EmployeeClassification.SECONDARY:
        tier1_cap = min(tier1_cap, SECONDARY_TIER1_CAP)
        tier2_cap = min(tier2_cap, SECONDARY_TIER2_CAP)
    return tier1_cap, tier2_cap


def calculate_nssf(
    pensionable_pay: Any,
    period: PayrollPeriod,
    classification: Union[EmployeeClassification, str] = EmployeeClassification.PRIMARY,
) -> NSSFContribution:
    """
    Employee NSSF contribution for one month.

    Zero for consultants, for non-positive pay, and for months before the
    tiered scheme started.
    """
    base = to_decimal(pensionable_pay)
    if EmployeeClassification(classification) == EmployeeClassification.CONSULTANT or base <= 0:
        return NSSFContribution()

    rule = rule_for_period(NSSF_RULES, period)
    if rule is None:
        return NSSFContribution()

    tier1_cap, tier2_cap = tier_limits(rule, classification)
    tier1 = round_money(min(base, tier1_cap) * rule.rate)
    tier2_band = max(ZERO, tier2_cap - tier1_cap)
    tier2 = round_money(min(max(ZERO, base - tier1_cap), tier2_band) * rule.rate)
    return NSSFContribution(tier1=tier1, tier2=tier2)
