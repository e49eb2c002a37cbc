"""
PayCycle - Flat-rate Levies

SHIF and the Affordable Housing Levy are each round(gross x rate), charged
only from the month the levy was introduced.
"""

from decimal import Decimal
from typing import Any, Sequence

from paycycle.services.statutory.rule_tables import (
    HOUSING_LEVY_RULES,
    LEVIES_DEDUCTIBLE_FROM,
    SHIF_RULES,
    LevyRule,
    rule_for_period,
)
from paycycle.utils.money import ZERO, round_whole, to_decimal
from paycycle.utils.period import PayrollPeriod


def _levy(rules: Sequence[LevyRule], base: Any, period: PayrollPeriod) -> Decimal:
    amount = to_decimal(base)
    rule = rule_for_period(rules, period)
    if rule is None or amount <= 0:
        return ZERO
    return round_whole(amount * rule.rate)


def calculate_shif(statutory_gross: Any, period: PayrollPeriod) -> Decimal:
    """Social Health Insurance Fund levy (2.75%)."""
    return _levy(SHIF_RULES, statutory_gross, period)


def calculate_housing_levy(statutory_gross: Any, period: PayrollPeriod) -> Decimal:
    """Affordable Housing Levy (1.5%)."""
    return _levy(HOUSING_LEVY_RULES, statutory_gross, period)


def statutory_contributions_deductible(period: PayrollPeriod) -> bool:
    """Whether SHIF and AHL reduce taxable income for this month."""
    return period >= LEVIES_DEDUCTIBLE_FROM
