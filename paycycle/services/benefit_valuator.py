"""
PayCycle - Non-cash Benefit Valuation

Taxable value of non-cash benefits, dispatched by the allowance type code:
- CAR / VEHICLE: 2% of the vehicle value per month
- MEAL: amount above the KES 5,000 meal exemption
- HOUSING: the higher of 15% of statutory-base gross and the declared value.
  Needs statutory-base gross, so the calculator values housing in a second pass.
- anything else: fully taxable once above the flat non-cash exemption
  (KES 3,000 before July 2023, KES 5,000 after)
"""

from decimal import Decimal
from typing import Any, Optional

from paycycle.services.statutory.rule_tables import (
    HOUSING_BENEFIT_RATE,
    MEAL_EXEMPTION,
    NON_CASH_EXEMPTION_RULES,
    VEHICLE_BENEFIT_RATE,
    VEHICLE_CODES,
    rule_for_period,
)
from paycycle.utils.money import ZERO, round_money, to_decimal
from paycycle.utils.period import PayrollPeriod


HOUSING_CODE = "HOUSING"
MEAL_CODE = "MEAL"


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


def is_housing_benefit(code: Optional[str]) -> bool:
    return normalize_code(code) == HOUSING_CODE


def value_vehicle_benefit(raw_value: Any) -> Decimal:
    return round_money(max(ZERO, to_decimal(raw_value)) * VEHICLE_BENEFIT_RATE)


def value_meal_benefit(raw_value: Any) -> Decimal:
    return round_money(max(ZERO, to_decimal(raw_value) - MEAL_EXEMPTION))


def value_housing_benefit(raw_value: Any, statutory_gross: Any) -> Decimal:
    floor = to_decimal(statutory_gross) * HOUSING_BENEFIT_RATE
    return round_money(max(floor, to_decimal(raw_value), ZERO))


def non_cash_exemption(period: PayrollPeriod) -> Decimal:
    rule = rule_for_period(NON_CASH_EXEMPTION_RULES, period)
    return rule.amount if rule else ZERO


def value_other_benefit(raw_value: Any, period: PayrollPeriod) -> Decimal:
    value = to_decimal(raw_value)
    if value <= non_cash_exemption(period):
        return ZERO
    return round_money(value)


def value_non_cash_benefit(
    code: Optional[str],
    raw_value: Any,
    period: PayrollPeriod,
    statutory_gross: Optional[Any] = None,
) -> Decimal:
    """
    Taxable value of one non-cash benefit for the period.

    Raises:
        ValueError: housing benefit valued without statutory-base gross
    """
    normalized = normalize_code(code)
    if normalized in VEHICLE_CODES:
        return value_vehicle_benefit(raw_value)
    if normalized == MEAL_CODE:
        return value_meal_benefit(raw_value)
    if normalized == HOUSING_CODE:
        if statutory_gross is None:
            raise ValueError("Housing benefit needs statutory-base gross")
        return value_housing_benefit(raw_value, statutory_gross)
    return value_other_benefit(raw_value, period)
