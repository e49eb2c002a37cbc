"""
PayCycle - Statutory Calculators Package

Kenyan statutory payroll calculations. Every function is pure: the caller
passes the payroll period, classification and flags it needs.

Modules:
- rule_tables: effective-dated rates, caps and bands
- paye_service: PAYE with progressive bands, personal relief, disability exemption
- nssf_service: two-tier NSSF contribution
- levy_service: SHIF and Affordable Housing Levy
- relief_service: insurance relief and capped pre-tax deductions
"""

from paycycle.services.statutory.rule_tables import rule_for_period
from paycycle.services.statutory.paye_service import PAYECalculator, calculate_paye
from paycycle.services.statutory.nssf_service import NSSFContribution, calculate_nssf
from paycycle.services.statutory.levy_service import (
    calculate_shif,
    calculate_housing_levy,
    statutory_contributions_deductible,
)
from paycycle.services.statutory.relief_service import (
    calculate_insurance_relief,
    apply_insurance_relief,
    deductible_pre_tax_amount,
    is_insurance_deduction,
)


__all__ = [
    "rule_for_period",
    # PAYE
    "PAYECalculator",
    "calculate_paye",
    # NSSF
    "NSSFContribution",
    "calculate_nssf",
    # Levies
    "calculate_shif",
    "calculate_housing_levy",
    "statutory_contributions_deductible",
    # Reliefs
    "calculate_insurance_relief",
    "apply_insurance_relief",
    "deductible_pre_tax_amount",
    "is_insurance_deduction",
]
