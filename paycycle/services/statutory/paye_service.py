"""
PayCycle - PAYE Calculator

Monthly PAYE for Kenyan employees:
1. Annualize the monthly taxable income (x 12)
2. Subtract the annual disability exemption for employees with a disability
3. Apply the progressive annual bands
4. Divide by 12, subtract monthly personal relief, floor at zero
5. Round up to the next whole shilling

Insurance relief is applied afterwards by the caller (see relief_service).
"""

from decimal import Decimal
from typing import Any, List, Optional

from paycycle.services.statutory.rule_tables import (
    PAYETaxBand,
    KENYA_PAYE_BANDS,
    PERSONAL_RELIEF_MONTHLY,
    DISABILITY_EXEMPTION_ANNUAL,
)
from paycycle.utils.money import ZERO, round_up_whole, to_decimal


class PAYECalculator:
    """
    PAYE (Pay As You Earn) calculator for the Kenyan tax system.

    Stateless; a single default instance is shared by the module-level helpers.
    """

    def __init__(
        self,
        tax_bands: Optional[List[PAYETaxBand]] = None,
        personal_relief: Decimal = PERSONAL_RELIEF_MONTHLY,
        disability_exemption: Decimal = DISABILITY_EXEMPTION_ANNUAL,
    ):
        self.tax_bands = tax_bands or KENYA_PAYE_BANDS
        self.personal_relief = personal_relief
        self.disability_exemption = disability_exemption

    def annual_taxable_income(self, monthly_taxable: Decimal, is_disabled: bool = False) -> Decimal:
        annual = monthly_taxable * 12
        if is_disabled:
            annual = max(ZERO, annual - self.disability_exemption)
        return annual

    def calculate_annual_tax(self, annual_taxable: Decimal) -> Decimal:
        """Progressive tax across all bands."""
        return sum((band.calculate_tax(annual_taxable) for band in self.tax_bands), Decimal("0"))

    def calculate_monthly_paye(self, monthly_taxable: Any, is_disabled: bool = False) -> Decimal:
        """
        Monthly PAYE payable before insurance relief.

        Returns zero for non-positive taxable income.
        """
        taxable = to_decimal(monthly_taxable)
        if taxable <= 0:
            return ZERO

        annual_tax = self.calculate_annual_tax(self.annual_taxable_income(taxable, is_disabled))
        monthly_tax = annual_tax / 12 - self.personal_relief
        if monthly_tax <= 0:
            return ZERO
        return round_up_whole(monthly_tax)


_default_calculator = PAYECalculator()


def calculate_paye(monthly_taxable: Any, is_disabled: bool = False) -> Decimal:
    """
    Calculate monthly PAYE (before insurance relief).

    Args:
        monthly_taxable: Monthly taxable income
        is_disabled: Apply the annual disability exemption

    Returns:
        PAYE rounded up to a whole unit, never negative
    """
    return _default_calculator.calculate_monthly_paye(monthly_taxable, is_disabled)
