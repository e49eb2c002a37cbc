"""
PayCycle - Statutory Rule Tables

Effective-dated Kenyan payroll constants. Every table that changed over time
is a list of versions ordered by `effective_from`; `rule_for_period` picks
the version in force for a payroll month.

PAYE annual bands (Finance Act 2023):
- KES 0 - 288,000: 10%
- KES 288,001 - 388,000: 25%
- KES 388,001 - 6,000,000: 30%
- KES 6,000,001 - 9,600,000: 32.5%
- Above KES 9,600,000: 35%

NSSF Act 2013 phases (6% employee rate):
- Feb 2023: LEL 6,000 / UEL 18,000
- Feb 2024: LEL 7,000 / UEL 36,000
- Feb 2025: LEL 8,000 / UEL 72,000

Levies:
- Affordable Housing Levy 1.5% from July 2023
- SHIF 2.75% from October 2024
- Both deductible from taxable income from December 2024 (Tax Laws Amendment Act 2024)
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Optional, Sequence, TypeVar

from paycycle.utils.period import PayrollPeriod


T = TypeVar("T")

# Versions that have applied for as long as this engine cares about
BEGINNING = PayrollPeriod(1900, 1)


# ===========================================
# PAYE
# ===========================================

@dataclass(frozen=True)
class PAYETaxBand:
    """Tax band definition (annual amounts, rate in percent)."""
    lower: Decimal
    upper: Optional[Decimal]
    rate: Decimal

    def calculate_tax(self, taxable_income: Decimal) -> Decimal:
        """Calculate tax for this band."""
        if taxable_income <= self.lower:
            return Decimal("0")

        if self.upper is None:
            taxable_in_band = taxable_income - self.lower
        else:
            taxable_in_band = min(taxable_income, self.upper) - self.lower

        if taxable_in_band <= 0:
            return Decimal("0")

        return taxable_in_band * (self.rate / 100)


KENYA_PAYE_BANDS = [
    PAYETaxBand(Decimal("0"), Decimal("288000"), Decimal("10")),
    PAYETaxBand(Decimal("288000"), Decimal("388000"), Decimal("25")),
    PAYETaxBand(Decimal("388000"), Decimal("6000000"), Decimal("30")),
    PAYETaxBand(Decimal("6000000"), Decimal("9600000"), Decimal("32.5")),
    PAYETaxBand(Decimal("9600000"), None, Decimal("35")),
]

PERSONAL_RELIEF_MONTHLY = Decimal("2400")
DISABILITY_EXEMPTION_ANNUAL = Decimal("150000")


# ===========================================
# NSSF
# ===========================================

@dataclass(frozen=True)
class NSSFRule:
    effective_from: PayrollPeriod
    tier1_cap: Decimal
    tier2_cap: Decimal
    rate: Decimal = Decimal("0.06")


NSSF_RULES = [
    NSSFRule(PayrollPeriod(2023, 2), Decimal("6000"), Decimal("18000")),
    NSSFRule(PayrollPeriod(2024, 2), Decimal("7000"), Decimal("36000")),
    NSSFRule(PayrollPeriod(2025, 2), Decimal("8000"), Decimal("72000")),
]

# Secondary employment is contributed on reduced tier limits
SECONDARY_TIER1_CAP = Decimal("4500")
SECONDARY_TIER2_CAP = Decimal("45000")


# ===========================================
# LEVIES
# ===========================================

@dataclass(frozen=True)
class LevyRule:
    effective_from: PayrollPeriod
    rate: Decimal


SHIF_RULES = [
    LevyRule(PayrollPeriod(2024, 10), Decimal("0.0275")),
]

HOUSING_LEVY_RULES = [
    LevyRule(PayrollPeriod(2023, 7), Decimal("0.015")),
]

# SHIF and AHL reduce taxable income from this month onward
LEVIES_DEDUCTIBLE_FROM = PayrollPeriod(2024, 12)


# ===========================================
# PRE-TAX DEDUCTION CAPS (monthly)
# ===========================================

@dataclass(frozen=True)
class PreTaxCapRule:
    effective_from: PayrollPeriod
    caps: Dict[str, Decimal] = field(default_factory=dict)


PRE_TAX_CAP_RULES = [
    PreTaxCapRule(BEGINNING, {
        "MORTGAGE_INTEREST": Decimal("25000"),
        "PENSION": Decimal("20000"),
    }),
    PreTaxCapRule(PayrollPeriod(2024, 12), {
        "MORTGAGE_INTEREST": Decimal("30000"),
        "PENSION": Decimal("30000"),
        "PRMF": Decimal("15000"),
    }),
]

# Deduction codes whose pre-tax relief only exists inside the table above
CAPPED_PRE_TAX_CODES = frozenset({"MORTGAGE_INTEREST", "PENSION", "PRMF"})


# ===========================================
# INSURANCE RELIEF
# ===========================================

INSURANCE_RELIEF_RATE = Decimal("0.15")
INSURANCE_RELIEF_CAP_MONTHLY = Decimal("5000")
INSURANCE_DEDUCTION_CODES = frozenset({"INSURANCE", "LIFE_INSURANCE", "EDUCATION_POLICY", "PRMF"})


# ===========================================
# NON-CASH BENEFITS
# ===========================================

VEHICLE_BENEFIT_RATE = Decimal("0.02")
VEHICLE_CODES = frozenset({"CAR", "VEHICLE"})
MEAL_EXEMPTION = Decimal("5000")
HOUSING_BENEFIT_RATE = Decimal("0.15")


@dataclass(frozen=True)
class ExemptionRule:
    effective_from: PayrollPeriod
    amount: Decimal


NON_CASH_EXEMPTION_RULES = [
    ExemptionRule(BEGINNING, Decimal("3000")),
    ExemptionRule(PayrollPeriod(2023, 7), Decimal("5000")),
]


# ===========================================
# LOOKUP
# ===========================================

def rule_for_period(versions: Sequence[T], period: PayrollPeriod) -> Optional[T]:
    """
    Latest version whose effective_from is on or before `period`.

    Returns None when the period predates every version.
    """
    selected = None
    for version in sorted(versions, key=lambda v: v.effective_from):
        if version.effective_from <= period:
            selected = version
        else:
            break
    return selected
