"""
PayCycle - Calendar Period

A payroll period is one calendar month. Periods compare and subtract by
month index (year * 12 + month - 1), so "is June 2025 inside the window
Feb 2025 - Jan 2026" is a plain comparison.
"""

import calendar
from dataclasses import dataclass
from datetime import date
from typing import Optional, Union

from paycycle.utils.error_handling import InvalidPeriodException


MIN_YEAR = 1900
MAX_YEAR = 2100

_MONTH_NAMES = {name.lower(): i for i, name in enumerate(calendar.month_name) if name}
_MONTH_ABBREVIATIONS = {name.lower(): i for i, name in enumerate(calendar.month_abbr) if name}


@dataclass(frozen=True, order=True)
class PayrollPeriod:
    """Immutable (year, month) value with month arithmetic."""

    year: int
    month: int

    def __post_init__(self):
        if not 1 <= self.month <= 12:
            raise InvalidPeriodException("month", self.month)
        if not MIN_YEAR <= self.year <= MAX_YEAR:
            raise InvalidPeriodException("year", self.year)

    @property
    def index(self) -> int:
        return self.year * 12 + (self.month - 1)

    @classmethod
    def from_index(cls, index: int) -> "PayrollPeriod":
        year, month_zero = divmod(index, 12)
        return cls(year=year, month=month_zero + 1)

    @classmethod
    def from_date(cls, value: date) -> "PayrollPeriod":
        return cls(year=value.year, month=value.month)

    @classmethod
    def parse(cls, month: Union[int, str, None], year: Union[int, str, None]) -> "PayrollPeriod":
        """
        Build a period from loosely typed input.

        `month` may be a number (1-12, int or numeric string) or an English
        month name / abbreviation, case-insensitive.
        """
        return cls(year=_parse_year(year), month=_parse_month(month))

    def __add__(self, months: int) -> "PayrollPeriod":
        if not isinstance(months, int):
            return NotImplemented
        return PayrollPeriod.from_index(self.index + months)

    def __sub__(self, other):
        if isinstance(other, PayrollPeriod):
            return self.index - other.index
        if isinstance(other, int):
            return PayrollPeriod.from_index(self.index - other)
        return NotImplemented

    @property
    def first_day(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def last_day(self) -> date:
        return date(self.year, self.month, calendar.monthrange(self.year, self.month)[1])

    @property
    def label(self) -> str:
        """Human readable label, e.g. "June 2025"."""
        return f"{calendar.month_name[self.month]} {self.year}"

    @property
    def compact(self) -> str:
        """YYYYMM form used in payroll numbers."""
        return f"{self.year}{self.month:02d}"

    def __str__(self) -> str:
        return f"{self.year}-{self.month:02d}"


def end_period(start: PayrollPeriod, number_of_months: int) -> PayrollPeriod:
    """Last period covered by a window of `number_of_months` starting at `start`."""
    if number_of_months < 1:
        raise InvalidPeriodException("number_of_months", number_of_months)
    return start + (number_of_months - 1)


def optional_period(month: Optional[int], year: Optional[int]) -> Optional[PayrollPeriod]:
    """Period from nullable stored columns; None when either part is missing."""
    if month is None or year is None:
        return None
    return PayrollPeriod(year=year, month=month)


def _parse_month(value) -> int:
    if value is None or isinstance(value, bool):
        raise InvalidPeriodException("month", value)
    if isinstance(value, int):
        if 1 <= value <= 12:
            return value
        raise InvalidPeriodException("month", value)
    text = str(value).strip().lower()
    if text.isdigit():
        return _parse_month(int(text))
    if text in _MONTH_NAMES:
        return _MONTH_NAMES[text]
    if text in _MONTH_ABBREVIATIONS:
        return _MONTH_ABBREVIATIONS[text]
    raise InvalidPeriodException("month", value)


def _parse_year(value) -> int:
    if value is None or isinstance(value, bool):
        raise InvalidPeriodException("year", value)
    try:
        year = int(str(value).strip())
    except ValueError:
        raise InvalidPeriodException("year", value)
    if not MIN_YEAR <= year <= MAX_YEAR:
        raise InvalidPeriodException("year", value)
    return year
