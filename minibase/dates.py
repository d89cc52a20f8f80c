"""Validation of calendar dates stored as YYYYMMDD integers."""

from __future__ import annotations

_MAX_DAYS = (0, 31, 28, 31, 30, 31, 30, 31, 31, 30, 31, 30, 31)
_EARLIEST_YEAR = 1970


def is_leap_year(year: int) -> bool:
    """Whether ``year`` is a leap year in the Gregorian calendar."""
    return (year % 4 == 0 and year % 100 != 0) or year % 400 == 0


def is_date(year: int, month: int, day: int) -> bool:
    """Whether the given year, month and day form a valid date from 1970 on."""
    if month < 1 or month > 12:
        return False
    if year < _EARLIEST_YEAR:
        return False
    if month == 2 and day == 29 and is_leap_year(year):
        return True
    return 1 <= day <= _MAX_DAYS[month]


def _truncating_divmod(value: int, divisor: int) -> tuple[int, int]:
    quotient = abs(value) // divisor
    if value < 0:
        quotient = -quotient
    return quotient, value - quotient * divisor


def is_valid_date(date: int) -> bool:
    """Whether an integer of the form YYYYMMDD names a valid date."""
    year, rest = _truncating_divmod(date, 10000)
    month, day = _truncating_divmod(rest, 100)
    return is_date(year, month, day)