"""Month helpers.

Months are ``YYYY-MM`` strings throughout the ledger.
"""

import calendar
import re
from datetime import date
from typing import Optional

from budget_ledger.errors import ValidationError
from budget_ledger.models.ledger import MONTH_PATTERN


_MONTH_RE = re.compile(MONTH_PATTERN)


def validate_month(month: str) -> str:
    """Return ``month`` unchanged, or raise ValidationError if not YYYY-MM."""
    if not isinstance(month, str) or not _MONTH_RE.match(month):
        raise ValidationError(f"Month must be in YYYY-MM format, got {month!r}")
    return month


def month_bounds(month: str) -> tuple[date, date]:
    """First and last calendar day of a month (both inclusive).

    Args:
        month: Month in YYYY-MM format.
    """
    validate_month(month)
    year, mon = (int(part) for part in month.split("-"))
    last_day = calendar.monthrange(year, mon)[1]
    return date(year, mon, 1), date(year, mon, last_day)


def month_of(day: date) -> str:
    return day.strftime("%Y-%m")


def current_month(today: Optional[date] = None) -> str:
    return month_of(today or date.today())


def month_label(month: str) -> str:
    """Human-readable month, e.g. "June 2024"."""
    first, _ = month_bounds(month)
    return first.strftime("%B %Y")
