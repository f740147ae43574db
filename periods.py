import re
from dataclasses import dataclass
from datetime import date
from typing import Optional

from errors import MissingPeriod, ValidationError

_YEAR = re.compile(r"^\d{4}$")
_YEAR_MONTH = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$")


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date


def _month_end(year: int, month: int) -> date:
    if month == 12:
        return date(year, 12, 31)
    return date(year, month + 1, 1) - date.resolution


def resolve_report_period(
    year: Optional[str], year_month: Optional[str]
) -> Period:
    """Calendar month for ``year_month`` (preferred) or calendar year for ``year``."""
    year = (year or "").strip()
    year_month = (year_month or "").strip()
    if not year and not year_month:
        raise MissingPeriod()

    if year_month:
        match = _YEAR_MONTH.match(year_month)
        if not match or int(match.group(1)) < 1:
            raise ValidationError("'year-month' must be in YYYY-MM format")
        y, m = int(match.group(1)), int(match.group(2))
        return Period(year_month, date(y, m, 1), _month_end(y, m))

    if not _YEAR.match(year) or int(year) < 1:
        raise ValidationError("'year' must be a four-digit year")
    y = int(year)
    return Period(year, date(y, 1, 1), date(y, 12, 31))
