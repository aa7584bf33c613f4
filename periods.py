import calendar
from dataclasses import dataclass
from datetime import date
from typing import Optional, Union


class PeriodValidationError(ValueError):
    pass


def month_start(year: int, month: int) -> date:
    return date(year, month, 1)


def month_end(year: int, month: int) -> date:
    return date(year, month, calendar.monthrange(year, month)[1])


def shift_month(year: int, month: int, offset: int) -> tuple[int, int]:
    month_index = (year * 12) + (month - 1) + offset
    return month_index // 12, (month_index % 12) + 1


@dataclass(frozen=True)
class CalendarMonth:
    month: int
    year: int

    @property
    def start(self) -> date:
        return month_start(self.year, self.month)

    @property
    def end(self) -> date:
        return month_end(self.year, self.month)

    def shifted(self, offset: int) -> "CalendarMonth":
        year, month = shift_month(self.year, self.month, offset)
        return CalendarMonth(month=month, year=year)


@dataclass(frozen=True)
class DateRange:
    start: date
    end: date


Period = Union[CalendarMonth, DateRange]


def resolve_month(
    month: Optional[int],
    year: Optional[int],
    *,
    today: Optional[date] = None,
    lookback: int = 0,
) -> CalendarMonth:
    """Resolve the requested month, defaulting missing parts to ``today``.

    ``lookback`` is the number of earlier months the caller will also read;
    they must stay on or after January of year 1.
    """
    today = today or date.today()
    target_month = month if month is not None else today.month
    target_year = year if year is not None else today.year
    if not 1 <= target_month <= 12:
        raise PeriodValidationError("Month must be between 1 and 12")
    if not 1 <= target_year <= 9999:
        raise PeriodValidationError("Year is out of range")
    if shift_month(target_year, target_month, -lookback)[0] < 1:
        raise PeriodValidationError("Year is too early for the requested history")
    return CalendarMonth(month=target_month, year=target_year)


def resolve_range(start: Optional[str], end: Optional[str]) -> DateRange:
    if not start or not end:
        raise PeriodValidationError("Start and end dates are required")
    try:
        start_date = date.fromisoformat(start)
        end_date = date.fromisoformat(end)
    except ValueError as exc:
        raise PeriodValidationError("Dates must use the YYYY-MM-DD format") from exc
    if start_date > end_date:
        raise PeriodValidationError("Start date must be before end date")
    return DateRange(start_date, end_date)
