import math
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from sqlalchemy import and_, or_
from sqlalchemy.sql.elements import ColumnElement

from config import get_settings
from models import Expense, ExpenseKind


def local_now() -> datetime:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).replace(tzinfo=None)


def local_today() -> date:
    return local_now().date()


def as_local_naive(moment: datetime) -> datetime:
    """Aware datetimes are converted to the configured zone and made naive."""
    if moment.tzinfo is None:
        return moment
    tz = ZoneInfo(get_settings().timezone)
    return moment.astimezone(tz).replace(tzinfo=None)


def recurring_overlap_clause(range_start: date, range_end: date) -> ColumnElement[bool]:
    """Recurring expenses whose inclusive window intersects the range.

    The whole amount counts as soon as the windows touch; nothing is
    prorated by the number of overlapping days.
    """
    return and_(
        Expense.kind == ExpenseKind.recurring,
        Expense.start_date.is_not(None),
        Expense.end_date.is_not(None),
        Expense.start_date <= range_end,
        Expense.end_date >= range_start,
    )


def one_time_clause(range_start: date, range_end: date) -> ColumnElement[bool]:
    return and_(
        Expense.kind == ExpenseKind.one_time,
        Expense.date.between(range_start, range_end),
    )


def contributing_expense_clause(
    range_start: date, range_end: date
) -> ColumnElement[bool]:
    return or_(
        one_time_clause(range_start, range_end),
        recurring_overlap_clause(range_start, range_end),
    )


def ending_within_clause(today: date, horizon_days: int) -> ColumnElement[bool]:
    return and_(
        Expense.kind == ExpenseKind.recurring,
        Expense.end_date.between(today, today + timedelta(days=horizon_days)),
    )


def days_remaining(end_date: date, now: datetime) -> int:
    # end_date is read as midnight, so an expense ending today yields 0.
    delta = datetime.combine(end_date, datetime.min.time()) - now
    return max(0, math.ceil(delta.total_seconds() / 86400))
