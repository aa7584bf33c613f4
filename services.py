from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, joinedload
from sqlalchemy.sql.elements import ColumnElement

from config import get_settings
from models import (
    DEFAULT_CATEGORY_COLOR,
    Category,
    Expense,
    ExpenseKind,
    Income,
    TransactionType,
    User,
)
from periods import (
    CalendarMonth,
    DateRange,
    Period,
    resolve_month,
    resolve_range,
)
from recurrence import (
    as_local_naive,
    contributing_expense_clause,
    days_remaining,
    ending_within_clause,
    local_now,
    local_today,
    one_time_clause,
)
from schemas import (
    Alert,
    AlertSeverity,
    AlertsReport,
    AlertType,
    CategoryAmount,
    CategoryIn,
    CategoryUpdate,
    ExpenseIn,
    ExpenseUpdate,
    IncomeIn,
    IncomeUpdate,
    MonthlyReport,
    RangeReport,
    TrendPoint,
    UserIn,
    UserUpdate,
)


logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def get_current_user_id() -> int:
    return get_settings().default_user_id


def cents_to_amount(cents: int) -> Decimal:
    return (Decimal(int(cents)) / 100).quantize(CENT)


def amount_to_cents(amount: Decimal) -> int:
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_amount(amount: Decimal) -> str:
    if amount == amount.to_integral_value():
        return f"{amount:,.0f}".replace(",", " ")
    return f"{amount:,.2f}".replace(",", " ")


def _period_window(period: Period) -> tuple[date, date]:
    if isinstance(period, CalendarMonth):
        return period.start, period.end
    if isinstance(period, DateRange):
        return period.start, period.end
    raise TypeError(f"Unsupported period: {period!r}")


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _email_taken(self, email: str, exclude_id: Optional[int] = None) -> bool:
        stmt = select(User.id).where(func.lower(User.email) == email.lower())
        if exclude_id is not None:
            stmt = stmt.where(User.id != exclude_id)
        return self.session.scalar(stmt) is not None

    def get(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise ValueError("User not found")
        return user

    def create(self, data: UserIn) -> User:
        email = data.email.strip().lower()
        if self._email_taken(email):
            raise ValueError("A user with this email already exists")
        user = User(username=data.username.strip(), email=email)
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def update(self, user_id: int, data: UserUpdate) -> User:
        user = self.get(user_id)
        fields = data.model_dump(exclude_unset=True, exclude_none=True)
        if not fields:
            raise ValueError("Nothing to update")
        if "email" in fields:
            email = fields["email"].strip().lower()
            if self._email_taken(email, exclude_id=user.id):
                raise ValueError("A user with this email already exists")
            user.email = email
        if "username" in fields:
            user.username = fields["username"].strip()
        self.session.commit()
        return user


class CategoryService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def _visible(self) -> ColumnElement[bool]:
        return or_(Category.user_id == self.user_id, Category.user_id.is_(None))

    def _name_taken(
        self,
        name: str,
        type_: TransactionType,
        exclude_id: Optional[int] = None,
    ) -> bool:
        stmt = select(Category.id).where(
            Category.user_id == self.user_id,
            Category.type == type_,
            func.lower(Category.name) == name.lower(),
        )
        if exclude_id is not None:
            stmt = stmt.where(Category.id != exclude_id)
        return self.session.scalar(stmt) is not None

    def list_all(self, type_: Optional[TransactionType] = None) -> list[Category]:
        stmt = select(Category).where(self._visible()).order_by(Category.name)
        if type_ is not None:
            stmt = stmt.where(Category.type == type_)
        return self.session.scalars(stmt).all()

    def get_visible(self, category_id: int, type_: TransactionType) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.user_id not in (None, self.user_id):
            raise ValueError("Category not found")
        if category.type != type_:
            raise ValueError("Category type mismatch")
        return category

    def _get_owned(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.user_id != self.user_id:
            raise ValueError("Category not found")
        return category

    def create(self, data: CategoryIn) -> Category:
        name = data.name.strip()
        if self._name_taken(name, data.type):
            raise ValueError("Category with this name already exists")
        category = Category(
            user_id=self.user_id,
            name=name,
            type=data.type,
            color=data.color or DEFAULT_CATEGORY_COLOR,
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def update(self, category_id: int, data: CategoryUpdate) -> Category:
        category = self._get_owned(category_id)
        fields = data.model_dump(exclude_unset=True, exclude_none=True)
        if not fields:
            raise ValueError("Nothing to update")
        if "name" in fields:
            name = fields["name"].strip()
            if self._name_taken(name, category.type, exclude_id=category.id):
                raise ValueError("Category with this name already exists")
            category.name = name
        if "color" in fields:
            category.color = fields["color"]
        self.session.commit()
        return category

    def delete(self, category_id: int) -> None:
        category = self._get_owned(category_id)
        expense_count = self.session.scalar(
            select(func.count(Expense.id)).where(Expense.category_id == category.id)
        )
        income_count = self.session.scalar(
            select(func.count(Income.id)).where(Income.category_id == category.id)
        )
        if (expense_count or 0) + (income_count or 0) > 0:
            raise ValueError("Category is used by expenses or incomes")
        self.session.delete(category)
        self.session.commit()


class ExpenseService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.categories = CategoryService(session, self.user_id)

    def list(
        self,
        month: Optional[CalendarMonth] = None,
        *,
        category_id: Optional[int] = None,
        kind: Optional[ExpenseKind] = None,
    ) -> list[Expense]:
        stmt = (
            select(Expense)
            .options(joinedload(Expense.category))
            .where(Expense.user_id == self.user_id)
            .order_by(Expense.date.desc(), Expense.id.desc())
        )
        if month is not None:
            stmt = stmt.where(Expense.date.between(month.start, month.end))
        if category_id is not None:
            stmt = stmt.where(Expense.category_id == category_id)
        if kind is not None:
            stmt = stmt.where(Expense.kind == kind)
        return self.session.scalars(stmt).all()

    def get(self, expense_id: int) -> Expense:
        stmt = (
            select(Expense)
            .options(joinedload(Expense.category))
            .where(Expense.user_id == self.user_id, Expense.id == expense_id)
        )
        expense = self.session.scalar(stmt)
        if not expense:
            raise ValueError("Expense not found")
        return expense

    def create(self, data: ExpenseIn) -> Expense:
        if data.category_id is not None:
            self.categories.get_visible(data.category_id, TransactionType.expense)
        recurring = data.kind == ExpenseKind.recurring
        expense = Expense(
            user_id=self.user_id,
            amount_cents=amount_to_cents(data.amount),
            description=data.description.strip(),
            date=data.date,
            category_id=data.category_id,
            kind=data.kind,
            start_date=data.start_date if recurring else None,
            end_date=data.end_date if recurring else None,
        )
        self.session.add(expense)
        self.session.commit()
        self.session.refresh(expense)
        return expense

    def update(self, expense_id: int, data: ExpenseUpdate) -> Expense:
        expense = self.get(expense_id)
        fields = data.model_dump(exclude_unset=True)
        if not fields:
            raise ValueError("Nothing to update")
        if fields.get("category_id") is not None:
            self.categories.get_visible(fields["category_id"], TransactionType.expense)
        amount = fields.pop("amount", None)
        if amount is not None:
            expense.amount_cents = amount_to_cents(amount)
        if fields.get("description") is not None:
            expense.description = fields["description"].strip()
        if fields.get("date") is not None:
            expense.date = fields["date"]
        if fields.get("kind") is not None:
            expense.kind = fields["kind"]
        # Explicit nulls are meaningful for these.
        for key in ("category_id", "start_date", "end_date"):
            if key in fields:
                setattr(expense, key, fields[key])

        if expense.kind == ExpenseKind.recurring:
            if expense.start_date is None or expense.end_date is None:
                self.session.rollback()
                raise ValueError(
                    "Recurring expenses require a start date and an end date"
                )
            if expense.start_date >= expense.end_date:
                self.session.rollback()
                raise ValueError("Start date must be before end date")
        else:
            expense.start_date = None
            expense.end_date = None
        self.session.commit()
        return expense

    def delete(self, expense_id: int) -> None:
        expense = self.get(expense_id)
        self.session.delete(expense)
        self.session.commit()


class IncomeService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.categories = CategoryService(session, self.user_id)

    def list(
        self,
        month: Optional[CalendarMonth] = None,
        *,
        category_id: Optional[int] = None,
    ) -> list[Income]:
        stmt = (
            select(Income)
            .options(joinedload(Income.category))
            .where(Income.user_id == self.user_id)
            .order_by(Income.date.desc(), Income.id.desc())
        )
        if month is not None:
            stmt = stmt.where(Income.date.between(month.start, month.end))
        if category_id is not None:
            stmt = stmt.where(Income.category_id == category_id)
        return self.session.scalars(stmt).all()

    def get(self, income_id: int) -> Income:
        stmt = (
            select(Income)
            .options(joinedload(Income.category))
            .where(Income.user_id == self.user_id, Income.id == income_id)
        )
        income = self.session.scalar(stmt)
        if not income:
            raise ValueError("Income not found")
        return income

    def create(self, data: IncomeIn) -> Income:
        if data.category_id is not None:
            self.categories.get_visible(data.category_id, TransactionType.income)
        income = Income(
            user_id=self.user_id,
            amount_cents=amount_to_cents(data.amount),
            description=data.description.strip() if data.description else None,
            source=data.source.strip(),
            date=data.date,
            category_id=data.category_id,
        )
        self.session.add(income)
        self.session.commit()
        self.session.refresh(income)
        return income

    def update(self, income_id: int, data: IncomeUpdate) -> Income:
        income = self.get(income_id)
        fields = data.model_dump(exclude_unset=True)
        if not fields:
            raise ValueError("Nothing to update")
        if fields.get("category_id") is not None:
            self.categories.get_visible(fields["category_id"], TransactionType.income)
        if "amount" in fields:
            amount = fields.pop("amount")
            if amount is not None:
                income.amount_cents = amount_to_cents(amount)
        if fields.get("source") is not None:
            income.source = fields["source"].strip()
        if "description" in fields:
            description = fields["description"]
            income.description = description.strip() if description else None
        if fields.get("date") is not None:
            income.date = fields["date"]
        if "category_id" in fields:
            income.category_id = fields["category_id"]
        self.session.commit()
        return income

    def delete(self, income_id: int) -> None:
        income = self.get(income_id)
        self.session.delete(income)
        self.session.commit()


class MetricsService:
    """Period-scoped sums and per-category breakdowns for one user.

    Amounts are summed as integer cents in SQL and only converted to
    ``Decimal`` on the way out, so totals never drift.
    """

    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def _visible_category(self) -> ColumnElement[bool]:
        return or_(Category.user_id == self.user_id, Category.user_id.is_(None))

    def _sum_expenses(self, clause: ColumnElement[bool]) -> int:
        stmt = select(func.coalesce(func.sum(Expense.amount_cents), 0)).where(
            Expense.user_id == self.user_id, clause
        )
        return int(self.session.execute(stmt).scalar_one() or 0)

    def expense_total(self, period: Period) -> Decimal:
        start, end = _period_window(period)
        return cents_to_amount(
            self._sum_expenses(contributing_expense_clause(start, end))
        )

    def one_time_expense_total(self, month: CalendarMonth) -> Decimal:
        return cents_to_amount(
            self._sum_expenses(one_time_clause(month.start, month.end))
        )

    def income_total(self, period: Period) -> Decimal:
        start, end = _period_window(period)
        stmt = select(func.coalesce(func.sum(Income.amount_cents), 0)).where(
            Income.user_id == self.user_id,
            Income.date.between(start, end),
        )
        return cents_to_amount(int(self.session.execute(stmt).scalar_one() or 0))

    def category_breakdown(
        self,
        period: Period,
        transaction_type: TransactionType = TransactionType.expense,
    ) -> list[CategoryAmount]:
        start, end = _period_window(period)
        if transaction_type == TransactionType.income:
            total = func.sum(Income.amount_cents).label("total")
            stmt = (
                select(Category.name, Category.color, total)
                .select_from(Income)
                .join(Category, Category.id == Income.category_id)
                .where(
                    Income.user_id == self.user_id,
                    Income.date.between(start, end),
                )
            )
        else:
            total = func.sum(Expense.amount_cents).label("total")
            stmt = (
                select(Category.name, Category.color, total)
                .select_from(Expense)
                .join(Category, Category.id == Expense.category_id)
                .where(
                    Expense.user_id == self.user_id,
                    contributing_expense_clause(start, end),
                )
            )
        stmt = (
            stmt.where(self._visible_category())
            .group_by(Category.id, Category.name, Category.color)
            .order_by(total.desc(), Category.name)
        )

        breakdown: list[CategoryAmount] = []
        for row in self.session.execute(stmt):
            cents = int(row.total or 0)
            if cents <= 0:
                continue
            breakdown.append(
                CategoryAmount(
                    category_name=row.name,
                    category_color=row.color,
                    amount=cents_to_amount(cents),
                )
            )
        return breakdown


class InsightsService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.metrics = MetricsService(session, self.user_id)

    def monthly_evolution(
        self, reference: CalendarMonth, months: Optional[int] = None
    ) -> list[TrendPoint]:
        """Trailing one-time expense totals, oldest first, ending at ``reference``."""
        count = months or get_settings().trend_months
        points: list[TrendPoint] = []
        for offset in range(count - 1, -1, -1):
            target = reference.shifted(-offset)
            points.append(
                TrendPoint(
                    month=target.month,
                    year=target.year,
                    total=self.metrics.one_time_expense_total(target),
                )
            )
        return points


class AlertService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.metrics = MetricsService(session, self.user_id)
        self.settings = get_settings()

    def _threshold_alerts(self, total: Decimal) -> list[Alert]:
        label = self.settings.currency_label
        warning_at = self.settings.alert_warning_threshold
        info_at = self.settings.alert_info_threshold
        alerts: list[Alert] = []
        # Both thresholds are checked independently.
        if total > warning_at:
            alerts.append(
                Alert(
                    type=AlertType.warning,
                    severity=AlertSeverity.high,
                    message=(
                        f"Vos dépenses du mois dépassent {format_amount(warning_at)} "
                        f"{label} ({format_amount(total)} {label})"
                    ),
                )
            )
        if total > info_at:
            alerts.append(
                Alert(
                    type=AlertType.info,
                    severity=AlertSeverity.medium,
                    message=(
                        f"Vos dépenses du mois approchent de "
                        f"{format_amount(warning_at)} {label} "
                        f"({format_amount(total)} {label})"
                    ),
                )
            )
        return alerts

    def _expiring_alerts(self, now: datetime) -> list[Alert]:
        stmt = (
            select(Expense.description, Expense.end_date)
            .where(
                Expense.user_id == self.user_id,
                ending_within_clause(now.date(), self.settings.recurring_expiry_days),
            )
            .order_by(Expense.end_date, Expense.id)
        )
        alerts: list[Alert] = []
        for row in self.session.execute(stmt):
            days = days_remaining(row.end_date, now)
            alerts.append(
                Alert(
                    type=AlertType.info,
                    severity=AlertSeverity.low,
                    message=(
                        f'Dépense récurrente "{row.description}" '
                        f"se termine dans {days} jour(s)"
                    ),
                )
            )
        return alerts

    def evaluate(self, now: Optional[datetime] = None) -> AlertsReport:
        now = as_local_naive(now) if now else local_now()
        current = CalendarMonth(month=now.month, year=now.year)
        total = self.metrics.one_time_expense_total(current)
        alerts = self._threshold_alerts(total) + self._expiring_alerts(now)
        return AlertsReport(total_expenses=total, alerts=alerts)


class ReportService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.metrics = MetricsService(session, self.user_id)
        self.insights = InsightsService(session, self.user_id)
        self.alert_service = AlertService(session, self.user_id)

    def monthly_report(
        self,
        month: Optional[int] = None,
        year: Optional[int] = None,
        *,
        today: Optional[date] = None,
    ) -> MonthlyReport:
        period = resolve_month(
            month,
            year,
            today=today or local_today(),
            lookback=get_settings().trend_months - 1,
        )
        logger.info(
            f"monthly_report: user_id={self.user_id} month={period.month} year={period.year}"
        )
        total_income = self.metrics.income_total(period)
        total_expenses = self.metrics.expense_total(period)
        return MonthlyReport(
            month=period.month,
            year=period.year,
            total_income=total_income,
            total_expenses=total_expenses,
            balance=total_income - total_expenses,
            category_expenses=self.metrics.category_breakdown(
                period, TransactionType.expense
            ),
            category_incomes=self.metrics.category_breakdown(
                period, TransactionType.income
            ),
            monthly_evolution=self.insights.monthly_evolution(period),
        )

    def range_report(self, start: Optional[str], end: Optional[str]) -> RangeReport:
        period = resolve_range(start, end)
        logger.info(
            f"range_report: user_id={self.user_id} start={period.start} end={period.end}"
        )
        total_income = self.metrics.income_total(period)
        total_expenses = self.metrics.expense_total(period)
        return RangeReport(
            start_date=period.start,
            end_date=period.end,
            total_income=total_income,
            total_expenses=total_expenses,
            balance=total_income - total_expenses,
            category_expenses=self.metrics.category_breakdown(
                period, TransactionType.expense
            ),
        )

    def alerts(self, now: Optional[datetime] = None) -> AlertsReport:
        report = self.alert_service.evaluate(now)
        logger.info(
            f"alerts: user_id={self.user_id} total_expenses={report.total_expenses} "
            f"count={len(report.alerts)}"
        )
        return report
