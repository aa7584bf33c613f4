from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from database import Base
from models import Category, Expense, ExpenseKind, Income, TransactionType
from periods import PeriodValidationError
from services import ReportService


def make_session() -> Session:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def _category(session, name, type_=TransactionType.expense, user_id=1, color="#111111"):
    category = Category(user_id=user_id, name=name, type=type_, color=color)
    session.add(category)
    session.flush()
    return category


def _expense(session, cents, on, category=None, user_id=1, **extra):
    expense = Expense(
        user_id=user_id,
        amount_cents=cents,
        description=extra.pop("description", "Dépense"),
        date=on,
        category_id=category.id if category else None,
        kind=extra.pop("kind", ExpenseKind.one_time),
        **extra,
    )
    session.add(expense)
    session.flush()
    return expense


def _income(session, cents, on, category=None, user_id=1):
    income = Income(
        user_id=user_id,
        amount_cents=cents,
        source="Employeur",
        date=on,
        category_id=category.id if category else None,
    )
    session.add(income)
    session.flush()
    return income


def test_empty_month_yields_zero_totals_and_empty_breakdowns() -> None:
    session = make_session()

    report = ReportService(session, user_id=1).monthly_report(5, 2024)

    assert report.total_income == Decimal("0")
    assert report.total_expenses == Decimal("0")
    assert report.balance == Decimal("0")
    assert report.category_expenses == []
    assert report.category_incomes == []
    assert [p.total for p in report.monthly_evolution] == [Decimal("0")] * 6


def test_monthly_report_totals_balance_and_breakdowns() -> None:
    session = make_session()
    food = _category(session, "Alimentation", color="#EF4444")
    transport = _category(session, "Transport", color="#F59E0B")
    salary = _category(session, "Salaire", TransactionType.income, color="#22C55E")
    _expense(session, 30_000, date(2024, 2, 3), food)
    _expense(session, 12_550, date(2024, 2, 20), transport)
    _expense(session, 99_999, date(2024, 3, 1), food)
    _income(session, 250_000, date(2024, 2, 28), salary)
    session.commit()

    report = ReportService(session, user_id=1).monthly_report(2, 2024)

    assert report.total_income == Decimal("2500.00")
    assert report.total_expenses == Decimal("425.50")
    assert report.balance == report.total_income - report.total_expenses
    assert [(c.category_name, c.amount) for c in report.category_expenses] == [
        ("Alimentation", Decimal("300.00")),
        ("Transport", Decimal("125.50")),
    ]
    assert report.category_expenses[0].category_color == "#EF4444"
    assert [(c.category_name, c.amount) for c in report.category_incomes] == [
        ("Salaire", Decimal("2500.00"))
    ]


def test_breakdown_sorted_descending() -> None:
    session = make_session()
    for name, cents in [("A", 30_000), ("B", 10_000), ("C", 50_000)]:
        _expense(session, cents, date(2024, 4, 2), _category(session, name))
    session.commit()

    report = ReportService(session, user_id=1).monthly_report(4, 2024)

    assert [c.amount for c in report.category_expenses] == [
        Decimal("500.00"),
        Decimal("300.00"),
        Decimal("100.00"),
    ]


def test_monthly_report_includes_overlapping_recurring_expense() -> None:
    session = make_session()
    rent = _category(session, "Logement")
    _expense(
        session,
        40_000,
        date(2024, 1, 10),
        rent,
        kind=ExpenseKind.recurring,
        start_date=date(2024, 1, 10),
        end_date=date(2024, 3, 20),
    )
    session.commit()
    reports = ReportService(session, user_id=1)

    february = reports.monthly_report(2, 2024)
    april = reports.monthly_report(4, 2024)

    assert february.total_expenses == Decimal("400.00")
    assert february.category_expenses[0].category_name == "Logement"
    assert april.total_expenses == Decimal("0")
    assert april.category_expenses == []


def test_summation_is_exact_for_many_small_amounts() -> None:
    session = make_session()
    for day in range(1, 31):
        _expense(session, 10, date(2024, 6, day))
    session.commit()

    report = ReportService(session, user_id=1).monthly_report(6, 2024)

    assert report.total_expenses == Decimal("3.00")


def test_uncategorized_expenses_count_in_total_only() -> None:
    session = make_session()
    _expense(session, 5_000, date(2024, 6, 2))
    session.commit()

    report = ReportService(session, user_id=1).monthly_report(6, 2024)

    assert report.total_expenses == Decimal("50.00")
    assert report.category_expenses == []


def test_reports_never_cross_user_boundaries() -> None:
    session = make_session()
    mine = _category(session, "Mine", user_id=1)
    theirs = _category(session, "Theirs", user_id=2)
    _expense(session, 1_000, date(2024, 6, 2), mine, user_id=1)
    _expense(session, 9_000, date(2024, 6, 2), theirs, user_id=2)
    _income(session, 7_000, date(2024, 6, 2), user_id=2)
    session.commit()

    report = ReportService(session, user_id=1).monthly_report(6, 2024)

    assert report.total_expenses == Decimal("10.00")
    assert report.total_income == Decimal("0")
    assert [c.category_name for c in report.category_expenses] == ["Mine"]


def test_trend_has_six_points_with_year_rollover() -> None:
    session = make_session()
    _expense(session, 10_000, date(2023, 10, 5))
    _expense(session, 20_000, date(2024, 1, 15))
    _expense(session, 5_000, date(2023, 9, 30))
    session.commit()

    report = ReportService(session, user_id=1).monthly_report(3, 2024)

    assert [(p.month, p.year) for p in report.monthly_evolution] == [
        (10, 2023),
        (11, 2023),
        (12, 2023),
        (1, 2024),
        (2, 2024),
        (3, 2024),
    ]
    assert report.monthly_evolution[0].total == Decimal("100.00")
    assert report.monthly_evolution[3].total == Decimal("200.00")


def test_monthly_report_rejects_trend_reaching_before_year_one() -> None:
    session = make_session()

    with pytest.raises(PeriodValidationError):
        ReportService(session, user_id=1).monthly_report(1, 1)

    report = ReportService(session, user_id=1).monthly_report(6, 1)
    assert [(p.month, p.year) for p in report.monthly_evolution][0] == (1, 1)


def test_trend_ignores_recurring_expenses() -> None:
    session = make_session()
    _expense(
        session,
        40_000,
        date(2024, 2, 1),
        kind=ExpenseKind.recurring,
        start_date=date(2024, 2, 1),
        end_date=date(2024, 6, 30),
    )
    session.commit()

    report = ReportService(session, user_id=1).monthly_report(3, 2024)

    assert report.total_expenses == Decimal("400.00")
    assert all(p.total == Decimal("0") for p in report.monthly_evolution)


def test_range_report_uses_overlap_for_expenses_and_dates_for_incomes() -> None:
    session = make_session()
    leisure = _category(session, "Loisirs")
    rent = _category(session, "Logement")
    _expense(session, 2_000, date(2024, 5, 10), leisure)
    _expense(session, 3_000, date(2024, 7, 1), leisure)
    _expense(
        session,
        60_000,
        date(2024, 1, 1),
        rent,
        kind=ExpenseKind.recurring,
        start_date=date(2024, 1, 1),
        end_date=date(2024, 5, 1),
    )
    _income(session, 100_000, date(2024, 5, 31))
    _income(session, 100_000, date(2024, 6, 1))
    session.commit()

    report = ReportService(session, user_id=1).range_report("2024-05-01", "2024-05-31")

    assert report.start_date == date(2024, 5, 1)
    assert report.end_date == date(2024, 5, 31)
    assert report.total_income == Decimal("1000.00")
    assert report.total_expenses == Decimal("620.00")
    assert report.balance == Decimal("380.00")
    assert [c.category_name for c in report.category_expenses] == [
        "Logement",
        "Loisirs",
    ]


def test_range_report_includes_global_categories() -> None:
    session = make_session()
    shared = _category(session, "Transport", user_id=None)
    _expense(session, 4_500, date(2024, 5, 10), shared)
    session.commit()

    report = ReportService(session, user_id=1).range_report("2024-05-01", "2024-05-31")

    assert [(c.category_name, c.amount) for c in report.category_expenses] == [
        ("Transport", Decimal("45.00"))
    ]


def test_range_report_without_end_date_runs_no_queries(monkeypatch) -> None:
    session = make_session()

    def fail(*args, **kwargs):
        raise AssertionError("no query expected")

    monkeypatch.setattr(session, "execute", fail)
    monkeypatch.setattr(session, "scalar", fail)

    with pytest.raises(PeriodValidationError):
        ReportService(session, user_id=1).range_report("2024-05-01", None)


def test_report_serializes_amounts_as_numbers() -> None:
    session = make_session()
    _expense(session, 12_345, date(2024, 6, 1), _category(session, "Divers"))
    session.commit()

    payload = ReportService(session, user_id=1).monthly_report(6, 2024).model_dump(
        mode="json"
    )

    assert payload["total_expenses"] == 123.45
    assert payload["balance"] == -123.45
    assert payload["category_expenses"] == [
        {"category_name": "Divers", "category_color": "#111111", "amount": 123.45}
    ]
    assert payload["monthly_evolution"][-1] == {"month": 6, "year": 2024, "total": 123.45}
