import logging
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import get_settings
from database import SessionLocal
from models import Category, Expense, ExpenseKind, Income, TransactionType, User
from periods import PeriodValidationError, resolve_month
from schemas import (
    AlertsReport,
    CategoryIn,
    CategoryUpdate,
    ExpenseIn,
    ExpenseUpdate,
    IncomeIn,
    IncomeUpdate,
    MonthlyReport,
    RangeReport,
    UserIn,
    UserUpdate,
)
from services import (
    CategoryService,
    ExpenseService,
    IncomeService,
    ReportService,
    UserService,
    cents_to_amount,
)


logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)


def _load_app_version() -> str:
    try:
        import tomllib
    except ImportError:
        return "unknown"
    try:
        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except (OSError, tomllib.TOMLDecodeError):
        return "unknown"


APP_VERSION = _load_app_version()

app = FastAPI(title="Personal Finance Tracker", version=APP_VERSION)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_current_user_id(x_user_id: Optional[int] = Header(default=None)) -> int:
    return x_user_id or get_settings().default_user_id


@app.exception_handler(SQLAlchemyError)
def store_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception(f"store_error: path={request.url.path}")
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def _http_error(exc: ValueError) -> HTTPException:
    status = 404 if "not found" in str(exc).lower() else 400
    return HTTPException(status_code=status, detail=str(exc))


def _month_filter(month: Optional[int], year: Optional[int]):
    if month is None or year is None:
        return None
    try:
        return resolve_month(month, year)
    except PeriodValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def user_payload(user: User) -> dict[str, object]:
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "created_at": user.created_at.isoformat(),
    }


def category_payload(category: Category) -> dict[str, object]:
    return {
        "id": category.id,
        "name": category.name,
        "type": category.type.value,
        "color": category.color,
        "user_id": category.user_id,
        "is_global": category.is_global,
    }


def expense_payload(expense: Expense) -> dict[str, object]:
    return {
        "id": expense.id,
        "amount": float(cents_to_amount(expense.amount_cents)),
        "description": expense.description,
        "date": expense.date.isoformat(),
        "category_id": expense.category_id,
        "category_name": expense.category.name if expense.category else None,
        "category_color": expense.category.color if expense.category else None,
        "type": expense.kind.value,
        "start_date": expense.start_date.isoformat() if expense.start_date else None,
        "end_date": expense.end_date.isoformat() if expense.end_date else None,
        "user_id": expense.user_id,
    }


def income_payload(income: Income) -> dict[str, object]:
    return {
        "id": income.id,
        "amount": float(cents_to_amount(income.amount_cents)),
        "description": income.description,
        "source": income.source,
        "date": income.date.isoformat(),
        "category_id": income.category_id,
        "category_name": income.category.name if income.category else None,
        "category_color": income.category.color if income.category else None,
        "user_id": income.user_id,
    }


@app.post("/api/users", status_code=201)
def create_user(payload: UserIn, db: Session = Depends(get_db)):
    try:
        user = UserService(db).create(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return user_payload(user)


@app.get("/api/profile")
def get_profile(
    db: Session = Depends(get_db), user_id: int = Depends(get_current_user_id)
):
    try:
        user = UserService(db).get(user_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return user_payload(user)


@app.put("/api/profile")
def update_profile(
    payload: UserUpdate,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    try:
        user = UserService(db).update(user_id, payload)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return user_payload(user)


@app.get("/api/categories")
def list_categories(
    type: Optional[TransactionType] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    categories = CategoryService(db, user_id).list_all(type)
    return [category_payload(c) for c in categories]


@app.post("/api/categories", status_code=201)
def create_category(
    payload: CategoryIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    try:
        category = CategoryService(db, user_id).create(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return category_payload(category)


@app.put("/api/categories/{category_id}")
def update_category(
    category_id: int,
    payload: CategoryUpdate,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    try:
        category = CategoryService(db, user_id).update(category_id, payload)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return category_payload(category)


@app.delete("/api/categories/{category_id}")
def delete_category(
    category_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    try:
        CategoryService(db, user_id).delete(category_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {"deleted": category_id}


@app.get("/api/expenses")
def list_expenses(
    month: Optional[int] = None,
    year: Optional[int] = None,
    category_id: Optional[int] = None,
    type: Optional[ExpenseKind] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    expenses = ExpenseService(db, user_id).list(
        _month_filter(month, year), category_id=category_id, kind=type
    )
    return [expense_payload(e) for e in expenses]


@app.get("/api/expenses/{expense_id}")
def get_expense(
    expense_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    try:
        expense = ExpenseService(db, user_id).get(expense_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return expense_payload(expense)


@app.post("/api/expenses", status_code=201)
def create_expense(
    payload: ExpenseIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    service = ExpenseService(db, user_id)
    try:
        expense = service.create(payload)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return expense_payload(service.get(expense.id))


@app.put("/api/expenses/{expense_id}")
def update_expense(
    expense_id: int,
    payload: ExpenseUpdate,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    service = ExpenseService(db, user_id)
    try:
        service.update(expense_id, payload)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return expense_payload(service.get(expense_id))


@app.delete("/api/expenses/{expense_id}")
def delete_expense(
    expense_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    try:
        ExpenseService(db, user_id).delete(expense_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"deleted": expense_id}


@app.get("/api/incomes")
def list_incomes(
    month: Optional[int] = None,
    year: Optional[int] = None,
    category_id: Optional[int] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    incomes = IncomeService(db, user_id).list(
        _month_filter(month, year), category_id=category_id
    )
    return [income_payload(i) for i in incomes]


@app.get("/api/incomes/{income_id}")
def get_income(
    income_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    try:
        income = IncomeService(db, user_id).get(income_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return income_payload(income)


@app.post("/api/incomes", status_code=201)
def create_income(
    payload: IncomeIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    service = IncomeService(db, user_id)
    try:
        income = service.create(payload)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return income_payload(service.get(income.id))


@app.put("/api/incomes/{income_id}")
def update_income(
    income_id: int,
    payload: IncomeUpdate,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    service = IncomeService(db, user_id)
    try:
        service.update(income_id, payload)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return income_payload(service.get(income_id))


@app.delete("/api/incomes/{income_id}")
def delete_income(
    income_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    try:
        IncomeService(db, user_id).delete(income_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"deleted": income_id}


@app.get("/api/summary/monthly", response_model=MonthlyReport)
def monthly_summary(
    month: Optional[int] = Query(default=None),
    year: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    try:
        return ReportService(db, user_id).monthly_report(month, year)
    except PeriodValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/api/summary/alerts", response_model=AlertsReport)
def alerts_summary(
    db: Session = Depends(get_db), user_id: int = Depends(get_current_user_id)
):
    return ReportService(db, user_id).alerts()


@app.get("/api/summary", response_model=RangeReport)
def range_summary(
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    try:
        return ReportService(db, user_id).range_report(start_date, end_date)
    except PeriodValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
