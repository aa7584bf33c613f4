import datetime as dt
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Annotated, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PlainSerializer,
    model_validator,
)

from models import ExpenseKind, TransactionType


# Decimal internally, plain JSON number on the wire.
Amount = Annotated[
    Decimal, PlainSerializer(float, return_type=float, when_used="json")
]
AmountIn = Annotated[Decimal, Field(gt=0, max_digits=12, decimal_places=2)]

COLOR_PATTERN = r"^#[0-9A-Fa-f]{6}$"


class UserIn(BaseModel):
    username: str = Field(..., min_length=3, max_length=50)
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$", max_length=255)


class UserUpdate(BaseModel):
    username: Optional[str] = Field(default=None, min_length=3, max_length=50)
    email: Optional[str] = Field(
        default=None, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$", max_length=255
    )


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    type: TransactionType
    color: Optional[str] = Field(default=None, pattern=COLOR_PATTERN)


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    color: Optional[str] = Field(default=None, pattern=COLOR_PATTERN)


class ExpenseIn(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    amount: AmountIn
    description: str = Field(..., min_length=1, max_length=255)
    date: date
    category_id: Optional[int] = None
    kind: ExpenseKind = Field(default=ExpenseKind.one_time, alias="type")
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None

    @model_validator(mode="after")
    def check_recurring_window(self) -> "ExpenseIn":
        if self.kind == ExpenseKind.recurring:
            if self.start_date is None or self.end_date is None:
                raise ValueError(
                    "Recurring expenses require a start date and an end date"
                )
            if self.start_date >= self.end_date:
                raise ValueError("Start date must be before end date")
        return self


class ExpenseUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    amount: Optional[AmountIn] = None
    description: Optional[str] = Field(default=None, min_length=1, max_length=255)
    date: Optional[dt.date] = None
    category_id: Optional[int] = None
    kind: Optional[ExpenseKind] = Field(default=None, alias="type")
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None


class IncomeIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount: AmountIn
    description: Optional[str] = Field(default=None, max_length=500)
    source: str = Field(..., min_length=1, max_length=120)
    date: date
    category_id: Optional[int] = None


class IncomeUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount: Optional[AmountIn] = None
    description: Optional[str] = Field(default=None, max_length=500)
    source: Optional[str] = Field(default=None, min_length=1, max_length=120)
    date: Optional[dt.date] = None
    category_id: Optional[int] = None


class CategoryAmount(BaseModel):
    category_name: str
    category_color: Optional[str]
    amount: Amount


class TrendPoint(BaseModel):
    month: int
    year: int
    total: Amount


class MonthlyReport(BaseModel):
    month: int
    year: int
    total_income: Amount
    total_expenses: Amount
    balance: Amount
    category_expenses: list[CategoryAmount]
    category_incomes: list[CategoryAmount]
    monthly_evolution: list[TrendPoint]


class RangeReport(BaseModel):
    start_date: dt.date
    end_date: dt.date
    total_income: Amount
    total_expenses: Amount
    balance: Amount
    category_expenses: list[CategoryAmount]


class AlertType(str, Enum):
    warning = "warning"
    info = "info"


class AlertSeverity(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"


class Alert(BaseModel):
    type: AlertType
    message: str
    severity: AlertSeverity


class AlertsReport(BaseModel):
    total_expenses: Amount
    alerts: list[Alert]
