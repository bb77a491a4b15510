import datetime as dt
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Annotated, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel
from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from database import Base
from periods import MonthKey


class ExpenseStatus(str, Enum):
    paid = "paid"
    overdue = "overdue"
    pending = "pending"


class ExpenseKind(str, Enum):
    all = "all"
    fixed = "fixed"
    variable = "variable"


class SortField(str, Enum):
    date = "date"
    name = "name"
    amount = "amount"


class SortDirection(str, Enum):
    asc = "asc"
    desc = "desc"


class NavigationDirection(str, Enum):
    prev = "prev"
    next = "next"


class StorageKey(str, Enum):
    fixed_expenses = "fixedExpenses"
    variable_expenses = "variableExpenses"
    custom_categories = "customCategories"
    custom_payment_methods = "customPaymentMethods"
    monthly_payment_status = "monthlyPaymentStatus"
    monthly_history = "monthlyHistory"
    reset_day = "resetDay"
    is_locked = "isLocked"
    sync_with_firebase = "syncWithFirebase"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class StoredValue(Base, TimestampMixin):
    __tablename__ = "stored_values"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)


class Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _check_month_key(value: str) -> str:
    return str(MonthKey.parse(value))


MonthKeyStr = Annotated[str, AfterValidator(_check_month_key)]


class Expense(Record):
    id: str
    name: str
    amount_cents: int = Field(..., ge=0)
    category: str
    payment_method: str
    is_fixed: bool
    date: Optional[dt.date] = None
    due_date: Optional[dt.date] = None
    is_paid: bool = False
    is_recurring: Optional[bool] = None

    @property
    def origin_month(self) -> Optional[MonthKey]:
        if self.due_date is None:
            return None
        return MonthKey.of(self.due_date)


@dataclass(frozen=True)
class OccurrenceRef:
    """Typed reference to one fixed expense in one month."""

    origin_id: str
    month_key: MonthKey
    is_origin_month: bool

    @property
    def occurrence_id(self) -> str:
        if self.is_origin_month:
            return self.origin_id
        return f"{self.origin_id}_{self.month_key}"

    def __str__(self) -> str:
        return self.occurrence_id


class ProjectedOccurrence(Record):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    id: str
    origin_id: str
    month_key: MonthKeyStr
    name: str
    amount_cents: int
    category: str
    payment_method: str
    due_date: dt.date
    is_paid: bool
    is_fixed: bool = True

    @property
    def ref(self) -> OccurrenceRef:
        return OccurrenceRef(
            origin_id=self.origin_id,
            month_key=MonthKey.parse(self.month_key),
            is_origin_month=self.id == self.origin_id,
        )


class MonthlyPaymentStatus(Record):
    expense_id: str
    month_key: MonthKeyStr
    is_paid: bool


class CustomCategory(Record):
    id: str
    name: str
    budget_cents: int = Field(default=0, ge=0)
    color: str
    icon: Optional[str] = None


class CustomPaymentMethod(Record):
    id: str
    name: str
    color: str
    icon: Optional[str] = None


class MonthlyData(Record):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    id: str
    month_key: MonthKeyStr
    fixed_expenses: tuple[ProjectedOccurrence, ...] = ()
    variable_expenses: tuple[Expense, ...] = ()
    total_spent_cents: int = Field(..., ge=0)
    budget_cents: int = Field(..., ge=0)
    created_at: datetime

    @model_validator(mode="after")
    def check_id_matches_month(self) -> "MonthlyData":
        if self.id != self.month_key:
            raise ValueError("Snapshot id must equal its month key")
        return self
