import datetime as dt
from typing import Annotated, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from models import MonthKeyStr, NavigationDirection


def _check_color(value: str) -> str:
    if not value.startswith("#") or len(value) not in (4, 7, 9):
        raise ValueError("Color must be a hex string like #FF6384")
    int(value[1:], 16)
    return value.upper()


HexColor = Annotated[str, AfterValidator(_check_color)]


class InputModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="forbid",
    )


class FixedExpenseIn(InputModel):
    name: str = Field(..., min_length=1, max_length=120)
    amount_cents: int = Field(..., ge=0)
    category: str = Field(..., min_length=1)
    payment_method: str = Field(..., min_length=1)
    due_date: dt.date
    is_paid: bool = False


class VariableExpenseIn(InputModel):
    name: str = Field(..., min_length=1, max_length=120)
    amount_cents: int = Field(..., ge=0)
    category: str = Field(..., min_length=1)
    payment_method: str = Field(..., min_length=1)
    date: dt.date


class PaymentStatusIn(InputModel):
    month_key: MonthKeyStr
    is_paid: bool


class CategoryIn(InputModel):
    name: str = Field(..., min_length=1, max_length=100)
    budget_cents: int = Field(default=0, ge=0)
    color: HexColor = "#FF6384"
    icon: Optional[str] = Field(default=None, max_length=50)


class CategoryShareIn(InputModel):
    monthly_total_cents: int = Field(..., ge=0)
    share: float = Field(..., ge=0, le=1)


class PaymentMethodIn(InputModel):
    name: str = Field(..., min_length=1, max_length=100)
    color: HexColor = "#36A2EB"
    icon: Optional[str] = Field(default=None, max_length=50)


class ResetDayIn(InputModel):
    day: int = Field(..., ge=1, le=31)


class MonthNavigationIn(InputModel):
    direction: NavigationDirection
