"""
Request Schemas

Pydantic models used to validate the payloads of the dashboard's forms and
query strings before anything touches the database.
"""

import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

TransactionType = Literal["income", "expense"]
TimeFrame = Literal["month", "year"]

# Years a transaction may be dated in; history queries accept the same range.
MIN_YEAR = 1900
MAX_YEAR = 2100

# code -> (symbol, label, decimals)
CURRENCIES = {
    "USD": ("$", "$ Dollar", 2),
    "EUR": ("€", "€ Euro", 2),
    "JPY": ("¥", "¥ Yen", 0),
    "GBP": ("£", "£ Pound", 2),
    "INR": ("₹", "₹ Rupee", 2),
}
DEFAULT_CURRENCY = "USD"


def format_amount(value: Decimal | float, currency: str) -> str:
    symbol, _, decimals = CURRENCIES.get(currency, CURRENCIES[DEFAULT_CURRENCY])
    sign = "-" if value < 0 else ""
    return f"{sign}{symbol}{abs(value):,.{decimals}f}"


class CreateTransactionSchema(BaseModel):
    amount: Decimal = Field(
        ..., gt=0, max_digits=12, decimal_places=2, allow_inf_nan=False, description="Amount of the transaction"
    )
    description: Optional[str] = Field(None, description="Short note")
    date: datetime.date
    category: str = Field(..., min_length=1, description="Name of one of the user's categories")
    type: TransactionType

    @field_validator("date")
    @classmethod
    def year_in_range(cls, v: datetime.date) -> datetime.date:
        if not MIN_YEAR <= v.year <= MAX_YEAR:
            raise ValueError(f"Date must be between {MIN_YEAR} and {MAX_YEAR}")
        return v


class CreateCategorySchema(BaseModel):
    name: str = Field(..., min_length=3, max_length=20)
    icon: str = Field("", max_length=20)
    type: TransactionType


class DeleteCategorySchema(BaseModel):
    name: str = Field(..., min_length=1)
    type: TransactionType


class UpdateUserCurrencySchema(BaseModel):
    currency: str

    @field_validator("currency")
    @classmethod
    def known_currency(cls, v: str) -> str:
        if v not in CURRENCIES:
            raise ValueError(f"Unknown currency {v!r}")
        return v


class OverviewQuerySchema(BaseModel):
    """Date range for the overview cards; `max_days` comes from app config."""
    from_date: datetime.date = Field(..., alias="from")
    to_date: datetime.date = Field(..., alias="to")
    max_days: int = 90

    @model_validator(mode="after")
    def check_range(self):
        if self.from_date > self.to_date:
            raise ValueError("'from' must not be after 'to'")
        if (self.to_date - self.from_date).days > self.max_days:
            raise ValueError(f"The selected date range is too big. Max allowed range is {self.max_days} days")
        return self


class HistoryDataQuerySchema(BaseModel):
    timeframe: TimeFrame
    year: int = Field(..., ge=MIN_YEAR, le=MAX_YEAR)
    month: Optional[int] = Field(None, ge=1, le=12)

    @model_validator(mode="after")
    def month_for_month_view(self):
        if self.timeframe == "month" and self.month is None:
            raise ValueError("month is required for the month timeframe")
        return self
