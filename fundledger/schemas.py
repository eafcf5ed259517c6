# schemas.py
# Pydantic models for request/response validation and serialization.

from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .config import settings

TransactionType = Literal["deposit", "withdrawal", "profit", "fee", "transfer"]
PeriodType = Literal["annual", "quarterly", "monthly", "project", "custom"]
DisplayCurrency = Literal["IQD", "USD", "BOTH"]


def _check_currency(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    value = value.upper()
    if value not in settings.SUPPORTED_CURRENCIES:
        raise ValueError(f"Unsupported currency {value}; expected one of {', '.join(settings.SUPPORTED_CURRENCIES)}")
    return value


# ===== INVESTORS =====

class InvestorBase(BaseModel):
    full_name: str = Field(..., min_length=1, max_length=100)
    national_id: str = Field(..., min_length=1, max_length=20)
    contributed_capital: float = Field(..., ge=0)
    currency: str = "USD"
    join_date: date
    phone: Optional[str] = Field(None, max_length=20)
    email: Optional[str] = None

    @field_validator("currency")
    @classmethod
    def check_currency(cls, value):
        return _check_currency(value)


class InvestorCreate(InvestorBase):
    pass


class InvestorUpdate(BaseModel):
    full_name: Optional[str] = Field(None, min_length=1, max_length=100)
    national_id: Optional[str] = Field(None, min_length=1, max_length=20)
    contributed_capital: Optional[float] = Field(None, ge=0)
    currency: Optional[str] = None
    join_date: Optional[date] = None
    phone: Optional[str] = Field(None, max_length=20)
    email: Optional[str] = None
    is_active: Optional[bool] = None

    @field_validator("currency")
    @classmethod
    def check_currency(cls, value):
        return _check_currency(value)


class Investor(InvestorBase):
    id: int
    share_percentage: float
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class InvestorBalance(BaseModel):
    investor_id: int
    full_name: str
    contributed_capital: float
    share_percentage: float
    current_balance: float


# ===== TRANSACTIONS =====

class TransactionBase(BaseModel):
    investor_id: int
    transaction_type: TransactionType
    amount: float = Field(..., ge=0)
    currency: str = "USD"
    profit_year: Optional[int] = Field(None, ge=2000, le=2100)
    reference: Optional[str] = None
    notes: Optional[str] = None
    receipt_number: Optional[str] = None

    @field_validator("currency")
    @classmethod
    def check_currency(cls, value):
        return _check_currency(value)


class TransactionCreate(TransactionBase):
    transaction_date: Optional[datetime] = None
    # Only a contribution deposit changes the investor's contributed capital
    is_contribution: bool = False

    @model_validator(mode="after")
    def profit_requires_year(self) -> "TransactionCreate":
        if self.transaction_type == "profit" and self.profit_year is None:
            raise ValueError("profit_year is required for profit transactions")
        return self


class TransactionUpdate(BaseModel):
    reference: Optional[str] = None
    notes: Optional[str] = None
    receipt_number: Optional[str] = None
    transaction_date: Optional[datetime] = None


class Transaction(TransactionBase):
    id: int
    transaction_date: datetime
    is_contribution: bool
    financial_year_id: Optional[int] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# ===== FINANCIAL YEARS =====

class FinancialYearBase(BaseModel):
    year: int = Field(..., ge=2000, le=2100)
    period_name: Optional[str] = Field(None, max_length=100)
    period_type: PeriodType = "custom"
    total_profit: float = Field(..., ge=0)
    currency: str = "USD"
    start_date: date
    end_date: date
    notes: Optional[str] = None

    @field_validator("currency")
    @classmethod
    def check_currency(cls, value):
        return _check_currency(value)


class FinancialYearCreate(FinancialYearBase):
    rollover_percentage: float = Field(100.0, ge=0, le=100)
    auto_rollover: bool = False
    auto_rollover_date: Optional[datetime] = None

    @model_validator(mode="after")
    def end_after_start(self) -> "FinancialYearCreate":
        if self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        return self


class FinancialYearUpdate(BaseModel):
    year: Optional[int] = Field(None, ge=2000, le=2100)
    period_name: Optional[str] = Field(None, max_length=100)
    period_type: Optional[PeriodType] = None
    total_profit: Optional[float] = Field(None, ge=0)
    currency: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    notes: Optional[str] = None

    @field_validator("currency")
    @classmethod
    def check_currency(cls, value):
        return _check_currency(value)


class FinancialYear(FinancialYearBase):
    id: int
    total_days: int
    daily_profit_rate: float
    status: str
    rollover_enabled: bool
    rollover_percentage: float
    auto_rollover: bool
    auto_rollover_date: Optional[datetime] = None
    auto_rollover_status: str
    created_by: str
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    distributed_by: Optional[str] = None
    distributed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CalculateDistributionsRequest(BaseModel):
    force_full_period: bool = False


class RolloverRequest(BaseModel):
    percentage: float = 100.0


class AutoRolloverRequest(BaseModel):
    auto_rollover: bool
    rollover_percentage: float = 100.0
    auto_rollover_date: Optional[datetime] = None


# ===== DISTRIBUTIONS =====

class ProfitDistribution(BaseModel):
    id: int
    financial_year_id: int
    investor_id: int
    start_date: date
    investment_amount: float
    total_days: int
    daily_profit_rate: float
    calculated_profit: float
    currency: str
    status: str
    is_rolled_over: bool
    rollover_amount: float
    rollover_date: Optional[datetime] = None
    distribution_date: Optional[datetime] = None
    created_by: Optional[str] = None
    approved_by: Optional[str] = None

    class Config:
        from_attributes = True


# ===== NOTIFICATIONS =====

class Notification(BaseModel):
    id: int
    notification_type: str
    title: str
    message: str
    recipient_actor_id: Optional[str] = None
    recipient_investor_id: Optional[int] = None
    financial_year_id: Optional[int] = None
    distribution_id: Optional[int] = None
    amount: Optional[float] = None
    currency: Optional[str] = None
    status: str
    priority: str
    read_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# ===== SETTINGS / FX =====

class SystemSettings(BaseModel):
    default_currency: str
    display_currency: str
    auto_convert_currency: bool
    usd_to_iqd: float
    iqd_to_usd: float
    last_rate_update: Optional[datetime] = None
    updated_by: Optional[str] = None

    class Config:
        from_attributes = True


class SystemSettingsUpdate(BaseModel):
    default_currency: Optional[str] = None
    display_currency: Optional[DisplayCurrency] = None
    auto_convert_currency: Optional[bool] = None

    @field_validator("default_currency")
    @classmethod
    def check_currency(cls, value):
        return _check_currency(value)


class DisplayAmountRequest(BaseModel):
    amount: float = Field(..., ge=0)
    currency: str

    @field_validator("currency")
    @classmethod
    def check_currency(cls, value):
        return _check_currency(value)


class ExchangeRateUpdate(BaseModel):
    usd_to_iqd: float = Field(..., gt=0)


class ConvertRequest(BaseModel):
    amount: float = Field(..., ge=0)
    from_currency: str
    to_currency: str

    @field_validator("from_currency", "to_currency")
    @classmethod
    def check_currency(cls, value):
        return _check_currency(value)


class RolloverResultItem(BaseModel):
    distribution_id: int
    investor_id: int
    success: bool
    original_profit: Optional[float] = None
    rollover_amount: Optional[float] = None
    transaction_id: Optional[int] = None
    error: Optional[str] = None


class RolloverResults(BaseModel):
    rollover_percentage: float
    total_rolled_over: int
    total_failed: int
    rollover_results: List[RolloverResultItem]
