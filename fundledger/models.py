# models.py
# SQLAlchemy models defining database tables (Investor, FinancialYear, ProfitDistribution, etc.).

from sqlalchemy import Boolean, Column, Integer, String, DateTime, Date, ForeignKey, Float, Text, Index, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base
from .period_calendar import utcnow

CURRENCIES = ("IQD", "USD")

# FinancialYear.status, advancing draft -> active -> calculated -> approved -> distributed -> closed
YEAR_DRAFT = "draft"
YEAR_ACTIVE = "active"
YEAR_CALCULATED = "calculated"
YEAR_APPROVED = "approved"
YEAR_DISTRIBUTED = "distributed"
YEAR_CLOSED = "closed"
YEAR_STATUSES = (YEAR_DRAFT, YEAR_ACTIVE, YEAR_CALCULATED, YEAR_APPROVED, YEAR_DISTRIBUTED, YEAR_CLOSED)

PERIOD_TYPES = ("annual", "quarterly", "monthly", "project", "custom")

# ProfitDistribution.status
DIST_CALCULATED = "calculated"
DIST_APPROVED = "approved"
DIST_DISTRIBUTED = "distributed"
DIST_ROLLED_OVER = "rolled_over"
DISTRIBUTION_STATUSES = (DIST_CALCULATED, DIST_APPROVED, DIST_DISTRIBUTED, DIST_ROLLED_OVER)
# Locked distributions are never deleted or recomputed by a bulk recalculation
LOCKED_DISTRIBUTION_STATUSES = (DIST_APPROVED, DIST_DISTRIBUTED, DIST_ROLLED_OVER)

AUTO_ROLLOVER_PENDING = "pending"
AUTO_ROLLOVER_COMPLETED = "completed"
AUTO_ROLLOVER_FAILED = "failed"

TRANSACTION_TYPES = ("deposit", "withdrawal", "profit", "fee", "transfer")


class Investor(Base):
    __tablename__ = "investors"

    id = Column(Integer, primary_key=True, index=True)
    full_name = Column(String(100), nullable=False, index=True)
    national_id = Column(String(20), unique=True, index=True, nullable=False)
    contributed_capital = Column(Float, default=0.0, nullable=False)
    currency = Column(String, default="USD", nullable=False)
    # Cached: contributed_capital / total active capital * 100, see CapitalLedgerService
    share_percentage = Column(Float, default=0.0, nullable=False)
    join_date = Column(Date, nullable=False, index=True)
    phone = Column(String(20), nullable=True)
    email = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow)

    transactions = relationship("Transaction", back_populates="investor")
    distributions = relationship("ProfitDistribution", back_populates="investor")


class FinancialYear(Base):
    __tablename__ = "financial_years"

    id = Column(Integer, primary_key=True, index=True)
    year = Column(Integer, nullable=False)
    period_name = Column(String(100), unique=True, nullable=True)
    period_type = Column(String, default="custom", nullable=False)
    total_profit = Column(Float, nullable=False)
    currency = Column(String, default="USD", nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    # Inclusive day count between start_date and end_date, recomputed on every save
    total_days = Column(Integer, nullable=False)
    # Profit per currency unit of capital per day, set by the distribution engine
    daily_profit_rate = Column(Float, default=0.0, nullable=False)
    status = Column(String, default=YEAR_DRAFT, nullable=False)
    notes = Column(Text, nullable=True)

    rollover_enabled = Column(Boolean, default=False, nullable=False)
    rollover_percentage = Column(Float, default=100.0, nullable=False)
    auto_rollover = Column(Boolean, default=False, nullable=False)
    auto_rollover_date = Column(DateTime(timezone=True), nullable=True)
    auto_rollover_status = Column(String, default=AUTO_ROLLOVER_PENDING, nullable=False)

    created_by = Column(String, nullable=False)
    approved_by = Column(String, nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    distributed_by = Column(String, nullable=True)
    distributed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow)

    distributions = relationship("ProfitDistribution", back_populates="financial_year")

    __table_args__ = (
        Index("idx_financial_year_status_year", "status", "year"),
    )


class ProfitDistribution(Base):
    __tablename__ = "profit_distributions"

    id = Column(Integer, primary_key=True, index=True)
    financial_year_id = Column(Integer, ForeignKey("financial_years.id"), nullable=False, index=True)
    investor_id = Column(Integer, ForeignKey("investors.id"), nullable=False, index=True)
    # Effective start of this investor's participation window
    start_date = Column(Date, nullable=False)

    investment_amount = Column(Float, nullable=False)
    total_days = Column(Integer, nullable=False)
    daily_profit_rate = Column(Float, nullable=False)
    calculated_profit = Column(Float, nullable=False)

    currency = Column(String, default="USD", nullable=False)
    status = Column(String, default=DIST_CALCULATED, nullable=False)

    is_rolled_over = Column(Boolean, default=False, nullable=False)
    rollover_amount = Column(Float, default=0.0, nullable=False)
    rollover_date = Column(DateTime(timezone=True), nullable=True)

    distribution_date = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)
    created_by = Column(String, nullable=True)
    approved_by = Column(String, nullable=True)
    distributed_by = Column(String, nullable=True)
    distributed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow)

    financial_year = relationship("FinancialYear", back_populates="distributions")
    investor = relationship("Investor", back_populates="distributions")

    # Primary guard against duplicate concurrent inserts for the same (year, investor)
    __table_args__ = (
        UniqueConstraint("financial_year_id", "investor_id", name="uq_distribution_year_investor"),
        Index("idx_distribution_status_year", "status", "financial_year_id"),
    )


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    investor_id = Column(Integer, ForeignKey("investors.id"), nullable=False, index=True)
    transaction_type = Column(String, nullable=False)  # deposit, withdrawal, profit, fee, transfer
    amount = Column(Float, nullable=False)
    currency = Column(String, default="USD", nullable=False)
    transaction_date = Column(DateTime(timezone=True), nullable=False)
    # Required when transaction_type == "profit"
    profit_year = Column(Integer, nullable=True)
    financial_year_id = Column(Integer, ForeignKey("financial_years.id"), nullable=True)
    is_contribution = Column(Boolean, default=False, nullable=False)
    reference = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    receipt_number = Column(String, nullable=True, index=True)
    created_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow)

    investor = relationship("Investor", back_populates="transactions")


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    notification_type = Column(String, nullable=False)  # e.g. "profit_calculated", "auto_rollover_failed"
    title = Column(String(200), nullable=False)
    message = Column(String(1000), nullable=False)
    recipient_actor_id = Column(String, nullable=True, index=True)
    recipient_investor_id = Column(Integer, ForeignKey("investors.id"), nullable=True, index=True)
    financial_year_id = Column(Integer, nullable=True)
    distribution_id = Column(Integer, nullable=True)
    transaction_id = Column(Integer, nullable=True)
    amount = Column(Float, nullable=True)
    currency = Column(String, nullable=True)
    status = Column(String, default="unread", nullable=False)  # unread, read, archived
    priority = Column(String, default="medium", nullable=False)  # low, medium, high, urgent
    read_at = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(String, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class SystemSettings(Base):
    __tablename__ = "system_settings"

    id = Column(Integer, primary_key=True, index=True)
    default_currency = Column(String, default="USD", nullable=False)
    display_currency = Column(String, default="USD", nullable=False)  # IQD, USD, BOTH
    auto_convert_currency = Column(Boolean, default=False, nullable=False)
    usd_to_iqd = Column(Float, nullable=False)
    iqd_to_usd = Column(Float, nullable=False)
    last_rate_update = Column(DateTime(timezone=True), nullable=True)
    updated_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow)
