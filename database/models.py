#!/usr/bin/env python3
"""
FundedDesk – Database Models
- Users & cookie sessions
- Challenge plans, user challenges, daily challenge metrics
- Simulated trades + derived daily trade summaries
- Fallback quote store and broker session state
"""
from __future__ import annotations
import uuid
from datetime import datetime, date
from typing import Optional, List
from sqlalchemy import (
    Integer, String, Float, DateTime, ForeignKey, JSON, Date, Boolean, Text,
    UniqueConstraint, Index,
)
from sqlalchemy.orm import relationship, DeclarativeBase, Mapped, mapped_column

from core.enums import ChallengeStatus, TradeStatus, UserRole
from core.market_session import utc_now

def _new_id() -> str:
    return uuid.uuid4().hex

class Base(DeclarativeBase):
    pass

# --- USERS ---
class DbUser(Base):
    __tablename__ = "users"
    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    email: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    role: Mapped[str] = mapped_column(String, nullable=False, default=UserRole.TRADER.value)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    challenges: Mapped[List["DbUserChallenge"]] = relationship(back_populates="user")

class DbUserSession(Base):
    __tablename__ = "user_sessions"
    token: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    user: Mapped["DbUser"] = relationship()

# --- CHALLENGES ---
class DbChallengePlan(Base):
    __tablename__ = "challenge_plans"
    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    account_size: Mapped[float] = mapped_column(Float, nullable=False)
    profit_target_pct: Mapped[float] = mapped_column(Float, nullable=False)
    max_loss_pct: Mapped[float] = mapped_column(Float, nullable=False)
    daily_loss_pct: Mapped[float] = mapped_column(Float, nullable=False)
    duration_days: Mapped[int] = mapped_column(Integer, nullable=False)
    fee: Mapped[float] = mapped_column(Float, default=0.0)
    profit_split: Mapped[float] = mapped_column(Float, default=80.0)
    allowed_instruments: Mapped[List[str]] = mapped_column(JSON, default=list)
    level: Mapped[int] = mapped_column(Integer, default=1)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)

class DbUserChallenge(Base):
    __tablename__ = "user_challenges"
    __table_args__ = (Index("ix_challenge_user_status", "user_id", "status"),)
    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False)
    plan_id: Mapped[str] = mapped_column(String, ForeignKey("challenge_plans.id"), nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default=ChallengeStatus.PENDING.value)
    start_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    end_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    current_pnl: Mapped[float] = mapped_column(Float, default=0.0)
    max_drawdown: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    violation_count: Mapped[int] = mapped_column(Integer, default=0)
    violation_details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    demo_account_credentials: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)

    user: Mapped["DbUser"] = relationship(back_populates="challenges")
    plan: Mapped["DbChallengePlan"] = relationship()
    metrics: Mapped[List["DbChallengeMetric"]] = relationship(
        back_populates="challenge", order_by="DbChallengeMetric.date", cascade="all, delete-orphan"
    )
    trades: Mapped[List["DbTrade"]] = relationship(back_populates="challenge")
    payments: Mapped[List["DbMockedPayment"]] = relationship(
        back_populates="challenge", order_by="desc(DbMockedPayment.created_at)"
    )

class DbChallengeMetric(Base):
    __tablename__ = "challenge_metrics"
    __table_args__ = (UniqueConstraint("challenge_id", "date", name="uq_metric_challenge_date"),)
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    challenge_id: Mapped[str] = mapped_column(String, ForeignKey("user_challenges.id"), index=True)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    daily_pnl: Mapped[float] = mapped_column(Float, default=0.0)
    cumulative_pnl: Mapped[float] = mapped_column(Float, default=0.0)
    trades_count: Mapped[int] = mapped_column(Integer, default=0)
    win_rate: Mapped[float] = mapped_column(Float, default=0.0)
    max_drawdown: Mapped[float] = mapped_column(Float, default=0.0)
    profit_target: Mapped[float] = mapped_column(Float, default=0.0)
    violations: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    challenge: Mapped["DbUserChallenge"] = relationship(back_populates="metrics")

class DbMockedPayment(Base):
    __tablename__ = "mocked_payments"
    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    challenge_id: Mapped[str] = mapped_column(String, ForeignKey("user_challenges.id"), index=True)
    mock_transaction_id: Mapped[str] = mapped_column(String, nullable=False)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    paid_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    challenge: Mapped["DbUserChallenge"] = relationship(back_populates="payments")

# --- SIMULATED TRADING ---
class DbTrade(Base):
    __tablename__ = "trades"
    __table_args__ = (
        Index("ix_trades_challenge_status", "challenge_id", "status"),
        Index("ix_trades_challenge_entry", "challenge_id", "entry_time"),
    )
    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    challenge_id: Mapped[str] = mapped_column(String, ForeignKey("user_challenges.id"), nullable=False)
    scrip: Mapped[str] = mapped_column(String, nullable=False)
    scrip_full_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    exchange: Mapped[str] = mapped_column(String, default="NSE")
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    entry_price: Mapped[float] = mapped_column(Float, nullable=False)
    exit_price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    trade_type: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default=TradeStatus.OPEN.value)
    pnl: Mapped[float] = mapped_column(Float, default=0.0)
    entry_time: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    exit_time: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    auto_squared_off: Mapped[bool] = mapped_column(Boolean, default=False)
    challenge: Mapped["DbUserChallenge"] = relationship(back_populates="trades")

class DbDailyTradeSummary(Base):
    """
    Derived rollup for one (challenge, IST day). Always recomputed from
    trade rows by trading.daily_summary; never patched incrementally.
    """
    __tablename__ = "daily_trade_summaries"
    __table_args__ = (UniqueConstraint("challenge_id", "date", name="uq_summary_challenge_date"),)
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    challenge_id: Mapped[str] = mapped_column(String, ForeignKey("user_challenges.id"), index=True)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    total_trades: Mapped[int] = mapped_column(Integer, default=0)
    open_trades: Mapped[int] = mapped_column(Integer, default=0)
    closed_trades: Mapped[int] = mapped_column(Integer, default=0)
    realized_pnl: Mapped[float] = mapped_column(Float, default=0.0)
    unrealized_pnl: Mapped[float] = mapped_column(Float, default=0.0)
    capital_used: Mapped[float] = mapped_column(Float, default=0.0)
    capital_available: Mapped[float] = mapped_column(Float, default=0.0)
    day_pnl_pct: Mapped[float] = mapped_column(Float, default=0.0)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, onupdate=utc_now)

# --- MARKET DATA ---
class DbMockedMarketData(Base):
    __tablename__ = "mocked_market_data"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    scrip: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    scrip_full_name: Mapped[str] = mapped_column(String, nullable=False)
    exchange: Mapped[str] = mapped_column(String, default="NSE")
    ltp: Mapped[float] = mapped_column(Float, nullable=False)
    open: Mapped[float] = mapped_column(Float, default=0.0)
    high: Mapped[float] = mapped_column(Float, default=0.0)
    low: Mapped[float] = mapped_column(Float, default=0.0)
    close: Mapped[float] = mapped_column(Float, default=0.0)
    volume: Mapped[float] = mapped_column(Float, default=0.0)
    last_updated: Mapped[datetime] = mapped_column(DateTime, default=utc_now)

# --- BROKER AUTHENTICATION ---
class DbBrokerCredentials(Base):
    __tablename__ = "broker_credentials"
    id: Mapped[str] = mapped_column(String, primary_key=True, default="singleton")
    api_key: Mapped[str] = mapped_column(String, nullable=False)
    client_code: Mapped[str] = mapped_column(String, nullable=False)
    mpin: Mapped[str] = mapped_column(String, nullable=False)
    totp_secret: Mapped[str] = mapped_column(String, nullable=False)
    jwt_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    refresh_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    feed_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    token_generated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    token_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
