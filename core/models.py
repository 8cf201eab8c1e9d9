from datetime import datetime, date
from typing import List, Optional, Any, Dict
from pydantic import BaseModel, ConfigDict, Field
from core.enums import ChallengeStatus, ViolationType, ViolationSeverity, UserRole, QuoteSource

# --- SESSION ---
class AuthenticatedSession(BaseModel):
    user_id: str
    email: str
    role: UserRole
    name: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_trader(self) -> bool:
        return self.role == UserRole.TRADER

# --- MARKET DATA ---
class TokenInfo(BaseModel):
    symbol_token: str
    trading_symbol: str
    scrip_full_name: str
    exchange: str

class LivePrice(BaseModel):
    ltp: float
    token: TokenInfo
    fetched_at: datetime

class Quote(BaseModel):
    """A resolved price plus where it came from."""
    scrip: str
    price: float
    source: QuoteSource
    scrip_full_name: Optional[str] = None
    exchange: str = "NSE"

class InstrumentMatch(BaseModel):
    scrip: str
    scrip_full_name: str
    exchange: str
    symbol_token: str
    ltp: float = 0.0

class BrokerSession(BaseModel):
    api_key: str
    client_code: str
    jwt_token: str
    refresh_token: Optional[str] = None
    feed_token: Optional[str] = None
    expires_at: Optional[datetime] = None

# --- TRADES / CAPITAL ---
class TradeView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    challenge_id: str
    scrip: str
    scrip_full_name: Optional[str] = None
    exchange: str
    quantity: int
    entry_price: float
    exit_price: Optional[float] = None
    trade_type: str
    status: str
    pnl: float
    entry_time: datetime
    exit_time: Optional[datetime] = None
    auto_squared_off: bool = False

class DailySummaryView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    challenge_id: str
    date: date
    total_trades: int = 0
    open_trades: int = 0
    closed_trades: int = 0
    realized_pnl: float = 0.0
    unrealized_pnl: float = 0.0
    capital_used: float = 0.0
    capital_available: float = 0.0
    day_pnl_pct: float = 0.0

class PortfolioSnapshot(BaseModel):
    capital_used: float
    capital_available: float
    unrealized_pnl: float
    realized_pnl: float

class TradeResult(BaseModel):
    trade: TradeView
    summary: DailySummaryView
    portfolio: PortfolioSnapshot

class AutoSquareOffResult(BaseModel):
    closed_trades: List[TradeView] = Field(default_factory=list)
    summaries: List[DailySummaryView] = Field(default_factory=list)

class MarketDataRefresh(BaseModel):
    updated: List[Dict[str, Any]] = Field(default_factory=list)
    message: Optional[str] = None

# --- EVALUATION ---
class ViolationDetail(BaseModel):
    type: ViolationType
    date: datetime
    description: str
    severity: ViolationSeverity

class EvaluationResult(BaseModel):
    challenge_id: str
    status: ChallengeStatus
    passed: bool
    failed: bool
    reason: str
    violations: List[ViolationDetail] = Field(default_factory=list)
    profit_target_achieved: bool = False
    progress_pct: float = 0.0
    eligible_for_next_level: bool = False

class ChallengeEvaluation(BaseModel):
    """Evaluation of one challenge as returned by the evaluate endpoints."""
    challenge_id: str
    user_id: str
    plan_name: str
    previous_status: ChallengeStatus
    evaluation: EvaluationResult
    summary: Optional[str] = None
    updated: bool = False

class EvaluationBatch(BaseModel):
    evaluations: List[ChallengeEvaluation] = Field(default_factory=list)
    summary: Dict[str, int] = Field(default_factory=dict)

# --- CHALLENGE STATUS VIEW ---
class DemoCredentials(BaseModel):
    username: str
    password: str

class ChallengeStatusSummary(BaseModel):
    cumulative_pnl: float
    profit_target: float
    progress_pct: float
    days_elapsed: int
    days_remaining: int
    max_drawdown: float
    win_rate: float
    total_trades: int

class ChallengeStatusView(BaseModel):
    challenge: Dict[str, Any]
    plan: Dict[str, Any]
    payments: List[Dict[str, Any]] = Field(default_factory=list)
    metrics: List[Dict[str, Any]] = Field(default_factory=list)
    summary: ChallengeStatusSummary
    credentials: Optional[DemoCredentials] = None

class NextLevelInfo(BaseModel):
    can_progress: bool
    reason: str
    highest_passed_level: int = 0
    active_level: Optional[int] = None
    next_level: Optional[int] = None
    next_plan: Optional[Dict[str, Any]] = None
    unlocked_levels: List[int] = Field(default_factory=list)
    available_plans: List[Dict[str, Any]] = Field(default_factory=list)
    challenge_history: List[Dict[str, Any]] = Field(default_factory=list)
    max_level_reached: bool = False
