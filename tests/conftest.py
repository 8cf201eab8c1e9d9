# tests/conftest.py
import os
import tempfile

# 1. Force Test Environment (before core.config is imported anywhere)
os.environ.setdefault("DATABASE_URL_OVERRIDE", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("PERSISTENT_DATA_DIR", tempfile.mkdtemp(prefix="fundeddesk-tests-"))

import pytest
from datetime import datetime, date, timedelta
from typing import Dict, List, Optional

from core.config import settings
from core.enums import ChallengeStatus, TradeStatus, TradeType, UserRole
from core.market_session import utc_now
from core.models import InstrumentMatch, LivePrice, TokenInfo
from database.manager import DatabaseManager
from database.models import (
    DbChallengeMetric, DbChallengePlan, DbMockedMarketData, DbMockedPayment,
    DbTrade, DbUser, DbUserChallenge, DbUserSession,
)

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"

settings.CRON_SECRET = "test-cron-secret"
settings.ANGELONE_API_KEY = ""
settings.ANGELONE_CLIENT_CODE = ""

class FakeBridge:
    """Stands in for LivePriceBridge: live prices come from a dict."""

    def __init__(self, prices: Optional[Dict[str, float]] = None):
        self.prices: Dict[str, float] = dict(prices or {})
        self.matches: List[InstrumentMatch] = []
        self.ticks: List[Optional[float]] = []
        self.closed = False
        self.candles: List[list] = []
        self.candle_error: Optional[Exception] = None

    async def get_live_price(self, scrip: str, exchange: str) -> Optional[LivePrice]:
        if scrip not in self.prices:
            return None
        return LivePrice(
            ltp=self.prices[scrip],
            token=TokenInfo(symbol_token="1", trading_symbol=scrip, scrip_full_name=f"{scrip} LTD", exchange=exchange),
            fetched_at=utc_now(),
        )

    async def get_price_map(self, items) -> Dict[str, float]:
        out: Dict[str, float] = {}
        for scrip, _exchange, fallback in items:
            price = self.prices.get(scrip, fallback)
            if price is not None:
                out[scrip] = price
        return out

    async def poll_ltp(self, exchange: str, trading_symbol: str, symbol_token: str) -> Optional[float]:
        return self.ticks.pop(0) if self.ticks else None

    async def get_candles(self, exchange, symbol_token, interval, from_date=None, to_date=None) -> List[list]:
        if self.candle_error is not None:
            raise self.candle_error
        return list(self.candles)

    async def search_instruments(self, term: str) -> List[InstrumentMatch]:
        return [m for m in self.matches if term.upper() in m.scrip]

    async def close(self) -> None:
        self.closed = True

class Seeder:
    """Inserts rows through the real DatabaseManager."""

    def __init__(self, db: DatabaseManager):
        self.db = db
        self._n = 0

    async def _add(self, *rows):
        async with self.db.get_session() as session:
            session.add_all(rows)
            await session.commit()
        return rows[0] if len(rows) == 1 else rows

    async def user(self, role: UserRole = UserRole.TRADER, email: Optional[str] = None) -> DbUser:
        self._n += 1
        return await self._add(DbUser(
            email=email or f"user{self._n}@fundeddesk.test",
            name=f"User {self._n}",
            role=role.value,
        ))

    async def session_token(self, user: DbUser, expires_in: timedelta = timedelta(days=1)) -> str:
        self._n += 1
        token = f"token-{user.id}-{self._n}"
        await self._add(DbUserSession(token=token, user_id=user.id, expires_at=utc_now() + expires_in))
        return token

    async def plan(self, level: int = 1, account_size: float = 100_000.0, profit_target_pct: float = 10.0,
                   max_loss_pct: float = 10.0, daily_loss_pct: float = 5.0, duration_days: int = 30) -> DbChallengePlan:
        return await self._add(DbChallengePlan(
            name=f"Level {level} - {int(account_size)}",
            account_size=account_size,
            profit_target_pct=profit_target_pct,
            max_loss_pct=max_loss_pct,
            daily_loss_pct=daily_loss_pct,
            duration_days=duration_days,
            fee=999.0,
            profit_split=80.0,
            allowed_instruments=["NSE"],
            level=level,
        ))

    async def challenge(self, user: DbUser, plan: DbChallengePlan,
                        status: ChallengeStatus = ChallengeStatus.ACTIVE,
                        start_date: Optional[datetime] = None,
                        max_drawdown: Optional[float] = None,
                        credentials: Optional[str] = None) -> DbUserChallenge:
        return await self._add(DbUserChallenge(
            user_id=user.id,
            plan_id=plan.id,
            status=status.value,
            start_date=start_date if start_date is not None else utc_now() - timedelta(days=2),
            max_drawdown=max_drawdown,
            demo_account_credentials=credentials,
        ))

    async def market_data(self, scrip: str, ltp: float, exchange: str = "NSE") -> DbMockedMarketData:
        return await self._add(DbMockedMarketData(
            scrip=scrip, scrip_full_name=f"{scrip} LTD", exchange=exchange,
            ltp=ltp, open=ltp, high=ltp, low=ltp, close=ltp, volume=1000,
        ))

    async def trade(self, challenge: DbUserChallenge, scrip: str, quantity: int, entry_price: float,
                    trade_type: TradeType = TradeType.BUY, status: TradeStatus = TradeStatus.OPEN,
                    pnl: float = 0.0, entry_time: Optional[datetime] = None) -> DbTrade:
        now = utc_now()
        closed = status == TradeStatus.CLOSED
        return await self._add(DbTrade(
            challenge_id=challenge.id,
            scrip=scrip,
            exchange="NSE",
            quantity=quantity,
            entry_price=entry_price,
            exit_price=entry_price if closed else None,
            trade_type=trade_type.value,
            status=status.value,
            pnl=pnl,
            entry_time=entry_time or now,
            exit_time=now if closed else None,
        ))

    async def metric(self, challenge: DbUserChallenge, day: date, daily_pnl: float, cumulative_pnl: float,
                     profit_target: float = 10_000.0, max_drawdown: float = 0.0, trades_count: int = 4,
                     win_rate: float = 60.0) -> DbChallengeMetric:
        return await self._add(DbChallengeMetric(
            challenge_id=challenge.id, date=day, daily_pnl=daily_pnl, cumulative_pnl=cumulative_pnl,
            trades_count=trades_count, win_rate=win_rate, max_drawdown=max_drawdown,
            profit_target=profit_target,
        ))

    async def payment(self, challenge: DbUserChallenge, amount: float = 999.0) -> DbMockedPayment:
        return await self._add(DbMockedPayment(
            challenge_id=challenge.id, mock_transaction_id=f"MOCK-{challenge.id[:8]}", amount=amount,
        ))

@pytest.fixture
async def db():
    """Fresh in-memory database per test."""
    manager = DatabaseManager()
    await manager.close()
    await manager.init_db(TEST_DB_URL)
    yield manager
    await manager.close()

@pytest.fixture
def seed(db):
    return Seeder(db)

@pytest.fixture
def fake_bridge():
    return FakeBridge()

@pytest.fixture
def services(db, fake_bridge):
    from api.dependencies import build_services, set_services
    svc = build_services(db, fake_bridge)
    set_services(svc)
    yield svc
    set_services(None)

@pytest.fixture
async def client(services):
    import httpx
    from main import app
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

def auth_headers(token: str) -> Dict[str, str]:
    return {"Cookie": f"{settings.SESSION_COOKIE_NAME}={token}"}

@pytest.fixture
def as_user():
    return auth_headers
