"""
FundedDesk – Read-only trading views.
Stored daily summary with a live portfolio, paginated trade history, and the
mocked quote record for a scrip.
"""
import logging
import math
from datetime import date
from typing import Any, Dict, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from capital.accounting import build_portfolio_snapshot, day_pnl_pct, normalize_scrip
from core.enums import TradeStatus
from core.errors import BadRequestError, NotFoundError, ValidationFailedError
from core.market_session import ist_date, ist_day_window_for, is_market_open
from core.models import AuthenticatedSession, DailySummaryView, TradeView
from database.manager import DatabaseManager
from database.models import DbChallengePlan, DbDailyTradeSummary, DbMockedMarketData, DbTrade, DbUserChallenge
from trading.daily_summary import open_trades, realized_total
from trading.execution import require_trader_session
from trading.quotes import QuoteBook

logger = logging.getLogger("TradingReports")

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

def clamp_page(page: Optional[int], limit: Optional[int]):
    page = max(page or 1, 1)
    limit = min(max(limit or DEFAULT_PAGE_SIZE, 1), MAX_PAGE_SIZE)
    return page, limit

def parse_status_filter(raw: Optional[str]) -> Optional[str]:
    """Unknown values are ignored rather than rejected."""
    value = (raw or "").strip().upper()
    return value if value in {s.value for s in TradeStatus} else None

def market_data_to_dict(row: DbMockedMarketData) -> Dict[str, Any]:
    return {
        "id": row.id,
        "scrip": row.scrip,
        "scrip_full_name": row.scrip_full_name,
        "exchange": row.exchange,
        "ltp": row.ltp,
        "open": row.open,
        "high": row.high,
        "low": row.low,
        "close": row.close,
        "volume": row.volume,
        "last_updated": row.last_updated,
    }

class TradingReportService:
    def __init__(self, db: DatabaseManager, quotes: QuoteBook):
        self.db = db
        self.quotes = quotes

    @staticmethod
    async def _owned_challenge(session: AsyncSession, challenge_id: Optional[str], trader: AuthenticatedSession):
        challenge_id = (challenge_id or "").strip()
        if not challenge_id:
            raise ValidationFailedError("challenge_id query parameter is required")
        challenge = (await session.execute(
            select(DbUserChallenge)
            .where(DbUserChallenge.id == challenge_id, DbUserChallenge.user_id == trader.user_id)
        )).scalars().first()
        if challenge is None:
            raise NotFoundError("Challenge not found")
        return challenge

    async def summary(
        self,
        challenge_id: Optional[str],
        trader: Optional[AuthenticatedSession],
        day: Optional[date] = None,
    ) -> Dict[str, Any]:
        trader = require_trader_session(trader)
        async with self.db.get_session() as session:
            challenge = await self._owned_challenge(session, challenge_id, trader)
            plan = await session.get(DbChallengePlan, challenge.plan_id)
            day = day or ist_date()
            start, end = ist_day_window_for(day)

            stored = (await session.execute(
                select(DbDailyTradeSummary)
                .where(DbDailyTradeSummary.challenge_id == challenge.id, DbDailyTradeSummary.date == day)
            )).scalars().first()

            open_set = await open_trades(session, challenge.id)
            realized = await realized_total(session, challenge.id)
            closed_today, realized_today = (await session.execute(
                select(func.count(DbTrade.id), func.coalesce(func.sum(DbTrade.pnl), 0.0))
                .where(
                    DbTrade.challenge_id == challenge.id,
                    DbTrade.status == TradeStatus.CLOSED.value,
                    DbTrade.exit_time >= start,
                    DbTrade.exit_time < end,
                )
            )).one()

            price_map = await self.quotes.price_map(session, open_set)
            snapshot = build_portfolio_snapshot(plan.account_size, open_set, price_map, realized)
            realized_today = float(realized_today or 0.0)

        return {
            "summary": DailySummaryView.model_validate(stored) if stored else None,
            "challenge": {
                "id": challenge.id,
                "status": challenge.status,
                "account_size": plan.account_size,
            },
            "metrics": {
                "open_trades_count": len(open_set),
                "closed_trades_today": int(closed_today or 0),
                "realized_pnl_today": realized_today,
                "day_pnl_pct": day_pnl_pct(realized_today, snapshot.unrealized_pnl, plan.account_size),
            },
            "portfolio": {**snapshot.model_dump(), "is_market_open": is_market_open()},
        }

    async def list_trades(
        self,
        challenge_id: Optional[str],
        trader: Optional[AuthenticatedSession],
        status: Optional[str] = None,
        page: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> Dict[str, Any]:
        trader = require_trader_session(trader)
        page, limit = clamp_page(page, limit)
        status_filter = parse_status_filter(status)

        async with self.db.get_session() as session:
            challenge = await self._owned_challenge(session, challenge_id, trader)
            conditions = [DbTrade.challenge_id == challenge.id]
            if status_filter:
                conditions.append(DbTrade.status == status_filter)

            total = int(await session.scalar(select(func.count(DbTrade.id)).where(*conditions)) or 0)
            rows = (await session.execute(
                select(DbTrade)
                .where(*conditions)
                .order_by(DbTrade.entry_time.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )).scalars().all()

        return {
            "trades": [TradeView.model_validate(t) for t in rows],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "total_pages": math.ceil(total / limit),
            },
        }

    async def market_data(self, scrip: Optional[str]) -> Dict[str, Any]:
        scrip = normalize_scrip(scrip or "")
        if not scrip:
            raise BadRequestError("Scrip symbol is required")
        async with self.db.get_session() as session:
            row = (await session.execute(
                select(DbMockedMarketData).where(DbMockedMarketData.scrip == scrip)
            )).scalars().first()
        if row is None:
            raise NotFoundError("Scrip not found")
        return {"market_data": market_data_to_dict(row)}
