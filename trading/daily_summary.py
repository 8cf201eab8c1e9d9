"""
FundedDesk – Daily trade summary recompute.
Every trade mutation ends here: the (challenge, IST day) summary row and the
challenge's current_pnl are rebuilt from trade rows. The caller commits.
"""
import logging
from datetime import datetime
from typing import Mapping, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from capital.accounting import build_portfolio_snapshot, day_pnl_pct
from core.enums import TradeStatus
from core.market_session import ist_day_window, ist_date, utc_now
from core.models import PortfolioSnapshot
from database.models import DbDailyTradeSummary, DbTrade, DbUserChallenge

logger = logging.getLogger("DailySummary")

async def realized_total(session: AsyncSession, challenge_id: str) -> float:
    total = await session.scalar(
        select(func.coalesce(func.sum(DbTrade.pnl), 0.0))
        .where(DbTrade.challenge_id == challenge_id, DbTrade.status == TradeStatus.CLOSED.value)
    )
    return float(total or 0.0)

async def open_trades(session: AsyncSession, challenge_id: str):
    return (await session.execute(
        select(DbTrade)
        .where(DbTrade.challenge_id == challenge_id, DbTrade.status == TradeStatus.OPEN.value)
        .order_by(DbTrade.entry_time)
    )).scalars().all()

async def trades_entered_today(session: AsyncSession, challenge_id: str, now: Optional[datetime] = None) -> int:
    start, end = ist_day_window(now)
    count = await session.scalar(
        select(func.count(DbTrade.id))
        .where(DbTrade.challenge_id == challenge_id, DbTrade.entry_time >= start, DbTrade.entry_time < end)
    )
    return int(count or 0)

async def recompute_daily_summary(
    session: AsyncSession,
    challenge: DbUserChallenge,
    account_size: float,
    price_map: Mapping[str, float],
    now: Optional[datetime] = None,
) -> Tuple[DbDailyTradeSummary, PortfolioSnapshot]:
    now = now or utc_now()
    start, end = ist_day_window(now)
    today = ist_date(now)

    open_set = await open_trades(session, challenge.id)
    realized = await realized_total(session, challenge.id)
    closed_today_q = select(
        func.count(DbTrade.id), func.coalesce(func.sum(DbTrade.pnl), 0.0)
    ).where(
        DbTrade.challenge_id == challenge.id,
        DbTrade.status == TradeStatus.CLOSED.value,
        DbTrade.exit_time >= start,
        DbTrade.exit_time < end,
    )
    closed_today, realized_today = (await session.execute(closed_today_q)).one()
    total_today = await trades_entered_today(session, challenge.id, now)

    snapshot = build_portfolio_snapshot(account_size, open_set, price_map, realized)

    summary = (await session.execute(
        select(DbDailyTradeSummary)
        .where(DbDailyTradeSummary.challenge_id == challenge.id, DbDailyTradeSummary.date == today)
    )).scalars().first()
    if summary is None:
        summary = DbDailyTradeSummary(challenge_id=challenge.id, date=today)
        session.add(summary)

    summary.total_trades = total_today
    summary.open_trades = len(open_set)
    summary.closed_trades = int(closed_today or 0)
    summary.realized_pnl = float(realized_today or 0.0)
    summary.unrealized_pnl = snapshot.unrealized_pnl
    summary.capital_used = snapshot.capital_used
    summary.capital_available = snapshot.capital_available
    summary.day_pnl_pct = day_pnl_pct(summary.realized_pnl, snapshot.unrealized_pnl, account_size)
    summary.updated_at = now

    challenge.current_pnl = realized + snapshot.unrealized_pnl
    await session.flush()

    logger.debug(
        f"Summary {challenge.id} {today}: trades={total_today} open={len(open_set)} "
        f"realized_today={summary.realized_pnl:.2f} unrealized={snapshot.unrealized_pnl:.2f}"
    )
    return summary, snapshot
