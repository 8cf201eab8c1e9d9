#!/usr/bin/env python3
"""
FundedDesk – Square-Off
- Manual close of one OPEN trade by its owner
- Bulk auto square-off of every OPEN trade (admin / cron)
"""
from __future__ import annotations
import logging
from typing import Dict, List, Optional

from sqlalchemy import select

from capital.accounting import close_pnl
from capital.locks import ChallengeLockRegistry, lock_challenge_row, lock_trade_row
from core.enums import TradeStatus
from core.errors import BadRequestError, ForbiddenError, NotFoundError, ValidationFailedError
from core.market_session import utc_now
from core.metrics import get_metrics
from core.models import (
    AuthenticatedSession, AutoSquareOffResult, DailySummaryView, TradeResult, TradeView,
)
from database.manager import DatabaseManager
from database.models import DbChallengePlan, DbTrade, DbUserChallenge
from trading.daily_summary import open_trades, recompute_daily_summary
from trading.execution import require_trader_session
from trading.quotes import QuoteBook

logger = logging.getLogger("SquareOff")

class SquareOffService:
    def __init__(self, db: DatabaseManager, quotes: QuoteBook, locks: ChallengeLockRegistry):
        self.db = db
        self.quotes = quotes
        self.locks = locks
        self.metrics = get_metrics()

    async def square_off(self, trade_id: Optional[str], trader: Optional[AuthenticatedSession]) -> TradeResult:
        trader = require_trader_session(trader)
        trade_id = (trade_id or "").strip()
        if not trade_id:
            raise ValidationFailedError("trade_id is required")

        async with self.db.get_session() as session:
            trade = await session.get(DbTrade, trade_id)
            if trade is None:
                raise NotFoundError("Trade not found")
            challenge = await session.get(DbUserChallenge, trade.challenge_id)
            if challenge is None or challenge.user_id != trader.user_id:
                raise ForbiddenError("You are not authorized to modify this trade")
            if trade.status != TradeStatus.OPEN.value:
                raise BadRequestError("Trade is already closed")
            plan = await session.get(DbChallengePlan, challenge.plan_id)

            quote = await self.quotes.require(
                session, trade.scrip, trade.exchange or "NSE", "Market data unavailable for this scrip"
            )
            seen_open = [t for t in await open_trades(session, challenge.id) if t.id != trade.id]
            prefetched = await self.quotes.price_map(session, seen_open)

            async with self.locks.hold(challenge.id):
                challenge = await lock_challenge_row(session, challenge.id)
                trade = await lock_trade_row(session, trade_id)
                if trade is None or trade.status != TradeStatus.OPEN.value:
                    raise BadRequestError("Trade is already closed")

                now = utc_now()
                trade.status = TradeStatus.CLOSED.value
                trade.exit_price = quote.price
                trade.exit_time = now
                trade.pnl = close_pnl(trade, quote.price)
                trade.auto_squared_off = False
                await session.flush()

                remaining = await open_trades(session, challenge.id)
                price_map = await self.quotes.top_up(
                    session, remaining, prefetched, {t.scrip for t in seen_open}
                )
                summary, snapshot = await recompute_daily_summary(
                    session, challenge, plan.account_size, price_map, now=now
                )
                await self.db.safe_commit(session)

        self.metrics.log_square_off(trade.id, trade.pnl)
        logger.info(f"🔒 Squared off {trade.id} {trade.scrip} @ {quote.price} pnl={trade.pnl}")
        return TradeResult(
            trade=TradeView.model_validate(trade),
            summary=DailySummaryView.model_validate(summary),
            portfolio=snapshot,
        )

    async def auto_square_off_all(self, challenge_id: Optional[str] = None) -> AutoSquareOffResult:
        """
        Closes every OPEN trade (optionally for one challenge) in one commit,
        then rebuilds each affected challenge's summary. Safe to repeat.
        """
        challenge_id = (challenge_id or "").strip() or None
        now = utc_now()

        async with self.db.get_session() as session:
            q = select(DbTrade).where(DbTrade.status == TradeStatus.OPEN.value)
            if challenge_id:
                q = q.where(DbTrade.challenge_id == challenge_id)
            candidates = (await session.execute(q.order_by(DbTrade.entry_time))).scalars().all()
            price_map = await self.quotes.price_map(session, candidates)

            trades = []
            if candidates:
                # trades closed manually while prices were fetched drop out here
                trades = (await session.execute(
                    q.where(DbTrade.id.in_([t.id for t in candidates]))
                    .order_by(DbTrade.entry_time)
                    .with_for_update()
                    .execution_options(populate_existing=True)
                )).scalars().all()
            if not trades:
                logger.info("No open trades found for auto square-off")
                self.metrics.log_auto_square_off(0)
                return AutoSquareOffResult()

            for trade in trades:
                exit_price = price_map.get(trade.scrip, trade.entry_price)
                trade.status = TradeStatus.CLOSED.value
                trade.exit_price = exit_price
                trade.exit_time = now
                trade.pnl = close_pnl(trade, exit_price)
                trade.auto_squared_off = True
            await self.db.safe_commit(session)

        closed = [TradeView.model_validate(t) for t in trades]
        self.metrics.log_auto_square_off(len(closed))
        logger.info(f"⏹️ Auto square-off closed {len(closed)} trades")

        summaries: List[DailySummaryView] = []
        affected: Dict[str, None] = dict.fromkeys(t.challenge_id for t in trades)
        for cid in affected:
            summary = await self._recompute_for(cid, now)
            if summary is not None:
                summaries.append(summary)
        return AutoSquareOffResult(closed_trades=closed, summaries=summaries)

    async def _recompute_for(self, challenge_id: str, now) -> Optional[DailySummaryView]:
        async with self.db.get_session() as session:
            seen_open = await open_trades(session, challenge_id)
            prefetched = await self.quotes.price_map(session, seen_open)

            async with self.locks.hold(challenge_id):
                challenge = await lock_challenge_row(session, challenge_id)
                if challenge is None:
                    return None
                plan = await session.get(DbChallengePlan, challenge.plan_id)
                remaining = await open_trades(session, challenge_id)
                price_map = await self.quotes.top_up(
                    session, remaining, prefetched, {t.scrip for t in seen_open}
                )
                summary, _ = await recompute_daily_summary(
                    session, challenge, plan.account_size, price_map, now=now
                )
                await self.db.safe_commit(session)
                return DailySummaryView.model_validate(summary)
