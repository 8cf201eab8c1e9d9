#!/usr/bin/env python3
"""
FundedDesk – Simulated Trade Execution
- Validates payload, challenge ownership and state
- Enforces the daily trade cap and available capital under a per-challenge lock
- Inserts the OPEN trade and rebuilds today's summary in the same transaction
"""
from __future__ import annotations
import logging
from typing import Any, Optional

from capital.accounting import (
    capital_available, capital_used, clamp_quantity, normalize_scrip, required_capital,
)
from capital.locks import ChallengeLockRegistry, lock_challenge_row
from core.config import settings
from core.enums import ChallengeStatus, TradeStatus, TradeType, UserRole
from core.errors import (
    ForbiddenError, NotFoundError, UnauthorizedError, ValidationFailedError,
)
from core.market_session import utc_now
from core.metrics import get_metrics
from core.models import AuthenticatedSession, DailySummaryView, TradeResult, TradeView
from database.manager import DatabaseManager
from database.models import DbChallengePlan, DbTrade, DbUserChallenge
from trading.daily_summary import open_trades, realized_total, recompute_daily_summary, trades_entered_today
from trading.quotes import QuoteBook

logger = logging.getLogger("TradeExecution")

def require_trader_session(trader: Optional[AuthenticatedSession]) -> AuthenticatedSession:
    if trader is None:
        raise UnauthorizedError("Trader authentication required")
    if trader.role != UserRole.TRADER:
        raise ForbiddenError("Trader role required")
    return trader

def parse_trade_type(raw: Any) -> TradeType:
    value = raw.value if isinstance(raw, TradeType) else str(raw).strip().upper()
    try:
        return TradeType(value)
    except ValueError:
        raise ValidationFailedError("tradeType must be BUY or SELL")

class TradeExecutionService:
    def __init__(self, db: DatabaseManager, quotes: QuoteBook, locks: ChallengeLockRegistry):
        self.db = db
        self.quotes = quotes
        self.locks = locks
        self.metrics = get_metrics()

    async def execute(
        self,
        challenge_id: Optional[str],
        scrip: Optional[str],
        quantity: Any,
        trade_type: Any,
        trader: Optional[AuthenticatedSession],
        exchange: Optional[str] = None,
    ) -> TradeResult:
        trader = require_trader_session(trader)

        challenge_id = (challenge_id or "").strip()
        scrip = normalize_scrip(scrip) if scrip else ""
        qty = clamp_quantity(quantity)
        exchange = (exchange or settings.DEFAULT_EXCHANGE).strip().upper()
        if not challenge_id or not scrip or not trade_type or qty <= 0:
            raise ValidationFailedError("Invalid request payload", details={
                "challenge_id": challenge_id, "scrip": scrip,
                "quantity": qty, "trade_type": trade_type,
            })
        side = parse_trade_type(trade_type)

        async with self.db.get_session() as session:
            challenge = await session.get(DbUserChallenge, challenge_id)
            if challenge is None:
                raise NotFoundError("Challenge not found")
            if challenge.user_id != trader.user_id:
                raise ForbiddenError("You are not authorized to trade on this challenge")
            if challenge.status != ChallengeStatus.ACTIVE.value:
                raise ForbiddenError("Challenge is not active")
            plan = await session.get(DbChallengePlan, challenge.plan_id)

            quote = await self.quotes.require(session, scrip, exchange, "Requested scrip is unavailable")
            seen_open = await open_trades(session, challenge_id)
            prefetched = await self.quotes.price_map(session, seen_open)

            async with self.locks.hold(challenge_id):
                challenge = await lock_challenge_row(session, challenge_id)
                if challenge is None or challenge.status != ChallengeStatus.ACTIVE.value:
                    raise ForbiddenError("Challenge is not active")

                now = utc_now()
                if await trades_entered_today(session, challenge_id, now) >= settings.DAILY_TRADE_LIMIT:
                    self.metrics.log_trade(False, challenge_id, scrip, reason="daily_trade_limit")
                    raise ForbiddenError(f"Daily trade limit of {settings.DAILY_TRADE_LIMIT} reached")

                open_set = await open_trades(session, challenge_id)
                # only trades opened since the prefetch reach the broker here
                price_map = await self.quotes.top_up(
                    session, open_set, prefetched, {t.scrip for t in seen_open}
                )
                price_map[scrip] = quote.price

                needed = required_capital(qty, quote.price)
                available = capital_available(
                    plan.account_size,
                    capital_used(open_set, price_map),
                    await realized_total(session, challenge_id),
                )
                if available < needed:
                    self.metrics.log_trade(False, challenge_id, scrip, reason="insufficient_capital")
                    logger.info(f"🚫 Capital check failed {challenge_id}: need {needed:.2f}, have {available:.2f}")
                    raise ForbiddenError("Insufficient available capital to place this trade")

                trade = DbTrade(
                    challenge_id=challenge_id,
                    scrip=scrip,
                    scrip_full_name=quote.scrip_full_name,
                    exchange=exchange,
                    quantity=qty,
                    entry_price=quote.price,
                    trade_type=side.value,
                    status=TradeStatus.OPEN.value,
                    pnl=0.0,
                    entry_time=now,
                    auto_squared_off=False,
                )
                session.add(trade)
                await session.flush()

                summary, snapshot = await recompute_daily_summary(
                    session, challenge, plan.account_size, price_map, now=now
                )
                await self.db.safe_commit(session)

        self.metrics.log_trade(True, challenge_id, scrip, trade_id=trade.id)
        logger.info(f"✅ {side.value} {qty} {scrip} @ {quote.price} ({quote.source.value}) on {challenge_id}")
        return TradeResult(
            trade=TradeView.model_validate(trade),
            summary=DailySummaryView.model_validate(summary),
            portfolio=snapshot,
        )
