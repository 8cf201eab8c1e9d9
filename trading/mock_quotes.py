"""
FundedDesk – Mocked quote drift.
Keeps the fallback market-data store moving during market hours: every
refresh nudges each LTP by 0.5–2% up or down in one transaction.
"""
import logging
import random
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import select

from capital.accounting import normalize_scrip
from core.market_session import is_market_open, utc_now
from core.models import MarketDataRefresh
from database.manager import DatabaseManager
from database.models import DbMockedMarketData
from trading.reports import market_data_to_dict

logger = logging.getLogger("MockQuotes")

MIN_MOVE_PCT = 0.005
MAX_MOVE_PCT = 0.02
VOLUME_DRIFT_PCT = 0.02

def fluctuated_price(base: float, rng: random.Random, min_pct: float = MIN_MOVE_PCT,
                     max_pct: float = MAX_MOVE_PCT) -> float:
    direction = 1 if rng.random() > 0.5 else -1
    pct = min_pct + rng.random() * (max_pct - min_pct)
    return max(0.0, round(base * (1 + direction * pct), 2))

class MockQuoteService:
    def __init__(self, db: DatabaseManager, rng: Optional[random.Random] = None):
        self.db = db
        self.rng = rng or random.Random()

    async def refresh(self, scrips: Optional[Iterable[str]] = None, now: Optional[datetime] = None) -> MarketDataRefresh:
        """`scrips=None` refreshes every row; a list (even empty) restricts to those symbols."""
        now = now or utc_now()
        if not is_market_open(now):
            return MarketDataRefresh(message="Market is closed. Prices remain unchanged.")

        symbols: Optional[List[str]] = None
        if scrips is not None:
            symbols = [s for s in (normalize_scrip(x or "") for x in scrips) if s]

        async with self.db.get_session() as session:
            q = select(DbMockedMarketData)
            if symbols is not None:
                q = q.where(DbMockedMarketData.scrip.in_(symbols))
            rows = (await session.execute(q.order_by(DbMockedMarketData.scrip))).scalars().all()
            if not rows:
                return MarketDataRefresh(
                    message="No matching scrips found" if symbols is not None else "No market data available"
                )

            for row in rows:
                new_ltp = fluctuated_price(row.ltp, self.rng)
                drift = round(row.volume * (self.rng.random() * 2 * VOLUME_DRIFT_PCT - VOLUME_DRIFT_PCT))
                row.ltp = new_ltp
                row.high = max(row.high, new_ltp)
                row.low = min(row.low, new_ltp)
                row.close = new_ltp
                row.volume = max(0, row.volume + drift)
                row.last_updated = now
            await self.db.safe_commit(session)

        logger.info(f"📈 Refreshed {len(rows)} mocked quotes")
        return MarketDataRefresh(updated=[market_data_to_dict(r) for r in rows])
