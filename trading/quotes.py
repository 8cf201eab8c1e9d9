"""
FundedDesk – Quote resolution.
Live broker LTP first, then the mocked market-data store. Valuing already
open trades may finally fall back to the trade's own entry price.
"""
import logging
from typing import Dict, Iterable, Optional, Set

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.enums import QuoteSource
from core.errors import NotFoundError
from core.metrics import get_metrics
from core.models import Quote
from database.models import DbMockedMarketData
from trading.live_price import LivePriceBridge

logger = logging.getLogger("QuoteBook")

class QuoteBook:
    def __init__(self, bridge: Optional[LivePriceBridge]):
        self.bridge = bridge
        self.metrics = get_metrics()

    @staticmethod
    async def _mocked(session: AsyncSession, scrips: Iterable[str]) -> Dict[str, DbMockedMarketData]:
        wanted = list(set(scrips))
        if not wanted:
            return {}
        rows = (await session.execute(
            select(DbMockedMarketData).where(DbMockedMarketData.scrip.in_(wanted))
        )).scalars().all()
        return {r.scrip: r for r in rows}

    async def quote(self, session: AsyncSession, scrip: str, exchange: str) -> Optional[Quote]:
        if self.bridge is not None:
            live = await self.bridge.get_live_price(scrip, exchange)
            if live is not None:
                return Quote(
                    scrip=scrip, price=live.ltp, source=QuoteSource.LIVE,
                    scrip_full_name=live.token.scrip_full_name, exchange=exchange,
                )

        mocked = (await self._mocked(session, [scrip])).get(scrip)
        if mocked is None:
            return None
        self.metrics.log_quote_fallback(scrip, QuoteSource.MOCKED.value)
        return Quote(
            scrip=scrip, price=mocked.ltp, source=QuoteSource.MOCKED,
            scrip_full_name=mocked.scrip_full_name, exchange=mocked.exchange or exchange,
        )

    async def require(self, session: AsyncSession, scrip: str, exchange: str, missing_message: str) -> Quote:
        found = await self.quote(session, scrip, exchange)
        if found is None:
            raise NotFoundError(missing_message)
        return found

    async def price_map(self, session: AsyncSession, trades: Iterable) -> Dict[str, float]:
        """
        Current price for every distinct scrip among `trades`: live, else
        mocked. Scrips with neither are left out so accounting values each
        trade at its own entry price.
        """
        trades = list(trades)
        if not trades:
            return {}

        firsts = {}
        for t in trades:
            firsts.setdefault(t.scrip, t)

        prices: Dict[str, float] = {}
        if self.bridge is not None:
            prices = await self.bridge.get_price_map(
                (t.scrip, t.exchange or "NSE", None) for t in firsts.values()
            )

        missing = [s for s in firsts if s not in prices]
        if missing:
            mocked = await self._mocked(session, missing)
            for scrip in missing:
                if scrip in mocked:
                    prices[scrip] = mocked[scrip].ltp
                    self.metrics.log_quote_fallback(scrip, QuoteSource.MOCKED.value)
                else:
                    self.metrics.log_quote_fallback(scrip, QuoteSource.ENTRY.value)
        return prices

    async def top_up(
        self,
        session: AsyncSession,
        trades: Iterable,
        prices: Dict[str, float],
        tried: Set[str],
    ) -> Dict[str, float]:
        """Extends a price map fetched earlier with the scrips it has not tried yet."""
        merged = dict(prices)
        fresh = [t for t in trades if t.scrip not in tried]
        if fresh:
            merged.update(await self.price_map(session, fresh))
        return merged
