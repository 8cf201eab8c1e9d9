#!/usr/bin/env python3
"""
FundedDesk – Live Price Bridge
- Resolves desk scrips ("RELIANCE-EQ", "GOLD1!") to broker instrument tokens
- Fetches LTP with a single forced session refresh on auth-stale responses
- Quote lookups never raise: any broker failure degrades to None / fallback
- Historical candles pass broker errors through to the caller
"""
from __future__ import annotations
import asyncio
import logging
import re
from typing import Dict, Iterable, List, Optional, Tuple

from core.config import settings
from core.errors import BrokerAuthError
from core.market_session import utc_now
from core.models import InstrumentMatch, LivePrice, TokenInfo
from trading.api_client import AngelOneClient
from trading.broker_session import BrokerSessionManager
from trading.token_cache import InstrumentTokenCache

logger = logging.getLogger("LivePrice")

_SUFFIX_RE = re.compile(r"-[A-Z]+$")
_SPECIAL_RE = re.compile(r"[!@#]")
_TRAILING_DIGITS_RE = re.compile(r"\d+$")

def to_search_term(scrip: str) -> str:
    """
    "RELIANCE-EQ" -> "RELIANCE", "GOLD1!" -> "GOLD".
    Falls back to progressively less-stripped forms if stripping empties it.
    """
    no_suffix = _SUFFIX_RE.sub("", scrip)
    no_special = _SPECIAL_RE.sub("", no_suffix)
    clean = _TRAILING_DIGITS_RE.sub("", no_special)
    return clean or no_special or scrip

def pick_instrument(results: List[Dict], exchange: str) -> Optional[Dict]:
    if not results:
        return None
    if exchange == "NSE":
        for item in results:
            if str(item.get("tradingsymbol") or "").endswith("-EQ"):
                return item
    return results[0]

class LivePriceBridge:
    def __init__(
        self,
        client: AngelOneClient,
        sessions: BrokerSessionManager,
        token_cache: Optional[InstrumentTokenCache] = None,
    ):
        self.client = client
        self.sessions = sessions
        self.tokens = token_cache or InstrumentTokenCache(ttl_sec=settings.TOKEN_CACHE_TTL_SEC)

    async def close(self) -> None:
        await self.client.close()

    # ------------------------------------------------------------------
    # TOKEN RESOLUTION
    # ------------------------------------------------------------------
    async def resolve_token(self, scrip: str, exchange: str, force_refresh: bool = False) -> Optional[TokenInfo]:
        if not force_refresh:
            cached = self.tokens.get(scrip, exchange)
            if cached is not None:
                return cached

        term = to_search_term(scrip)
        try:
            session = await self.sessions.get_session()
            results = await self.client.search_scrip(session, exchange, term)
        except Exception as e:
            logger.warning(f"⚠️ searchScrip failed for {exchange}:{scrip} (searched '{term}'): {e}")
            return None

        pick = pick_instrument(results, exchange)
        if not pick or not pick.get("symboltoken"):
            logger.warning(f"No instrument for {exchange}:{scrip} (searched '{term}')")
            return None

        info = TokenInfo(
            symbol_token=str(pick["symboltoken"]),
            trading_symbol=pick.get("tradingsymbol") or term,
            scrip_full_name=pick.get("name") or pick.get("tradingsymbol") or term,
            exchange=exchange,
        )
        self.tokens.put(scrip, exchange, info)
        return info

    # ------------------------------------------------------------------
    # QUOTES
    # ------------------------------------------------------------------
    async def get_live_price(self, scrip: str, exchange: str) -> Optional[LivePrice]:
        info = await self.resolve_token(scrip, exchange)
        if info is None:
            return None

        try:
            try:
                session = await self.sessions.get_session()
                ltp = await self.client.get_ltp(session, exchange, info.trading_symbol, info.symbol_token)
            except BrokerAuthError:
                logger.info(f"🔄 Session stale while quoting {exchange}:{scrip}; refreshing once")
                session = await self.sessions.get_session(force_refresh=True)
                ltp = await self.client.get_ltp(session, exchange, info.trading_symbol, info.symbol_token)
        except Exception as e:
            logger.error(f"❌ LTP fetch failed for {exchange}:{scrip}: {e}")
            self.tokens.drop(scrip, exchange)
            return None

        if ltp is None:
            logger.warning(f"LTP empty for {exchange}:{scrip}")
            self.tokens.drop(scrip, exchange)
            return None
        return LivePrice(ltp=ltp, token=info, fetched_at=utc_now())

    async def get_price_map(self, items: Iterable[Tuple[str, str, Optional[float]]]) -> Dict[str, float]:
        """
        items: (scrip, exchange, fallback_price). Each scrip maps to its live
        LTP, else its fallback. Scrips with neither are left out.
        """
        unique: Dict[str, Tuple[str, str, Optional[float]]] = {}
        for scrip, exchange, fallback in items:
            unique.setdefault(scrip, (scrip, exchange, fallback))

        async def _one(scrip: str, exchange: str, fallback: Optional[float]) -> Optional[float]:
            live = await self.get_live_price(scrip, exchange)
            return live.ltp if live else fallback

        results = await asyncio.gather(*(_one(*v) for v in unique.values()), return_exceptions=True)
        price_map: Dict[str, float] = {}
        for (scrip, _, fallback), res in zip(unique.values(), results):
            price = fallback if isinstance(res, BaseException) else res
            if price is not None:
                price_map[scrip] = price
        return price_map

    async def poll_ltp(self, exchange: str, trading_symbol: str, symbol_token: str) -> Optional[float]:
        """
        One stream tick. Unlike get_live_price, a stale session is refreshed
        but not retried; the next tick uses the fresh session.
        """
        session = await self.sessions.get_session()
        try:
            return await self.client.get_ltp(session, exchange, trading_symbol, symbol_token)
        except BrokerAuthError:
            await self.sessions.get_session(force_refresh=True)
            return None

    # ------------------------------------------------------------------
    # HISTORY
    # ------------------------------------------------------------------
    async def get_candles(
        self,
        exchange: str,
        symbol_token: str,
        interval: str,
        from_date: Optional[str] = None,
        to_date: Optional[str] = None,
    ) -> List:
        """
        Unlike quotes, broker failures propagate: BrokerAuthError once the
        single forced refresh has also been rejected, BrokerUnavailableError
        on transport errors.
        """
        session = await self.sessions.get_session()
        try:
            return await self.client.get_candles(session, exchange, symbol_token, interval, from_date, to_date)
        except BrokerAuthError:
            logger.info(f"🔄 Session rejected for candles {exchange}:{symbol_token}; refreshing once")
            session = await self.sessions.get_session(force_refresh=True)
            return await self.client.get_candles(session, exchange, symbol_token, interval, from_date, to_date)

    # ------------------------------------------------------------------
    # SEARCH
    # ------------------------------------------------------------------
    async def search_instruments(self, term: str) -> List[InstrumentMatch]:
        term = (term or "").strip()
        if len(term) < 2:
            return []
        try:
            session = await self.sessions.get_session()
        except Exception as e:
            logger.error(f"Broker session unavailable for scrip search: {e}")
            return []

        async def _search(exchange: str) -> List[InstrumentMatch]:
            try:
                rows = await self.client.search_scrip(session, exchange, term)
            except Exception as e:
                logger.warning(f"searchScrip {exchange} failed: {e}")
                return []
            return [
                InstrumentMatch(
                    scrip=row["tradingsymbol"],
                    scrip_full_name=row.get("name") or row["tradingsymbol"],
                    exchange=exchange,
                    symbol_token=str(row.get("symboltoken", "")),
                )
                for row in rows if row.get("tradingsymbol")
            ]

        per_exchange = await asyncio.gather(*(_search(ex) for ex in settings.SEARCH_EXCHANGES))
        seen = set()
        matches: List[InstrumentMatch] = []
        for batch in per_exchange:
            for match in batch:
                key = f"{match.exchange}:{match.scrip}"
                if key in seen:
                    continue
                seen.add(key)
                matches.append(match)
        return matches[: settings.SEARCH_RESULT_LIMIT]
