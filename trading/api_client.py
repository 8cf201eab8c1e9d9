#!/usr/bin/env python3
"""
FundedDesk – AngelOne SmartAPI client (aiohttp)
Only the calls the desk needs: login, searchScrip, getLtpData, getCandleData.
"""
from __future__ import annotations
import asyncio
import json
import logging
import re
from typing import Any, Dict, List, Optional, Tuple
import aiohttp
from core.config import settings, ANGELONE_API_ENDPOINTS
from core.errors import BrokerAuthError, BrokerUnavailableError
from core.models import BrokerSession

logger = logging.getLogger("AngelOneAPI")

# Returned by the broker when the JWT is no longer valid.
AUTH_STALE_ERROR_CODE = "AG8001"

def is_auth_stale(status: int, data: Dict[str, Any]) -> bool:
    if status in (401, 403):
        return True
    return AUTH_STALE_ERROR_CODE in (data.get("errorcode"), data.get("errorCode"))

class AngelOneClient:
    def __init__(self, base_url: Optional[str] = None, timeout_sec: Optional[float] = None) -> None:
        self._base_url = (base_url or settings.BROKER_BASE_URL).rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout_sec or settings.BROKER_TIMEOUT_SEC)
        self._session: Optional[aiohttp.ClientSession] = None
        self._session_lock = asyncio.Lock()

    async def close(self) -> None:
        async with self._session_lock:
            if self._session and not self._session.closed:
                await self._session.close()
                self._session = None
                logger.info("📡 Broker HTTP session closed")

    async def _get_session(self) -> aiohttp.ClientSession:
        async with self._session_lock:
            if self._session is None or self._session.closed:
                self._session = aiohttp.ClientSession(timeout=self._timeout)
            return self._session

    @staticmethod
    def _headers(api_key: str, jwt_token: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "X-UserType": "USER",
            "X-SourceID": "WEB",
            "X-ClientLocalIP": "192.168.1.1",
            "X-ClientPublicIP": "192.168.1.1",
            "X-MACAddress": "00:00:00:00:00:00",
            "X-PrivateKey": api_key,
        }
        if jwt_token:
            headers["Authorization"] = f"Bearer {jwt_token}"
        return headers

    @staticmethod
    def _redact(text: str) -> str:
        text = re.sub(r"Bearer\s+[a-zA-Z0-9\-._]+", "Bearer [REDACTED]", text, flags=re.I)
        return re.sub(r'"(jwtToken|refreshToken|feedToken)"\s*:\s*"[^"]+"', r'"\1":"[REDACTED]"', text)

    async def _post(self, endpoint_key: str, payload: Dict[str, Any], headers: Dict[str, str]) -> Tuple[int, Dict[str, Any]]:
        """
        POSTs to a SmartAPI endpoint. Returns (http_status, parsed_body); a
        non-JSON body (gateway error page, WAF block) parses to {}.
        Network failures and timeouts raise BrokerUnavailableError.
        """
        url = self._base_url + ANGELONE_API_ENDPOINTS[endpoint_key]
        try:
            session = await self._get_session()
            async with session.post(url, json=payload, headers=headers) as resp:
                body = await resp.text()
                try:
                    data = json.loads(body) if body else {}
                except ValueError:
                    logger.warning(f"⚠️ Non-JSON response from {endpoint_key}: {resp.status}")
                    data = {}
                if not isinstance(data, dict):
                    data = {}
                if resp.status != 200:
                    logger.debug(f"Broker {endpoint_key} -> {resp.status}: {self._redact(body[:300])}")
                return resp.status, data
        except asyncio.TimeoutError as exc:
            logger.error(f"⏰ Broker timeout ({self._timeout.total}s): {endpoint_key}")
            raise BrokerUnavailableError(f"{endpoint_key} timed out") from exc
        except aiohttp.ClientError as exc:
            logger.error(f"❌ Broker request failed: {endpoint_key}: {exc}")
            raise BrokerUnavailableError(str(exc)) from exc

    # ------------------------------------------------------------------
    # AUTH
    # ------------------------------------------------------------------
    async def login(self, api_key: str, client_code: str, mpin: str, totp: str) -> Dict[str, str]:
        """Returns {"jwtToken", "refreshToken", "feedToken"}."""
        payload = {"clientcode": client_code, "password": mpin, "totp": totp}
        status, data = await self._post("login", payload, self._headers(api_key))
        tokens = data.get("data")
        if not isinstance(tokens, dict):
            tokens = {}
        if status != 200 or data.get("status") is False or not tokens.get("jwtToken"):
            raise BrokerAuthError(f"AngelOne login failed: {data.get('message') or 'Unknown error'}")
        return tokens

    # ------------------------------------------------------------------
    # MARKET DATA
    # ------------------------------------------------------------------
    async def search_scrip(self, session: BrokerSession, exchange: str, term: str) -> List[Dict[str, Any]]:
        payload = {"exchange": exchange, "searchscrip": term}
        status, data = await self._post("search_scrip", payload, self._headers(session.api_key, session.jwt_token))
        if is_auth_stale(status, data):
            raise BrokerAuthError(f"searchScrip rejected session ({status})")
        results = data.get("data")
        if status != 200 or data.get("status") is False or not isinstance(results, list):
            logger.warning(f"searchScrip failed for {exchange}:{term}: {data.get('message', status)}")
            return []
        return results

    async def get_ltp(self, session: BrokerSession, exchange: str, trading_symbol: str, symbol_token: str) -> Optional[float]:
        payload = {"exchange": exchange, "tradingsymbol": trading_symbol, "symboltoken": symbol_token}
        status, data = await self._post("ltp", payload, self._headers(session.api_key, session.jwt_token))
        if is_auth_stale(status, data):
            raise BrokerAuthError(f"getLtpData rejected session ({status})")
        quote = data.get("data")
        ltp = quote.get("ltp") if isinstance(quote, dict) else None
        if status != 200 or ltp is None:
            return None
        try:
            return float(ltp)
        except (TypeError, ValueError):
            return None

    async def get_candles(
        self,
        session: BrokerSession,
        exchange: str,
        symbol_token: str,
        interval: str,
        from_date: Optional[str],
        to_date: Optional[str],
    ) -> List[Any]:
        """
        OHLCV rows as the broker returns them. A body with status false is
        treated as a rejected session.
        """
        payload = {
            "exchange": exchange,
            "symboltoken": symbol_token,
            "interval": interval,
            "fromdate": from_date,
            "todate": to_date,
        }
        status, data = await self._post("candles", payload, self._headers(session.api_key, session.jwt_token))
        if is_auth_stale(status, data) or (status == 200 and data.get("status") is False):
            raise BrokerAuthError(data.get("message") or f"getCandleData rejected session ({status})")
        if status != 200:
            raise BrokerUnavailableError(data.get("message") or f"getCandleData failed ({status})")
        if not data:
            raise BrokerUnavailableError("Invalid JSON response from AngelOne API")
        candles = data.get("data")
        return candles if isinstance(candles, list) else []
