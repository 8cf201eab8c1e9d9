"""
FundedDesk – Market API Routes
- Instrument search across the configured exchanges
- Live LTP over Server-Sent Events
- Historical candles passthrough
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from api.dependencies import DeskServices, get_services
from api.responses import ok
from api.security import require_trader_or_admin
from core.errors import BadRequestError, BrokerAuthError, BrokerUnavailableError, NotFoundError, UpstreamError
from core.models import AuthenticatedSession
from trading.price_stream import stream_ltp

logger = logging.getLogger("Market_Routes")
router = APIRouter(prefix="/api/market", tags=["Market"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

@router.get("/search")
async def search_instruments(
    search: str = "",
    _auth: AuthenticatedSession = Depends(require_trader_or_admin),
    svc: DeskServices = Depends(get_services),
):
    if svc.bridge is None:
        return ok({"market_data": []})
    matches = await svc.bridge.search_instruments(search)
    return ok({"market_data": [m.model_dump() for m in matches]})

@router.get("/stream")
async def stream_prices(
    request: Request,
    symbol_token: Optional[str] = None,
    exchange: Optional[str] = None,
    trading_symbol: Optional[str] = None,
    _auth: AuthenticatedSession = Depends(require_trader_or_admin),
    svc: DeskServices = Depends(get_services),
):
    symbol_token = (symbol_token or "").strip()
    exchange = (exchange or "").strip().upper()
    trading_symbol = (trading_symbol or "").strip()
    if not (symbol_token and exchange and trading_symbol):
        raise BadRequestError("Missing required params: symbol_token, exchange, trading_symbol")
    if svc.bridge is None:
        raise NotFoundError("Live market data is not configured")

    return StreamingResponse(
        stream_ltp(svc.bridge, exchange, trading_symbol, symbol_token, request.is_disconnected),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )

class HistoricalRequest(BaseModel):
    exchange: Optional[str] = None
    symbol_token: Optional[str] = None
    interval: Optional[str] = None
    from_date: Optional[str] = None
    to_date: Optional[str] = None

@router.post("/historical")
async def historical_candles(
    body: HistoricalRequest,
    _auth: AuthenticatedSession = Depends(require_trader_or_admin),
    svc: DeskServices = Depends(get_services),
):
    exchange = (body.exchange or "").strip().upper()
    symbol_token = (body.symbol_token or "").strip()
    interval = (body.interval or "").strip().upper()
    if not (exchange and symbol_token and interval):
        raise BadRequestError("Missing required fields: exchange, symbol_token, interval")
    if svc.bridge is None:
        raise NotFoundError("Live market data is not configured")

    try:
        candles = await svc.bridge.get_candles(exchange, symbol_token, interval, body.from_date, body.to_date)
    except BrokerAuthError as e:
        logger.warning(f"⚠️ Candles rejected after session refresh for {exchange}:{symbol_token}: {e}")
        raise UpstreamError(str(e) or "AngelOne returned no data even after session refresh")
    except BrokerUnavailableError as e:
        raise UpstreamError(str(e) or "Failed to fetch historical data")
    return ok({"candles": candles})
