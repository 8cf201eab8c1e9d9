#!/usr/bin/env python3
"""
FundedDesk – Trading API Routes
- Execute / square-off (trader)
- Auto square-off (admin or cron)
- Daily summary, trade history, mocked market data
- Mocked quote refresh (admin or cron)
"""
from __future__ import annotations
import logging
from datetime import date
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from api.dependencies import DeskServices, get_services
from api.responses import ok
from api.security import get_optional_session, require_admin_or_cron, require_trader, require_trader_or_admin
from core.metrics import get_metrics
from core.models import AuthenticatedSession

logger = logging.getLogger("API_Routes")
router = APIRouter(prefix="/api/trading", tags=["Trading"])
health_router = APIRouter(prefix="/api", tags=["Health"])

class ExecuteTradeRequest(BaseModel):
    challenge_id: Optional[str] = None
    scrip: Optional[str] = None
    quantity: Any = None
    trade_type: Optional[str] = None
    exchange: Optional[str] = None

class SquareOffRequest(BaseModel):
    trade_id: Optional[str] = None

class MarketDataUpdateRequest(BaseModel):
    scrips: Optional[List[str]] = None

class AutoSquareOffRequest(BaseModel):
    challenge_id: Optional[str] = None

@router.post("/execute")
async def execute_trade(
    body: ExecuteTradeRequest,
    trader: Optional[AuthenticatedSession] = Depends(get_optional_session),
    svc: DeskServices = Depends(get_services),
):
    result = await svc.execution.execute(
        body.challenge_id, body.scrip, body.quantity, body.trade_type, trader, exchange=body.exchange,
    )
    return ok(result.model_dump(), message="Trade executed successfully")

@router.post("/square-off")
async def square_off_trade(
    body: SquareOffRequest,
    trader: Optional[AuthenticatedSession] = Depends(get_optional_session),
    svc: DeskServices = Depends(get_services),
):
    result = await svc.square_off.square_off(body.trade_id, trader)
    return ok(result.model_dump(), message="Trade squared off successfully")

@router.post("/auto-square-off")
async def auto_square_off(
    body: Optional[AutoSquareOffRequest] = None,
    caller: str = Depends(require_admin_or_cron),
    svc: DeskServices = Depends(get_services),
):
    logger.info(f"⏹️ Auto square-off requested by {caller}")
    result = await svc.square_off.auto_square_off_all(body.challenge_id if body else None)
    if not result.closed_trades:
        return ok(result.model_dump(), message="No open trades found for auto square-off")
    return ok(result.model_dump(), message=f"Auto squared off {len(result.closed_trades)} trade(s)")

@router.get("/summary")
async def trading_summary(
    challenge_id: Optional[str] = None,
    day: Optional[date] = Query(default=None, alias="date"),
    trader: AuthenticatedSession = Depends(require_trader),
    svc: DeskServices = Depends(get_services),
):
    return ok(await svc.reports.summary(challenge_id, trader, day=day))

@router.get("/trades")
async def list_trades(
    challenge_id: Optional[str] = None,
    status: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
    trader: AuthenticatedSession = Depends(require_trader),
    svc: DeskServices = Depends(get_services),
):
    return ok(await svc.reports.list_trades(challenge_id, trader, status=status, page=page, limit=limit))

@router.get("/market-data/{scrip}")
async def get_market_data(
    scrip: str,
    _auth: AuthenticatedSession = Depends(require_trader_or_admin),
    svc: DeskServices = Depends(get_services),
):
    return ok(await svc.reports.market_data(scrip))

@router.post("/market-data/update")
async def refresh_market_data(
    body: Optional[MarketDataUpdateRequest] = None,
    caller: str = Depends(require_admin_or_cron),
    svc: DeskServices = Depends(get_services),
):
    logger.info(f"📈 Mocked quote refresh requested by {caller}")
    result = await svc.mock_quotes.refresh(body.scrips if body else None)
    return ok({"updated": result.updated}, message=result.message)

@health_router.get("/health/detailed")
async def detailed_health():
    metrics = get_metrics()
    return ok({"status": "healthy", "metrics": metrics.to_dict()})
