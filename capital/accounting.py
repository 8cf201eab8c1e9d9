#!/usr/bin/env python3
"""
FundedDesk – Capital Accounting
- Pure arithmetic over trade rows; no I/O.
- Realized losses shrink available capital, realized profits do not grow it.
"""
from __future__ import annotations
import math
from typing import Any, Dict, Iterable, Mapping, Optional

from core.enums import TradeStatus, TradeType
from core.models import PortfolioSnapshot

def clamp_quantity(quantity: Any) -> int:
    """Floors to an integer; non-finite or non-positive input becomes 0."""
    try:
        value = float(quantity)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(value) or value <= 0:
        return 0
    return int(math.floor(value))

def normalize_scrip(symbol: str) -> str:
    return symbol.strip().upper()

def required_capital(quantity: float, ltp: float) -> float:
    return quantity * ltp

def trade_direction(trade_type: Any) -> int:
    value = trade_type.value if isinstance(trade_type, TradeType) else str(trade_type)
    return 1 if value == TradeType.BUY.value else -1

def unrealized_pnl(trade, ltp: float) -> float:
    return trade_direction(trade.trade_type) * (ltp - trade.entry_price) * trade.quantity

def close_pnl(trade, exit_price: float) -> float:
    return round(unrealized_pnl(trade, exit_price), 2)

def _is_open(trade) -> bool:
    return trade.status == TradeStatus.OPEN.value

def _price_for(trade, price_map: Mapping[str, float]) -> float:
    price = price_map.get(trade.scrip)
    return trade.entry_price if price is None else price

def capital_used(open_trades: Iterable, price_map: Mapping[str, float]) -> float:
    return sum(
        required_capital(t.quantity, _price_for(t, price_map))
        for t in open_trades if _is_open(t)
    )

def total_unrealized(open_trades: Iterable, price_map: Mapping[str, float]) -> float:
    return sum(
        unrealized_pnl(t, _price_for(t, price_map))
        for t in open_trades if _is_open(t)
    )

def realized_loss(realized_total: float) -> float:
    return max(0.0, -realized_total)

def capital_available(account_size: float, used: float, realized_total: float) -> float:
    """May be negative; callers clamp before reporting."""
    return account_size - used - realized_loss(realized_total)

def build_portfolio_snapshot(
    account_size: float,
    open_trades: Iterable,
    price_map: Mapping[str, float],
    realized_total: float,
) -> PortfolioSnapshot:
    trades = list(open_trades)
    used = capital_used(trades, price_map)
    return PortfolioSnapshot(
        capital_used=used,
        capital_available=max(0.0, capital_available(account_size, used, realized_total)),
        unrealized_pnl=total_unrealized(trades, price_map),
        realized_pnl=realized_total,
    )

def day_pnl_pct(realized_today: float, unrealized: float, account_size: float) -> float:
    if not account_size:
        return 0.0
    return round((realized_today + unrealized) / account_size * 100, 4)
