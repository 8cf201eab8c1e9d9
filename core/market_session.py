from __future__ import annotations
from datetime import datetime, date, time as dtime, timedelta, timezone
from typing import Optional, Tuple
import logging

import pytz

from core.config import IST, settings

logger = logging.getLogger("MarketSession")

# Broker session tokens die at the end of the IST calendar day.
SESSION_EXPIRY_TIME = dtime(23, 59, 59, 999000)

def utc_now() -> datetime:
    """Naive UTC, matching how timestamps are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)

def to_ist(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        moment = pytz.utc.localize(moment)
    return moment.astimezone(IST)

def ist_now() -> datetime:
    return to_ist(utc_now())

def ist_date(moment: Optional[datetime] = None) -> date:
    return to_ist(moment or utc_now()).date()

def _ist_local_to_utc(day: date, at: dtime) -> datetime:
    local = IST.localize(datetime.combine(day, at))
    return local.astimezone(pytz.utc).replace(tzinfo=None)

def ist_day_window(moment: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """
    [start, end) of the IST calendar day containing `moment`, as naive UTC.
    """
    day = ist_date(moment)
    start = _ist_local_to_utc(day, dtime.min)
    return start, start + timedelta(days=1)

def ist_day_window_for(day: date) -> Tuple[datetime, datetime]:
    start = _ist_local_to_utc(day, dtime.min)
    return start, start + timedelta(days=1)

def session_expiry(moment: Optional[datetime] = None) -> datetime:
    """23:59:59.999 IST of the day containing `moment`, as naive UTC."""
    return _ist_local_to_utc(ist_date(moment), SESSION_EXPIRY_TIME)

# ---------- LIVE MARKET ---------- #

def is_trading_day(d: date) -> bool:
    return d.weekday() < 5

def is_market_open(moment: Optional[datetime] = None) -> bool:
    now = to_ist(moment or utc_now())
    if not is_trading_day(now.date()):
        return False
    t = now.time().replace(tzinfo=None)
    return settings.MARKET_OPEN_TIME <= t < settings.MARKET_CLOSE_TIME
