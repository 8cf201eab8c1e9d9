"""
FundedDesk – LTP Server-Sent Events stream.
Polls the broker once per interval and yields SSE frames until the
client goes away.
"""
import asyncio
import json
import logging
import time
from typing import AsyncIterator, Awaitable, Callable, Optional

from core.config import settings
from trading.live_price import LivePriceBridge

logger = logging.getLogger("PriceStream")

HEARTBEAT_FRAME = ": heartbeat\n\n"

def format_tick(ltp: float, at_ms: Optional[int] = None) -> str:
    payload = {"ltp": ltp, "time": at_ms if at_ms is not None else int(time.time() * 1000)}
    return f"data: {json.dumps(payload)}\n\n"

def backoff_delay(consecutive_errors: int) -> float:
    return min(consecutive_errors * settings.STREAM_BACKOFF_STEP_SEC, settings.STREAM_MAX_BACKOFF_SEC)

async def stream_ltp(
    bridge: LivePriceBridge,
    exchange: str,
    trading_symbol: str,
    symbol_token: str,
    is_disconnected: Callable[[], Awaitable[bool]],
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> AsyncIterator[str]:
    consecutive_errors = 0
    last_heartbeat = clock()
    logger.info(f"📶 LTP stream opened: {exchange}:{trading_symbol}")
    try:
        while not await is_disconnected():
            poll_start = clock()
            try:
                ltp = await bridge.poll_ltp(exchange, trading_symbol, symbol_token)
            except Exception as e:
                logger.error(f"SSE poll error for {exchange}:{trading_symbol}: {e}")
                ltp = None

            if ltp is not None:
                consecutive_errors = 0
                yield format_tick(ltp)
            else:
                consecutive_errors += 1

            if clock() - last_heartbeat >= settings.STREAM_HEARTBEAT_SEC:
                last_heartbeat = clock()
                yield HEARTBEAT_FRAME

            elapsed = clock() - poll_start
            await sleep(max(0.0, settings.STREAM_POLL_INTERVAL_SEC - elapsed + backoff_delay(consecutive_errors)))
    finally:
        logger.info(f"📴 LTP stream closed: {exchange}:{trading_symbol}")
