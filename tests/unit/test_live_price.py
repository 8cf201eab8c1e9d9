import pytest
from unittest.mock import AsyncMock, MagicMock

from core.errors import BrokerAuthError, BrokerUnavailableError
from core.models import BrokerSession, TokenInfo
from trading.api_client import is_auth_stale
from trading.live_price import LivePriceBridge, pick_instrument, to_search_term
from trading.token_cache import InstrumentTokenCache

# ------------------------------------------------------------------------
# ASYNC MOCK INFRASTRUCTURE
# ------------------------------------------------------------------------

SESSION = BrokerSession(api_key="k", client_code="c", jwt_token="jwt")

@pytest.fixture
def mock_client():
    client = MagicMock()
    client.search_scrip = AsyncMock(return_value=[
        {"tradingsymbol": "RELIANCE-BL", "symboltoken": "111", "name": "RELIANCE"},
        {"tradingsymbol": "RELIANCE-EQ", "symboltoken": "2885", "name": "RELIANCE INDUSTRIES"},
    ])
    client.get_ltp = AsyncMock(return_value=2950.5)
    client.close = AsyncMock()
    return client

@pytest.fixture
def mock_sessions():
    sessions = MagicMock()
    sessions.get_session = AsyncMock(return_value=SESSION)
    return sessions

@pytest.fixture
def bridge(mock_client, mock_sessions):
    return LivePriceBridge(mock_client, mock_sessions, InstrumentTokenCache())

# ------------------------------------------------------------------------
# TESTS
# ------------------------------------------------------------------------

@pytest.mark.parametrize("scrip,term", [
    ("RELIANCE-EQ", "RELIANCE"),
    ("GOLD1!", "GOLD"),
    ("NIFTY24", "NIFTY"),
    ("TCS", "TCS"),
    ("123", "123"),
])
def test_to_search_term(scrip, term):
    assert to_search_term(scrip) == term

def test_pick_instrument_prefers_eq_on_nse():
    rows = [{"tradingsymbol": "X-BE"}, {"tradingsymbol": "X-EQ"}]
    assert pick_instrument(rows, "NSE")["tradingsymbol"] == "X-EQ"
    assert pick_instrument(rows, "MCX")["tradingsymbol"] == "X-BE"
    assert pick_instrument([], "NSE") is None

def test_is_auth_stale():
    assert is_auth_stale(401, {})
    assert is_auth_stale(403, {})
    assert is_auth_stale(200, {"errorcode": "AG8001"})
    assert is_auth_stale(200, {"errorCode": "AG8001"})
    assert not is_auth_stale(200, {"status": True})

@pytest.mark.asyncio
async def test_resolve_token_caches_result(bridge, mock_client):
    first = await bridge.resolve_token("RELIANCE-EQ", "NSE")
    second = await bridge.resolve_token("RELIANCE-EQ", "NSE")

    assert first.symbol_token == "2885"
    assert first.trading_symbol == "RELIANCE-EQ"
    assert second == first
    mock_client.search_scrip.assert_awaited_once_with(SESSION, "NSE", "RELIANCE")

@pytest.mark.asyncio
async def test_resolve_token_force_refresh_bypasses_cache(bridge, mock_client):
    await bridge.resolve_token("RELIANCE-EQ", "NSE")
    await bridge.resolve_token("RELIANCE-EQ", "NSE", force_refresh=True)
    assert mock_client.search_scrip.await_count == 2

@pytest.mark.asyncio
async def test_live_price_refreshes_session_once_on_stale_auth(bridge, mock_client, mock_sessions):
    mock_client.get_ltp.side_effect = [BrokerAuthError("stale"), 2951.0]

    live = await bridge.get_live_price("RELIANCE-EQ", "NSE")

    assert live.ltp == 2951.0
    assert mock_client.get_ltp.await_count == 2
    mock_sessions.get_session.assert_any_await(force_refresh=True)

@pytest.mark.asyncio
async def test_live_price_failure_drops_cached_token(bridge, mock_client):
    mock_client.get_ltp.side_effect = BrokerUnavailableError("timeout")

    live = await bridge.get_live_price("RELIANCE-EQ", "NSE")

    assert live is None
    assert InstrumentTokenCache.key("RELIANCE-EQ", "NSE") not in bridge.tokens

@pytest.mark.asyncio
async def test_live_price_none_when_no_instrument(bridge, mock_client):
    mock_client.search_scrip.return_value = []
    assert await bridge.get_live_price("UNKNOWN", "NSE") is None
    mock_client.get_ltp.assert_not_awaited()

@pytest.mark.asyncio
async def test_live_price_none_when_session_unavailable(bridge, mock_sessions):
    mock_sessions.get_session.side_effect = BrokerAuthError("no credentials")
    assert await bridge.get_live_price("RELIANCE-EQ", "NSE") is None

@pytest.mark.asyncio
async def test_price_map_uses_fallbacks(bridge, mock_client):
    async def ltp(session, exchange, trading_symbol, symbol_token):
        return None if trading_symbol == "TCS-EQ" else 100.0

    async def rows(session, exchange, term):
        return [{"tradingsymbol": f"{term}-EQ", "symboltoken": "9", "name": term}]

    mock_client.search_scrip.side_effect = rows
    mock_client.get_ltp.side_effect = ltp

    prices = await bridge.get_price_map([
        ("INFY", "NSE", 90.0),
        ("TCS", "NSE", 3500.0),
        ("WIPRO", "NSE", None),
        ("INFY", "NSE", 1.0),
    ])

    assert prices == {"INFY": 100.0, "TCS": 3500.0, "WIPRO": 100.0}

@pytest.mark.asyncio
async def test_search_instruments_dedupes_and_skips_short_terms(bridge, mock_client):
    mock_client.search_scrip.return_value = [
        {"tradingsymbol": "SBIN-EQ", "symboltoken": "3045", "name": "STATE BANK"},
        {"tradingsymbol": "SBIN-EQ", "symboltoken": "3045", "name": "STATE BANK"},
    ]

    assert await bridge.search_instruments("S") == []
    matches = await bridge.search_instruments("SBIN")

    # one per configured exchange after de-duplication
    assert [m.exchange for m in matches] == ["NSE", "MCX", "NFO"]
    assert all(m.symbol_token == "3045" for m in matches)

@pytest.mark.asyncio
async def test_poll_ltp_refreshes_without_retry(bridge, mock_client, mock_sessions):
    mock_client.get_ltp.side_effect = BrokerAuthError("stale")

    assert await bridge.poll_ltp("NSE", "SBIN-EQ", "3045") is None
    mock_client.get_ltp.assert_awaited_once()
    mock_sessions.get_session.assert_any_await(force_refresh=True)

def test_token_cache_ttl_with_injected_clock():
    now = [1000.0]
    cache = InstrumentTokenCache(ttl_sec=60, clock=lambda: now[0])
    info = TokenInfo(symbol_token="1", trading_symbol="A-EQ", scrip_full_name="A", exchange="NSE")

    cache.put("a", "NSE", info)
    assert "NSE:A" in cache
    assert cache.get("A", "NSE") == info

    now[0] += 61
    assert cache.get("A", "NSE") is None
    assert len(cache) == 0

def test_token_cache_without_ttl_never_expires():
    now = [0.0]
    cache = InstrumentTokenCache(clock=lambda: now[0])
    info = TokenInfo(symbol_token="1", trading_symbol="A-EQ", scrip_full_name="A", exchange="NSE")
    cache.put("A", "NSE", info)
    now[0] += 10 ** 9
    assert cache.get("A", "NSE") == info
    cache.drop("A", "NSE")
    assert cache.get("A", "NSE") is None

@pytest.mark.asyncio
async def test_candles_retry_once_after_session_refresh(bridge, mock_client, mock_sessions):
    candle = ["2026-01-05T09:15:00+05:30", 100.0, 101.0, 99.5, 100.5, 1200]
    mock_client.get_candles = AsyncMock(side_effect=[BrokerAuthError("stale"), [candle]])

    candles = await bridge.get_candles("NSE", "3045", "ONE_DAY", "2026-01-01 09:15", "2026-01-05 15:30")

    assert candles == [candle]
    assert mock_client.get_candles.await_count == 2
    mock_sessions.get_session.assert_any_await(force_refresh=True)

@pytest.mark.asyncio
async def test_candles_second_auth_failure_propagates(bridge, mock_client):
    mock_client.get_candles = AsyncMock(side_effect=BrokerAuthError("still stale"))

    with pytest.raises(BrokerAuthError):
        await bridge.get_candles("NSE", "3045", "ONE_DAY")
    assert mock_client.get_candles.await_count == 2

@pytest.mark.asyncio
async def test_candles_transport_error_is_not_retried(bridge, mock_client, mock_sessions):
    mock_client.get_candles = AsyncMock(side_effect=BrokerUnavailableError("timeout"))

    with pytest.raises(BrokerUnavailableError):
        await bridge.get_candles("NSE", "3045", "ONE_DAY")
    mock_client.get_candles.assert_awaited_once()
    mock_sessions.get_session.assert_awaited_once_with()
