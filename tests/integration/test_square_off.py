import asyncio

import pytest
from sqlalchemy import select

from core.enums import TradeStatus, TradeType, UserRole
from core.errors import BadRequestError, ForbiddenError, NotFoundError, ValidationFailedError
from core.models import AuthenticatedSession
from database.models import DbDailyTradeSummary, DbTrade, DbUserChallenge

def as_session(user) -> AuthenticatedSession:
    return AuthenticatedSession(user_id=user.id, email=user.email, role=UserRole(user.role), name=user.name)

@pytest.fixture
async def desk(seed, services, fake_bridge):
    trader = await seed.user()
    plan = await seed.plan()
    challenge = await seed.challenge(trader, plan)
    fake_bridge.prices.update({"INFY": 110.0, "TCS": 95.0})
    return trader, plan, challenge

@pytest.mark.asyncio
async def test_square_off_closes_at_quote(desk, seed, services, db):
    trader, _, challenge = desk
    trade = await seed.trade(challenge, "INFY", 10, 100.0)

    result = await services.square_off.square_off(trade.id, as_session(trader))

    assert result.trade.status == TradeStatus.CLOSED.value
    assert result.trade.exit_price == 110.0
    assert result.trade.pnl == 100.0
    assert result.trade.auto_squared_off is False
    assert result.summary.closed_trades == 1
    assert result.summary.realized_pnl == 100.0
    assert result.portfolio.capital_used == 0.0

    async with db.get_session() as session:
        stored = await session.get(DbUserChallenge, challenge.id)
        assert stored.current_pnl == 100.0

@pytest.mark.asyncio
async def test_second_square_off_is_rejected(desk, seed, services, db):
    """Closing twice fails and leaves the first pnl untouched."""
    trader, _, challenge = desk
    trade = await seed.trade(challenge, "TCS", 10, 100.0, trade_type=TradeType.SELL)

    first = await services.square_off.square_off(trade.id, as_session(trader))
    assert first.trade.pnl == 50.0

    with pytest.raises(BadRequestError, match="already closed"):
        await services.square_off.square_off(trade.id, as_session(trader))

    async with db.get_session() as session:
        stored = await session.get(DbTrade, trade.id)
        assert stored.pnl == 50.0
        assert stored.status == TradeStatus.CLOSED.value

@pytest.mark.asyncio
async def test_square_off_preconditions(desk, seed, services):
    trader, _, challenge = desk
    trade = await seed.trade(challenge, "INFY", 10, 100.0)
    orphan_quote = await seed.trade(challenge, "NOQUOTE", 1, 10.0)

    with pytest.raises(ValidationFailedError):
        await services.square_off.square_off("", as_session(trader))
    with pytest.raises(NotFoundError, match="Trade not found"):
        await services.square_off.square_off("missing", as_session(trader))

    stranger = await seed.user()
    with pytest.raises(ForbiddenError):
        await services.square_off.square_off(trade.id, as_session(stranger))

    with pytest.raises(NotFoundError, match="Market data unavailable"):
        await services.square_off.square_off(orphan_quote.id, as_session(trader))

@pytest.mark.asyncio
async def test_auto_square_off_closes_everything_once(seed, services, fake_bridge, db):
    fake_bridge.prices.update({"INFY": 105.0})
    plan = await seed.plan()
    a = await seed.challenge(await seed.user(), plan)
    b = await seed.challenge(await seed.user(), plan)
    await seed.trade(a, "INFY", 10, 100.0)
    await seed.trade(a, "SBIN", 5, 600.0, trade_type=TradeType.SELL)
    await seed.trade(b, "INFY", 20, 110.0, trade_type=TradeType.SELL)

    result = await services.square_off.auto_square_off_all()

    assert len(result.closed_trades) == 3
    assert all(t.auto_squared_off for t in result.closed_trades)
    by_scrip = {(t.challenge_id, t.scrip): t for t in result.closed_trades}
    assert by_scrip[(a.id, "INFY")].pnl == 50.0
    # no quote at all: closed flat at entry
    assert by_scrip[(a.id, "SBIN")].exit_price == 600.0
    assert by_scrip[(a.id, "SBIN")].pnl == 0.0
    assert by_scrip[(b.id, "INFY")].pnl == 100.0
    assert sorted(s.challenge_id for s in result.summaries) == sorted([a.id, b.id])
    assert all(s.open_trades == 0 for s in result.summaries)

    again = await services.square_off.auto_square_off_all()
    assert again.closed_trades == []
    assert again.summaries == []

    async with db.get_session() as session:
        open_left = (await session.execute(
            select(DbTrade).where(DbTrade.status == TradeStatus.OPEN.value)
        )).scalars().all()
        summaries = (await session.execute(select(DbDailyTradeSummary))).scalars().all()
        stored_b = await session.get(DbUserChallenge, b.id)
    assert open_left == []
    assert len(summaries) == 2
    assert stored_b.current_pnl == 100.0

@pytest.mark.asyncio
async def test_auto_square_off_single_challenge(seed, services, fake_bridge):
    fake_bridge.prices.update({"INFY": 100.0})
    plan = await seed.plan()
    a = await seed.challenge(await seed.user(), plan)
    b = await seed.challenge(await seed.user(), plan)
    await seed.trade(a, "INFY", 1, 100.0)
    await seed.trade(b, "INFY", 1, 100.0)

    result = await services.square_off.auto_square_off_all(challenge_id=a.id)

    assert [t.challenge_id for t in result.closed_trades] == [a.id]

@pytest.mark.asyncio
async def test_manual_close_during_auto_square_off_is_kept(desk, seed, services, fake_bridge, db):
    """A trade closed by its owner while auto square-off fetches prices is left alone."""
    trader, _, challenge = desk
    trade = await seed.trade(challenge, "INFY", 10, 100.0)

    fetching = asyncio.Event()
    release = asyncio.Event()
    live_price_map = fake_bridge.get_price_map
    held = []

    async def slow_price_map(items):
        items = list(items)
        if not held:
            held.append(True)
            fetching.set()
            await release.wait()
        return await live_price_map(items)

    fake_bridge.get_price_map = slow_price_map

    auto = asyncio.create_task(services.square_off.auto_square_off_all())
    await fetching.wait()
    manual = await services.square_off.square_off(trade.id, as_session(trader))
    fake_bridge.prices["INFY"] = 90.0
    release.set()
    result = await auto

    assert manual.trade.pnl == 100.0
    assert result.closed_trades == []
    async with db.get_session() as session:
        stored = await session.get(DbTrade, trade.id)
    assert stored.pnl == 100.0
    assert stored.exit_price == 110.0
    assert stored.auto_squared_off is False
