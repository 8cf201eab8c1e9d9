import json
from datetime import date

import pytest
from sqlalchemy import select

from challenges.progression import get_progression
from core.enums import ChallengeStatus, UserRole
from core.errors import ForbiddenError, NotFoundError
from core.market_session import ist_date
from core.models import AuthenticatedSession
from database.models import DbChallengeMetric, DbUserChallenge

def as_session(user) -> AuthenticatedSession:
    return AuthenticatedSession(user_id=user.id, email=user.email, role=UserRole(user.role), name=user.name)

# ---------- EVALUATE ---------- #

@pytest.mark.asyncio
async def test_evaluate_persists_status_change(seed, services, db):
    trader = await seed.user()
    plan = await seed.plan()
    challenge = await seed.challenge(trader, plan)
    await seed.metric(challenge, date(2026, 1, 5), -6_000.0, -6_000.0)

    batch = await services.challenges.evaluate_and_persist(as_session(trader))

    assert batch.summary == {"total": 1, "passed": 0, "failed": 1, "still_active": 0}
    item = batch.evaluations[0]
    assert item.updated is True
    assert item.previous_status == ChallengeStatus.ACTIVE
    assert item.summary.startswith("❌")

    async with db.get_session() as session:
        stored = await session.get(DbUserChallenge, challenge.id)
    assert stored.status == ChallengeStatus.FAILED.value
    assert stored.end_date is not None
    assert stored.violation_count == 1
    details = json.loads(stored.violation_details)
    assert details[0]["type"] == "DAILY_LOSS"
    assert details[0]["severity"] == "CRITICAL"

    # already terminal: not picked up again
    again = await services.challenges.evaluate_and_persist(as_session(trader))
    assert again.evaluations == []

@pytest.mark.asyncio
async def test_evaluate_leaves_unchanged_challenge_alone(seed, services, db):
    trader = await seed.user()
    challenge = await seed.challenge(trader, await seed.plan())
    await seed.metric(challenge, date(2026, 1, 5), 1_000.0, 1_000.0)

    batch = await services.challenges.evaluate_and_persist(as_session(trader))

    assert batch.summary["still_active"] == 1
    assert batch.evaluations[0].updated is False
    async with db.get_session() as session:
        stored = await session.get(DbUserChallenge, challenge.id)
    assert stored.status == ChallengeStatus.ACTIVE.value
    assert stored.end_date is None
    assert stored.violation_details is None

@pytest.mark.asyncio
async def test_preview_does_not_persist(seed, services, db):
    trader = await seed.user()
    challenge = await seed.challenge(trader, await seed.plan())
    await seed.metric(challenge, date(2026, 1, 5), 11_000.0, 11_000.0)

    batch = await services.challenges.preview(as_session(trader), challenge_id=challenge.id)

    assert batch.evaluations[0].evaluation.status == ChallengeStatus.PASSED
    assert batch.summary["passed"] == 1
    async with db.get_session() as session:
        stored = await session.get(DbUserChallenge, challenge.id)
    assert stored.status == ChallengeStatus.ACTIVE.value

@pytest.mark.asyncio
async def test_evaluate_scoping(seed, services):
    plan = await seed.plan()
    alice = await seed.user()
    bob = await seed.user()
    admin = await seed.user(role=UserRole.ADMIN)
    a = await seed.challenge(alice, plan)
    await seed.challenge(bob, plan)

    with pytest.raises(ForbiddenError):
        await services.challenges.preview(as_session(alice), user_id=bob.id)
    with pytest.raises(ForbiddenError):
        await services.challenges.preview(as_session(bob), challenge_id=a.id)
    with pytest.raises(NotFoundError):
        await services.challenges.preview(as_session(alice), challenge_id="missing")

    mine = await services.challenges.preview(as_session(alice))
    assert [e.challenge_id for e in mine.evaluations] == [a.id]

    everyone = await services.challenges.preview(as_session(admin))
    assert everyone.summary["total"] == 2
    only_bob = await services.challenges.preview(as_session(admin), user_id=bob.id)
    assert [e.user_id for e in only_bob.evaluations] == [bob.id]

# ---------- STATUS ---------- #

@pytest.mark.asyncio
async def test_status_view_synthesizes_metrics_once(seed, services, db):
    trader = await seed.user()
    plan = await seed.plan(duration_days=30)
    challenge = await seed.challenge(
        trader, plan, credentials='{"username": "demo01", "password": "pw"}'
    )
    await seed.payment(challenge)

    view = await services.challenges.status_view(as_session(trader), challenge.id)

    assert len(view.metrics) == 20
    assert view.metrics[0]["date"] == ist_date(challenge.start_date)
    assert view.summary.days_elapsed == 20
    assert view.summary.days_remaining == 10
    assert view.summary.profit_target == 10_000.0
    assert view.credentials.username == "demo01"
    assert view.plan["level"] == 1
    assert len(view.payments) == 1
    assert view.challenge["status"] == ChallengeStatus.ACTIVE.value

    again = await services.challenges.status_view(as_session(trader), challenge.id)
    assert [m["date"] for m in again.metrics] == [m["date"] for m in view.metrics]
    async with db.get_session() as session:
        count = len((await session.execute(
            select(DbChallengeMetric).where(DbChallengeMetric.challenge_id == challenge.id)
        )).scalars().all())
    assert count == 20

@pytest.mark.asyncio
async def test_status_view_access(seed, services):
    plan = await seed.plan()
    owner = await seed.user()
    challenge = await seed.challenge(owner, plan)
    await seed.metric(challenge, date(2026, 1, 5), 500.0, 500.0)

    with pytest.raises(ForbiddenError, match="not authorized"):
        await services.challenges.status_view(as_session(await seed.user()), challenge.id)
    with pytest.raises(NotFoundError):
        await services.challenges.status_view(as_session(owner), "missing")

    admin_view = await services.challenges.status_view(as_session(await seed.user(role=UserRole.ADMIN)), challenge.id)
    assert len(admin_view.metrics) == 1
    assert admin_view.credentials is None

# ---------- PROGRESSION ---------- #

@pytest.mark.asyncio
async def test_progression_after_passing_level_one(seed, db):
    trader = await seed.user()
    level1 = await seed.plan(level=1)
    level2 = await seed.plan(level=2, account_size=200_000.0)
    await seed.plan(level=3, account_size=500_000.0)
    await seed.challenge(trader, level1, status=ChallengeStatus.PASSED)

    async with db.get_session() as session:
        info = await get_progression(session, trader.id)

    assert info.can_progress is True
    assert info.highest_passed_level == 1
    assert info.next_level == 2
    assert info.next_plan["id"] == level2.id
    assert info.unlocked_levels == [1, 2]
    assert sorted(p["level"] for p in info.available_plans) == [1, 2]
    assert len(info.challenge_history) == 1

@pytest.mark.asyncio
async def test_progression_blocked_by_active_challenge(seed, db):
    trader = await seed.user()
    level1 = await seed.plan(level=1)
    await seed.challenge(trader, level1)

    async with db.get_session() as session:
        info = await get_progression(session, trader.id)

    assert info.can_progress is False
    assert info.active_level == 1
    assert "active challenge" in info.reason

@pytest.mark.asyncio
async def test_progression_after_final_level(seed, db):
    trader = await seed.user()
    top = await seed.plan(level=3)
    await seed.challenge(trader, top, status=ChallengeStatus.PASSED)

    async with db.get_session() as session:
        info = await get_progression(session, trader.id)

    assert info.can_progress is False
    assert info.max_level_reached is True
    assert info.unlocked_levels == [1, 2, 3]

@pytest.mark.asyncio
async def test_progression_missing_plan(seed, db):
    trader = await seed.user()
    await seed.challenge(trader, await seed.plan(level=1), status=ChallengeStatus.PASSED)

    async with db.get_session() as session:
        with pytest.raises(NotFoundError, match="level 2"):
            await get_progression(session, trader.id)
