"""
FundedDesk – Level progression (1 -> 2 -> 3).
"""
from typing import Any, Dict, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from core.config import settings
from core.enums import ChallengeStatus
from core.errors import NotFoundError
from core.models import NextLevelInfo
from database.models import DbChallengePlan, DbUserChallenge

def plan_to_dict(plan: DbChallengePlan) -> Dict[str, Any]:
    return {
        "id": plan.id,
        "name": plan.name,
        "level": plan.level,
        "account_size": plan.account_size,
        "profit_target_pct": plan.profit_target_pct,
        "max_loss_pct": plan.max_loss_pct,
        "daily_loss_pct": plan.daily_loss_pct,
        "fee": plan.fee,
        "duration_days": plan.duration_days,
        "profit_split": plan.profit_split,
        "allowed_instruments": list(plan.allowed_instruments or []),
    }

async def get_progression(session: AsyncSession, user_id: str) -> NextLevelInfo:
    challenges: List[DbUserChallenge] = (await session.execute(
        select(DbUserChallenge)
        .where(DbUserChallenge.user_id == user_id)
        .options(selectinload(DbUserChallenge.plan))
        .order_by(DbUserChallenge.created_at.desc())
    )).scalars().all()

    passed_levels = [c.plan.level for c in challenges if c.status == ChallengeStatus.PASSED.value]
    highest = max(passed_levels, default=0)
    active = next((c for c in challenges if c.status == ChallengeStatus.ACTIVE.value), None)
    next_level = highest + 1

    if active is not None and active.plan.level >= next_level:
        return NextLevelInfo(
            can_progress=False,
            reason="You have an active challenge. Complete it before starting a new one.",
            highest_passed_level=highest,
            active_level=active.plan.level,
            unlocked_levels=list(range(1, highest + 1)),
        )

    if next_level > settings.MAX_CHALLENGE_LEVEL:
        return NextLevelInfo(
            can_progress=False,
            reason="Congratulations! You have completed all challenge levels.",
            highest_passed_level=highest,
            unlocked_levels=list(range(1, settings.MAX_CHALLENGE_LEVEL + 1)),
            max_level_reached=True,
        )

    next_plan = (await session.execute(
        select(DbChallengePlan)
        .where(DbChallengePlan.level == next_level, DbChallengePlan.is_active.is_(True))
        .order_by(DbChallengePlan.created_at)
    )).scalars().first()
    if next_plan is None:
        raise NotFoundError(f"Challenge plan for level {next_level} not found.")

    unlocked = list(range(1, next_level + 1))
    available = (await session.execute(
        select(DbChallengePlan)
        .where(DbChallengePlan.level.in_(unlocked), DbChallengePlan.is_active.is_(True))
        .order_by(DbChallengePlan.level)
    )).scalars().all()

    return NextLevelInfo(
        can_progress=True,
        reason="You are eligible to start the next level challenge.",
        highest_passed_level=highest,
        active_level=active.plan.level if active else None,
        next_level=next_level,
        next_plan=plan_to_dict(next_plan),
        unlocked_levels=unlocked,
        available_plans=[plan_to_dict(p) for p in available],
        challenge_history=[
            {
                "id": c.id,
                "level": c.plan.level,
                "status": c.status,
                "start_date": c.start_date,
                "end_date": c.end_date,
            }
            for c in challenges
        ],
    )
