#!/usr/bin/env python3
"""
FundedDesk – Challenge Service
Loads challenges in the caller's scope, runs the evaluator, persists
status changes and assembles the status view.
"""
from __future__ import annotations
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from challenges.credentials import parse_challenge_credentials
from challenges.evaluator import evaluate, evaluation_summary
from challenges.mock_metrics import build_mock_metrics
from core.enums import ChallengeStatus
from core.errors import ForbiddenError, NotFoundError
from core.market_session import ist_date, utc_now
from core.metrics import get_metrics
from core.models import (
    AuthenticatedSession, ChallengeEvaluation, ChallengeStatusSummary, ChallengeStatusView,
    EvaluationBatch, EvaluationResult,
)
from database.manager import DatabaseManager
from database.models import DbChallengeMetric, DbUserChallenge

logger = logging.getLogger("ChallengeService")

def _challenge_query():
    return select(DbUserChallenge).options(
        selectinload(DbUserChallenge.plan),
        selectinload(DbUserChallenge.metrics),
    )

def metric_to_dict(m: DbChallengeMetric) -> Dict[str, Any]:
    return {
        "id": m.id,
        "date": m.date,
        "daily_pnl": m.daily_pnl,
        "cumulative_pnl": m.cumulative_pnl,
        "trades_count": m.trades_count,
        "win_rate": m.win_rate,
        "max_drawdown": m.max_drawdown,
        "profit_target": m.profit_target,
        "violations": m.violations,
    }

def serialize_violations(result: EvaluationResult) -> str:
    return json.dumps([v.model_dump(mode="json") for v in result.violations])

def build_status_summary(plan, metrics: List) -> ChallengeStatusSummary:
    latest = metrics[-1] if metrics else None
    profit_target = latest.profit_target if latest else 0.0
    cumulative = latest.cumulative_pnl if latest else 0.0
    progress = min(100.0, cumulative / profit_target * 100) if profit_target else 0.0
    days_elapsed = len(metrics)
    return ChallengeStatusSummary(
        cumulative_pnl=cumulative,
        profit_target=profit_target,
        progress_pct=round(progress, 2),
        days_elapsed=days_elapsed,
        days_remaining=max(plan.duration_days - days_elapsed, 0),
        max_drawdown=max((m.max_drawdown for m in metrics), default=0.0),
        win_rate=latest.win_rate if latest else 0.0,
        total_trades=sum(m.trades_count for m in metrics),
    )

class ChallengeService:
    def __init__(self, db: DatabaseManager):
        self.db = db
        self.metrics = get_metrics()

    async def _load_one(self, session: AsyncSession, challenge_id: str) -> DbUserChallenge:
        challenge = (await session.execute(
            _challenge_query().where(DbUserChallenge.id == challenge_id)
        )).scalars().first()
        if challenge is None:
            raise NotFoundError("Challenge not found.")
        return challenge

    async def _load_active(self, session: AsyncSession, user_id: Optional[str]) -> List[DbUserChallenge]:
        q = _challenge_query().where(DbUserChallenge.status == ChallengeStatus.ACTIVE.value)
        if user_id:
            q = q.where(DbUserChallenge.user_id == user_id)
        return (await session.execute(q.order_by(DbUserChallenge.created_at))).scalars().all()

    async def load_for_request(
        self,
        session: AsyncSession,
        caller: AuthenticatedSession,
        challenge_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> List[DbUserChallenge]:
        """
        Traders see only their own challenges; admins may target any
        challenge, any user's active challenges, or every active challenge.
        """
        challenge_id = (challenge_id or "").strip() or None
        user_id = (user_id or "").strip() or None

        if caller.is_trader:
            if user_id and user_id != caller.user_id:
                raise ForbiddenError("Forbidden")
            if challenge_id:
                challenge = await self._load_one(session, challenge_id)
                if challenge.user_id != caller.user_id:
                    raise ForbiddenError("Forbidden")
                return [challenge]
            return await self._load_active(session, caller.user_id)

        if challenge_id:
            return [await self._load_one(session, challenge_id)]
        return await self._load_active(session, user_id)

    @staticmethod
    def _batch(evaluations: List[ChallengeEvaluation]) -> EvaluationBatch:
        passed = sum(1 for e in evaluations if e.evaluation.passed)
        failed = sum(1 for e in evaluations if e.evaluation.failed)
        return EvaluationBatch(
            evaluations=evaluations,
            summary={
                "total": len(evaluations),
                "passed": passed,
                "failed": failed,
                "still_active": len(evaluations) - passed - failed,
            },
        )

    async def evaluate_and_persist(
        self,
        caller: AuthenticatedSession,
        challenge_id: Optional[str] = None,
        user_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> EvaluationBatch:
        now = now or utc_now()
        evaluations: List[ChallengeEvaluation] = []
        async with self.db.get_session() as session:
            challenges = await self.load_for_request(session, caller, challenge_id, user_id)
            for challenge in challenges:
                previous = ChallengeStatus(challenge.status)
                result = evaluate(challenge, challenge.plan, challenge.metrics, now=now)
                changed = result.status != previous
                if changed:
                    challenge.status = result.status.value
                    if result.passed or result.failed:
                        challenge.end_date = now
                    if result.violations:
                        challenge.violation_count = len(result.violations)
                        challenge.violation_details = serialize_violations(result)
                    logger.info(f"⚖️ Challenge {challenge.id}: {previous.value} -> {result.status.value} ({result.reason})")
                self.metrics.log_evaluation(challenge.id, changed)
                evaluations.append(ChallengeEvaluation(
                    challenge_id=challenge.id,
                    user_id=challenge.user_id,
                    plan_name=challenge.plan.name,
                    previous_status=previous,
                    evaluation=result,
                    summary=evaluation_summary(result),
                    updated=changed,
                ))
            await self.db.safe_commit(session)
        return self._batch(evaluations)

    async def preview(
        self,
        caller: AuthenticatedSession,
        challenge_id: Optional[str] = None,
        user_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> EvaluationBatch:
        now = now or utc_now()
        async with self.db.get_session() as session:
            challenges = await self.load_for_request(session, caller, challenge_id, user_id)
            evaluations = []
            for challenge in challenges:
                result = evaluate(challenge, challenge.plan, challenge.metrics, now=now)
                evaluations.append(ChallengeEvaluation(
                    challenge_id=challenge.id,
                    user_id=challenge.user_id,
                    plan_name=challenge.plan.name,
                    previous_status=ChallengeStatus(challenge.status),
                    evaluation=result,
                    summary=evaluation_summary(result),
                    updated=False,
                ))
        return self._batch(evaluations)

    async def status_view(self, caller: AuthenticatedSession, challenge_id: str) -> ChallengeStatusView:
        async with self.db.get_session() as session:
            challenge = (await session.execute(
                _challenge_query()
                .options(selectinload(DbUserChallenge.payments))
                .where(DbUserChallenge.id == challenge_id)
            )).scalars().first()
            if challenge is None:
                raise NotFoundError("Challenge not found.")
            if caller.is_trader and challenge.user_id != caller.user_id:
                raise ForbiddenError("You are not authorized to view this challenge.")

            plan = challenge.plan
            metrics = list(challenge.metrics)
            if not metrics and challenge.start_date is not None:
                metrics = build_mock_metrics(plan, challenge.id, ist_date(challenge.start_date))
                session.add_all(metrics)
                await self.db.safe_commit(session)
                logger.info(f"🧪 Synthesized {len(metrics)} mock metric days for {challenge.id}")

            return ChallengeStatusView(
                challenge={
                    "id": challenge.id,
                    "status": challenge.status,
                    "start_date": challenge.start_date,
                    "end_date": challenge.end_date,
                },
                plan={
                    "id": plan.id,
                    "name": plan.name,
                    "level": plan.level,
                    "account_size": plan.account_size,
                    "profit_target_pct": plan.profit_target_pct,
                    "max_loss_pct": plan.max_loss_pct,
                    "daily_loss_pct": plan.daily_loss_pct,
                    "duration_days": plan.duration_days,
                    "profit_split": plan.profit_split,
                },
                payments=[
                    {
                        "id": p.id,
                        "amount": p.amount,
                        "mock_transaction_id": p.mock_transaction_id,
                        "paid_at": p.paid_at,
                    }
                    for p in challenge.payments
                ],
                metrics=[metric_to_dict(m) for m in metrics],
                summary=build_status_summary(plan, metrics),
                credentials=parse_challenge_credentials(challenge.demo_account_credentials),
            )
