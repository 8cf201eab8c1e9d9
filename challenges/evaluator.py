#!/usr/bin/env python3
"""
FundedDesk – Challenge Evaluator
Pure rule engine: (challenge, plan, daily metrics, now) -> PASSED / FAILED / ACTIVE.

Rules run in a fixed order and are folded left. The first rule that returns
a verdict decides status and reason. Once any failure rule has fired, the
remaining failure rules are skipped; a PASS does not stop them, they only
add violations.
"""
from __future__ import annotations
import math
from dataclasses import dataclass, field
from datetime import datetime, time as dtime
from typing import Callable, List, Optional, Sequence, Tuple

from core.config import settings
from core.enums import ChallengeStatus, Verdict, ViolationSeverity, ViolationType
from core.market_session import utc_now
from core.models import EvaluationResult, ViolationDetail

DEFAULT_REASON = "Challenge is still active and within all limits"

def _pct(value: float) -> str:
    return f"{value:g}"

def _fmt_day(day) -> str:
    return day.strftime("%d %b %Y")

def _as_datetime(day) -> datetime:
    if isinstance(day, datetime):
        return day
    return datetime.combine(day, dtime.min)

@dataclass
class RuleContext:
    challenge: object
    plan: object
    metrics: Sequence
    now: datetime

    @property
    def cumulative_pnl(self) -> float:
        return self.metrics[-1].cumulative_pnl if self.metrics else 0.0

    @property
    def profit_target_amount(self) -> float:
        return self.plan.account_size * (self.plan.profit_target_pct / 100)

    @property
    def max_loss_amount(self) -> float:
        return self.plan.account_size * (self.plan.max_loss_pct / 100)

    @property
    def daily_loss_limit(self) -> float:
        return self.plan.account_size * (self.plan.daily_loss_pct / 100)

@dataclass
class RuleOutcome:
    violations: List[ViolationDetail] = field(default_factory=list)
    verdict: Optional[Verdict] = None
    reason: Optional[str] = None

Rule = Callable[[RuleContext], Optional[RuleOutcome]]

# ---------- RULES ---------- #

def check_duration(ctx: RuleContext) -> Optional[RuleOutcome]:
    start = ctx.challenge.start_date
    if start is None:
        return None
    days_elapsed = math.floor((ctx.now - start).total_seconds() / 86400)
    if days_elapsed <= ctx.plan.duration_days:
        return None

    violation = ViolationDetail(
        type=ViolationType.DURATION_EXPIRED,
        date=ctx.now,
        description=(
            f"Challenge duration of {ctx.plan.duration_days} days has expired "
            f"({days_elapsed} days elapsed)"
        ),
        severity=ViolationSeverity.CRITICAL,
    )
    if ctx.cumulative_pnl >= ctx.profit_target_amount:
        return RuleOutcome(
            [violation], Verdict.PASS,
            f"Profit target of {_pct(ctx.plan.profit_target_pct)}% achieved before duration expired",
        )
    return RuleOutcome(
        [violation], Verdict.FAIL,
        f"Duration of {ctx.plan.duration_days} days expired without reaching profit target",
    )

def check_max_drawdown(ctx: RuleContext) -> Optional[RuleOutcome]:
    drawdown = ctx.challenge.max_drawdown or 0.0
    limit = ctx.max_loss_amount
    if drawdown <= limit:
        return None
    return RuleOutcome(
        [ViolationDetail(
            type=ViolationType.MAX_LOSS,
            date=ctx.now,
            description=(
                f"Maximum drawdown of {drawdown:.2f} exceeded the "
                f"{_pct(ctx.plan.max_loss_pct)}% limit ({limit:.2f})"
            ),
            severity=ViolationSeverity.CRITICAL,
        )],
        Verdict.FAIL,
        f"Maximum loss limit of {_pct(ctx.plan.max_loss_pct)}% exceeded",
    )

def check_daily_loss(ctx: RuleContext) -> Optional[RuleOutcome]:
    limit = ctx.daily_loss_limit
    breaches = [m for m in ctx.metrics if m.daily_pnl < 0 and abs(m.daily_pnl) > limit]
    if not breaches:
        return None
    violations = [
        ViolationDetail(
            type=ViolationType.DAILY_LOSS,
            date=_as_datetime(m.date),
            description=(
                f"Daily loss of {abs(m.daily_pnl):.2f} exceeded the "
                f"{_pct(ctx.plan.daily_loss_pct)}% daily limit ({limit:.2f})"
            ),
            severity=ViolationSeverity.CRITICAL,
        )
        for m in breaches
    ]
    first_day = breaches[0].date
    return RuleOutcome(
        violations, Verdict.FAIL,
        f"Daily loss limit of {_pct(ctx.plan.daily_loss_pct)}% exceeded on {_fmt_day(first_day)}",
    )

def check_profit_target(ctx: RuleContext) -> Optional[RuleOutcome]:
    target = ctx.profit_target_amount
    if ctx.cumulative_pnl < target:
        return None
    return RuleOutcome(
        [], Verdict.PASS,
        f"Profit target of {_pct(ctx.plan.profit_target_pct)}% achieved "
        f"({ctx.cumulative_pnl:.2f} / {target:.2f})",
    )

def check_cumulative_loss(ctx: RuleContext) -> Optional[RuleOutcome]:
    limit = ctx.max_loss_amount
    if ctx.cumulative_pnl >= -limit:
        return None
    return RuleOutcome(
        [ViolationDetail(
            type=ViolationType.MAX_LOSS,
            date=ctx.now,
            description=(
                f"Cumulative loss of {abs(ctx.cumulative_pnl):.2f} exceeded the "
                f"{_pct(ctx.plan.max_loss_pct)}% limit ({limit:.2f})"
            ),
            severity=ViolationSeverity.CRITICAL,
        )],
        Verdict.FAIL,
        f"Cumulative loss exceeded {_pct(ctx.plan.max_loss_pct)}% maximum loss limit",
    )

# (rule, is_failure_rule)
RULES: List[Tuple[Rule, bool]] = [
    (check_duration, False),
    (check_max_drawdown, True),
    (check_daily_loss, True),
    (check_profit_target, False),
    (check_cumulative_loss, True),
]

# ---------- ENTRY POINTS ---------- #

def evaluate(challenge, plan, metrics: Sequence, now: Optional[datetime] = None) -> EvaluationResult:
    """
    `challenge`, `plan` and `metrics` are read by attribute (ORM rows work).
    `metrics` must be ordered by date ascending.
    """
    status = ChallengeStatus(challenge.status)
    if status != ChallengeStatus.ACTIVE:
        return EvaluationResult(
            challenge_id=challenge.id,
            status=status,
            passed=status == ChallengeStatus.PASSED,
            failed=status == ChallengeStatus.FAILED,
            reason=f"Challenge is {status.value}",
            violations=[],
            profit_target_achieved=False,
            progress_pct=0.0,
            eligible_for_next_level=status == ChallengeStatus.PASSED,
        )

    ctx = RuleContext(challenge=challenge, plan=plan, metrics=list(metrics), now=now or utc_now())

    verdict: Optional[Verdict] = None
    reason: Optional[str] = None
    failure_fired = False
    violations: List[ViolationDetail] = []
    for rule, is_failure_rule in RULES:
        if is_failure_rule and failure_fired:
            continue
        outcome = rule(ctx)
        if outcome is None:
            continue
        violations.extend(outcome.violations)
        if outcome.verdict == Verdict.FAIL:
            failure_fired = True
        if verdict is None and outcome.verdict is not None:
            verdict, reason = outcome.verdict, outcome.reason

    target = ctx.profit_target_amount
    progress = (ctx.cumulative_pnl / target * 100) if target else 0.0
    passed = verdict == Verdict.PASS
    failed = verdict == Verdict.FAIL
    if passed:
        final = ChallengeStatus.PASSED
    elif failed:
        final = ChallengeStatus.FAILED
    else:
        final = ChallengeStatus.ACTIVE

    return EvaluationResult(
        challenge_id=challenge.id,
        status=final,
        passed=passed,
        failed=failed,
        reason=reason or DEFAULT_REASON,
        violations=violations,
        profit_target_achieved=ctx.cumulative_pnl >= target,
        progress_pct=min(100.0, progress),
        eligible_for_next_level=passed and plan.level < settings.MAX_CHALLENGE_LEVEL,
    )

def evaluation_summary(result: EvaluationResult) -> str:
    if result.passed:
        return f"🎉 Congratulations! {result.reason}"
    if result.failed:
        return f"❌ Challenge Failed: {result.reason}"
    return f"⏳ Challenge Active: {result.reason}"
