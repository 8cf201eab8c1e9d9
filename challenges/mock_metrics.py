"""
FundedDesk – Mock daily metrics.
Synthesizes a plausible metric history for a started challenge that has
none yet, so the status view has something to chart.
"""
import random
from datetime import date, timedelta
from typing import List, Optional

from core.config import settings
from database.models import DbChallengeMetric

def _clamp(value: float, lo: float, hi: float) -> float:
    return min(max(value, lo), hi)

def build_mock_metrics(
    plan,
    challenge_id: str,
    start_day: date,
    days: Optional[int] = None,
    rng: Optional[random.Random] = None,
) -> List[DbChallengeMetric]:
    rng = rng or random.Random()
    days = days if days is not None else min(plan.duration_days, settings.MOCK_METRIC_DAYS)
    if days <= 0:
        return []

    target = plan.account_size * (plan.profit_target_pct / 100)
    max_loss = plan.account_size * (plan.max_loss_pct / 100)
    daily_base = target / (days * 1.25)

    rows: List[DbChallengeMetric] = []
    cumulative = 0.0
    running_drawdown = 0.0
    for i in range(days):
        daily = daily_base * (0.75 + rng.random() * 0.5)
        if i % 5 == 4:
            daily *= 0.5
        cumulative += daily
        running_drawdown = max(running_drawdown, max(0.0, max_loss * rng.random() * 0.3))

        rows.append(DbChallengeMetric(
            challenge_id=challenge_id,
            date=start_day + timedelta(days=i),
            daily_pnl=daily,
            cumulative_pnl=cumulative,
            trades_count=round(3 + rng.random() * 5),
            win_rate=_clamp(55 + rng.random() * 20, 50, 90),
            max_drawdown=_clamp(running_drawdown, 0, max_loss),
            profit_target=target,
            violations=0,
        ))
    return rows
