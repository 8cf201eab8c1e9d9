"""
FundedDesk – Per-challenge mutual exclusion.
Capital checks and the writes that depend on them run under one of these
locks, plus a row lock on the challenge where the database supports it.
"""
import asyncio
from contextlib import asynccontextmanager
from typing import Dict

from sqlalchemy import select

from database.models import DbTrade, DbUserChallenge


class ChallengeLockRegistry:
    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, challenge_id: str):
        lock = self._locks.setdefault(challenge_id, asyncio.Lock())
        self._waiters[challenge_id] = self._waiters.get(challenge_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[challenge_id] -= 1
            if self._waiters[challenge_id] == 0:
                # last holder out
                del self._waiters[challenge_id]
                self._locks.pop(challenge_id, None)

    def is_locked(self, challenge_id: str) -> bool:
        lock = self._locks.get(challenge_id)
        return bool(lock and lock.locked())

    def __len__(self) -> int:
        return len(self._locks)

_registry = ChallengeLockRegistry()

def get_lock_registry() -> ChallengeLockRegistry:
    return _registry

async def lock_challenge_row(session, challenge_id: str):
    """
    SELECT ... FOR UPDATE on the challenge, re-reading its columns. Dialects
    without row locks (SQLite) render a plain SELECT.
    """
    result = await session.execute(
        select(DbUserChallenge)
        .where(DbUserChallenge.id == challenge_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()

async def lock_trade_row(session, trade_id: str):
    """SELECT ... FOR UPDATE on one trade; its status is re-read, never trusted from the identity map."""
    result = await session.execute(
        select(DbTrade)
        .where(DbTrade.id == trade_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()
