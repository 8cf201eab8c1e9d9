"""
FundedDesk – Request authentication.
Session issuance lives elsewhere; here the `auth-token` cookie is only
resolved against stored, unexpired sessions.
"""
import hmac
import logging
from typing import Optional

from fastapi import Depends, Security
from fastapi.security import APIKeyCookie, APIKeyHeader
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from api.dependencies import get_db_session
from core.config import settings
from core.enums import UserRole
from core.errors import ForbiddenError, UnauthorizedError
from core.market_session import utc_now
from core.models import AuthenticatedSession
from database.models import DbUserSession

logger = logging.getLogger("Security")

session_cookie = APIKeyCookie(name=settings.SESSION_COOKIE_NAME, auto_error=False)
cron_secret_header = APIKeyHeader(name="x-cron-secret", auto_error=False)

CRON_CALLER = "cron"

async def resolve_session(session: AsyncSession, token: Optional[str]) -> Optional[AuthenticatedSession]:
    if not token:
        return None
    row = (await session.execute(
        select(DbUserSession)
        .options(selectinload(DbUserSession.user))
        .where(DbUserSession.token == token, DbUserSession.expires_at > utc_now())
    )).scalars().first()
    if row is None or row.user is None:
        return None
    return AuthenticatedSession(
        user_id=row.user.id,
        email=row.user.email,
        role=UserRole(row.user.role),
        name=row.user.name,
    )

async def get_optional_session(
    token: Optional[str] = Security(session_cookie),
    db: AsyncSession = Depends(get_db_session),
) -> Optional[AuthenticatedSession]:
    return await resolve_session(db, token)

async def require_session(
    auth: Optional[AuthenticatedSession] = Depends(get_optional_session),
) -> AuthenticatedSession:
    if auth is None:
        raise UnauthorizedError("Unauthorized")
    return auth

async def require_trader(auth: AuthenticatedSession = Depends(require_session)) -> AuthenticatedSession:
    if not auth.is_trader:
        raise ForbiddenError("Trader role required")
    return auth

async def require_admin(auth: AuthenticatedSession = Depends(require_session)) -> AuthenticatedSession:
    if not auth.is_admin:
        raise ForbiddenError("Admin role required")
    return auth

async def require_trader_or_admin(auth: AuthenticatedSession = Depends(require_session)) -> AuthenticatedSession:
    if not (auth.is_trader or auth.is_admin):
        raise ForbiddenError("Forbidden")
    return auth

def cron_secret_matches(provided: Optional[str]) -> bool:
    """An unset CRON_SECRET never matches."""
    expected = settings.CRON_SECRET
    if not expected or not provided:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())

async def require_admin_or_cron(
    cron_secret: Optional[str] = Security(cron_secret_header),
    auth: Optional[AuthenticatedSession] = Depends(get_optional_session),
) -> str:
    """Returns the caller label used in logs: "cron" or the admin's user id."""
    if cron_secret_matches(cron_secret):
        return CRON_CALLER
    if auth is not None and auth.is_admin:
        return auth.user_id
    if cron_secret:
        logger.warning("⛔ Rejected auto square-off call with a bad cron secret")
    raise UnauthorizedError("Unauthorized")
