#!/usr/bin/env python3
"""
FundedDesk – Broker Session Manager
Keeps one AngelOne JWT per IST trading day in the database and logs in
again (MPIN + TOTP) when it is missing, past expiry, or rejected.
"""
import asyncio
import logging
import pyotp
from core.config import settings
from core.errors import BrokerAuthError
from core.market_session import utc_now, session_expiry
from core.metrics import get_metrics
from core.models import BrokerSession
from database.manager import DatabaseManager
from database.models import DbBrokerCredentials
from trading.api_client import AngelOneClient

logger = logging.getLogger("BrokerSession")

CREDENTIALS_ROW_ID = "singleton"

class BrokerSessionManager:
    def __init__(self, db_manager: DatabaseManager, client: AngelOneClient):
        self.db = db_manager
        self.client = client
        self.metrics = get_metrics()
        self._login_lock = asyncio.Lock()

    async def _load_or_bootstrap(self, session) -> DbBrokerCredentials:
        row = await session.get(DbBrokerCredentials, CREDENTIALS_ROW_ID)
        if row is not None:
            return row
        if not all((settings.ANGELONE_API_KEY, settings.ANGELONE_CLIENT_CODE,
                    settings.ANGELONE_MPIN, settings.ANGELONE_TOTP_SECRET)):
            raise BrokerAuthError("AngelOne credentials not found in database or environment variables")
        logger.info("📥 Bootstrapping broker credentials from environment")
        row = DbBrokerCredentials(
            id=CREDENTIALS_ROW_ID,
            api_key=settings.ANGELONE_API_KEY,
            client_code=settings.ANGELONE_CLIENT_CODE,
            mpin=settings.ANGELONE_MPIN,
            totp_secret=settings.ANGELONE_TOTP_SECRET,
        )
        session.add(row)
        await self.db.safe_commit(session)
        return row

    @staticmethod
    def _needs_new_token(row: DbBrokerCredentials) -> bool:
        return not row.jwt_token or not row.token_expires_at or utc_now() >= row.token_expires_at

    @staticmethod
    def _to_session(row: DbBrokerCredentials) -> BrokerSession:
        return BrokerSession(
            api_key=row.api_key,
            client_code=row.client_code,
            jwt_token=row.jwt_token,
            refresh_token=row.refresh_token,
            feed_token=row.feed_token,
            expires_at=row.token_expires_at,
        )

    async def get_session(self, force_refresh: bool = False) -> BrokerSession:
        """
        Returns a usable broker session, logging in first if needed.
        Raises BrokerAuthError when no credentials exist or login fails.
        """
        async with self._login_lock:
            async with self.db.get_session() as session:
                row = await self._load_or_bootstrap(session)
                if not force_refresh and not self._needs_new_token(row):
                    return self._to_session(row)

                logger.info("🔑 Generating new AngelOne session token...")
                totp = pyotp.TOTP(row.totp_secret).now()
                tokens = await self.client.login(row.api_key, row.client_code, row.mpin, totp)

                now = utc_now()
                row.jwt_token = tokens["jwtToken"]
                row.refresh_token = tokens.get("refreshToken")
                row.feed_token = tokens.get("feedToken")
                row.token_generated_at = now
                row.token_expires_at = session_expiry(now)
                await self.db.safe_commit(session)

                self.metrics.log_session_refresh()
                logger.info("✅ AngelOne session token generated")
                return self._to_session(row)
