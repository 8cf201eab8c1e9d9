#!/usr/bin/env python3
"""
FundedDesk – Configuration
"""
from __future__ import annotations
import pytz
from datetime import time as dtime
from typing import Dict, List, Any
from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic_core import MultiHostUrl

ANGELONE_API_ENDPOINTS: Dict[str, str] = {
    "login": "/rest/auth/angelbroking/user/v1/loginByPassword",
    "search_scrip": "/rest/secure/angelbroking/order/v1/searchScrip",
    "ltp": "/rest/secure/angelbroking/market/v1/getLtpData",
    "candles": "/rest/secure/angelbroking/historical/v1/getCandleData",
}

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Generic
    ENV: str = Field(default="production")
    PORT: int = Field(default=8000)
    IST: Any = pytz.timezone("Asia/Kolkata")

    # Database
    POSTGRES_SERVER: str = Field(default="db")
    POSTGRES_USER: str = Field(default="fundeddesk_user")
    POSTGRES_PASSWORD: str = Field(default="fundeddesk_password")
    POSTGRES_DB: str = Field(default="fundeddesk_db")
    POSTGRES_PORT: int = Field(default=5432)
    DATABASE_URL_OVERRIDE: str = Field(default="")

    @computed_field
    @property
    def DATABASE_URL(self) -> str:
        if self.DATABASE_URL_OVERRIDE:
            return self.DATABASE_URL_OVERRIDE
        return str(
            MultiHostUrl.build(
                scheme="postgresql+asyncpg",
                username=self.POSTGRES_USER,
                password=self.POSTGRES_PASSWORD,
                host=self.POSTGRES_SERVER,
                port=self.POSTGRES_PORT,
                path=self.POSTGRES_DB,
            )
        )

    # Auth
    SESSION_COOKIE_NAME: str = Field(default="auth-token")
    CRON_SECRET: str = Field(default="")

    # Broker (AngelOne SmartAPI). Used only to bootstrap the credentials row.
    ANGELONE_API_KEY: str = Field(default="")
    ANGELONE_CLIENT_CODE: str = Field(default="")
    ANGELONE_MPIN: str = Field(default="")
    ANGELONE_TOTP_SECRET: str = Field(default="")
    BROKER_BASE_URL: str = "https://apiconnect.angelone.in"
    BROKER_TIMEOUT_SEC: float = Field(default=5.0)
    TOKEN_CACHE_TTL_SEC: float = Field(default=0.0)

    # Challenge rules
    DAILY_TRADE_LIMIT: int = Field(default=100)
    MAX_CHALLENGE_LEVEL: int = Field(default=3)
    MOCK_METRIC_DAYS: int = Field(default=20)

    # Market data
    DEFAULT_EXCHANGE: str = Field(default="NSE")
    SEARCH_EXCHANGES: List[str] = ["NSE", "MCX", "NFO"]
    SEARCH_RESULT_LIMIT: int = Field(default=50)
    STREAM_POLL_INTERVAL_SEC: float = Field(default=1.0)
    STREAM_HEARTBEAT_SEC: float = Field(default=20.0)
    STREAM_BACKOFF_STEP_SEC: float = Field(default=0.5)
    STREAM_MAX_BACKOFF_SEC: float = Field(default=5.0)

    # Runtime
    PERSISTENT_DATA_DIR: str = "./data"

    # Timings (IST)
    MARKET_OPEN_TIME: dtime = dtime(9, 15)
    MARKET_CLOSE_TIME: dtime = dtime(15, 30)

settings = Settings()
IST = settings.IST
