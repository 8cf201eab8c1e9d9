#!/usr/bin/env python3
"""
FundedDesk – Web API Gateway
- SERVES: trading, challenge and market REST API + LTP stream
- SINGLETON DB: Connects via shared pool.
- ERRORS: every failure leaves as {"success": false, "error": ...}
"""
import uvicorn
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder

# Core Imports
from core.config import settings
from core.errors import DeskError
from utils.logger import setup_logger
from api.dependencies import build_services, set_services
from api.responses import failure
from api.routes import router as trading_router, health_router
from api.challenge_routes import router as challenge_router
from api.market_routes import router as market_router
from database.manager import DatabaseManager
from trading.api_client import AngelOneClient
from trading.broker_session import BrokerSessionManager
from trading.live_price import LivePriceBridge

logger = setup_logger("API_Gateway")

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifecycle: Initializes the Singleton DB connection and the broker bridge.
    """
    logger.info("🚀 FundedDesk API Gateway Initializing...")

    db = DatabaseManager()
    await db.init_db()
    logger.info("✅ Database Pool Ready (Singleton)")

    client = AngelOneClient()
    bridge = LivePriceBridge(client, BrokerSessionManager(db, client))
    set_services(build_services(db, bridge))
    logger.info("✅ Live price bridge wired")

    yield

    logger.info("🛑 Web API Shutdown...")
    await bridge.close()
    set_services(None)
    await db.close()

app = FastAPI(
    title="FundedDesk",
    description="Simulated prop-trading challenge desk",
    version="1.0.0",
    lifespan=lifespan
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.exception_handler(DeskError)
async def desk_error_handler(request: Request, exc: DeskError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=jsonable_encoder(failure(exc.message, exc.details)),
    )

@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content=jsonable_encoder(failure("Invalid request payload", exc.errors())),
    )

@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"🔥 Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content=failure("Internal server error"))

# Routes
app.include_router(trading_router)
app.include_router(challenge_router)
app.include_router(market_router)
app.include_router(health_router)

@app.get("/")
async def root():
    return {
        "system": "FundedDesk",
        "status": "Online",
        "docs": "/docs"
    }

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=settings.PORT,
        log_level="info",
        reload=False # False for production stability
    )
