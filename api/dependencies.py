from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from capital.locks import get_lock_registry
from challenges.service import ChallengeService
from database.manager import DatabaseManager, get_db_manager
from trading.execution import TradeExecutionService
from trading.live_price import LivePriceBridge
from trading.mock_quotes import MockQuoteService
from trading.quotes import QuoteBook
from trading.reports import TradingReportService
from trading.square_off import SquareOffService

@dataclass
class DeskServices:
    db: DatabaseManager
    bridge: Optional[LivePriceBridge]
    quotes: QuoteBook
    execution: TradeExecutionService
    square_off: SquareOffService
    reports: TradingReportService
    challenges: ChallengeService
    mock_quotes: MockQuoteService

# Global service container, wired in main.lifespan
services: Optional[DeskServices] = None

def get_services() -> DeskServices:
    if services is None:
        raise RuntimeError("Services not initialized")
    return services

def set_services(new_services: Optional[DeskServices]):
    global services
    services = new_services

async def get_db_session() -> AsyncSession:
    db = get_db_manager()
    async with db.get_session() as session:
        yield session

def build_services(db: DatabaseManager, bridge: Optional[LivePriceBridge]) -> DeskServices:
    quotes = QuoteBook(bridge)
    locks = get_lock_registry()
    return DeskServices(
        db=db,
        bridge=bridge,
        quotes=quotes,
        execution=TradeExecutionService(db, quotes, locks),
        square_off=SquareOffService(db, quotes, locks),
        reports=TradingReportService(db, quotes),
        challenges=ChallengeService(db),
        mock_quotes=MockQuoteService(db),
    )
