"""
FundedDesk – Challenge API Routes
- Evaluate (persisting POST, preview GET)
- Status view for one challenge
- Level progression
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from api.dependencies import DeskServices, get_db_session, get_services
from api.responses import ok
from api.security import require_trader, require_trader_or_admin
from challenges.progression import get_progression
from core.errors import BadRequestError
from core.models import AuthenticatedSession

logger = logging.getLogger("Challenge_Routes")
router = APIRouter(prefix="/api/challenges", tags=["Challenges"])

NO_ACTIVE_MESSAGE = "No active challenges found to evaluate."

class EvaluateRequest(BaseModel):
    challenge_id: Optional[str] = None
    user_id: Optional[str] = None

@router.post("/evaluate")
async def evaluate_challenges(
    body: Optional[EvaluateRequest] = None,
    auth: AuthenticatedSession = Depends(require_trader_or_admin),
    svc: DeskServices = Depends(get_services),
):
    body = body or EvaluateRequest()
    batch = await svc.challenges.evaluate_and_persist(auth, body.challenge_id, body.user_id)
    if not batch.evaluations:
        return ok(batch.model_dump(), message=NO_ACTIVE_MESSAGE)
    return ok(batch.model_dump(), message=f"Evaluated {len(batch.evaluations)} challenge(s)")

@router.get("/evaluate")
async def preview_evaluation(
    challenge_id: Optional[str] = None,
    user_id: Optional[str] = None,
    auth: AuthenticatedSession = Depends(require_trader_or_admin),
    svc: DeskServices = Depends(get_services),
):
    batch = await svc.challenges.preview(auth, challenge_id, user_id)
    if not batch.evaluations:
        return ok(batch.model_dump(), message=NO_ACTIVE_MESSAGE)
    return ok(batch.model_dump())

@router.get("/status/{challenge_id}")
async def challenge_status(
    challenge_id: str,
    auth: AuthenticatedSession = Depends(require_trader_or_admin),
    svc: DeskServices = Depends(get_services),
):
    view = await svc.challenges.status_view(auth, challenge_id)
    return ok(view.model_dump())

@router.get("/next-level")
async def next_level(
    trader: AuthenticatedSession = Depends(require_trader),
    session=Depends(get_db_session),
):
    info = await get_progression(session, trader.user_id)
    return ok(info.model_dump())

@router.post("/next-level")
async def start_next_level(
    trader: AuthenticatedSession = Depends(require_trader),
    session=Depends(get_db_session),
):
    info = await get_progression(session, trader.user_id)
    if not info.can_progress:
        raise BadRequestError(info.reason)
    return ok({"next_plan": info.next_plan, "next_level": info.next_level}, message=info.reason)
