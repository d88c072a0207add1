import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from songbattle.api.responses import outcome_response
from songbattle.api.v1.users import get_current_user, get_db
from songbattle.core.config import get_settings
from songbattle.models.user import User
from songbattle.schemas.battle import VoteRequest
from songbattle.services.voting import RoundHook, award_vote, remove_vote


router = APIRouter()


def _round_hook(request: Request) -> Optional[RoundHook]:
    # Re-check the round straight away instead of waiting for the next tick.
    engine = getattr(request.app.state, "phase_engine", None)
    return engine.request_evaluation if engine is not None else None


@router.post("")
def cast_vote(
    payload: VoteRequest,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> JSONResponse:
    settings = get_settings()
    outcome = award_vote(
        db,
        user.id,
        payload.submission_id,
        max_votes=settings.max_votes_per_round,
        on_change=_round_hook(request),
    )
    return outcome_response(outcome)


@router.delete("/{submission_id}")
def retract_vote(
    submission_id: uuid.UUID,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> JSONResponse:
    settings = get_settings()
    outcome = remove_vote(
        db,
        user.id,
        submission_id,
        max_votes=settings.max_votes_per_round,
        on_change=_round_hook(request),
    )
    return outcome_response(outcome)
