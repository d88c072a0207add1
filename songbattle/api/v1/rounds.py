import uuid

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from songbattle.api.responses import outcome_response
from songbattle.api.v1.users import get_current_user, get_db
from songbattle.core.config import get_settings
from songbattle.models.user import User
from songbattle.schemas.battle import RoundUpdateRequest
from songbattle.services.battles import update_round
from songbattle.services.results import get_round_results
from songbattle.services.submissions import list_round_submissions, submission_stats
from songbattle.services.tasks import retry_task
from songbattle.services.voting import voting_state


router = APIRouter()


@router.patch("/{round_id}")
def patch_round(
    round_id: uuid.UUID,
    payload: RoundUpdateRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> JSONResponse:
    outcome = update_round(
        db,
        user.id,
        round_id,
        theme=payload.theme,
        description=payload.description,
        submission_deadline=payload.submission_deadline,
        voting_deadline=payload.voting_deadline,
    )
    return outcome_response(outcome)


@router.get("/{round_id}/submissions")
def get_submissions(
    round_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> JSONResponse:
    return outcome_response(list_round_submissions(db, round_id, user.id))


@router.get("/{round_id}/submissions/stats")
def get_submission_stats(round_id: uuid.UUID, db: Session = Depends(get_db)) -> JSONResponse:
    return outcome_response(submission_stats(db, round_id))


@router.get("/{round_id}/results")
def get_results(round_id: uuid.UUID, db: Session = Depends(get_db)) -> JSONResponse:
    settings = get_settings()
    return outcome_response(get_round_results(db, round_id, settings.max_votes_per_round))


@router.get("/{round_id}/votes")
def get_voting_state(
    round_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> JSONResponse:
    settings = get_settings()
    return outcome_response(voting_state(db, round_id, user.id, max_votes=settings.max_votes_per_round))


@router.post("/{round_id}/playlist")
def regenerate_playlist(
    round_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> JSONResponse:
    return outcome_response(retry_task(db, user.id, round_id))
