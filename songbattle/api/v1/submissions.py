import uuid

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from songbattle.api.responses import outcome_response
from songbattle.api.v1.users import get_current_user, get_db
from songbattle.models.user import User
from songbattle.schemas.battle import SubmissionCreateRequest, SubmissionUpdateRequest
from songbattle.services.submissions import remove_submission, submit_item, update_submission


router = APIRouter()


@router.post("")
def submit(
    payload: SubmissionCreateRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> JSONResponse:
    return outcome_response(submit_item(db, user.id, payload.round_id, payload.track_url))


@router.patch("/{submission_id}")
def edit(
    submission_id: uuid.UUID,
    payload: SubmissionUpdateRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> JSONResponse:
    return outcome_response(update_submission(db, user.id, submission_id, payload.track_url))


@router.delete("/{submission_id}")
def remove(
    submission_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> JSONResponse:
    return outcome_response(remove_submission(db, user.id, submission_id))
