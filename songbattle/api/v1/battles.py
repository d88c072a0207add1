import uuid

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from songbattle.api.responses import outcome_response
from songbattle.api.v1.users import get_current_user, get_db
from songbattle.core.config import get_settings
from songbattle.models.user import User
from songbattle.schemas.battle import BattleCreateRequest, BattleJoinRequest, RoundCreateRequest
from songbattle.services import battles as battle_service
from songbattle.services.results import get_current_round


router = APIRouter()


@router.post("")
def create_battle(
    payload: BattleCreateRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> JSONResponse:
    outcome = battle_service.create_battle(
        db,
        user.id,
        name=payload.name,
        max_participants=payload.max_participants,
        double_submissions=payload.double_submissions,
        visibility=payload.visibility,
        theme=payload.theme,
        description=payload.description,
        submission_deadline=payload.submission_deadline,
        voting_deadline=payload.voting_deadline,
    )
    return outcome_response(outcome)


@router.get("")
def list_my_battles(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> JSONResponse:
    return outcome_response(battle_service.list_user_battles(db, user.id))


@router.post("/join")
def join_battle(
    payload: BattleJoinRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> JSONResponse:
    return outcome_response(battle_service.join_battle(db, user.id, payload.invite_code))


@router.get("/{battle_id}")
def get_battle(
    battle_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> JSONResponse:
    return outcome_response(battle_service.get_battle(db, battle_id, user.id))


@router.get("/{battle_id}/players")
def get_players(battle_id: uuid.UUID, db: Session = Depends(get_db)) -> JSONResponse:
    return outcome_response(battle_service.get_standings(db, battle_id))


@router.get("/{battle_id}/rounds")
def list_rounds(battle_id: uuid.UUID, db: Session = Depends(get_db)) -> JSONResponse:
    settings = get_settings()
    return outcome_response(battle_service.list_rounds(db, battle_id, settings.max_votes_per_round))


@router.post("/{battle_id}/rounds")
def add_round(
    battle_id: uuid.UUID,
    payload: RoundCreateRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> JSONResponse:
    outcome = battle_service.add_round(
        db,
        user.id,
        battle_id,
        theme=payload.theme,
        description=payload.description,
        submission_deadline=payload.submission_deadline,
        voting_deadline=payload.voting_deadline,
    )
    return outcome_response(outcome)


@router.get("/{battle_id}/current-round")
def current_round(battle_id: uuid.UUID, db: Session = Depends(get_db)) -> JSONResponse:
    return outcome_response(get_current_round(db, battle_id))
