import logging
import secrets
import string
import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from songbattle.core.clock import ensure_utc, resolve_now
from songbattle.models.battle import (
    Battle,
    BattleStatus,
    Participant,
    Round,
    RoundPhase,
    Submission,
    Visibility,
)
from songbattle.models.user import User
from songbattle.services.events import log_event
from songbattle.services.lifecycle import activate
from songbattle.services.outcome import ErrorKind, Outcome, not_found
from songbattle.services.payloads import battle_payload, round_payload
from songbattle.services.voting import MAX_VOTES_PER_ROUND, votes_cast_by_participant


logger = logging.getLogger(__name__)

NAME_MAX_LENGTH = 50
THEME_MAX_LENGTH = 200
MIN_PARTICIPANTS = 2
MAX_PARTICIPANTS = 20
INVITE_CODE_LENGTH = 8
_INVITE_ALPHABET = string.ascii_uppercase + string.digits


def generate_invite_code() -> str:
    return "".join(secrets.choice(_INVITE_ALPHABET) for _ in range(INVITE_CODE_LENGTH))


def _unique_invite_code(db: Session) -> str:
    while True:
        candidate = generate_invite_code()
        if db.query(Battle.id).filter(Battle.invite_code == candidate).first() is None:
            return candidate


def _deadline_error(
    submission_deadline: datetime,
    voting_deadline: datetime,
    now: datetime,
) -> Optional[Outcome]:
    if ensure_utc(voting_deadline) <= ensure_utc(submission_deadline):
        return Outcome.fail(ErrorKind.INVARIANT, "Voting deadline must be after submission deadline")
    if ensure_utc(submission_deadline) <= now:
        return Outcome.fail(ErrorKind.INVARIANT, "Submission deadline must be in the future")
    return None


def _theme_error(theme: Optional[str]) -> Optional[Outcome]:
    cleaned = (theme or "").strip()
    if not cleaned:
        return Outcome.fail(ErrorKind.VALIDATION, "Theme is required")
    if len(cleaned) > THEME_MAX_LENGTH:
        return Outcome.fail(ErrorKind.VALIDATION, f"Theme must be at most {THEME_MAX_LENGTH} characters")
    return None


def create_battle(
    db: Session,
    creator_id: uuid.UUID,
    *,
    name: str,
    max_participants: int,
    double_submissions: bool,
    visibility: str,
    theme: str,
    submission_deadline: datetime,
    voting_deadline: datetime,
    description: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Outcome:
    """Create a battle together with its first round, which starts at once."""
    now = resolve_now(now)

    name = (name or "").strip()
    if not 1 <= len(name) <= NAME_MAX_LENGTH:
        return Outcome.fail(ErrorKind.VALIDATION, f"Name must be between 1 and {NAME_MAX_LENGTH} characters")
    if not MIN_PARTICIPANTS <= max_participants <= MAX_PARTICIPANTS:
        return Outcome.fail(
            ErrorKind.INVARIANT,
            f"Max participants must be between {MIN_PARTICIPANTS} and {MAX_PARTICIPANTS}",
        )
    if visibility not in {v.value for v in Visibility}:
        return Outcome.fail(ErrorKind.VALIDATION, "Visibility must be public or private")
    theme_error = _theme_error(theme)
    if theme_error is not None:
        return theme_error
    deadline_error = _deadline_error(submission_deadline, voting_deadline, now)
    if deadline_error is not None:
        return deadline_error
    if db.get(User, creator_id) is None:
        return not_found("User")

    battle = Battle(
        name=name,
        creator_id=creator_id,
        visibility=visibility,
        max_participants=max_participants,
        double_submissions=double_submissions,
        invite_code=_unique_invite_code(db),
        status=BattleStatus.ACTIVE.value,
        created_at=now,
    )
    db.add(battle)
    db.flush()

    db.add(Participant(battle_id=battle.id, user_id=creator_id, joined_at=now))
    first_round = Round(
        battle_id=battle.id,
        number=1,
        theme=theme.strip(),
        description=description,
        submission_deadline=ensure_utc(submission_deadline),
        voting_deadline=ensure_utc(voting_deadline),
        phase=RoundPhase.PENDING.value,
        created_at=now,
    )
    db.add(first_round)
    db.flush()
    activate(db, first_round, battle, now)

    log_event(
        db,
        event_type="battle_created",
        payload={"name": battle.name, "round_id": str(first_round.id)},
        battle_id=battle.id,
        actor_user_id=creator_id,
    )
    db.commit()
    logger.info("battle_created battle=%s creator=%s", battle.id, creator_id)

    return Outcome.ok(
        "Battle created",
        battle_id=str(battle.id),
        invite_code=battle.invite_code,
        round_id=str(first_round.id),
    )


def join_battle(
    db: Session,
    user_id: uuid.UUID,
    invite_code: str,
    *,
    now: Optional[datetime] = None,
) -> Outcome:
    now = resolve_now(now)
    if db.get(User, user_id) is None:
        return not_found("User")

    code = (invite_code or "").strip().upper()
    battle = db.query(Battle).filter(Battle.invite_code == code).with_for_update().one_or_none()
    if battle is None:
        return Outcome.fail(ErrorKind.NOT_FOUND, "Invalid invite code")
    battle_id = battle.id
    if battle.status != BattleStatus.ACTIVE.value:
        db.rollback()
        return Outcome.fail(ErrorKind.PHASE, "This battle has ended")

    existing = (
        db.query(Participant.id)
        .filter(Participant.battle_id == battle_id, Participant.user_id == user_id)
        .first()
    )
    if existing is not None:
        db.rollback()
        return Outcome.ok("You're already in this battle", battle_id=str(battle_id))

    count = db.query(func.count(Participant.id)).filter(Participant.battle_id == battle_id).scalar() or 0
    if count >= battle.max_participants:
        db.rollback()
        return Outcome.fail(ErrorKind.INVARIANT, "This battle is full")

    db.add(Participant(battle_id=battle_id, user_id=user_id, joined_at=now))
    log_event(
        db,
        event_type="participant_joined",
        payload={"user_id": str(user_id)},
        battle_id=battle_id,
        actor_user_id=user_id,
    )
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        return Outcome.ok("You're already in this battle", battle_id=str(battle_id))
    return Outcome.ok("Successfully joined the battle!", battle_id=str(battle_id))


def add_round(
    db: Session,
    user_id: uuid.UUID,
    battle_id: uuid.UUID,
    *,
    theme: str,
    submission_deadline: datetime,
    voting_deadline: datetime,
    description: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Outcome:
    """Append a pending round; the engine starts it when the previous one completes."""
    now = resolve_now(now)
    if db.get(User, user_id) is None:
        return not_found("User")
    battle = db.query(Battle).filter(Battle.id == battle_id).with_for_update().one_or_none()
    if battle is None:
        return not_found("Battle")
    if battle.creator_id != user_id:
        db.rollback()
        return Outcome.fail(ErrorKind.AUTHORIZATION, "Only the battle creator can add rounds")
    if battle.status != BattleStatus.ACTIVE.value:
        db.rollback()
        return Outcome.fail(ErrorKind.PHASE, "Cannot add rounds to a completed battle")

    error = _theme_error(theme) or _deadline_error(submission_deadline, voting_deadline, now)
    if error is not None:
        db.rollback()
        return error

    last_number = db.query(func.max(Round.number)).filter(Round.battle_id == battle_id).scalar() or 0
    new_round = Round(
        battle_id=battle_id,
        number=last_number + 1,
        theme=theme.strip(),
        description=description,
        submission_deadline=ensure_utc(submission_deadline),
        voting_deadline=ensure_utc(voting_deadline),
        phase=RoundPhase.PENDING.value,
        created_at=now,
    )
    db.add(new_round)
    db.flush()
    log_event(
        db,
        event_type="round_added",
        payload={"round_id": str(new_round.id), "round_number": new_round.number},
        battle_id=battle_id,
        actor_user_id=user_id,
    )
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        return Outcome.fail(ErrorKind.CONFLICT, "Another round was added at the same time; please try again")

    return Outcome.ok(
        f"Round {new_round.number} added successfully",
        round_id=str(new_round.id),
        round_number=new_round.number,
    )


def update_round(
    db: Session,
    user_id: uuid.UUID,
    round_id: uuid.UUID,
    *,
    theme: Optional[str] = None,
    description: Optional[str] = None,
    submission_deadline: Optional[datetime] = None,
    voting_deadline: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> Outcome:
    now = resolve_now(now)
    if db.get(User, user_id) is None:
        return not_found("User")
    round_ = db.get(Round, round_id)
    if round_ is None:
        return not_found("Round")
    battle = db.get(Battle, round_.battle_id)
    if battle is None:
        return not_found("Battle")
    if battle.creator_id != user_id:
        return Outcome.fail(ErrorKind.AUTHORIZATION, "Only the battle creator can update rounds")
    if round_.phase != RoundPhase.PENDING.value:
        return Outcome.fail(ErrorKind.PHASE, "Can only update rounds that haven't started yet")

    if theme is not None:
        theme_error = _theme_error(theme)
        if theme_error is not None:
            return theme_error
    new_submission_deadline = ensure_utc(submission_deadline or round_.submission_deadline)
    new_voting_deadline = ensure_utc(voting_deadline or round_.voting_deadline)
    deadline_error = _deadline_error(new_submission_deadline, new_voting_deadline, now)
    if deadline_error is not None:
        return deadline_error

    if theme is not None:
        round_.theme = theme.strip()
    if description is not None:
        round_.description = description
    round_.submission_deadline = new_submission_deadline
    round_.voting_deadline = new_voting_deadline
    db.add(round_)
    db.commit()
    return Outcome.ok("Round updated successfully", round_id=str(round_id))


def get_battle(db: Session, battle_id: uuid.UUID, user_id: Optional[uuid.UUID] = None) -> Outcome:
    battle = db.get(Battle, battle_id)
    if battle is None:
        return not_found("Battle")
    member_ids = {
        member_id
        for (member_id,) in db.query(Participant.user_id).filter(Participant.battle_id == battle_id).all()
    }
    can_join = (
        user_id is not None
        and battle.status == BattleStatus.ACTIVE.value
        and len(member_ids) < battle.max_participants
        and user_id not in member_ids
    )
    payload = battle_payload(battle)
    payload.update(participant_count=len(member_ids), can_join=can_join)
    return Outcome.ok("Battle", battle=payload)


def list_user_battles(db: Session, user_id: uuid.UUID) -> Outcome:
    """Battles the user plays in or created, newest first."""
    member_of = select(Participant.battle_id).where(Participant.user_id == user_id)
    battles = (
        db.query(Battle)
        .filter((Battle.id.in_(member_of)) | (Battle.creator_id == user_id))
        .order_by(Battle.created_at.desc())
        .all()
    )
    counts = dict(
        db.query(Participant.battle_id, func.count(Participant.id))
        .filter(Participant.battle_id.in_([b.id for b in battles]))
        .group_by(Participant.battle_id)
        .all()
    )
    items = []
    for battle in battles:
        current_number = None
        if battle.current_round_id is not None:
            current = db.get(Round, battle.current_round_id)
            current_number = current.number if current else None
        items.append(
            {
                "id": str(battle.id),
                "name": battle.name,
                "status": battle.status,
                "participant_count": int(counts.get(battle.id, 0)),
                "max_participants": battle.max_participants,
                "created_at": ensure_utc(battle.created_at).isoformat(),
                "current_round_number": current_number,
            }
        )
    return Outcome.ok("Battles", battles=items)


def list_rounds(db: Session, battle_id: uuid.UUID, max_votes: int = MAX_VOTES_PER_ROUND) -> Outcome:
    if db.get(Battle, battle_id) is None:
        return not_found("Battle")
    rounds = db.query(Round).filter(Round.battle_id == battle_id).order_by(Round.number.asc()).all()
    submission_counts = dict(
        db.query(Submission.round_id, func.count(Submission.id))
        .join(Round, Submission.round_id == Round.id)
        .filter(Round.battle_id == battle_id)
        .group_by(Submission.round_id)
        .all()
    )
    items: list[dict[str, Any]] = []
    for round_ in rounds:
        cast = votes_cast_by_participant(db, round_)
        payload = round_payload(round_)
        payload["submission_count"] = int(submission_counts.get(round_.id, 0))
        payload["voting_progress"] = {
            "total_voters": len(cast),
            "voted_count": sum(1 for c in cast.values() if c == max_votes),
        }
        items.append(payload)
    return Outcome.ok("Rounds", rounds=items)


def get_standings(db: Session, battle_id: uuid.UUID) -> Outcome:
    battle = db.get(Battle, battle_id)
    if battle is None:
        return not_found("Battle")
    rows = (
        db.query(Participant, User.username)
        .join(User, Participant.user_id == User.id)
        .filter(Participant.battle_id == battle_id)
        .order_by(Participant.total_credits.desc(), Participant.rounds_won.desc(), Participant.joined_at.asc())
        .all()
    )
    players = [
        {
            "id": str(participant.id),
            "user_id": str(participant.user_id),
            "username": username,
            "joined_at": ensure_utc(participant.joined_at).isoformat(),
            "total_credits": participant.total_credits,
            "rounds_won": participant.rounds_won,
            "is_champion": participant.is_champion,
            "is_creator": participant.user_id == battle.creator_id,
        }
        for participant, username in rows
    ]
    return Outcome.ok("Standings", players=players)
