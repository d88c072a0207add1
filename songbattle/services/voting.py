import logging
import uuid
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import case, delete, exists, func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from songbattle.core.clock import ensure_utc, resolve_now
from songbattle.models.battle import Participant, Round, RoundPhase, Submission, Vote
from songbattle.models.user import User
from songbattle.services.events import log_event
from songbattle.services.lifecycle import lock_round
from songbattle.services.outcome import ErrorKind, Outcome, not_found


logger = logging.getLogger(__name__)

MAX_VOTES_PER_ROUND = 3

RoundHook = Callable[[uuid.UUID], None]


def _votes_phrase(count: int) -> str:
    return "1 vote" if count == 1 else f"{count} votes"


def _lock_participant(db: Session, battle_id: uuid.UUID, user_id: uuid.UUID) -> Optional[Participant]:
    # Taken after the round lock, the same order the scheduler uses when crediting.
    return (
        db.query(Participant)
        .filter(Participant.battle_id == battle_id, Participant.user_id == user_id)
        .with_for_update()
        .one_or_none()
    )


def _used_slots(db: Session, round_id: uuid.UUID, voter_id: uuid.UUID) -> set[int]:
    return {
        slot
        for (slot,) in db.query(Vote.slot).filter(Vote.round_id == round_id, Vote.voter_id == voter_id).all()
    }


def _still_voting(round_id: uuid.UUID):
    # Re-checked inside the write so a round completed after the window check rejects it.
    return exists().where(Round.id == round_id, Round.phase == RoundPhase.VOTING.value)


def _voting_window_error(round_: Round, now: datetime, *, removing: bool = False) -> Optional[Outcome]:
    if round_.phase != RoundPhase.VOTING.value:
        if removing:
            message = "Cannot change votes outside voting period"
        elif round_.phase in (RoundPhase.PENDING.value, RoundPhase.SUBMISSION.value):
            message = "Voting hasn't started yet"
        else:
            message = "Voting period has ended"
        return Outcome.fail(ErrorKind.PHASE, message)
    if now > ensure_utc(round_.voting_deadline):
        return Outcome.fail(ErrorKind.PHASE, "Voting deadline has passed")
    return None


def _notify(on_change: Optional[RoundHook], round_id: uuid.UUID) -> None:
    """Best-effort re-evaluation hint; the periodic tick covers any miss."""
    if on_change is None:
        return
    try:
        on_change(round_id)
    except Exception:
        logger.warning("round_reevaluation_hint_failed round=%s", round_id, exc_info=True)


def award_vote(
    db: Session,
    voter_id: uuid.UUID,
    submission_id: uuid.UUID,
    *,
    now: Optional[datetime] = None,
    max_votes: int = MAX_VOTES_PER_ROUND,
    on_change: Optional[RoundHook] = None,
) -> Outcome:
    now = resolve_now(now)

    if db.get(User, voter_id) is None:
        return not_found("User")
    submission = db.get(Submission, submission_id)
    if submission is None:
        return not_found("Submission")

    round_ = lock_round(db, submission.round_id)
    if round_ is None:
        db.rollback()
        return not_found("Round")
    window_error = _voting_window_error(round_, now)
    if window_error is not None:
        db.rollback()
        return window_error

    participant = _lock_participant(db, round_.battle_id, voter_id)
    if participant is None:
        db.rollback()
        return Outcome.fail(ErrorKind.AUTHORIZATION, "You are not a participant in this battle")

    if submission.user_id == voter_id:
        db.rollback()
        return Outcome.fail(ErrorKind.AUTHORIZATION, "You cannot vote for your own submission")

    slots = _used_slots(db, round_.id, voter_id)
    used = len(slots)
    if used >= max_votes:
        db.rollback()
        return Outcome.fail(
            ErrorKind.QUOTA,
            f"You have already used all {max_votes} votes for this round",
        )

    round_id = round_.id
    db.add(
        Vote(
            round_id=round_id,
            voter_id=voter_id,
            submission_id=submission.id,
            slot=min(set(range(1, max_votes + 1)) - slots),
            created_at=now,
        )
    )
    bumped = db.execute(
        update(Submission)
        .where(Submission.id == submission.id, _still_voting(round_id))
        .values(tally=Submission.tally + 1)
        .execution_options(synchronize_session="fetch")
    )
    if bumped.rowcount != 1:
        db.rollback()
        return Outcome.fail(ErrorKind.PHASE, "Voting period has ended")
    log_event(
        db,
        event_type="vote_awarded",
        payload={"round_id": str(round_id), "submission_id": str(submission_id)},
        battle_id=round_.battle_id,
        actor_user_id=voter_id,
    )
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info("vote_award_conflict round=%s voter=%s submission=%s", round_id, voter_id, submission_id)
        return Outcome.fail(ErrorKind.CONFLICT, "Another of your votes was cast at the same time; please try again")

    _notify(on_change, round_id)

    remaining = max(0, max_votes - (used + 1))
    return Outcome.ok(
        f"Vote awarded! You have {_votes_phrase(remaining)} remaining.",
        votes_remaining=remaining,
        round_id=str(round_id),
        submission_id=str(submission_id),
    )


def remove_vote(
    db: Session,
    voter_id: uuid.UUID,
    submission_id: uuid.UUID,
    *,
    now: Optional[datetime] = None,
    max_votes: int = MAX_VOTES_PER_ROUND,
    on_change: Optional[RoundHook] = None,
) -> Outcome:
    now = resolve_now(now)

    if db.get(User, voter_id) is None:
        return not_found("User")
    submission = db.get(Submission, submission_id)
    if submission is None:
        return not_found("Submission")

    round_ = lock_round(db, submission.round_id)
    if round_ is None:
        db.rollback()
        return not_found("Round")
    window_error = _voting_window_error(round_, now, removing=True)
    if window_error is not None:
        db.rollback()
        return window_error

    participant = _lock_participant(db, round_.battle_id, voter_id)
    if participant is None:
        db.rollback()
        return Outcome.fail(ErrorKind.AUTHORIZATION, "You are not a participant in this battle")

    vote_id = (
        db.query(Vote.id)
        .filter(Vote.round_id == round_.id, Vote.voter_id == voter_id, Vote.submission_id == submission.id)
        .order_by(Vote.created_at.desc(), Vote.slot.desc())
        .limit(1)
        .scalar()
    )
    if vote_id is None:
        db.rollback()
        return Outcome.fail(ErrorKind.CONFLICT, "You haven't voted for this submission")

    round_id = round_.id
    # Stacked votes come off one at a time, newest first.
    deleted = db.execute(delete(Vote).where(Vote.id == vote_id))
    if deleted.rowcount != 1:
        db.rollback()
        return Outcome.fail(ErrorKind.CONFLICT, "You haven't voted for this submission")
    dropped = db.execute(
        update(Submission)
        .where(Submission.id == submission.id, _still_voting(round_id))
        .values(tally=case((Submission.tally > 0, Submission.tally - 1), else_=0))
        .execution_options(synchronize_session="fetch")
    )
    if dropped.rowcount != 1:
        db.rollback()
        return Outcome.fail(ErrorKind.PHASE, "Cannot change votes outside voting period")
    remaining = max(0, max_votes - len(_used_slots(db, round_id, voter_id)))
    log_event(
        db,
        event_type="vote_removed",
        payload={"round_id": str(round_id), "submission_id": str(submission_id)},
        battle_id=round_.battle_id,
        actor_user_id=voter_id,
    )
    db.commit()

    _notify(on_change, round_id)

    return Outcome.ok(
        f"Vote removed! You have {_votes_phrase(remaining)} remaining.",
        votes_remaining=remaining,
        round_id=str(round_id),
        submission_id=str(submission_id),
    )


def voting_state(
    db: Session,
    round_id: uuid.UUID,
    user_id: uuid.UUID,
    *,
    now: Optional[datetime] = None,
    max_votes: int = MAX_VOTES_PER_ROUND,
) -> Outcome:
    now = resolve_now(now)
    round_ = db.get(Round, round_id)
    if round_ is None:
        return not_found("Round")

    is_participant = (
        db.query(Participant.id)
        .filter(Participant.battle_id == round_.battle_id, Participant.user_id == user_id)
        .first()
        is not None
    )
    if not is_participant:
        return Outcome.ok("Not a participant", votes_remaining=0, voted_submission_ids=[], can_vote=False)

    voted = [
        str(submission_id)
        for (submission_id,) in db.query(Vote.submission_id)
        .filter(Vote.round_id == round_id, Vote.voter_id == user_id)
        .order_by(Vote.created_at.asc())
        .all()
    ]
    remaining = max(0, max_votes - len(voted))
    can_vote = (
        round_.phase == RoundPhase.VOTING.value
        and now <= ensure_utc(round_.voting_deadline)
        and remaining > 0
    )
    return Outcome.ok(
        "Voting state",
        votes_remaining=remaining,
        voted_submission_ids=voted,
        can_vote=can_vote,
    )


def votes_cast_by_participant(db: Session, round_: Round) -> dict[uuid.UUID, int]:
    """Votes cast in the round, keyed by every current participant (zero included)."""
    participant_ids = [
        user_id
        for (user_id,) in db.query(Participant.user_id).filter(Participant.battle_id == round_.battle_id).all()
    ]
    counts = dict(
        db.query(Vote.voter_id, func.count(Vote.id))
        .filter(Vote.round_id == round_.id)
        .group_by(Vote.voter_id)
        .all()
    )
    return {user_id: int(counts.get(user_id, 0)) for user_id in participant_ids}


def all_participants_voted(db: Session, round_: Round, max_votes: int = MAX_VOTES_PER_ROUND) -> bool:
    """Early-completion predicate. A battle without participants never completes early."""
    cast = votes_cast_by_participant(db, round_)
    if not cast:
        return False
    return all(count == max_votes for count in cast.values())
