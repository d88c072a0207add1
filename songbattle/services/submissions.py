import logging
import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from songbattle.core.clock import ensure_utc, resolve_now
from songbattle.models.battle import Battle, Participant, Round, RoundPhase, Submission
from songbattle.models.user import User
from songbattle.services.events import log_event
from songbattle.services.lifecycle import lock_round
from songbattle.services.ordering import decide_submission_order
from songbattle.services.outcome import ErrorKind, Outcome, not_found
from songbattle.services.track_urls import normalize_track_url, validate_track_url


logger = logging.getLogger(__name__)


def _duplicate_message(db: Session, existing: Submission) -> str:
    owner = db.get(User, existing.user_id)
    name = owner.username if owner else "another user"
    return f"This song was already submitted by {name}"


def _find_duplicate(
    db: Session,
    round_id: uuid.UUID,
    track_url: str,
    exclude_id: Optional[uuid.UUID] = None,
) -> Optional[Submission]:
    query = db.query(Submission).filter(Submission.round_id == round_id, Submission.track_url == track_url)
    if exclude_id is not None:
        query = query.filter(Submission.id != exclude_id)
    return query.first()


def _lock_participant(db: Session, battle_id: uuid.UUID, user_id: uuid.UUID) -> Optional[Participant]:
    return (
        db.query(Participant)
        .filter(Participant.battle_id == battle_id, Participant.user_id == user_id)
        .with_for_update()
        .one_or_none()
    )


def _still_accepting(db: Session, round_id: uuid.UUID) -> bool:
    # Read after our own write, when no other writer can move the round on.
    phase = db.query(Round.phase).filter(Round.id == round_id).scalar()
    return phase == RoundPhase.SUBMISSION.value


def _editable_window_error(round_: Round, now: datetime, action: str) -> Optional[Outcome]:
    if round_.phase != RoundPhase.SUBMISSION.value:
        return Outcome.fail(ErrorKind.PHASE, f"Cannot {action} submission after submission period ends")
    if now > ensure_utc(round_.submission_deadline):
        return Outcome.fail(ErrorKind.PHASE, f"Cannot {action} submission after deadline")
    return None


def submit_item(
    db: Session,
    user_id: uuid.UUID,
    round_id: uuid.UUID,
    track_url: str,
    *,
    now: Optional[datetime] = None,
) -> Outcome:
    now = resolve_now(now)

    user = db.get(User, user_id)
    if user is None:
        return not_found("User")
    round_ = lock_round(db, round_id)
    if round_ is None:
        db.rollback()
        return not_found("Round")

    if round_.phase != RoundPhase.SUBMISSION.value:
        message = (
            "Submission period hasn't started yet"
            if round_.phase == RoundPhase.PENDING.value
            else "Submission period has ended"
        )
        db.rollback()
        return Outcome.fail(ErrorKind.PHASE, message)
    if now > ensure_utc(round_.submission_deadline):
        db.rollback()
        return Outcome.fail(ErrorKind.PHASE, "Submission deadline has passed")

    battle = db.get(Battle, round_.battle_id)
    if battle is None:
        db.rollback()
        return not_found("Battle")

    participant = _lock_participant(db, battle.id, user_id)
    if participant is None:
        db.rollback()
        return Outcome.fail(ErrorKind.AUTHORIZATION, "You are not a participant in this battle")

    check = validate_track_url(track_url)
    if not check.is_valid:
        db.rollback()
        return Outcome.fail(ErrorKind.VALIDATION, check.error or "Invalid Spotify track URL format")
    normalized = normalize_track_url(track_url)

    duplicate = _find_duplicate(db, round_.id, normalized)
    if duplicate is not None:
        message = _duplicate_message(db, duplicate)
        db.rollback()
        return Outcome.fail(ErrorKind.CONFLICT, message)

    existing_count = (
        db.query(func.count(Submission.id))
        .filter(Submission.round_id == round_.id, Submission.user_id == user_id)
        .scalar()
        or 0
    )
    decision = decide_submission_order(existing_count, battle.double_submissions)
    if not decision.allowed:
        db.rollback()
        return Outcome.fail(ErrorKind.QUOTA, decision.message or "Submission not allowed")

    submission = Submission(
        round_id=round_.id,
        user_id=user_id,
        track_url=normalized,
        position=decision.position,
        submitted_at=now,
        tally=0,
    )
    db.add(submission)
    double = battle.double_submissions
    battle_id = battle.id
    try:
        db.flush()
        if not _still_accepting(db, round_id):
            db.rollback()
            return Outcome.fail(ErrorKind.PHASE, "Submission period has ended")
        log_event(
            db,
            event_type="submission_created",
            payload={
                "round_id": str(round_id),
                "submission_id": str(submission.id),
                "position": submission.position,
            },
            battle_id=battle_id,
            actor_user_id=user_id,
        )
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info("submission_conflict round=%s user=%s track=%s", round_id, user_id, normalized)
        return Outcome.fail(
            ErrorKind.CONFLICT,
            "This song or entry slot was just taken by another submission; please try again",
        )

    order_text = ""
    if double:
        order_text = " (1st song)" if submission.position == 1 else " (2nd song)"
    return Outcome.ok(
        f"Song submitted successfully{order_text}!",
        submission_id=str(submission.id),
        position=submission.position,
        track_url=normalized,
    )


def remove_submission(
    db: Session,
    user_id: uuid.UUID,
    submission_id: uuid.UUID,
    *,
    now: Optional[datetime] = None,
) -> Outcome:
    now = resolve_now(now)

    if db.get(User, user_id) is None:
        return not_found("User")
    submission = db.get(Submission, submission_id)
    if submission is None:
        return not_found("Submission")
    if submission.user_id != user_id:
        return Outcome.fail(ErrorKind.AUTHORIZATION, "You can only remove your own submissions")
    round_ = lock_round(db, submission.round_id)
    if round_ is None:
        db.rollback()
        return not_found("Round")

    window_error = _editable_window_error(round_, now, "remove")
    if window_error is not None:
        db.rollback()
        return window_error

    removed_position = submission.position
    db.delete(submission)
    db.flush()
    if removed_position == 1:
        # Keep positions contiguous: a remaining 2nd entry becomes the 1st.
        second = (
            db.query(Submission)
            .filter(Submission.round_id == round_.id, Submission.user_id == user_id, Submission.position == 2)
            .one_or_none()
        )
        if second is not None:
            second.position = 1
            db.add(second)

    log_event(
        db,
        event_type="submission_removed",
        payload={"round_id": str(round_.id), "submission_id": str(submission_id)},
        battle_id=round_.battle_id,
        actor_user_id=user_id,
    )
    db.commit()
    return Outcome.ok("Submission removed successfully", submission_id=str(submission_id))


def update_submission(
    db: Session,
    user_id: uuid.UUID,
    submission_id: uuid.UUID,
    track_url: str,
    *,
    now: Optional[datetime] = None,
) -> Outcome:
    now = resolve_now(now)

    if db.get(User, user_id) is None:
        return not_found("User")
    submission = db.get(Submission, submission_id)
    if submission is None:
        return not_found("Submission")
    if submission.user_id != user_id:
        return Outcome.fail(ErrorKind.AUTHORIZATION, "You can only edit your own submissions")
    round_ = lock_round(db, submission.round_id)
    if round_ is None:
        db.rollback()
        return not_found("Round")

    window_error = _editable_window_error(round_, now, "edit")
    if window_error is not None:
        db.rollback()
        return window_error

    check = validate_track_url(track_url)
    if not check.is_valid:
        return Outcome.fail(ErrorKind.VALIDATION, check.error or "Invalid Spotify track URL format")
    normalized = normalize_track_url(track_url)

    if normalized == submission.track_url:
        return Outcome.ok("No changes", submission_id=str(submission_id), track_url=normalized)

    duplicate = _find_duplicate(db, round_.id, normalized, exclude_id=submission.id)
    if duplicate is not None:
        return Outcome.fail(ErrorKind.CONFLICT, _duplicate_message(db, duplicate))

    submission.track_url = normalized
    db.add(submission)
    log_event(
        db,
        event_type="submission_updated",
        payload={"round_id": str(round_.id), "submission_id": str(submission_id)},
        battle_id=round_.battle_id,
        actor_user_id=user_id,
    )
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        return Outcome.fail(ErrorKind.CONFLICT, "This song was just submitted by another participant")
    return Outcome.ok("Submission updated", submission_id=str(submission_id), track_url=normalized)


def list_round_submissions(
    db: Session,
    round_id: uuid.UUID,
    current_user_id: Optional[uuid.UUID] = None,
) -> Outcome:
    if db.get(Round, round_id) is None:
        return not_found("Round")
    rows = (
        db.query(Submission, User.username)
        .join(User, Submission.user_id == User.id)
        .filter(Submission.round_id == round_id)
        .order_by(Submission.submitted_at.asc())
        .all()
    )
    items = [
        {
            "id": str(submission.id),
            "user_id": str(submission.user_id),
            "username": username,
            "track_url": submission.track_url,
            "position": submission.position,
            "submitted_at": ensure_utc(submission.submitted_at).isoformat(),
            "tally": submission.tally,
            "is_current_user": current_user_id is not None and submission.user_id == current_user_id,
        }
        for submission, username in rows
    ]
    return Outcome.ok("Submissions", submissions=items)


def submission_stats(db: Session, round_id: uuid.UUID) -> Outcome:
    if db.get(Round, round_id) is None:
        return not_found("Round")
    rows = (
        db.query(Submission, User.username)
        .join(User, Submission.user_id == User.id)
        .filter(Submission.round_id == round_id)
        .all()
    )
    by_user: dict[uuid.UUID, dict[str, Any]] = {}
    for submission, username in rows:
        entry = by_user.setdefault(
            submission.user_id,
            {"user_id": str(submission.user_id), "username": username, "submissions": []},
        )
        entry["submissions"].append(
            {
                "id": str(submission.id),
                "position": submission.position,
                "submitted_at": ensure_utc(submission.submitted_at).isoformat(),
            }
        )

    submitters = []
    for entry in by_user.values():
        entry["submissions"].sort(key=lambda s: s["position"])
        entry["submission_count"] = len(entry["submissions"])
        submitters.append(entry)
    submitters.sort(key=lambda e: e["username"].lower())

    return Outcome.ok(
        "Submission stats",
        total_submissions=len(rows),
        unique_submitters=len(by_user),
        submissions_by_user=submitters,
    )
