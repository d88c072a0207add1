import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.orm import Session

from songbattle.core.clock import ensure_utc, resolve_now
from songbattle.models.battle import Battle, Round, RoundPhase, Submission, Vote
from songbattle.models.user import User
from songbattle.services.lifecycle import compute_round_winners
from songbattle.services.outcome import Outcome, not_found
from songbattle.services.payloads import round_payload
from songbattle.services.voting import MAX_VOTES_PER_ROUND, votes_cast_by_participant


def _time_remaining(round_: Round, now: datetime) -> dict[str, Any]:
    if round_.phase == RoundPhase.SUBMISSION.value:
        deadline = ensure_utc(round_.submission_deadline)
    elif round_.phase == RoundPhase.VOTING.value:
        deadline = ensure_utc(round_.voting_deadline)
    else:
        return {"phase": round_.phase, "seconds": 0, "expired": False}
    seconds = int((deadline - now).total_seconds())
    return {"phase": round_.phase, "seconds": max(0, seconds), "expired": deadline <= now}


def get_current_round(db: Session, battle_id: uuid.UUID, *, now: Optional[datetime] = None) -> Outcome:
    now = resolve_now(now)
    battle = db.get(Battle, battle_id)
    if battle is None:
        return not_found("Battle")
    if battle.current_round_id is None:
        return Outcome.ok("No active round", round=None)
    round_ = db.get(Round, battle.current_round_id)
    if round_ is None or round_.phase == RoundPhase.PENDING.value:
        return Outcome.ok("No active round", round=None)

    payload = round_payload(round_)
    payload["time_remaining"] = _time_remaining(round_, now)
    return Outcome.ok("Current round", round=payload)


def get_round_results(
    db: Session,
    round_id: uuid.UUID,
    max_votes: int = MAX_VOTES_PER_ROUND,
) -> Outcome:
    """Submissions ranked by tally, who voted for each, voting progress and winners."""
    round_ = db.get(Round, round_id)
    if round_ is None:
        return not_found("Round")

    rows = (
        db.query(Submission, User.username)
        .join(User, Submission.user_id == User.id)
        .filter(Submission.round_id == round_id)
        .order_by(Submission.tally.desc(), Submission.submitted_at.asc())
        .all()
    )
    voter_rows = (
        db.query(Vote.submission_id, User.username)
        .join(User, Vote.voter_id == User.id)
        .filter(Vote.round_id == round_id)
        .order_by(Vote.created_at.asc())
        .all()
    )
    voters_by_submission: dict[uuid.UUID, list[str]] = {}
    for submission_id, username in voter_rows:
        voters_by_submission.setdefault(submission_id, []).append(username)

    submissions = [
        {
            "id": str(submission.id),
            "user_id": str(submission.user_id),
            "username": username,
            "track_url": submission.track_url,
            "position": submission.position,
            "tally": submission.tally,
            "voters": voters_by_submission.get(submission.id, []),
        }
        for submission, username in rows
    ]

    cast = votes_cast_by_participant(db, round_)
    total_voters = len(cast)
    completed_voters = sum(1 for count in cast.values() if count == max_votes)
    progress = {
        "total_voters": total_voters,
        "completed_voters": completed_voters,
        "percent": round(completed_voters / total_voters * 100) if total_voters else 0,
    }

    winners: list[dict[str, Any]] = []
    if round_.phase == RoundPhase.COMPLETED.value:
        outcome = compute_round_winners(db, round_)
        names = dict(db.query(User.id, User.username).filter(User.id.in_(outcome.winners)).all())
        winners = [
            {"user_id": str(user_id), "username": names.get(user_id), "credits": outcome.totals[user_id]}
            for user_id in outcome.winners
        ]

    return Outcome.ok(
        "Round results",
        round=round_payload(round_),
        submissions=submissions,
        voting_progress=progress,
        winners=winners,
    )
