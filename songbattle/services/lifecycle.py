"""Round state machine and battle advancement.

Rounds move strictly ``pending -> submission -> voting -> completed``. Every
transition is a compare-and-set on the ``phase`` column: the UPDATE only
matches while the round is still in the expected phase, so a second caller
(an overlapping scheduler tick, a vote-triggered re-evaluation) sees zero
affected rows and does nothing. Side effects are written in the same
transaction as the phase change, so they happen at most once.

Completing a round scores it, credits its participants and advances the
battle before the transaction commits; there is no separate pass for
advancement.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from songbattle.models.battle import Battle, BattleStatus, Participant, Round, RoundPhase, Submission
from songbattle.models.task import TASK_KIND_PLAYLIST
from songbattle.services.events import log_event
from songbattle.services.tasks import enqueue_task


logger = logging.getLogger(__name__)


@dataclass
class RoundOutcome:
    totals: dict[uuid.UUID, int] = field(default_factory=dict)
    winners: list[uuid.UUID] = field(default_factory=list)
    top_credits: int = 0


@dataclass
class CompletionResult:
    outcome: RoundOutcome
    next_round_id: Optional[uuid.UUID] = None
    battle_completed: bool = False
    champions: list[uuid.UUID] = field(default_factory=list)


def _swap_phase(
    db: Session,
    round_: Round,
    expected: RoundPhase,
    target: RoundPhase,
    **values: Any,
) -> bool:
    db.flush()
    result = db.execute(
        update(Round)
        .where(Round.id == round_.id, Round.phase == expected.value)
        .values(phase=target.value, **values)
    )
    if result.rowcount != 1:
        logger.debug(
            "phase_swap_skipped round=%s expected=%s target=%s",
            round_.id,
            expected.value,
            target.value,
        )
        return False
    db.refresh(round_)
    return True


def lock_round(db: Session, round_id: uuid.UUID) -> Optional[Round]:
    """Reload a round under a share lock.

    Voters and submitters hold it until they commit, so the compare-and-set
    in ``_swap_phase`` waits for them and never scores a half-written round.
    """
    return (
        db.query(Round)
        .filter(Round.id == round_id)
        .with_for_update(read=True)
        .populate_existing()
        .one_or_none()
    )


def activate(db: Session, round_: Round, battle: Battle, now: datetime) -> bool:
    """pending -> submission, and point the battle at this round."""
    if not _swap_phase(db, round_, RoundPhase.PENDING, RoundPhase.SUBMISSION):
        return False
    if battle.current_round_id != round_.id:
        battle.current_round_id = round_.id
        db.add(battle)

    log_event(
        db,
        event_type="round_activated",
        payload={"round_id": str(round_.id), "round_number": round_.number},
        battle_id=battle.id,
    )
    logger.info("round_activated battle=%s round=%s number=%d", battle.id, round_.id, round_.number)
    return True


def begin_voting(db: Session, round_: Round, now: datetime) -> bool:
    """submission -> voting, queueing playlist generation for the final entries."""
    if not _swap_phase(db, round_, RoundPhase.SUBMISSION, RoundPhase.VOTING, voting_started_at=now):
        return False
    enqueue_task(db, round_.id, TASK_KIND_PLAYLIST, now=now)

    log_event(
        db,
        event_type="voting_started",
        payload={"round_id": str(round_.id), "round_number": round_.number},
        battle_id=round_.battle_id,
    )
    logger.info("voting_started battle=%s round=%s", round_.battle_id, round_.id)
    return True


def compute_round_winners(db: Session, round_: Round) -> RoundOutcome:
    """Sum each owner's tallies across their entries; the top sum wins, ties all win.

    A round in which nobody received a single credit has no winners.
    """
    rows = (
        db.query(Submission.user_id, func.coalesce(func.sum(Submission.tally), 0))
        .filter(Submission.round_id == round_.id)
        .group_by(Submission.user_id)
        .all()
    )
    totals = {user_id: int(total) for user_id, total in rows}
    top = max(totals.values(), default=0)
    winners = [user_id for user_id, total in totals.items() if total == top] if top > 0 else []
    return RoundOutcome(totals=totals, winners=sorted(winners, key=str), top_credits=top)


def _apply_round_outcome(db: Session, round_: Round, outcome: RoundOutcome) -> None:
    for user_id, credits in outcome.totals.items():
        values: dict[str, Any] = {"total_credits": Participant.total_credits + credits}
        if user_id in outcome.winners:
            values["rounds_won"] = Participant.rounds_won + 1
        db.execute(
            update(Participant)
            .where(Participant.battle_id == round_.battle_id, Participant.user_id == user_id)
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )


def complete(db: Session, round_: Round, now: datetime) -> Optional[CompletionResult]:
    """voting -> completed: score the round, credit participants, advance the battle."""
    if not _swap_phase(db, round_, RoundPhase.VOTING, RoundPhase.COMPLETED, completed_at=now):
        return None

    outcome = compute_round_winners(db, round_)
    _apply_round_outcome(db, round_, outcome)

    log_event(
        db,
        event_type="round_completed",
        payload={
            "round_id": str(round_.id),
            "round_number": round_.number,
            "winners": [str(w) for w in outcome.winners],
            "top_credits": outcome.top_credits,
        },
        battle_id=round_.battle_id,
    )
    logger.info(
        "round_completed battle=%s round=%s winners=%d top_credits=%d",
        round_.battle_id,
        round_.id,
        len(outcome.winners),
        outcome.top_credits,
    )

    result = CompletionResult(outcome=outcome)
    advance_battle(db, round_, now, result)
    return result


def advance_battle(db: Session, completed_round: Round, now: datetime, result: CompletionResult) -> None:
    # Held until commit so add_round cannot slip a round in between the lookup and completion.
    battle = (
        db.query(Battle)
        .filter(Battle.id == completed_round.battle_id)
        .with_for_update()
        .one_or_none()
    )
    if battle is None:
        logger.warning("advance_battle_missing battle=%s", completed_round.battle_id)
        return

    next_round = (
        db.query(Round)
        .filter(Round.battle_id == battle.id, Round.number == completed_round.number + 1)
        .one_or_none()
    )
    if next_round is not None:
        battle.current_round_id = next_round.id
        db.add(battle)
        activate(db, next_round, battle, now)
        result.next_round_id = next_round.id
        return

    finished = db.execute(
        update(Battle)
        .where(Battle.id == battle.id, Battle.status == BattleStatus.ACTIVE.value)
        .values(status=BattleStatus.COMPLETED.value, current_round_id=None, completed_at=now)
    )
    if finished.rowcount != 1:
        return
    db.refresh(battle)

    result.battle_completed = True
    result.champions = crown_champions(db, battle.id)
    log_event(
        db,
        event_type="battle_completed",
        payload={"champions": [str(c) for c in result.champions]},
        battle_id=battle.id,
    )
    logger.info("battle_completed battle=%s champions=%d", battle.id, len(result.champions))


def crown_champions(db: Session, battle_id: uuid.UUID) -> list[uuid.UUID]:
    """Flag every participant tied on the highest cumulative credits.

    Nobody is crowned when no credits were earned in the whole battle.
    """
    participants = db.query(Participant).filter(Participant.battle_id == battle_id).all()
    top = max((p.total_credits for p in participants), default=0)
    if top <= 0:
        return []
    champions = [p for p in participants if p.total_credits == top]
    for participant in champions:
        participant.is_champion = True
        db.add(participant)
    return sorted((p.user_id for p in champions), key=str)
