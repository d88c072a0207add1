"""Scheduled phase transitions.

``check_phase_transitions`` scans rounds in submission or voting and moves
each one forward as far as the clock and its votes allow. It is run by
APScheduler every ``PHASE_TICK_SECONDS`` and, for a single round, right
after a vote changes.

Every round is advanced in its own transaction. A failure rolls that round
back, is logged, and is retried on the next tick; other rounds carry on.
Running the scan again on unchanged state changes nothing.
"""

import logging
import uuid
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from songbattle.core.clock import ensure_utc, resolve_now
from songbattle.core.config import Settings
from songbattle.models.battle import IN_FLIGHT_PHASES, Round, RoundPhase
from songbattle.services.lifecycle import begin_voting, complete
from songbattle.services.tasks import ArtifactGenerator, run_pending_tasks
from songbattle.services.voting import MAX_VOTES_PER_ROUND, all_participants_voted


logger = logging.getLogger(__name__)

PHASE_TICK_JOB_ID = "phase_tick"
TASK_WORKER_JOB_ID = "round_tasks"


@dataclass(frozen=True)
class Transition:
    round_id: uuid.UUID
    battle_id: uuid.UUID
    from_phase: str
    to_phase: str
    reason: str
    next_round_id: Optional[uuid.UUID] = None
    battle_completed: bool = False


def _advance_round(db: Session, round_id: uuid.UUID, now: datetime, max_votes: int) -> list[Transition]:
    round_ = db.get(Round, round_id, populate_existing=True)
    if round_ is None:
        return []

    transitions: list[Transition] = []
    if round_.phase == RoundPhase.SUBMISSION.value and now >= ensure_utc(round_.submission_deadline):
        if not begin_voting(db, round_, now):
            return transitions
        transitions.append(
            Transition(
                round_id=round_.id,
                battle_id=round_.battle_id,
                from_phase=RoundPhase.SUBMISSION.value,
                to_phase=RoundPhase.VOTING.value,
                reason="submission_deadline",
            )
        )

    if round_.phase == RoundPhase.VOTING.value:
        if now >= ensure_utc(round_.voting_deadline):
            reason = "voting_deadline"
        elif all_participants_voted(db, round_, max_votes):
            reason = "all_voted"
        else:
            return transitions

        result = complete(db, round_, now)
        if result is None:
            return transitions
        transitions.append(
            Transition(
                round_id=round_.id,
                battle_id=round_.battle_id,
                from_phase=RoundPhase.VOTING.value,
                to_phase=RoundPhase.COMPLETED.value,
                reason=reason,
                next_round_id=result.next_round_id,
                battle_completed=result.battle_completed,
            )
        )
    return transitions


def check_phase_transitions(
    db: Session,
    *,
    now: Optional[datetime] = None,
    round_id: Optional[uuid.UUID] = None,
    max_votes: int = MAX_VOTES_PER_ROUND,
) -> list[Transition]:
    """Advance every in-flight round (or just ``round_id``) and return what changed.

    Rounds activated along the way are evaluated in the same pass, so a
    second call straight after the first is a no-op.
    """
    now = resolve_now(now)
    query = db.query(Round.id).filter(Round.phase.in_(IN_FLIGHT_PHASES))
    if round_id is not None:
        query = query.filter(Round.id == round_id)
    pending = deque(rid for (rid,) in query.order_by(Round.created_at.asc()).all())
    db.rollback()

    seen: set[uuid.UUID] = set()
    transitions: list[Transition] = []
    while pending:
        rid = pending.popleft()
        if rid in seen:
            continue
        seen.add(rid)
        try:
            made = _advance_round(db, rid, now, max_votes)
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("phase_transition_failed round=%s", rid)
            continue

        for transition in made:
            logger.info(
                "phase_transition round=%s %s->%s reason=%s",
                transition.round_id,
                transition.from_phase,
                transition.to_phase,
                transition.reason,
            )
            if transition.next_round_id is not None:
                pending.append(transition.next_round_id)
        transitions.extend(made)
    return transitions


class PhaseEngine:
    """Owns the background scheduler running the phase tick and the task worker."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        settings: Settings,
        generator: Optional[ArtifactGenerator] = None,
        scheduler: Optional[BackgroundScheduler] = None,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings
        self._generator = generator
        self._scheduler = scheduler or BackgroundScheduler(timezone=timezone.utc)

    @property
    def running(self) -> bool:
        return bool(self._scheduler.running)

    def start(self) -> None:
        self._scheduler.add_job(
            self.tick,
            trigger=IntervalTrigger(seconds=self._settings.phase_tick_seconds),
            id=PHASE_TICK_JOB_ID,
            name="Advance round phases",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        if self._generator is not None:
            self._scheduler.add_job(
                self.drain_tasks,
                trigger=IntervalTrigger(seconds=self._settings.task_poll_seconds),
                id=TASK_WORKER_JOB_ID,
                name="Generate round playlists",
                max_instances=1,
                coalesce=True,
                replace_existing=True,
            )
        else:
            logger.info("artifact_worker_disabled")
        self._scheduler.start()
        logger.info(
            "phase_engine_started tick=%ss task_poll=%ss",
            self._settings.phase_tick_seconds,
            self._settings.task_poll_seconds,
        )

    def shutdown(self) -> None:
        if self.running:
            self._scheduler.shutdown(wait=False)
            logger.info("phase_engine_stopped")

    def tick(self, round_id: Optional[uuid.UUID] = None) -> list[Transition]:
        """One scan. Errors are logged, never raised, so the schedule keeps running."""
        try:
            with self._session_factory() as db:
                return check_phase_transitions(
                    db,
                    round_id=round_id,
                    max_votes=self._settings.max_votes_per_round,
                )
        except Exception:
            logger.exception("phase_tick_failed round=%s", round_id)
            return []

    def request_evaluation(self, round_id: uuid.UUID) -> None:
        """Fire-and-forget re-evaluation of one round, e.g. right after a vote."""
        if not self.running:
            logger.debug("phase_engine_idle skip_evaluation round=%s", round_id)
            return
        self._scheduler.add_job(
            self.tick,
            kwargs={"round_id": round_id},
            id=f"evaluate_round:{round_id}",
            name="Re-evaluate round",
            replace_existing=True,
        )

    def drain_tasks(self) -> int:
        if self._generator is None:
            return 0
        try:
            with self._session_factory() as db:
                return run_pending_tasks(
                    db,
                    self._generator,
                    max_attempts=self._settings.task_max_attempts,
                )
        except Exception:
            logger.exception("task_worker_failed")
            return 0
