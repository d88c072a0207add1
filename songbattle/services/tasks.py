"""Side-effect outbox and the worker that drains it.

The phase engine only records *that* a round needs a playlist, inside the
transaction that moved the round to voting. A worker picks pending tasks
up later, calls the configured ``ArtifactGenerator`` and reports the result
back onto the round. Generator failures are retried up to a limit and never
touch the round's phase.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Protocol

import httpx
from sqlalchemy.orm import Session

from songbattle.core.clock import resolve_now
from songbattle.models.battle import Battle, Round, RoundPhase, Submission
from songbattle.models.task import (
    TASK_KIND_PLAYLIST,
    TASK_STATUS_DONE,
    TASK_STATUS_FAILED,
    TASK_STATUS_PENDING,
    RoundTask,
)
from songbattle.services.events import log_event
from songbattle.services.outcome import ErrorKind, Outcome, not_found
from songbattle.services.track_urls import track_uri


logger = logging.getLogger(__name__)


class ArtifactError(Exception):
    """The artifact service answered, but not with a usable artifact."""


@dataclass(frozen=True)
class ArtifactRequest:
    round_id: uuid.UUID
    battle_name: str
    round_number: int
    theme: str
    track_uris: list[str] = field(default_factory=list)

    @property
    def title(self) -> str:
        return f"{self.battle_name} - Round {self.round_number}"

    @property
    def description(self) -> str:
        return f'Music battle playlist for "{self.theme}"'


@dataclass(frozen=True)
class ArtifactResult:
    url: str
    external_id: Optional[str] = None


class ArtifactGenerator(Protocol):
    def generate(self, request: ArtifactRequest) -> ArtifactResult: ...


class WebhookArtifactGenerator:
    """Hands playlist creation to an external service over HTTP.

    The service receives the round and its ordered track URIs and must
    answer ``{"url": ..., "id": ...}``.
    """

    def __init__(self, url: str, timeout: float = 10.0, client: Optional[httpx.Client] = None) -> None:
        self.url = url
        self._client = client or httpx.Client(timeout=timeout)

    def generate(self, request: ArtifactRequest) -> ArtifactResult:
        response = self._client.post(
            self.url,
            json={
                "round_id": str(request.round_id),
                "battle_name": request.battle_name,
                "round_number": request.round_number,
                "theme": request.theme,
                "title": request.title,
                "description": request.description,
                "track_uris": request.track_uris,
            },
        )
        response.raise_for_status()
        body: dict[str, Any] = response.json()
        url = (body.get("url") or "").strip()
        if not url:
            raise ArtifactError("artifact service returned no url")
        external_id = body.get("id")
        return ArtifactResult(url=url, external_id=str(external_id) if external_id else None)

    def close(self) -> None:
        self._client.close()


def enqueue_task(db: Session, round_id: uuid.UUID, kind: str, now: Optional[datetime] = None) -> RoundTask:
    """Add a task in the caller's transaction; a second enqueue for the same round and kind is a no-op."""
    existing = (
        db.query(RoundTask)
        .filter(RoundTask.round_id == round_id, RoundTask.kind == kind)
        .one_or_none()
    )
    if existing is not None:
        return existing
    task = RoundTask(
        round_id=round_id,
        kind=kind,
        status=TASK_STATUS_PENDING,
        attempts=0,
        created_at=resolve_now(now),
    )
    db.add(task)
    return task


def build_artifact_request(db: Session, round_: Round) -> ArtifactRequest:
    battle = db.get(Battle, round_.battle_id)
    submissions = (
        db.query(Submission)
        .filter(Submission.round_id == round_.id)
        .order_by(Submission.tally.desc(), Submission.submitted_at.asc())
        .all()
    )
    uris = [uri for uri in (track_uri(s.track_url) for s in submissions) if uri]
    return ArtifactRequest(
        round_id=round_.id,
        battle_name=battle.name if battle else "Battle",
        round_number=round_.number,
        theme=round_.theme,
        track_uris=uris,
    )


def record_artifact(db: Session, round_id: uuid.UUID, result: ArtifactResult) -> Optional[Round]:
    """Completion callback: store the playlist on the round. Phase is left alone."""
    round_ = db.get(Round, round_id)
    if round_ is None:
        return None
    round_.playlist_url = result.url
    round_.playlist_id = result.external_id
    db.add(round_)
    log_event(
        db,
        event_type="artifact_recorded",
        payload={"round_id": str(round_id), "playlist_url": result.url},
        battle_id=round_.battle_id,
    )
    return round_


def run_task(
    db: Session,
    task: RoundTask,
    generator: ArtifactGenerator,
    *,
    max_attempts: int,
    now: Optional[datetime] = None,
) -> bool:
    now = resolve_now(now)
    task_id = task.id
    round_ = db.get(Round, task.round_id)
    if round_ is None:
        task.status = TASK_STATUS_FAILED
        task.last_error = "round not found"
        db.add(task)
        db.commit()
        return False

    request = build_artifact_request(db, round_)
    # Release the read transaction before the slow external call.
    db.commit()

    try:
        result = generator.generate(request)
    except (httpx.HTTPError, ArtifactError, ValueError) as exc:
        task = db.get(RoundTask, task_id)
        task.attempts += 1
        task.last_error = str(exc)[:1000]
        if task.attempts >= max_attempts:
            task.status = TASK_STATUS_FAILED
        db.add(task)
        db.commit()
        logger.warning(
            "artifact_generation_failed round=%s attempts=%d status=%s error=%s",
            request.round_id,
            task.attempts,
            task.status,
            exc,
        )
        return False

    task = db.get(RoundTask, task_id)
    record_artifact(db, request.round_id, result)
    task.attempts += 1
    task.status = TASK_STATUS_DONE
    task.last_error = None
    task.completed_at = now
    db.add(task)
    db.commit()
    logger.info("artifact_recorded round=%s url=%s", request.round_id, result.url)
    return True


def run_pending_tasks(
    db: Session,
    generator: ArtifactGenerator,
    *,
    max_attempts: int = 5,
    limit: int = 20,
    now: Optional[datetime] = None,
) -> int:
    """Run up to ``limit`` pending tasks; returns how many succeeded."""
    tasks = (
        db.query(RoundTask)
        .filter(RoundTask.status == TASK_STATUS_PENDING)
        .order_by(RoundTask.created_at.asc())
        .limit(limit)
        .all()
    )
    succeeded = 0
    for task in tasks:
        if run_task(db, task, generator, max_attempts=max_attempts, now=now):
            succeeded += 1
    return succeeded


def retry_task(
    db: Session,
    user_id: uuid.UUID,
    round_id: uuid.UUID,
    kind: str = TASK_KIND_PLAYLIST,
    now: Optional[datetime] = None,
) -> Outcome:
    """Creator-only manual re-queue of a round's playlist generation."""
    round_ = db.get(Round, round_id)
    if round_ is None:
        return not_found("Round")
    battle = db.get(Battle, round_.battle_id)
    if battle is None:
        return not_found("Battle")
    if battle.creator_id != user_id:
        return Outcome.fail(ErrorKind.AUTHORIZATION, "Only the battle creator can generate the playlist")
    if round_.phase not in (RoundPhase.VOTING.value, RoundPhase.COMPLETED.value):
        return Outcome.fail(ErrorKind.PHASE, "Playlists are generated once voting starts")

    task = enqueue_task(db, round_id, kind, now=now)
    task.status = TASK_STATUS_PENDING
    task.attempts = 0
    task.last_error = None
    task.completed_at = None
    db.add(task)
    db.commit()
    return Outcome.ok("Playlist generation queued", round_id=str(round_id), task_id=str(task.id))
