from typing import Any, Optional
import uuid

from sqlalchemy.orm import Session

from songbattle.core.clock import utcnow
from songbattle.models.event import Event


def log_event(
    db: Session,
    *,
    event_type: str,
    payload: dict[str, Any],
    battle_id: Optional[uuid.UUID] = None,
    actor_user_id: Optional[uuid.UUID] = None,
) -> Event:
    """Record an activity event in the caller's transaction (not committed here)."""
    event = Event(
        type=event_type,
        payload=payload,
        battle_id=battle_id,
        actor_user_id=actor_user_id,
        created_at=utcnow(),
    )
    db.add(event)
    return event
