from datetime import datetime
from typing import Any, Optional

from songbattle.core.clock import ensure_utc
from songbattle.models.battle import Battle, Round


def _iso(value: Optional[datetime]) -> Optional[str]:
    return ensure_utc(value).isoformat() if value else None


def battle_payload(battle: Battle) -> dict[str, Any]:
    return {
        "id": str(battle.id),
        "name": battle.name,
        "creator_id": str(battle.creator_id),
        "status": battle.status,
        "visibility": battle.visibility,
        "max_participants": battle.max_participants,
        "double_submissions": battle.double_submissions,
        "invite_code": battle.invite_code,
        "current_round_id": str(battle.current_round_id) if battle.current_round_id else None,
        "created_at": _iso(battle.created_at),
        "completed_at": _iso(battle.completed_at),
    }


def round_payload(round_: Round) -> dict[str, Any]:
    return {
        "id": str(round_.id),
        "battle_id": str(round_.battle_id),
        "number": round_.number,
        "theme": round_.theme,
        "description": round_.description,
        "phase": round_.phase,
        "submission_deadline": _iso(round_.submission_deadline),
        "voting_deadline": _iso(round_.voting_deadline),
        "playlist_url": round_.playlist_url,
        "voting_started_at": _iso(round_.voting_started_at),
        "completed_at": _iso(round_.completed_at),
    }
