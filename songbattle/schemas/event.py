from datetime import datetime
from typing import Any, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class EventItem(BaseModel):
    id: UUID
    type: str
    payload: dict[str, Any]
    battle_id: Optional[UUID] = None
    actor_user_id: Optional[UUID] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class EventsPage(BaseModel):
    items: List[EventItem] = Field(default_factory=list)
    next_cursor: Optional[str] = None
